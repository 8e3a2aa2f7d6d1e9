"""Chapter transcoding, timeline, and audiobook assembly."""

from .assembler import (
    AUDIO_FORMATS,
    AudioFormat,
    AudiobookAssembler,
    AudiobookStream,
    resolve_audio_format,
)
from .narrator import AudiobookNarrator
from .timeline import build_timeline, render_concat_list, render_metadata
from .tools import run_tool
from .transcode import ChapterTranscoder
from .workset import EphemeralWorkSet

__all__ = [
    "AUDIO_FORMATS",
    "AudioFormat",
    "AudiobookAssembler",
    "AudiobookNarrator",
    "AudiobookStream",
    "ChapterTranscoder",
    "EphemeralWorkSet",
    "build_timeline",
    "render_concat_list",
    "render_metadata",
    "resolve_audio_format",
    "run_tool",
]
