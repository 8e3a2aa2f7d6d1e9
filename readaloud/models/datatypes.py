"""Core datatypes shared across readaloud modules.

Responsibilities:
- Represent immutable records exchanged between segmentation, playback, and export.
- Provide explicit typing for deterministic tests.

Key types:
- `Block`, `TextChapter`, `Chapter`, `TranscodedChapter`, `ChapterMark`, and `BookTags`.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True, slots=True)
class Block:
    """One bounded-length unit of text scheduled for a single synthesis call."""

    text: str


@dataclass(frozen=True, slots=True)
class TextChapter:
    """Chapter text submitted for batch narration.

    Attributes:
        title: Chapter title written into the chapter marker.
        text: Raw chapter text, segmented before synthesis.
    """

    title: str
    text: str


@dataclass(frozen=True, slots=True)
class Chapter:
    """Chapter audio submitted for export.

    Attributes:
        title: Chapter title written into the chapter marker.
        raw_audio: Encoded audio bytes in any container ffmpeg can read.
    """

    title: str
    raw_audio: bytes


@dataclass(frozen=True, slots=True)
class TranscodedChapter:
    """Chapter after canonical PCM transcoding and duration probing."""

    title: str
    canonical_path: Path
    duration_seconds: float


@dataclass(frozen=True, slots=True)
class ChapterMark:
    """Chapter marker with millisecond offsets from the start of the book."""

    start_ms: int
    end_ms: int
    title: str


@dataclass(frozen=True, slots=True)
class BookTags:
    """Optional container-level tags written next to chapter markers."""

    title: str | None = None
    author: str | None = None
