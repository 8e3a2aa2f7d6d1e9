"""Batch narration of text chapters into an audiobook.

Responsibilities:
- Segment each chapter with the export block budget.
- Synthesize every block through the batch synthesizer and join per-chapter audio.
- Hand the narrated chapters to the assembler.
"""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Sequence

from ..cancellation import CancelToken
from ..errors import InvalidInput
from ..models.datatypes import BookTags, Chapter, ChapterMark, TextChapter
from ..telemetry.logger import EventLogger
from ..text.segmenter import EXPORT_BLOCK_CHARS, TextSegmenter
from ..tts.synthesizer import Synthesizer
from ..tts.voices import VoiceProfile
from .assembler import AudiobookAssembler, resolve_audio_format

ProgressCallback = Callable[[int, int, str], None]


class AudiobookNarrator:
    """Turn titled chapter text into a chaptered audiobook file."""

    def __init__(
        self,
        synthesizer: Synthesizer,
        assembler: AudiobookAssembler,
        *,
        segmenter: TextSegmenter | None = None,
        block_chars: int | None = EXPORT_BLOCK_CHARS,
        event_logger: EventLogger | None = None,
    ) -> None:
        self.synthesizer = synthesizer
        self.assembler = assembler
        self.segmenter = segmenter or TextSegmenter()
        self.block_chars = block_chars
        self.event_logger = event_logger

    def synthesize_chapters(
        self,
        chapters: Sequence[TextChapter],
        voice: VoiceProfile,
        audio_format: str = "m4b",
        *,
        cancel_token: CancelToken | None = None,
        progress: ProgressCallback | None = None,
    ) -> list[Chapter]:
        """Return chapter audio buffers in input order.

        `progress` receives `(completed, total, title)` after each chapter.
        """

        if not chapters:
            raise InvalidInput(stage="narrate", detail="No chapters to narrate.")
        profile = resolve_audio_format(audio_format)
        token = cancel_token or CancelToken("narrate")

        narrated: list[Chapter] = []
        for number, chapter in enumerate(chapters, start=1):
            blocks = self.segmenter.segment(chapter.text, self.block_chars)
            if not blocks:
                raise InvalidInput(
                    stage="narrate",
                    detail=f"Chapter {number} `{chapter.title}` has no speakable text.",
                )
            parts = []
            for block in blocks:
                token.raise_if_cancelled("narrate")
                parts.append(
                    self.synthesizer.synthesize(
                        block.text,
                        voice,
                        token,
                        response_format=profile.synthesis_format,
                    )
                )
            narrated.append(Chapter(title=chapter.title, raw_audio=b"".join(parts)))
            if self.event_logger is not None:
                self.event_logger.info(
                    "narrator",
                    "chapter_complete",
                    chapter=number,
                    total=len(chapters),
                    blocks=len(blocks),
                )
            if progress is not None:
                progress(number, len(chapters), chapter.title)
        return narrated

    def narrate(
        self,
        chapters: Sequence[TextChapter],
        voice: VoiceProfile,
        destination: Path,
        audio_format: str = "m4b",
        *,
        tags: BookTags | None = None,
        cancel_token: CancelToken | None = None,
        progress: ProgressCallback | None = None,
    ) -> tuple[ChapterMark, ...]:
        """Narrate `chapters` into `destination` and return its chapter marks."""

        token = cancel_token or CancelToken("narrate")
        audio_chapters = self.synthesize_chapters(
            chapters,
            voice,
            audio_format,
            cancel_token=token,
            progress=progress,
        )
        return self.assembler.write_to(
            audio_chapters,
            destination,
            audio_format,
            tags=tags,
            cancel_token=token,
        )
