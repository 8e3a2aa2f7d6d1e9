"""Document-to-block segmentation for speech synthesis.

Responsibilities:
- Split raw document text into paragraphs and clean each one for speech.
- Greedily pack whole sentences into blocks bounded by a character budget.
- Stay pure so repeated calls on identical input give identical blocks.
"""

from __future__ import annotations

import re
from typing import Iterable, Iterator

from ..models.datatypes import Block
from .cleaners import TextCleaner
from .sentences import SentenceSplitter

INTERACTIVE_BLOCK_CHARS = 300
EXPORT_BLOCK_CHARS = 4096

_PARAGRAPH_BREAK_RE = re.compile(r"(?:\r\n|\r|\n)+")


class TextSegmenter:
    """Turn document text into ordered speakable blocks."""

    def __init__(
        self,
        cleaner: TextCleaner | None = None,
        splitter: SentenceSplitter | None = None,
    ) -> None:
        """Initialize with custom cleanup and sentence rules, or the defaults."""

        self.cleaner = cleaner or TextCleaner()
        self.splitter = splitter or SentenceSplitter()

    def segment(
        self,
        text: str,
        max_block_length: int | None = INTERACTIVE_BLOCK_CHARS,
    ) -> list[Block]:
        """Split text into blocks that never span a paragraph break.

        Args:
            text: Raw document text.
            max_block_length: Block character budget; `None` or `0` disables the
                budget so every paragraph becomes one block.

        Returns:
            Blocks in document order. A sentence longer than the budget forms its
            own oversized block instead of being cut.
        """

        if not text:
            return []

        limit = max_block_length if max_block_length else None
        blocks: list[Block] = []
        for paragraph in _PARAGRAPH_BREAK_RE.split(text):
            cleaned = self.cleaner.clean(paragraph)
            if not cleaned:
                continue
            if limit is None or len(cleaned) < limit:
                blocks.append(Block(text=cleaned))
                continue
            sentences = self.splitter.split(cleaned)
            blocks.extend(Block(text=packed) for packed in _pack_sentences(sentences, limit))
        return blocks


def _pack_sentences(sentences: Iterable[str], limit: int) -> Iterator[str]:
    """Join sentences with single spaces while the result stays within `limit`."""

    current = ""
    for sentence in sentences:
        if current and len(current) + 1 + len(sentence) > limit:
            yield current
            current = sentence
        else:
            current = f"{current} {sentence}" if current else sentence
    if current:
        yield current


_DEFAULT_SEGMENTER = TextSegmenter()


def segment(text: str, max_block_length: int | None = INTERACTIVE_BLOCK_CHARS) -> list[Block]:
    """Segment text with the default cleanup and sentence rules."""

    return _DEFAULT_SEGMENTER.segment(text, max_block_length)
