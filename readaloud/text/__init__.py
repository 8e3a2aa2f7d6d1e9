"""Text preprocessing and segmentation components.

This package provides deterministic cleanup, sentence splitting, and block
packing used before speech synthesis.
"""

from .cleaners import (
    CollapseWhitespace,
    FixHyphenation,
    ReplaceUrls,
    StripEmphasisMarkers,
    TextCleaner,
)
from .segmenter import EXPORT_BLOCK_CHARS, INTERACTIVE_BLOCK_CHARS, TextSegmenter, segment
from .sentences import SentenceSplitter

__all__ = [
    "TextCleaner",
    "TextSegmenter",
    "SentenceSplitter",
    "segment",
    "INTERACTIVE_BLOCK_CHARS",
    "EXPORT_BLOCK_CHARS",
    "ReplaceUrls",
    "FixHyphenation",
    "StripEmphasisMarkers",
    "CollapseWhitespace",
]
