"""Typed data models used by readaloud components."""

from .datatypes import (
    Block,
    BookTags,
    Chapter,
    ChapterMark,
    TextChapter,
    TranscodedChapter,
)

__all__ = [
    "Block",
    "BookTags",
    "Chapter",
    "ChapterMark",
    "TextChapter",
    "TranscodedChapter",
]
