"""Chapter timeline and ffmpeg side-file rendering.

Responsibilities:
- Accumulate probed chapter durations into millisecond chapter marks.
- Render the FFMETADATA1 chapter document and the ffmpeg concat list.
"""

from __future__ import annotations

import math
from pathlib import Path
from typing import Iterable

from ..models.datatypes import BookTags, ChapterMark, TranscodedChapter

TIMEBASE = "1/1000"


def build_timeline(chapters: Iterable[TranscodedChapter]) -> list[ChapterMark]:
    """Return chapter marks from a running clock over chapter durations.

    Offsets are truncated to whole milliseconds, so each chapter starts exactly
    where the previous one ends.
    """

    marks: list[ChapterMark] = []
    clock = 0.0
    for chapter in chapters:
        start_ms = math.floor(clock * 1000)
        clock += chapter.duration_seconds
        marks.append(
            ChapterMark(start_ms=start_ms, end_ms=math.floor(clock * 1000), title=chapter.title)
        )
    return marks


def escape_metadata_value(value: str) -> str:
    """Escape a value for FFMETADATA1 (`\\`, `=`, `;`, `#`, and newlines)."""

    escaped = value.replace("\\", "\\\\")
    for character in ("=", ";", "#"):
        escaped = escaped.replace(character, f"\\{character}")
    return escaped.replace("\n", "\\\n")


def render_metadata(marks: Iterable[ChapterMark], tags: BookTags | None = None) -> str:
    """Render the FFMETADATA1 document describing book tags and chapters."""

    lines = [";FFMETADATA1"]
    if tags is not None:
        if tags.title:
            lines.append(f"title={escape_metadata_value(tags.title)}")
            lines.append(f"album={escape_metadata_value(tags.title)}")
        if tags.author:
            lines.append(f"artist={escape_metadata_value(tags.author)}")
    for mark in marks:
        lines.extend(
            [
                "",
                "[CHAPTER]",
                f"TIMEBASE={TIMEBASE}",
                f"START={mark.start_ms}",
                f"END={mark.end_ms}",
                f"title={escape_metadata_value(mark.title)}",
            ]
        )
    return "\n".join(lines) + "\n"


def escape_concat_path(path: Path) -> str:
    """Escape one file path for the ffmpeg concat list format."""

    return str(path).replace("'", "'\\''")


def render_concat_list(paths: Iterable[Path]) -> str:
    return "".join(f"file '{escape_concat_path(path.resolve())}'\n" for path in paths)
