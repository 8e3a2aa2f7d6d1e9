"""Per-chapter transcoding to canonical PCM and duration probing.

Responsibilities:
- Normalize arbitrary chapter audio to 24 kHz mono signed 16-bit WAV.
- Measure each canonical chapter's exact duration with `ffprobe`.
- Delete raw chapter input as soon as it is transcoded, on every path.
"""

from __future__ import annotations

import math
from pathlib import Path

from ..cancellation import CancelToken
from ..errors import ProbeFailed, TranscodeFailed
from ..models.datatypes import Chapter, TranscodedChapter
from ..runtime_tools import MediaTools
from ..telemetry.logger import EventLogger
from .tools import run_tool
from .workset import EphemeralWorkSet

CANONICAL_SAMPLE_RATE = 24000
CANONICAL_CHANNELS = 1
CANONICAL_CODEC = "pcm_s16le"


class ChapterTranscoder:
    """Transcode chapter buffers inside one export work set."""

    def __init__(
        self,
        tools: MediaTools | None = None,
        event_logger: EventLogger | None = None,
    ) -> None:
        self.tools = tools or MediaTools()
        self.event_logger = event_logger

    def transcode(
        self,
        chapter: Chapter,
        index: int,
        work_set: EphemeralWorkSet,
        cancel_token: CancelToken,
    ) -> TranscodedChapter:
        """Return the canonical file and duration for one chapter.

        Raises:
            TranscodeFailed: When ffmpeg fails or produces no output.
            ProbeFailed: When the duration cannot be measured.
            Cancelled: When the export is cancelled mid-way.
        """

        cancel_token.raise_if_cancelled("transcode")
        raw_path = work_set.unique_path(f"chapter-{index:03d}-raw", ".bin")
        canonical_path = work_set.unique_path(f"chapter-{index:03d}", ".wav")
        raw_path.write_bytes(chapter.raw_audio)
        try:
            run_tool(
                [
                    self.tools.ffmpeg,
                    "-y",
                    "-hide_banner",
                    "-loglevel",
                    "error",
                    "-i",
                    str(raw_path),
                    "-vn",
                    "-map_metadata",
                    "-1",
                    "-ac",
                    str(CANONICAL_CHANNELS),
                    "-ar",
                    str(CANONICAL_SAMPLE_RATE),
                    "-c:a",
                    CANONICAL_CODEC,
                    "-f",
                    "wav",
                    str(canonical_path),
                ],
                stage="transcode",
                error_type=TranscodeFailed,
                cancel_token=cancel_token,
                hint="Verify the chapter audio is a format ffmpeg can decode.",
            )
        finally:
            raw_path.unlink(missing_ok=True)

        if not canonical_path.is_file() or canonical_path.stat().st_size == 0:
            raise TranscodeFailed(
                stage="transcode",
                detail=f"Transcoding produced no output for chapter {index + 1} `{chapter.title}`.",
            )

        duration = self.probe_duration(canonical_path, cancel_token)
        if self.event_logger is not None:
            self.event_logger.debug(
                "transcoder",
                "chapter_ready",
                index=index,
                duration=f"{duration:.3f}",
            )
        return TranscodedChapter(
            title=chapter.title,
            canonical_path=canonical_path,
            duration_seconds=duration,
        )

    def probe_duration(self, path: Path, cancel_token: CancelToken) -> float:
        """Return the container duration of `path` in seconds."""

        output = run_tool(
            [
                self.tools.ffprobe,
                "-v",
                "error",
                "-show_entries",
                "format=duration",
                "-of",
                "csv=p=0",
                str(path),
            ],
            stage="probe",
            error_type=ProbeFailed,
            cancel_token=cancel_token,
        )
        value = output.strip()
        try:
            duration = float(value)
        except ValueError as exc:
            raise ProbeFailed(
                stage="probe",
                detail=f"Could not parse duration `{value or 'empty'}` for `{path.name}`.",
            ) from exc
        if not math.isfinite(duration) or duration < 0.0:
            raise ProbeFailed(stage="probe", detail=f"Invalid duration `{value}` for `{path.name}`.")
        return duration
