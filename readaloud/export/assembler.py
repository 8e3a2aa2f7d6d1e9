"""Chaptered audiobook assembly.

Responsibilities:
- Transcode chapters in input order and derive chapter marks from probed durations.
- Mux canonical chapters plus chapter metadata into one `m4b` or `mp3` container.
- Stream the result in fixed-size chunks and remove every intermediate file
  exactly once, whether assembly succeeds, fails, or the consumer stops early.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Sequence

from ..cancellation import CancelToken
from ..errors import InvalidInput, MuxFailed, ReadAloudError
from ..models.datatypes import BookTags, Chapter, ChapterMark
from ..runtime_tools import MediaTools
from ..telemetry.logger import EventLogger
from .timeline import build_timeline, render_concat_list, render_metadata
from .tools import run_tool
from .transcode import ChapterTranscoder
from .workset import EphemeralWorkSet

DEFAULT_STREAM_CHUNK_BYTES = 64 * 1024


@dataclass(frozen=True, slots=True)
class AudioFormat:
    """Output container profile.

    Attributes:
        name: Format identifier accepted by export surfaces.
        content_type: MIME type of the produced file.
        extension: File suffix including the dot.
        codec_args: ffmpeg arguments selecting codec, bitrate, and muxer.
        synthesis_format: Backend `response_format` to request for this container.
    """

    name: str
    content_type: str
    extension: str
    codec_args: tuple[str, ...]
    synthesis_format: str


AUDIO_FORMATS: dict[str, AudioFormat] = {
    "m4b": AudioFormat(
        name="m4b",
        content_type="audio/mp4",
        extension=".m4b",
        codec_args=("-c:a", "aac", "-b:a", "128k", "-movflags", "+faststart", "-f", "mp4"),
        synthesis_format="aac",
    ),
    "mp3": AudioFormat(
        name="mp3",
        content_type="audio/mpeg",
        extension=".mp3",
        codec_args=("-c:a", "libmp3lame", "-b:a", "128k", "-id3v2_version", "3", "-f", "mp3"),
        synthesis_format="mp3",
    ),
}


def resolve_audio_format(name: str) -> AudioFormat:
    """Return the output profile for `name`.

    Raises:
        InvalidInput: For unsupported formats.
    """

    normalized = name.strip().lower()
    audio_format = AUDIO_FORMATS.get(normalized)
    if audio_format is None:
        raise InvalidInput(
            stage="export",
            detail=f"Unsupported audio format `{name}`. Supported: `m4b`, `mp3`.",
            hint="Use `--format m4b` or `--format mp3`.",
        )
    return audio_format


@dataclass(frozen=True, slots=True)
class AudiobookStream:
    """Assembled audiobook readable while its work set is alive."""

    path: Path
    audio_format: AudioFormat
    chapters: tuple[ChapterMark, ...]
    cancel_token: CancelToken
    chunk_size: int = DEFAULT_STREAM_CHUNK_BYTES

    @property
    def content_type(self) -> str:
        return self.audio_format.content_type

    @property
    def size(self) -> int:
        return self.path.stat().st_size

    def iter_chunks(self) -> Iterator[bytes]:
        """Yield file content in fixed-size chunks, stopping on cancellation."""

        with self.path.open("rb") as handle:
            while True:
                self.cancel_token.raise_if_cancelled("stream")
                chunk = handle.read(self.chunk_size)
                if not chunk:
                    return
                yield chunk


class AudiobookAssembler:
    """Build chaptered audiobook containers from chapter audio buffers."""

    def __init__(
        self,
        *,
        tools: MediaTools | None = None,
        transcoder: ChapterTranscoder | None = None,
        work_dir: Path | None = None,
        chunk_size: int = DEFAULT_STREAM_CHUNK_BYTES,
        event_logger: EventLogger | None = None,
    ) -> None:
        self.tools = tools or MediaTools()
        self.transcoder = transcoder or ChapterTranscoder(self.tools, event_logger)
        self.work_dir = work_dir
        self.chunk_size = chunk_size
        self.event_logger = event_logger

    @contextmanager
    def assemble(
        self,
        chapters: Sequence[Chapter],
        audio_format: str = "m4b",
        *,
        tags: BookTags | None = None,
        cancel_token: CancelToken | None = None,
    ) -> Iterator[AudiobookStream]:
        """Assemble the audiobook and yield it; the work set is removed on exit.

        Raises:
            InvalidInput: For an empty chapter list, empty audio, or unsupported format.
            TranscodeFailed, ProbeFailed, MuxFailed: For audio tool failures.
            Cancelled: When `cancel_token` fires.
        """

        profile = resolve_audio_format(audio_format)
        self._validate(chapters)
        token = cancel_token or CancelToken("export")
        self._log("info", "start", chapters=len(chapters), format=profile.name)

        with EphemeralWorkSet(parent=self.work_dir) as work_set:
            try:
                stream = self._build(chapters, profile, tags, token, work_set)
            except ReadAloudError as exc:
                if self.event_logger is not None:
                    self.event_logger.failure("assembler", exc, stage=exc.stage)
                raise
            self._log("info", "complete", bytes=stream.size, format=profile.name)
            yield stream

    def stream(
        self,
        chapters: Sequence[Chapter],
        audio_format: str = "m4b",
        *,
        tags: BookTags | None = None,
        cancel_token: CancelToken | None = None,
    ) -> Iterator[bytes]:
        """Yield the assembled audiobook as a byte stream for response bodies.

        Closing the generator early removes the work set.
        """

        with self.assemble(
            chapters,
            audio_format,
            tags=tags,
            cancel_token=cancel_token,
        ) as audiobook:
            yield from audiobook.iter_chunks()

    def write_to(
        self,
        chapters: Sequence[Chapter],
        destination: Path,
        audio_format: str = "m4b",
        *,
        tags: BookTags | None = None,
        cancel_token: CancelToken | None = None,
    ) -> tuple[ChapterMark, ...]:
        """Assemble into `destination` and return the written chapter marks.

        Bytes go to a sibling partial file that replaces `destination` only after
        the whole audiobook is written, so a failed or cancelled export leaves no
        truncated output behind.
        """

        destination.parent.mkdir(parents=True, exist_ok=True)
        partial_path = destination.parent / f"_partial_{destination.name}"
        try:
            with self.assemble(
                chapters,
                audio_format,
                tags=tags,
                cancel_token=cancel_token,
            ) as audiobook:
                with partial_path.open("wb") as handle:
                    for chunk in audiobook.iter_chunks():
                        handle.write(chunk)
                marks = audiobook.chapters
            partial_path.replace(destination)
        finally:
            partial_path.unlink(missing_ok=True)
        return marks

    def _validate(self, chapters: Sequence[Chapter]) -> None:
        if not chapters:
            raise InvalidInput(stage="export", detail="No chapters to export.")
        for number, chapter in enumerate(chapters, start=1):
            if not chapter.title.strip():
                raise InvalidInput(stage="export", detail=f"Chapter {number} has no title.")
            if not chapter.raw_audio:
                raise InvalidInput(
                    stage="export",
                    detail=f"Chapter {number} `{chapter.title}` has no audio.",
                )

    def _build(
        self,
        chapters: Sequence[Chapter],
        profile: AudioFormat,
        tags: BookTags | None,
        token: CancelToken,
        work_set: EphemeralWorkSet,
    ) -> AudiobookStream:
        transcoded = [
            self.transcoder.transcode(chapter, index, work_set, token)
            for index, chapter in enumerate(chapters)
        ]
        marks = build_timeline(transcoded)

        metadata_path = work_set.root / "chapters.ffmeta"
        metadata_path.write_text(render_metadata(marks, tags), encoding="utf-8")
        concat_path = work_set.root / "chapters.concat.txt"
        concat_path.write_text(
            render_concat_list(item.canonical_path for item in transcoded),
            encoding="utf-8",
        )
        output_path = work_set.root / f"audiobook{profile.extension}"

        run_tool(
            [
                self.tools.ffmpeg,
                "-y",
                "-hide_banner",
                "-loglevel",
                "error",
                "-f",
                "concat",
                "-safe",
                "0",
                "-i",
                str(concat_path),
                "-i",
                str(metadata_path),
                "-map",
                "0:a",
                "-map_metadata",
                "1",
                "-map_chapters",
                "1",
                *profile.codec_args,
                str(output_path),
            ],
            stage="mux",
            error_type=MuxFailed,
            cancel_token=token,
            hint=(
                "Verify local ffmpeg codec support for the requested format "
                "(`aac` for m4b or `libmp3lame` for mp3)."
            ),
        )
        if not output_path.is_file() or output_path.stat().st_size == 0:
            raise MuxFailed(stage="mux", detail="Muxing produced no output file.")

        return AudiobookStream(
            path=output_path,
            audio_format=profile,
            chapters=tuple(marks),
            cancel_token=token,
            chunk_size=self.chunk_size,
        )

    def _log(self, level: str, event: str, **context: object) -> None:
        if self.event_logger is None:
            return
        getattr(self.event_logger, level)("assembler", event, **context)
