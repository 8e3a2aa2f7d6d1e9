"""Integration tests for readaloud CLI commands with mocked backend and audio tools."""

from __future__ import annotations

import asyncio
import io
import json
from pathlib import Path
from typing import Callable, Sequence

from pytest import CaptureFixture, MonkeyPatch
from typer.testing import CliRunner

from readaloud.cancellation import CancelToken
from readaloud.cli import app, run_speak_session
from readaloud.models.datatypes import BookTags, Chapter, ChapterMark
from readaloud.playback.controller import PlaybackController
from readaloud.playback.state import PlaybackStatus
from readaloud.tts.client import OpenAIProviderError, OpenAISpeechClient
from readaloud.tts.voices import VoiceProfile


class _RecordingAssembler:
    """Assembler double that records chapters and writes a placeholder file."""

    def __init__(self) -> None:
        self.chapters: list[Chapter] = []
        self.audio_format = ""
        self.tags: BookTags | None = None

    def write_to(
        self,
        chapters: Sequence[Chapter],
        destination: Path,
        audio_format: str = "m4b",
        *,
        tags: BookTags | None = None,
        cancel_token: CancelToken | None = None,
    ) -> tuple[ChapterMark, ...]:
        self.chapters = list(chapters)
        self.audio_format = audio_format
        self.tags = tags
        destination.write_bytes(b"book")
        marks = []
        for index, chapter in enumerate(chapters):
            marks.append(ChapterMark(index * 1000, (index + 1) * 1000, chapter.title))
        return tuple(marks)


class _AutoEndingSource:
    def stop(self) -> None:
        return None


class _AutoEndingSink:
    """Sink double whose buffers finish playing immediately."""

    def __init__(self) -> None:
        self.played: list[bytes] = []

    def play(self, audio: bytes, on_ended: Callable[[], None]) -> _AutoEndingSource:
        self.played.append(audio)
        on_ended()
        return _AutoEndingSource()


class _HeldSource:
    def __init__(self) -> None:
        self.stopped = False

    def stop(self) -> None:
        self.stopped = True


class _HeldSink:
    """Sink double whose buffers keep playing until stopped."""

    def __init__(self) -> None:
        self.sources: list[_HeldSource] = []

    def play(self, audio: bytes, on_ended: Callable[[], None]) -> _HeldSource:
        source = _HeldSource()
        self.sources.append(source)
        return source


class _EchoSynthesizer:
    """Synthesizer double recording the speed of every request."""

    def __init__(self) -> None:
        self.speeds: list[float] = []

    def synthesize(
        self,
        text: str,
        voice: VoiceProfile,
        cancel_token: CancelToken,
        *,
        response_format: str = "mp3",
    ) -> bytes:
        self.speeds.append(voice.speed)
        return f"audio:{text}".encode("utf-8")

def test_segment_prints_numbered_blocks(tmp_path: Path) -> None:
    """`segment` should list blocks with lengths and a total."""

    source = tmp_path / "doc.txt"
    source.write_text("Hello world. This is a test.\n\nSecond paragraph here.\n", encoding="utf-8")

    result = CliRunner().invoke(app, ["segment", str(source)])

    assert result.exit_code == 0, result.output
    assert "1. [28] Hello world. This is a test." in result.output
    assert "2. [22] Second paragraph here." in result.output
    assert "Blocks: 2" in result.output


def test_segment_honors_max_chars_and_stdin() -> None:
    """`segment -` should read stdin and apply the explicit budget."""

    result = CliRunner().invoke(
        app,
        ["segment", "-", "--max-chars", "15"],
        input="First one. Second one.\n",
    )

    assert result.exit_code == 0, result.output
    assert "1. [10] First one." in result.output
    assert "2. [11] Second one." in result.output


def test_segment_reports_missing_input(tmp_path: Path) -> None:
    """Missing input files should exit with a stage diagnostic."""

    result = CliRunner().invoke(app, ["segment", str(tmp_path / "missing.txt")])

    assert result.exit_code == 1
    assert "segment failed at stage `input`" in result.output


def test_voices_lists_backend_voices() -> None:
    """`voices` should print one voice id per line."""

    result = CliRunner().invoke(app, ["voices", "--api-key", "sk-test"])

    assert result.exit_code == 0, result.output
    assert result.output.splitlines()[-2:] == ["nova", "echo"]


def test_voices_falls_back_to_builtin_list(monkeypatch: MonkeyPatch) -> None:
    """Discovery failures should still print the built-in voice list."""

    def _failing_list_voices(self) -> list[str]:  # type: ignore[no-untyped-def]
        raise OpenAIProviderError("boom", failure_kind="transport")

    monkeypatch.setattr(OpenAISpeechClient, "list_voices", _failing_list_voices)

    result = CliRunner().invoke(app, ["voices"])

    assert result.exit_code == 0, result.output
    assert "alloy" in result.output.splitlines()
    assert "shimmer" in result.output.splitlines()


def test_speak_plays_every_block_until_stopped(
    monkeypatch: MonkeyPatch,
    tmp_path: Path,
    _mock_speech_backend: list[dict[str, object]],
) -> None:
    """`speak` should play each block in order and end when the text is finished."""

    sink = _AutoEndingSink()
    monkeypatch.setenv("READALOUD_PREFETCH_DELAY_SECONDS", "0")
    monkeypatch.setenv("READALOUD_SKIP_DEBOUNCE_SECONDS", "0")
    monkeypatch.setattr("readaloud.cli._build_sink", lambda config, event_logger: sink)
    monkeypatch.setattr("readaloud.cli._read_commands", lambda stream, loop, queue: None)
    source = tmp_path / "doc.txt"
    source.write_text("First paragraph.\nSecond paragraph.\n", encoding="utf-8")

    result = CliRunner().invoke(
        app,
        ["speak", str(source), "--api-key", "sk-secret", "--voice", "nova", "--speed", "1.5"],
    )

    assert result.exit_code == 0, result.output
    assert sink.played == [b"audio:First paragraph.", b"audio:Second paragraph."]
    assert "[playback] status=playing block=2/2" in result.output
    assert "Session ended: stopped" in result.output
    assert "sk-secret" not in result.output
    assert {request["voice"] for request in _mock_speech_backend} == {"nova"}
    assert {request["speed"] for request in _mock_speech_backend} == {1.5}


def test_speak_requires_api_key(tmp_path: Path) -> None:
    """`speak` without any configured key should fail at the config stage."""

    source = tmp_path / "doc.txt"
    source.write_text("Hello.\n", encoding="utf-8")

    result = CliRunner().invoke(app, ["speak", str(source)])

    assert result.exit_code == 1
    assert "speak failed at stage `config`" in result.output


def test_export_assembles_manifest_chapters(monkeypatch: MonkeyPatch, tmp_path: Path) -> None:
    """`export` should load manifest audio relative to the manifest and print marks."""

    assembler = _RecordingAssembler()
    monkeypatch.setattr("readaloud.cli._build_assembler", lambda config, event_logger: assembler)
    (tmp_path / "one.mp3").write_bytes(b"one")
    (tmp_path / "two.mp3").write_bytes(b"two")
    manifest = tmp_path / "book.json"
    manifest.write_text(
        json.dumps(
            {
                "title": "Manifest Title",
                "author": "Writer",
                "chapters": [
                    {"title": "Opening", "audio": "one.mp3"},
                    {"title": "Closing", "audio": "two.mp3"},
                ],
            }
        ),
        encoding="utf-8",
    )
    out = tmp_path / "book.mp3"

    result = CliRunner().invoke(
        app,
        ["export", str(manifest), "--out", str(out), "--format", "mp3", "--title", "CLI Title"],
    )

    assert result.exit_code == 0, result.output
    assert [chapter.raw_audio for chapter in assembler.chapters] == [b"one", b"two"]
    assert assembler.audio_format == "mp3"
    assert assembler.tags == BookTags(title="CLI Title", author="Writer")
    assert "1. 0:00:00.000 - 0:00:01.000 Opening" in result.output
    assert f"Audiobook: {out}" in result.output
    assert out.read_bytes() == b"book"


def test_export_json_errors_report_generic_body(tmp_path: Path) -> None:
    """`--json-errors` should print only the generic message and the failure kind."""

    manifest = tmp_path / "book.json"
    manifest.write_text(json.dumps([{"title": "Opening", "audio": "missing.mp3"}]), encoding="utf-8")

    result = CliRunner().invoke(
        app,
        ["export", str(manifest), "--out", str(tmp_path / "book.m4b"), "--json-errors"],
    )

    assert result.exit_code == 1
    payload = json.loads(result.output.strip().splitlines()[-1])
    assert payload == {"error": "Failed to create audiobook.", "kind": "invalid_input"}


def test_export_rejects_unsupported_format(tmp_path: Path) -> None:
    """Unsupported containers should fail at the config stage."""

    manifest = tmp_path / "book.json"
    manifest.write_text("[]", encoding="utf-8")

    result = CliRunner().invoke(
        app,
        ["export", str(manifest), "--out", str(tmp_path / "book.ogg"), "--format", "ogg"],
    )

    assert result.exit_code == 1
    assert "export failed at stage `config`" in result.output


def test_narrate_synthesizes_chapters_and_reports_progress(
    monkeypatch: MonkeyPatch,
    tmp_path: Path,
    _mock_speech_backend: list[dict[str, object]],
) -> None:
    """`narrate` should synthesize each chapter file in order and assemble the book."""

    assembler = _RecordingAssembler()
    monkeypatch.setenv("READALOUD_BATCH_MIN_INTERVAL_SECONDS", "0")
    monkeypatch.setattr("readaloud.cli._build_assembler", lambda config, event_logger: assembler)
    first = tmp_path / "chapter_one.txt"
    first.write_text("It begins.\n", encoding="utf-8")
    second = tmp_path / "chapter_two.txt"
    second.write_text("It ends.\n", encoding="utf-8")

    result = CliRunner().invoke(
        app,
        [
            "narrate",
            str(first),
            str(second),
            "--out",
            str(tmp_path / "book.m4b"),
            "--api-key",
            "sk-test",
            "--author",
            "Writer",
        ],
    )

    assert result.exit_code == 0, result.output
    assert "[progress] command=narrate 1/2 chapter=chapter one" in result.output
    assert "[progress] command=narrate 2/2 chapter=chapter two" in result.output
    assert [chapter.title for chapter in assembler.chapters] == ["chapter one", "chapter two"]
    assert assembler.chapters[0].raw_audio == b"audio:It begins."
    assert {request["response_format"] for request in _mock_speech_backend} == {"aac"}
    assert assembler.tags == BookTags(title=None, author="Writer")


def test_speak_session_changes_speed_from_commands(capsys: CaptureFixture[str]) -> None:
    """`r RATE` should switch the speaking rate and report invalid rates without failing."""

    sink = _HeldSink()
    controller = PlaybackController(
        _EchoSynthesizer(),
        sink,
        prefetch_delay_seconds=0,
        skip_debounce_seconds=0,
    )
    commands = io.StringIO("r 1.25\nr 9\nr fast\ns\n")

    final_state = asyncio.run(run_speak_session(controller, "One.\nTwo.", commands))

    output = capsys.readouterr().out
    assert controller.voice.speed == 1.25
    assert "Speed must be between" in output
    assert "Invalid speed `fast`." in output
    assert final_state.status is PlaybackStatus.IDLE
    assert all(source.stopped for source in sink.sources)
