"""Unit tests for the cancellable tool runner, work sets, and chapter transcoding."""

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Sequence

import pytest
from pytest import MonkeyPatch

from readaloud.cancellation import CancelToken
from readaloud.errors import Cancelled, MuxFailed, ProbeFailed, TranscodeFailed
from readaloud.export import tools as tools_module
from readaloud.export import transcode as transcode_module
from readaloud.export.tools import run_tool
from readaloud.export.transcode import (
    CANONICAL_CHANNELS,
    CANONICAL_CODEC,
    CANONICAL_SAMPLE_RATE,
    ChapterTranscoder,
)
from readaloud.export.workset import EphemeralWorkSet
from readaloud.models.datatypes import Chapter
from readaloud.runtime_tools import MediaTools


class _FakeProcess:
    """Popen double with scripted output and kill tracking."""

    def __init__(
        self,
        *,
        returncode: int = 0,
        stdout: str = "",
        stderr: str = "",
        hang: bool = False,
        on_poll=None,  # type: ignore[no-untyped-def]
    ) -> None:
        self._final_returncode = returncode
        self.returncode: int | None = None
        self.stdout = stdout
        self.stderr = stderr
        self.hang = hang
        self.on_poll = on_poll
        self.killed = False

    def communicate(self, timeout: float | None = None) -> tuple[str, str]:
        if self.hang and not self.killed:
            if self.on_poll is not None:
                self.on_poll()
            raise subprocess.TimeoutExpired(cmd="tool", timeout=timeout or 0)
        self.returncode = self._final_returncode
        return self.stdout, self.stderr

    def poll(self) -> int | None:
        return self.returncode

    def kill(self) -> None:
        self.killed = True
        self.returncode = -9

    def wait(self) -> int:
        if self.returncode is None:
            self.returncode = self._final_returncode
        return self.returncode


def _patch_popen(monkeypatch: MonkeyPatch, process: _FakeProcess) -> list[list[str]]:
    commands: list[list[str]] = []

    def _popen(command: list[str], **kwargs: object) -> _FakeProcess:
        commands.append(command)
        return process

    monkeypatch.setattr(tools_module.subprocess, "Popen", _popen)
    return commands


def test_run_tool_returns_stdout(monkeypatch: MonkeyPatch) -> None:
    """Successful runs should return captured stdout."""

    commands = _patch_popen(monkeypatch, _FakeProcess(stdout="12.5\n"))

    output = run_tool(["ffprobe", "x.wav"], stage="probe", error_type=ProbeFailed)

    assert output == "12.5\n"
    assert commands == [["ffprobe", "x.wav"]]


def test_run_tool_maps_non_zero_exit_to_stage_error(monkeypatch: MonkeyPatch) -> None:
    """Non-zero exits should raise the caller's error type with the stderr tail."""

    _patch_popen(monkeypatch, _FakeProcess(returncode=1, stderr="x" * 500 + "codec missing"))

    with pytest.raises(MuxFailed) as exc_info:
        run_tool(["ffmpeg"], stage="mux", error_type=MuxFailed, hint="install codecs")

    error = exc_info.value
    assert error.stage == "mux"
    assert error.kind == "mux_failed"
    assert error.detail.endswith("codec missing")
    assert "exited with status 1" in error.detail
    assert error.hint == "install codecs"


def test_run_tool_reports_missing_executable(monkeypatch: MonkeyPatch) -> None:
    """Missing executables should raise the stage error with an install hint."""

    def _missing(command: list[str], **kwargs: object) -> _FakeProcess:
        raise FileNotFoundError(command[0])

    monkeypatch.setattr(tools_module.subprocess, "Popen", _missing)

    with pytest.raises(TranscodeFailed) as exc_info:
        run_tool(["ffmpeg"], stage="transcode", error_type=TranscodeFailed)

    assert "not available on PATH" in exc_info.value.detail
    assert exc_info.value.hint is not None


def test_run_tool_kills_process_when_cancelled(monkeypatch: MonkeyPatch) -> None:
    """Cancelling mid-run should kill and reap the process before raising."""

    token = CancelToken("export")
    process = _FakeProcess(hang=True, on_poll=token.cancel)
    _patch_popen(monkeypatch, process)

    with pytest.raises(Cancelled):
        run_tool(["ffmpeg"], stage="mux", error_type=MuxFailed, cancel_token=token)

    assert process.killed is True


def test_run_tool_skips_launch_for_cancelled_token(monkeypatch: MonkeyPatch) -> None:
    """No process should start when the token is already cancelled."""

    commands = _patch_popen(monkeypatch, _FakeProcess())
    token = CancelToken()
    token.cancel()

    with pytest.raises(Cancelled):
        run_tool(["ffmpeg"], stage="transcode", error_type=TranscodeFailed, cancel_token=token)

    assert commands == []


def test_work_set_removes_directory_once(tmp_path: Path) -> None:
    """The work set directory should be removed on exit and cleanup should be idempotent."""

    with EphemeralWorkSet(parent=tmp_path) as work_set:
        first = work_set.unique_path("chapter", ".wav")
        second = work_set.unique_path("chapter", ".wav")
        first.write_bytes(b"data")
        root = work_set.root
        assert first != second
        assert first.parent == root

    assert not root.exists()
    work_set.cleanup()
    assert list(tmp_path.iterdir()) == []


def test_work_set_root_requires_create() -> None:
    """Accessing the root before creation should fail loudly."""

    with pytest.raises(RuntimeError):
        _ = EphemeralWorkSet().root


def _fake_transcode_tool(durations: list[str], calls: list[tuple[str, list[str]]]):  # type: ignore[no-untyped-def]
    def _run_tool(command: Sequence[str], *, stage: str, **kwargs: object) -> str:
        calls.append((stage, list(command)))
        if stage == "transcode":
            Path(command[-1]).write_bytes(b"RIFF-canonical")
            return ""
        return durations.pop(0)

    return _run_tool


def test_transcoder_produces_canonical_chapter_and_removes_raw_input(
    monkeypatch: MonkeyPatch,
    tmp_path: Path,
) -> None:
    """Transcoding should request canonical PCM, probe duration, and delete raw input."""

    calls: list[tuple[str, list[str]]] = []
    monkeypatch.setattr(transcode_module, "run_tool", _fake_transcode_tool(["12.5\n"], calls))
    transcoder = ChapterTranscoder(MediaTools(ffmpeg="ff", ffprobe="fp"))

    with EphemeralWorkSet(parent=tmp_path) as work_set:
        result = transcoder.transcode(Chapter("Intro", b"mp3"), 0, work_set, CancelToken())
        remaining = sorted(path.suffix for path in work_set.root.iterdir())

    assert result.title == "Intro"
    assert result.duration_seconds == 12.5
    assert remaining == [".wav"]
    transcode_command = calls[0][1]
    assert transcode_command[0] == "ff"
    assert transcode_command[transcode_command.index("-ar") + 1] == str(CANONICAL_SAMPLE_RATE)
    assert transcode_command[transcode_command.index("-ac") + 1] == str(CANONICAL_CHANNELS)
    assert transcode_command[transcode_command.index("-c:a") + 1] == CANONICAL_CODEC
    assert calls[1][0] == "probe"
    assert calls[1][1][0] == "fp"


def test_transcoder_removes_raw_input_when_ffmpeg_fails(
    monkeypatch: MonkeyPatch,
    tmp_path: Path,
) -> None:
    """Raw chapter input should be deleted even when transcoding fails."""

    def _failing(command: Sequence[str], *, stage: str, **kwargs: object) -> str:
        raise TranscodeFailed(stage=stage, detail="bad input")

    monkeypatch.setattr(transcode_module, "run_tool", _failing)

    with EphemeralWorkSet(parent=tmp_path) as work_set:
        with pytest.raises(TranscodeFailed):
            ChapterTranscoder().transcode(Chapter("Intro", b"junk"), 0, work_set, CancelToken())
        assert list(work_set.root.iterdir()) == []


@pytest.mark.parametrize("probe_output", ["N/A\n", "", "-1.0", "inf"])
def test_transcoder_rejects_unusable_probe_output(
    monkeypatch: MonkeyPatch,
    tmp_path: Path,
    probe_output: str,
) -> None:
    """Unparseable or invalid durations should raise `ProbeFailed`."""

    calls: list[tuple[str, list[str]]] = []
    monkeypatch.setattr(transcode_module, "run_tool", _fake_transcode_tool([probe_output], calls))

    with EphemeralWorkSet(parent=tmp_path) as work_set:
        with pytest.raises(ProbeFailed):
            ChapterTranscoder().transcode(Chapter("Intro", b"mp3"), 0, work_set, CancelToken())
