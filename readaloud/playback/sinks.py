"""Audio output sinks for interactive playback.

Responsibilities:
- Define the protocol the playback controller uses to start and stop audio.
- Provide an `ffplay`-backed sink that pipes encoded audio through an asyncio subprocess.
"""

from __future__ import annotations

import asyncio
from typing import Callable, Protocol

from ..telemetry.logger import EventLogger

FFPLAY_ARGS = ("-nodisp", "-autoexit", "-loglevel", "error", "-i", "pipe:0")


class AudioSource(Protocol):
    """One playing audio buffer."""

    def stop(self) -> None:
        """Stop playback; the ended callback must not fire afterwards."""


class AudioSink(Protocol):
    """Audio output device."""

    def play(self, audio: bytes, on_ended: Callable[[], None]) -> AudioSource:
        """Start playing `audio`; call `on_ended` once when it finishes naturally."""


class FfplaySource:
    """Audio source backed by one `ffplay` process."""

    def __init__(self, executable: str, audio: bytes, event_logger: EventLogger | None) -> None:
        self._executable = executable
        self._audio = audio
        self._event_logger = event_logger
        self._process: asyncio.subprocess.Process | None = None
        self._stopped = False
        self._task: asyncio.Task[None] | None = None

    def start(self, on_ended: Callable[[], None]) -> None:
        self._task = asyncio.get_running_loop().create_task(self._run(on_ended))

    async def _run(self, on_ended: Callable[[], None]) -> None:
        try:
            self._process = await asyncio.create_subprocess_exec(
                self._executable,
                *FFPLAY_ARGS,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except FileNotFoundError as exc:
            if self._event_logger is not None:
                self._event_logger.failure("sink", exc, executable=self._executable)
            return
        if self._stopped:
            self._kill()
            return

        stdin = self._process.stdin
        if stdin is not None:
            try:
                stdin.write(self._audio)
                await stdin.drain()
            except (BrokenPipeError, ConnectionResetError):
                pass
            finally:
                stdin.close()
        return_code = await self._process.wait()
        if self._stopped:
            return
        if return_code != 0 and self._event_logger is not None:
            self._event_logger.warning("sink", "player_exit", return_code=return_code)
        on_ended()

    def stop(self) -> None:
        if self._stopped:
            return
        self._stopped = True
        self._kill()

    def _kill(self) -> None:
        process = self._process
        if process is not None and process.returncode is None:
            try:
                process.kill()
            except ProcessLookupError:
                pass


class FfplaySink:
    """Play encoded audio buffers with `ffplay` reading from stdin."""

    def __init__(self, executable: str = "ffplay", event_logger: EventLogger | None = None) -> None:
        self.executable = executable
        self.event_logger = event_logger

    def play(self, audio: bytes, on_ended: Callable[[], None]) -> FfplaySource:
        source = FfplaySource(self.executable, audio, self.event_logger)
        source.start(on_ended)
        return source
