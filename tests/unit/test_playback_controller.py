"""Unit tests for the interactive playback controller with fake synthesis and sinks."""

from __future__ import annotations

import asyncio
import io
import threading
from typing import Callable

from readaloud.cancellation import CancelToken
from readaloud.errors import SynthesisFailed
from readaloud.playback.cache import AudioCache
from readaloud.playback.controller import PlaybackController
from readaloud.playback.state import PlaybackStatus
from readaloud.telemetry.logger import EventLogger
from readaloud.tts.voices import VoiceProfile


def _audio_for(text: str) -> bytes:
    return f"audio:{text}".encode("utf-8")


class RecordingSynthesizer:
    """Synthesizer double that answers immediately and records every request."""

    def __init__(self) -> None:
        self.calls: list[str] = []

    def synthesize(
        self,
        text: str,
        voice: VoiceProfile,
        cancel_token: CancelToken,
        *,
        response_format: str = "mp3",
    ) -> bytes:
        self.calls.append(text)
        return _audio_for(text)


class GatedSynthesizer:
    """Synthesizer double that blocks until released and tracks concurrency."""

    def __init__(self) -> None:
        self.calls: list[str] = []
        self.release = threading.Event()
        self.max_active = 0
        self._active = 0
        self._lock = threading.Lock()

    def synthesize(
        self,
        text: str,
        voice: VoiceProfile,
        cancel_token: CancelToken,
        *,
        response_format: str = "mp3",
    ) -> bytes:
        with self._lock:
            self.calls.append(text)
            self._active += 1
            self.max_active = max(self.max_active, self._active)
        try:
            while not self.release.wait(0.01):
                cancel_token.raise_if_cancelled("synthesize")
            cancel_token.raise_if_cancelled("synthesize")
            return _audio_for(text)
        finally:
            with self._lock:
                self._active -= 1


class FailingSynthesizer:
    """Synthesizer double that always fails with a backend error."""

    def synthesize(
        self,
        text: str,
        voice: VoiceProfile,
        cancel_token: CancelToken,
        *,
        response_format: str = "mp3",
    ) -> bytes:
        raise SynthesisFailed(detail="backend unavailable", failure_kind="http_error")


class RecordingSource:
    """Audio source double exposing its ended callback to the test."""

    def __init__(self, audio: bytes, on_ended: Callable[[], None]) -> None:
        self.audio = audio
        self.on_ended = on_ended
        self.stopped = False

    def stop(self) -> None:
        self.stopped = True


class RecordingSink:
    """Audio sink double that records every buffer handed to it."""

    def __init__(self) -> None:
        self.sources: list[RecordingSource] = []

    @property
    def played(self) -> list[bytes]:
        return [source.audio for source in self.sources]

    def play(self, audio: bytes, on_ended: Callable[[], None]) -> RecordingSource:
        source = RecordingSource(audio, on_ended)
        self.sources.append(source)
        return source


class AutoEndingSink(RecordingSink):
    """Audio sink double whose sources end on their own after a short delay."""

    def __init__(self, duration_seconds: float = 0.01) -> None:
        super().__init__()
        self.duration_seconds = duration_seconds

    def play(self, audio: bytes, on_ended: Callable[[], None]) -> RecordingSource:
        source = super().play(audio, on_ended)

        def _finish() -> None:
            if not source.stopped:
                on_ended()

        asyncio.get_running_loop().call_later(self.duration_seconds, _finish)
        return source


def _unstopped(sink: RecordingSink) -> int:
    return sum(1 for source in sink.sources if not source.stopped)


def _controller(synthesizer, sink, **kwargs) -> PlaybackController:  # type: ignore[no-untyped-def]
    kwargs.setdefault("prefetch_delay_seconds", 0)
    kwargs.setdefault("skip_debounce_seconds", 0)
    return PlaybackController(synthesizer, sink, **kwargs)


def test_play_then_natural_end_advances_with_prefetched_audio() -> None:
    """Playback should prefetch the next block and advance on natural end without refetching."""

    synthesizer = RecordingSynthesizer()
    sink = RecordingSink()
    controller = _controller(synthesizer, sink)

    async def scenario() -> None:
        controller.set_text("First block.\nSecond block.")
        controller.toggle_play()
        await controller.drain()

        assert controller.state.status is PlaybackStatus.PLAYING
        assert sink.played == [_audio_for("First block.")]
        assert synthesizer.calls == ["First block.", "Second block."]

        sink.sources[-1].on_ended()
        await asyncio.sleep(0)
        await controller.drain()

        assert controller.state.current_index == 1
        assert sink.played[-1] == _audio_for("Second block.")
        assert synthesizer.calls == ["First block.", "Second block."]

        sink.sources[-1].on_ended()
        await asyncio.sleep(0)
        await controller.drain()

    asyncio.run(scenario())

    assert controller.state.status is PlaybackStatus.STOPPED
    assert len(sink.played) == 2


def test_skip_cancels_in_flight_fetch_without_caching_it() -> None:
    """A skip should abort the pending request, skip its cache write, and play the target."""

    synthesizer = GatedSynthesizer()
    sink = RecordingSink()
    cache = AudioCache()
    controller = _controller(synthesizer, sink, cache=cache)

    async def scenario() -> None:
        controller.set_text("Block zero.\nBlock one.\nBlock two.")
        controller.toggle_play()
        await asyncio.sleep(0.05)
        controller.skip_forward()
        synthesizer.release.set()
        await controller.drain()

    asyncio.run(scenario())

    assert controller.state.status is PlaybackStatus.PLAYING
    assert controller.state.current_index == 1
    assert controller.state.skip_in_progress is False
    assert sink.played == [_audio_for("Block one.")]
    assert cache.has("Block zero.") is False
    assert cache.has("Block one.") is True
    assert synthesizer.max_active == 1


def test_toggle_adopts_matching_prefetch_instead_of_requesting_again() -> None:
    """Starting playback while the same block is prefetching should reuse that request."""

    synthesizer = GatedSynthesizer()
    sink = RecordingSink()
    controller = _controller(synthesizer, sink)

    async def scenario() -> None:
        controller.set_text("Block zero.\nBlock one.")
        await asyncio.sleep(0.05)
        controller.toggle_play()
        synthesizer.release.set()
        await controller.drain()

    asyncio.run(scenario())

    assert synthesizer.calls.count("Block zero.") == 1
    assert sink.played == [_audio_for("Block zero.")]
    assert synthesizer.max_active == 1


def test_fetch_failure_pauses_and_reports_error() -> None:
    """Backend failures should pause playback and reach the error callback."""

    errors: list[Exception] = []
    sink = RecordingSink()
    controller = _controller(FailingSynthesizer(), sink, on_error=errors.append)

    async def scenario() -> None:
        controller.set_text("Only block.")
        controller.toggle_play()
        await controller.drain()

    asyncio.run(scenario())

    assert controller.state.status is PlaybackStatus.PAUSED
    assert len(errors) == 1
    assert isinstance(errors[0], SynthesisFailed)
    assert sink.played == []


def test_stale_ended_callback_after_pause_does_not_advance() -> None:
    """An ended callback from a stopped source should be ignored."""

    sink = RecordingSink()
    controller = _controller(RecordingSynthesizer(), sink)

    async def scenario() -> None:
        controller.set_text("One.\nTwo.")
        controller.toggle_play()
        await controller.drain()
        first_source = sink.sources[-1]

        controller.toggle_play()
        first_source.on_ended()
        await asyncio.sleep(0)
        await controller.drain()

        assert first_source.stopped is True

    asyncio.run(scenario())

    assert controller.state.status is PlaybackStatus.PAUSED
    assert controller.state.current_index == 0


def test_voice_change_clears_cache_and_replays_current_block() -> None:
    """Changing voice while playing should drop cached audio and synthesize again."""

    synthesizer = RecordingSynthesizer()
    sink = RecordingSink()
    cache = AudioCache()
    controller = _controller(synthesizer, sink, cache=cache)

    async def scenario() -> None:
        controller.set_text("Only block.")
        controller.toggle_play()
        await controller.drain()
        controller.set_voice(VoiceProfile(voice="nova"))
        await controller.drain()

    asyncio.run(scenario())

    assert controller.voice.voice == "nova"
    assert controller.state.status is PlaybackStatus.PLAYING
    assert synthesizer.calls == ["Only block.", "Only block."]
    assert len(sink.played) == 2
    assert sink.sources[0].stopped is True


def test_close_stops_source_and_clears_session() -> None:
    """Closing should stop audio and leave an empty idle session."""

    states: list[PlaybackStatus] = []
    sink = RecordingSink()
    controller = _controller(
        RecordingSynthesizer(),
        sink,
        on_state_change=lambda state: states.append(state.status),
    )

    async def scenario() -> None:
        controller.set_text("One.")
        controller.toggle_play()
        await controller.drain()
        await controller.close()

    asyncio.run(scenario())

    assert sink.sources[-1].stopped is True
    assert controller.state.status is PlaybackStatus.IDLE
    assert controller.state.blocks == ()
    assert PlaybackStatus.PLAYING in states


def test_block_ending_inside_skip_debounce_still_advances() -> None:
    """A short block that ends during the debounce window should advance once it settles."""

    sink = AutoEndingSink(duration_seconds=0.01)
    controller = _controller(RecordingSynthesizer(), sink, skip_debounce_seconds=0.3)

    async def scenario() -> None:
        controller.set_text("A.\nB.\nC.")
        controller.toggle_play()
        controller.skip_forward()
        await asyncio.sleep(1.0)
        await controller.drain()

    asyncio.run(scenario())

    assert controller.state.status is PlaybackStatus.STOPPED
    assert controller.state.current_index == 2
    assert controller.state.skip_in_progress is False
    assert sink.played == [_audio_for("B."), _audio_for("C.")]


def test_mixed_commands_keep_one_source_and_one_request() -> None:
    """Any command sequence should leave at most one live source and one request in flight."""

    synthesizer = GatedSynthesizer()
    sink = RecordingSink()
    controller = _controller(
        synthesizer,
        sink,
        prefetch_delay_seconds=0.01,
        skip_debounce_seconds=0.05,
    )
    commands = [
        "toggle_play",
        "skip_forward",
        "skip_backward",
        "toggle_play",
        "toggle_play",
        "skip_forward",
        "skip_forward",
        "toggle_play",
        "skip_backward",
        "toggle_play",
        "stop",
    ]

    async def scenario() -> None:
        controller.set_text("Block zero.\nBlock one.\nBlock two.\nBlock three.")
        for step, command in enumerate(commands):
            if step == 3:
                synthesizer.release.set()
            getattr(controller, command)()
            await asyncio.sleep(0.03)
            assert synthesizer.max_active <= 1, command
            assert _unstopped(sink) <= 1, command
        await controller.close()

    asyncio.run(scenario())

    assert synthesizer.calls
    assert synthesizer.max_active == 1
    assert _unstopped(sink) == 0
    assert controller.state.status is PlaybackStatus.IDLE


def test_transitions_are_logged_with_triggering_event() -> None:
    """Every state change should emit a debug line naming the event that caused it."""

    sink_stream = io.StringIO()
    event_logger = EventLogger(sink=sink_stream, level="DEBUG")
    sink = RecordingSink()
    controller = _controller(RecordingSynthesizer(), sink, event_logger=event_logger)

    async def scenario() -> None:
        controller.set_text("One.\nTwo.")
        controller.toggle_play()
        await controller.drain()
        controller.stop()

    try:
        asyncio.run(scenario())
    finally:
        event_logger.close()

    lines = sink_stream.getvalue().splitlines()
    transitions = [line for line in lines if "event=transition" in line]
    assert any("trigger=SetText" in line and "status=idle" in line for line in transitions)
    assert any("trigger=TogglePlay" in line and "status=processing" in line for line in transitions)
    assert any("trigger=FetchCompleted" in line and "status=playing" in line for line in transitions)
    assert any("trigger=Stop" in line for line in transitions)
    assert controller.state.status is PlaybackStatus.IDLE
