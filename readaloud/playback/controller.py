"""Interactive playback controller driving the pure state machine.

Responsibilities:
- Own one `PlaybackState` and apply events through `transition`.
- Execute effects: synthesis fetches, audio sources, cache maintenance, and timers.
- Keep at most one synthesis request and one audio source in flight at a time.

All public methods must be called on the event loop thread.
"""

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass
from typing import Awaitable, Callable

from ..cancellation import CancelToken
from ..errors import Cancelled, ReadAloudError
from ..telemetry.logger import EventLogger
from ..text.segmenter import INTERACTIVE_BLOCK_CHARS, TextSegmenter
from ..tts.synthesizer import Synthesizer
from ..tts.voices import VoiceProfile
from .cache import AudioCache
from .sinks import AudioSink, AudioSource
from .state import (
    CancelFetch,
    CancelPrefetch,
    ClearCache,
    FetchCompleted,
    FetchFailed,
    JumpToIndex,
    PlaybackEffect,
    PlaybackEvent,
    PlaybackState,
    PlayBuffer,
    ReportError,
    SchedulePrefetch,
    ScheduleSkipRelease,
    SetText,
    SkipBackward,
    SkipForward,
    SkipSettled,
    SourceEnded,
    StartFetch,
    Stop,
    StopSource,
    TogglePlay,
    VoiceChanged,
    transition,
)

_PREFETCH_RETRY_LIMIT = 4


@dataclass(slots=True)
class _SynthesisJob:
    key: str
    token: CancelToken
    task: asyncio.Task


class PlaybackController:
    """Interactive listening session over one document."""

    def __init__(
        self,
        synthesizer: Synthesizer,
        sink: AudioSink,
        *,
        voice: VoiceProfile | None = None,
        cache: AudioCache | None = None,
        segmenter: TextSegmenter | None = None,
        block_chars: int | None = INTERACTIVE_BLOCK_CHARS,
        prefetch_delay_seconds: float = 0.25,
        skip_debounce_seconds: float = 0.3,
        response_format: str = "mp3",
        on_error: Callable[[Exception], None] | None = None,
        on_state_change: Callable[[PlaybackState], None] | None = None,
        event_logger: EventLogger | None = None,
    ) -> None:
        self.synthesizer = synthesizer
        self.sink = sink
        self.voice = voice or VoiceProfile()
        self.cache = cache or AudioCache()
        self.segmenter = segmenter or TextSegmenter()
        self.block_chars = block_chars
        self.prefetch_delay_seconds = prefetch_delay_seconds
        self.skip_debounce_seconds = skip_debounce_seconds
        self.response_format = response_format
        self.on_error = on_error
        self.on_state_change = on_state_change
        self.event_logger = event_logger

        self._state = PlaybackState()
        self._pending_events: deque[PlaybackEvent] = deque()
        self._dispatching = False
        self._foreground: _SynthesisJob | None = None
        self._prefetch: _SynthesisJob | None = None
        self._last_synthesis: asyncio.Task | None = None
        self._source: AudioSource | None = None
        self._timers: set[asyncio.Task] = set()
        self._prefetch_timers: set[asyncio.Task] = set()
        self._tasks: set[asyncio.Task] = set()

    @property
    def state(self) -> PlaybackState:
        return self._state

    # Public commands

    def set_text(self, text: str) -> None:
        """Load a new document; playback restarts from the first block."""

        blocks = tuple(self.segmenter.segment(text, self.block_chars))
        self._log("info", "set_text", blocks=len(blocks))
        self._dispatch(SetText(blocks=blocks))

    def toggle_play(self) -> None:
        self._dispatch(TogglePlay())

    def skip_forward(self) -> None:
        self._dispatch(SkipForward())

    def skip_backward(self) -> None:
        self._dispatch(SkipBackward())

    def stop(self) -> None:
        self._dispatch(Stop())

    def jump_to_index(self, index: int, autoplay: bool = False) -> None:
        self._dispatch(JumpToIndex(index=index, autoplay=autoplay))

    def set_voice(self, voice: VoiceProfile) -> None:
        """Switch voice settings; cached audio is dropped and active playback restarts."""

        self.voice = voice
        self._log("info", "set_voice", voice=voice.voice, speed=voice.speed)
        self._dispatch(VoiceChanged())

    async def drain(self) -> None:
        """Wait until no fetch, prefetch, or timer task is pending."""

        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        """Stop playback and wait for background work to finish."""

        self.stop()
        for timer in list(self._timers):
            timer.cancel()
        await self.drain()

    # Dispatch

    def _dispatch(self, event: PlaybackEvent) -> None:
        self._pending_events.append(event)
        if self._dispatching:
            return
        self._dispatching = True
        try:
            while self._pending_events:
                current = self._pending_events.popleft()
                previous = self._state
                result = transition(previous, current)
                self._state = result.state
                for effect in result.effects:
                    self._execute(effect)
                if result.state != previous:
                    self._log(
                        "debug",
                        "transition",
                        trigger=type(current).__name__,
                        status=result.state.status.value,
                        index=result.state.current_index,
                        generation=result.state.generation,
                    )
                    if self.on_state_change is not None:
                        self.on_state_change(result.state)
        finally:
            self._dispatching = False

    def _execute(self, effect: PlaybackEffect) -> None:
        if isinstance(effect, CancelFetch):
            self._cancel_foreground()
        elif isinstance(effect, CancelPrefetch):
            self._cancel_prefetch()
        elif isinstance(effect, StopSource):
            self._stop_source()
        elif isinstance(effect, ClearCache):
            self.cache.clear()
        elif isinstance(effect, StartFetch):
            self._start_fetch(effect.index, effect.generation)
        elif isinstance(effect, PlayBuffer):
            self._play(effect.audio, effect.generation)
        elif isinstance(effect, SchedulePrefetch):
            self._schedule_prefetch(effect.index, effect.stagger)
        elif isinstance(effect, ScheduleSkipRelease):
            self._spawn_timer(self._release_skip_later(effect.serial))
        elif isinstance(effect, ReportError):
            self._report(effect.error)

    # Effects

    def _cancel_foreground(self) -> None:
        job = self._foreground
        self._foreground = None
        if job is not None:
            job.token.cancel()

    def _cancel_prefetch(self) -> None:
        for timer in list(self._prefetch_timers):
            timer.cancel()
        self._prefetch_timers.clear()
        self._cancel_prefetch_job()

    def _stop_source(self) -> None:
        source = self._source
        self._source = None
        if source is not None:
            source.stop()

    def _play(self, audio: bytes, generation: int) -> None:
        self._stop_source()
        loop = asyncio.get_running_loop()

        def _ended() -> None:
            loop.call_soon_threadsafe(self._dispatch, SourceEnded(generation=generation))

        self._source = self.sink.play(audio, _ended)
        self._log("debug", "play", index=self._state.current_index, bytes=len(audio))

    def _start_fetch(self, index: int, generation: int) -> None:
        text = self._state.blocks[index].text
        key = self.cache.make_key(text)
        cached = self.cache.get(key)
        if cached is not None:
            self._log("debug", "cache_hit", index=index)
            self._dispatch(FetchCompleted(generation=generation, audio=cached))
            return

        prefetch = self._prefetch
        if prefetch is not None and prefetch.key == key and not prefetch.token.cancelled:
            self._prefetch = None
            self._log("debug", "adopt_prefetch", index=index)
            job_token = prefetch.token
            task = self._spawn(
                self._finish_fetch(key, text, generation, job_token, adopted=prefetch.task)
            )
        else:
            self._cancel_prefetch_job()
            job_token = CancelToken(f"fetch block {index}")
            task = self._spawn(self._finish_fetch(key, text, generation, job_token, adopted=None))
        self._foreground = _SynthesisJob(key=key, token=job_token, task=task)

    def _cancel_prefetch_job(self) -> None:
        job = self._prefetch
        self._prefetch = None
        if job is not None:
            job.token.cancel()

    async def _finish_fetch(
        self,
        key: str,
        text: str,
        generation: int,
        token: CancelToken,
        adopted: asyncio.Task | None,
    ) -> None:
        audio: bytes | None = None
        try:
            if adopted is not None:
                audio = await adopted
            if audio is None:
                audio = await self._synthesize(text, token)
        except Cancelled:
            self._release_foreground(token)
            self._log("debug", "fetch_cancelled", generation=generation)
            return
        except ReadAloudError as exc:
            self._release_foreground(token)
            if not token.cancelled:
                self._dispatch(FetchFailed(generation=generation, error=exc))
            return

        self._release_foreground(token)
        if token.cancelled:
            return
        self.cache.set(key, audio)
        self._dispatch(FetchCompleted(generation=generation, audio=audio))

    def _release_foreground(self, token: CancelToken) -> None:
        if self._foreground is not None and self._foreground.token is token:
            self._foreground = None

    def _synthesize(self, text: str, token: CancelToken) -> Awaitable[bytes]:
        previous = self._last_synthesis
        task = asyncio.ensure_future(self._synthesize_after(previous, text, token))
        self._last_synthesis = task
        return task

    async def _synthesize_after(
        self,
        previous: asyncio.Task | None,
        text: str,
        token: CancelToken,
    ) -> bytes:
        if previous is not None and not previous.done():
            await asyncio.wait({previous})
        token.raise_if_cancelled("synthesize")
        return await asyncio.to_thread(
            self.synthesizer.synthesize,
            text,
            self.voice,
            token,
            response_format=self.response_format,
        )

    def _schedule_prefetch(self, index: int, stagger: int) -> None:
        blocks = self._state.blocks
        if not 0 <= index < len(blocks):
            return
        text = blocks[index].text
        if self.cache.has(self.cache.make_key(text)):
            return
        delay = self.prefetch_delay_seconds * stagger
        self._spawn_prefetch_timer(delay, text, _PREFETCH_RETRY_LIMIT)

    async def _prefetch_later(self, delay: float, text: str, attempts_left: int) -> None:
        await asyncio.sleep(delay)
        key = self.cache.make_key(text)
        if self.cache.has(key) or self._foreground is not None:
            return
        current = self._prefetch
        if current is not None:
            if current.key != key and attempts_left > 0:
                self._spawn_prefetch_timer(delay, text, attempts_left - 1)
            return
        token = CancelToken("prefetch")
        task = self._spawn(self._run_prefetch(key, text, token))
        self._prefetch = _SynthesisJob(key=key, token=token, task=task)

    async def _run_prefetch(self, key: str, text: str, token: CancelToken) -> bytes | None:
        try:
            audio = await self._synthesize(text, token)
        except Cancelled:
            return None
        except ReadAloudError as exc:
            if self.event_logger is not None:
                self.event_logger.failure("controller", exc, operation="prefetch")
            return None
        finally:
            if self._prefetch is not None and self._prefetch.token is token:
                self._prefetch = None
        if token.cancelled:
            return None
        self.cache.set(key, audio)
        return audio

    async def _release_skip_later(self, serial: int) -> None:
        await asyncio.sleep(self.skip_debounce_seconds)
        self._dispatch(SkipSettled(serial=serial))

    def _report(self, error: Exception) -> None:
        if self.event_logger is not None:
            self.event_logger.failure("controller", error, index=self._state.current_index)
        if self.on_error is not None:
            self.on_error(error)

    def _spawn(self, coroutine: Awaitable) -> asyncio.Task:
        task = asyncio.ensure_future(coroutine)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _spawn_timer(self, coroutine: Awaitable) -> asyncio.Task:
        timer = self._spawn(coroutine)
        self._timers.add(timer)
        timer.add_done_callback(self._timers.discard)
        return timer

    def _spawn_prefetch_timer(self, delay: float, text: str, attempts_left: int) -> None:
        timer = self._spawn_timer(self._prefetch_later(delay, text, attempts_left))
        self._prefetch_timers.add(timer)
        timer.add_done_callback(self._prefetch_timers.discard)

    def _log(self, level: str, event: str, **context: object) -> None:
        if self.event_logger is None:
            return
        getattr(self.event_logger, level)("controller", event, **context)
