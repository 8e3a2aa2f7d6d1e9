"""Pure playback state machine.

Responsibilities:
- Hold the explicit playback session state as an immutable record.
- Map `(state, event)` to the next state plus the side effects to execute.
- Invalidate stale fetch completions and ended events through a generation counter.

Key types:
- `PlaybackState`, the event records, the effect records, and `transition`.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum

from ..models.datatypes import Block


class PlaybackStatus(str, Enum):
    """Lifecycle status of an interactive listening session."""

    IDLE = "idle"
    PLAYING = "playing"
    PAUSED = "paused"
    PROCESSING = "processing"
    STOPPED = "stopped"


_ACTIVE_STATUSES = frozenset({PlaybackStatus.PLAYING, PlaybackStatus.PROCESSING})


@dataclass(frozen=True, slots=True)
class PlaybackState:
    """Snapshot of one listening session.

    Attributes:
        status: Current lifecycle status.
        current_index: Index of the block being played or about to be played.
        blocks: Segmented document blocks.
        generation: Bumped by every transition that invalidates in-flight work.
        skip_in_progress: Set while the skip debounce window is open.
        skip_serial: Identifies the latest skip so only its release clears the flag.
        deferred_end: Generation of a natural end that arrived inside the debounce
            window; replayed when the skip settles.
    """

    status: PlaybackStatus = PlaybackStatus.IDLE
    current_index: int = 0
    blocks: tuple[Block, ...] = ()
    generation: int = 0
    skip_in_progress: bool = False
    skip_serial: int = 0
    deferred_end: int | None = None

    @property
    def is_playing(self) -> bool:
        return self.status is PlaybackStatus.PLAYING

    @property
    def is_processing(self) -> bool:
        return self.status is PlaybackStatus.PROCESSING

    @property
    def is_active(self) -> bool:
        return self.status in _ACTIVE_STATUSES

    @property
    def current_block(self) -> Block | None:
        if not self.blocks:
            return None
        return self.blocks[self.current_index]


# Events


@dataclass(frozen=True, slots=True)
class SetText:
    blocks: tuple[Block, ...]


@dataclass(frozen=True, slots=True)
class TogglePlay:
    pass


@dataclass(frozen=True, slots=True)
class SourceEnded:
    generation: int


@dataclass(frozen=True, slots=True)
class SkipForward:
    pass


@dataclass(frozen=True, slots=True)
class SkipBackward:
    pass


@dataclass(frozen=True, slots=True)
class Stop:
    pass


@dataclass(frozen=True, slots=True)
class JumpToIndex:
    index: int
    autoplay: bool = False


@dataclass(frozen=True, slots=True)
class FetchCompleted:
    generation: int
    audio: bytes


@dataclass(frozen=True, slots=True)
class FetchFailed:
    generation: int
    error: Exception


@dataclass(frozen=True, slots=True)
class SkipSettled:
    serial: int


@dataclass(frozen=True, slots=True)
class VoiceChanged:
    pass


PlaybackEvent = (
    SetText
    | TogglePlay
    | SourceEnded
    | SkipForward
    | SkipBackward
    | Stop
    | JumpToIndex
    | FetchCompleted
    | FetchFailed
    | SkipSettled
    | VoiceChanged
)


# Effects


@dataclass(frozen=True, slots=True)
class CancelFetch:
    pass


@dataclass(frozen=True, slots=True)
class CancelPrefetch:
    pass


@dataclass(frozen=True, slots=True)
class StopSource:
    pass


@dataclass(frozen=True, slots=True)
class ClearCache:
    pass


@dataclass(frozen=True, slots=True)
class StartFetch:
    index: int
    generation: int


@dataclass(frozen=True, slots=True)
class PlayBuffer:
    audio: bytes
    generation: int


@dataclass(frozen=True, slots=True)
class SchedulePrefetch:
    """Prefetch block `index` after `stagger` prefetch delays."""

    index: int
    stagger: int = 1


@dataclass(frozen=True, slots=True)
class ScheduleSkipRelease:
    serial: int


@dataclass(frozen=True, slots=True)
class ReportError:
    error: Exception


PlaybackEffect = (
    CancelFetch
    | CancelPrefetch
    | StopSource
    | ClearCache
    | StartFetch
    | PlayBuffer
    | SchedulePrefetch
    | ScheduleSkipRelease
    | ReportError
)


@dataclass(frozen=True, slots=True)
class Transition:
    """Next state and the effects the controller must execute, in order."""

    state: PlaybackState
    effects: tuple[PlaybackEffect, ...] = ()


_INTERRUPT: tuple[PlaybackEffect, ...] = (CancelFetch(), StopSource())


def _clamp(index: int, blocks: tuple[Block, ...]) -> int:
    return max(0, min(index, len(blocks) - 1))


def _unchanged(state: PlaybackState) -> Transition:
    return Transition(state=state)


def transition(state: PlaybackState, event: PlaybackEvent) -> Transition:
    """Return the transition for `event` applied to `state`.

    The function is pure; unknown or inapplicable events leave the state unchanged.
    """

    if isinstance(event, SetText):
        return _on_set_text(state, event)
    if isinstance(event, TogglePlay):
        return _on_toggle(state)
    if isinstance(event, SourceEnded):
        return _on_source_ended(state, event)
    if isinstance(event, SkipForward):
        return _on_skip(state, 1)
    if isinstance(event, SkipBackward):
        return _on_skip(state, -1)
    if isinstance(event, Stop):
        return _on_stop(state)
    if isinstance(event, JumpToIndex):
        return _on_jump(state, event)
    if isinstance(event, FetchCompleted):
        return _on_fetch_completed(state, event)
    if isinstance(event, FetchFailed):
        return _on_fetch_failed(state, event)
    if isinstance(event, SkipSettled):
        return _on_skip_settled(state, event)
    if isinstance(event, VoiceChanged):
        return _on_voice_changed(state)
    return _unchanged(state)


def _on_set_text(state: PlaybackState, event: SetText) -> Transition:
    next_state = PlaybackState(
        status=PlaybackStatus.IDLE,
        current_index=0,
        blocks=event.blocks,
        generation=state.generation + 1,
        skip_in_progress=False,
        skip_serial=state.skip_serial,
    )
    effects: list[PlaybackEffect] = [CancelFetch(), CancelPrefetch(), StopSource(), ClearCache()]
    if event.blocks:
        effects.append(SchedulePrefetch(index=0, stagger=1))
    if len(event.blocks) > 1:
        effects.append(SchedulePrefetch(index=1, stagger=2))
    return Transition(state=next_state, effects=tuple(effects))


def _on_toggle(state: PlaybackState) -> Transition:
    if not state.blocks or state.status is PlaybackStatus.STOPPED:
        return _unchanged(state)
    generation = state.generation + 1
    if state.is_active:
        return Transition(
            state=replace(state, status=PlaybackStatus.PAUSED, generation=generation),
            effects=_INTERRUPT,
        )
    return Transition(
        state=replace(state, status=PlaybackStatus.PROCESSING, generation=generation),
        effects=(StartFetch(index=state.current_index, generation=generation),),
    )


def _on_source_ended(state: PlaybackState, event: SourceEnded) -> Transition:
    if event.generation != state.generation or state.status is not PlaybackStatus.PLAYING:
        return _unchanged(state)
    if state.skip_in_progress:
        return Transition(state=replace(state, deferred_end=event.generation))
    return _advance(state)


def _advance(state: PlaybackState) -> Transition:
    generation = state.generation + 1
    next_index = state.current_index + 1
    if next_index >= len(state.blocks):
        return Transition(
            state=replace(state, status=PlaybackStatus.STOPPED, generation=generation),
        )
    return Transition(
        state=replace(
            state,
            status=PlaybackStatus.PROCESSING,
            current_index=next_index,
            generation=generation,
        ),
        effects=(StartFetch(index=next_index, generation=generation),),
    )


def _on_skip(state: PlaybackState, step: int) -> Transition:
    if not state.blocks or state.status is PlaybackStatus.STOPPED:
        return _unchanged(state)
    generation = state.generation + 1
    serial = state.skip_serial + 1
    index = _clamp(state.current_index + step, state.blocks)
    effects: list[PlaybackEffect] = [*_INTERRUPT, ScheduleSkipRelease(serial=serial)]
    if state.is_active:
        status = PlaybackStatus.PROCESSING
        effects.append(StartFetch(index=index, generation=generation))
    else:
        status = state.status
        effects.append(SchedulePrefetch(index=index))
    return Transition(
        state=replace(
            state,
            status=status,
            current_index=index,
            generation=generation,
            skip_in_progress=True,
            skip_serial=serial,
            deferred_end=None,
        ),
        effects=tuple(effects),
    )


def _on_stop(state: PlaybackState) -> Transition:
    return Transition(
        state=PlaybackState(
            status=PlaybackStatus.IDLE,
            current_index=0,
            blocks=(),
            generation=state.generation + 1,
            skip_in_progress=False,
            skip_serial=state.skip_serial,
        ),
        effects=(CancelFetch(), CancelPrefetch(), StopSource()),
    )


def _on_jump(state: PlaybackState, event: JumpToIndex) -> Transition:
    if not state.blocks or state.status is PlaybackStatus.STOPPED:
        return _unchanged(state)
    generation = state.generation + 1
    index = _clamp(event.index, state.blocks)
    if event.autoplay:
        return Transition(
            state=replace(
                state,
                status=PlaybackStatus.PROCESSING,
                current_index=index,
                generation=generation,
            ),
            effects=(*_INTERRUPT, StartFetch(index=index, generation=generation)),
        )
    status = PlaybackStatus.IDLE if state.status is PlaybackStatus.IDLE else PlaybackStatus.PAUSED
    return Transition(
        state=replace(state, status=status, current_index=index, generation=generation),
        effects=(*_INTERRUPT, SchedulePrefetch(index=index)),
    )


def _on_fetch_completed(state: PlaybackState, event: FetchCompleted) -> Transition:
    if event.generation != state.generation or state.status is not PlaybackStatus.PROCESSING:
        return _unchanged(state)
    effects: list[PlaybackEffect] = [PlayBuffer(audio=event.audio, generation=state.generation)]
    if state.current_index + 1 < len(state.blocks):
        effects.append(SchedulePrefetch(index=state.current_index + 1))
    return Transition(
        state=replace(state, status=PlaybackStatus.PLAYING),
        effects=tuple(effects),
    )


def _on_fetch_failed(state: PlaybackState, event: FetchFailed) -> Transition:
    if event.generation != state.generation or state.status is not PlaybackStatus.PROCESSING:
        return _unchanged(state)
    return Transition(
        state=replace(state, status=PlaybackStatus.PAUSED, generation=state.generation + 1),
        effects=(ReportError(error=event.error),),
    )


def _on_skip_settled(state: PlaybackState, event: SkipSettled) -> Transition:
    if event.serial != state.skip_serial or not state.skip_in_progress:
        return _unchanged(state)
    settled = replace(state, skip_in_progress=False, deferred_end=None)
    if state.deferred_end == state.generation and state.status is PlaybackStatus.PLAYING:
        return _advance(settled)
    return Transition(state=settled)


def _on_voice_changed(state: PlaybackState) -> Transition:
    effects: list[PlaybackEffect] = [*_INTERRUPT, CancelPrefetch(), ClearCache()]
    if not state.blocks or not state.is_active:
        return Transition(
            state=replace(state, generation=state.generation + 1),
            effects=tuple(effects),
        )
    generation = state.generation + 1
    effects.append(StartFetch(index=state.current_index, generation=generation))
    return Transition(
        state=replace(state, status=PlaybackStatus.PROCESSING, generation=generation),
        effects=tuple(effects),
    )
