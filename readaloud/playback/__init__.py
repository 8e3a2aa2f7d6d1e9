"""Interactive playback: audio cache, state machine, controller, and sinks."""

from .cache import DEFAULT_CACHE_CAPACITY, AudioCache
from .controller import PlaybackController
from .sinks import AudioSink, AudioSource, FfplaySink
from .state import PlaybackState, PlaybackStatus, Transition, transition

__all__ = [
    "AudioCache",
    "AudioSink",
    "AudioSource",
    "DEFAULT_CACHE_CAPACITY",
    "FfplaySink",
    "PlaybackController",
    "PlaybackState",
    "PlaybackStatus",
    "Transition",
    "transition",
]
