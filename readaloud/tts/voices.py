"""Voice profile models and voice discovery.

Responsibilities:
- Represent the synthesis settings for one listening session or export.
- Discover backend voices, falling back to a fixed built-in list.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import TYPE_CHECKING

from ..errors import InvalidInput
from .client import OpenAIProviderError, OpenAISpeechClient

if TYPE_CHECKING:
    from ..telemetry.logger import EventLogger

DEFAULT_MODEL = "tts-1"
DEFAULT_VOICE = "alloy"
DEFAULT_VOICES: tuple[str, ...] = (
    "alloy",
    "ash",
    "coral",
    "echo",
    "fable",
    "onyx",
    "nova",
    "sage",
    "shimmer",
)

_MIN_SPEED = 0.25
_MAX_SPEED = 4.0


@dataclass(frozen=True, slots=True)
class VoiceProfile:
    """Declarative voice settings passed to the synthesis backend.

    Attributes:
        voice: Backend voice identifier.
        speed: Speaking rate multiplier accepted by the backend (0.25 to 4.0).
        model: Backend speech model identifier.
        instructions: Optional style instructions for models that support them.
    """

    voice: str = DEFAULT_VOICE
    speed: float = 1.0
    model: str = DEFAULT_MODEL
    instructions: str | None = None

    def __post_init__(self) -> None:
        if not self.voice.strip():
            raise InvalidInput(stage="voice", detail="Voice identifier must not be empty.")
        if not _MIN_SPEED <= self.speed <= _MAX_SPEED:
            raise InvalidInput(
                stage="voice",
                detail=f"Speed must be between {_MIN_SPEED} and {_MAX_SPEED}.",
            )

    def with_voice(self, voice: str) -> VoiceProfile:
        """Return a copy using another voice identifier."""

        return replace(self, voice=voice)

    def with_speed(self, speed: float) -> VoiceProfile:
        """Return a copy using another speaking rate."""

        return replace(self, speed=speed)


def fetch_available_voices(
    client: OpenAISpeechClient,
    event_logger: EventLogger | None = None,
) -> list[str]:
    """Return backend voices, or `DEFAULT_VOICES` when discovery fails for any reason."""

    try:
        return client.list_voices()
    except OpenAIProviderError as exc:
        if event_logger is not None:
            event_logger.warning(
                "voices",
                "fallback",
                failure_kind=exc.failure_kind,
                count=len(DEFAULT_VOICES),
            )
        return list(DEFAULT_VOICES)
