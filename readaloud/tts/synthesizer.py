"""Speech synthesizer contract, backend adapter, and batch retry policy.

Responsibilities:
- Define the protocol for block-level speech synthesis.
- Map provider failures to `SynthesisFailed` and aborts to `Cancelled`.
- Retry transient failures with cancellable exponential backoff for batch work.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from ..cancellation import CancelToken
from ..errors import Cancelled, SynthesisFailed
from ..telemetry.logger import EventLogger
from .client import OpenAIProviderError, OpenAISpeechClient
from .rate_limiter import RateLimiter
from .voices import VoiceProfile

_TRANSIENT_FAILURE_KINDS = frozenset({"timeout", "transport"})

_FAILURE_HINTS = {
    "invalid_api_key": "Check the API key passed with `--api-key`, `OPENAI_API_KEY`, or keyring.",
    "insufficient_quota": "Check the backend account quota or billing status.",
    "invalid_model": "Choose a speech model the backend supports.",
    "timeout": "Retry later or raise `request_timeout_seconds`.",
    "transport": "Check network connectivity and the configured base URL.",
}


class Synthesizer(Protocol):
    """Protocol for speech synthesis backends."""

    def synthesize(
        self,
        text: str,
        voice: VoiceProfile,
        cancel_token: CancelToken,
        *,
        response_format: str = "mp3",
    ) -> bytes:
        """Return encoded audio for one block of text."""


class OpenAISynthesizer:
    """Synthesizer backed by an OpenAI-compatible `/audio/speech` endpoint."""

    def __init__(
        self,
        client: OpenAISpeechClient,
        event_logger: EventLogger | None = None,
    ) -> None:
        self.client = client
        self.event_logger = event_logger

    def synthesize(
        self,
        text: str,
        voice: VoiceProfile,
        cancel_token: CancelToken,
        *,
        response_format: str = "mp3",
    ) -> bytes:
        """Synthesize one block, raising `Cancelled` or `SynthesisFailed` on failure."""

        try:
            audio = self.client.synthesize_speech(
                model=voice.model,
                voice=voice.voice,
                text=text,
                speed=voice.speed,
                response_format=response_format,
                instructions=voice.instructions,
                cancel_token=cancel_token,
            )
        except Cancelled:
            if self.event_logger is not None:
                self.event_logger.debug("synthesizer", "cancelled", chars=len(text))
            raise
        except OpenAIProviderError as exc:
            error = SynthesisFailed(
                detail=str(exc),
                failure_kind=exc.failure_kind,
                status_code=exc.status_code,
                hint=_FAILURE_HINTS.get(exc.failure_kind),
            )
            if self.event_logger is not None:
                self.event_logger.failure(
                    "synthesizer",
                    error,
                    failure_kind=exc.failure_kind,
                    status=exc.status_code or 0,
                )
            raise error from exc

        if self.event_logger is not None:
            self.event_logger.debug(
                "synthesizer",
                "complete",
                chars=len(text),
                bytes=len(audio),
                voice=voice.voice,
            )
        return audio


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Bounded exponential backoff settings.

    Attributes:
        max_retries: Retries after the first attempt.
        initial_delay_seconds: Delay before the first retry.
        backoff_factor: Multiplier applied to each subsequent delay.
        max_delay_seconds: Upper bound for a single delay.
    """

    max_retries: int = 3
    initial_delay_seconds: float = 1.0
    backoff_factor: float = 2.0
    max_delay_seconds: float = 5.0

    def delay_for(self, retry_number: int) -> float:
        """Return the delay before retry `retry_number` (1-based)."""

        delay = self.initial_delay_seconds * (self.backoff_factor ** (retry_number - 1))
        return min(delay, self.max_delay_seconds)


def is_transient_failure(error: SynthesisFailed) -> bool:
    """Return whether a synthesis failure is worth retrying."""

    if error.failure_kind in _TRANSIENT_FAILURE_KINDS:
        return True
    status = error.status_code
    if status is None:
        return False
    if status == 429:
        return error.failure_kind != "insufficient_quota"
    return status >= 500


class RetryingSynthesizer:
    """Wrap a synthesizer with rate limiting and transient-failure retries."""

    def __init__(
        self,
        inner: Synthesizer,
        policy: RetryPolicy | None = None,
        rate_limiter: RateLimiter | None = None,
        event_logger: EventLogger | None = None,
    ) -> None:
        self.inner = inner
        self.policy = policy or RetryPolicy()
        self.rate_limiter = rate_limiter
        self.event_logger = event_logger
        self.retry_attempt_count = 0

    def synthesize(
        self,
        text: str,
        voice: VoiceProfile,
        cancel_token: CancelToken,
        *,
        response_format: str = "mp3",
    ) -> bytes:
        """Synthesize with retries; `Cancelled` and permanent failures propagate at once."""

        attempt = 0
        while True:
            cancel_token.raise_if_cancelled("synthesize")
            if self.rate_limiter is not None:
                self.rate_limiter.acquire(f"speech:{voice.model}")
            try:
                return self.inner.synthesize(
                    text,
                    voice,
                    cancel_token,
                    response_format=response_format,
                )
            except SynthesisFailed as exc:
                if attempt >= self.policy.max_retries or not is_transient_failure(exc):
                    raise
                attempt += 1
                self.retry_attempt_count += 1
                delay = self.policy.delay_for(attempt)
                if self.event_logger is not None:
                    self.event_logger.warning(
                        "synthesizer",
                        "retry",
                        attempt=attempt,
                        delay=f"{delay:.2f}",
                        failure_kind=exc.failure_kind,
                    )
                if cancel_token.wait(delay):
                    raise Cancelled(stage="synthesize", detail="Retry wait cancelled.") from exc
