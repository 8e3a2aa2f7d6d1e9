"""Speech synthesis client, adapters, and voice settings."""

from .client import DEFAULT_BASE_URL, OpenAIProviderError, OpenAISpeechClient
from .rate_limiter import RateLimiter
from .synthesizer import (
    OpenAISynthesizer,
    RetryingSynthesizer,
    RetryPolicy,
    Synthesizer,
    is_transient_failure,
)
from .voices import DEFAULT_MODEL, DEFAULT_VOICE, DEFAULT_VOICES, VoiceProfile, fetch_available_voices

__all__ = [
    "DEFAULT_BASE_URL",
    "DEFAULT_MODEL",
    "DEFAULT_VOICE",
    "DEFAULT_VOICES",
    "OpenAIProviderError",
    "OpenAISpeechClient",
    "OpenAISynthesizer",
    "RateLimiter",
    "RetryPolicy",
    "RetryingSynthesizer",
    "Synthesizer",
    "VoiceProfile",
    "fetch_available_voices",
    "is_transient_failure",
]
