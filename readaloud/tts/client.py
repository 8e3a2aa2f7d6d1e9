"""OpenAI-compatible speech HTTP client.

Responsibilities:
- Send speech synthesis and voice-list requests to an OpenAI-compatible REST API.
- Abort in-flight speech requests at the transport level when cancelled.
- Raise actionable provider exceptions for synthesizer-level error mapping.
"""

from __future__ import annotations

import json
import re
import socket
from typing import Any

import requests

from ..cancellation import CancelToken
from ..errors import Cancelled

DEFAULT_BASE_URL = "https://api.openai.com/v1"
_INSTRUCTION_MODELS = frozenset({"gpt-4o-mini-tts"})
_STREAM_CHUNK_BYTES = 16 * 1024


class OpenAIProviderError(RuntimeError):
    """Raised when a provider request fails or returns malformed output."""

    def __init__(
        self,
        message: str,
        *,
        failure_kind: str = "unknown",
        status_code: int | None = None,
        provider_code: str | None = None,
    ) -> None:
        """Initialize provider error metadata for diagnostics."""

        super().__init__(message)
        self.failure_kind = failure_kind
        self.status_code = status_code
        self.provider_code = provider_code


class OpenAISpeechClient:
    """Minimal requests-based client for `/audio/speech` and `/audio/voices`.

    Credentials are held in memory for the lifetime of the client only.
    """

    _MAX_PROVIDER_MESSAGE_CHARS = 180

    def __init__(
        self,
        *,
        api_key: str | None,
        base_url: str | None = DEFAULT_BASE_URL,
        timeout_seconds: float = 60.0,
        session: requests.Session | None = None,
    ) -> None:
        """Initialize HTTP client settings."""

        self.api_key = api_key.strip() if isinstance(api_key, str) else ""
        self.base_url = (base_url or DEFAULT_BASE_URL).rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.session = session or requests.Session()

    def synthesize_speech(
        self,
        *,
        model: str,
        voice: str,
        text: str,
        speed: float = 1.0,
        response_format: str = "mp3",
        instructions: str | None = None,
        cancel_token: CancelToken | None = None,
    ) -> bytes:
        """Return synthesized audio bytes from `/audio/speech`.

        Raises:
            Cancelled: When `cancel_token` fires before the body is fully read.
            OpenAIProviderError: For HTTP, transport, or empty-body failures.
        """

        self._require_api_key()

        payload: dict[str, Any] = {
            "model": model,
            "voice": voice,
            "input": text,
            "speed": speed,
            "response_format": response_format,
        }
        if instructions and model in _INSTRUCTION_MODELS:
            payload["instructions"] = instructions

        token = cancel_token or CancelToken("speech request")
        token.raise_if_cancelled("synthesize")
        audio = self._stream_post(endpoint_path="/audio/speech", payload=payload, token=token)
        if not audio:
            raise OpenAIProviderError(
                "Speech response is empty.",
                failure_kind="empty_audio",
            )
        return audio

    def list_voices(self) -> list[str]:
        """Return voice identifiers reported by `/audio/voices`.

        Raises:
            OpenAIProviderError: When the request fails or the payload is malformed.
        """

        endpoint = f"{self.base_url}/audio/voices"
        try:
            response = self.session.get(
                endpoint,
                headers=self._headers(),
                timeout=self.timeout_seconds,
            )
            response.raise_for_status()
            payload = response.json()
        except requests.HTTPError as exc:
            raise self._http_error_to_provider_error(exc) from exc
        except requests.RequestException as exc:
            raise OpenAIProviderError(
                f"Voice list request failed: {self._short_message(str(exc))}",
                failure_kind=self._classify_transport_failure(exc),
            ) from exc
        except ValueError as exc:
            raise OpenAIProviderError(
                "Voice list response is not valid JSON.",
                failure_kind="malformed_response",
            ) from exc

        voices = payload.get("voices") if isinstance(payload, dict) else None
        if not isinstance(voices, list):
            raise OpenAIProviderError(
                "Voice list response is missing a `voices` list.",
                failure_kind="malformed_response",
            )
        names = [item.strip() for item in voices if isinstance(item, str) and item.strip()]
        if not names:
            raise OpenAIProviderError(
                "Voice list response contains no voice identifiers.",
                failure_kind="malformed_response",
            )
        return names

    def _require_api_key(self) -> None:
        """Require API key presence before issuing speech requests."""

        if not self.api_key:
            raise OpenAIProviderError(
                "Missing API key. Set `OPENAI_API_KEY`, use `--api-key`, or store one "
                "with `readaloud credentials --set-api-key`.",
                failure_kind="invalid_api_key",
            )

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def _stream_post(
        self,
        *,
        endpoint_path: str,
        payload: dict[str, Any],
        token: CancelToken,
    ) -> bytes:
        """POST JSON and read the streamed body, closing the response on cancel."""

        endpoint = f"{self.base_url}{endpoint_path}"
        unregister = lambda: None  # noqa: E731
        try:
            response = self.session.post(
                endpoint,
                headers=self._headers(),
                json=payload,
                timeout=self.timeout_seconds,
                stream=True,
            )
            with response:
                unregister = token.on_cancel(response.close)
                response.raise_for_status()
                parts: list[bytes] = []
                for part in response.iter_content(chunk_size=_STREAM_CHUNK_BYTES):
                    token.raise_if_cancelled("synthesize")
                    if part:
                        parts.append(part)
                token.raise_if_cancelled("synthesize")
                return b"".join(parts)
        except Cancelled:
            raise
        except requests.HTTPError as exc:
            raise self._http_error_to_provider_error(exc) from exc
        except Exception as exc:
            if token.cancelled:
                raise Cancelled(stage="synthesize", detail="Speech request aborted.") from exc
            failure_kind = self._classify_transport_failure(exc)
            if failure_kind == "timeout":
                detail = "Speech request timed out."
            else:
                detail = f"Speech request transport error: {self._short_message(str(exc))}"
            raise OpenAIProviderError(detail, failure_kind=failure_kind) from exc
        finally:
            unregister()

    @staticmethod
    def _decode_error_body(exc: requests.HTTPError) -> str:
        """Decode an HTTP error body into a best-effort UTF-8 payload string."""

        response = exc.response
        if response is None:
            return ""
        try:
            return bytes(response.content).decode("utf-8", errors="replace").strip()
        except Exception:
            return ""

    @classmethod
    def _redact_sensitive_tokens(cls, text: str) -> str:
        """Redact API-key-like tokens from provider error content."""

        redacted = re.sub(r"\bsk-[A-Za-z0-9_-]{8,}\b", "[redacted-key]", text)
        redacted = re.sub(
            r"(?i)bearer\s+[A-Za-z0-9._-]{12,}",
            "Bearer [redacted-token]",
            redacted,
        )
        return redacted

    @classmethod
    def _short_message(cls, text: str) -> str:
        """Normalize and cap user-facing provider message length."""

        compact = " ".join(text.split())
        if len(compact) <= cls._MAX_PROVIDER_MESSAGE_CHARS:
            return compact
        return f"{compact[: cls._MAX_PROVIDER_MESSAGE_CHARS - 1]}..."

    @classmethod
    def _extract_provider_message(cls, body: str) -> tuple[str, str | None]:
        """Extract a concise provider message and optional provider error code."""

        if not body:
            return "", None

        try:
            payload = json.loads(body)
        except json.JSONDecodeError:
            return cls._short_message(cls._redact_sensitive_tokens(body)), None

        provider_code: str | None = None
        message: str | None = None
        if isinstance(payload, dict):
            error_payload = payload.get("error")
            if isinstance(error_payload, dict):
                code_value = error_payload.get("code")
                if isinstance(code_value, str) and code_value.strip():
                    provider_code = code_value.strip()
                message_value = error_payload.get("message")
                if isinstance(message_value, str) and message_value.strip():
                    message = message_value.strip()

        if message is None:
            message = body

        return cls._short_message(cls._redact_sensitive_tokens(message)), provider_code

    @staticmethod
    def _classify_http_failure(
        status_code: int,
        provider_message: str,
        provider_code: str | None,
    ) -> str:
        """Classify HTTP errors into deterministic diagnostic kinds."""

        message_lower = provider_message.lower()
        normalized_code = provider_code.lower() if provider_code is not None else ""

        if status_code == 401 or "api key" in message_lower:
            return "invalid_api_key"
        if normalized_code == "insufficient_quota" or (
            status_code == 429 and "quota" in message_lower
        ):
            return "insufficient_quota"
        if normalized_code == "model_not_found" or (
            "model" in message_lower
            and any(phrase in message_lower for phrase in ("not found", "does not exist", "invalid"))
        ):
            return "invalid_model"
        if status_code in {408, 504} or "timeout" in message_lower or "timed out" in message_lower:
            return "timeout"
        return "http_error"

    @staticmethod
    def _classify_transport_failure(reason: object) -> str:
        """Classify network-layer failures into deterministic diagnostic kinds."""

        if isinstance(reason, TimeoutError | socket.timeout | requests.Timeout):
            return "timeout"
        return "transport"

    @classmethod
    def _http_error_to_provider_error(cls, exc: requests.HTTPError) -> OpenAIProviderError:
        """Convert HTTP errors into normalized provider exceptions with metadata."""

        status_code = exc.response.status_code if exc.response is not None else 0
        body = cls._decode_error_body(exc)
        provider_message, provider_code = cls._extract_provider_message(body)
        failure_kind = cls._classify_http_failure(status_code, provider_message, provider_code)

        headline = {
            "invalid_api_key": "Speech backend authentication failed",
            "insufficient_quota": "Speech backend quota is insufficient for this request",
            "invalid_model": "Speech backend rejected the selected model",
            "timeout": "Speech backend request timed out",
        }.get(failure_kind, "Speech backend request failed")

        if provider_message:
            detail = f"{headline} (HTTP {status_code}): {provider_message}"
        else:
            detail = f"{headline} (HTTP {status_code})."

        return OpenAIProviderError(
            detail,
            failure_kind=failure_kind,
            status_code=status_code,
            provider_code=provider_code,
        )
