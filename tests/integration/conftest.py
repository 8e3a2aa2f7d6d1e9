"""Integration-test fixtures for deterministic backend and credential behavior."""

from __future__ import annotations

import os

import pytest

from readaloud.tts.client import OpenAISpeechClient


class InMemoryCredentialStore:
    """In-memory credential store used instead of the OS keyring."""

    def __init__(self, initial_api_key: str | None = None) -> None:
        """Initialize the store with an optional initial API key."""

        self._api_key = initial_api_key
        self.available = True

    def is_available(self) -> bool:
        """Return configured availability."""

        return self.available

    def get_api_key(self) -> str | None:
        """Return the stored API key."""

        return self._api_key

    def set_api_key(self, api_key: str) -> None:
        """Store a stripped API key."""

        self._api_key = api_key.strip()

    def clear_api_key(self) -> bool:
        """Clear the stored key and report whether one existed."""

        existed = self._api_key is not None
        self._api_key = None
        return existed


@pytest.fixture
def credential_store() -> InMemoryCredentialStore:
    """Provide an empty in-memory credential store."""

    return InMemoryCredentialStore()


@pytest.fixture(autouse=True)
def _isolate_runtime(
    monkeypatch: pytest.MonkeyPatch,
    credential_store: InMemoryCredentialStore,
) -> None:
    """Drop ambient backend settings and route credentials to the in-memory store."""

    for key in list(os.environ):
        if key.startswith("READALOUD_") or key in {"OPENAI_API_KEY", "OPENAI_BASE_URL"}:
            monkeypatch.delenv(key, raising=False)
    monkeypatch.setattr("readaloud.cli.create_credential_store", lambda: credential_store)


@pytest.fixture(autouse=True)
def _mock_speech_backend(monkeypatch: pytest.MonkeyPatch) -> list[dict[str, object]]:
    """Mock speech requests so integration tests never touch the network."""

    requests_seen: list[dict[str, object]] = []

    def _mock_synthesize_speech(self, **kwargs: object) -> bytes:
        """Return deterministic audio bytes naming the synthesized text."""

        _ = self
        requests_seen.append(kwargs)
        return f"audio:{kwargs['text']}".encode("utf-8")

    def _mock_list_voices(self) -> list[str]:
        """Return a fixed backend voice list."""

        _ = self
        return ["nova", "echo"]

    monkeypatch.setattr(OpenAISpeechClient, "synthesize_speech", _mock_synthesize_speech)
    monkeypatch.setattr(OpenAISpeechClient, "list_voices", _mock_list_voices)
    return requests_seen
