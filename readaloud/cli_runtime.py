"""CLI runtime resolution helpers.

This module isolates config loading, runtime source assembly, secure API-key
persistence, and synthesizer construction from the command wiring layer.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Callable, Mapping, Protocol

import typer

from .config import ConfigLoader, ReadAloudConfig, RuntimeConfigSources, SynthesisRuntimeConfig
from .credentials import create_credential_store
from .errors import InvalidInput, ReadAloudError
from .parsing import normalize_optional_string
from .telemetry.logger import EventLogger
from .tts.client import OpenAISpeechClient
from .tts.rate_limiter import RateLimiter
from .tts.synthesizer import OpenAISynthesizer, RetryingSynthesizer, RetryPolicy, Synthesizer


class CredentialStoreProtocol(Protocol):
    """Protocol for secure credential store operations used by CLI runtime resolution."""

    def get_api_key(self) -> str | None:
        """Return currently stored API key, if available."""

    def set_api_key(self, api_key: str) -> None:
        """Persist API key value in secure storage."""


def load_command_config(
    config_file: Path | None,
    overrides: Mapping[str, Any] | None = None,
) -> ReadAloudConfig:
    """Load YAML or environment config and apply explicit CLI overrides.

    Raises:
        ReadAloudError: Stage `config` errors for missing files or invalid values.
    """

    try:
        if config_file is not None:
            base = ConfigLoader.from_yaml(config_file)
        else:
            base = ConfigLoader.from_env()
        if overrides:
            return ConfigLoader.merge(base, overrides)
        return base
    except FileNotFoundError as exc:
        raise ReadAloudError(
            stage="config",
            detail=f"Config file not found: `{config_file}`.",
            hint="Provide an existing path via `--config <path.yaml>`.",
        ) from exc
    except ValueError as exc:
        raise ReadAloudError(
            stage="config",
            detail=f"Invalid configuration: {exc}",
            hint="Fix config values and rerun.",
        ) from exc


def resolve_synthesis_runtime_sources(
    tts_model: str | None,
    tts_voice: str | None,
    base_url: str | None,
    api_key: str | None,
    prompt_api_key: bool = False,
    store_api_key: bool = False,
    credential_store_factory: Callable[[], CredentialStoreProtocol] = create_credential_store,
) -> tuple[dict[str, str], dict[str, str]]:
    """Resolve CLI and secure runtime source mappings for synthesis settings."""

    runtime_cli_values: dict[str, str] = {}
    for key, value in (
        ("tts_model", tts_model),
        ("tts_voice", tts_voice),
        ("base_url", base_url),
        ("api_key", api_key),
    ):
        normalized = normalize_optional_string(value)
        if normalized is not None:
            runtime_cli_values[key] = normalized

    api_key_entered_in_run = "api_key" in runtime_cli_values
    if prompt_api_key and not api_key_entered_in_run:
        prompted_api_key = normalize_optional_string(
            typer.prompt(
                "OpenAI API key (hidden; leave blank to skip)",
                default="",
                hide_input=True,
                show_default=False,
            )
        )
        if prompted_api_key is not None:
            runtime_cli_values["api_key"] = prompted_api_key
            api_key_entered_in_run = True

    credential_store = credential_store_factory()
    runtime_secure_values: dict[str, str] = {}
    stored_api_key = credential_store.get_api_key()
    if stored_api_key is not None:
        runtime_secure_values["api_key"] = stored_api_key

    if api_key_entered_in_run and store_api_key:
        try:
            credential_store.set_api_key(runtime_cli_values["api_key"])
        except (RuntimeError, ValueError) as exc:
            raise ReadAloudError(
                stage="credentials",
                detail=f"Failed to store API key securely: {exc}",
                hint="Configure a keyring backend, or rerun without `--store-api-key`.",
            ) from exc
        typer.echo("Stored API key in secure credential storage.")

    return runtime_cli_values, runtime_secure_values


def resolve_runtime(
    config: ReadAloudConfig,
    runtime_cli_values: Mapping[str, str],
    runtime_secure_values: Mapping[str, str],
) -> SynthesisRuntimeConfig:
    """Resolve synthesis runtime settings with `cli > secure > env > default` precedence."""

    sources = RuntimeConfigSources(
        cli=runtime_cli_values,
        secure=runtime_secure_values,
        env=os.environ,
    )
    try:
        return config.resolved_synthesis_runtime(sources)
    except ValueError as exc:
        raise ReadAloudError(stage="config", detail=str(exc)) from exc


def build_speech_client(
    config: ReadAloudConfig,
    runtime: SynthesisRuntimeConfig,
) -> OpenAISpeechClient:
    return OpenAISpeechClient(
        api_key=runtime.api_key,
        base_url=runtime.base_url,
        timeout_seconds=config.request_timeout_seconds,
    )


def build_synthesizer(
    config: ReadAloudConfig,
    runtime: SynthesisRuntimeConfig,
    *,
    batch: bool,
    event_logger: EventLogger | None = None,
) -> Synthesizer:
    """Create the synthesizer for batch export or interactive playback.

    Batch work always retries transient failures and paces requests. Interactive
    playback retries once only when `interactive_retry` is enabled.
    """

    if not runtime.api_key:
        raise InvalidInput(
            stage="config",
            detail="No API key configured for the speech backend.",
            hint=(
                "Pass `--api-key`, set `OPENAI_API_KEY`, or run "
                "`readaloud credentials --set-api-key`."
            ),
        )
    synthesizer = OpenAISynthesizer(build_speech_client(config, runtime), event_logger)
    if batch:
        return RetryingSynthesizer(
            synthesizer,
            config.retry_policy(),
            RateLimiter(min_interval_seconds=config.batch_min_interval_seconds),
            event_logger,
        )
    if config.interactive_retry:
        policy = config.retry_policy()
        return RetryingSynthesizer(
            synthesizer,
            RetryPolicy(
                max_retries=1,
                initial_delay_seconds=policy.initial_delay_seconds,
                backoff_factor=policy.backoff_factor,
                max_delay_seconds=policy.max_delay_seconds,
            ),
            None,
            event_logger,
        )
    return synthesizer
