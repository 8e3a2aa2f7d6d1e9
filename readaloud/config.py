"""Configuration model and loaders for readaloud.

Responsibilities:
- Define runtime configuration as a typed dataclass.
- Provide deterministic precedence resolution for synthesis runtime settings.
- Provide loader entry points for file- and environment-based configuration.

Key types:
- `ReadAloudConfig`: normalized settings for playback and export.
- `SynthesisRuntimeConfig`: resolved backend, model, voice, and credential values.
- `RuntimeConfigSources`: optional value sources for precedence resolution.
- `ConfigLoader`: static construction helpers for `ReadAloudConfig`.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
import os
from pathlib import Path
from typing import Any, Callable, Mapping

import yaml

from .parsing import (
    normalize_optional_string,
    parse_non_negative_float,
    parse_non_negative_int,
    parse_permissive_boolean,
)
from .tts.client import DEFAULT_BASE_URL
from .tts.synthesizer import RetryPolicy
from .tts.voices import DEFAULT_MODEL, DEFAULT_VOICE, VoiceProfile

_SUPPORTED_AUDIO_FORMATS = frozenset({"m4b", "mp3"})


@dataclass(frozen=True, slots=True)
class RuntimeConfigSources:
    """Source mappings used for deterministic runtime value precedence.

    Attributes:
        cli: Values explicitly provided by CLI arguments.
        secure: Values loaded from secure local credential storage.
        env: Values loaded from environment variables.
    """

    cli: Mapping[str, str] = field(default_factory=dict)
    secure: Mapping[str, str] = field(default_factory=dict)
    env: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class SynthesisRuntimeConfig:
    """Resolved synthesis backend settings for one session or export.

    Attributes:
        base_url: OpenAI-compatible API base URL.
        tts_model: Speech model identifier.
        tts_voice: Voice identifier.
        api_key: Optional API key, resolved but never written to logs or artifacts.
    """

    base_url: str
    tts_model: str
    tts_voice: str
    api_key: str | None = None

    def as_log_context(self) -> dict[str, str]:
        """Return non-secret values safe to include in event logs."""

        return {
            "base_url": self.base_url,
            "model": self.tts_model,
            "voice": self.tts_voice,
            "api_key": "set" if self.api_key else "missing",
        }


@dataclass(slots=True)
class ReadAloudConfig:
    """Runtime configuration for playback sessions and audiobook exports.

    Attributes:
        api_key: Optional API key for the synthesis backend.
        base_url: OpenAI-compatible API base URL.
        tts_model: Speech model identifier.
        tts_voice: Voice identifier.
        speed: Speaking rate multiplier (0.25 to 4.0).
        instructions: Optional style instructions for models that accept them.
        block_chars: Interactive block budget; `0` disables it.
        export_block_chars: Batch narration block budget; `0` disables it.
        cache_capacity: Number of synthesized blocks kept for replay.
        prefetch_delay_seconds: Delay before prefetching the next block.
        skip_debounce_seconds: Window during which ended events after a skip are ignored.
        max_retries: Batch synthesis retries after the first attempt.
        retry_initial_delay_seconds: Delay before the first batch retry.
        retry_backoff_factor: Multiplier applied to each later retry delay.
        retry_max_delay_seconds: Upper bound for one retry delay.
        interactive_retry: Whether interactive playback retries a failed block once.
        batch_min_interval_seconds: Minimum spacing between batch requests.
        audio_format: Export container (`m4b` or `mp3`).
        work_dir: Parent directory for export work sets; system temp when unset.
        ffmpeg: ffmpeg command name or path.
        ffprobe: ffprobe command name or path.
        ffplay: ffplay command name or path.
        request_timeout_seconds: HTTP timeout for backend requests.
        runtime_sources: Optional runtime source overrides injected by CLI.
    """

    api_key: str | None = None
    base_url: str = DEFAULT_BASE_URL
    tts_model: str = DEFAULT_MODEL
    tts_voice: str = DEFAULT_VOICE
    speed: float = 1.0
    instructions: str | None = None
    block_chars: int = 300
    export_block_chars: int = 4096
    cache_capacity: int = 50
    prefetch_delay_seconds: float = 0.25
    skip_debounce_seconds: float = 0.3
    max_retries: int = 3
    retry_initial_delay_seconds: float = 1.0
    retry_backoff_factor: float = 2.0
    retry_max_delay_seconds: float = 5.0
    interactive_retry: bool = False
    batch_min_interval_seconds: float = 0.05
    audio_format: str = "m4b"
    work_dir: Path | None = None
    ffmpeg: str = "ffmpeg"
    ffprobe: str = "ffprobe"
    ffplay: str = "ffplay"
    request_timeout_seconds: float = 60.0
    runtime_sources: RuntimeConfigSources = field(default_factory=RuntimeConfigSources)

    def validate(self) -> None:
        """Validate configuration values before a session or export starts."""

        for name in ("base_url", "tts_model", "tts_voice", "ffmpeg", "ffprobe", "ffplay"):
            self._require_non_empty(getattr(self, name), name)
        if not 0.25 <= self.speed <= 4.0:
            raise ValueError("`speed` must be between 0.25 and 4.0.")
        if self.block_chars < 0 or self.export_block_chars < 0:
            raise ValueError("Block sizes must be zero (unlimited) or positive integers.")
        if self.cache_capacity < 1:
            raise ValueError("`cache_capacity` must be a positive integer.")
        if self.max_retries < 0:
            raise ValueError("`max_retries` must be a non-negative integer.")
        if self.retry_backoff_factor < 1.0:
            raise ValueError("`retry_backoff_factor` must be at least 1.0.")
        if self.retry_max_delay_seconds < self.retry_initial_delay_seconds:
            raise ValueError(
                "`retry_max_delay_seconds` must not be smaller than `retry_initial_delay_seconds`."
            )
        if self.request_timeout_seconds <= 0.0:
            raise ValueError("`request_timeout_seconds` must be positive.")
        if self.audio_format not in _SUPPORTED_AUDIO_FORMATS:
            supported = ", ".join(sorted(_SUPPORTED_AUDIO_FORMATS))
            raise ValueError(
                f"Unsupported `audio_format` value `{self.audio_format}`; supported: {supported}."
            )

    def resolved_synthesis_runtime(
        self, sources: RuntimeConfigSources | None = None
    ) -> SynthesisRuntimeConfig:
        """Resolve synthesis settings with deterministic source precedence.

        Precedence for each key is:
        `cli` > `secure` > `env` > config field default.
        """

        resolved_sources = sources if sources is not None else self.runtime_sources

        resolved = SynthesisRuntimeConfig(
            base_url=self._resolve_runtime_value(
                key="base_url",
                env_key="OPENAI_BASE_URL",
                default_value=self.base_url,
                sources=resolved_sources,
            ),
            tts_model=self._resolve_runtime_value(
                key="tts_model",
                env_key="READALOUD_TTS_MODEL",
                default_value=self.tts_model,
                sources=resolved_sources,
            ),
            tts_voice=self._resolve_runtime_value(
                key="tts_voice",
                env_key="READALOUD_TTS_VOICE",
                default_value=self.tts_voice,
                sources=resolved_sources,
            ),
            api_key=self._resolve_optional_runtime_value(
                key="api_key",
                env_key="OPENAI_API_KEY",
                default_value=self.api_key,
                sources=resolved_sources,
            ),
        )
        self._require_non_empty(resolved.base_url, "base_url")
        self._require_non_empty(resolved.tts_model, "tts_model")
        self._require_non_empty(resolved.tts_voice, "tts_voice")
        return resolved

    def voice_profile(self, runtime: SynthesisRuntimeConfig | None = None) -> VoiceProfile:
        """Build the voice profile for resolved runtime settings."""

        resolved = runtime or self.resolved_synthesis_runtime()
        return VoiceProfile(
            voice=resolved.tts_voice,
            speed=self.speed,
            model=resolved.tts_model,
            instructions=self.instructions,
        )

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_retries=self.max_retries,
            initial_delay_seconds=self.retry_initial_delay_seconds,
            backoff_factor=self.retry_backoff_factor,
            max_delay_seconds=self.retry_max_delay_seconds,
        )

    def _resolve_runtime_value(
        self,
        key: str,
        env_key: str,
        default_value: str | None,
        sources: RuntimeConfigSources,
    ) -> str:
        """Resolve a required runtime value from sources in precedence order."""

        value = self._resolve_optional_runtime_value(key, env_key, default_value, sources)
        if value is None:
            raise ValueError(
                f"`{key}` could not be resolved from CLI, secure storage, env, or defaults."
            )
        return value

    def _resolve_optional_runtime_value(
        self,
        key: str,
        env_key: str,
        default_value: str | None,
        sources: RuntimeConfigSources,
    ) -> str | None:
        """Resolve an optional runtime value from sources in precedence order."""

        for mapping, lookup_key in (
            (sources.cli, key),
            (sources.secure, key),
            (sources.env, env_key),
        ):
            value = self._normalized_lookup(mapping, lookup_key)
            if value is not None:
                return value
        return normalize_optional_string(default_value)

    @staticmethod
    def _normalized_lookup(mapping: Mapping[str, str], key: str) -> str | None:
        """Return a stripped mapping value for a key or `None` when missing/blank."""

        if key not in mapping:
            return None
        return normalize_optional_string(mapping.get(key))

    @staticmethod
    def _require_non_empty(value: object, field_name: str) -> None:
        if not isinstance(value, str) or not value.strip():
            raise ValueError(f"`{field_name}` must be a non-empty string.")


def _parse_positive_int(value: object, field_name: str) -> int:
    parsed = parse_non_negative_int(value, field_name)
    if parsed == 0:
        raise ValueError(f"`{field_name}` must be a positive integer.")
    return parsed


def _parse_boolean(value: object, field_name: str) -> bool:
    parsed = parse_permissive_boolean(value)
    if parsed is None:
        raise ValueError(
            f"`{field_name}` must be a boolean value (`true`/`false`, `1`/`0`, `yes`/`no`)."
        )
    return parsed


def _parse_string(value: object, field_name: str) -> str | None:
    return normalize_optional_string(value)


def _parse_lowercase(value: object, field_name: str) -> str | None:
    normalized = normalize_optional_string(value)
    return normalized.lower() if normalized is not None else None


def _parse_path(value: object, field_name: str) -> Path | None:
    normalized = normalize_optional_string(value)
    return Path(normalized).expanduser() if normalized is not None else None


_FieldParser = Callable[[object, str], Any]

_FIELD_PARSERS: dict[str, _FieldParser] = {
    "api_key": _parse_string,
    "base_url": _parse_string,
    "tts_model": _parse_string,
    "tts_voice": _parse_string,
    "speed": parse_non_negative_float,
    "instructions": _parse_string,
    "block_chars": parse_non_negative_int,
    "export_block_chars": parse_non_negative_int,
    "cache_capacity": _parse_positive_int,
    "prefetch_delay_seconds": parse_non_negative_float,
    "skip_debounce_seconds": parse_non_negative_float,
    "max_retries": parse_non_negative_int,
    "retry_initial_delay_seconds": parse_non_negative_float,
    "retry_backoff_factor": parse_non_negative_float,
    "retry_max_delay_seconds": parse_non_negative_float,
    "interactive_retry": _parse_boolean,
    "batch_min_interval_seconds": parse_non_negative_float,
    "audio_format": _parse_lowercase,
    "work_dir": _parse_path,
    "ffmpeg": _parse_string,
    "ffprobe": _parse_string,
    "ffplay": _parse_string,
    "request_timeout_seconds": parse_non_negative_float,
}

_ENV_FIELD_NAMES: dict[str, str] = {
    "OPENAI_API_KEY": "api_key",
    "OPENAI_BASE_URL": "base_url",
    **{
        f"READALOUD_{name.upper()}": name
        for name in _FIELD_PARSERS
        if name not in {"api_key", "base_url"}
    },
}


class ConfigLoader:
    """Factory methods for creating `ReadAloudConfig` from external sources."""

    _SUPPORTED_YAML_KEYS = frozenset(_FIELD_PARSERS)
    _RUNTIME_ENV_KEYS = frozenset(
        {
            "READALOUD_TTS_MODEL",
            "READALOUD_TTS_VOICE",
            "OPENAI_API_KEY",
            "OPENAI_BASE_URL",
        }
    )

    @staticmethod
    def from_yaml(path: Path) -> ReadAloudConfig:
        """Create a validated config from a YAML file."""

        payload = ConfigLoader._parse_yaml_payload(path.read_text(encoding="utf-8"), path)
        source_label = f"YAML `{path}`"

        unknown = sorted(set(payload).difference(ConfigLoader._SUPPORTED_YAML_KEYS))
        if unknown:
            raise ValueError(f"{source_label} includes unsupported key(s): {', '.join(unknown)}.")

        values = ConfigLoader._parse_values(
            {key: (key, payload[key]) for key in payload},
            source_label=source_label,
        )
        config = ReadAloudConfig(**values)
        config.validate()
        return config

    @staticmethod
    def from_env(env: Mapping[str, str] | None = None) -> ReadAloudConfig:
        """Create a validated config from environment variables."""

        env_map: Mapping[str, str] = os.environ if env is None else env
        present = {
            _ENV_FIELD_NAMES[key]: (key, value)
            for key, value in env_map.items()
            if key in _ENV_FIELD_NAMES
        }
        values = ConfigLoader._parse_values(present, source_label="Environment")

        runtime_env = {
            key: value
            for key, value in env_map.items()
            if key in ConfigLoader._RUNTIME_ENV_KEYS
            and normalize_optional_string(value) is not None
        }
        config = ReadAloudConfig(**values, runtime_sources=RuntimeConfigSources(env=runtime_env))
        config.validate()
        return config

    @staticmethod
    def merge(base: ReadAloudConfig, overrides: Mapping[str, Any]) -> ReadAloudConfig:
        """Return a validated copy of `base` with non-`None` overrides applied."""

        known = {item.name for item in fields(ReadAloudConfig)}
        unknown = sorted(set(overrides).difference(known))
        if unknown:
            raise ValueError(f"Unsupported config override(s): {', '.join(unknown)}.")
        values = {item.name: getattr(base, item.name) for item in fields(ReadAloudConfig)}
        values.update({key: value for key, value in overrides.items() if value is not None})
        merged = ReadAloudConfig(**values)
        merged.validate()
        return merged

    @staticmethod
    def _parse_values(
        raw: Mapping[str, tuple[str, object]], source_label: str
    ) -> dict[str, Any]:
        """Parse raw `(source_key, value)` pairs keyed by config field name."""

        values: dict[str, Any] = {}
        for field_name, (source_key, raw_value) in raw.items():
            if raw_value is None:
                continue
            parser = _FIELD_PARSERS[field_name]
            try:
                parsed = parser(raw_value, source_key)
            except ValueError as exc:
                raise ValueError(f"{source_label} field {exc}") from exc
            if parsed is not None:
                values[field_name] = parsed
        return values

    @staticmethod
    def _parse_yaml_payload(raw_text: str, path: Path) -> Mapping[str, Any]:
        """Parse YAML text and enforce a mapping root payload."""

        try:
            payload = yaml.safe_load(raw_text)
        except yaml.YAMLError as exc:
            raise ValueError(f"YAML config `{path}` could not be parsed: {exc}") from exc

        if payload is None:
            payload = {}
        if not isinstance(payload, Mapping):
            raise ValueError(f"YAML config `{path}` must contain a top-level mapping/object.")
        return payload
