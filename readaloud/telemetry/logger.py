"""Structured event logging utilities.

Responsibilities:
- Emit concise, deterministic component-level runtime logs through `loguru`.
- Keep secrets and raw text payloads out of log context.
"""

from __future__ import annotations

import sys
from typing import TextIO

from loguru import logger as _loguru_logger


def _sanitize_context_value(value: object) -> str:
    """Convert context values into stable, shell-safe tokens."""

    raw = str(value).strip()
    if not raw:
        return "none"
    return "".join(
        character if character.isalnum() or character in {"-", "_", ".", ":", "/"} else "_"
        for character in raw
    )


def _format_context(context: dict[str, object]) -> str:
    """Serialize context key/value pairs in deterministic key order."""

    if not context:
        return ""
    tokens = [
        f"{key}={_sanitize_context_value(context[key])}"
        for key in sorted(context.keys())
    ]
    return " " + " ".join(tokens)


class EventLogger:
    """Emit deterministic event lines for playback and export activity."""

    def __init__(self, sink: TextIO | None = None, level: str = "INFO") -> None:
        """Bind a dedicated loguru sink with message-only formatting."""

        self._sink = sink or sys.stderr
        self._handler_id = _loguru_logger.add(
            self._sink,
            format="{message}",
            level=level,
            colorize=False,
            filter=lambda record: record["extra"].get("readaloud_events") is True,
        )
        self._logger = _loguru_logger.bind(readaloud_events=True)

    def close(self) -> None:
        """Detach the sink from loguru."""

        _loguru_logger.remove(self._handler_id)

    def _emit(self, level: str, component: str, event: str, **context: object) -> None:
        line = f"[event] level={level} component={component} event={event}{_format_context(context)}"
        self._logger.log(level, line)

    def debug(self, component: str, event: str, **context: object) -> None:
        """Emit a debug-level event."""

        self._emit("DEBUG", component, event, **context)

    def info(self, component: str, event: str, **context: object) -> None:
        """Emit an info-level event."""

        self._emit("INFO", component, event, **context)

    def warning(self, component: str, event: str, **context: object) -> None:
        """Emit a warning-level event."""

        self._emit("WARNING", component, event, **context)

    def failure(self, component: str, error: BaseException, **context: object) -> None:
        """Emit a failure event naming only the error type and kind."""

        kind = getattr(error, "kind", None) or "internal_error"
        self._emit(
            "ERROR",
            component,
            "failure",
            error_type=type(error).__name__,
            kind=kind,
            **context,
        )
