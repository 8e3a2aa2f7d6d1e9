"""Domain exceptions for playback, synthesis, and export diagnostics.

Responsibilities:
- Carry a stage label, a concise detail, and an optional actionable hint.
- Expose a machine-readable `kind` per failure family for export responses.

Key types:
- `ReadAloudError`: base stage-scoped error.
- `Cancelled`, `SynthesisFailed`, `TranscodeFailed`, `ProbeFailed`, `MuxFailed`,
  and `InvalidInput`.
"""

from __future__ import annotations


class ReadAloudError(RuntimeError):
    """Raised when a specific stage of playback or export fails."""

    kind = "internal_error"

    def __init__(
        self,
        *,
        stage: str,
        detail: str,
        hint: str | None = None,
    ) -> None:
        """Initialize a stage-scoped error."""

        super().__init__(detail)
        self.stage = stage
        self.detail = detail
        self.hint = hint


class Cancelled(ReadAloudError):
    """Raised when a caller cancelled the operation; never a user-facing failure."""

    kind = "cancelled"

    def __init__(self, *, stage: str, detail: str = "Operation cancelled.") -> None:
        super().__init__(stage=stage, detail=detail)


class SynthesisFailed(ReadAloudError):
    """Raised when the synthesis backend returned non-success or malformed audio."""

    kind = "synthesis_failed"

    def __init__(
        self,
        *,
        detail: str,
        failure_kind: str = "unknown",
        status_code: int | None = None,
        hint: str | None = None,
    ) -> None:
        super().__init__(stage="synthesize", detail=detail, hint=hint)
        self.failure_kind = failure_kind
        self.status_code = status_code


class ToolFailed(ReadAloudError):
    """Base class for external audio tool failures during export."""


class TranscodeFailed(ToolFailed):
    """Raised when the canonical PCM transcode step fails."""

    kind = "transcode_failed"


class ProbeFailed(ToolFailed):
    """Raised when measuring a canonical chapter duration fails."""

    kind = "probe_failed"


class MuxFailed(ToolFailed):
    """Raised when the final concat/mux step fails."""

    kind = "mux_failed"


class InvalidInput(ReadAloudError, ValueError):
    """Raised for empty text, missing fields, or unsupported options."""

    kind = "invalid_input"


def error_payload(exc: BaseException) -> dict[str, str]:
    """Build the generic failure body returned by export surfaces.

    The message stays generic; callers branch on `kind`.
    """

    kind = exc.kind if isinstance(exc, ReadAloudError) else ReadAloudError.kind
    return {"error": "Failed to create audiobook.", "kind": kind}
