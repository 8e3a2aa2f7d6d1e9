"""Cancellable subprocess runner for ffmpeg-family tools.

Responsibilities:
- Run one external tool with captured output, polling so cancellation can kill it.
- Map missing executables and non-zero exits to the caller's stage error type.
"""

from __future__ import annotations

import subprocess
from typing import Sequence

from ..cancellation import CancelToken
from ..errors import Cancelled, ToolFailed
from ..parsing import normalize_optional_string

_POLL_SECONDS = 0.1
_STDERR_TAIL_CHARS = 400

_INSTALL_HINT = "Install ffmpeg (which provides `ffmpeg` and `ffprobe`) and make it available on PATH."


def run_tool(
    command: Sequence[str],
    *,
    stage: str,
    error_type: type[ToolFailed],
    cancel_token: CancelToken | None = None,
    hint: str | None = None,
) -> str:
    """Run `command` to completion and return its stdout.

    Raises:
        Cancelled: When `cancel_token` fires; the process is killed and reaped first.
        ToolFailed: As `error_type`, for a missing executable or a non-zero exit.
    """

    token = cancel_token or CancelToken(stage)
    token.raise_if_cancelled(stage)
    tool_name = command[0]
    try:
        process = subprocess.Popen(
            list(command),
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
        )
    except FileNotFoundError as exc:
        raise error_type(
            stage=stage,
            detail=f"Audio tool `{tool_name}` is not available on PATH.",
            hint=_INSTALL_HINT,
        ) from exc

    try:
        while True:
            try:
                stdout, stderr = process.communicate(timeout=_POLL_SECONDS)
                break
            except subprocess.TimeoutExpired:
                if token.cancelled:
                    raise Cancelled(stage=stage, detail=f"`{tool_name}` run cancelled.")
    except BaseException:
        if process.poll() is None:
            process.kill()
        process.wait()
        raise

    if process.returncode != 0:
        stderr_text = normalize_optional_string(stderr) or "no stderr output"
        raise error_type(
            stage=stage,
            detail=(
                f"`{tool_name}` exited with status {process.returncode}: "
                f"{stderr_text[-_STDERR_TAIL_CHARS:]}"
            ),
            hint=hint,
        )
    return stdout or ""
