"""Cancellation tokens shared by playback advances and export requests.

Responsibilities:
- Provide one idempotent, thread-safe cancel signal per logical operation.
- Run registered abort callbacks exactly once (for example closing an HTTP response).
- Let suspension points check or wait on cancellation without busy loops.
"""

from __future__ import annotations

import threading
from typing import Callable

from .errors import Cancelled


class CancelToken:
    """Cancellation signal for one logical operation."""

    def __init__(self, label: str = "operation") -> None:
        """Initialize an un-cancelled token with a diagnostic label."""

        self.label = label
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: list[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        """Return whether `cancel` has been called."""

        return self._event.is_set()

    def cancel(self) -> None:
        """Cancel the operation; repeated calls are no-ops."""

        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks = list(self._callbacks)
            self._callbacks.clear()
        for callback in callbacks:
            callback()

    def on_cancel(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Register an abort callback and return a function that unregisters it.

        When the token is already cancelled the callback runs immediately.
        """

        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)
                return lambda: self._discard(callback)
        callback()
        return lambda: None

    def raise_if_cancelled(self, stage: str) -> None:
        """Raise `Cancelled` for `stage` when the token was cancelled."""

        if self._event.is_set():
            raise Cancelled(stage=stage, detail=f"{self.label} cancelled.")

    def wait(self, timeout: float) -> bool:
        """Block up to `timeout` seconds; return `True` when cancelled meanwhile."""

        return self._event.wait(timeout)

    def _discard(self, callback: Callable[[], None]) -> None:
        with self._lock:
            if callback in self._callbacks:
                self._callbacks.remove(callback)
