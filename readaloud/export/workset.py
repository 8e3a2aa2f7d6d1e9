"""Temporary working directory scoped to one export request."""

from __future__ import annotations

import shutil
import tempfile
import uuid
from pathlib import Path
from types import TracebackType


class EphemeralWorkSet:
    """Own one temp directory for an export; `cleanup` removes it exactly once.

    Use as a context manager so every exit path releases the directory.
    """

    def __init__(self, parent: Path | None = None, prefix: str = "readaloud-export-") -> None:
        self._parent = parent
        self._prefix = prefix
        self._root: Path | None = None
        self._released = False

    @property
    def root(self) -> Path:
        if self._root is None:
            raise RuntimeError("Work set has not been created yet.")
        return self._root

    def create(self) -> Path:
        if self._root is None:
            if self._parent is not None:
                self._parent.mkdir(parents=True, exist_ok=True)
            self._root = Path(tempfile.mkdtemp(prefix=self._prefix, dir=self._parent))
        return self._root

    def unique_path(self, stem: str, suffix: str) -> Path:
        """Return a fresh path inside the work set that no other file uses."""

        return self.root / f"{stem}-{uuid.uuid4().hex}{suffix}"

    def cleanup(self) -> None:
        if self._released:
            return
        self._released = True
        if self._root is not None:
            shutil.rmtree(self._root, ignore_errors=True)

    def __enter__(self) -> EphemeralWorkSet:
        self.create()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        self.cleanup()
