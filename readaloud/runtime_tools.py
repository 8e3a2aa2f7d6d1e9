"""Runtime executable resolution for external media tools.

Responsibilities:
- Resolve `ffmpeg`, `ffprobe`, and `ffplay` with bundled-first precedence, then `PATH`.
- Support frozen app layouts (for example PyInstaller) and local development runs.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
import shutil
import sys


@dataclass(frozen=True, slots=True)
class MediaTools:
    """Resolved executable paths for the media tools used by export and playback."""

    ffmpeg: str = "ffmpeg"
    ffprobe: str = "ffprobe"
    ffplay: str = "ffplay"

    @classmethod
    def resolve(
        cls,
        *,
        ffmpeg: str = "ffmpeg",
        ffprobe: str = "ffprobe",
        ffplay: str = "ffplay",
    ) -> MediaTools:
        """Resolve each configured command name to an executable path."""

        return cls(
            ffmpeg=resolve_executable(ffmpeg),
            ffprobe=resolve_executable(ffprobe),
            ffplay=resolve_executable(ffplay),
        )

    def missing(self) -> list[str]:
        """Return tool names that resolve neither to a file nor to a `PATH` entry."""

        names = {"ffmpeg": self.ffmpeg, "ffprobe": self.ffprobe, "ffplay": self.ffplay}
        return [
            name
            for name, command in names.items()
            if not Path(command).is_file() and shutil.which(command) is None
        ]


def resolve_executable(command_name: str) -> str:
    """Resolve an executable with bundled-first precedence, then PATH.

    Resolution order:
    1. Bundled app directories (`./bin/<tool>` then `./<tool>` from app root).
    2. System `PATH`.
    3. Raw command name (allowing subprocess to raise a native missing-binary error).
    """

    normalized = command_name.strip()
    if not normalized:
        return command_name

    for candidate in _bundled_candidates(normalized):
        if candidate.is_file():
            return str(candidate)

    resolved_path = shutil.which(normalized)
    if resolved_path is not None:
        return resolved_path

    return normalized


def _bundled_candidates(command_name: str) -> list[Path]:
    app_root = _app_root()
    candidates: list[Path] = []
    for name in _candidate_names(command_name):
        candidates.append(app_root / "bin" / name)
        candidates.append(app_root / name)
    return candidates


def _candidate_names(command_name: str) -> tuple[str, ...]:
    """Return command name variants including Windows `.exe` fallback."""

    if command_name.lower().endswith(".exe"):
        return (command_name,)
    return (command_name, f"{command_name}.exe")


def _app_root() -> Path:
    if getattr(sys, "frozen", False):
        return Path(sys.executable).resolve().parent
    return Path(__file__).resolve().parents[1]
