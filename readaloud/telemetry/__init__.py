"""Runtime telemetry helpers."""

from .logger import EventLogger

__all__ = ["EventLogger"]
