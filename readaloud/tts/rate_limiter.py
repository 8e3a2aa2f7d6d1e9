"""Request pacing for batch synthesis.

Responsibilities:
- Enforce a per-key minimum interval between backend requests.
- Keep pacing independent from retry policy and provider adapters.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from time import monotonic, sleep
from typing import Callable


@dataclass(slots=True)
class RateLimiter:
    """Per-key minimum-interval limiter used around batch speech requests."""

    min_interval_seconds: float = 0.05
    clock: Callable[[], float] = monotonic
    sleeper: Callable[[float], None] = sleep
    _next_allowed_at: dict[str, float] = field(default_factory=dict)

    def acquire(self, key: str) -> None:
        """Block until `key` may issue another request."""

        if self.min_interval_seconds <= 0.0:
            return
        now = self.clock()
        wait_seconds = self._next_allowed_at.get(key, 0.0) - now
        if wait_seconds > 0.0:
            self.sleeper(wait_seconds)
            now = self.clock()
        self._next_allowed_at[key] = now + self.min_interval_seconds
