"""Bounded in-memory audio cache for interactive playback.

Responsibilities:
- Map normalized block text to synthesized audio with strict LRU eviction.
- Track basic hit/miss telemetry for session diagnostics.
"""

from __future__ import annotations

from collections import OrderedDict

DEFAULT_CACHE_CAPACITY = 50


class AudioCache:
    """LRU cache of synthesized audio keyed by normalized block text."""

    def __init__(self, capacity: int = DEFAULT_CACHE_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError("Cache capacity must be at least 1.")
        self.capacity = capacity
        self._entries: OrderedDict[str, bytes] = OrderedDict()
        self.hits = 0
        self.misses = 0

    @staticmethod
    def make_key(text: str) -> str:
        """Build a cache key so whitespace variants of the same text share one slot."""

        return " ".join(text.split())

    def get(self, key: str) -> bytes | None:
        """Return cached audio and mark it most recently used, or `None` on a miss."""

        audio = self._entries.get(key)
        if audio is None:
            self.misses += 1
            return None
        self._entries.move_to_end(key)
        self.hits += 1
        return audio

    def set(self, key: str, audio: bytes) -> None:
        """Store audio as most recently used, evicting the least recently used entry."""

        if key in self._entries:
            self._entries.move_to_end(key)
        self._entries[key] = audio
        while len(self._entries) > self.capacity:
            self._entries.popitem(last=False)

    def has(self, key: str) -> bool:
        """Return whether `key` is cached without touching recency."""

        return key in self._entries

    def clear(self) -> None:
        """Drop every entry; telemetry counters are kept."""

        self._entries.clear()

    def keys(self) -> list[str]:
        """Return keys from least to most recently used."""

        return list(self._entries.keys())

    def __len__(self) -> int:
        return len(self._entries)

    def hit_rate(self) -> float:
        """Return cache hit rate for the current cache lifecycle."""

        total = self.hits + self.misses
        if total == 0:
            return 0.0
        return self.hits / float(total)
