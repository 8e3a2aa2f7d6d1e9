"""Deterministic text cleaning rules applied before sentence splitting.

Responsibilities:
- Provide composable cleanup rules for document-derived paragraph text.
- Keep preprocessing predictable so cache keys stay stable across sessions.
"""

from __future__ import annotations

import re
from typing import Protocol


class CleanerRule(Protocol):
    """Protocol for text cleaning rules."""

    def apply(self, text: str) -> str:
        """Apply a single cleaning transformation."""


class ReplaceUrls:
    """Replace URL-like substrings with a spoken placeholder naming the domain."""

    _URL_RE = re.compile(r"\S*(?:https?://|www\.)([^/\s]+)(?:/\S*)?", re.IGNORECASE)

    def apply(self, text: str) -> str:
        """Rewrite `https://example.com/a` as `- (link to example.com) -`."""

        return self._URL_RE.sub(r"- (link to \1) -", text)


class FixHyphenation:
    """Repair line-wrap hyphenation artifacts."""

    def apply(self, text: str) -> str:
        """Join word fragments split by a hyphen followed by whitespace."""

        return re.sub(r"(\w+)-\s+(\w+)", r"\1\2", text)


class StripEmphasisMarkers:
    """Remove markdown-style emphasis characters the voice would otherwise read."""

    _EMPHASIS_RE = re.compile(r"[*_~`]+")

    def apply(self, text: str) -> str:
        """Drop runs of `*`, `_`, `~`, and backticks."""

        return self._EMPHASIS_RE.sub("", text)


class CollapseWhitespace:
    """Normalize whitespace runs to single spaces and trim the ends."""

    def apply(self, text: str) -> str:
        """Collapse consecutive whitespace and strip."""

        return re.sub(r"\s+", " ", text).strip()


class TextCleaner:
    """Apply a sequence of deterministic cleaner rules."""

    def __init__(self, rules: list[CleanerRule] | None = None) -> None:
        """Initialize with custom rules or the default speech-cleanup sequence."""

        self.rules = rules or [
            ReplaceUrls(),
            FixHyphenation(),
            StripEmphasisMarkers(),
            CollapseWhitespace(),
        ]

    def clean(self, text: str) -> str:
        """Apply all configured rules in order."""

        current = text
        for rule in self.rules:
            current = rule.apply(current)
        return current
