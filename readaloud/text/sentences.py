"""Sentence boundary detection for cleaned paragraph text.

Responsibilities:
- Split one cleaned paragraph into natural sentences.
- Avoid false boundaries at abbreviations, acronyms, and decimal numbers.
"""

from __future__ import annotations

import re


class SentenceSplitter:
    """Split single-paragraph text into sentences with deterministic boundary rules."""

    _TERMINATORS = ".!?"
    _TRAILING_SENTENCE_CLOSERS = "\"')]}»”’"
    _COMMON_ABBREVIATIONS = frozenset(
        {
            "mr.",
            "mrs.",
            "ms.",
            "dr.",
            "prof.",
            "sr.",
            "jr.",
            "st.",
            "etc.",
            "e.g.",
            "i.e.",
            "vs.",
            "no.",
            "fig.",
            "al.",
        }
    )
    _ACRONYM_PATTERN = re.compile(r"(?:[A-Za-z]\.){2,}$")

    def split(self, text: str) -> list[str]:
        """Return trimmed sentences in source order.

        Text without terminal punctuation comes back as a single sentence.
        """

        sentences: list[str] = []
        text_length = len(text)
        start = 0
        index = 0
        while index < text_length:
            if text[index] not in self._TERMINATORS or not self._is_sentence_boundary(
                text, index
            ):
                index += 1
                continue

            end = self._consume_trailing_sentence_tail(text, index + 1)
            if end < text_length and not text[end].isspace():
                index = end
                continue

            sentence = text[start:end].strip()
            if sentence:
                sentences.append(sentence)
            start = end
            index = end

        tail = text[start:].strip()
        if tail:
            sentences.append(tail)
        return sentences

    def _is_sentence_boundary(self, text: str, punctuation_index: int) -> bool:
        """Return whether punctuation at index terminates a sentence."""

        if text[punctuation_index] != ".":
            return True
        if self._is_decimal_period(text, punctuation_index):
            return False
        if self._is_abbreviation_period(text, punctuation_index):
            return False
        return True

    def _is_decimal_period(self, text: str, punctuation_index: int) -> bool:
        """Return whether a period is part of a decimal number."""

        if punctuation_index <= 0 or punctuation_index + 1 >= len(text):
            return False
        return text[punctuation_index - 1].isdigit() and text[punctuation_index + 1].isdigit()

    def _is_abbreviation_period(self, text: str, punctuation_index: int) -> bool:
        """Return whether a period belongs to a likely abbreviation token."""

        start = punctuation_index
        while start > 0 and text[start - 1].isalpha():
            start -= 1
        token = text[start : punctuation_index + 1].lower()
        if token in self._COMMON_ABBREVIATIONS:
            return True

        acronym_start = max(0, punctuation_index - 8)
        acronym_window = text[acronym_start : punctuation_index + 1]
        return bool(self._ACRONYM_PATTERN.search(acronym_window))

    def _consume_trailing_sentence_tail(self, text: str, index: int) -> int:
        """Consume repeated terminators and closing quotes/brackets after a boundary."""

        adjusted = index
        text_length = len(text)
        while adjusted < text_length and text[adjusted] in self._TERMINATORS:
            adjusted += 1
        while adjusted < text_length and text[adjusted] in self._TRAILING_SENTENCE_CLOSERS:
            adjusted += 1
        return adjusted
