"""Text helpers including the markdown word tokenizer."""

from __future__ import annotations

import re
from typing import Callable, List, Protocol, Sequence, Tuple

WORD_BOUNDARY = re.compile(r"[ \n\r\t\"|,()\[\]/]+")
NUMBER = re.compile(r"\d+(?:\.\d+)?")
CODE_BLOCK_HEADER = re.compile(r"```\w*")

FORMATTING_MARKERS = "_*"
PUNCTUATION_MARKERS = "`.:\",!?"

# Runs of alphabetic-script letters, digits and underscore, or one CJK character.
SCRIPT_RUN = re.compile(
    r"[0-9A-Za-z_"
    r"\u00C0-\u00D6\u00D8-\u00F6\u00F8-\u024F"  # Latin-1 supplement, Latin extended
    r"\u0370-\u03FF"  # Greek
    r"\u0400-\u04FF"  # Cyrillic
    r"\u0600-\u06FF"  # Arabic
    r"]+"
    r"|[\u4E00-\u9FFF\u3040-\u309F\u30A0-\u30FF\uAC00-\uD7AF]"
)


class Tokenizer(Protocol):
    def tokenize(self, content: str) -> List[str]:
        ...


Span = Tuple[int, int]
StripRule = Callable[[str, int, int], Span]


def _strip_pair(opening: str, closing: str) -> StripRule:
    """Rule removing one ``opening`` at the start and one ``closing`` at the end."""

    def strip(token: str, start: int, end: int) -> Span:
        if token.startswith(opening, start, end):
            start += len(opening)
        if token.endswith(closing, start, end):
            end -= len(closing)
        return start, end

    return strip


def _strip_formatting(token: str, start: int, end: int) -> Span:
    # A whole run of one marker character goes at once: "**foo__" -> "foo".
    if start < end and token[start] in FORMATTING_MARKERS:
        marker = token[start]
        while start < end and token[start] == marker:
            start += 1
    if start < end and token[end - 1] in FORMATTING_MARKERS:
        marker = token[end - 1]
        while end > start and token[end - 1] == marker:
            end -= 1
    return start, end


def _strip_punctuation(token: str, start: int, end: int) -> Span:
    if start < end and token[start] in PUNCTUATION_MARKERS:
        start += 1
    if start < end and token[end - 1] in PUNCTUATION_MARKERS:
        end -= 1
    return start, end


STRIP_RULES: Sequence[StripRule] = (
    _strip_pair("==", "=="),
    _strip_formatting,
    _strip_punctuation,
    _strip_pair("[[", "]]"),
)


def strip_markers(token: str) -> str:
    """Strip stacked markdown markers from both ends of a token.

    The rules are applied in order, repeatedly, until a full pass leaves the
    token unchanged, so nested markers such as ``_**foo**_`` or ``[[foo]]:``
    are removed completely. Rules move a ``(start, end)`` span over the
    token and the token is sliced once, so long marker runs stay linear.
    """
    start, end = 0, len(token)
    while True:
        span = (start, end)
        for rule in STRIP_RULES:
            start, end = rule(token, start, end)
        if (start, end) == span:
            return token[start:end]


class UnitTokenizer:
    """Constant tokenizer for non-prose content; always yields no tokens."""

    def tokenize(self, content: str) -> List[str]:
        return []


class WordTokenizer:
    """Splits markdown prose into word tokens."""

    def tokenize(self, content: str) -> List[str]:
        if not content.strip():
            return []

        words: List[str] = []
        for token in WORD_BOUNDARY.split(content):
            if not token or NUMBER.fullmatch(token) or CODE_BLOCK_HEADER.fullmatch(token):
                continue
            for run in SCRIPT_RUN.findall(strip_markers(token)):
                word = run.strip("_")
                if word and not NUMBER.fullmatch(word):
                    words.append(word)
        return words


UNIT_TOKENIZER = UnitTokenizer()
WORD_TOKENIZER = WordTokenizer()


def markdown_tokenize(content: str) -> List[str]:
    """Tokenize markdown prose into words."""
    return WORD_TOKENIZER.tokenize(content)
