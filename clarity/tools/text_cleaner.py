from __future__ import annotations

import re

from clarity.config import settings

BOILERPLATE_PHRASES = (
    "skip to main content",
    "skip to content",
    "skip to navigation",
    "jump to content",
    "jump to navigation",
    "toggle navigation",
    "main menu",
    "back to top",
    "accept all cookies",
)

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f-\x9f\u200b\ufeff]")
_WHITESPACE = re.compile(r"\s+")
_BOILERPLATE = re.compile(
    r"\b(?:"
    + "|".join(r"\s+".join(map(re.escape, p.split())) for p in BOILERPLATE_PHRASES)
    + r")\b",
    re.IGNORECASE,
)


def _normalize(text: str) -> str:
    text = _CONTROL_CHARS.sub("", text.replace("\xa0", " "))
    while True:
        stripped = _WHITESPACE.sub(" ", _BOILERPLATE.sub(" ", text)).strip()
        if stripped == text:
            return stripped
        text = stripped


def clean(raw: str, max_chars: int | None = None) -> str:
    """Normalize extracted page text into a compact snippet.

    Whitespace runs collapse to single spaces, control characters and
    navigation boilerplate are removed, and the result is cut to
    ``max_chars`` (``settings.source_max_chars`` when omitted, an empty
    string when ``0``, no cap when negative). Cleaning is idempotent for a
    given cap.
    """
    limit = settings.source_max_chars if max_chars is None else max_chars
    text = _normalize(raw or "")
    if limit < 0:
        return text
    if limit == 0:
        return ""
    # Truncation can expose a new boilerplate match at the cut, so repeat
    # until the output is a fixed point.
    while True:
        cut = _normalize(text[:limit])
        if cut == text:
            return cut
        text = cut
