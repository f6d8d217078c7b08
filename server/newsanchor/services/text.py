"""Text preparation for avatar providers that speak raw text themselves."""
from __future__ import annotations

import re


GENERIC_FALLBACK_TEXT = (
    "Here is a quick look at today's top story. "
    "Please read the full article for all the details."
)

_MARKUP_RE = re.compile(r"<[^>]+>")
_MARKDOWN_RE = re.compile(r"[*_#`~|>\[\]{}]+")
_CONTROL_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_URL_RE = re.compile(r"https?://\S+")
# "marketsRallied" -> "markets Rallied"; needs 3 lowercase letters so brand
# names like "iPhone" or "McDonald" survive.
_RUN_TOGETHER_RE = re.compile(r"(?<=[a-z]{3})(?=[A-Z][a-z])")
_SENTENCE_END_RE = re.compile(r"[.!?](?=\s|$)")
_VOWELS = frozenset("aeiouyAEIOUY")

MIN_VOWEL_RATIO = 0.2
MIN_LETTER_RATIO = 0.5
LONG_WORD_CHARS = 25


def sanitize_text(text: str) -> str:
    """Strip markup, links and control characters and collapse whitespace."""
    cleaned = _MARKUP_RE.sub(" ", text or "")
    cleaned = _URL_RE.sub(" ", cleaned)
    cleaned = _CONTROL_RE.sub(" ", cleaned)
    cleaned = _MARKDOWN_RE.sub(" ", cleaned)
    cleaned = _RUN_TOGETHER_RE.sub(" ", cleaned)
    return " ".join(cleaned.split())


def truncate_at_sentence(text: str, max_chars: int) -> str:
    """Cut ``text`` at the last sentence end that fits in ``max_chars``."""
    if max_chars <= 0:
        raise ValueError("max_chars must be > 0")
    if len(text) <= max_chars:
        return text
    window = text[:max_chars]
    ends = [match.end() for match in _SENTENCE_END_RE.finditer(window)]
    if ends:
        return window[: ends[-1]].strip()
    cut = window[: max_chars - 3].rsplit(" ", 1)[0] or window[: max_chars - 3]
    return f"{cut.rstrip()}..."


def looks_garbled(text: str) -> bool:
    """Heuristic check for text a presenter should not read aloud."""
    compact = "".join(text.split())
    if not compact:
        return True
    letters = [char for char in compact if char.isalpha()]
    if len(letters) / len(compact) < MIN_LETTER_RATIO:
        return True
    vowels = sum(1 for char in letters if char in _VOWELS)
    if vowels / len(letters) < MIN_VOWEL_RATIO:
        return True
    words = text.split()
    long_words = sum(1 for word in words if len(word) > LONG_WORD_CHARS)
    return long_words * 2 > len(words)


def prepare_presenter_text(text: str, max_chars: int) -> str:
    """Sanitize and bound text, swapping unreadable input for a safe sentence."""
    cleaned = sanitize_text(text)
    if looks_garbled(cleaned):
        return GENERIC_FALLBACK_TEXT
    return truncate_at_sentence(cleaned, max_chars)
