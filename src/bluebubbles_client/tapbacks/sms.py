"""Recognize tapbacks that SMS/MMS transports deliver as plain text.

Phones without structured reactions send messages like ``Liked "see you
at 5"`` or ``❤️ to "dinner?"``. This module parses those into a tapback
type plus a set of normalized target-text variants to match against
earlier messages in the same chat.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from bluebubbles_client.models import TapbackType

ELLIPSIS = "\u2026"

_ZERO_WIDTH = re.compile("[\u200b-\u200d\u2060\ufeff]")
_VARIATION_SELECTOR = re.compile("[\ufe0e\ufe0f]")
_EMOJI_MODIFIER = re.compile("[\U0001f3fb-\U0001f3ff]")
_WHITESPACE = re.compile(r"\s+")
_QUOTED = re.compile("^(.*?)[“\"”'’]([\\s\\S]*)[”\"'’]\\Z")
_SYMBOLS_WITH_SUFFIX = re.compile(r"^[^a-z0-9]+(?:\s+(?:to|at))?$")
_TRAILING_SUFFIX = re.compile(r"\s+(?:to|at)$")
_SYMBOLS_ONLY = re.compile(r"^[^a-z0-9]+$")

_ADD = True
_REMOVE = False

PREFIXES: dict[str, tuple[TapbackType, bool]] = {
    "loved": (TapbackType.LOVE, _ADD),
    "love": (TapbackType.LOVE, _ADD),
    "❤": (TapbackType.LOVE, _ADD),
    "liked": (TapbackType.LIKE, _ADD),
    "like": (TapbackType.LIKE, _ADD),
    "\U0001f44d": (TapbackType.LIKE, _ADD),
    "disliked": (TapbackType.DISLIKE, _ADD),
    "dislike": (TapbackType.DISLIKE, _ADD),
    "\U0001f44e": (TapbackType.DISLIKE, _ADD),
    "laughed at": (TapbackType.LAUGH, _ADD),
    "laughed": (TapbackType.LAUGH, _ADD),
    "\U0001f602": (TapbackType.LAUGH, _ADD),
    "emphasized": (TapbackType.EMPHASIS, _ADD),
    "emphasised": (TapbackType.EMPHASIS, _ADD),
    "‼": (TapbackType.EMPHASIS, _ADD),
    "questioned": (TapbackType.QUESTION, _ADD),
    "question": (TapbackType.QUESTION, _ADD),
    "?": (TapbackType.QUESTION, _ADD),
    "❓": (TapbackType.QUESTION, _ADD),
    "removed a heart from": (TapbackType.LOVE, _REMOVE),
    "removed heart from": (TapbackType.LOVE, _REMOVE),
    "removed a ❤ from": (TapbackType.LOVE, _REMOVE),
    "removed ❤ from": (TapbackType.LOVE, _REMOVE),
    "removed a like from": (TapbackType.LIKE, _REMOVE),
    "removed like from": (TapbackType.LIKE, _REMOVE),
    "removed a thumbs up from": (TapbackType.LIKE, _REMOVE),
    "removed thumbs up from": (TapbackType.LIKE, _REMOVE),
    "removed a \U0001f44d from": (TapbackType.LIKE, _REMOVE),
    "removed \U0001f44d from": (TapbackType.LIKE, _REMOVE),
    "removed a dislike from": (TapbackType.DISLIKE, _REMOVE),
    "removed dislike from": (TapbackType.DISLIKE, _REMOVE),
    "removed a thumbs down from": (TapbackType.DISLIKE, _REMOVE),
    "removed thumbs down from": (TapbackType.DISLIKE, _REMOVE),
    "removed a \U0001f44e from": (TapbackType.DISLIKE, _REMOVE),
    "removed \U0001f44e from": (TapbackType.DISLIKE, _REMOVE),
    "removed a laugh from": (TapbackType.LAUGH, _REMOVE),
    "removed laugh from": (TapbackType.LAUGH, _REMOVE),
    "removed \U0001f602 from": (TapbackType.LAUGH, _REMOVE),
    "removed an exclamation mark from": (TapbackType.EMPHASIS, _REMOVE),
    "removed exclamation mark from": (TapbackType.EMPHASIS, _REMOVE),
    "removed an exclamation point from": (TapbackType.EMPHASIS, _REMOVE),
    "removed exclamation point from": (TapbackType.EMPHASIS, _REMOVE),
    "removed an exclamation from": (TapbackType.EMPHASIS, _REMOVE),
    "removed exclamation from": (TapbackType.EMPHASIS, _REMOVE),
    "removed an emphasis from": (TapbackType.EMPHASIS, _REMOVE),
    "removed emphasis from": (TapbackType.EMPHASIS, _REMOVE),
    "removed ‼ from": (TapbackType.EMPHASIS, _REMOVE),
    "removed a question mark from": (TapbackType.QUESTION, _REMOVE),
    "removed question mark from": (TapbackType.QUESTION, _REMOVE),
    "removed a question from": (TapbackType.QUESTION, _REMOVE),
    "removed question from": (TapbackType.QUESTION, _REMOVE),
    "removed ❓ from": (TapbackType.QUESTION, _REMOVE),
}

# Glyphs some phones wrap around the quoted text, e.g. ❤ "hi" ❤
TARGET_WRAPPERS: dict[TapbackType, tuple[str, ...]] = {
    TapbackType.LOVE: ("❤", "♥"),
    TapbackType.LIKE: ("\U0001f44d",),
    TapbackType.DISLIKE: ("\U0001f44e",),
    TapbackType.LAUGH: ("\U0001f602", "\U0001f923"),
    TapbackType.EMPHASIS: ("‼", "❗", "!"),
    TapbackType.QUESTION: ("?", "❓", "❔"),
}


@dataclass(frozen=True)
class SmsTapback:
    tapback_type: TapbackType
    is_addition: bool
    target_text: str
    normalized_targets: tuple[str, ...]


def strip_invisible(text: str) -> str:
    """Remove zero-width characters and emoji variation selectors."""
    return _VARIATION_SELECTOR.sub("", _ZERO_WIDTH.sub("", text))


def normalize_target_text(text: str) -> str:
    return strip_invisible(text).strip()


def _collapse_repeated(text: str) -> str:
    if text and all(ch == text[0] for ch in text):
        return text[0]
    return text


def normalize_prefix(prefix: str) -> str:
    """Canonical lookup key for the text before the opening quote."""
    cleaned = _EMOJI_MODIFIER.sub("", strip_invisible(prefix))
    normalized = _WHITESPACE.sub(" ", cleaned).strip().lower()
    if not normalized:
        return normalized
    if _SYMBOLS_WITH_SUFFIX.match(normalized):
        normalized = _TRAILING_SUFFIX.sub("", normalized)
    if _SYMBOLS_ONLY.match(normalized):
        normalized = _collapse_repeated(normalized)
    return normalized


def ellipsis_prefix(text: str) -> str | None:
    """The text before a trailing ``…`` or ``...``, if it was truncated."""
    trimmed = text.rstrip()
    if trimmed.endswith(ELLIPSIS):
        prefix = trimmed[:-1].rstrip()
    elif trimmed.endswith("..."):
        prefix = trimmed[:-3].rstrip()
    else:
        return None
    return prefix or None


def matches_target(candidate: str, target: str) -> bool:
    """True if ``candidate`` is ``target`` or ``target`` is a truncation of it."""
    if candidate == target:
        return True
    prefix = ellipsis_prefix(target)
    if not prefix:
        return False
    return candidate.startswith(prefix)


def strip_target_wrappers(text: str, tapback_type: TapbackType) -> str:
    wrappers = TARGET_WRAPPERS.get(tapback_type, ())
    result = text
    changed = True
    while changed:
        changed = False
        for wrapper in wrappers:
            if len(result) < len(wrapper) * 2:
                continue
            if result.startswith(wrapper) and result.endswith(wrapper):
                result = result[len(wrapper):len(result) - len(wrapper)].strip()
                changed = True
    return result


def build_target_variants(base: str, tapback_type: TapbackType) -> tuple[str, ...]:
    """Base text, its unwrapped form, and the truncated prefix of each."""
    variants: list[str] = []

    def add(value: str | None):
        if value and value not in variants:
            variants.append(value)

    for text in (base, strip_target_wrappers(base, tapback_type)):
        if text:
            add(text)
            add(ellipsis_prefix(text))
    return tuple(variants)


def parse_sms_tapback(text: str | None) -> SmsTapback | None:
    """Parse free-text reaction syntax. Returns None for ordinary messages."""
    if not text:
        return None
    sanitized = strip_invisible(text).strip()
    if not sanitized:
        return None

    match = _QUOTED.match(sanitized)
    if not match:
        return None
    raw_prefix = match.group(1).strip()
    raw_target = match.group(2).strip()
    if not raw_prefix or not raw_target:
        return None

    mapping = PREFIXES.get(normalize_prefix(raw_prefix))
    if mapping is None:
        return None
    tapback_type, is_addition = mapping

    target_text = strip_invisible(raw_target).strip()
    base = normalize_target_text(target_text)
    if not base:
        return None
    variants = build_target_variants(base, tapback_type)
    if not variants:
        return None

    return SmsTapback(
        tapback_type=tapback_type,
        is_addition=is_addition,
        target_text=target_text,
        normalized_targets=variants,
    )
