"""Normalization of tapback identifiers and message GUIDs."""

from __future__ import annotations

import re
from typing import NamedTuple

from bluebubbles_client.models import TapbackType

TAPBACK_ADD_OFFSET = 2000
TAPBACK_REMOVE_OFFSET = 3000

_NAMESPACE_PREFIX = re.compile(r"^com\.apple\.messages\.tapback\.")
_TAPBACK_PREFIX = re.compile(r"^tapback[-:_]?")
_NON_LETTERS = re.compile(r"[^a-z]")
_NUMERIC = re.compile(r"^[+-]?\d+")

_STRING_CODES = {
    "love": 0,
    "heart": 0,
    "like": 1,
    "thumbsup": 1,
    "dislike": 2,
    "thumbsdown": 2,
    "laugh": 3,
    "haha": 3,
    "emphasize": 4,
    "emphasis": 4,
    "exclamation": 4,
    "question": 5,
    "questionmark": 5,
}


class NormalizedTapback(NamedTuple):
    code: int
    is_removal: bool


def normalize_tapback_identifier(raw: str | int | None) -> NormalizedTapback | None:
    """Map a wire ``associatedMessageType`` to ``(code, is_removal)``.

    Accepts the legacy numeric space (2000+n adds, 3000+n removes) and
    string identifiers such as ``"love"``, ``"-like"``,
    ``"tapback-remove-laugh"`` or ``"com.apple.messages.tapback.question"``.
    Returns None for anything unrecognized; the caller decides how to report it.
    """
    if raw is None:
        return None
    trimmed = str(raw).strip()
    if not trimmed:
        return None

    numeric = _NUMERIC.match(trimmed)
    if numeric:
        value = int(numeric.group(0))
        if value >= TAPBACK_REMOVE_OFFSET:
            return NormalizedTapback(value - TAPBACK_REMOVE_OFFSET, True)
        return NormalizedTapback(value - TAPBACK_ADD_OFFSET, False)

    candidate = _NAMESPACE_PREFIX.sub("", trimmed.lower())
    candidate = _TAPBACK_PREFIX.sub("", candidate)

    is_removal = False
    if candidate.startswith("-"):
        is_removal = True
        candidate = candidate[1:]
    if candidate.startswith("remove-"):
        is_removal = True
        candidate = candidate[len("remove-"):]
    if candidate.endswith("-remove"):
        is_removal = True
        candidate = candidate[:-len("-remove")]

    code = _STRING_CODES.get(_NON_LETTERS.sub("", candidate))
    if code is None:
        return None
    return NormalizedTapback(code, is_removal)


def tapback_type_for_code(code: int) -> TapbackType | None:
    try:
        return TapbackType(code)
    except ValueError:
        return None


def normalize_message_guid(guid: str | None) -> str | None:
    """Strip a part prefix such as ``p:0/`` from a message GUID.

    >>> normalize_message_guid("p:0/ABC")
    'ABC'
    """
    if not guid:
        return None
    trimmed = guid.strip()
    if not trimmed:
        return None
    slash = trimmed.find("/")
    if slash > 0 and ":" in trimmed[:slash]:
        return trimmed[slash + 1:]
    return trimmed
