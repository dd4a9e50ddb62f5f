"""Tests for tapback identifier normalization."""

import pytest

from bluebubbles_client.models import TapbackType
from bluebubbles_client.tapbacks.identifiers import (
    NormalizedTapback,
    normalize_message_guid,
    normalize_tapback_identifier,
    tapback_type_for_code,
)


@pytest.mark.parametrize("tapback_type", list(TapbackType))
def test_numeric_codes(tapback_type):
    n = int(tapback_type)
    assert normalize_tapback_identifier(2000 + n) == NormalizedTapback(n, False)
    assert normalize_tapback_identifier(3000 + n) == NormalizedTapback(n, True)
    assert normalize_tapback_identifier(str(2000 + n)) == NormalizedTapback(n, False)


@pytest.mark.parametrize("raw,expected", [
    ("love", (0, False)),
    ("Heart", (0, False)),
    ("-like", (1, True)),
    ("thumbs-down", (2, False)),
    ("tapback-remove-laugh", (3, True)),
    ("tapback:haha", (3, False)),
    ("emphasize-remove", (4, True)),
    ("com.apple.messages.tapback.question", (5, False)),
    ("com.apple.messages.tapback.-question", (5, True)),
    ("  Exclamation  ", (4, False)),
])
def test_string_identifiers(raw, expected):
    assert normalize_tapback_identifier(raw) == NormalizedTapback(*expected)


@pytest.mark.parametrize("raw", [None, "", "   ", "sparkles", "tapback-"])
def test_unknown_identifiers(raw):
    assert normalize_tapback_identifier(raw) is None


def test_out_of_range_code_has_no_type():
    normalized = normalize_tapback_identifier(2006)
    assert normalized == NormalizedTapback(6, False)
    assert tapback_type_for_code(normalized.code) is None
    assert tapback_type_for_code(3) is TapbackType.LAUGH


@pytest.mark.parametrize("guid,expected", [
    ("p:0/ABC-123", "ABC-123"),
    ("bp:12/ABC", "ABC"),
    ("ABC-123", "ABC-123"),
    ("  ABC  ", "ABC"),
    ("a/b", "a/b"),
    ("", None),
    (None, None),
])
def test_normalize_message_guid(guid, expected):
    assert normalize_message_guid(guid) == expected
