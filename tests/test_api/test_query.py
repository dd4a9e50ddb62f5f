"""Tests for message query builders."""

from datetime import datetime, timezone

from bluebubbles_client.api.query import (
    anchor_clause,
    like_contains_pattern,
    thread_query,
    to_server_timestamp,
    where,
    where_in,
)


def test_like_pattern_escapes_wildcards():
    assert like_contains_pattern("50%_off[1]") == "%50[%][_]off[[]1]%"


def test_like_pattern_plain():
    assert like_contains_pattern("hello") == "%hello%"


def test_server_timestamp_is_seconds():
    dt = datetime(2024, 1, 1, 12, 0, 0, 900000, tzinfo=timezone.utc)
    assert to_server_timestamp(dt) == 1704110400


def test_where_without_args():
    assert where("message.text IS NOT NULL") == {"statement": "message.text IS NOT NULL"}


def test_where_in_numbers_placeholders():
    clause = where_in("chat.guid", ["a", "b"], "chat")
    assert clause == {
        "statement": "chat.guid IN (:chat0, :chat1)",
        "args": {"chat0": "a", "chat1": "b"},
    }


def test_anchor_clause_direction():
    assert anchor_clause(10, "after")["statement"] == "message.ROWID > :rowid"
    assert anchor_clause(10, "before")["statement"] == "message.ROWID < :rowid"
    assert anchor_clause(10, "before")["args"] == {"rowid": 10}


def test_thread_query_latest():
    payload = thread_query("chat-1", 25)
    assert payload == {
        "chatGuid": "chat-1",
        "sort": "DESC",
        "limit": 25,
        "with": ["attachments"],
        "offset": 0,
    }


def test_thread_query_after_sorts_ascending():
    payload = thread_query("chat-1", 0, "after", 42)
    assert payload["sort"] == "ASC"
    assert payload["limit"] == 1
    assert payload["where"] == [{"statement": "message.ROWID > :rowid", "args": {"rowid": 42}}]
