"""Builders for ``/message/query`` payloads."""

from __future__ import annotations

import re
from datetime import datetime

_SQLITE_LIKE_SPECIAL = re.compile(r"[%_\[]")
_LIKE_ESCAPES = {"%": "[%]", "_": "[_]", "[": "[[]"}


def to_server_timestamp(dt: datetime) -> int:
    """Seconds since the epoch, truncated, as the query filters expect."""
    return int(dt.timestamp())


def like_contains_pattern(value: str) -> str:
    """Escape ``value`` for a SQLite LIKE substring match.

    The server does not honor ESCAPE for parameterized queries, so wildcard
    characters become bracket expressions instead.
    """
    escaped = _SQLITE_LIKE_SPECIAL.sub(lambda m: _LIKE_ESCAPES[m.group(0)], value)
    return f"%{escaped}%"


def where(statement: str, **args) -> dict:
    clause: dict = {"statement": statement}
    if args:
        clause["args"] = args
    return clause


def where_in(column: str, values: list[str], prefix: str) -> dict:
    """``column IN (:prefix0, :prefix1, ...)`` with one named arg per value."""
    args = {f"{prefix}{i}": value for i, value in enumerate(values)}
    placeholders = ", ".join(f":{key}" for key in args)
    return {"statement": f"{column} IN ({placeholders})", "args": args}


def anchor_clause(anchor_server_id: int, direction: str) -> dict:
    """ROWID bound for an anchored page: strictly newer for "after", else older."""
    op = ">" if direction == "after" else "<"
    return where(f"message.ROWID {op} :rowid", rowid=anchor_server_id)


def thread_query(
    chat_guid: str,
    limit: int,
    direction: str = "latest",
    anchor_server_id: int | None = None,
    with_: list[str] | None = None,
) -> dict:
    payload: dict = {
        "chatGuid": chat_guid,
        "sort": "ASC" if direction == "after" else "DESC",
        "limit": max(1, int(limit)),
        "with": with_ or ["attachments"],
        "offset": 0,
    }
    if anchor_server_id is not None:
        payload["where"] = [anchor_clause(anchor_server_id, direction)]
    return payload
