"""Tests for thread fetching and pagination."""

import asyncio
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from bluebubbles_client.models import (
    MessageItem,
    MessageSearchOptions,
    ThreadFetchMetadata,
    ThreadFetchOptions,
)
from bluebubbles_client.tapbacks.resolver import TapbackResolver
from bluebubbles_client.threads import (
    ThreadEngine,
    build_thread_metadata,
    has_more_history,
    item_key,
    merge_thread_items,
    record_metadata,
)

CHAT = "iMessage;-;+15551234567"
BASE_MS = 1_700_000_000_000


def record(rowid, text=None, **fields):
    data = {
        "guid": f"msg-{rowid}",
        "originalROWID": rowid,
        "text": text or f"message {rowid}",
        "dateCreated": BASE_MS + rowid * 1000,
        "isFromMe": False,
        "handle": {"address": "+15551234567", "service": "iMessage"},
        "chats": [{"guid": CHAT}],
        "attachments": [],
    }
    data.update(fields)
    return data


def make_engine(*responses, page_size=50):
    api = MagicMock()
    api.query_messages = AsyncMock(side_effect=[{"status": 200, "data": r} for r in responses])
    return ThreadEngine(api, TapbackResolver(), page_size=page_size), api


def item(guid, seconds, server_id=None):
    return MessageItem(
        date=datetime(2024, 1, 1, tzinfo=timezone.utc) + timedelta(seconds=seconds),
        guid=guid,
        server_id=server_id,
    )


class TestPagingHelpers:
    def test_has_more_requires_full_page(self):
        metadata = ThreadFetchMetadata(oldest_server_id=5, newest_server_id=10)
        assert has_more_history(10, 10, metadata) is True
        assert has_more_history(9, 10, metadata) is False

    def test_has_more_requires_progress(self):
        metadata = ThreadFetchMetadata(oldest_server_id=5, newest_server_id=10)
        assert has_more_history(10, 10, metadata, ThreadFetchMetadata(oldest_server_id=6)) is True
        assert has_more_history(10, 10, metadata, ThreadFetchMetadata(oldest_server_id=5)) is False

    def test_has_more_without_metadata(self):
        assert has_more_history(10, 10, None) is False

    def test_metadata_ignores_items_without_server_id(self):
        assert build_thread_metadata([item("a", 0), item("b", 1)]) is None
        metadata = build_thread_metadata([item("a", 0, 4), item("b", 1, 9), item("c", 2)])
        assert metadata == ThreadFetchMetadata(oldest_server_id=4, newest_server_id=9)

    def test_record_metadata_counts_reactions(self):
        records = [record(4), record(9, text=None, associatedMessageType=2000), {"guid": "x"}]
        assert record_metadata(records) == ThreadFetchMetadata(oldest_server_id=4, newest_server_id=9)
        assert record_metadata([]) is None

    def test_item_key_fallbacks(self):
        assert item_key(item("g", 0, 5)) == "g"
        assert item_key(item(None, 0, 5)) == "server:5"
        assert item_key(replace(item(None, 0), local_id=3)) == "local:3"
        assert item_key(item(None, 0)).startswith("message:")

    def test_merge_dedupes_newest_first(self):
        merged = merge_thread_items(
            [item("a", 10), item("b", 20)],
            [item("b", 25), item("c", 5)],
        )
        assert [i.guid for i in merged] == ["b", "a", "c"]
        assert merged[0].date == item("b", 25).date


@pytest.mark.asyncio
async def test_latest_page():
    engine, api = make_engine([record(3), record(1), record(2)], page_size=3)
    result = await engine.fetch_thread(CHAT)

    payload = api.query_messages.call_args.args[0]
    assert payload["sort"] == "DESC"
    assert payload["limit"] == 3
    assert "where" not in payload
    assert [i.server_id for i in result.items] == [3, 2, 1]
    assert result.metadata == ThreadFetchMetadata(oldest_server_id=1, newest_server_id=3)
    assert result.has_more is True


@pytest.mark.asyncio
async def test_before_anchor_full_page_has_more():
    engine, api = make_engine([record(99), record(98), record(97)])
    result = await engine.fetch_thread(CHAT, ThreadFetchOptions(anchor_server_id=100, limit=3))

    payload = api.query_messages.call_args.args[0]
    assert payload["where"] == [{"statement": "message.ROWID < :rowid", "args": {"rowid": 100}}]
    assert [i.server_id for i in result.items] == [99, 98, 97]
    assert all(i.server_id < 100 for i in result.items)
    assert result.has_more is True


@pytest.mark.asyncio
async def test_before_anchor_past_oldest():
    engine, _ = make_engine([record(2), record(1)])
    result = await engine.fetch_thread(CHAT, ThreadFetchOptions(anchor_server_id=3, limit=3))
    assert [i.server_id for i in result.items] == [2, 1]
    assert result.has_more is False


@pytest.mark.asyncio
async def test_before_anchor_empty_page():
    engine, _ = make_engine([])
    result = await engine.fetch_thread(CHAT, ThreadFetchOptions(anchor_server_id=1, limit=3))
    assert result.items == []
    assert result.metadata is None
    assert result.has_more is False


@pytest.mark.asyncio
async def test_after_anchor():
    engine, api = make_engine([record(11), record(12)])
    result = await engine.fetch_thread(CHAT, ThreadFetchOptions(10, "after", 2))

    payload = api.query_messages.call_args.args[0]
    assert payload["sort"] == "ASC"
    assert payload["where"][0]["statement"] == "message.ROWID > :rowid"
    assert [i.server_id for i in result.items] == [12, 11]
    assert result.has_more is True


@pytest.mark.asyncio
async def test_after_anchor_partial_page():
    engine, _ = make_engine([record(11)])
    result = await engine.fetch_thread(CHAT, ThreadFetchOptions(10, "after", 2))
    assert result.has_more is False


@pytest.mark.asyncio
async def test_thread_applies_tapbacks_in_order():
    reaction = record(5, text=None, associatedMessageGuid="p:0/msg-4", associatedMessageType=2000)
    engine, _ = make_engine([reaction, record(4)])
    result = await engine.fetch_thread(CHAT)
    assert [i.server_id for i in result.items] == [4]
    assert result.items[0].tapbacks[0].message_guid == "msg-4"


@pytest.mark.asyncio
async def test_reaction_only_page_has_more():
    reactions = [
        record(n, text=None, associatedMessageGuid="p:0/msg-50", associatedMessageType=2001)
        for n in (99, 98, 97)
    ]
    engine, _ = make_engine(reactions)
    result = await engine.fetch_thread(CHAT, ThreadFetchOptions(anchor_server_id=100, limit=3))

    assert result.items == []
    assert result.has_more is True
    assert result.metadata == ThreadFetchMetadata(oldest_server_id=97, newest_server_id=99)
    assert result.newest_date == BASE_MS + 99 * 1000


@pytest.mark.asyncio
async def test_cancelled_before_request():
    engine, api = make_engine([record(1)])
    cancel = asyncio.Event()
    cancel.set()
    with pytest.raises(asyncio.CancelledError):
        await engine.fetch_thread(CHAT, cancel=cancel)
    api.query_messages.assert_not_called()


@pytest.mark.asyncio
async def test_cancelled_result_does_not_touch_caches():
    cancel = asyncio.Event()
    api = MagicMock()

    async def respond(payload):
        cancel.set()
        return {"data": [record(1), record(2, text=None, associatedMessageGuid="msg-1", associatedMessageType=2000)]}

    api.query_messages = AsyncMock(side_effect=respond)
    resolver = TapbackResolver()
    engine = ThreadEngine(api, resolver)

    with pytest.raises(asyncio.CancelledError):
        await engine.fetch_thread(CHAT, cancel=cancel)
    assert len(resolver.store) == 0


@pytest.mark.asyncio
async def test_fetch_around_merges_both_sides():
    engine, api = make_engine([record(50), record(49)], [record(50), record(51)])
    result = await engine.fetch_around(CHAT, 50, limit=2)

    before_payload = api.query_messages.call_args_list[0].args[0]
    after_payload = api.query_messages.call_args_list[1].args[0]
    assert before_payload["where"][0]["args"] == {"rowid": 51}
    assert after_payload["where"][0]["args"] == {"rowid": 50}
    assert [i.server_id for i in result.items] == [51, 50, 49]


@pytest.mark.asyncio
async def test_conversation_media_filters_images():
    engine, api = make_engine([
        record(2, attachments=[
            {"guid": "a1", "transferName": "a.png", "mimeType": "image/png", "totalBytes": 5},
            {"guid": "a2", "transferName": "b.pdf", "mimeType": "application/pdf", "totalBytes": 5},
        ]),
        record(1, attachments=[
            {"guid": "a3", "transferName": "c.jpg", "mimeType": "image/jpeg", "totalBytes": 5},
        ]),
    ])
    media = await engine.fetch_conversation_media(CHAT, ThreadFetchOptions(anchor_server_id=10))

    payload = api.query_messages.call_args.args[0]
    assert payload["where"][0] == {"statement": "attachment.mimeType LIKE :mimeType", "args": {"mimeType": "image/%"}}
    assert payload["where"][1]["statement"] == "message.ROWID < :rowid"
    assert [a.guid for a in media.attachments] == ["a1", "a3"]
    assert media.metadata == ThreadFetchMetadata(oldest_server_id=1, newest_server_id=2)


@pytest.mark.asyncio
async def test_search_payload():
    engine, api = make_engine([record(7, text="50% off")])
    options = MessageSearchOptions(
        term=" 50% ",
        limit=0,
        offset=-3,
        start_date=datetime(2024, 1, 1, tzinfo=timezone.utc),
        end_date=datetime(2024, 1, 2, tzinfo=timezone.utc),
        chat_guids=[CHAT],
        handle_guids=["h1", "h2"],
    )
    result = await engine.search_messages(options)

    payload = api.query_messages.call_args.args[0]
    assert payload["sort"] == "DESC"
    assert payload["with"] == ["chat", "handle", "attachments"]
    assert payload["limit"] == 1
    assert payload["offset"] == 0
    assert payload["after"] == 1704067200
    assert payload["before"] == 1704153600
    assert payload["where"][0] == {"statement": "message.text LIKE :term", "args": {"term": "%50[%]%"}}
    assert payload["where"][1]["statement"] == "chat.guid IN (:chat0)"
    assert payload["where"][2]["args"] == {"handle0": "h1", "handle1": "h2"}
    assert [i.guid for i in result.items] == ["msg-7"]


@pytest.mark.asyncio
async def test_search_blank_term_skips_request():
    engine, api = make_engine()
    result = await engine.search_messages(MessageSearchOptions(term="   "))
    assert result.items == []
    api.query_messages.assert_not_called()


@pytest.mark.asyncio
async def test_search_resolves_tapbacks_oldest_first():
    removal = record(6, text=None, associatedMessageGuid="p:0/msg-4", associatedMessageType="-love")
    addition = record(5, text=None, associatedMessageGuid="p:0/msg-4", associatedMessageType="love")
    engine, _ = make_engine([record(7, text="love it"), removal, addition, record(3, text="lovely")], [record(4)])

    result = await engine.search_messages(MessageSearchOptions(term="love"))
    assert [i.guid for i in result.items] == ["msg-7", "msg-3"]
    assert engine.resolver.store.get("msg-4") == ()

    page = await engine.fetch_thread(CHAT)
    assert page.items[0].guid == "msg-4"
    assert page.items[0].tapbacks == ()
