"""Conversation history: anchored page fetches, merging and pagination."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Iterable

from bluebubbles_client.api.client import BlueBubblesAPI
from bluebubbles_client.api.query import (
    like_contains_pattern,
    thread_query,
    to_server_timestamp,
    where,
    where_in,
)
from bluebubbles_client.config import DEFAULT_PAGE_SIZE
from bluebubbles_client.models import (
    Attachment,
    ConversationItem,
    MessageItem,
    MessageSearchOptions,
    MessageSearchResult,
    ThreadFetchMetadata,
    ThreadFetchOptions,
    ThreadFetchResult,
)
from bluebubbles_client.tapbacks.resolver import TapbackResolver

logger = logging.getLogger(__name__)


@dataclass
class ConversationMedia:
    attachments: list[Attachment]
    metadata: ThreadFetchMetadata | None


def item_key(item: ConversationItem) -> str:
    """Identity used to dedupe items across overlapping fetches."""
    if item.guid:
        return item.guid
    if item.server_id is not None:
        return f"server:{item.server_id}"
    local_id = getattr(item, "local_id", None)
    if local_id is not None:
        return f"local:{local_id}"
    return f"{item.item_type.value}:{round(item.date.timestamp() * 1000)}"


def merge_thread_items(*batches: Iterable[ConversationItem]) -> list[ConversationItem]:
    """Union of ``batches``, deduped by ``item_key``, newest first.

    When two fetches return the same item, the copy with the later date wins.
    """
    merged: dict[str, ConversationItem] = {}
    for batch in batches:
        for item in batch:
            key = item_key(item)
            existing = merged.get(key)
            if existing is None or item.date > existing.date:
                merged[key] = item
    return sorted(merged.values(), key=lambda item: item.date, reverse=True)


def build_thread_metadata(items: Iterable[ConversationItem]) -> ThreadFetchMetadata | None:
    server_ids = [
        item.server_id for item in items
        if isinstance(item, MessageItem) and item.server_id is not None
    ]
    if not server_ids:
        return None
    return ThreadFetchMetadata(oldest_server_id=min(server_ids), newest_server_id=max(server_ids))


def record_metadata(records: Iterable[dict]) -> ThreadFetchMetadata | None:
    """Server ID bounds of raw records, reactions and group actions included."""
    server_ids = [
        record["originalROWID"] for record in records
        if isinstance(record.get("originalROWID"), int)
    ]
    if not server_ids:
        return None
    return ThreadFetchMetadata(oldest_server_id=min(server_ids), newest_server_id=max(server_ids))


def has_more_history(
    page_size: int,
    limit: int,
    metadata: ThreadFetchMetadata | None,
    previous: ThreadFetchMetadata | None = None,
) -> bool:
    """Whether older history is likely to exist beyond this page.

    Requires a full page and real progress on the oldest boundary; a server
    that ignores the anchor and keeps returning the same page stops here.
    """
    if page_size < limit or metadata is None or metadata.oldest_server_id is None:
        return False
    if previous is None or previous.oldest_server_id is None:
        return True
    return metadata.oldest_server_id < previous.oldest_server_id


def _oldest_first(records: Iterable[dict]) -> list[dict]:
    return sorted(records, key=lambda record: record.get("dateCreated") or 0)


def _check_cancelled(cancel: asyncio.Event | None) -> None:
    if cancel is not None and cancel.is_set():
        raise asyncio.CancelledError()


class ThreadEngine:
    """Fetches and pages message history for a chat.

    Args:
        api: Wire client.
        resolver: Shared tapback resolver; historical pages update its caches.
        page_size: Default page limit.
    """

    def __init__(
        self,
        api: BlueBubblesAPI,
        resolver: TapbackResolver,
        page_size: int = DEFAULT_PAGE_SIZE,
    ):
        self.api = api
        self.resolver = resolver
        self.page_size = page_size

    async def _query(self, payload: dict, cancel: asyncio.Event | None) -> list[dict]:
        _check_cancelled(cancel)
        response = await self.api.query_messages(payload)
        # A result that arrives after cancellation is stale; drop it before
        # it reaches the resolver caches.
        _check_cancelled(cancel)
        return _oldest_first(response.get("data") or [])

    async def fetch_thread(
        self,
        chat_guid: str,
        options: ThreadFetchOptions | None = None,
        cancel: asyncio.Event | None = None,
    ) -> ThreadFetchResult:
        """Fetch one page of a chat's history, newest item first.

        ``before``/``after`` return items strictly older/newer than the
        anchor server ID. Records are converted oldest-first so tapback
        additions and removals apply in the order they happened.
        """
        options = options or ThreadFetchOptions()
        direction = options.resolved_direction
        limit = max(1, int(options.limit)) if options.limit is not None else self.page_size
        anchor = options.anchor_server_id if direction != "latest" else None

        payload = thread_query(chat_guid, limit, direction, anchor)
        records = await self._query(payload, cancel)
        processed = self.resolver.process(records)
        items = list(reversed(processed.items))
        # Reactions and group actions count toward paging even though they
        # never become items.
        metadata = record_metadata(records)

        if direction == "after":
            has_more = (
                len(records) >= limit
                and metadata is not None
                and (anchor is None or metadata.newest_server_id > anchor)
            )
        else:
            previous = ThreadFetchMetadata(oldest_server_id=anchor) if anchor is not None else None
            has_more = has_more_history(len(records), limit, metadata, previous)

        logger.debug(
            f"Fetched {len(items)} items for {chat_guid} ({direction}, anchor={anchor}, "
            f"limit={limit}, has_more={has_more})"
        )
        dates = [record["dateCreated"] for record in records if record.get("dateCreated")]
        return ThreadFetchResult(
            items=items,
            metadata=metadata,
            has_more=has_more,
            newest_date=max(dates) if dates else None,
        )

    async def fetch_around(
        self,
        chat_guid: str,
        anchor_server_id: int,
        limit: int | None = None,
        cancel: asyncio.Event | None = None,
    ) -> ThreadFetchResult:
        """Items on both sides of an anchor, merged and deduped.

        Used to open a thread at a specific message (search hit, deep link).
        """
        half = limit or self.page_size
        older = await self.fetch_thread(
            chat_guid, ThreadFetchOptions(anchor_server_id + 1, "before", half), cancel
        )
        newer = await self.fetch_thread(
            chat_guid, ThreadFetchOptions(anchor_server_id, "after", half), cancel
        )
        items = merge_thread_items(older.items, newer.items)
        return ThreadFetchResult(
            items=items,
            metadata=build_thread_metadata(items),
            has_more=older.has_more,
        )

    async def fetch_conversation_media(
        self,
        chat_guid: str,
        options: ThreadFetchOptions | None = None,
        cancel: asyncio.Event | None = None,
    ) -> ConversationMedia:
        """Image attachments in a chat, newest first, paged like ``fetch_thread``."""
        options = options or ThreadFetchOptions()
        direction = options.resolved_direction
        limit = max(1, int(options.limit)) if options.limit is not None else self.page_size
        anchor = options.anchor_server_id if direction != "latest" else None

        payload = thread_query(chat_guid, limit, direction, anchor)
        payload["where"] = [
            where("attachment.mimeType LIKE :mimeType", mimeType="image/%"),
            *payload.get("where", []),
        ]

        records = await self._query(payload, cancel)
        items = list(reversed(self.resolver.process(records).items))
        attachments = [
            attachment
            for item in items if isinstance(item, MessageItem)
            for attachment in item.attachments
            if attachment.mime_type.startswith("image/")
        ]
        return ConversationMedia(attachments=attachments, metadata=build_thread_metadata(items))

    async def search_messages(self, options: MessageSearchOptions) -> MessageSearchResult:
        """Substring search over message text, newest first."""
        term = options.term.strip()
        if not term:
            return MessageSearchResult(items=[], metadata=None)

        payload: dict = {"sort": "DESC", "with": ["chat", "handle", "attachments"]}
        if options.limit is not None:
            payload["limit"] = max(1, int(options.limit))
        if options.offset is not None:
            payload["offset"] = max(0, int(options.offset))
        if options.start_date is not None:
            payload["after"] = to_server_timestamp(options.start_date)
        if options.end_date is not None:
            payload["before"] = to_server_timestamp(options.end_date)

        clauses = [where("message.text LIKE :term", term=like_contains_pattern(term))]
        if options.chat_guids:
            clauses.append(where_in("chat.guid", options.chat_guids, "chat"))
        if options.handle_guids:
            clauses.append(where_in("handle.guid", options.handle_guids, "handle"))
        payload["where"] = clauses

        response = await self.api.query_messages(payload)
        # Results arrive newest-first; resolve them in the order they happened.
        processed = self.resolver.process(_oldest_first(response.get("data") or []))
        return MessageSearchResult(
            items=list(reversed(processed.items)),
            metadata=response.get("metadata"),
        )
