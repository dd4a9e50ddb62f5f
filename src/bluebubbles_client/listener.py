"""Listener interface for the UI/state layer, and the registry that fans out to it."""

from __future__ import annotations

import logging
from typing import Callable

from bluebubbles_client.models import (
    AttachmentRequestErrorCode,
    ConnectionErrorCode,
    Conversation,
    ConversationItem,
    CreateChatErrorCode,
    MessageError,
    TapbackItem,
    ThreadFetchMetadata,
    ThreadFetchOptions,
)

logger = logging.getLogger(__name__)


class ConnectionListener:
    """Receives events from a ``SyncEngine``.

    Every method is a no-op here; subclasses override the events they use.
    Items and tapbacks passed in are immutable snapshots. Matching an
    optimistic outgoing message to its confirmed copy is the listener's job.
    """

    def on_open(self, server_id: str, os_version: str, server_version: str, facetime_supported: bool) -> None:
        pass

    def on_close(self, error_code: ConnectionErrorCode) -> None:
        pass

    def on_message_conversations(self, conversations: list[Conversation]) -> None:
        pass

    def on_conversation_update(self, updates: list[tuple[str, Conversation | None]]) -> None:
        pass

    def on_message_thread(
        self,
        chat_guid: str,
        options: ThreadFetchOptions | None,
        items: list[ConversationItem],
        metadata: ThreadFetchMetadata | None,
    ) -> None:
        pass

    def on_message_update(self, items: list[ConversationItem]) -> None:
        pass

    def on_modifier_update(self, tapbacks: list[TapbackItem]) -> None:
        pass

    def on_send_message_response(self, request_id: int, error: MessageError | None) -> None:
        pass

    def on_create_chat_response(
        self,
        request_id: int,
        error: CreateChatErrorCode | None,
        detail_or_guid: str | None = None,
    ) -> None:
        pass

    def on_file_request_start(
        self,
        request_id: int,
        file_name: str | None,
        mime_type: str | None,
        size: int,
    ) -> None:
        pass

    def on_file_request_data(self, request_id: int, data: bytes) -> None:
        pass

    def on_file_request_complete(self, request_id: int) -> None:
        pass

    def on_file_request_fail(self, request_id: int, error: AttachmentRequestErrorCode) -> None:
        pass


class ListenerRegistry:
    """Explicit subscription list. ``emit`` calls every listener in order.

    A listener that raises is logged and skipped so the rest still see
    the event.
    """

    def __init__(self):
        self._listeners: list[ConnectionListener] = []

    def __len__(self) -> int:
        return len(self._listeners)

    def subscribe(self, listener: ConnectionListener) -> Callable[[], None]:
        """Add ``listener``; returns a function that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def clear(self) -> None:
        self._listeners.clear()

    def emit(self, event: str, *args) -> None:
        for listener in list(self._listeners):
            try:
                getattr(listener, event)(*args)
            except Exception:
                logger.exception(f"Listener {listener!r} failed handling {event}")
