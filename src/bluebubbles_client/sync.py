"""Connection lifecycle and poll loop for a BlueBubbles server.

The server has no push channel. After the capability handshake and the
first conversation listing, a single background task asks for messages
newer than the high-water mark every ``poll_interval`` seconds and pushes
converted items and tapbacks to the subscribed listeners.
"""

from __future__ import annotations

import asyncio
import logging
import mimetypes
import re
import time
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Callable

from bluebubbles_client.api.auth import AuthState
from bluebubbles_client.api.client import BlueBubblesAPI
from bluebubbles_client.config import ClientConfig
from bluebubbles_client.converters import chat_to_conversation
from bluebubbles_client.exceptions import (
    ApiError,
    AttachmentError,
    BlueBubblesError,
    ConnectionFailedError,
    MessageSendError,
)
from bluebubbles_client.listener import ConnectionListener, ListenerRegistry
from bluebubbles_client.models import (
    PROGRESS_INDETERMINATE,
    Attachment,
    AttachmentRequestErrorCode,
    ConnectionErrorCode,
    ConversationTarget,
    CreateChatErrorCode,
    LinkedConversation,
    MessageError,
    MessageErrorCode,
    MessageItem,
    MessageSearchOptions,
    MessageSearchResult,
    MessageStatusCode,
    ServerMetadata,
    ThreadFetchOptions,
    ThreadFetchResult,
    UnlinkedConversation,
)
from bluebubbles_client.tapbacks.cache import SmsTapbackCache
from bluebubbles_client.tapbacks.resolver import ProcessedBatch, TapbackResolver
from bluebubbles_client.targets import ConversationGuidCache, ConversationTargetResolver
from bluebubbles_client.threads import ConversationMedia, ThreadEngine

logger = logging.getLogger(__name__)


class SyncState(Enum):
    IDLE = "idle"
    INITIALIZING = "initializing"
    OPEN = "open"
    POLLING = "polling"
    CLOSED = "closed"


def generate_temp_guid(request_id: int) -> str:
    """Client-side GUID the server echoes back as ``tempGuid``."""
    return f"web-{int(time.time() * 1000)}-{request_id}"


def map_message_error(error: Exception) -> MessageError:
    if isinstance(error, MessageSendError) and error.error is not None:
        return error.error
    if isinstance(error, ApiError) and error.status == 0:
        return MessageError(MessageErrorCode.LOCAL_NETWORK, str(error))
    return MessageError(MessageErrorCode.SERVER_EXTERNAL, str(error))


def _record(response: dict) -> dict:
    data = response.get("data") if isinstance(response, dict) else None
    return data if isinstance(data, dict) else response


class SyncEngine:
    """Keeps a listener in sync with one BlueBubbles server.

    Args:
        config: Connection settings.
        api: Wire client; built from ``config`` when omitted.
        listeners: Registry to emit into; a new one when omitted.

    Usage::

        engine = SyncEngine(ClientConfig.from_env())
        engine.subscribe(MyListener())
        await engine.connect()
        await engine.request_conversations()   # starts polling
        ...
        await engine.aclose()
    """

    def __init__(
        self,
        config: ClientConfig,
        api: BlueBubblesAPI | None = None,
        listeners: ListenerRegistry | None = None,
    ):
        self.config = config
        self.api = api or BlueBubblesAPI(AuthState.from_config(config), timeout=config.request_timeout)
        self.listeners = listeners if listeners is not None else ListenerRegistry()
        self.resolver = TapbackResolver(
            sms_cache=SmsTapbackCache(config.sms_tapback_cache_limit),
            debug_logging=config.debug_logging,
        )
        self.targets = ConversationTargetResolver(ConversationGuidCache(config.conversation_cache_limit))
        self.threads = ThreadEngine(self.api, self.resolver, config.page_size)

        self.state = SyncState.IDLE
        self.metadata: ServerMetadata | None = None
        self.high_water_mark: int | None = None
        self.supports_delivered_receipts = False
        self.supports_read_receipts = False
        self._has_started_polling = False
        self._poll_task: asyncio.Task | None = None
        self._poll_lock = asyncio.Lock()

    def subscribe(self, listener: ConnectionListener) -> Callable[[], None]:
        return self.listeners.subscribe(listener)

    @property
    def communications_version(self) -> list[int]:
        """Server version as integers, e.g. ``"1.9.7"`` -> ``[1, 9, 7]``."""
        if self.metadata is None or not self.metadata.server_version:
            return []
        parts = []
        for part in self.metadata.server_version.split("."):
            digits = re.sub(r"[^\d]", "", part)
            if digits:
                parts.append(int(digits))
        return parts

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> ServerMetadata:
        """Run the capability handshake and emit ``on_open``.

        Any failure closes the engine with ``EXTERNAL_ERROR`` and raises
        ``ConnectionFailedError``. It is not retried.
        """
        self.state = SyncState.INITIALIZING
        self._has_started_polling = False
        self.high_water_mark = None
        self.targets.clear()
        self.resolver.reset()

        try:
            metadata = await self.api.fetch_server_metadata()
            private_api = metadata.private_api
            helper = metadata.helper_connected
            reactions = metadata.feature("reactions", True)
            delivered = metadata.feature("delivered_receipts", True)
            read = metadata.feature("read_receipts", delivered)
        except Exception as e:
            self._fail(e)
            raise ConnectionFailedError(f"BlueBubbles handshake failed: {e}") from e

        self.metadata = metadata
        self.supports_delivered_receipts = bool(private_api and helper and delivered)
        self.supports_read_receipts = bool(private_api and helper and read)
        self.resolver.configure(
            self.supports_delivered_receipts,
            self.supports_read_receipts,
            reactions_enabled=bool(reactions),
        )

        self.state = SyncState.OPEN
        logger.info(
            f"Connected to BlueBubbles {metadata.server_version} on macOS {metadata.os_version} "
            f"(delivered receipts: {self.supports_delivered_receipts}, "
            f"read receipts: {self.supports_read_receipts})"
        )
        self.listeners.emit(
            "on_open", metadata.computer_id, metadata.os_version, metadata.server_version, False
        )
        return metadata

    def disconnect(self, code: ConnectionErrorCode | None = None) -> None:
        """Stop polling, move to CLOSED and emit ``on_close``."""
        self._teardown()
        self.listeners.emit("on_close", code or ConnectionErrorCode.CONNECTION)

    async def aclose(self) -> None:
        """Disconnect, close the HTTP client and drop all listeners."""
        if self.state is not SyncState.CLOSED:
            self.disconnect()
        if self._poll_task is not None:
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass
            self._poll_task = None
        await self.api.aclose()
        self.listeners.clear()

    def _teardown(self) -> None:
        self.state = SyncState.CLOSED
        self._has_started_polling = False
        if self._poll_task is not None and not self._poll_task.done():
            self._poll_task.cancel()

    def _fail(self, error: Exception) -> None:
        if self.state is SyncState.CLOSED:
            return
        logger.warning(f"BlueBubbles connection failed: {error}")
        if self.config.on_error is not None:
            self.config.on_error(error)
        self._teardown()
        self.listeners.emit("on_close", ConnectionErrorCode.EXTERNAL_ERROR)

    async def ping(self) -> bool:
        try:
            await self.api.ping()
        except ApiError as e:
            logger.debug(f"Ping failed: {e}")
            return False
        return True

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    def _ensure_polling(self) -> None:
        if self._has_started_polling or self.state is not SyncState.OPEN:
            return
        self._has_started_polling = True
        self.state = SyncState.POLLING
        self._poll_task = asyncio.get_running_loop().create_task(self._poll_loop())

    async def _poll_loop(self) -> None:
        while self.state is SyncState.POLLING:
            await asyncio.sleep(self.config.poll_interval)
            if self.state is not SyncState.POLLING:
                break
            try:
                await self.poll_once()
            except Exception as e:
                logger.warning(f"Failed to poll BlueBubbles updates, retrying next cycle: {e}")

    async def poll_once(self) -> ProcessedBatch:
        """One poll cycle: fetch messages after the high-water mark and emit them.

        Items are emitted newest first. The high-water mark never moves
        backwards, even if the server returns an older batch.
        """
        async with self._poll_lock:
            payload: dict = {
                "sort": "DESC",
                "limit": self.config.page_size,
                "with": ["attachments", "chat"],
                "offset": 0,
            }
            if self.high_water_mark is not None:
                payload["after"] = self.high_water_mark

            response = await self.api.query_messages(payload)
            records = list(response.get("data") or [])
            if not records:
                return ProcessedBatch()

            records.sort(key=lambda record: record.get("dateCreated") or 0)
            latest = records[-1].get("dateCreated") or 0
            if self.high_water_mark is None or latest > self.high_water_mark:
                self.high_water_mark = latest

            self._observe_record_chats(records)
            processed = self.resolver.process(records)
            if self.config.debug_logging:
                logger.debug(
                    f"Poll returned {len(records)} records: {len(processed.items)} items, "
                    f"{len(processed.modifiers)} tapbacks, high-water mark {self.high_water_mark}"
                )
            self._emit_batch(processed, newest_first=True)
            return processed

    def _emit_batch(self, processed: ProcessedBatch, newest_first: bool = False) -> None:
        if processed.items:
            items = list(reversed(processed.items)) if newest_first else list(processed.items)
            self.listeners.emit("on_message_update", items)
        if processed.modifiers:
            self.listeners.emit("on_modifier_update", list(processed.modifiers))

    # ------------------------------------------------------------------
    # Conversations
    # ------------------------------------------------------------------

    def _observe_chat(self, chat: dict) -> LinkedConversation:
        conversation = chat_to_conversation(chat)
        self.targets.observe(conversation)
        return conversation

    def _observe_record_chats(self, records: list[dict]) -> None:
        for record in records:
            for chat in record.get("chats") or []:
                if chat.get("guid") and chat.get("participants"):
                    self._observe_chat(chat)

    async def request_conversations(self, limit: int | None = None) -> list[LinkedConversation]:
        """List chats, emit ``on_message_conversations``, and start polling once."""
        response = await self.api.fetch_chats(limit=max(1, limit) if limit is not None else None)
        conversations = [self._observe_chat(chat) for chat in response.get("data") or []]
        self.listeners.emit("on_message_conversations", conversations)
        self._ensure_polling()
        return conversations

    async def request_conversation_info(self, chat_guids: list[str]) -> list[tuple[str, LinkedConversation | None]]:
        async def _fetch(guid: str):
            try:
                response = await self.api.fetch_chat(guid)
                return guid, self._observe_chat(_record(response))
            except ApiError as e:
                logger.warning(f"Failed to fetch chat {guid}: {e}")
                return guid, None

        results = list(await asyncio.gather(*(_fetch(guid) for guid in chat_guids)))
        self.listeners.emit("on_conversation_update", results)
        return results

    async def create_chat(self, request_id: int, members: list[str], service: str) -> LinkedConversation | None:
        """Create a server chat and link the participant set to it."""
        body = {"addresses": list(members), "service": service, "method": "private-api"}
        try:
            response = await self.api.create_chat(body)
            conversation = self._observe_chat(_record(response))
        except (ApiError, KeyError) as e:
            code = CreateChatErrorCode.NETWORK if isinstance(e, ApiError) and e.status == 0 else CreateChatErrorCode.UNKNOWN_EXTERNAL
            logger.warning(f"Failed to create chat with {members}: {e}")
            self.listeners.emit("on_create_chat_response", request_id, code, str(e))
            return None

        self.targets.promote(UnlinkedConversation(tuple(members), service), conversation.guid)
        self.listeners.emit("on_create_chat_response", request_id, None, conversation.guid)
        self.listeners.emit("on_conversation_update", [(conversation.guid, conversation)])
        return conversation

    # ------------------------------------------------------------------
    # Threads and search
    # ------------------------------------------------------------------

    async def request_thread(
        self,
        chat_guid: str,
        options: ThreadFetchOptions | None = None,
        cancel: asyncio.Event | None = None,
    ) -> ThreadFetchResult:
        """Fetch a page of history and emit ``on_message_thread``.

        Tapbacks already appear on the historical items, so they are not
        re-emitted as modifiers.
        """
        result = await self.threads.fetch_thread(chat_guid, options, cancel)
        direction = (options or ThreadFetchOptions()).resolved_direction
        newest = result.newest_date
        if direction == "latest" and newest is not None:
            if self.high_water_mark is None or newest > self.high_water_mark:
                self.high_water_mark = newest
        self.listeners.emit("on_message_thread", chat_guid, options, result.items, result.metadata)
        return result

    async def fetch_conversation_media(
        self,
        chat_guid: str,
        options: ThreadFetchOptions | None = None,
        cancel: asyncio.Event | None = None,
    ) -> ConversationMedia:
        return await self.threads.fetch_conversation_media(chat_guid, options, cancel)

    async def search_messages(self, options: MessageSearchOptions) -> MessageSearchResult:
        return await self.threads.search_messages(options)

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------

    def _optimistic_item(self, request_id: int, chat_guid: str, temp_guid: str, **fields) -> MessageItem:
        return MessageItem(
            date=datetime.now(timezone.utc),
            chat_guid=chat_guid,
            status=MessageStatusCode.UNCONFIRMED,
            local_id=request_id,
            temp_guid=temp_guid,
            **fields,
        )

    async def send_message(self, request_id: int, target: ConversationTarget, text: str) -> str | None:
        """Send a text message.

        Raises ``ConversationResolutionError`` straight away for an unlinked
        target with no known chat. Otherwise an unconfirmed item is emitted
        first, then the confirmed one; send failures are reported through
        ``on_send_message_response`` and return None.
        """
        chat_guid = self.targets.resolve(target)
        temp_guid = generate_temp_guid(request_id)
        self.listeners.emit(
            "on_message_update", [self._optimistic_item(request_id, chat_guid, temp_guid, text=text)]
        )

        payload = {"chatGuid": chat_guid, "message": text, "tempGuid": temp_guid}
        try:
            response = await self.api.send_text_message(payload)
        except BlueBubblesError as e:
            logger.warning(f"Failed to send message {temp_guid}: {e}")
            self.listeners.emit("on_send_message_response", request_id, map_message_error(e))
            return None

        record = _record(response)
        self._emit_batch(self.resolver.process([record]))
        self.listeners.emit("on_send_message_response", request_id, None)
        return record.get("guid")

    async def send_file(
        self,
        request_id: int,
        target: ConversationTarget,
        file: Path | str | bytes,
        name: str | None = None,
        mime_type: str | None = None,
        on_progress: Callable[[int], None] | None = None,
    ) -> str:
        """Upload a file as a message and return the confirmed message GUID.

        Raises ``AttachmentError`` for a missing local file and
        ``MessageSendError`` (after notifying the listener) when the upload fails.
        """
        chat_guid = self.targets.resolve(target)
        if isinstance(file, bytes):
            content = file
            name = name or "attachment"
        else:
            path = Path(file)
            if not path.exists():
                raise AttachmentError(f"File not found: {file}")
            content = await asyncio.to_thread(path.read_bytes)
            name = name or path.name
        mime_type = mime_type or mimetypes.guess_type(name)[0] or "application/octet-stream"

        temp_guid = generate_temp_guid(request_id)
        optimistic = self._optimistic_item(
            request_id,
            chat_guid,
            temp_guid,
            attachments=(Attachment(guid=temp_guid, name=name, mime_type=mime_type, size=len(content)),),
            progress=PROGRESS_INDETERMINATE,
        )
        self.listeners.emit("on_message_update", [optimistic])

        def _progress(sent: int) -> None:
            if on_progress is not None:
                on_progress(sent)

        fields = {"chatGuid": chat_guid, "name": name, "tempGuid": temp_guid}
        try:
            record = await self.api.upload_attachment(fields, name, content, mime_type, _progress)
        except BlueBubblesError as e:
            error = map_message_error(e)
            logger.warning(f"Failed to upload {name} ({temp_guid}): {e}")
            self.listeners.emit("on_send_message_response", request_id, error)
            raise MessageSendError(f"Failed to send {name}: {e}", error) from e

        self._emit_batch(self.resolver.process([record]))
        self.listeners.emit("on_send_message_response", request_id, None)
        return record.get("guid")

    # ------------------------------------------------------------------
    # Attachments
    # ------------------------------------------------------------------

    async def download_attachment(
        self,
        request_id: int,
        attachment_guid: str,
        cancel: asyncio.Event | None = None,
    ) -> bool:
        """Stream an attachment to the listener's ``on_file_request_*`` callbacks."""
        try:
            async with self.api.download_attachment(attachment_guid) as download:
                self.listeners.emit(
                    "on_file_request_start",
                    request_id,
                    None,
                    download.content_type,
                    download.content_length,
                )
                async for chunk in download.chunks():
                    if cancel is not None and cancel.is_set():
                        raise asyncio.CancelledError()
                    self.listeners.emit("on_file_request_data", request_id, chunk)
        except asyncio.CancelledError:
            logger.info(f"Download of attachment {attachment_guid} cancelled")
            self.listeners.emit(
                "on_file_request_fail", request_id, AttachmentRequestErrorCode.CANCELLED
            )
            raise
        except ApiError as e:
            logger.warning(f"Failed to download attachment {attachment_guid}: {e}")
            code = (
                AttachmentRequestErrorCode.SERVER_NOT_FOUND
                if e.status == 404
                else AttachmentRequestErrorCode.SERVER_IO
            )
            self.listeners.emit("on_file_request_fail", request_id, code)
            return False

        self.listeners.emit("on_file_request_complete", request_id)
        return True

    async def fetch_attachment_thumbnail(self, attachment_guid: str) -> bytes:
        async with self.api.download_attachment_thumbnail(attachment_guid) as download:
            return await download.read()
