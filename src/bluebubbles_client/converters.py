"""Translate BlueBubbles wire records into domain models.

Everything here is a pure function of its inputs: no I/O, no caches. The
tapback resolver decides which records are reactions and stamps tapback
snapshots onto the items built here.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from bluebubbles_client.models import (
    Attachment,
    ChatRenameActionItem,
    ConversationItem,
    ConversationPreview,
    ConversationPreviewType,
    LinkedConversation,
    MessageError,
    MessageErrorCode,
    MessageItem,
    MessageStatusCode,
    ParticipantActionItem,
    ParticipantActionType,
)
from bluebubbles_client.tapbacks.identifiers import normalize_message_guid

DEFAULT_SERVICE = "iMessage"

_SMS_SERVICES = {"sms", "mms", "sms/mms"}

# itemType values in the message table
_ITEM_TYPE_GROUP_ACTION = 1
_ITEM_TYPE_RENAME = 2

_PARTICIPANT_ACTIONS = {
    0: ParticipantActionType.JOIN,
    1: ParticipantActionType.LEAVE,
}


class WireKind(Enum):
    """What a flattened message record actually represents."""

    MESSAGE = "message"
    REACTION = "reaction"
    GROUP_ACTION = "group_action"
    RENAME = "rename"


def classify_message(record: dict) -> WireKind:
    """Single dispatch point for the record shapes the server flattens together."""
    if record.get("associatedMessageGuid") and record.get("associatedMessageType"):
        return WireKind.REACTION
    item_type = record.get("itemType")
    if item_type == _ITEM_TYPE_GROUP_ACTION and record.get("groupActionType") is not None:
        return WireKind.GROUP_ACTION
    if item_type == _ITEM_TYPE_RENAME:
        return WireKind.RENAME
    return WireKind.MESSAGE


def wire_date(value: int | float | None) -> datetime | None:
    """Convert a wire timestamp (milliseconds since the epoch) to an aware datetime."""
    if value is None:
        return None
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc)


def chat_guid_of(record: dict) -> str | None:
    chats = record.get("chats") or []
    if chats:
        return chats[0].get("guid")
    return None


def message_service(record: dict) -> str | None:
    """Transport of a message: the handle's service, else any chat participant's."""
    handle = record.get("handle") or {}
    service = (handle.get("service") or "").strip()
    if service:
        return service
    chats = record.get("chats") or []
    if chats:
        for participant in chats[0].get("participants") or []:
            service = (participant.get("service") or "").strip()
            if service:
                return service
    return None


def is_sms_service(service: str | None) -> bool:
    if not service:
        return False
    return service.strip().lower() in _SMS_SERVICES


def sender_of(record: dict) -> str | None:
    """Handle address of the author, or None for the local user."""
    if record.get("isFromMe"):
        return None
    handle = record.get("handle") or {}
    return handle.get("address")


def infer_service(chat: dict) -> str:
    participants = chat.get("participants") or []
    if participants:
        return participants[0].get("service") or DEFAULT_SERVICE
    return DEFAULT_SERVICE


def visible_attachments(record: dict) -> list[dict]:
    return [a for a in record.get("attachments") or [] if not a.get("hideAttachment")]


def attachment_to_domain(attachment: dict) -> Attachment:
    return Attachment(
        guid=attachment["guid"],
        name=attachment.get("transferName") or "",
        mime_type=attachment.get("mimeType") or "application/octet-stream",
        size=attachment.get("totalBytes") or 0,
        blurhash=attachment.get("blurhash"),
    )


def build_conversation_preview(record: dict) -> ConversationPreview:
    return ConversationPreview(
        type=ConversationPreviewType.MESSAGE,
        date=wire_date(record.get("dateCreated")) or datetime.now(timezone.utc),
        text=record.get("text") or None,
        attachments=tuple(a.get("transferName") or "" for a in visible_attachments(record)),
        send_style=record.get("expressiveSendStyleId") or None,
    )


def chat_to_conversation(chat: dict) -> LinkedConversation:
    members = tuple(
        handle["address"] for handle in chat.get("participants") or [] if handle.get("address")
    )
    last_message = chat.get("lastMessage")
    if last_message:
        preview = build_conversation_preview(last_message)
    else:
        preview = ConversationPreview(
            type=ConversationPreviewType.CHAT_CREATION,
            date=datetime.now(timezone.utc),
        )
    return LinkedConversation(
        guid=chat["guid"],
        service=infer_service(chat),
        members=members,
        preview=preview,
        name=chat.get("displayName") or None,
        local_id=chat.get("originalROWID"),
    )


def compute_message_status(
    record: dict,
    supports_delivered: bool,
    supports_read: bool,
) -> tuple[MessageStatusCode, datetime | None]:
    """Derive ``(status, status_date)`` for a message record.

    Inbound messages are read by the time they reach this client. For
    outbound ones, receipt timestamps win over everything else, then the
    server's receipt capabilities, then the ``isDelivered`` flag.
    """
    if not record.get("isFromMe"):
        read_at = record.get("dateRead") or record.get("dateCreated")
        return MessageStatusCode.READ, wire_date(read_at)

    if record.get("dateRead"):
        return MessageStatusCode.READ, wire_date(record["dateRead"])
    if record.get("dateDelivered"):
        return MessageStatusCode.DELIVERED, wire_date(record["dateDelivered"])
    if not (supports_delivered or supports_read):
        return MessageStatusCode.SENT, None
    if supports_delivered and record.get("isDelivered"):
        return MessageStatusCode.DELIVERED, None
    # Receipts are supported but nothing has arrived yet; see DESIGN.md.
    return MessageStatusCode.DELIVERED, None


def _action_base(record: dict) -> dict:
    return {
        "server_id": record.get("originalROWID"),
        "guid": record.get("guid"),
        "chat_guid": chat_guid_of(record),
        "date": wire_date(record.get("dateCreated")),
    }


def message_to_item(
    record: dict,
    supports_delivered: bool = False,
    supports_read: bool = False,
) -> ConversationItem | None:
    """Convert a non-reaction message record.

    Returns None for group actions whose action code is not recognized.
    """
    kind = classify_message(record)
    handle = record.get("handle") or {}

    if kind is WireKind.GROUP_ACTION:
        action_type = _PARTICIPANT_ACTIONS.get(record.get("groupActionType"))
        if action_type is None:
            return None
        return ParticipantActionItem(
            action_type=action_type,
            user=record.get("groupTitle") or handle.get("address"),
            target=record.get("replyToGuid") or None,
            **_action_base(record),
        )

    if kind is WireKind.RENAME:
        return ChatRenameActionItem(
            user=handle.get("address") or "",
            chat_name=record.get("groupTitle") or "",
            **_action_base(record),
        )

    status, status_date = compute_message_status(record, supports_delivered, supports_read)
    error = None
    if record.get("error"):
        error = MessageError(MessageErrorCode.SERVER_EXTERNAL, str(record["error"]))

    return MessageItem(
        server_id=record.get("originalROWID"),
        guid=normalize_message_guid(record.get("guid")),
        chat_guid=chat_guid_of(record),
        date=wire_date(record.get("dateCreated")),
        text=record.get("text") or None,
        subject=record.get("subject") or None,
        sender=sender_of(record),
        attachments=tuple(attachment_to_domain(a) for a in visible_attachments(record)),
        status=status,
        status_date=status_date,
        error=error,
        send_style=record.get("expressiveSendStyleId") or None,
        temp_guid=record.get("tempGuid") or None,
    )
