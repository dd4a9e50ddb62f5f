"""Domain models shared by the converters, resolvers and sync engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, IntEnum
from typing import Literal, Union


class ConversationItemType(Enum):
    MESSAGE = "message"
    PARTICIPANT_ACTION = "participant_action"
    CHAT_RENAME_ACTION = "chat_rename_action"


class MessageStatusCode(IntEnum):
    """Delivery state of a message. Ordered: a status only ever advances."""

    UNCONFIRMED = 0
    SENT = 1
    DELIVERED = 2
    READ = 3

    @classmethod
    def advance(cls, current: MessageStatusCode | None, new: MessageStatusCode) -> MessageStatusCode:
        return new if current is None or new >= current else current


class TapbackType(IntEnum):
    """Tapback kinds, numbered by their offset in the legacy code space."""

    LOVE = 0
    LIKE = 1
    DISLIKE = 2
    LAUGH = 3
    EMPHASIS = 4
    QUESTION = 5


class ParticipantActionType(Enum):
    UNKNOWN = "unknown"
    JOIN = "join"
    LEAVE = "leave"


class ConversationPreviewType(Enum):
    MESSAGE = "message"
    CHAT_CREATION = "chat_creation"


class MessageErrorCode(Enum):
    LOCAL_UNKNOWN = "local_unknown"
    LOCAL_NETWORK = "local_network"
    SERVER_EXTERNAL = "server_external"
    SERVER_UNKNOWN = "server_unknown"


class AttachmentRequestErrorCode(Enum):
    TIMEOUT = "timeout"
    BAD_RESPONSE = "bad_response"
    SERVER_NOT_FOUND = "server_not_found"
    SERVER_IO = "server_io"
    CANCELLED = "cancelled"


class CreateChatErrorCode(Enum):
    NETWORK = "network"
    UNKNOWN_EXTERNAL = "unknown_external"


class ConnectionErrorCode(Enum):
    CONNECTION = "connection"
    INTERNET = "internet"
    EXTERNAL_ERROR = "external_error"


#: Sender sentinel for tapbacks authored by the local user.
LOCAL_SENDER = "me"

#: ``MessageItem.progress`` value for an upload of unknown length.
PROGRESS_INDETERMINATE = -1

ThreadDirection = Literal["latest", "before", "after"]


@dataclass(frozen=True)
class MessageError:
    code: MessageErrorCode
    detail: str | None = None


@dataclass(frozen=True)
class Attachment:
    guid: str
    name: str
    mime_type: str
    size: int
    blurhash: str | None = None


@dataclass(frozen=True)
class TapbackItem:
    """A tapback modifier applied to (or removed from) a target message."""

    message_guid: str
    sender: str
    is_addition: bool
    tapback_type: TapbackType


@dataclass(frozen=True)
class MessageItem:
    date: datetime
    server_id: int | None = None
    guid: str | None = None
    chat_guid: str | None = None
    text: str | None = None
    subject: str | None = None
    sender: str | None = None  # None = local user
    attachments: tuple[Attachment, ...] = ()
    tapbacks: tuple[TapbackItem, ...] = ()
    status: MessageStatusCode = MessageStatusCode.UNCONFIRMED
    status_date: datetime | None = None
    error: MessageError | None = None
    send_style: str | None = None
    local_id: int | None = None
    temp_guid: str | None = None
    progress: int | None = None

    item_type = ConversationItemType.MESSAGE

    @property
    def is_outgoing(self) -> bool:
        return self.sender is None

    @property
    def is_confirmed(self) -> bool:
        return self.guid is not None and self.server_id is not None


@dataclass(frozen=True)
class ParticipantActionItem:
    date: datetime
    action_type: ParticipantActionType
    server_id: int | None = None
    guid: str | None = None
    chat_guid: str | None = None
    user: str | None = None
    target: str | None = None

    item_type = ConversationItemType.PARTICIPANT_ACTION


@dataclass(frozen=True)
class ChatRenameActionItem:
    date: datetime
    server_id: int | None = None
    guid: str | None = None
    chat_guid: str | None = None
    user: str = ""
    chat_name: str = ""

    item_type = ConversationItemType.CHAT_RENAME_ACTION


ConversationItem = Union[MessageItem, ParticipantActionItem, ChatRenameActionItem]


@dataclass(frozen=True)
class ConversationPreview:
    type: ConversationPreviewType
    date: datetime
    text: str | None = None
    attachments: tuple[str, ...] = ()
    send_style: str | None = None


@dataclass(frozen=True)
class LinkedConversation:
    """A conversation backed by a server chat."""

    guid: str
    service: str
    members: tuple[str, ...]
    preview: ConversationPreview
    name: str | None = None
    local_id: int | None = None
    unread_messages: bool = False
    local_only: bool = False


@dataclass(frozen=True)
class UnlinkedConversation:
    """A conversation known only by its participants, not yet on the server."""

    members: tuple[str, ...]
    service: str


Conversation = Union[LinkedConversation, UnlinkedConversation]


@dataclass(frozen=True)
class LinkedTarget:
    guid: str


@dataclass(frozen=True)
class UnlinkedTarget:
    members: tuple[str, ...]
    service: str


ConversationTarget = Union[LinkedTarget, UnlinkedTarget]


@dataclass(frozen=True)
class ThreadFetchOptions:
    """Anchor and direction for a thread page request.

    With no ``direction``, an anchored request pages backwards ("before") and
    an unanchored one fetches the newest page ("latest").
    """

    anchor_server_id: int | None = None
    direction: ThreadDirection | None = None
    limit: int | None = None

    @property
    def resolved_direction(self) -> ThreadDirection:
        if self.direction is not None:
            return self.direction
        return "before" if self.anchor_server_id is not None else "latest"


@dataclass(frozen=True)
class ThreadFetchMetadata:
    """Min/max server IDs seen in a fetch. Used for pagination only."""

    oldest_server_id: int | None = None
    newest_server_id: int | None = None


@dataclass
class ThreadFetchResult:
    items: list[ConversationItem]
    metadata: ThreadFetchMetadata | None
    has_more: bool = False
    # Newest raw record dateCreated (epoch ms), reactions included.
    newest_date: int | None = None


@dataclass
class ServerMetadata:
    """Merged ``/server/info`` and ``/server/features`` response."""

    computer_id: str
    os_version: str
    server_version: str
    private_api: bool = False
    helper_connected: bool = False
    features: dict[str, bool] | None = None

    @classmethod
    def from_wire(cls, info: dict, features: dict | None = None) -> "ServerMetadata":
        private_api = info.get("private_api")
        helper_connected = info.get("helper_connected")
        if features is not None:
            if features.get("private_api") is not None:
                private_api = features["private_api"]
            if features.get("helper_connected") is not None:
                helper_connected = features["helper_connected"]
        return cls(
            computer_id=info.get("computer_id", ""),
            os_version=info.get("os_version", ""),
            server_version=info.get("server_version", ""),
            private_api=bool(private_api),
            helper_connected=bool(helper_connected),
            features=features,
        )

    def feature(self, name: str, default: bool | None = None) -> bool | None:
        if self.features is None or self.features.get(name) is None:
            return default
        return self.features[name]


@dataclass
class MessageSearchOptions:
    term: str
    limit: int | None = None
    offset: int | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    chat_guids: list[str] = field(default_factory=list)
    handle_guids: list[str] = field(default_factory=list)


@dataclass
class MessageSearchResult:
    items: list[ConversationItem]
    metadata: dict | None = None
