"""Bounded caches used while resolving tapbacks.

All caches here are insertion-ordered and evict oldest-first once over
capacity, so their memory use is fixed regardless of session length.
"""

from __future__ import annotations

from collections import OrderedDict, deque
from dataclasses import dataclass, field
from datetime import datetime

from bluebubbles_client.models import MessageStatusCode, TapbackItem
from bluebubbles_client.tapbacks.sms import ellipsis_prefix, matches_target

DEFAULT_SMS_CAPACITY = 50
DEFAULT_MAX_CHATS = 500
DEFAULT_TAPBACK_CAPACITY = 5000


@dataclass
class _ChatTexts:
    by_text: dict[str, list[str]] = field(default_factory=dict)
    order: deque = field(default_factory=deque)  # (normalized_text, guid)


class SmsTapbackCache:
    """Recent SMS message texts per chat, for resolving free-text tapbacks.

    Args:
        capacity: Texts remembered per chat.
        max_chats: Chats tracked before the least recently used is dropped.
    """

    def __init__(self, capacity: int = DEFAULT_SMS_CAPACITY, max_chats: int = DEFAULT_MAX_CHATS):
        self.capacity = capacity
        self.max_chats = max_chats
        self._chats: OrderedDict[str, _ChatTexts] = OrderedDict()

    def __len__(self) -> int:
        return len(self._chats)

    def size(self, chat_guid: str) -> int:
        entry = self._chats.get(chat_guid)
        return len(entry.order) if entry else 0

    def clear(self) -> None:
        self._chats.clear()

    def remember(self, chat_guid: str, normalized_text: str, message_guid: str) -> None:
        if not normalized_text:
            return
        entry = self._chats.get(chat_guid)
        if entry is None:
            entry = _ChatTexts()
            self._chats[chat_guid] = entry
            while len(self._chats) > self.max_chats:
                self._chats.popitem(last=False)
        else:
            self._chats.move_to_end(chat_guid)

        entry.by_text.setdefault(normalized_text, []).append(message_guid)
        entry.order.append((normalized_text, message_guid))

        while len(entry.order) > self.capacity:
            old_text, old_guid = entry.order.popleft()
            guids = entry.by_text.get(old_text)
            if not guids:
                continue
            if old_guid in guids:
                guids.remove(old_guid)
            if not guids:
                del entry.by_text[old_text]

    def lookup(self, chat_guid: str, normalized_text: str) -> str | None:
        """Newest GUID whose text equals, or is truncated to, ``normalized_text``."""
        entry = self._chats.get(chat_guid)
        if entry is None:
            return None
        guids = entry.by_text.get(normalized_text)
        if guids:
            return guids[-1]
        if ellipsis_prefix(normalized_text) is None:
            return None
        for text, guid in reversed(entry.order):
            if matches_target(text, normalized_text):
                return guid
        return None


class TapbackStore:
    """Live tapbacks per target message GUID.

    At most one addition per ``(sender, tapback_type)`` is kept for a
    message; a removal deletes it, or does nothing if there is none.
    """

    def __init__(self, capacity: int = DEFAULT_TAPBACK_CAPACITY):
        self.capacity = capacity
        self._by_guid: OrderedDict[str, list[TapbackItem]] = OrderedDict()

    def __contains__(self, guid: str) -> bool:
        return guid in self._by_guid

    def __len__(self) -> int:
        return len(self._by_guid)

    def clear(self) -> None:
        self._by_guid.clear()

    def get(self, guid: str | None) -> tuple[TapbackItem, ...] | None:
        if guid is None or guid not in self._by_guid:
            return None
        return tuple(self._by_guid[guid])

    def set(self, guid: str, tapbacks) -> None:
        self._by_guid[guid] = list(tapbacks)
        self._by_guid.move_to_end(guid)
        while len(self._by_guid) > self.capacity:
            self._by_guid.popitem(last=False)

    def apply(self, tapback: TapbackItem) -> None:
        current = list(self._by_guid.get(tapback.message_guid, ()))
        index = next(
            (
                i for i, existing in enumerate(current)
                if existing.sender == tapback.sender
                and existing.tapback_type == tapback.tapback_type
            ),
            None,
        )
        if tapback.is_addition:
            if index is None:
                current.append(tapback)
            else:
                current[index] = tapback
        elif index is not None:
            del current[index]
        self.set(tapback.message_guid, current)


class StatusHistory:
    """Last status seen per message GUID, so a re-fetched copy never regresses.

    A message fetched again from a server that lost its receipt data would
    otherwise go from Read back to Sent.
    """

    def __init__(self, capacity: int = DEFAULT_TAPBACK_CAPACITY):
        self.capacity = capacity
        self._by_guid: OrderedDict[str, tuple[MessageStatusCode, datetime | None]] = OrderedDict()

    def __len__(self) -> int:
        return len(self._by_guid)

    def clear(self) -> None:
        self._by_guid.clear()

    def advance(
        self,
        guid: str,
        status: MessageStatusCode,
        status_date: datetime | None,
    ) -> tuple[MessageStatusCode, datetime | None]:
        """Record ``status`` for ``guid`` and return the furthest one seen."""
        previous = self._by_guid.get(guid)
        best = MessageStatusCode.advance(previous[0] if previous else None, status)
        result = (status, status_date) if best == status else previous
        self._by_guid[guid] = result
        self._by_guid.move_to_end(guid)
        while len(self._by_guid) > self.capacity:
            self._by_guid.popitem(last=False)
        return result
