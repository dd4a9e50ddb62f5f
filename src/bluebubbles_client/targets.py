"""Map conversation targets (participants + service) to server chat GUIDs."""

from __future__ import annotations

import logging
from collections import OrderedDict
from typing import Iterable

from bluebubbles_client.config import DEFAULT_CONVERSATION_CACHE_LIMIT
from bluebubbles_client.exceptions import ConversationResolutionError
from bluebubbles_client.models import (
    ConversationTarget,
    LinkedConversation,
    LinkedTarget,
    UnlinkedConversation,
    UnlinkedTarget,
)

logger = logging.getLogger(__name__)


def conversation_key(members: Iterable[str], service: str) -> str:
    """``service:a,b,c`` with members lower-cased and sorted."""
    return f"{service}:{','.join(sorted(m.lower() for m in members))}"


class ConversationGuidCache:
    """Bounded ``conversation_key -> chat GUID`` map, oldest entry evicted first."""

    def __init__(self, capacity: int = DEFAULT_CONVERSATION_CACHE_LIMIT):
        self.capacity = capacity
        self._guids: OrderedDict[str, str] = OrderedDict()

    def __len__(self) -> int:
        return len(self._guids)

    def get(self, key: str) -> str | None:
        return self._guids.get(key)

    def set(self, key: str, guid: str) -> None:
        self._guids[key] = guid
        self._guids.move_to_end(key)
        while len(self._guids) > self.capacity:
            self._guids.popitem(last=False)

    def clear(self) -> None:
        self._guids.clear()


class ConversationTargetResolver:
    """Resolves send targets to chat GUIDs from chats seen this session."""

    def __init__(self, cache: ConversationGuidCache | None = None):
        self.cache = cache if cache is not None else ConversationGuidCache()

    def observe(self, conversation: LinkedConversation) -> None:
        """Record a chat that was listed, fetched or created."""
        self.cache.set(conversation_key(conversation.members, conversation.service), conversation.guid)

    def promote(self, conversation: UnlinkedConversation, guid: str) -> LinkedTarget:
        """Link a local conversation to the server chat created for it."""
        key = conversation_key(conversation.members, conversation.service)
        existing = self.cache.get(key)
        if existing is not None and existing != guid:
            logger.warning(f"Conversation {key} re-linked from {existing} to {guid}")
        self.cache.set(key, guid)
        return LinkedTarget(guid)

    def resolve(self, target: ConversationTarget) -> str:
        if isinstance(target, LinkedTarget):
            return target.guid
        if isinstance(target, UnlinkedTarget):
            guid = self.cache.get(conversation_key(target.members, target.service))
            if guid:
                return guid
            raise ConversationResolutionError(
                f"Unresolvable conversation target {target.service} {list(target.members)}; "
                "create the chat first"
            )
        raise TypeError(f"Unsupported conversation target: {target!r}")

    def clear(self) -> None:
        self.cache.clear()
