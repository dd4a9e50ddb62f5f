"""Tests for conversation target resolution."""

from datetime import datetime, timezone

import pytest

from bluebubbles_client.exceptions import ConversationResolutionError
from bluebubbles_client.models import (
    ConversationPreview,
    ConversationPreviewType,
    LinkedConversation,
    LinkedTarget,
    UnlinkedConversation,
    UnlinkedTarget,
)
from bluebubbles_client.targets import (
    ConversationGuidCache,
    ConversationTargetResolver,
    conversation_key,
)


def linked(guid, members, service="iMessage"):
    preview = ConversationPreview(ConversationPreviewType.CHAT_CREATION, datetime.now(timezone.utc))
    return LinkedConversation(guid=guid, service=service, members=tuple(members), preview=preview)


def test_key_is_order_and_case_insensitive():
    assert conversation_key(["B@x.com", "+1555"], "iMessage") == conversation_key(["+1555", "b@x.com"], "iMessage")
    assert conversation_key(["+1555"], "iMessage") != conversation_key(["+1555"], "SMS")


def test_linked_target_resolves_directly():
    assert ConversationTargetResolver().resolve(LinkedTarget("chat-1")) == "chat-1"


def test_unlinked_target_resolves_after_observe():
    resolver = ConversationTargetResolver()
    resolver.observe(linked("chat-1", ["+1555", "a@b.com"]))
    assert resolver.resolve(UnlinkedTarget(("A@B.com", "+1555"), "iMessage")) == "chat-1"


def test_unknown_unlinked_target_raises():
    with pytest.raises(ConversationResolutionError, match="create the chat first"):
        ConversationTargetResolver().resolve(UnlinkedTarget(("+1555",), "iMessage"))


def test_unsupported_target_type():
    with pytest.raises(TypeError):
        ConversationTargetResolver().resolve("chat-1")


def test_promote_links_and_relinks(caplog):
    resolver = ConversationTargetResolver()
    conversation = UnlinkedConversation(("+1555",), "SMS")
    assert resolver.promote(conversation, "chat-1") == LinkedTarget("chat-1")
    resolver.promote(conversation, "chat-2")
    assert resolver.resolve(UnlinkedTarget(("+1555",), "SMS")) == "chat-2"
    assert "re-linked" in caplog.text


def test_cache_evicts_oldest():
    cache = ConversationGuidCache(capacity=2)
    cache.set("a", "1")
    cache.set("b", "2")
    cache.set("a", "1")
    cache.set("c", "3")
    assert len(cache) == 2
    assert cache.get("b") is None
    assert cache.get("a") == "1"


def test_clear():
    resolver = ConversationTargetResolver()
    resolver.observe(linked("chat-1", ["+1555"]))
    resolver.clear()
    assert len(resolver.cache) == 0
