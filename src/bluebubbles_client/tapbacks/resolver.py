"""Turn a batch of message records into items plus tapback modifiers."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace

from bluebubbles_client.converters import (
    WireKind,
    chat_guid_of,
    classify_message,
    is_sms_service,
    message_service,
    message_to_item,
)
from bluebubbles_client.models import (
    LOCAL_SENDER,
    ConversationItem,
    MessageItem,
    TapbackItem,
)
from bluebubbles_client.tapbacks.cache import SmsTapbackCache, StatusHistory, TapbackStore
from bluebubbles_client.tapbacks.identifiers import (
    normalize_message_guid,
    normalize_tapback_identifier,
    tapback_type_for_code,
)
from bluebubbles_client.tapbacks.sms import (
    SmsTapback,
    matches_target,
    normalize_target_text,
    parse_sms_tapback,
)

logger = logging.getLogger(__name__)


@dataclass
class ProcessedBatch:
    items: list[ConversationItem] = field(default_factory=list)
    modifiers: list[TapbackItem] = field(default_factory=list)


def _reaction_sender(record: dict) -> str:
    if record.get("isFromMe"):
        return LOCAL_SENDER
    return (record.get("handle") or {}).get("address") or "unknown"


def structured_tapback(record: dict) -> TapbackItem | None:
    """Build the tapback carried by an associated-message record.

    Unknown identifiers and codes are logged and dropped rather than guessed.
    """
    raw_type = record.get("associatedMessageType")
    normalized = normalize_tapback_identifier(raw_type)
    if normalized is None:
        logger.warning(
            f"Unknown tapback identifier {raw_type!r} on {record.get('guid')} "
            f"(associated {record.get('associatedMessageGuid')})"
        )
        return None

    tapback_type = tapback_type_for_code(normalized.code)
    if tapback_type is None:
        logger.warning(
            f"Unsupported tapback code {normalized.code} from {raw_type!r} on "
            f"{record.get('guid')} (associated {record.get('associatedMessageGuid')})"
        )
        return None

    target_guid = normalize_message_guid(record.get("associatedMessageGuid"))
    if target_guid is None:
        logger.warning(f"Tapback {record.get('guid')} has no associated message GUID")
        return None

    return TapbackItem(
        message_guid=target_guid,
        sender=_reaction_sender(record),
        is_addition=not normalized.is_removal,
        tapback_type=tapback_type,
    )


class TapbackResolver:
    """Stateful conversion of message records.

    Owns the tapback store and the SMS text cache; both are only mutated
    inside ``process``, synchronously, so a reaction and its target in the
    same batch always see a consistent state.

    Args:
        sms_cache: Per-chat cache of recent SMS texts.
        store: Live tapbacks per message GUID.
        statuses: Furthest delivery status seen per message GUID.
        debug_logging: Log every record as it is processed.
    """

    def __init__(
        self,
        sms_cache: SmsTapbackCache | None = None,
        store: TapbackStore | None = None,
        debug_logging: bool = False,
        statuses: StatusHistory | None = None,
    ):
        self.sms_cache = sms_cache if sms_cache is not None else SmsTapbackCache()
        self.store = store if store is not None else TapbackStore()
        self.statuses = statuses if statuses is not None else StatusHistory()
        self.debug_logging = debug_logging
        self.supports_delivered = False
        self.supports_read = False

    def configure(
        self,
        supports_delivered: bool,
        supports_read: bool,
        reactions_enabled: bool = True,
    ) -> None:
        """Apply server capabilities from the connection handshake."""
        self.supports_delivered = supports_delivered
        self.supports_read = supports_read
        if not reactions_enabled:
            self.reset()

    def reset(self) -> None:
        self.store.clear()
        self.sms_cache.clear()
        self.statuses.clear()

    def process(self, records: list[dict]) -> ProcessedBatch:
        """Convert ``records`` in order.

        Reactions become modifiers and are applied to the store after the
        whole batch is read, so a reaction that arrives before its target in
        the same batch still lands on it.
        """
        batch = ProcessedBatch()
        pending: list[TapbackItem] = []

        for record in records:
            service = message_service(record)
            if self.debug_logging:
                logger.debug(
                    f"Message {record.get('guid')}: itemType={record.get('itemType')} "
                    f"service={service} fromMe={record.get('isFromMe')} "
                    f"associated={record.get('associatedMessageGuid')}/"
                    f"{record.get('associatedMessageType')} "
                    f"delivered={record.get('dateDelivered')} read={record.get('dateRead')}"
                )

            if not record.get("associatedMessageGuid") and is_sms_service(service):
                sms_tapback = parse_sms_tapback(record.get("text"))
                if sms_tapback is not None:
                    target_guid = self._resolve_sms_target(record, sms_tapback, records)
                    if target_guid is not None:
                        tapback = TapbackItem(
                            message_guid=target_guid,
                            sender=_reaction_sender(record),
                            is_addition=sms_tapback.is_addition,
                            tapback_type=sms_tapback.tapback_type,
                        )
                        pending.append(tapback)
                        batch.modifiers.append(tapback)
                        continue
                    logger.warning(
                        f"Unable to resolve SMS tapback target for {record.get('guid')} "
                        f"in chat {chat_guid_of(record)}: {sms_tapback.target_text!r}"
                    )

            if classify_message(record) is WireKind.REACTION:
                tapback = structured_tapback(record)
                if tapback is not None:
                    if self.debug_logging:
                        logger.debug(
                            f"Tapback {record.get('guid')}: {tapback.tapback_type.name} "
                            f"{'added to' if tapback.is_addition else 'removed from'} "
                            f"{tapback.message_guid} by {tapback.sender}"
                        )
                    pending.append(tapback)
                    batch.modifiers.append(tapback)
                continue

            item = message_to_item(record, self.supports_delivered, self.supports_read)
            if item is None:
                continue
            if isinstance(item, MessageItem):
                item = self._track_message(record, item, service)
            batch.items.append(item)

        if pending:
            for tapback in pending:
                self.store.apply(tapback)
            batch.items = [self._restamp(item) for item in batch.items]

        return batch

    def _track_message(self, record: dict, item: MessageItem, service: str | None) -> MessageItem:
        if not item.guid:
            return item
        raw_guid = record.get("guid")
        tapbacks = self.store.get(item.guid)
        if tapbacks is None:
            tapbacks = self.store.get(raw_guid)
        if tapbacks is None:
            tapbacks = ()

        self.store.set(item.guid, tapbacks)
        if raw_guid and raw_guid != item.guid:
            self.store.set(raw_guid, tapbacks)
        if is_sms_service(service) and item.chat_guid and item.text:
            self.sms_cache.remember(item.chat_guid, normalize_target_text(item.text), item.guid)
        status, status_date = self.statuses.advance(item.guid, item.status, item.status_date)
        return replace(item, tapbacks=tapbacks, status=status, status_date=status_date)

    def _restamp(self, item: ConversationItem) -> ConversationItem:
        if not isinstance(item, MessageItem) or not item.guid:
            return item
        tapbacks = self.store.get(item.guid)
        if tapbacks is None:
            return item
        return replace(item, tapbacks=tapbacks)

    def _resolve_sms_target(
        self,
        record: dict,
        tapback: SmsTapback,
        batch: list[dict],
    ) -> str | None:
        """Newest same-chat message in the batch whose text matches, else the cache."""
        chat_guid = chat_guid_of(record)
        if not chat_guid:
            return None
        targets = [t for t in tapback.normalized_targets if t]
        if not targets:
            return None

        best_guid = None
        best_date = float("-inf")
        for candidate in batch:
            if candidate is record or candidate.get("guid") == record.get("guid"):
                continue
            if chat_guid_of(candidate) != chat_guid:
                continue
            candidate_guid = normalize_message_guid(candidate.get("guid"))
            if not candidate_guid or not candidate.get("text"):
                continue
            text = normalize_target_text(candidate["text"])
            if not text:
                continue
            if not any(matches_target(text, target) for target in targets):
                continue
            created = candidate.get("dateCreated") or 0
            if created >= best_date:
                best_guid = candidate_guid
                best_date = created

        if best_guid is not None:
            return best_guid
        for target in targets:
            cached = self.sms_cache.lookup(chat_guid, target)
            if cached:
                return cached
        return None
