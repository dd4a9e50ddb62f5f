"""Tapback (reaction) normalization and resolution."""

from bluebubbles_client.tapbacks.cache import SmsTapbackCache, StatusHistory, TapbackStore
from bluebubbles_client.tapbacks.identifiers import (
    NormalizedTapback,
    normalize_message_guid,
    normalize_tapback_identifier,
)
from bluebubbles_client.tapbacks.sms import SmsTapback, parse_sms_tapback

__all__ = [
    "NormalizedTapback",
    "SmsTapback",
    "SmsTapbackCache",
    "StatusHistory",
    "TapbackStore",
    "normalize_message_guid",
    "normalize_tapback_identifier",
    "parse_sms_tapback",
]
