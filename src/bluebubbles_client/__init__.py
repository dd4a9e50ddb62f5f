"""Polling client for BlueBubbles messaging servers."""

from bluebubbles_client.config import ClientConfig
from bluebubbles_client.exceptions import BlueBubblesError
from bluebubbles_client.listener import ConnectionListener, ListenerRegistry
from bluebubbles_client.sync import SyncEngine, SyncState

__all__ = [
    "ClientConfig",
    "BlueBubblesError",
    "ConnectionListener",
    "ListenerRegistry",
    "SyncEngine",
    "SyncState",
]
