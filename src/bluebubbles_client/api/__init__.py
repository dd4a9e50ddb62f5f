"""BlueBubbles REST wire client."""

from bluebubbles_client.api.auth import AuthState
from bluebubbles_client.api.client import AttachmentDownload, BlueBubblesAPI

__all__ = [
    "AuthState",
    "AttachmentDownload",
    "BlueBubblesAPI",
]
