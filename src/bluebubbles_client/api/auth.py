"""Request authentication for the BlueBubbles REST API."""

from __future__ import annotations

from dataclasses import dataclass

from bluebubbles_client.config import ClientConfig


@dataclass(frozen=True)
class AuthState:
    """Credentials for one server.

    The bearer header is always sent. ``legacy_password_auth`` additionally
    puts the credential and device name in the query string, for servers that
    only accept password auth.
    """

    server_url: str
    access_token: str
    legacy_password_auth: bool = False
    device_name: str | None = None

    @classmethod
    def from_config(cls, config: ClientConfig) -> "AuthState":
        return cls(
            server_url=config.server_url,
            access_token=config.access_token,
            legacy_password_auth=config.legacy_auth,
            device_name=config.device_name,
        )

    @property
    def headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.access_token}"}

    def query_params(self) -> dict[str, str]:
        """Legacy auth query parameters (empty unless legacy mode is on)."""
        if not self.legacy_password_auth:
            return {}
        params = {}
        if self.access_token:
            params["password"] = self.access_token
        if self.device_name:
            params["device"] = self.device_name
        return params
