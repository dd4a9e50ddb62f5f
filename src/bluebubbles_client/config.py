"""Client configuration, read from arguments or the environment."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Callable
from urllib.parse import urlparse, urlunparse

from bluebubbles_client.exceptions import ConfigurationError

DEFAULT_POLL_INTERVAL = 5.0
DEFAULT_PAGE_SIZE = 50
DEFAULT_SMS_TAPBACK_CACHE_LIMIT = 50
DEFAULT_CONVERSATION_CACHE_LIMIT = 1000
DEFAULT_REQUEST_TIMEOUT = 30.0

_TRUTHY = {"1", "true", "yes", "on"}


def normalize_server_url(server_url: str) -> str:
    """Validate a server URL and return it without a trailing slash.

    Plain-HTTP ports left on an https URL (80, 8080) are dropped, since
    reverse proxies in front of BlueBubbles commonly terminate TLS on 443.
    """
    trimmed = (server_url or "").strip()
    if not trimmed:
        raise ConfigurationError("A server URL is required.")

    parsed = urlparse(trimmed)
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        raise ConfigurationError(
            "The server URL must start with http:// or https://."
        )

    netloc = parsed.netloc
    if parsed.scheme == "https" and parsed.port in (80, 8080):
        netloc = netloc.rsplit(":", 1)[0]

    return urlunparse(parsed._replace(netloc=netloc)).rstrip("/")


def _env_flag(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUTHY


@dataclass
class ClientConfig:
    """Connection settings and tunables for a BlueBubbles session.

    Args:
        server_url: Base URL of the BlueBubbles server.
        access_token: Bearer token (or server password in legacy mode).
        legacy_auth: Also send ``password``/``device`` query parameters.
        device_name: Device identifier sent in legacy mode.
        poll_interval: Seconds between completed poll cycles.
        debug_logging: Emit per-message debug diagnostics.
        on_error: Called with the exception when the handshake fails.
    """

    server_url: str
    access_token: str
    legacy_auth: bool = False
    device_name: str | None = None
    poll_interval: float = DEFAULT_POLL_INTERVAL
    page_size: int = DEFAULT_PAGE_SIZE
    sms_tapback_cache_limit: int = DEFAULT_SMS_TAPBACK_CACHE_LIMIT
    conversation_cache_limit: int = DEFAULT_CONVERSATION_CACHE_LIMIT
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    debug_logging: bool = True
    on_error: Callable[[Exception], None] | None = None

    def __post_init__(self):
        self.server_url = normalize_server_url(self.server_url)
        if not self.access_token:
            raise ConfigurationError(
                "BlueBubbles access token is required. "
                "Pass it directly or set BLUEBUBBLES_ACCESS_TOKEN in your environment."
            )
        if self.poll_interval <= 0:
            raise ConfigurationError("poll_interval must be positive")
        if self.page_size < 1:
            raise ConfigurationError("page_size must be at least 1")

    @classmethod
    def from_env(cls, **overrides) -> "ClientConfig":
        """Build a config from ``BLUEBUBBLES_*`` environment variables."""
        server_url = overrides.pop("server_url", None) or os.environ.get(
            "BLUEBUBBLES_SERVER_URL", ""
        )
        if not server_url:
            raise ConfigurationError(
                "BlueBubbles server URL is required. "
                "Pass it directly or set BLUEBUBBLES_SERVER_URL in your environment."
            )
        access_token = overrides.pop("access_token", None) or os.environ.get(
            "BLUEBUBBLES_ACCESS_TOKEN", ""
        )

        kwargs = {
            "legacy_auth": _env_flag("BLUEBUBBLES_LEGACY_AUTH", False),
            "device_name": os.environ.get("BLUEBUBBLES_DEVICE_NAME") or None,
            "debug_logging": _env_flag("BLUEBUBBLES_DEBUG", True),
        }
        interval = os.environ.get("BLUEBUBBLES_POLL_INTERVAL")
        if interval:
            try:
                kwargs["poll_interval"] = float(interval)
            except ValueError as e:
                raise ConfigurationError(
                    f"BLUEBUBBLES_POLL_INTERVAL must be a number, got {interval!r}"
                ) from e
        kwargs.update(overrides)
        return cls(server_url=server_url, access_token=access_token, **kwargs)
