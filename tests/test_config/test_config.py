"""Tests for client configuration."""

import pytest

from bluebubbles_client.config import (
    DEFAULT_PAGE_SIZE,
    DEFAULT_POLL_INTERVAL,
    ClientConfig,
    normalize_server_url,
)
from bluebubbles_client.exceptions import ConfigurationError


@pytest.fixture
def clean_env(monkeypatch):
    for name in [
        "BLUEBUBBLES_SERVER_URL",
        "BLUEBUBBLES_ACCESS_TOKEN",
        "BLUEBUBBLES_LEGACY_AUTH",
        "BLUEBUBBLES_DEVICE_NAME",
        "BLUEBUBBLES_DEBUG",
        "BLUEBUBBLES_POLL_INTERVAL",
    ]:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def test_normalize_strips_trailing_slash():
    assert normalize_server_url("http://mac.local:1234/") == "http://mac.local:1234"


def test_normalize_drops_plain_http_port_on_https():
    assert normalize_server_url("https://bb.example.com:8080") == "https://bb.example.com"
    assert normalize_server_url("https://bb.example.com:80/") == "https://bb.example.com"


def test_normalize_keeps_other_ports():
    assert normalize_server_url("https://bb.example.com:1234") == "https://bb.example.com:1234"
    assert normalize_server_url("http://bb.example.com:8080") == "http://bb.example.com:8080"


def test_normalize_rejects_bad_scheme():
    with pytest.raises(ConfigurationError, match="http:// or https://"):
        normalize_server_url("ftp://bb.example.com")


def test_normalize_rejects_empty():
    with pytest.raises(ConfigurationError, match="required"):
        normalize_server_url("   ")


def test_config_requires_token():
    with pytest.raises(ConfigurationError, match="access token is required"):
        ClientConfig(server_url="http://localhost:1234", access_token="")


def test_config_defaults():
    config = ClientConfig(server_url="http://localhost:1234/", access_token="secret")
    assert config.server_url == "http://localhost:1234"
    assert config.poll_interval == DEFAULT_POLL_INTERVAL
    assert config.page_size == DEFAULT_PAGE_SIZE
    assert config.legacy_auth is False
    assert config.on_error is None


def test_config_rejects_non_positive_interval():
    with pytest.raises(ConfigurationError, match="poll_interval"):
        ClientConfig(server_url="http://localhost:1234", access_token="t", poll_interval=0)


def test_from_env_requires_server_url(clean_env):
    with pytest.raises(ConfigurationError, match="BLUEBUBBLES_SERVER_URL"):
        ClientConfig.from_env()


def test_from_env_reads_variables(clean_env):
    clean_env.setenv("BLUEBUBBLES_SERVER_URL", "https://bb.example.com:8080/")
    clean_env.setenv("BLUEBUBBLES_ACCESS_TOKEN", "secret")
    clean_env.setenv("BLUEBUBBLES_LEGACY_AUTH", "true")
    clean_env.setenv("BLUEBUBBLES_DEVICE_NAME", "laptop")
    clean_env.setenv("BLUEBUBBLES_DEBUG", "0")
    clean_env.setenv("BLUEBUBBLES_POLL_INTERVAL", "2.5")

    config = ClientConfig.from_env()
    assert config.server_url == "https://bb.example.com"
    assert config.access_token == "secret"
    assert config.legacy_auth is True
    assert config.device_name == "laptop"
    assert config.debug_logging is False
    assert config.poll_interval == 2.5


def test_from_env_overrides_win(clean_env):
    clean_env.setenv("BLUEBUBBLES_SERVER_URL", "http://localhost:1234")
    config = ClientConfig.from_env(access_token="override", page_size=10)
    assert config.access_token == "override"
    assert config.page_size == 10


def test_from_env_rejects_bad_interval(clean_env):
    clean_env.setenv("BLUEBUBBLES_SERVER_URL", "http://localhost:1234")
    clean_env.setenv("BLUEBUBBLES_ACCESS_TOKEN", "secret")
    clean_env.setenv("BLUEBUBBLES_POLL_INTERVAL", "soon")
    with pytest.raises(ConfigurationError, match="must be a number"):
        ClientConfig.from_env()
