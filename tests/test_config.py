"""
Configuration Tests
===================

YAML loading, defaults and environment overrides.
"""

import pytest

from jpid_gateway.config import Settings, load_config


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in (
        "JPID_CONFIG_PATH",
        "JPID_UPSTREAM_PREFIX",
        "JPID_DISCONNECT_POLL",
        "JPID_SUPERSEDE_STREAMS",
        "JPID_REGISTRY_PATH",
        "JPID_UNIQUE_URLS",
        "JPID_GATEWAY_PORT",
        "JPID_LOG_LEVEL",
        "PORT",
    ):
        monkeypatch.delenv(name, raising=False)


def test_defaults():
    settings = Settings()

    assert settings.upstream.api_prefix == "/jpid"
    assert settings.relay.queue_size == 8
    assert settings.relay.supersede_existing is False
    assert settings.registry.enforce_unique_urls is True
    assert settings.server.port == 3000


def test_yaml_file(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        "upstream:\n"
        "  api_prefix: ''\n"
        "relay:\n"
        "  queue_size: 32\n"
        "registry:\n"
        "  servers:\n"
        "    - id: wsl\n"
        "      url: http://127.0.0.1:8000\n"
        "      description: local\n",
        encoding="utf-8",
    )

    settings = load_config(str(path))

    assert settings.upstream.api_prefix == ""
    assert settings.relay.queue_size == 32
    assert settings.registry.servers[0].id == "wsl"


def test_env_overrides_file(tmp_path, monkeypatch):
    path = tmp_path / "config.yaml"
    path.write_text("relay:\n  disconnect_poll_seconds: 2.0\nserver:\n  port: 4000\n", encoding="utf-8")
    monkeypatch.setenv("JPID_CONFIG_PATH", str(path))
    monkeypatch.setenv("JPID_DISCONNECT_POLL", "0.25")
    monkeypatch.setenv("JPID_SUPERSEDE_STREAMS", "yes")
    monkeypatch.setenv("JPID_UNIQUE_URLS", "false")
    monkeypatch.setenv("JPID_GATEWAY_PORT", "3100")

    settings = load_config()

    assert settings.relay.disconnect_poll_seconds == 0.25
    assert settings.relay.supersede_existing is True
    assert settings.registry.enforce_unique_urls is False
    assert settings.server.port == 3100


def test_platform_port_wins(monkeypatch, tmp_path):
    monkeypatch.setenv("JPID_CONFIG_PATH", str(tmp_path / "missing.yaml"))
    monkeypatch.setenv("JPID_GATEWAY_PORT", "3100")
    monkeypatch.setenv("PORT", "8080")

    assert load_config().server.port == 8080


def test_empty_prefix_from_env(monkeypatch, tmp_path):
    monkeypatch.setenv("JPID_CONFIG_PATH", str(tmp_path / "missing.yaml"))
    monkeypatch.setenv("JPID_UPSTREAM_PREFIX", "")

    assert load_config().upstream.api_prefix == ""
