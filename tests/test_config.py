"""Tests for config parsing and secret resolution."""

import json

import pytest

from sillio.config import _parse_config, get_config, resolve_secret


class TestResolveSecret:
    def test_env_reference_is_resolved(self, monkeypatch):
        monkeypatch.setenv("SILLIO_TEST_SECRET", "hunter2")
        assert resolve_secret("SILLIO_TEST_SECRET") == "hunter2"

    def test_missing_env_reference_is_none(self, monkeypatch):
        monkeypatch.delenv("SILLIO_MISSING_SECRET", raising=False)
        assert resolve_secret("SILLIO_MISSING_SECRET") is None

    def test_literal_passes_through(self):
        assert resolve_secret("https://hooks.example/sms") == "https://hooks.example/sms"


class TestParseConfig:
    def test_defaults(self):
        config = _parse_config({})

        assert config.webhook.enabled is False
        assert config.health_check.enabled is True
        assert config.health_check.interval == 300
        assert config.health_check.timeout == 120
        assert config.health_check.cooldown == 1800
        assert config.health_check.fatal_on_timeout is True
        assert config.modem.delete_sent_records is True
        assert config.bus.inbound_maxsize == 100
        assert config.resolved_cache_dir is not None
        assert config.channels == {}

    def test_full_document(self, monkeypatch):
        monkeypatch.setenv("SILLIO_WEBHOOK_PASSWORD", "pw")
        monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "tok")
        monkeypatch.setenv("TELEGRAM_CHAT_ID", "42")

        config = _parse_config(
            {
                "cache_dir": "",
                "webhook": {
                    "url": "https://hooks.example/sms",
                    "username": "relay",
                    "password": "SILLIO_WEBHOOK_PASSWORD",
                },
                "health_check": {"timeout": 60, "fatal_on_timeout": False},
                "modem": {"delete_sent_records": False, "poll_interval": 5},
                "channels": {
                    "telegram": {
                        "type": "telegram",
                        "enabled": True,
                        "env_token": "TELEGRAM_BOT_TOKEN",
                        "env_chat_id": "TELEGRAM_CHAT_ID",
                        "parse_mode": "none",
                    },
                    "slack": {"type": "slack"},
                },
            }
        )

        assert config.webhook.url == "https://hooks.example/sms"
        assert config.webhook.username == "relay"
        assert config.webhook.password == "pw"
        assert config.health_check.timeout == 60
        assert config.health_check.fatal_on_timeout is False
        assert config.modem.delete_sent_records is False
        assert config.modem.poll_interval == 5
        assert config.resolved_cache_dir is None

        telegram = config.get_channel("telegram")
        assert telegram.token == "tok"
        assert telegram.chat_id == "42"
        assert telegram.extra == {"parse_mode": "none"}
        assert list(config.get_enabled_channels()) == ["telegram"]


class TestGetConfig:
    def test_loads_file_named_by_env(self, tmp_path, monkeypatch):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"log_level": "DEBUG"}))
        monkeypatch.setenv("SILLIO_CONFIG", str(path))

        config = get_config(reload=True)

        assert config.log_level == "DEBUG"

    def test_missing_file_raises(self, tmp_path, monkeypatch):
        monkeypatch.setenv("SILLIO_CONFIG", str(tmp_path / "nope.json"))

        with pytest.raises(FileNotFoundError):
            get_config(reload=True)
