"""
Unit tests for configuration loading.
"""

import json

import pytest
from pydantic import ValidationError

from ganje_webhooks.config.settings import (
    Config,
    DispatcherConfig,
    create_default_config,
    load_config,
)


class TestDispatcherConfig:
    """Test dispatcher tunables."""

    def test_defaults(self):
        config = DispatcherConfig()

        assert config.workers == 2
        assert config.queue_capacity == 100
        assert config.max_retries == 5
        assert config.initial_backoff_seconds == 0.5
        assert config.max_backoff_seconds == 10.0
        assert config.http_timeout_seconds == 10.0

    def test_non_positive_values_use_defaults(self):
        config = DispatcherConfig(
            workers=0,
            queue_capacity=-1,
            max_retries=0,
            initial_backoff_seconds=0,
            max_backoff_seconds=-2.5,
            http_timeout_seconds=0,
        )

        assert config == DispatcherConfig()

    def test_explicit_values_kept(self):
        config = DispatcherConfig(workers=8, max_retries=1, initial_backoff_seconds=0.25)

        assert config.workers == 8
        assert config.max_retries == 1
        assert config.initial_backoff_seconds == 0.25


class TestConfig:
    """Test the top-level configuration."""

    def test_log_level_normalized(self):
        assert Config(server={"log_level": "debug"}).server.log_level == "DEBUG"

    def test_invalid_log_level(self):
        with pytest.raises(ValidationError):
            Config(server={"log_level": "chatty"})

    def test_unknown_section(self):
        with pytest.raises(ValidationError):
            Config(webhooks={})


class TestLoadConfig:
    """Test loading from files and environment."""

    @pytest.fixture(autouse=True)
    def clean_env(self, monkeypatch):
        for name in (
            "GANJE_WEBHOOKS_CONFIG_PATH",
            "GANJE_WEBHOOKS_LOG_LEVEL",
            "GANJE_WEBHOOKS_WORKERS",
        ):
            monkeypatch.delenv(name, raising=False)

    def test_no_file(self):
        assert load_config() == Config()

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "missing.json")

    def test_file(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(
            json.dumps(
                {
                    "dispatcher": {"workers": 4, "max_retries": 0},
                    "store": {"subscriptions_path": "subs.json"},
                }
            )
        )

        config = load_config(path)

        assert config.dispatcher.workers == 4
        assert config.dispatcher.max_retries == 5
        assert str(config.store.subscriptions_path) == "subs.json"

    def test_environment_overrides(self, tmp_path, monkeypatch):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"dispatcher": {"workers": 4, "queue_capacity": 10}}))
        monkeypatch.setenv("GANJE_WEBHOOKS_CONFIG_PATH", str(path))
        monkeypatch.setenv("GANJE_WEBHOOKS_LOG_LEVEL", "warning")
        monkeypatch.setenv("GANJE_WEBHOOKS_WORKERS", "6")

        config = load_config()

        assert config.server.log_level == "WARNING"
        assert config.dispatcher.workers == 6
        assert config.dispatcher.queue_capacity == 10

    def test_default_config_round_trip(self, tmp_path):
        path = tmp_path / "nested" / "config.json"

        create_default_config(path)
        config = load_config(path)

        assert config.dispatcher == DispatcherConfig()
        assert str(config.store.audit_log_path) == "deliveries.jsonl"
