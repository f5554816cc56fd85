"""
Configuration management for the Ganje webhook dispatcher.

Handles loading, validation, and normalization of dispatcher
configuration from files and environment variables.
"""

import json
import os
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

DEFAULT_USER_AGENT = "ganje-webhook-dispatcher/0.1.0"

_POSITIVE_DEFAULTS: Dict[str, Any] = {
    "workers": 2,
    "queue_capacity": 100,
    "max_retries": 5,
    "initial_backoff_seconds": 0.5,
    "max_backoff_seconds": 10.0,
    "http_timeout_seconds": 10.0,
}


class ServerConfig(BaseModel):
    """Configuration for process-level behavior."""

    log_level: str = Field(default="INFO", description="Logging level")
    json_logs: bool = Field(default=True, description="Render logs as JSON")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v_upper


class DispatcherConfig(BaseModel):
    """
    Configuration for the webhook dispatcher.

    Zero or negative tunables are replaced by their defaults when the
    model is built, so consumers never check for unset values.
    """

    enabled: bool = Field(default=True, description="Enable webhook dispatch")
    workers: int = Field(default=2, description="Number of worker tasks")
    queue_capacity: int = Field(default=100, description="Event queue capacity")
    max_retries: int = Field(default=5, description="Maximum delivery retries")
    initial_backoff_seconds: float = Field(default=0.5, description="Initial retry backoff")
    max_backoff_seconds: float = Field(default=10.0, description="Maximum retry backoff")
    http_timeout_seconds: float = Field(default=10.0, description="HTTP request timeout")
    user_agent: str = Field(default=DEFAULT_USER_AGENT, description="Outbound User-Agent")

    @field_validator(*_POSITIVE_DEFAULTS)
    @classmethod
    def apply_default_for_unset(cls, v: Any, info: ValidationInfo) -> Any:
        """Replace zero or negative values with the field default."""
        if v <= 0:
            return _POSITIVE_DEFAULTS[info.field_name]
        return v


class StoreConfig(BaseModel):
    """Configuration for the subscription store."""

    subscriptions_path: Optional[Path] = Field(
        default=None, description="JSON file holding subscriptions"
    )
    audit_log_path: Optional[Path] = Field(
        default=None, description="JSON-lines file receiving delivery records"
    )


class Config(BaseModel):
    """Main configuration object."""

    model_config = ConfigDict(extra="forbid")

    version: str = Field(default="0.1.0", description="Configuration version")
    server: ServerConfig = Field(default_factory=ServerConfig)
    dispatcher: DispatcherConfig = Field(default_factory=DispatcherConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)


def load_config(config_path: Optional[Path] = None) -> Config:
    """
    Load configuration from file and environment variables.

    Args:
        config_path: Path to configuration file. If None, looks for
                    GANJE_WEBHOOKS_CONFIG_PATH environment variable.

    Returns:
        Loaded and validated configuration

    Raises:
        FileNotFoundError: If config file specified but not found
        pydantic.ValidationError: If configuration is invalid
    """
    if config_path is None:
        env_path = os.getenv("GANJE_WEBHOOKS_CONFIG_PATH")
        if env_path:
            config_path = Path(env_path)

    config_data: Dict[str, Any] = {}
    if config_path and config_path.exists():
        with open(config_path, "r") as f:
            config_data = json.load(f)
    elif config_path:
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    env_overrides: Dict[str, Any] = {}

    log_level = os.getenv("GANJE_WEBHOOKS_LOG_LEVEL")
    if log_level:
        env_overrides.setdefault("server", {})["log_level"] = log_level

    workers = os.getenv("GANJE_WEBHOOKS_WORKERS")
    if workers:
        env_overrides.setdefault("dispatcher", {})["workers"] = int(workers)

    if env_overrides:
        config_data = _deep_merge(config_data, env_overrides)

    return Config(**config_data)


def create_default_config(config_path: Path) -> None:
    """
    Create a default configuration file.

    Args:
        config_path: Path where to create the configuration file
    """
    default_config = {
        "version": "0.1.0",
        "server": {
            "log_level": "INFO",
            "json_logs": True,
        },
        "dispatcher": {
            "enabled": True,
            "workers": 2,
            "queue_capacity": 100,
            "max_retries": 5,
            "initial_backoff_seconds": 0.5,
            "max_backoff_seconds": 10.0,
            "http_timeout_seconds": 10.0,
        },
        "store": {
            "subscriptions_path": "subscriptions.json",
            "audit_log_path": "deliveries.jsonl",
        },
    }

    config_path.parent.mkdir(parents=True, exist_ok=True)

    with open(config_path, "w") as f:
        json.dump(default_config, f, indent=2)


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Deep merge two dictionaries."""
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value

    return result
