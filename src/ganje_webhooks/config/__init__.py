"""Configuration management."""

from .settings import Config, DispatcherConfig, create_default_config, load_config

__all__ = ["Config", "DispatcherConfig", "load_config", "create_default_config"]
