"""Configuration management for the Device Relay.

This module handles all configuration loading and validation using Pydantic BaseSettings.
Configuration is loaded from environment variables and .env files.
"""

from .config import (
    ApplicationConfig,
    BrokerConfig,
    MonitoringConfig,
    RelayConfig,
    ServerConfig,
    str_to_bool,
)


def load_config() -> ApplicationConfig:
    """Load and validate application configuration."""
    return ApplicationConfig()


__all__ = [
    "ApplicationConfig",
    "BrokerConfig",
    "MonitoringConfig",
    "RelayConfig",
    "ServerConfig",
    "load_config",
    "str_to_bool",
]
