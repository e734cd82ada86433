"""Configuration classes for the Device Relay.

This module contains all configuration classes organized by domain.
Configuration is loaded from environment variables and .env files.
"""

from pathlib import Path
from typing import Any, Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from device_relay.models.enums import AcceptFailurePolicy, MessageType, TlsMode


def str_to_bool(value: Any) -> bool:
    """Convert various string representations to boolean values.

    This function provides consistent boolean conversion from environment variables
    and other string sources. It can be used as a field validator for Pydantic models.

    Args:
        value: The value to convert. Can be bool, str, int, or any other type.

    Returns:
        bool: The converted boolean value.

    Examples:
        >>> str_to_bool("true")
        True
        >>> str_to_bool("0")
        False
        >>> str_to_bool("yes")
        True
    """
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.lower() in ("true", "1", "yes", "on", "enabled")
    if isinstance(value, int):
        return bool(value)
    return bool(value)


class ServerConfig(BaseSettings):
    """HTTP server settings for the health and metrics endpoints."""

    app_version: str = "1.0.0"

    server_port: int = Field(default=8081, alias="SERVER_PORT")
    server_host: str = Field(default="0.0.0.0", alias="SERVER_HOST")


class BrokerConfig(BaseSettings):
    """Inbound AMQP broker settings."""

    amqp_uri: str = Field(default="localhost", alias="AMQP_URI")
    amqp_port: str = Field(default="5671", alias="AMQP_PORT")
    amqp_connect_timeout: float = Field(default=10.0, alias="AMQP_CONNECT_TIMEOUT")

    message_type: MessageType = Field(default=MessageType.TELEMETRY, alias="MESSAGE_TYPE")
    tenant: str = Field(default="", alias="TENANT")

    # Credentials
    client_username: str = Field(default="", alias="CLIENT_USERNAME")
    client_password: str = Field(default="", alias="CLIENT_PASSWORD")

    # TLS
    tls_config: TlsMode = Field(default=TlsMode.DISABLED, alias="TLS_CONFIG")
    tls_cert: str = Field(default="", alias="TLS_CERT")
    tls_cert_file: Optional[str] = Field(default=None, alias="TLS_CERT_FILE")

    @field_validator("amqp_uri")
    @classmethod
    def validate_amqp_uri(cls, v: str) -> str:
        """Accept a bare host; the scheme is always amqps."""
        v = v.strip()
        if "://" in v:
            raise ValueError("amqp_uri must be a host name without a scheme")
        if not v:
            raise ValueError("amqp_uri must not be empty")
        return v

    @field_validator("amqp_port", mode="before")
    @classmethod
    def validate_amqp_port(cls, v: Any) -> str:
        """Validate port range, keep it as text for URL building."""
        port = str(v).strip()
        if not port.isdigit() or not 1 <= int(port) <= 65535:
            raise ValueError("amqp_port must be an integer between 1 and 65535")
        return port

    @field_validator("message_type", mode="before")
    @classmethod
    def validate_message_type(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @field_validator("tls_config", mode="before")
    @classmethod
    def validate_tls_config(cls, v: Any) -> Any:
        """Environment values arrive as text."""
        if isinstance(v, str) and v.strip().isdigit():
            return int(v.strip())
        return v


class RelayConfig(BaseSettings):
    """Forwarding and receive loop settings."""

    sink: str = Field(default="", alias="SINK")

    send_timeout: float = Field(default=5.0, gt=0, alias="SEND_TIMEOUT")
    receiver_close_timeout: float = Field(default=1.0, gt=0, alias="RECEIVER_CLOSE_TIMEOUT")
    receive_poll_interval: float = Field(default=1.0, gt=0, alias="RECEIVE_POLL_INTERVAL")

    accept_failure_policy: AcceptFailurePolicy = Field(
        default=AcceptFailurePolicy.TERMINATE, alias="ACCEPT_FAILURE_POLICY"
    )
    accept_retry_attempts: int = Field(default=3, ge=1, alias="ACCEPT_RETRY_ATTEMPTS")
    accept_initial_backoff: float = Field(default=0.2, ge=0, alias="ACCEPT_INITIAL_BACKOFF")
    accept_max_backoff: float = Field(default=2.0, ge=0, alias="ACCEPT_MAX_BACKOFF")

    forward_retry_attempts: int = Field(default=3, ge=1, alias="FORWARD_RETRY_ATTEMPTS")
    forward_initial_backoff: float = Field(default=0.5, ge=0, alias="FORWARD_INITIAL_BACKOFF")
    forward_backoff_multiplier: float = 2.0
    forward_max_backoff: float = Field(default=10.0, ge=0, alias="FORWARD_MAX_BACKOFF")

    # 0 opens and closes a sender link for every message; set above 0 to reuse links per target
    sender_cache_size: int = Field(default=0, ge=0, alias="SENDER_CACHE_SIZE")
    sender_idle_timeout: float = Field(default=60.0, gt=0, alias="SENDER_IDLE_TIMEOUT")

    # 0 forwards synchronously inside the receive loop
    forward_queue_size: int = Field(default=0, ge=0, alias="FORWARD_QUEUE_SIZE")

    @field_validator("accept_failure_policy", mode="before")
    @classmethod
    def validate_accept_failure_policy(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @field_validator("sink")
    @classmethod
    def validate_sink(cls, v: str) -> str:
        """Strip trailing slashes so target addresses never double up."""
        return v.strip().rstrip("/")


class MonitoringConfig(BaseSettings):
    """Logging configuration settings."""

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_json: bool = Field(default=False, alias="LOG_JSON")

    @field_validator("log_json", mode="before")
    @classmethod
    def validate_log_json(cls, v) -> bool:
        """Convert string boolean values to actual boolean."""
        return str_to_bool(v)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"log_level must be one of: {valid_levels}")
        return v.upper()


class ApplicationConfig(
    ServerConfig,
    BrokerConfig,
    RelayConfig,
    MonitoringConfig,
    BaseSettings
):
    """Main application configuration that combines all configuration domains."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    @model_validator(mode="after")
    def validate_relay_targets(self) -> "ApplicationConfig":
        """Require tenant and sink, and resolve the CA file into PEM text."""
        if not self.tenant.strip():
            raise ValueError("tenant must not be empty")
        if not self.sink:
            raise ValueError("sink must not be empty")
        if self.tls_config == TlsMode.SECURE and not self.tls_cert and self.tls_cert_file:
            self.tls_cert = Path(self.tls_cert_file).read_text(encoding="utf-8")
        return self
