"""Relay status models for Device Relay."""

from datetime import datetime, timezone
from typing import Dict, Optional

from pydantic import BaseModel, Field

from .enums import RelayState


class RelayCounters(BaseModel):
    """Per-run message counters."""

    received: int = Field(default=0, ge=0)
    accepted: int = Field(default=0, ge=0)
    forwarded: int = Field(default=0, ge=0)
    forward_failures: int = Field(default=0, ge=0)
    skipped: int = Field(default=0, ge=0)


class HealthStatus(BaseModel):
    """Health status response."""

    status: str = Field(..., description="Overall health status")
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc), description="Status timestamp"
    )
    version: str = Field(..., description="Relay version")
    uptime_seconds: int = Field(..., ge=0, description="Uptime in seconds")
    amqp_connected: bool = Field(..., description="Broker connection status")
    forwarding_connected: bool = Field(default=True, description="Outbound forwarding connection status")
    relay_state: RelayState = Field(..., description="Receive loop state")
    source_address: str = Field(..., description="Inbound link address")
    last_error: Optional[str] = Field(default=None, description="Error that ended the run")
    counters: RelayCounters = Field(default_factory=RelayCounters)
    components: Optional[Dict[str, str]] = Field(
        default=None, description="Component statuses"
    )
