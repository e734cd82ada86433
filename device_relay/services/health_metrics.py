"""Health and metrics service for the Device Relay.

This service aggregates receive loop state and broker connectivity for the
HTTP endpoints, and owns the Prometheus metric definitions.
"""

import time
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Dict, Optional

from prometheus_client import Counter, Gauge, Histogram, generate_latest

from device_relay.config import ApplicationConfig
from device_relay.models import HealthStatus, RelayState
from device_relay.utils import RelayStateTracker, create_contextual_logger

if TYPE_CHECKING:
    from .amqp_client import AmqpClient
    from .dispatcher import ForwardDispatcher

messages_received = Counter(
    "relay_messages_received_total",
    "Total number of messages received from the inbound link",
    ["source"],
)

messages_accepted = Counter(
    "relay_messages_accepted_total",
    "Total number of inbound messages acknowledged to the broker",
    ["source"],
)

messages_forwarded = Counter(
    "relay_messages_forwarded_total",
    "Total number of forwarding outcomes",
    ["status"],
)

messages_skipped = Counter(
    "relay_messages_skipped_total",
    "Total number of inbound messages that were not forwarded",
    ["reason"],
)

forward_duration = Histogram(
    "relay_forward_duration_seconds",
    "Time spent forwarding a message to its device sink, retries included",
)

open_sender_links = Gauge(
    "relay_open_sender_links",
    "Number of currently open outbound sender links",
)


class HealthMetricsService:
    """Read-only view over relay health for the HTTP routers."""

    def __init__(
        self,
        config: ApplicationConfig,
        amqp_client: "AmqpClient",
        state: RelayStateTracker,
        source_address: str,
        dispatcher: Optional["ForwardDispatcher"] = None,
    ) -> None:
        self.config = config
        self.amqp_client = amqp_client
        self.state = state
        self.source_address = source_address
        self.dispatcher = dispatcher
        self.logger = create_contextual_logger(__name__, service="health_metrics")
        self._start_time = time.time()

    def _overall_status(self, amqp_connected: bool, forwarding_connected: bool, relay_state: RelayState) -> str:
        # Without a forwarding connection every accepted message is dropped
        if relay_state == RelayState.CLOSED or not forwarding_connected:
            return "unhealthy"
        if not amqp_connected:
            return "degraded"
        return "healthy"

    async def get_health_status(self) -> Dict[str, Any]:
        amqp_connected = self.amqp_client.is_connected()
        forwarding_connected = self.dispatcher.is_connected() if self.dispatcher is not None else True
        relay_state = self.state.state
        health = HealthStatus(
            status=self._overall_status(amqp_connected, forwarding_connected, relay_state),
            version=self.config.app_version,
            uptime_seconds=int(time.time() - self._start_time),
            amqp_connected=amqp_connected,
            forwarding_connected=forwarding_connected,
            relay_state=relay_state,
            source_address=self.source_address,
            last_error=self.state.last_error,
            counters=self.state.counters,
            components={
                "amqp": "connected" if amqp_connected else "disconnected",
                "forwarding": "connected" if forwarding_connected else "disconnected",
                "relay_loop": relay_state.value,
            },
        )
        return health.model_dump(mode="json")

    async def get_metrics_data(self) -> Dict[str, Any]:
        return {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "uptime_seconds": int(time.time() - self._start_time),
            "relay": self.state.get_state_info(),
            "connection": self.amqp_client.health_check(),
            "forwarding": self.dispatcher.health_check() if self.dispatcher is not None else None,
            "sink": self.config.sink,
            "source_address": self.source_address,
        }

    def get_prometheus_metrics(self, registry: Optional[Any] = None) -> bytes:
        if registry is None:
            return generate_latest()
        return generate_latest(registry)
