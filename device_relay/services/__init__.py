"""Service layer for the Device Relay."""

from .amqp_client import AmqpClient, build_connection_url
from .annotations import extract_annotations
from .dispatcher import (
    ForwardDispatcher,
    ForwardRequest,
    QueuedDispatcher,
    SynchronousDispatcher,
    create_dispatcher,
)
from .health_metrics import HealthMetricsService
from .outbound_relay import OutboundRelay, build_target_address
from .relay_consumer import INBOUND_LINK_CREDIT, RelayConsumerService, build_source_address
from .sender_cache import SenderLinkCache
from .tls import TransportSecurityConfig, build_tls_config

__all__ = [
    "AmqpClient",
    "build_connection_url",
    "extract_annotations",
    "ForwardDispatcher",
    "ForwardRequest",
    "QueuedDispatcher",
    "SynchronousDispatcher",
    "create_dispatcher",
    "HealthMetricsService",
    "OutboundRelay",
    "build_target_address",
    "INBOUND_LINK_CREDIT",
    "RelayConsumerService",
    "build_source_address",
    "SenderLinkCache",
    "TransportSecurityConfig",
    "build_tls_config",
]
