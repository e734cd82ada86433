"""Enumeration types for Device Relay models."""

from enum import Enum, IntEnum


class TlsMode(IntEnum):
    """Transport security modes selected by the TLS_CONFIG setting."""

    DISABLED = 0
    INSECURE = 1
    SECURE = 2


class MessageType(str, Enum):
    """Inbound address families exposed per tenant."""

    TELEMETRY = "telemetry"
    EVENT = "event"


class AcceptFailurePolicy(str, Enum):
    """What the receive loop does when a message cannot be accepted."""

    CONTINUE = "continue"
    TERMINATE = "terminate"
    RETRY = "retry"


class RelayState(str, Enum):
    """Receive loop lifecycle states."""

    IDLE = "idle"
    AWAITING_MESSAGE = "awaiting_message"
    PROCESSING = "processing"
    CLOSED = "closed"


class ForwardStatus(str, Enum):
    """Outcome labels for forwarded messages."""

    SUCCESS = "success"
    FAILED = "failed"


class SkipReason(str, Enum):
    """Reasons an inbound message is not forwarded."""

    MISSING_DEVICE_ID = "missing_device_id"
    ACCEPT_FAILED = "accept_failed"
