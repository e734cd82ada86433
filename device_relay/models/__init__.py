"""Data models for Device Relay.

This module contains the Pydantic models and enums used throughout the application."""

# Import all enums
from .enums import (
    AcceptFailurePolicy,
    ForwardStatus,
    MessageType,
    RelayState,
    SkipReason,
    TlsMode,
)

# Import annotation models
from .annotations import DEVICE_ID_ANNOTATION, AnnotationExtraction, SkippedAnnotation

# Import relay status models
from .relay import HealthStatus, RelayCounters

__all__ = [
    # Enums
    "AcceptFailurePolicy",
    "ForwardStatus",
    "MessageType",
    "RelayState",
    "SkipReason",
    "TlsMode",
    # Annotation models
    "DEVICE_ID_ANNOTATION",
    "AnnotationExtraction",
    "SkippedAnnotation",
    # Relay models
    "HealthStatus",
    "RelayCounters",
]
