"""Annotation models for Device Relay."""

from typing import Dict, List, Optional

from pydantic import BaseModel, Field

DEVICE_ID_ANNOTATION = "device-id"


class SkippedAnnotation(BaseModel):
    """An annotation entry dropped during decoding."""

    key: str = Field(..., description="Offending key, repr() when it is not text")
    reason: str = Field(..., description="Why the entry was skipped")


class AnnotationExtraction(BaseModel):
    """Text annotations decoded from a broker message."""

    annotations: Dict[str, str] = Field(
        default_factory=dict, description="Text-typed annotation entries"
    )
    skipped: List[SkippedAnnotation] = Field(
        default_factory=list, description="Entries dropped due to type mismatch"
    )

    @property
    def device_id(self) -> Optional[str]:
        """Device identifier, or None when absent or empty."""
        return self.annotations.get(DEVICE_ID_ANNOTATION) or None
