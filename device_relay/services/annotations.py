"""Typed decoding of broker message annotations."""

from typing import Any, Mapping, Optional

from device_relay.models import AnnotationExtraction, SkippedAnnotation


def extract_annotations(raw: Optional[Mapping[Any, Any]]) -> AnnotationExtraction:
    """Decode broker annotations into a ``str -> str`` mapping.

    Keys and values must be text. AMQP symbols subclass ``str`` and are
    normalised to plain strings. Anything else is reported in ``skipped``
    instead of raising. The function is pure: the same input always yields an
    equal result.
    """
    extraction = AnnotationExtraction()
    if not raw:
        return extraction

    for key, value in raw.items():
        if not isinstance(key, str):
            extraction.skipped.append(
                SkippedAnnotation(key=repr(key), reason=f"key is {type(key).__name__}, not text")
            )
            continue
        if not isinstance(value, str):
            extraction.skipped.append(
                SkippedAnnotation(key=str(key), reason=f"value is {type(value).__name__}, not text")
            )
            continue
        extraction.annotations[str(key)] = str(value)

    return extraction
