"""Shape and length checks applied before a request reaches the upstream model."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

from .errors import ValidationError
from .models import AnalysisRequest


@dataclass(frozen=True, slots=True)
class ValidationOptions:
    min_length: int = 3
    max_length: int = 10_000


DEFAULT_VALIDATION_OPTIONS = ValidationOptions()


def validate_request(
    request: AnalysisRequest | Mapping[str, Any] | None,
    options: ValidationOptions | None = None,
) -> None:
    """Raise :class:`ValidationError` unless the request topic is analysable.

    Lengths are measured on the raw topic, so surrounding whitespace counts;
    a topic that is only whitespace is rejected as missing.
    """

    options = options or DEFAULT_VALIDATION_OPTIONS
    if isinstance(request, AnalysisRequest):
        topic = request.topic
    elif isinstance(request, Mapping):
        topic = request.get("topic")
    else:
        topic = None

    if not isinstance(topic, str) or not topic.strip():
        raise ValidationError("A valid topic is required for analysis.")

    if len(topic) < options.min_length:
        raise ValidationError(
            f"Text is too short for analysis (minimum {options.min_length} characters)."
        )

    if len(topic) > options.max_length:
        raise ValidationError(
            f"Text exceeds the maximum allowed size ({options.max_length} characters)."
        )


__all__ = ["DEFAULT_VALIDATION_OPTIONS", "ValidationOptions", "validate_request"]
