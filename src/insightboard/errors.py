"""Typed failures raised while validating and executing analysis requests."""

from __future__ import annotations

from typing import Any


class ServiceError(Exception):
    """Base class for every failure surfaced to queue callers."""

    kind = "ServiceError"
    default_status = 500

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code if status_code is not None else self.default_status

    @property
    def retryable(self) -> bool:
        return True

    def to_payload(self) -> dict[str, Any]:
        return {"error": self.message, "kind": self.kind, "retryable": self.retryable}


class ValidationError(ServiceError):
    kind = "ValidationError"
    default_status = 400

    @property
    def retryable(self) -> bool:
        return False


class RequestTimeoutError(ServiceError):
    """The upstream did not answer before the configured deadline."""

    kind = "TimeoutError"
    default_status = 408

    def __init__(self, timeout_ms: int) -> None:
        super().__init__(f"Upstream model request timed out after {timeout_ms}ms")
        self.timeout_ms = timeout_ms


class UpstreamHttpError(ServiceError):
    kind = "UpstreamHttpError"

    def __init__(self, status_code: int, reason: str = "") -> None:
        reason = reason.strip()
        message = f"Upstream model API error: {status_code}"
        if reason:
            message = f"{message} {reason}"
        super().__init__(message, status_code=status_code)
        self.reason = reason

    @property
    def retryable(self) -> bool:
        return self.status_code >= 500


class MalformedResponseError(ServiceError):
    """Upstream body could not be interpreted.

    The insight normalizer degrades to a fallback result instead of raising
    this. Chat replies without message content raise it directly.
    """

    kind = "MalformedResponseError"
    default_status = 502


class TransportError(ServiceError):
    kind = "TransportError"
    default_status = 503


__all__ = [
    "MalformedResponseError",
    "RequestTimeoutError",
    "ServiceError",
    "TransportError",
    "UpstreamHttpError",
    "ValidationError",
]
