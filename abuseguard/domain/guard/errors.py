"""Typed failures returned by the guard pipeline.

Every rejection carries a stable machine-readable ``code`` (the failure kind)
and a ``reason`` (what specifically failed) so callers can branch on cause.
Component contracts hand these back inside an :class:`Outcome`; the service
boundary unwraps them and the API layer maps them onto HTTP statuses.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Generic, Optional, TypeVar

from fastapi import status

T = TypeVar("T")


class GuardError(Exception):
	"""Base class for guard failures."""

	code: str = "internal"
	status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
	reason: str = "guard_error"

	def __init__(self, reason: str | None = None, *, detail: Optional[dict[str, Any]] = None) -> None:
		super().__init__(reason or self.reason)
		if reason:
			self.reason = reason
		self.detail: dict[str, Any] = dict(detail or {})

	def to_payload(self) -> dict[str, Any]:
		return {"code": self.code, "detail": self.reason}


class Unauthenticated(GuardError):
	code = "unauthenticated"
	status_code = status.HTTP_401_UNAUTHORIZED
	reason = "unauthenticated"


class InvalidArgument(GuardError):
	code = "invalid_argument"
	status_code = status.HTTP_400_BAD_REQUEST
	reason = "invalid_argument"


class TooLong(InvalidArgument):
	reason = "too_long"

	def __init__(self, field_kind: str, max_length: int) -> None:
		super().__init__("too_long", detail={"field": field_kind, "max_length": max_length})
		self.field_kind = field_kind
		self.max_length = max_length


class ThreatDetected(InvalidArgument):
	reason = "threat_detected"

	def __init__(self, signature: str) -> None:
		super().__init__("threat_detected", detail={"signature": signature})
		self.signature = signature


class NotFound(GuardError):
	code = "not_found"
	status_code = status.HTTP_404_NOT_FOUND
	reason = "not_found"


class PermissionDenied(GuardError):
	code = "permission_denied"
	status_code = status.HTTP_403_FORBIDDEN
	reason = "permission_denied"


class EscalationAttempt(PermissionDenied):
	reason = "privilege_escalation_attempt"


class ResourceExhausted(GuardError):
	code = "resource_exhausted"
	status_code = status.HTTP_429_TOO_MANY_REQUESTS
	reason = "rate_limited"

	def __init__(self, reason: str | None = None, *, retry_after_seconds: float) -> None:
		super().__init__(reason)
		self.retry_after_seconds = max(1, int(math.ceil(retry_after_seconds)))

	def to_payload(self) -> dict[str, Any]:
		payload = super().to_payload()
		payload["retry_after_seconds"] = self.retry_after_seconds
		return payload


class AlreadyExists(GuardError):
	code = "already_exists"
	status_code = status.HTTP_409_CONFLICT
	reason = "already_exists"


class FailedPrecondition(GuardError):
	code = "failed_precondition"
	status_code = status.HTTP_412_PRECONDITION_FAILED
	reason = "failed_precondition"


class Internal(GuardError):
	"""Infrastructure failure; the reason is logged, never returned to callers."""

	code = "internal"
	status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
	reason = "internal"

	def to_payload(self) -> dict[str, Any]:
		return {"code": self.code, "detail": "internal_error"}


class StoreUnavailable(Exception):
	"""Raised when a bounded store call times out."""

	def __init__(self, operation: str) -> None:
		super().__init__(f"store_timeout:{operation}")
		self.operation = operation


@dataclass(slots=True, frozen=True)
class Outcome(Generic[T]):
	"""Either a value or a rejection. Expected denials are values, not control flow."""

	value: Optional[T] = None
	rejection: Optional[GuardError] = None

	@property
	def ok(self) -> bool:
		return self.rejection is None

	@classmethod
	def allow(cls, value: Optional[T] = None) -> "Outcome[T]":
		return cls(value=value)

	@classmethod
	def deny(cls, rejection: GuardError) -> "Outcome[T]":
		return cls(rejection=rejection)

	def unwrap(self) -> T:
		if self.rejection is not None:
			raise self.rejection
		return self.value  # type: ignore[return-value]
