"""Custom exceptions for lending workflow services."""

from __future__ import annotations

from fastapi import status

if hasattr(status, "HTTP_422_UNPROCESSABLE_CONTENT"):
	_HTTP_422 = status.HTTP_422_UNPROCESSABLE_CONTENT
else:  # pragma: no cover - fallback for older Starlette builds
	_HTTP_422 = status.HTTP_422_UNPROCESSABLE_ENTITY


class LendingError(Exception):
	"""Base class for lending workflow errors.

	``code`` is the stable error category surfaced to callers; ``detail`` is a
	finer snake_case reason.
	"""

	code: str = "LENDING_ERROR"
	status_code: int = status.HTTP_400_BAD_REQUEST
	detail: str = "lending_error"

	def __init__(self, detail: str | None = None) -> None:
		super().__init__(detail or self.detail)
		if detail:
			self.detail = detail


class ValidationError(LendingError):
	"""Missing or malformed input."""

	code = "VALIDATION_ERROR"
	status_code = _HTTP_422
	detail = "validation_error"


class InvalidQuantityError(ValidationError):
	code = "INVALID_QUANTITY"
	detail = "invalid_quantity"


class DepartmentUnknownError(LendingError):
	"""Student has no resolvable home department."""

	code = "DEPARTMENT_UNKNOWN"
	status_code = _HTTP_422
	detail = "department_unknown"


class CapacityExceededError(LendingError):
	code = "CAPACITY_EXCEEDED"
	status_code = status.HTTP_409_CONFLICT
	detail = "capacity_exceeded"


class UnauthorizedError(LendingError):
	code = "UNAUTHORIZED"
	status_code = status.HTTP_401_UNAUTHORIZED
	detail = "unauthorized"


class ForbiddenError(LendingError):
	code = "FORBIDDEN"
	status_code = status.HTTP_403_FORBIDDEN
	detail = "forbidden"


class RoleNotPermittedError(ForbiddenError):
	code = "ROLE_NOT_PERMITTED"
	detail = "role_not_permitted"


class NotYetEligibleError(LendingError):
	"""Acting on a request that is locked pending department review."""

	code = "NOT_YET_ELIGIBLE"
	status_code = status.HTTP_409_CONFLICT
	detail = "awaiting_department_review"


class InvalidTransitionError(LendingError):
	code = "INVALID_TRANSITION"
	status_code = status.HTTP_409_CONFLICT
	detail = "invalid_transition"


class ConflictError(LendingError):
	"""Lost a compare-and-set race on a request."""

	code = "CONFLICT"
	status_code = status.HTTP_409_CONFLICT
	detail = "conflict"


class NotFoundError(LendingError):
	code = "NOT_FOUND"
	status_code = status.HTTP_404_NOT_FOUND
	detail = "not_found"
