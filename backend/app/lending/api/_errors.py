"""Error translation helpers for the lending API."""

from __future__ import annotations

from fastapi import HTTPException

from app.api.errors import CodedHTTPException
from app.lending.domain import audit
from app.lending.domain.exceptions import LendingError


def to_http_error(exc: LendingError) -> HTTPException:
	"""Translate domain exceptions to FastAPI HTTP errors."""
	audit.inc_rejected_operation(exc.code)
	return CodedHTTPException(status_code=exc.status_code, detail=exc.detail, code=exc.code)
