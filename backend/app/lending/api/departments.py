"""Department relay inbox for faculty reviewers."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from app.infra.auth import AuthenticatedUser, require_roles
from app.lending.api._errors import to_http_error
from app.lending.domain import models
from app.lending.domain.exceptions import LendingError
from app.lending.domain.service import LendingService
from app.lending.schemas import dto

router = APIRouter(prefix="/departments", tags=["lending:departments"])
_service = LendingService()


@router.get("/inbox", response_model=dto.TransactionListResponse)
async def department_inbox_endpoint(
	limit: int = Query(default=50, ge=1),
	offset: int = Query(default=0, ge=0),
	auth_user: AuthenticatedUser = Depends(require_roles("faculty")),
) -> dto.TransactionListResponse:
	"""Requests from the reviewer's department still waiting on a relay decision."""
	try:
		actor = await _service.resolve_actor(auth_user)
		request_filter = models.RequestFilter(
			status=models.TransactionStatus.DEPARTMENT_PENDING,
			sort="oldest",
			limit=limit,
			offset=offset,
		)
		items = await _service.list_requests(actor, request_filter)
	except LendingError as exc:
		raise to_http_error(exc) from exc
	return dto.TransactionListResponse(
		items=[dto.TransactionResponse.from_model(item) for item in items],
		limit=request_filter.limit,
		offset=request_filter.offset,
		next_offset=request_filter.offset + len(items) if len(items) >= request_filter.limit else None,
	)


__all__ = ["router"]
