"""Lending request submission, review and listing endpoints."""

from __future__ import annotations

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, Response, status

from app.api.errors import CodedHTTPException
from app.infra import idempotency
from app.infra.auth import AuthenticatedUser, get_current_user
from app.lending.api._errors import to_http_error
from app.lending.domain import models
from app.lending.domain.exceptions import LendingError
from app.lending.domain.service import LendingService
from app.lending.schemas import dto

router = APIRouter(prefix="/requests", tags=["lending:requests"])
_service = LendingService()

_SUBMIT_HANDLER = "lending.submit"


async def _begin_idempotent(request: Request, auth_user: AuthenticatedUser, payload: dto.SubmitRequest):
	key = getattr(request.state, "idem_key", None)
	if not key:
		return None, None
	scoped = idempotency.scoped_key(auth_user.id, key)
	try:
		existing = await idempotency.begin(
			scoped,
			_SUBMIT_HANDLER,
			payload_hash=idempotency.hash_payload(payload.model_dump_json()),
		)
	except idempotency.IdempotencyConflictError as exc:
		raise CodedHTTPException(status.HTTP_409_CONFLICT, detail="idempotency_conflict", code="CONFLICT") from exc
	except idempotency.IdempotencyInProgressError as exc:
		raise CodedHTTPException(status.HTTP_409_CONFLICT, detail="idempotency_in_progress", code="CONFLICT") from exc
	except idempotency.IdempotencyUnavailableError as exc:
		raise CodedHTTPException(
			status.HTTP_503_SERVICE_UNAVAILABLE,
			detail="idempotency_unavailable",
			code="UNAVAILABLE",
		) from exc
	return scoped, existing


@router.post("", response_model=dto.TransactionResponse, status_code=201)
async def submit_request_endpoint(
	payload: dto.SubmitRequest,
	request: Request,
	response: Response,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dto.TransactionResponse:
	scoped_key, existing = await _begin_idempotent(request, auth_user, payload)
	transaction = None
	try:
		actor = await _service.resolve_actor(auth_user)
		if existing is not None:
			transaction, department_request = await _service.get_request(UUID(existing["result_id"]), actor)
			response.status_code = status.HTTP_200_OK
			return dto.TransactionResponse.from_model(transaction, department_request)
		transaction = await _service.submit_request(
			actor,
			payload.inventory_id,
			payload.quantity,
			due_date=payload.due_date,
			message=payload.message,
		)
	except LendingError as exc:
		raise to_http_error(exc) from exc
	finally:
		# Nothing was written, so a retry with the same key must be allowed to run.
		if scoped_key is not None and existing is None and transaction is None:
			await idempotency.release(scoped_key, _SUBMIT_HANDLER)
	if scoped_key is not None:
		await idempotency.complete(scoped_key, _SUBMIT_HANDLER, str(transaction.id))
	return dto.TransactionResponse.from_model(transaction)


@router.get("", response_model=dto.TransactionListResponse)
async def list_requests_endpoint(
	status_filter: Optional[str] = Query(default=None, alias="status"),
	inventory_id: Optional[UUID] = None,
	student_id: Optional[str] = None,
	borrower_club_id: Optional[UUID] = None,
	owning_club_id: Optional[UUID] = None,
	dept_id: Optional[UUID] = None,
	q: Optional[str] = Query(default=None, max_length=100),
	sort: str = "recent",
	limit: int = Query(default=50, ge=1),
	offset: int = Query(default=0, ge=0),
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dto.TransactionListResponse:
	try:
		actor = await _service.resolve_actor(auth_user)
		request_filter = models.RequestFilter(
			status=models.parse_status(status_filter) if status_filter else None,
			inventory_id=inventory_id,
			student_id=student_id,
			borrower_club_id=borrower_club_id,
			owning_club_id=owning_club_id,
			dept_id=dept_id,
			search=q,
			sort=sort,
			limit=limit,
			offset=offset,
		)
		items = await _service.list_requests(actor, request_filter)
	except LendingError as exc:
		raise to_http_error(exc) from exc
	full_page = len(items) >= request_filter.limit
	return dto.TransactionListResponse(
		items=[dto.TransactionResponse.from_model(item) for item in items],
		limit=request_filter.limit,
		offset=request_filter.offset,
		next_offset=request_filter.offset + len(items) if full_page else None,
	)


@router.get("/summary", response_model=dto.BorrowerSummaryResponse)
async def borrower_summary_endpoint(
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dto.BorrowerSummaryResponse:
	try:
		actor = await _service.resolve_actor(auth_user)
		summary = await _service.borrower_summary(actor)
	except LendingError as exc:
		raise to_http_error(exc) from exc
	return dto.BorrowerSummaryResponse(
		active_requests=summary.active_requests,
		total_borrowed=summary.total_borrowed,
	)


@router.get("/{transaction_id}", response_model=dto.TransactionResponse)
async def get_request_endpoint(
	transaction_id: UUID,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dto.TransactionResponse:
	try:
		actor = await _service.resolve_actor(auth_user)
		transaction, department_request = await _service.get_request(transaction_id, actor)
	except LendingError as exc:
		raise to_http_error(exc) from exc
	return dto.TransactionResponse.from_model(transaction, department_request)


@router.patch("/{transaction_id}", response_model=dto.TransactionResponse)
async def amend_request_endpoint(
	transaction_id: UUID,
	payload: dto.AmendRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dto.TransactionResponse:
	try:
		actor = await _service.resolve_actor(auth_user)
		transaction = await _service.amend_request(
			transaction_id,
			actor,
			message=payload.message,
			due_date=payload.due_date,
			clear_due_date="due_date" in payload.model_fields_set and payload.due_date is None,
		)
	except LendingError as exc:
		raise to_http_error(exc) from exc
	return dto.TransactionResponse.from_model(transaction)


@router.post("/{transaction_id}/decision", response_model=dto.TransactionResponse)
async def decide_request_endpoint(
	transaction_id: UUID,
	payload: dto.DecisionRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dto.TransactionResponse:
	try:
		actor = await _service.resolve_actor(auth_user)
		transaction = await _service.decide(transaction_id, actor, payload.decision)
	except LendingError as exc:
		raise to_http_error(exc) from exc
	return dto.TransactionResponse.from_model(transaction)


@router.post("/{transaction_id}/collect", response_model=dto.TransactionResponse)
async def collect_request_endpoint(
	transaction_id: UUID,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dto.TransactionResponse:
	try:
		actor = await _service.resolve_actor(auth_user)
		transaction = await _service.mark_collected(transaction_id, actor)
	except LendingError as exc:
		raise to_http_error(exc) from exc
	return dto.TransactionResponse.from_model(transaction)


__all__ = ["router"]
