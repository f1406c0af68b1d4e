"""Pydantic schemas for the lending API."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, StrictInt

from app.lending.domain import models


class SubmitRequest(BaseModel):
	inventory_id: UUID
	# Sign and zero are checked by the domain so they surface as INVALID_QUANTITY.
	quantity: StrictInt
	due_date: Optional[datetime] = None
	message: Optional[str] = None


class DecisionRequest(BaseModel):
	decision: models.DecisionAction


class AmendRequest(BaseModel):
	"""Omitted fields stay as they are; an explicit ``"due_date": null`` clears the due date."""

	message: Optional[str] = None
	due_date: Optional[datetime] = None


class DepartmentRequestResponse(BaseModel):
	id: UUID
	dept_id: UUID
	usn: str
	transaction_id: UUID
	decision: models.RelayDecision
	decided_by: Optional[str] = None
	decided_at: Optional[datetime] = None
	created_at: datetime

	@classmethod
	def from_model(cls, department_request: models.DepartmentRequest) -> "DepartmentRequestResponse":
		return cls.model_validate(department_request.model_dump())


class TransactionResponse(BaseModel):
	id: UUID
	inventory_id: UUID
	owning_club_id: UUID
	student_id: Optional[str] = None
	borrower_club_id: Optional[UUID] = None
	quantity: int
	status: models.TransactionStatus
	status_label: str
	rejected_by: Optional[models.RejectionSource] = None
	date_of_issue: datetime
	due_date: Optional[datetime] = None
	message: Optional[str] = None
	updated_at: datetime
	department_request: Optional[DepartmentRequestResponse] = None

	@classmethod
	def from_model(
		cls,
		transaction: models.Transaction,
		department_request: models.DepartmentRequest | None = None,
	) -> "TransactionResponse":
		return cls(
			**transaction.model_dump(),
			status_label=transaction.status.label,
			department_request=(
				DepartmentRequestResponse.from_model(department_request) if department_request else None
			),
		)


class TransactionListResponse(BaseModel):
	items: List[TransactionResponse]
	limit: int
	offset: int
	next_offset: Optional[int] = None


class BorrowerSummaryResponse(BaseModel):
	active_requests: int = Field(ge=0)
	total_borrowed: int = Field(ge=0)
