"""Domain models for the inventory lending workflow."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, model_validator

from app.lending.domain.exceptions import ValidationError


class TransactionStatus(str, Enum):
	"""Canonical lifecycle states of a lending request."""

	PROCESSING = "PROCESSING"
	DEPARTMENT_PENDING = "DEPARTMENT_PENDING"
	DEPARTMENT_APPROVED = "DEPARTMENT_APPROVED"
	CLUB_APPROVED = "CLUB_APPROVED"
	COLLECTED = "COLLECTED"
	OVERDUE = "OVERDUE"
	REJECTED = "REJECTED"

	@property
	def label(self) -> str:
		return STATUS_LABELS[self]

	@property
	def is_terminal(self) -> bool:
		return self in TERMINAL_STATUSES


STATUS_LABELS = {
	TransactionStatus.PROCESSING: "Processing",
	TransactionStatus.DEPARTMENT_PENDING: "Department Approval Pending",
	TransactionStatus.DEPARTMENT_APPROVED: "Department Approved",
	TransactionStatus.CLUB_APPROVED: "Club Approved",
	TransactionStatus.COLLECTED: "Collected",
	TransactionStatus.OVERDUE: "Overdue",
	TransactionStatus.REJECTED: "Rejected",
}

TERMINAL_STATUSES = frozenset({TransactionStatus.REJECTED})

# Units counted against an item's owned quantity.
RESERVING_STATUSES = frozenset(
	{
		TransactionStatus.CLUB_APPROVED,
		TransactionStatus.COLLECTED,
		TransactionStatus.OVERDUE,
	}
)

# Ordering used by the status sort of request listings.
STATUS_ORDER = {
	TransactionStatus.PROCESSING: 0,
	TransactionStatus.DEPARTMENT_PENDING: 1,
	TransactionStatus.DEPARTMENT_APPROVED: 3,
	TransactionStatus.CLUB_APPROVED: 5,
	TransactionStatus.COLLECTED: 6,
	TransactionStatus.OVERDUE: 7,
	TransactionStatus.REJECTED: 9,
}


class RejectionSource(str, Enum):
	CLUB = "club"
	DEPARTMENT = "department"


# Numeric codes written by the earlier dashboard.
_LEGACY_CODES: dict[int, tuple[TransactionStatus, Optional[RejectionSource]]] = {
	0: (TransactionStatus.PROCESSING, None),
	1: (TransactionStatus.DEPARTMENT_PENDING, None),
	2: (TransactionStatus.REJECTED, RejectionSource.DEPARTMENT),
	3: (TransactionStatus.DEPARTMENT_APPROVED, None),
	4: (TransactionStatus.REJECTED, RejectionSource.CLUB),
	5: (TransactionStatus.CLUB_APPROVED, None),
	6: (TransactionStatus.COLLECTED, None),
	7: (TransactionStatus.OVERDUE, None),
}

_LEGACY_LABELS: dict[str, tuple[TransactionStatus, Optional[RejectionSource]]] = {
	"pending": (TransactionStatus.PROCESSING, None),
	"processing": (TransactionStatus.PROCESSING, None),
	"department approval pending": (TransactionStatus.DEPARTMENT_PENDING, None),
	"underconsideration": (TransactionStatus.DEPARTMENT_PENDING, None),
	"under consideration": (TransactionStatus.DEPARTMENT_PENDING, None),
	"dept approved": (TransactionStatus.DEPARTMENT_APPROVED, None),
	"approved": (TransactionStatus.CLUB_APPROVED, None),
	"club approved": (TransactionStatus.CLUB_APPROVED, None),
	"rejected": (TransactionStatus.REJECTED, RejectionSource.CLUB),
	"club rejected": (TransactionStatus.REJECTED, RejectionSource.CLUB),
	"dept rejected": (TransactionStatus.REJECTED, RejectionSource.DEPARTMENT),
	"collected": (TransactionStatus.COLLECTED, None),
	"overdue": (TransactionStatus.OVERDUE, None),
}


def parse_legacy_status(value: int | str | TransactionStatus) -> tuple[TransactionStatus, Optional[RejectionSource]]:
	"""Map any stored status value onto the canonical enum.

	Accepts canonical names, the numeric codes and the free-text labels of
	older rows. Values with no defined meaning (including the unmodelled
	"returned" state) raise ``ValidationError`` rather than being guessed.
	"""
	if isinstance(value, TransactionStatus):
		return value, None
	if isinstance(value, bool):
		raise ValidationError("unsupported_status")
	if isinstance(value, int):
		if value in _LEGACY_CODES:
			return _LEGACY_CODES[value]
		raise ValidationError("unsupported_status")
	if isinstance(value, str):
		text = value.strip()
		if text.upper() in TransactionStatus.__members__:
			return TransactionStatus[text.upper()], None
		if text.isdigit():
			return parse_legacy_status(int(text))
		mapped = _LEGACY_LABELS.get(text.lower())
		if mapped is not None:
			return mapped
	raise ValidationError("unsupported_status")


def parse_status(value: int | str | TransactionStatus) -> TransactionStatus:
	return parse_legacy_status(value)[0]


class MemberRole(str, Enum):
	"""Club membership roles, lowest to highest."""

	NEW_MEMBER = "new_member"
	MEMBER = "member"
	CORE_MEMBER = "core_member"
	CO_LEAD = "co_lead"
	TEAM_LEAD = "team_lead"

	@property
	def rank(self) -> int:
		return ROLE_HIERARCHY[self]

	@classmethod
	def parse(cls, value: str) -> "MemberRole":
		normalised = value.strip().lower().replace("-", "_").replace(" ", "_")
		return cls(normalised)


ROLE_HIERARCHY = {
	MemberRole.NEW_MEMBER: 1,
	MemberRole.MEMBER: 2,
	MemberRole.CORE_MEMBER: 3,
	MemberRole.CO_LEAD: 4,
	MemberRole.TEAM_LEAD: 5,
}


class RelayDecision(str, Enum):
	PENDING = "pending"
	APPROVED = "approved"
	REJECTED = "rejected"


class ActorKind(str, Enum):
	CLUB = "club"
	STUDENT = "student"
	FACULTY = "faculty"
	ADMIN = "admin"


class DecisionAction(str, Enum):
	APPROVE = "approve"
	REJECT = "reject"


@dataclass(slots=True, frozen=True)
class Actor:
	"""Identity performing a workflow operation.

	``id`` is the club id for club accounts, the USN for students and the
	faculty id for faculty. ``dept_id`` is only meaningful for faculty.
	"""

	id: str
	kind: Optional[ActorKind]
	dept_id: Optional[UUID] = None

	@property
	def is_club(self) -> bool:
		return self.kind is ActorKind.CLUB

	@property
	def is_student(self) -> bool:
		return self.kind is ActorKind.STUDENT

	@property
	def is_faculty(self) -> bool:
		return self.kind is ActorKind.FACULTY

	@property
	def is_admin(self) -> bool:
		return self.kind is ActorKind.ADMIN


class InventoryItem(BaseModel):
	"""A lendable item owned by exactly one club."""

	id: UUID
	club_id: UUID
	name: str
	quantity: int
	cost: Optional[float] = None
	is_public: bool = True

	model_config = ConfigDict(from_attributes=True)


class Membership(BaseModel):
	id: Optional[UUID] = None
	club_id: UUID
	usn: str
	role: MemberRole = MemberRole.MEMBER

	model_config = ConfigDict(from_attributes=True)


class Student(BaseModel):
	usn: str
	dept_id: Optional[UUID] = None

	model_config = ConfigDict(from_attributes=True)


class Transaction(BaseModel):
	"""A lending request; the aggregate root of the workflow."""

	id: UUID
	student_id: Optional[str] = None
	borrower_club_id: Optional[UUID] = None
	inventory_id: UUID
	owning_club_id: UUID
	quantity: int
	date_of_issue: datetime
	due_date: Optional[datetime] = None
	status: TransactionStatus
	rejected_by: Optional[RejectionSource] = None
	message: Optional[str] = None
	updated_at: datetime

	model_config = ConfigDict(from_attributes=True)

	@model_validator(mode="before")
	@classmethod
	def _normalise_status(cls, data):
		if isinstance(data, dict) and "status" in data and not isinstance(data["status"], TransactionStatus):
			status, source = parse_legacy_status(data["status"])
			data = {**data, "status": status}
			if source is not None and not data.get("rejected_by"):
				data["rejected_by"] = source
		return data

	@model_validator(mode="after")
	def _exactly_one_borrower(self) -> "Transaction":
		if (self.student_id is None) == (self.borrower_club_id is None):
			raise ValueError("exactly one of student_id or borrower_club_id must be set")
		return self

	@property
	def borrower_id(self) -> str:
		return self.student_id if self.student_id is not None else str(self.borrower_club_id)


class DepartmentRequest(BaseModel):
	"""Relay record addressed to a student's home department."""

	id: UUID
	dept_id: UUID
	usn: str
	transaction_id: UUID
	decision: RelayDecision = RelayDecision.PENDING
	decided_by: Optional[str] = None
	decided_at: Optional[datetime] = None
	created_at: datetime

	model_config = ConfigDict(from_attributes=True)


@dataclass(slots=True)
class RequestFilter:
	"""Listing filter; visibility scoping is applied separately per actor."""

	status: Optional[TransactionStatus] = None
	inventory_id: Optional[UUID] = None
	student_id: Optional[str] = None
	borrower_club_id: Optional[UUID] = None
	owning_club_id: Optional[UUID] = None
	dept_id: Optional[UUID] = None
	search: Optional[str] = None
	sort: str = "recent"
	limit: int = 50
	offset: int = 0


@dataclass(slots=True)
class BorrowerSummary:
	active_requests: int
	total_borrowed: int
