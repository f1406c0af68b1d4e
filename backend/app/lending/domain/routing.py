"""Routing rules deciding how a new lending request enters the workflow."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from app.lending.domain import guard, models
from app.lending.domain.exceptions import (
	DepartmentUnknownError,
	ForbiddenError,
	RoleNotPermittedError,
	UnauthorizedError,
	ValidationError,
)


@dataclass(slots=True, frozen=True)
class RoutingDecision:
	status: models.TransactionStatus
	student_id: Optional[str] = None
	borrower_club_id: Optional[UUID] = None
	dept_id: Optional[UUID] = None

	@property
	def relayed(self) -> bool:
		return self.dept_id is not None

	@property
	def label(self) -> str:
		if self.borrower_club_id is not None:
			return "club"
		return "relayed" if self.relayed else "member"


def assert_may_borrow(requester: models.Actor | None) -> None:
	if requester is None or requester.kind is None or not requester.id:
		raise UnauthorizedError()
	if requester.is_faculty or requester.is_admin:
		raise RoleNotPermittedError()
	if not (requester.is_club or requester.is_student):
		raise UnauthorizedError()


def _club_uuid(requester: models.Actor) -> UUID:
	try:
		return UUID(requester.id)
	except ValueError:
		raise UnauthorizedError("invalid_club_identity") from None


def route(
	requester: models.Actor | None,
	item: models.InventoryItem,
	quantity: int,
	*,
	membership: models.Membership | None,
	student: models.Student | None,
) -> RoutingDecision:
	"""Decide the initial state of a request for ``item``.

	Clubs and member students go straight to the owning club; students
	outside the club are relayed through their home department. Capacity is
	checked before any decision is returned.
	"""
	assert_may_borrow(requester)
	assert requester is not None
	guard.check_capacity(item, quantity)

	if requester.is_club:
		club_id = _club_uuid(requester)
		if club_id == item.club_id:
			raise ValidationError("cannot_borrow_own_item")
		if not item.is_public:
			raise ForbiddenError("item_not_visible")
		return RoutingDecision(
			status=models.TransactionStatus.PROCESSING,
			borrower_club_id=club_id,
		)

	is_member = membership is not None and membership.club_id == item.club_id and membership.usn == requester.id
	if is_member:
		return RoutingDecision(
			status=models.TransactionStatus.PROCESSING,
			student_id=requester.id,
		)

	if not item.is_public:
		raise ForbiddenError("item_not_visible")
	if student is None or student.dept_id is None:
		raise DepartmentUnknownError()
	return RoutingDecision(
		status=models.TransactionStatus.DEPARTMENT_PENDING,
		student_id=requester.id,
		dept_id=student.dept_id,
	)
