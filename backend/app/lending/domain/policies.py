"""Authorization policies for lending operations.

Every check is expressed through :func:`scopes_for`, which resolves what
standing an actor has on one particular request. Callers then assert the
scope a given operation needs instead of comparing ids ad hoc.
"""

from __future__ import annotations

from enum import Enum

from app.lending.domain import models
from app.lending.domain.exceptions import ForbiddenError, InvalidTransitionError


class ActorScope(str, Enum):
	OWNING_CLUB = "owning_club"
	DEPARTMENT = "department"
	BORROWER = "borrower"
	ADMIN = "admin"


def scopes_for(
	actor: models.Actor,
	transaction: models.Transaction,
	department_request: models.DepartmentRequest | None = None,
) -> frozenset[ActorScope]:
	scopes: set[ActorScope] = set()
	if actor.is_admin:
		scopes.add(ActorScope.ADMIN)
	if actor.is_club:
		if actor.id == str(transaction.owning_club_id):
			scopes.add(ActorScope.OWNING_CLUB)
		if transaction.borrower_club_id is not None and actor.id == str(transaction.borrower_club_id):
			scopes.add(ActorScope.BORROWER)
	if actor.is_student and transaction.student_id is not None and actor.id == transaction.student_id:
		scopes.add(ActorScope.BORROWER)
	if (
		actor.is_faculty
		and department_request is not None
		and actor.dept_id is not None
		and department_request.transaction_id == transaction.id
		and actor.dept_id == department_request.dept_id
	):
		scopes.add(ActorScope.DEPARTMENT)
	return frozenset(scopes)


def can_decide(scopes: frozenset[ActorScope]) -> bool:
	return ActorScope.OWNING_CLUB in scopes or ActorScope.DEPARTMENT in scopes


def assert_can_view(
	actor: models.Actor,
	transaction: models.Transaction,
	department_request: models.DepartmentRequest | None = None,
) -> frozenset[ActorScope]:
	scopes = scopes_for(actor, transaction, department_request)
	if not scopes:
		raise ForbiddenError("request_not_visible")
	return scopes


def assert_can_amend(
	actor: models.Actor,
	transaction: models.Transaction,
	department_request: models.DepartmentRequest | None = None,
) -> None:
	scopes = scopes_for(actor, transaction, department_request)
	if ActorScope.OWNING_CLUB not in scopes:
		raise ForbiddenError("owning_club_required")
	if transaction.status.is_terminal:
		raise InvalidTransitionError("request_closed")
