"""Lifecycle transitions of a lending request.

The table below is the only place legal moves are defined. Planning a move
is pure: it validates actor standing and the source state and returns the
transition to apply. Persisting it (compare-and-set on the prior status) is
the service's job.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from app.lending.domain import models, policies, relay
from app.lending.domain.exceptions import (
	ForbiddenError,
	InvalidTransitionError,
	NotYetEligibleError,
)
from app.lending.domain.policies import ActorScope

Status = models.TransactionStatus


class WorkflowAction(str, Enum):
	APPROVE = "approve"
	REJECT = "reject"
	COLLECT = "collect"
	EXPIRE = "expire"

	@classmethod
	def from_decision(cls, decision: models.DecisionAction) -> "WorkflowAction":
		return cls(decision.value)


@dataclass(slots=True, frozen=True)
class Transition:
	source: Status
	action: WorkflowAction
	target: Status
	# None marks clock-driven moves with no acting party.
	actor: Optional[ActorScope]

	@property
	def rejected_by(self) -> Optional[models.RejectionSource]:
		if self.target is not Status.REJECTED:
			return None
		if self.actor is ActorScope.DEPARTMENT:
			return models.RejectionSource.DEPARTMENT
		return models.RejectionSource.CLUB


_CLUB = ActorScope.OWNING_CLUB
_DEPT = ActorScope.DEPARTMENT

# REJECT is only offered before hand-over. COLLECTED and OVERDUE leave the table
# through the return flow, which is not modelled here, so rejecting them is an
# invalid transition.
TRANSITIONS: dict[tuple[Status, WorkflowAction], Transition] = {
	(t.source, t.action): t
	for t in (
		Transition(Status.PROCESSING, WorkflowAction.APPROVE, Status.CLUB_APPROVED, _CLUB),
		Transition(Status.PROCESSING, WorkflowAction.REJECT, Status.REJECTED, _CLUB),
		Transition(Status.DEPARTMENT_PENDING, WorkflowAction.APPROVE, Status.DEPARTMENT_APPROVED, _DEPT),
		Transition(Status.DEPARTMENT_PENDING, WorkflowAction.REJECT, Status.REJECTED, _DEPT),
		Transition(Status.DEPARTMENT_APPROVED, WorkflowAction.APPROVE, Status.CLUB_APPROVED, _CLUB),
		Transition(Status.DEPARTMENT_APPROVED, WorkflowAction.REJECT, Status.REJECTED, _CLUB),
		Transition(Status.CLUB_APPROVED, WorkflowAction.REJECT, Status.REJECTED, _CLUB),
		Transition(Status.CLUB_APPROVED, WorkflowAction.COLLECT, Status.COLLECTED, _CLUB),
		Transition(Status.COLLECTED, WorkflowAction.EXPIRE, Status.OVERDUE, None),
	)
}


def as_utc(value: datetime) -> datetime:
	if value.tzinfo is None:
		return value.replace(tzinfo=timezone.utc)
	return value


def is_past_due(transaction: models.Transaction, now: datetime) -> bool:
	if transaction.due_date is None:
		return False
	return as_utc(transaction.due_date) < as_utc(now)


def effective_status(transaction: models.Transaction, now: datetime) -> Status:
	"""Status as observed at ``now``; collected requests past due read as overdue."""
	if transaction.status is Status.COLLECTED and is_past_due(transaction, now):
		return Status.OVERDUE
	return transaction.status


def with_effective_status(transaction: models.Transaction, now: datetime) -> models.Transaction:
	observed = effective_status(transaction, now)
	if observed is transaction.status:
		return transaction
	return transaction.model_copy(update={"status": observed})


def plan(
	actor: models.Actor,
	transaction: models.Transaction,
	action: WorkflowAction,
	*,
	department_request: models.DepartmentRequest | None = None,
	now: datetime,
) -> Transition:
	"""Validate that ``actor`` may perform ``action`` on ``transaction`` now."""
	if action is WorkflowAction.EXPIRE:
		raise ForbiddenError("clock_driven_transition")
	current = effective_status(transaction, now)
	scopes = policies.scopes_for(actor, transaction, department_request)
	if not policies.can_decide(scopes):
		raise ForbiddenError()
	if current is Status.DEPARTMENT_PENDING and _DEPT not in scopes:
		raise NotYetEligibleError()
	transition = TRANSITIONS.get((current, action))
	if transition is None:
		raise InvalidTransitionError(f"{current.value.lower()}_cannot_{action.value}")
	if transition.actor not in scopes:
		raise ForbiddenError()
	if current is Status.DEPARTMENT_APPROVED and department_request is not None:
		if relay.resolve_department_decision(department_request) is not models.RelayDecision.APPROVED:
			raise NotYetEligibleError("department_decision_missing")
	return transition


def plan_expiry(transaction: models.Transaction, now: datetime) -> Optional[Transition]:
	"""Return the overdue transition when the due date has passed, else None."""
	if transaction.status is not Status.COLLECTED or not is_past_due(transaction, now):
		return None
	return TRANSITIONS[(Status.COLLECTED, WorkflowAction.EXPIRE)]
