from __future__ import annotations

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest
from pydantic import ValidationError as PydanticValidationError

from app.lending.domain import models, relay, state_machine
from app.lending.domain.exceptions import (
	ConflictError,
	ForbiddenError,
	InvalidTransitionError,
	NotFoundError,
	NotYetEligibleError,
	ValidationError,
)
from app.lending.domain.state_machine import WorkflowAction

Status = models.TransactionStatus
NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)
OWNER = uuid4()
DEPT = uuid4()


def _txn(status: Status, **fields) -> models.Transaction:
	data = {
		"id": uuid4(),
		"student_id": "1RV22ME044",
		"inventory_id": uuid4(),
		"owning_club_id": OWNER,
		"quantity": 1,
		"date_of_issue": NOW - timedelta(days=2),
		"status": status,
		"updated_at": NOW - timedelta(days=2),
	}
	data.update(fields)
	return models.Transaction(**data)


def _relay(transaction: models.Transaction, decision=models.RelayDecision.PENDING, dept_id=DEPT):
	return models.DepartmentRequest(
		id=uuid4(),
		dept_id=dept_id,
		usn=transaction.student_id or "",
		transaction_id=transaction.id,
		decision=decision,
		created_at=NOW,
	)


OWNER_ACTOR = models.Actor(id=str(OWNER), kind=models.ActorKind.CLUB)
FACULTY_ACTOR = models.Actor(id="FAC-01", kind=models.ActorKind.FACULTY, dept_id=DEPT)


@pytest.mark.parametrize(
	"source,action,target",
	[
		(Status.PROCESSING, WorkflowAction.APPROVE, Status.CLUB_APPROVED),
		(Status.PROCESSING, WorkflowAction.REJECT, Status.REJECTED),
		(Status.DEPARTMENT_APPROVED, WorkflowAction.APPROVE, Status.CLUB_APPROVED),
		(Status.DEPARTMENT_APPROVED, WorkflowAction.REJECT, Status.REJECTED),
		(Status.CLUB_APPROVED, WorkflowAction.COLLECT, Status.COLLECTED),
		(Status.CLUB_APPROVED, WorkflowAction.REJECT, Status.REJECTED),
	],
)
def test_owning_club_transitions(source, action, target):
	txn = _txn(source)
	dr = _relay(txn, models.RelayDecision.APPROVED) if source is Status.DEPARTMENT_APPROVED else None
	transition = state_machine.plan(OWNER_ACTOR, txn, action, department_request=dr, now=NOW)
	assert transition.source is source
	assert transition.target is target


@pytest.mark.parametrize(
	"action,target,source_tag",
	[
		(WorkflowAction.APPROVE, Status.DEPARTMENT_APPROVED, None),
		(WorkflowAction.REJECT, Status.REJECTED, models.RejectionSource.DEPARTMENT),
	],
)
def test_department_faculty_decides_pending_requests(action, target, source_tag):
	txn = _txn(Status.DEPARTMENT_PENDING)
	transition = state_machine.plan(FACULTY_ACTOR, txn, action, department_request=_relay(txn), now=NOW)
	assert transition.target is target
	assert transition.rejected_by is source_tag


def test_club_rejection_is_tagged_as_club():
	transition = state_machine.plan(OWNER_ACTOR, _txn(Status.PROCESSING), WorkflowAction.REJECT, now=NOW)
	assert transition.rejected_by is models.RejectionSource.CLUB


@pytest.mark.parametrize("action", [WorkflowAction.APPROVE, WorkflowAction.REJECT, WorkflowAction.COLLECT])
def test_owning_club_locked_out_while_department_pending(action):
	txn = _txn(Status.DEPARTMENT_PENDING)
	with pytest.raises(NotYetEligibleError) as exc:
		state_machine.plan(OWNER_ACTOR, txn, action, department_request=_relay(txn), now=NOW)
	assert exc.value.code == "NOT_YET_ELIGIBLE"


def test_faculty_of_another_department_is_forbidden():
	txn = _txn(Status.DEPARTMENT_PENDING)
	other = models.Actor(id="FAC-02", kind=models.ActorKind.FACULTY, dept_id=uuid4())
	with pytest.raises(ForbiddenError):
		state_machine.plan(other, txn, WorkflowAction.APPROVE, department_request=_relay(txn), now=NOW)


@pytest.mark.parametrize(
	"status,action",
	[
		(Status.PROCESSING, WorkflowAction.APPROVE),
		(Status.DEPARTMENT_APPROVED, WorkflowAction.APPROVE),
		(Status.CLUB_APPROVED, WorkflowAction.COLLECT),
	],
)
def test_faculty_cannot_act_on_club_states(status, action):
	txn = _txn(status)
	with pytest.raises(ForbiddenError):
		state_machine.plan(
			FACULTY_ACTOR,
			txn,
			action,
			department_request=_relay(txn, models.RelayDecision.APPROVED),
			now=NOW,
		)


@pytest.mark.parametrize(
	"actor",
	[
		models.Actor(id=str(uuid4()), kind=models.ActorKind.CLUB),
		models.Actor(id="1RV22ME044", kind=models.ActorKind.STUDENT),
		models.Actor(id="root", kind=models.ActorKind.ADMIN),
	],
)
def test_non_owners_are_forbidden(actor):
	with pytest.raises(ForbiddenError) as exc:
		state_machine.plan(actor, _txn(Status.PROCESSING), WorkflowAction.APPROVE, now=NOW)
	assert exc.value.code == "FORBIDDEN"


@pytest.mark.parametrize(
	"status,action",
	[
		(Status.PROCESSING, WorkflowAction.COLLECT),
		(Status.DEPARTMENT_APPROVED, WorkflowAction.COLLECT),
		(Status.CLUB_APPROVED, WorkflowAction.APPROVE),
		(Status.COLLECTED, WorkflowAction.APPROVE),
		(Status.COLLECTED, WorkflowAction.REJECT),
		(Status.OVERDUE, WorkflowAction.REJECT),
	],
)
def test_illegal_transitions_are_rejected(status, action):
	txn = _txn(status, due_date=NOW + timedelta(days=1))
	dr = _relay(txn, models.RelayDecision.APPROVED)
	with pytest.raises(InvalidTransitionError) as exc:
		state_machine.plan(OWNER_ACTOR, txn, action, department_request=dr, now=NOW)
	assert exc.value.code == "INVALID_TRANSITION"


@pytest.mark.parametrize("action", [WorkflowAction.APPROVE, WorkflowAction.REJECT, WorkflowAction.COLLECT])
def test_rejected_is_terminal(action):
	with pytest.raises(InvalidTransitionError):
		state_machine.plan(OWNER_ACTOR, _txn(Status.REJECTED), action, now=NOW)
	assert Status.REJECTED.is_terminal


@pytest.mark.parametrize(
	"status",
	[Status.PROCESSING, Status.DEPARTMENT_PENDING, Status.DEPARTMENT_APPROVED, Status.CLUB_APPROVED],
)
def test_rejected_reachable_from_every_pre_collection_state(status):
	txn = _txn(status)
	actor = FACULTY_ACTOR if status is Status.DEPARTMENT_PENDING else OWNER_ACTOR
	decision = models.RelayDecision.PENDING if status is Status.DEPARTMENT_PENDING else models.RelayDecision.APPROVED
	transition = state_machine.plan(
		actor, txn, WorkflowAction.REJECT, department_request=_relay(txn, decision), now=NOW
	)
	assert transition.target is Status.REJECTED


def test_department_approved_requires_recorded_relay_approval():
	txn = _txn(Status.DEPARTMENT_APPROVED)
	with pytest.raises(NotYetEligibleError) as exc:
		state_machine.plan(
			OWNER_ACTOR, txn, WorkflowAction.APPROVE, department_request=_relay(txn), now=NOW
		)
	assert exc.value.detail == "department_decision_missing"


def test_expiry_is_clock_driven_only():
	with pytest.raises(ForbiddenError):
		state_machine.plan(OWNER_ACTOR, _txn(Status.COLLECTED), WorkflowAction.EXPIRE, now=NOW)


def test_collected_past_due_reads_as_overdue():
	txn = _txn(Status.COLLECTED, due_date=NOW - timedelta(hours=1))
	assert state_machine.effective_status(txn, NOW) is Status.OVERDUE
	assert state_machine.with_effective_status(txn, NOW).status is Status.OVERDUE
	assert txn.status is Status.COLLECTED


def test_collected_without_due_date_never_overdue():
	txn = _txn(Status.COLLECTED)
	assert state_machine.effective_status(txn, NOW + timedelta(days=365)) is Status.COLLECTED
	assert state_machine.plan_expiry(txn, NOW) is None


def test_naive_due_dates_are_treated_as_utc():
	txn = _txn(Status.COLLECTED, due_date=(NOW - timedelta(minutes=5)).replace(tzinfo=None))
	transition = state_machine.plan_expiry(txn, NOW)
	assert transition is not None
	assert transition.target is Status.OVERDUE
	assert transition.actor is None


def test_overdue_collected_cannot_be_rejected_by_owner():
	txn = _txn(Status.COLLECTED, due_date=NOW - timedelta(days=1))
	with pytest.raises(InvalidTransitionError) as exc:
		state_machine.plan(OWNER_ACTOR, txn, WorkflowAction.REJECT, now=NOW)
	assert exc.value.detail == "overdue_cannot_reject"


def test_relay_is_consumed_once():
	txn = _txn(Status.DEPARTMENT_PENDING)
	pending = _relay(txn)
	assert relay.assert_open(pending) is pending
	with pytest.raises(ConflictError):
		relay.assert_open(_relay(txn, models.RelayDecision.APPROVED))
	with pytest.raises(NotFoundError):
		relay.resolve_department_decision(None)
	assert relay.decision_for(models.DecisionAction.REJECT) is models.RelayDecision.REJECTED


@pytest.mark.parametrize(
	"value,expected,source",
	[
		(0, Status.PROCESSING, None),
		(1, Status.DEPARTMENT_PENDING, None),
		(2, Status.REJECTED, models.RejectionSource.DEPARTMENT),
		(3, Status.DEPARTMENT_APPROVED, None),
		(4, Status.REJECTED, models.RejectionSource.CLUB),
		(5, Status.CLUB_APPROVED, None),
		(6, Status.COLLECTED, None),
		(7, Status.OVERDUE, None),
		("6", Status.COLLECTED, None),
		("pending", Status.PROCESSING, None),
		("UnderConsideration", Status.DEPARTMENT_PENDING, None),
		("approved", Status.CLUB_APPROVED, None),
		("Dept Rejected", Status.REJECTED, models.RejectionSource.DEPARTMENT),
		("club_approved", Status.CLUB_APPROVED, None),
		(Status.OVERDUE, Status.OVERDUE, None),
	],
)
def test_legacy_status_mapping(value, expected, source):
	assert models.parse_legacy_status(value) == (expected, source)


@pytest.mark.parametrize("value", [8, "returned", -1, "lost", True, 3.0, ""])
def test_unmapped_legacy_status_is_refused(value):
	with pytest.raises(ValidationError) as exc:
		models.parse_status(value)
	assert exc.value.detail == "unsupported_status"


def test_legacy_rows_keep_rejection_source():
	txn = _txn(2)
	assert txn.status is Status.REJECTED
	assert txn.rejected_by is models.RejectionSource.DEPARTMENT


def test_transaction_requires_exactly_one_borrower():
	with pytest.raises(PydanticValidationError):
		_txn(Status.PROCESSING, borrower_club_id=uuid4())
	with pytest.raises(PydanticValidationError):
		_txn(Status.PROCESSING, student_id=None)


def test_member_roles_are_ordered():
	ranks = [models.MemberRole.parse(label).rank for label in ("New Member", "member", "core-member", "co_lead", "team lead")]
	assert ranks == sorted(ranks)
	assert len(set(ranks)) == 5
