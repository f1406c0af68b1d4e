"""Lending request orchestration: submission, decisions, collection, listing."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable
from uuid import UUID

from app.infra.auth import AuthenticatedUser
from app.infra.postgres import get_pool
from app.lending.domain import audit, guard, models, policies, relay, repo as repo_module, routing, state_machine
from app.lending.domain.exceptions import (
	ConflictError,
	ForbiddenError,
	NotFoundError,
	UnauthorizedError,
	ValidationError,
)
from app.lending.domain.state_machine import WorkflowAction
from app.settings import settings

logger = logging.getLogger(__name__)

Status = models.TransactionStatus

SORT_OPTIONS = ("recent", "oldest", "status_asc", "status_desc")

# Checked in order; an account holding several roles acts as the first match.
_ROLE_PRIORITY = (
	("admin", models.ActorKind.ADMIN),
	("faculty", models.ActorKind.FACULTY),
	("club", models.ActorKind.CLUB),
	("student", models.ActorKind.STUDENT),
)


def _utcnow() -> datetime:
	return datetime.now(timezone.utc)


class LendingService:
	"""Runs the lending workflow for one request at a time."""

	def __init__(
		self,
		*,
		repository: repo_module.LendingRepository | None = None,
		clock: Callable[[], datetime] | None = None,
	) -> None:
		self.repo = repository or repo_module.LendingRepository()
		self._clock = clock or _utcnow

	async def resolve_actor(self, user: AuthenticatedUser) -> models.Actor:
		"""Build the acting identity from an authenticated request."""
		kind = next((k for role, k in _ROLE_PRIORITY if user.has_role(role)), None)
		if kind is None:
			raise UnauthorizedError("role_unresolved")
		dept_id = None
		if kind is models.ActorKind.FACULTY:
			dept_id = user.dept_id or await self.repo.get_faculty_department(user.id)
		return models.Actor(id=user.id, kind=kind, dept_id=dept_id)

	def _validate_details(self, *, due_date: datetime | None, message: str | None, now: datetime) -> None:
		if message is not None and len(message) > settings.lending_message_max_length:
			raise ValidationError("message_too_long")
		if due_date is not None and state_machine.as_utc(due_date) < now:
			raise ValidationError("due_date_in_past")

	# --- Submission ---------------------------------------------------------

	async def submit_request(
		self,
		requester: models.Actor | None,
		item_id: UUID,
		quantity: int,
		*,
		due_date: datetime | None = None,
		message: str | None = None,
	) -> models.Transaction:
		routing.assert_may_borrow(requester)
		assert requester is not None
		guard.ensure_positive_quantity(quantity)
		now = self._clock()
		self._validate_details(due_date=due_date, message=message, now=now)

		pool = await get_pool()
		async with pool.acquire() as conn:
			async with conn.transaction():
				item = await self.repo.get_item(item_id, conn=conn, for_update=True)
				if item is None:
					raise NotFoundError("item_not_found")
				membership: models.Membership | None = None
				student: models.Student | None = None
				if requester.is_student:
					membership = await self.repo.get_membership(item.club_id, requester.id, conn=conn)
					if membership is None:
						student = await self.repo.get_student(requester.id, conn=conn)
				decision = routing.route(requester, item, quantity, membership=membership, student=student)
				transaction = await self.repo.create_transaction(
					conn,
					decision=decision,
					item=item,
					quantity=quantity,
					due_date=due_date,
					message=message,
				)
				if decision.relayed:
					assert decision.dept_id is not None and decision.student_id is not None
					await self.repo.create_department_request(
						conn,
						dept_id=decision.dept_id,
						usn=decision.student_id,
						transaction_id=transaction.id,
					)
		await audit.record_submitted(transaction, decision.label)
		return transaction

	# --- Transitions --------------------------------------------------------

	async def decide(
		self,
		transaction_id: UUID,
		actor: models.Actor,
		decision: models.DecisionAction,
	) -> models.Transaction:
		return await self._apply(transaction_id, actor, WorkflowAction.from_decision(decision))

	async def mark_collected(self, transaction_id: UUID, actor: models.Actor) -> models.Transaction:
		return await self._apply(transaction_id, actor, WorkflowAction.COLLECT)

	async def _apply(
		self,
		transaction_id: UUID,
		actor: models.Actor,
		action: WorkflowAction,
	) -> models.Transaction:
		now = self._clock()
		pool = await get_pool()
		async with pool.acquire() as conn:
			async with conn.transaction():
				transaction = await self.repo.get_transaction(transaction_id, conn=conn)
				if transaction is None:
					raise NotFoundError("transaction_not_found")
				department_request = await self.repo.get_department_request(transaction_id, conn=conn)
				transition = state_machine.plan(
					actor,
					transaction,
					action,
					department_request=department_request,
					now=now,
				)
				if transition.source is Status.DEPARTMENT_PENDING:
					await self._consume_relay(conn, actor, action, department_request)
				if transition.target is Status.CLUB_APPROVED:
					await self._reserve(conn, transaction)
				updated = await self.repo.compare_and_set_status(
					conn,
					transaction.id,
					expected=transition.source,
					target=transition.target,
					rejected_by=transition.rejected_by,
				)
				if updated is None:
					audit.inc_conflict(action.value)
					raise ConflictError("status_changed")
		await audit.record_transition(updated, source=transition.source, actor_id=actor.id)
		return state_machine.with_effective_status(updated, now)

	async def _consume_relay(
		self,
		conn,
		actor: models.Actor,
		action: WorkflowAction,
		department_request: models.DepartmentRequest | None,
	) -> None:
		open_request = relay.assert_open(department_request)
		wanted = relay.decision_for(models.DecisionAction(action.value))
		decided = await self.repo.decide_department_request(
			conn,
			open_request.id,
			decision=wanted,
			actor_id=actor.id,
		)
		if decided is None:
			audit.inc_conflict("department_decision")
			raise ConflictError("department_request_already_decided")
		if relay.resolve_department_decision(decided) is not wanted:
			raise ConflictError("department_request_already_decided")

	async def _reserve(self, conn, transaction: models.Transaction) -> None:
		"""Re-check capacity against outstanding approvals under the item lock."""
		item = await self.repo.get_item(transaction.inventory_id, conn=conn, for_update=True)
		if item is None:
			raise NotFoundError("item_not_found")
		reserved = await self.repo.reserved_quantity(item.id, conn=conn, exclude=transaction.id)
		guard.check_capacity(item, transaction.quantity, reserved=reserved)

	# --- Side-channel edits -------------------------------------------------

	async def amend_request(
		self,
		transaction_id: UUID,
		actor: models.Actor,
		*,
		message: str | None = None,
		due_date: datetime | None = None,
		clear_due_date: bool = False,
	) -> models.Transaction:
		"""Edit the message or due date of an open request.

		A new due date is never in the past, so moving (or clearing) the due date
		of a stored OVERDUE loan puts it back to COLLECTED in the same write. The
		result is the same whether or not the overdue sweep reached the row first.
		"""
		if clear_due_date and due_date is not None:
			raise ValidationError("conflicting_due_date")
		if message is None and due_date is None and not clear_due_date:
			raise ValidationError("nothing_to_amend")
		now = self._clock()
		self._validate_details(due_date=due_date, message=message, now=now)
		reschedules = due_date is not None or clear_due_date
		pool = await get_pool()
		async with pool.acquire() as conn:
			async with conn.transaction():
				transaction = await self.repo.get_transaction(transaction_id, conn=conn)
				if transaction is None:
					raise NotFoundError("transaction_not_found")
				department_request = await self.repo.get_department_request(transaction_id, conn=conn)
				policies.assert_can_amend(actor, transaction, department_request)
				reinstated = reschedules and transaction.status is Status.OVERDUE
				updated = await self.repo.amend_transaction(
					conn,
					transaction.id,
					expected=transaction.status,
					message=message,
					due_date=due_date,
					clear_due_date=clear_due_date,
					status=Status.COLLECTED if reinstated else None,
				)
				if updated is None:
					audit.inc_conflict("amend")
					raise ConflictError("status_changed")
		if reinstated:
			await audit.record_transition(updated, source=Status.OVERDUE, actor_id=actor.id)
		await audit.record_amended(updated, actor.id)
		return state_machine.with_effective_status(updated, now)

	# --- Reads --------------------------------------------------------------

	async def get_request(
		self,
		transaction_id: UUID,
		actor: models.Actor,
	) -> tuple[models.Transaction, models.DepartmentRequest | None]:
		transaction = await self.repo.get_transaction(transaction_id)
		if transaction is None:
			raise NotFoundError("transaction_not_found")
		department_request = await self.repo.get_department_request(transaction_id)
		policies.assert_can_view(actor, transaction, department_request)
		return state_machine.with_effective_status(transaction, self._clock()), department_request

	def _scope_for(self, actor: models.Actor) -> repo_module.VisibilityScope:
		if actor.is_admin:
			return repo_module.VisibilityScope(unrestricted=True)
		if actor.is_student:
			return repo_module.VisibilityScope(student_id=actor.id)
		if actor.is_club:
			try:
				return repo_module.VisibilityScope(club_id=UUID(actor.id))
			except ValueError:
				raise UnauthorizedError("invalid_club_identity") from None
		if actor.is_faculty:
			if actor.dept_id is None:
				raise ForbiddenError("department_required")
			return repo_module.VisibilityScope(dept_id=actor.dept_id)
		raise UnauthorizedError()

	async def list_requests(
		self,
		actor: models.Actor,
		request_filter: models.RequestFilter | None = None,
	) -> list[models.Transaction]:
		request_filter = request_filter or models.RequestFilter()
		if request_filter.sort not in SORT_OPTIONS:
			raise ValidationError("invalid_sort")
		if request_filter.offset < 0:
			raise ValidationError("invalid_offset")
		request_filter.limit = max(1, min(request_filter.limit, settings.lending_list_max_limit))
		scope = self._scope_for(actor)
		return await self.repo.list_transactions(scope, request_filter, now=self._clock())

	async def borrower_summary(self, actor: models.Actor) -> models.BorrowerSummary:
		routing.assert_may_borrow(actor)
		if actor.is_student:
			return await self.repo.summarize_borrower(student_id=actor.id)
		try:
			club_id = UUID(actor.id)
		except ValueError:
			raise UnauthorizedError("invalid_club_identity") from None
		return await self.repo.summarize_borrower(borrower_club_id=club_id)

	# --- Clock-driven -------------------------------------------------------

	async def sweep_overdue(self, now: datetime | None = None) -> int:
		"""Persist COLLECTED -> OVERDUE for requests whose due date passed."""
		now = now or self._clock()
		candidates = await self.repo.list_overdue_candidates(
			now=now,
			limit=settings.lending_overdue_sweep_batch,
		)
		moved = 0
		pool = await get_pool()
		for candidate in candidates:
			transition = state_machine.plan_expiry(candidate, now)
			if transition is None:
				continue
			async with pool.acquire() as conn:
				updated = await self.repo.compare_and_set_status(
					conn,
					candidate.id,
					expected=transition.source,
					target=transition.target,
				)
			if updated is None:
				audit.inc_conflict("overdue_sweep")
				logger.info("overdue_sweep_skipped", extra={"transaction_id": str(candidate.id)})
				continue
			moved += 1
			await audit.record_transition(updated, source=transition.source, actor_id=None)
		return moved


__all__ = ["LendingService", "SORT_OPTIONS"]
