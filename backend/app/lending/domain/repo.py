"""Async repository helpers for the lending domain."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

import asyncpg

from app.infra.postgres import get_pool
from app.lending.domain import models
from app.lending.domain.routing import RoutingDecision

_EFFECTIVE_STATUS_SQL = (
	"CASE WHEN t.status = 'COLLECTED' AND t.due_date IS NOT NULL AND t.due_date < $1 "
	"THEN 'OVERDUE' ELSE t.status END"
)

_STATUS_RANK_SQL = (
	"CASE "
	+ " ".join(
		f"WHEN ({_EFFECTIVE_STATUS_SQL}) = '{status.value}' THEN {rank}"
		for status, rank in models.STATUS_ORDER.items()
	)
	+ " ELSE 99 END"
)

_SORT_SQL = {
	"recent": "t.date_of_issue DESC, t.id DESC",
	"oldest": "t.date_of_issue ASC, t.id ASC",
	"status_asc": f"{_STATUS_RANK_SQL} ASC, t.date_of_issue DESC",
	"status_desc": f"{_STATUS_RANK_SQL} DESC, t.date_of_issue DESC",
}

_RESERVING = [status.value for status in models.RESERVING_STATUSES]


@dataclass(slots=True, frozen=True)
class VisibilityScope:
	"""Rows an actor may list. ``unrestricted`` is reserved for admins."""

	unrestricted: bool = False
	student_id: Optional[str] = None
	club_id: Optional[UUID] = None
	dept_id: Optional[UUID] = None


class LendingRepository:
	"""Thin data-access layer around asyncpg."""

	async def _run(self, conn: asyncpg.Connection | None, fn):
		if conn is not None:
			return await fn(conn)
		pool = await get_pool()
		async with pool.acquire() as pooled_conn:
			return await fn(pooled_conn)

	# --- Read-only inputs -------------------------------------------------

	async def get_item(
		self,
		item_id: UUID,
		*,
		conn: asyncpg.Connection | None = None,
		for_update: bool = False,
	) -> models.InventoryItem | None:
		query = "SELECT id, club_id, name, quantity, cost, is_public FROM inventory WHERE id=$1"
		if for_update:
			query += " FOR UPDATE"

		async def _fetch(connection: asyncpg.Connection) -> models.InventoryItem | None:
			record = await connection.fetchrow(query, str(item_id))
			return models.InventoryItem.model_validate(dict(record)) if record else None

		return await self._run(conn, _fetch)

	async def get_membership(
		self,
		club_id: UUID,
		usn: str,
		*,
		conn: asyncpg.Connection | None = None,
	) -> models.Membership | None:
		async def _fetch(connection: asyncpg.Connection) -> models.Membership | None:
			record = await connection.fetchrow(
				"SELECT id, club_id, usn, role FROM memberships WHERE club_id=$1 AND usn=$2",
				str(club_id),
				usn,
			)
			if not record:
				return None
			data = dict(record)
			data["role"] = models.MemberRole.parse(data["role"]) if data.get("role") else models.MemberRole.MEMBER
			return models.Membership.model_validate(data)

		return await self._run(conn, _fetch)

	async def get_student(self, usn: str, *, conn: asyncpg.Connection | None = None) -> models.Student | None:
		async def _fetch(connection: asyncpg.Connection) -> models.Student | None:
			record = await connection.fetchrow("SELECT usn, dept_id FROM students WHERE usn=$1", usn)
			return models.Student.model_validate(dict(record)) if record else None

		return await self._run(conn, _fetch)

	async def get_faculty_department(self, faculty_id: str) -> UUID | None:
		async def _fetch(connection: asyncpg.Connection) -> UUID | None:
			value = await connection.fetchval("SELECT dept_id FROM faculty WHERE faculty_id=$1", faculty_id)
			return UUID(str(value)) if value else None

		return await self._run(None, _fetch)

	# --- Transactions -----------------------------------------------------

	async def create_transaction(
		self,
		conn: asyncpg.Connection,
		*,
		decision: RoutingDecision,
		item: models.InventoryItem,
		quantity: int,
		due_date: datetime | None,
		message: str | None,
	) -> models.Transaction:
		record = await conn.fetchrow(
			"""
			INSERT INTO transactions (id, student_id, borrower_club_id, inventory_id, owning_club_id,
				quantity, date_of_issue, due_date, status, message, updated_at)
			VALUES ($1, $2, $3, $4, $5, $6, NOW(), $7, $8, $9, NOW())
			RETURNING *
			""",
			uuid4(),
			decision.student_id,
			str(decision.borrower_club_id) if decision.borrower_club_id else None,
			str(item.id),
			str(item.club_id),
			quantity,
			due_date,
			decision.status.value,
			message,
		)
		return models.Transaction.model_validate(dict(record))

	async def get_transaction(
		self,
		transaction_id: UUID,
		*,
		conn: asyncpg.Connection | None = None,
		for_update: bool = False,
	) -> models.Transaction | None:
		query = "SELECT * FROM transactions WHERE id=$1"
		if for_update:
			query += " FOR UPDATE"

		async def _fetch(connection: asyncpg.Connection) -> models.Transaction | None:
			record = await connection.fetchrow(query, str(transaction_id))
			return models.Transaction.model_validate(dict(record)) if record else None

		return await self._run(conn, _fetch)

	async def compare_and_set_status(
		self,
		conn: asyncpg.Connection,
		transaction_id: UUID,
		*,
		expected: models.TransactionStatus,
		target: models.TransactionStatus,
		rejected_by: models.RejectionSource | None = None,
	) -> models.Transaction | None:
		"""Move to ``target`` only if the row still holds ``expected``; None when it does not."""
		record = await conn.fetchrow(
			"""
			UPDATE transactions
			SET status=$3, rejected_by=COALESCE($4, rejected_by), updated_at=NOW()
			WHERE id=$1 AND status=$2
			RETURNING *
			""",
			str(transaction_id),
			expected.value,
			target.value,
			rejected_by.value if rejected_by else None,
		)
		return models.Transaction.model_validate(dict(record)) if record else None

	async def amend_transaction(
		self,
		conn: asyncpg.Connection,
		transaction_id: UUID,
		*,
		expected: models.TransactionStatus,
		message: str | None = None,
		due_date: datetime | None = None,
		clear_due_date: bool = False,
		status: models.TransactionStatus | None = None,
	) -> models.Transaction | None:
		fields: list[str] = []
		values: list[object] = []
		if message is not None:
			fields.append("message=$%d" % (len(values) + 3))
			values.append(message)
		if due_date is not None:
			fields.append("due_date=$%d" % (len(values) + 3))
			values.append(due_date)
		elif clear_due_date:
			fields.append("due_date=NULL")
		if status is not None:
			fields.append("status=$%d" % (len(values) + 3))
			values.append(status.value)
		fields.append("updated_at=NOW()")
		record = await conn.fetchrow(
			f"UPDATE transactions SET {', '.join(fields)} WHERE id=$1 AND status=$2 RETURNING *",
			str(transaction_id),
			expected.value,
			*values,
		)
		return models.Transaction.model_validate(dict(record)) if record else None

	async def reserved_quantity(
		self,
		inventory_id: UUID,
		*,
		conn: asyncpg.Connection,
		exclude: UUID | None = None,
	) -> int:
		value = await conn.fetchval(
			"""
			SELECT COALESCE(SUM(quantity), 0)
			FROM transactions
			WHERE inventory_id=$1 AND status = ANY($2::text[])
			AND ($3::uuid IS NULL OR id <> $3::uuid)
			""",
			str(inventory_id),
			_RESERVING,
			str(exclude) if exclude else None,
		)
		return int(value or 0)

	async def list_transactions(
		self,
		scope: VisibilityScope,
		request_filter: models.RequestFilter,
		*,
		now: datetime,
	) -> list[models.Transaction]:
		clauses: list[str] = []
		values: list[object] = [now]

		def _param(value: object) -> str:
			values.append(value)
			return "$%d" % len(values)

		if not scope.unrestricted:
			visible: list[str] = []
			if scope.student_id is not None:
				visible.append(f"t.student_id = {_param(scope.student_id)}")
			if scope.club_id is not None:
				club = _param(str(scope.club_id))
				visible.append(f"(t.owning_club_id = {club} OR t.borrower_club_id = {club})")
			if scope.dept_id is not None:
				visible.append(f"d.dept_id = {_param(str(scope.dept_id))}")
			if not visible:
				return []
			clauses.append("(" + " OR ".join(visible) + ")")
		if request_filter.status is not None:
			clauses.append(f"({_EFFECTIVE_STATUS_SQL}) = {_param(request_filter.status.value)}")
		if request_filter.inventory_id is not None:
			clauses.append(f"t.inventory_id = {_param(str(request_filter.inventory_id))}")
		if request_filter.student_id is not None:
			clauses.append(f"t.student_id = {_param(request_filter.student_id)}")
		if request_filter.borrower_club_id is not None:
			clauses.append(f"t.borrower_club_id = {_param(str(request_filter.borrower_club_id))}")
		if request_filter.owning_club_id is not None:
			clauses.append(f"t.owning_club_id = {_param(str(request_filter.owning_club_id))}")
		if request_filter.dept_id is not None:
			clauses.append(f"d.dept_id = {_param(str(request_filter.dept_id))}")
		if request_filter.search:
			clauses.append(f"t.message ILIKE {_param('%' + request_filter.search + '%')}")

		where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
		order_by = _SORT_SQL.get(request_filter.sort, _SORT_SQL["recent"])
		limit = _param(request_filter.limit)
		offset = _param(request_filter.offset)
		query = f"""
			SELECT t.*, ({_EFFECTIVE_STATUS_SQL}) AS effective_status
			FROM transactions t
			LEFT JOIN department_requests d ON d.transaction_id = t.id
			{where}
			ORDER BY {order_by}
			LIMIT {limit} OFFSET {offset}
		"""
		pool = await get_pool()
		async with pool.acquire() as conn:
			rows = await conn.fetch(query, *values)
		results: list[models.Transaction] = []
		for row in rows:
			data = dict(row)
			data["status"] = data.pop("effective_status")
			results.append(models.Transaction.model_validate(data))
		return results

	async def summarize_borrower(
		self,
		*,
		student_id: str | None = None,
		borrower_club_id: UUID | None = None,
	) -> models.BorrowerSummary:
		column, value = ("student_id", student_id) if student_id is not None else ("borrower_club_id", str(borrower_club_id))
		pool = await get_pool()
		async with pool.acquire() as conn:
			record = await conn.fetchrow(
				f"""
				SELECT
					COUNT(*) FILTER (WHERE status <> 'REJECTED') AS active_requests,
					COALESCE(SUM(quantity) FILTER (
						WHERE status IN ('COLLECTED', 'OVERDUE')
					), 0) AS total_borrowed
				FROM transactions
				WHERE {column} = $1
				""",
				value,
			)
		return models.BorrowerSummary(
			active_requests=int(record["active_requests"] or 0),
			total_borrowed=int(record["total_borrowed"] or 0),
		)

	async def list_overdue_candidates(self, *, now: datetime, limit: int) -> list[models.Transaction]:
		pool = await get_pool()
		async with pool.acquire() as conn:
			rows = await conn.fetch(
				"""
				SELECT * FROM transactions
				WHERE status = 'COLLECTED' AND due_date IS NOT NULL AND due_date < $1
				ORDER BY due_date ASC
				LIMIT $2
				""",
				now,
				limit,
			)
		return [models.Transaction.model_validate(dict(row)) for row in rows]

	# --- Department relay -------------------------------------------------

	async def create_department_request(
		self,
		conn: asyncpg.Connection,
		*,
		dept_id: UUID,
		usn: str,
		transaction_id: UUID,
	) -> models.DepartmentRequest:
		record = await conn.fetchrow(
			"""
			INSERT INTO department_requests (id, dept_id, usn, transaction_id, decision, created_at)
			VALUES ($1, $2, $3, $4, 'pending', NOW())
			RETURNING *
			""",
			uuid4(),
			str(dept_id),
			usn,
			str(transaction_id),
		)
		return models.DepartmentRequest.model_validate(dict(record))

	async def get_department_request(
		self,
		transaction_id: UUID,
		*,
		conn: asyncpg.Connection | None = None,
	) -> models.DepartmentRequest | None:
		async def _fetch(connection: asyncpg.Connection) -> models.DepartmentRequest | None:
			record = await connection.fetchrow(
				"SELECT * FROM department_requests WHERE transaction_id=$1",
				str(transaction_id),
			)
			return models.DepartmentRequest.model_validate(dict(record)) if record else None

		return await self._run(conn, _fetch)

	async def decide_department_request(
		self,
		conn: asyncpg.Connection,
		request_id: UUID,
		*,
		decision: models.RelayDecision,
		actor_id: str,
	) -> models.DepartmentRequest | None:
		record = await conn.fetchrow(
			"""
			UPDATE department_requests
			SET decision=$2, decided_by=$3, decided_at=NOW()
			WHERE id=$1 AND decision='pending'
			RETURNING *
			""",
			str(request_id),
			decision.value,
			actor_id,
		)
		return models.DepartmentRequest.model_validate(dict(record)) if record else None
