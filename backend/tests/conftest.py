"""Shared fixtures: fake Redis, in-memory lending repository and an ASGI client."""

from __future__ import annotations

import asyncio
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from types import SimpleNamespace
from uuid import UUID, uuid4

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from fakeredis.aioredis import FakeRedis

# Ensure backend package is importable when tests run from repo root
BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
	sys.path.insert(0, str(BACKEND_ROOT))

from app.infra import postgres
from app.lending.domain import models
from app.lending.domain.service import LendingService
from app.main import app
from app.settings import settings

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)
@pytest_asyncio.fixture(autouse=True)
async def fake_redis():
	from app.infra.redis import redis_client, set_redis_client
	original = redis_client._client
	client = FakeRedis(decode_responses=True)
	set_redis_client(client)
	try:
		yield client
	finally:
		set_redis_client(original)
		await client.flushall()


@pytest.fixture(autouse=True)
def patch_postgres(monkeypatch):
	async def _noop():
		return None

	monkeypatch.setattr(postgres, "init_pool", _noop)
	monkeypatch.setattr(postgres, "close_pool", _noop)


@pytest.fixture(autouse=True)
def force_test_settings():
	"""Ensure a consistent test environment.

	API tests authenticate via X-User-Id/X-User-Roles headers, which are only
	accepted in dev mode. The overdue scheduler stays off so lifespan startup
	does not spawn jobs.
	"""
	original_env = settings.environment
	original_sweep = settings.lending_overdue_sweep_minutes
	settings.environment = "dev"
	settings.lending_overdue_sweep_minutes = 0
	try:
		yield
	finally:
		settings.environment = original_env
		settings.lending_overdue_sweep_minutes = original_sweep


@pytest_asyncio.fixture
async def api_client():
	transport = ASGITransport(app=app)
	async with AsyncClient(transport=transport, base_url="http://testserver") as client:
		yield client


class _FakeTransaction:
	"""Rolls the repo's writable tables back when the block raises."""

	_TABLES = ("transactions", "department_requests")

	def __init__(self, repo):
		self._repo = repo
		self._snapshot: dict[str, dict] = {}

	async def __aenter__(self):
		self._snapshot = {name: dict(getattr(self._repo, name)) for name in self._TABLES}
		return None

	async def __aexit__(self, exc_type, exc, tb):
		if exc_type is not None:
			for name, rows in self._snapshot.items():
				table = getattr(self._repo, name)
				table.clear()
				table.update(rows)
		return False


class _FakeAcquire:
	def __init__(self, conn):
		self._conn = conn

	async def __aenter__(self):
		return self._conn

	async def __aexit__(self, exc_type, exc, tb):
		return False


class _FakeConnection:
	def __init__(self, repo):
		self._repo = repo

	def transaction(self):
		return _FakeTransaction(self._repo)


class _FakePool:
	def __init__(self, conn):
		self._conn = conn

	def acquire(self):
		return _FakeAcquire(self._conn)


class FakeLendingRepo:
	"""Dict-backed repository with the same compare-and-set contract as Postgres."""

	def __init__(self) -> None:
		self.items: dict[UUID, models.InventoryItem] = {}
		self.memberships: dict[tuple[UUID, str], models.Membership] = {}
		self.students: dict[str, models.Student] = {}
		self.faculty: dict[str, UUID] = {}
		self.transactions: dict[UUID, models.Transaction] = {}
		self.department_requests: dict[UUID, models.DepartmentRequest] = {}

	# --- seeding helpers ---------------------------------------------------

	def add_item(self, *, club_id: UUID | None = None, quantity: int = 3, is_public: bool = True) -> models.InventoryItem:
		item = models.InventoryItem(
			id=uuid4(),
			club_id=club_id or uuid4(),
			name="Tripod",
			quantity=quantity,
			cost=45.0,
			is_public=is_public,
		)
		self.items[item.id] = item
		return item

	def add_member(self, club_id: UUID, usn: str, role: str = "member") -> None:
		self.memberships[(club_id, usn)] = models.Membership(
			id=uuid4(), club_id=club_id, usn=usn, role=models.MemberRole.parse(role)
		)

	def add_student(self, usn: str, dept_id: UUID | None) -> None:
		self.students[usn] = models.Student(usn=usn, dept_id=dept_id)

	def add_transaction(self, item: models.InventoryItem, **fields) -> models.Transaction:
		data = {
			"id": uuid4(),
			"inventory_id": item.id,
			"owning_club_id": item.club_id,
			"quantity": 1,
			"date_of_issue": NOW - timedelta(days=3),
			"status": models.TransactionStatus.PROCESSING,
			"updated_at": NOW - timedelta(days=3),
		}
		data.update(fields)
		if "student_id" not in data and "borrower_club_id" not in data:
			data["student_id"] = "1RV22CS001"
		transaction = models.Transaction(**data)
		self.transactions[transaction.id] = transaction
		return transaction

	# --- repository surface -----------------------------------------------

	async def get_item(self, item_id, *, conn=None, for_update=False):
		return self.items.get(item_id)

	async def get_membership(self, club_id, usn, *, conn=None):
		return self.memberships.get((club_id, usn))

	async def get_student(self, usn, *, conn=None):
		return self.students.get(usn)

	async def get_faculty_department(self, faculty_id):
		return self.faculty.get(faculty_id)

	async def create_transaction(self, conn, *, decision, item, quantity, due_date, message):
		transaction = models.Transaction(
			id=uuid4(),
			student_id=decision.student_id,
			borrower_club_id=decision.borrower_club_id,
			inventory_id=item.id,
			owning_club_id=item.club_id,
			quantity=quantity,
			date_of_issue=NOW,
			due_date=due_date,
			status=decision.status,
			message=message,
			updated_at=NOW,
		)
		self.transactions[transaction.id] = transaction
		return transaction

	async def get_transaction(self, transaction_id, *, conn=None, for_update=False):
		transaction = self.transactions.get(transaction_id)
		return transaction.model_copy() if transaction else None

	async def compare_and_set_status(self, conn, transaction_id, *, expected, target, rejected_by=None):
		# Yield first so concurrent callers interleave between read and write.
		await asyncio.sleep(0)
		current = self.transactions.get(transaction_id)
		if current is None or current.status is not expected:
			return None
		updated = current.model_copy(
			update={"status": target, "rejected_by": rejected_by or current.rejected_by, "updated_at": NOW}
		)
		self.transactions[transaction_id] = updated
		return updated

	async def amend_transaction(
		self, conn, transaction_id, *, expected, message=None, due_date=None, clear_due_date=False, status=None
	):
		current = self.transactions.get(transaction_id)
		if current is None or current.status is not expected:
			return None
		update: dict[str, object] = {"updated_at": NOW}
		if message is not None:
			update["message"] = message
		if due_date is not None:
			update["due_date"] = due_date
		elif clear_due_date:
			update["due_date"] = None
		if status is not None:
			update["status"] = status
		updated = current.model_copy(update=update)
		self.transactions[transaction_id] = updated
		return updated

	async def reserved_quantity(self, inventory_id, *, conn, exclude=None):
		return sum(
			t.quantity
			for t in self.transactions.values()
			if t.inventory_id == inventory_id and t.status in models.RESERVING_STATUSES and t.id != exclude
		)

	async def list_transactions(self, scope, request_filter, *, now):
		from app.lending.domain.state_machine import with_effective_status

		rows = [with_effective_status(t, now) for t in self.transactions.values()]
		if not scope.unrestricted:
			def _visible(t: models.Transaction) -> bool:
				dr = self.department_requests.get(t.id)
				return (
					(scope.student_id is not None and t.student_id == scope.student_id)
					or (scope.club_id is not None and scope.club_id in (t.owning_club_id, t.borrower_club_id))
					or (scope.dept_id is not None and dr is not None and dr.dept_id == scope.dept_id)
				)
			rows = [t for t in rows if _visible(t)]
		if request_filter.status is not None:
			rows = [t for t in rows if t.status is request_filter.status]
		if request_filter.inventory_id is not None:
			rows = [t for t in rows if t.inventory_id == request_filter.inventory_id]
		if request_filter.search:
			needle = request_filter.search.lower()
			rows = [t for t in rows if t.message and needle in t.message.lower()]
		reverse = request_filter.sort in ("recent", "status_desc")
		if request_filter.sort.startswith("status"):
			rows.sort(key=lambda t: models.STATUS_ORDER[t.status], reverse=reverse)
		else:
			rows.sort(key=lambda t: t.date_of_issue, reverse=reverse)
		return rows[request_filter.offset : request_filter.offset + request_filter.limit]

	async def summarize_borrower(self, *, student_id=None, borrower_club_id=None):
		mine = [
			t
			for t in self.transactions.values()
			if (student_id is not None and t.student_id == student_id)
			or (borrower_club_id is not None and t.borrower_club_id == borrower_club_id)
		]
		return models.BorrowerSummary(
			active_requests=sum(1 for t in mine if t.status is not models.TransactionStatus.REJECTED),
			total_borrowed=sum(
				t.quantity
				for t in mine
				if t.status in (models.TransactionStatus.COLLECTED, models.TransactionStatus.OVERDUE)
			),
		)

	async def list_overdue_candidates(self, *, now, limit):
		rows = [
			t
			for t in self.transactions.values()
			if t.status is models.TransactionStatus.COLLECTED and t.due_date is not None and t.due_date < now
		]
		return rows[:limit]

	async def create_department_request(self, conn, *, dept_id, usn, transaction_id):
		record = models.DepartmentRequest(
			id=uuid4(),
			dept_id=dept_id,
			usn=usn,
			transaction_id=transaction_id,
			created_at=NOW,
		)
		self.department_requests[transaction_id] = record
		return record

	async def get_department_request(self, transaction_id, *, conn=None):
		record = self.department_requests.get(transaction_id)
		return record.model_copy() if record else None

	async def decide_department_request(self, conn, request_id, *, decision, actor_id):
		await asyncio.sleep(0)
		for transaction_id, record in self.department_requests.items():
			if record.id != request_id:
				continue
			if record.decision is not models.RelayDecision.PENDING:
				return None
			updated = record.model_copy(update={"decision": decision, "decided_by": actor_id, "decided_at": NOW})
			self.department_requests[transaction_id] = updated
			return updated
		return None


@pytest_asyncio.fixture
async def fake_pool(monkeypatch, repo):
	pool = _FakePool(_FakeConnection(repo))

	async def _get_pool():
		return pool

	monkeypatch.setattr("app.lending.domain.service.get_pool", _get_pool)
	return pool


@pytest.fixture
def repo() -> FakeLendingRepo:
	return FakeLendingRepo()


@pytest.fixture
def service(repo, fake_pool) -> LendingService:
	return LendingService(repository=repo, clock=lambda: NOW)


def club(club_id: UUID) -> models.Actor:
	return models.Actor(id=str(club_id), kind=models.ActorKind.CLUB)


def student(usn: str) -> models.Actor:
	return models.Actor(id=usn, kind=models.ActorKind.STUDENT)


def faculty(dept_id: UUID | None, faculty_id: str = "FAC-01") -> models.Actor:
	return models.Actor(id=faculty_id, kind=models.ActorKind.FACULTY, dept_id=dept_id)


@pytest.fixture
def actors() -> SimpleNamespace:
	return SimpleNamespace(club=club, student=student, faculty=faculty)


@pytest.fixture
def now() -> datetime:
	return NOW
