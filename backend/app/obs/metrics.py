"""Central registry for Prometheus metrics used across the backend."""

from __future__ import annotations

import logging

from prometheus_client import Counter, Gauge, Histogram, Summary

log = logging.getLogger(__name__)

_idem = {"hit": 0, "miss": 0, "conflict": 0, "unavail": 0}


REQUEST_COUNTER = Counter(
	"clubhub_http_requests_total",
	"Total HTTP requests processed",
	["route", "method", "status"],
)

REQUEST_LATENCY = Histogram(
	"clubhub_http_request_duration_seconds",
	"HTTP request latency in seconds",
	["route", "method"],
	buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0),
)

LENDING_SUBMITTED = Counter(
	"clubhub_lending_requests_submitted_total",
	"Lending requests accepted at submission",
	["route"],
)

LENDING_TRANSITIONS = Counter(
	"clubhub_lending_transitions_total",
	"Lending request status transitions applied",
	["from_status", "to_status"],
)

LENDING_REJECTS = Counter(
	"clubhub_lending_rejects_total",
	"Lending operations refused, by error code",
	["code"],
)

LENDING_CONFLICTS = Counter(
	"clubhub_lending_conflicts_total",
	"Compare-and-set races lost on lending requests",
	["operation"],
)

LENDING_OVERDUE_MARKED = Counter(
	"clubhub_lending_overdue_marked_total",
	"Collected requests persisted as overdue by the sweeper",
)

IDEMPOTENCY_EVENTS = Counter(
	"clubhub_idempotency_events_total",
	"Idempotency key lookups by outcome",
	["outcome"],
)

REDIS_UP = Gauge("clubhub_redis_up", "Redis availability (1=up,0=down)")
REDIS_LATENCY = Summary("clubhub_redis_latency_seconds", "Redis ping latency (seconds)")

POSTGRES_UP = Gauge("clubhub_postgres_up", "Postgres availability (1=up,0=down)")
POSTGRES_LATENCY = Summary("clubhub_postgres_latency_seconds", "Postgres ping latency (seconds)")

BACKGROUND_RUNS = Counter(
	"clubhub_jobs_runs_total",
	"Background job executions",
	["name", "result"],
)

BACKGROUND_DURATION = Histogram(
	"clubhub_jobs_duration_seconds",
	"Background job duration",
	["name"],
	buckets=(0.1, 0.5, 1.0, 2.0, 5.0, 15.0, 30.0, 60.0),
)


def observe_request(route: str, method: str, status: int, elapsed_seconds: float) -> None:
	REQUEST_COUNTER.labels(route=route, method=method, status=str(status)).inc()
	REQUEST_LATENCY.labels(route=route, method=method).observe(elapsed_seconds)


def inc_lending_submitted(route: str) -> None:
	LENDING_SUBMITTED.labels(route=route).inc()


def inc_lending_transition(from_status: str, to_status: str) -> None:
	LENDING_TRANSITIONS.labels(from_status=from_status, to_status=to_status).inc()


def inc_lending_reject(code: str) -> None:
	LENDING_REJECTS.labels(code=code).inc()


def inc_lending_conflict(operation: str) -> None:
	LENDING_CONFLICTS.labels(operation=operation).inc()


def inc_lending_overdue(count: int = 1) -> None:
	if count > 0:
		LENDING_OVERDUE_MARKED.inc(count)


def mark_redis(ok: bool, *, latency_seconds: float | None = None) -> None:
	REDIS_UP.set(1 if ok else 0)
	if latency_seconds is not None:
		REDIS_LATENCY.observe(latency_seconds)


def mark_postgres(ok: bool, *, latency_seconds: float | None = None) -> None:
	POSTGRES_UP.set(1 if ok else 0)
	if latency_seconds is not None:
		POSTGRES_LATENCY.observe(latency_seconds)


def record_job_run(name: str, *, result: str, duration_seconds: float | None = None) -> None:
	BACKGROUND_RUNS.labels(name=name, result=result).inc()
	if duration_seconds is not None:
		BACKGROUND_DURATION.labels(name=name).observe(duration_seconds)


def _inc_idem(outcome: str) -> None:
	_idem[outcome] += 1
	IDEMPOTENCY_EVENTS.labels(outcome=outcome).inc()


def inc_idem_hit() -> None:
	"""Increment idempotency hit counter."""
	_inc_idem("hit")


def inc_idem_miss() -> None:
	"""Increment idempotency miss counter."""
	_inc_idem("miss")


def inc_idem_conflict() -> None:
	"""Increment idempotency conflict counter."""
	_inc_idem("conflict")


def inc_idem_unavail() -> None:
	"""Increment idempotency unavailable counter."""
	_inc_idem("unavail")


def idem_snapshot() -> dict[str, int]:
	return dict(_idem)
