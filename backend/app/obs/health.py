"""Health check helpers for liveness and readiness probes."""

from __future__ import annotations

import asyncio
import logging
from time import perf_counter
from typing import Any, Dict, Tuple

import asyncpg
from redis.exceptions import RedisError

from app.infra import postgres
from app.infra import redis as redis_infra
from app.obs import metrics
from app.settings import settings

LOGGER = logging.getLogger(__name__)

_PG_ERRORS = (OSError, asyncio.TimeoutError, asyncpg.PostgresError, asyncpg.InterfaceError)


async def _redis_status(timeout: float = 0.2) -> Dict[str, Any]:
	start = perf_counter()
	try:
		await redis_infra.ping(timeout)
	except (RedisError, OSError, asyncio.TimeoutError) as exc:
		metrics.mark_redis(False)
		LOGGER.warning("Redis readiness check failed", exc_info=True)
		return {"ok": False, "error": type(exc).__name__}
	latency = perf_counter() - start
	metrics.mark_redis(True, latency_seconds=latency)
	return {"ok": True, "latency_ms": round(latency * 1000, 2)}


async def _postgres_status(timeout: float = 0.3) -> Dict[str, Any]:
	"""Ping Postgres and confirm the schema is at least the required migration."""
	start = perf_counter()
	try:
		pool = await postgres.get_pool()
		async with pool.acquire() as conn:
			await asyncio.wait_for(conn.execute("SELECT 1"), timeout=timeout)
			current = await postgres.latest_migration(conn)
	except _PG_ERRORS as exc:
		metrics.mark_postgres(False)
		LOGGER.warning("Postgres readiness query failed", exc_info=True)
		return {"ok": False, "error": type(exc).__name__}
	latency = perf_counter() - start
	metrics.mark_postgres(True, latency_seconds=latency)
	return {
		"ok": current is not None and current >= settings.health_min_migration,
		"latency_ms": round(latency * 1000, 2),
		"migration": current,
		"required": settings.health_min_migration,
	}


async def liveness() -> Dict[str, Any]:
	return {"status": "ok"}


async def readiness() -> Tuple[int, Dict[str, Any]]:
	redis_state = await _redis_status()
	postgres_state = await _postgres_status()
	ok = bool(redis_state.get("ok") and postgres_state.get("ok"))
	return (
		200 if ok else 503,
		{
			"status": "ok" if ok else "degraded",
			"checks": {"redis": redis_state, "postgres": postgres_state},
		},
	)
