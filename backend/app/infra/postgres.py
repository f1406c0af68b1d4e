"""asyncpg pool shared by the lending repository, idempotency store and probes."""

from __future__ import annotations

from typing import Optional

import asyncpg

from app.settings import settings

_pool: Optional[asyncpg.pool.Pool] = None


async def init_pool() -> asyncpg.pool.Pool:
	global _pool
	if _pool is None:
		_pool = await asyncpg.create_pool(
			dsn=settings.postgres_url,
			min_size=settings.postgres_min_pool_size,
			max_size=settings.postgres_max_pool_size,
			ssl=settings.postgres_ssl,
			command_timeout=settings.postgres_command_timeout,
			# Shows up in pg_stat_activity next to lock waits on inventory rows.
			server_settings={"application_name": settings.service_name},
		)
	return _pool


async def get_pool() -> asyncpg.pool.Pool:
	if _pool is None:
		await init_pool()
	assert _pool is not None
	return _pool


async def close_pool() -> None:
	global _pool
	if _pool is not None:
		await _pool.close()
		_pool = None


async def latest_migration(conn: asyncpg.Connection) -> Optional[str]:
	"""Highest applied migration version, or None on an unmigrated database."""
	exists = await conn.fetchval("SELECT to_regclass('public.schema_migrations') IS NOT NULL")
	if not exists:
		return None
	version = await conn.fetchval("SELECT version FROM schema_migrations ORDER BY version DESC LIMIT 1")
	return str(version) if version is not None else None
