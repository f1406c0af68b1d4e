"""Idempotency keys for retried writes, stored in Postgres.

A key moves through three states: reserved (``result_id`` NULL), completed
(``result_id`` set) and expired. A retry that lands while the first call is
still reserved is refused instead of running the write twice.
"""

from __future__ import annotations

import hashlib
from datetime import datetime, timedelta, timezone
from typing import Optional

import asyncpg

from app.infra.postgres import get_pool
from app.obs import metrics as obs_metrics
from app.settings import settings


class IdempotencyConflictError(Exception):
    """Raised when an idempotency key is replayed with a conflicting payload."""


class IdempotencyInProgressError(Exception):
    """Raised when the original call for a key has not finished yet."""


class IdempotencyUnavailableError(Exception):
    """Raised when idempotency storage is unavailable but required."""


def hash_payload(s: str) -> str:
    return hashlib.sha256(s.encode("utf-8")).hexdigest()


def scoped_key(owner: str, key: str) -> str:
    """Keys are per caller; two accounts may reuse the same client key."""
    return f"{owner}:{key.strip()}"


async def _pool_or_none():
    try:
        return await get_pool()
    except (OSError, asyncpg.PostgresError, asyncpg.InterfaceError):
        return None


def _storage_required() -> bool:
    return settings.idempotency_required and not settings.is_dev()


async def begin(
    key: str,
    handler: str,
    *,
    payload_hash: Optional[str],
    ttl_s: int | None = None,
) -> Optional[dict[str, str]]:
    """Reserve or replay an idempotency key.

    Returns ``{"result_id": ...}`` when the key already completed, otherwise None
    after reserving it for this call.
    """
    ttl = ttl_s or settings.idempotency_ttl_seconds
    pool = await _pool_or_none()
    if pool is None:
        obs_metrics.inc_idem_unavail()
        if _storage_required():
            raise IdempotencyUnavailableError("idempotency_unavailable")
        return None

    async with pool.acquire() as conn:
        row = await conn.fetchrow(
            "SELECT result_id, payload_hash FROM idempotency_keys WHERE key=$1 AND handler=$2 AND expires_at>NOW()",
            key,
            handler,
        )
        if row:
            existing_hash = row["payload_hash"]
            if payload_hash and existing_hash and existing_hash != payload_hash:
                obs_metrics.inc_idem_conflict()
                raise IdempotencyConflictError("idempotency_conflict")
            if row["result_id"] is None:
                obs_metrics.inc_idem_conflict()
                raise IdempotencyInProgressError("idempotency_in_progress")
            obs_metrics.inc_idem_hit()
            return {"result_id": str(row["result_id"])}

        # An expired row is recycled; a live one means another call won the race.
        reserved = await conn.fetchval(
            """
            INSERT INTO idempotency_keys(key, handler, result_id, payload_hash, expires_at)
            VALUES($1,$2,NULL,$3,$4)
            ON CONFLICT (key, handler) DO UPDATE
            SET result_id=NULL, payload_hash=EXCLUDED.payload_hash, expires_at=EXCLUDED.expires_at
            WHERE idempotency_keys.expires_at <= NOW()
            RETURNING key
            """,
            key,
            handler,
            payload_hash,
            datetime.now(timezone.utc) + timedelta(seconds=ttl),
        )
        if reserved is None:
            obs_metrics.inc_idem_conflict()
            raise IdempotencyInProgressError("idempotency_in_progress")
        obs_metrics.inc_idem_miss()
        return None


async def complete(key: str, handler: str, result_id: str) -> None:
    pool = await _pool_or_none()
    if pool is None:
        if _storage_required():
            raise IdempotencyUnavailableError("idempotency_unavailable")
        return
    async with pool.acquire() as conn:
        await conn.execute(
            "UPDATE idempotency_keys SET result_id=$3 WHERE key=$1 AND handler=$2",
            key,
            handler,
            result_id,
        )


async def release(key: str, handler: str) -> None:
    """Drop a reservation whose call was rejected so the client may retry it."""
    pool = await _pool_or_none()
    if pool is None:
        return
    async with pool.acquire() as conn:
        await conn.execute(
            "DELETE FROM idempotency_keys WHERE key=$1 AND handler=$2 AND result_id IS NULL",
            key,
            handler,
        )
