"""Redis access for the lending event stream and readiness probes.

``redis_client`` is a proxy so modules that imported it keep working when the
underlying client is swapped (fakeredis in tests).
"""

from __future__ import annotations

import asyncio
import logging
from typing import Mapping

import redis.asyncio as redis
from redis.exceptions import RedisError

from app.settings import settings

logger = logging.getLogger(__name__)


class RedisProxy:
	"""Forwards attribute access to the current Redis client."""

	def __init__(self, client: redis.Redis):
		self._client: redis.Redis = client

	def set_client(self, client: redis.Redis) -> None:
		self._client = client

	def __getattr__(self, item):
		return getattr(self._client, item)


redis_client: RedisProxy = RedisProxy(redis.from_url(settings.redis_url, decode_responses=True))


def set_redis_client(client: redis.Redis) -> None:
	redis_client.set_client(client)


async def append_event(stream: str, fields: Mapping[str, str], *, maxlen: int) -> str | None:
	"""XADD ``fields`` to ``stream``, trimming it to roughly ``maxlen`` entries.

	Events are written after the database commit, so a Redis outage is logged
	and reported as ``None`` instead of failing a request that already happened.
	"""
	try:
		return await redis_client.xadd(stream, dict(fields), maxlen=maxlen, approximate=True)
	except (RedisError, OSError):
		logger.warning("lending_event_dropped", extra={"stream": stream, "event": fields.get("event")}, exc_info=True)
		return None


async def ping(timeout: float) -> None:
	await asyncio.wait_for(redis_client.ping(), timeout=timeout)


async def close_redis() -> None:
	await redis_client.aclose()
