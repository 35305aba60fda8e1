"""Redis access for the candidate list cache.

Callers import the module-level ``redis_client`` proxy once; the connection
behind it can be replaced later (fakeredis in tests, a fresh client after
shutdown) without touching those references.
"""

from __future__ import annotations

import redis.asyncio as redis

from stellr.settings import settings


def build_client(url: str | None = None) -> redis.Redis:
	return redis.from_url(
		url or settings.redis_url,
		decode_responses=True,
		socket_timeout=settings.redis_socket_timeout_seconds,
		socket_connect_timeout=settings.redis_socket_timeout_seconds,
	)


class RedisProxy:
	"""Forwards every command to whichever client is currently installed."""

	def __init__(self, client: redis.Redis):
		self._client = client

	@property
	def client(self) -> redis.Redis:
		return self._client

	def set_client(self, client: redis.Redis) -> None:
		self._client = client

	def __getattr__(self, item):
		return getattr(self._client, item)


redis_client: RedisProxy = RedisProxy(build_client())


def set_redis_client(client: redis.Redis) -> None:
	redis_client.set_client(client)


async def close_redis() -> None:
	await redis_client.client.aclose()
