"""Process-wide asyncpg pool for profiles, relationships, graders and scores."""

from __future__ import annotations

import json
from typing import Optional

import asyncpg

from stellr.settings import settings

_pool: Optional[asyncpg.pool.Pool] = None


async def _setup_connection(conn: asyncpg.Connection) -> None:
	# questionnaire_responses and score_components are jsonb
	for typename in ("json", "jsonb"):
		await conn.set_type_codec(typename, encoder=json.dumps, decoder=json.loads, schema="pg_catalog")


async def init_pool() -> asyncpg.pool.Pool:
	global _pool
	if _pool is None:
		_pool = await asyncpg.create_pool(
			dsn=settings.postgres_url,
			min_size=settings.postgres_min_pool_size,
			max_size=settings.postgres_max_pool_size,
			command_timeout=settings.postgres_command_timeout_seconds,
			ssl="require" if settings.postgres_ssl else "disable",
			server_settings={"application_name": settings.service_name},
			init=_setup_connection,
		)
	return _pool


async def get_pool() -> asyncpg.pool.Pool:
	if _pool is None:
		return await init_pool()
	return _pool


async def close_pool() -> None:
	global _pool
	pool, _pool = _pool, None
	if pool is not None:
		await pool.close()
