"""Grader collaborators that turn a pair of profiles into a letter grade."""

from __future__ import annotations

import re
from typing import Optional, Protocol

import asyncpg

from stellr.domain.matching.models import Profile
from stellr.infra.postgres import get_pool

_FUNCTION_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$")


class Grader(Protocol):
	async def grade(self, viewer: Profile, candidate: Profile) -> str:
		...


class PostgresFunctionGrader(Grader):
	"""Calls a stored function ``name(viewer uuid, candidate uuid) -> text``."""

	def __init__(self, function_name: str, pool: Optional[asyncpg.Pool] = None) -> None:
		if not _FUNCTION_NAME.match(function_name):
			raise ValueError(f"invalid grader function name: {function_name!r}")
		self.function_name = function_name
		self._pool = pool

	async def grade(self, viewer: Profile, candidate: Profile) -> str:
		pool = self._pool or await get_pool()
		async with pool.acquire() as conn:
			return await conn.fetchval(
				f"SELECT {self.function_name}($1::uuid, $2::uuid)",
				viewer.id,
				candidate.id,
			)
