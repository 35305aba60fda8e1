"""Readiness checks for the stores the matching core depends on."""

from __future__ import annotations

import asyncio
import logging
from time import perf_counter
from typing import Any, Dict, Tuple

from stellr.infra import postgres
from stellr.infra.redis import redis_client
from stellr.obs import metrics
from stellr.settings import settings

logger = logging.getLogger(__name__)


def _timeout() -> float:
	return settings.health_check_timeout_ms / 1000.0


async def _redis_status() -> Dict[str, Any]:
	started = perf_counter()
	try:
		await asyncio.wait_for(redis_client.ping(), timeout=_timeout())
	except Exception as exc:
		metrics.mark_dependency("redis", False)
		logger.warning("redis_readiness_failed", exc_info=True)
		return {"ok": False, "error": type(exc).__name__}
	metrics.mark_dependency("redis", True)
	return {"ok": True, "latency_ms": round((perf_counter() - started) * 1000, 2)}


async def _postgres_status() -> Dict[str, Any]:
	"""One round trip that also confirms both grader functions are installed."""
	started = perf_counter()
	query = "SELECT to_regproc($1) IS NOT NULL AS astro, to_regproc($2) IS NOT NULL AS questionnaire"
	try:
		pool = await postgres.get_pool()
		async with pool.acquire() as conn:
			row = await asyncio.wait_for(
				conn.fetchrow(query, settings.astro_grade_function, settings.questionnaire_grade_function),
				timeout=_timeout(),
			)
	except Exception as exc:
		metrics.mark_dependency("postgres", False)
		logger.warning("postgres_readiness_failed", exc_info=True)
		return {"ok": False, "error": type(exc).__name__}
	metrics.mark_dependency("postgres", True)
	graders = {"astro": bool(row["astro"]), "questionnaire": bool(row["questionnaire"])}
	return {
		"ok": all(graders.values()),
		"latency_ms": round((perf_counter() - started) * 1000, 2),
		"graders": graders,
	}


async def readiness() -> Tuple[int, Dict[str, Any]]:
	redis_state, postgres_state = await asyncio.gather(_redis_status(), _postgres_status())
	# Redis only backs the list cache, which fails open; it degrades but never blocks
	ok = bool(postgres_state["ok"])
	degraded = not redis_state["ok"]
	return (
		200 if ok else 503,
		{
			"status": "ok" if ok and not degraded else ("degraded" if ok else "unavailable"),
			"checks": {"redis": redis_state, "postgres": postgres_state},
		},
	)
