"""Concurrent fan-out scoring with per-candidate fallback."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence

from stellr.domain.matching.exceptions import BatchTooLarge, InvalidMatchRequest, MatchingError
from stellr.domain.matching.models import BatchMetrics, BatchOutcome, BatchResult, Profile
from stellr.domain.matching.scorer import CompatibilityScorer
from stellr.obs import metrics as obs_metrics
from stellr.settings import settings

logger = logging.getLogger(__name__)

OVERSIZE_POLICIES = ("truncate", "reject")

_OPTION_ALIASES = {
	"maxBatchSize": "max_batch_size",
	"timeoutMs": "timeout_ms",
	"oversizePolicy": "oversize_policy",
}


def _positive_int(name: str, value: Any) -> Optional[int]:
	if value is None:
		return None
	if isinstance(value, bool):
		raise InvalidMatchRequest("invalid_options", f"{name} must be a positive integer")
	try:
		number = int(value)
	except (TypeError, ValueError) as exc:
		raise InvalidMatchRequest("invalid_options", f"{name} must be a positive integer") from exc
	if number < 1:
		raise InvalidMatchRequest("invalid_options", f"{name} must be a positive integer")
	return number


@dataclass(slots=True, frozen=True)
class BatchOptions:
	max_batch_size: Optional[int] = None
	timeout_ms: Optional[int] = None
	oversize_policy: Optional[str] = None

	@classmethod
	def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> "BatchOptions":
		if not data:
			return cls()
		raw = {_OPTION_ALIASES.get(key, key): value for key, value in data.items()}
		policy = raw.get("oversize_policy")
		if policy is not None and policy not in OVERSIZE_POLICIES:
			raise InvalidMatchRequest("invalid_options", f"oversize_policy must be one of {OVERSIZE_POLICIES}")
		return cls(
			max_batch_size=_positive_int("max_batch_size", raw.get("max_batch_size")),
			timeout_ms=_positive_int("timeout_ms", raw.get("timeout_ms")),
			oversize_policy=policy,
		)


class BatchOrchestrator:
	"""Scores many candidates at once; one slow or broken candidate never sinks the batch.

	Profiles for the whole batch are loaded in one query before fan-out, and at
	most ``concurrency`` candidates are graded at a time. Each candidate's
	timeout starts once it holds a slot, so queueing for the shared pool never
	turns a healthy candidate into a fallback.
	"""

	def __init__(
		self,
		scorer: CompatibilityScorer,
		*,
		max_batch_size: Optional[int] = None,
		timeout_ms: Optional[int] = None,
		fallback_score: Optional[int] = None,
		oversize_policy: Optional[str] = None,
		concurrency: Optional[int] = None,
	) -> None:
		self.scorer = scorer
		self.max_batch_size = max_batch_size or settings.match_max_batch_size
		self.timeout_ms = timeout_ms or settings.match_task_timeout_ms
		self.fallback_score = settings.match_fallback_score if fallback_score is None else fallback_score
		self.oversize_policy = oversize_policy or settings.match_oversize_policy
		self.concurrency = concurrency or settings.match_batch_concurrency

	def effective_limit(self, options: BatchOptions) -> int:
		if options.max_batch_size is None:
			return self.max_batch_size
		return min(options.max_batch_size, self.max_batch_size)

	def _fallback(self, candidate_id: str, error: str) -> BatchResult:
		return BatchResult(candidate_id=candidate_id, combined_score=self.fallback_score, fallback=True, error=error)

	async def _score_one(
		self,
		viewer_id: str,
		candidate_id: str,
		profiles: Mapping[str, Profile],
		slots: asyncio.Semaphore,
		timeout_s: float,
	) -> BatchResult:
		async with slots:
			try:
				score = await asyncio.wait_for(
					self.scorer.score(viewer_id, candidate_id, profiles=profiles),
					timeout=timeout_s,
				)
			except asyncio.TimeoutError:
				logger.warning("batch_candidate_timeout", extra={"candidate_id": candidate_id})
				return self._fallback(candidate_id, "timeout")
			except MatchingError as exc:
				return self._fallback(candidate_id, exc.reason)
			except Exception:
				logger.exception("batch_candidate_failed", extra={"candidate_id": candidate_id})
				return self._fallback(candidate_id, "internal_error")
		return BatchResult.from_score(score)

	async def _prefetch(self, viewer_id: str, candidate_ids: List[str]) -> Dict[str, Profile]:
		return await self.scorer.repository.load_profiles([viewer_id, *candidate_ids])

	async def score_batch(
		self,
		viewer_id: str,
		candidate_ids: Sequence[str],
		options: Optional[BatchOptions] = None,
	) -> BatchOutcome:
		options = options or BatchOptions()
		started = time.perf_counter()
		limit = self.effective_limit(options)
		policy = options.oversize_policy or self.oversize_policy
		requested = len(candidate_ids)
		truncated = requested > limit
		if truncated and policy == "reject":
			raise BatchTooLarge(message=f"{requested} candidates requested, at most {limit} allowed")
		accepted = list(candidate_ids[:limit])
		if truncated:
			obs_metrics.inc_batch_truncated()

		# Duplicates share one task; every position still gets a result
		unique_ids: List[str] = list(dict.fromkeys(accepted))
		try:
			profiles = await self._prefetch(viewer_id, unique_ids)
		except MatchingError as exc:
			logger.warning("batch_prefetch_failed", extra={"reason": exc.reason, "candidates": len(unique_ids)})
			settled = [self._fallback(cid, exc.reason) for cid in unique_ids]
		else:
			slots = asyncio.Semaphore(self.concurrency)
			timeout_s = (options.timeout_ms or self.timeout_ms) / 1000.0
			settled = await asyncio.gather(
				*(self._score_one(viewer_id, cid, profiles, slots, timeout_s) for cid in unique_ids)
			)
		by_id: Dict[str, BatchResult] = dict(zip(unique_ids, settled))
		results = [by_id[cid] for cid in accepted]

		fallback = sum(1 for result in results if result.fallback)
		metrics = BatchMetrics(
			requested=requested,
			processed=len(results),
			truncated=truncated,
			succeeded=len(results) - fallback,
			fallback=fallback,
			elapsed_ms=(time.perf_counter() - started) * 1000.0,
		)
		obs_metrics.inc_batch_results(succeeded=metrics.succeeded, fallback=metrics.fallback)
		return BatchOutcome(results=results, metrics=metrics)
