"""Entry point for the three compatibility request shapes."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Mapping, Optional, Sequence

from stellr.domain.matching.batch import BatchOptions, BatchOrchestrator
from stellr.domain.matching.exceptions import CompatibilityForbidden, InvalidMatchRequest
from stellr.domain.matching.list_cache import CandidateListCache
from stellr.domain.matching.models import (
	BatchMetrics,
	BatchOutcome,
	BatchResult,
	CandidateFilters,
	CandidateSummary,
	CompatibilityScore,
)
from stellr.domain.matching.monitor import LatencyMonitor, Performance
from stellr.domain.matching.repository import CandidateRepository
from stellr.domain.matching.scorer import CompatibilityScorer
from stellr.settings import settings

logger = logging.getLogger(__name__)


def _require_id(value: Optional[str], reason: str) -> str:
	if not isinstance(value, str) or not value.strip():
		raise InvalidMatchRequest(reason, f"{reason.replace('_', ' ')} id")
	return value.strip()


@dataclass(slots=True, frozen=True)
class MatchOptions:
	"""Paging, batch and threshold knobs for the potential-matches listing."""

	limit: Optional[int] = None
	offset: int = 0
	min_compatibility: Optional[int] = None
	batch: BatchOptions = field(default_factory=BatchOptions)

	@classmethod
	def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> "MatchOptions":
		if not data:
			return cls()
		limit = data.get("limit")
		offset = data.get("offset", 0) or 0
		threshold = data.get("min_compatibility", data.get("minCompatibility"))
		try:
			limit = int(limit) if limit is not None else None
			offset = int(offset)
			threshold = int(threshold) if threshold is not None else None
		except (TypeError, ValueError) as exc:
			raise InvalidMatchRequest("invalid_options", "limit, offset and min_compatibility must be integers") from exc
		if limit is not None and limit < 1:
			raise InvalidMatchRequest("invalid_options", "limit must be at least 1")
		if offset < 0:
			raise InvalidMatchRequest("invalid_options", "offset must not be negative")
		if threshold is not None and not 0 <= threshold <= 100:
			raise InvalidMatchRequest("invalid_options", "min_compatibility must be within [0, 100]")
		return cls(limit=limit, offset=offset, min_compatibility=threshold, batch=BatchOptions.from_mapping(data))


@dataclass(slots=True)
class SingleCompatibility:
	score: CompatibilityScore
	performance: Performance


@dataclass(slots=True)
class BatchCompatibility:
	results: List[BatchResult]
	metrics: BatchMetrics
	performance: Performance


@dataclass(slots=True, frozen=True)
class PotentialMatch:
	result: BatchResult
	# Only known when the id list came from the repository rather than the cache
	candidate: Optional[CandidateSummary] = None

	def to_dict(self) -> Dict[str, Any]:
		payload = self.result.to_dict()
		payload["candidate"] = self.candidate.to_dict() if self.candidate else None
		return payload


@dataclass(slots=True)
class PotentialMatches:
	matches: List[PotentialMatch]
	metrics: BatchMetrics
	cache_used: bool
	performance: Performance


class MatchService:
	def __init__(
		self,
		repository: CandidateRepository,
		list_cache: CandidateListCache,
		orchestrator: BatchOrchestrator,
		scorer: CompatibilityScorer,
		monitor: LatencyMonitor,
		*,
		default_limit: Optional[int] = None,
		max_limit: Optional[int] = None,
		require_match: Optional[bool] = None,
	) -> None:
		self.repository = repository
		self.list_cache = list_cache
		self.orchestrator = orchestrator
		self.scorer = scorer
		self.monitor = monitor
		self.default_limit = default_limit or settings.match_default_limit
		self.max_limit = max_limit or settings.match_max_limit
		self.require_match = settings.match_single_requires_match if require_match is None else require_match

	async def get_single_compatibility(self, viewer_id: str, candidate_id: Optional[str]) -> SingleCompatibility:
		async with self.monitor.track("single", viewer_id) as sample:
			viewer_id = _require_id(viewer_id, "missing_viewer")
			candidate_id = _require_id(candidate_id, "missing_candidate")
			if viewer_id == candidate_id:
				raise InvalidMatchRequest("self_comparison", "Cannot score a user against themselves")
			relationship = await self.repository.relationship(viewer_id, candidate_id)
			if relationship.blocked:
				raise CompatibilityForbidden("blocked")
			if self.require_match and not relationship.matched:
				raise CompatibilityForbidden("not_matched", "Compatibility is only available for matched users")
			score = await self.scorer.score(viewer_id, candidate_id)
		return SingleCompatibility(score=score, performance=sample.performance(batch_size=1))

	async def get_batch_compatibility(
		self,
		viewer_id: str,
		candidate_ids: Optional[Sequence[str]],
		options: Optional[BatchOptions] = None,
	) -> BatchCompatibility:
		async with self.monitor.track("batch", viewer_id) as sample:
			viewer_id = _require_id(viewer_id, "missing_viewer")
			if not candidate_ids:
				raise InvalidMatchRequest("empty_candidates", "candidate_ids must not be empty")
			cleaned = [_require_id(cid, "missing_candidate") for cid in candidate_ids]
			if viewer_id in cleaned:
				raise InvalidMatchRequest("self_comparison", "Cannot score a user against themselves")
			outcome = await self.orchestrator.score_batch(viewer_id, cleaned, options)
		return BatchCompatibility(
			results=outcome.results,
			metrics=outcome.metrics,
			performance=sample.performance(batch_size=outcome.metrics.processed),
		)

	async def get_potential_matches(
		self,
		viewer_id: str,
		filters: Optional[CandidateFilters] = None,
		options: Optional[MatchOptions] = None,
	) -> PotentialMatches:
		filters = filters or CandidateFilters()
		options = options or MatchOptions()
		async with self.monitor.track("potential_matches", viewer_id) as sample:
			viewer_id = _require_id(viewer_id, "missing_viewer")
			# A page never exceeds what one batch may score, so paging has no gaps
			limit = min(
				options.limit or self.default_limit,
				self.max_limit,
				self.orchestrator.effective_limit(options.batch),
			)
			offset = options.offset

			summaries: Dict[str, CandidateSummary] = {}
			ids = await self.list_cache.get(viewer_id, filters, limit, offset)
			cache_used = ids is not None
			if ids is None:
				candidates = await self.repository.find_candidates(viewer_id, filters, limit, offset)
				ids = [candidate.id for candidate in candidates]
				summaries = {candidate.id: candidate for candidate in candidates}
				await self.list_cache.put(viewer_id, filters, limit, offset, ids)

			# Scores are always recomputed, even when the id list was cached
			if ids:
				outcome = await self.orchestrator.score_batch(
					viewer_id, ids, replace(options.batch, oversize_policy="truncate")
				)
			else:
				outcome = BatchOutcome()

			matches = [
				PotentialMatch(result=result, candidate=summaries.get(result.candidate_id))
				for result in outcome.results
				if options.min_compatibility is None or result.combined_score >= options.min_compatibility
			]
			logger.info(
				"potential_matches_served",
				extra={"count": len(matches), "cache_used": cache_used, "fallback": outcome.metrics.fallback},
			)
		return PotentialMatches(
			matches=matches,
			metrics=outcome.metrics,
			cache_used=cache_used,
			performance=sample.performance(cache_used=cache_used, batch_size=outcome.metrics.processed),
		)
