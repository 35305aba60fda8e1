"""Fresh pairwise compatibility scoring."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Mapping, Optional

from stellr.domain.matching.exceptions import InsufficientData, ProfileNotFound, ScoringFailed
from stellr.domain.matching.grades import Grade
from stellr.domain.matching.graders import Grader
from stellr.domain.matching.models import CompatibilityScore, Profile
from stellr.domain.matching.repository import CandidateRepository
from stellr.domain.matching.score_store import ScoreStore
from stellr.obs import metrics as obs_metrics
from stellr.settings import settings

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
	return datetime.now(timezone.utc)


def _require_complete(profile: Profile) -> None:
	if not profile.has_birth_data:
		raise InsufficientData("missing_birth_data", f"Birth data missing for {profile.id}")
	if not profile.has_questionnaire:
		raise InsufficientData("missing_questionnaire", f"Questionnaire answers missing for {profile.id}")


class CompatibilityScorer:
	"""Computes a score from scratch on every call.

	The score store is written after each computation but never consulted, so
	two back-to-back calls always run both graders.
	"""

	def __init__(
		self,
		repository: CandidateRepository,
		astro_grader: Grader,
		questionnaire_grader: Grader,
		store: ScoreStore,
		*,
		retention: Optional[timedelta] = None,
		clock: Callable[[], datetime] = _utcnow,
	) -> None:
		self.repository = repository
		self.astro_grader = astro_grader
		self.questionnaire_grader = questionnaire_grader
		self.store = store
		self.retention = retention or timedelta(hours=settings.match_score_retention_hours)
		self._clock = clock

	async def score(
		self,
		viewer_id: str,
		candidate_id: str,
		*,
		profiles: Optional[Mapping[str, Profile]] = None,
	) -> CompatibilityScore:
		"""Score one pair. ``profiles`` lets a batch share a single profile load."""
		if profiles is None:
			profiles = await self.repository.load_profiles([viewer_id, candidate_id])
		viewer = profiles.get(viewer_id)
		if viewer is None:
			raise ProfileNotFound(message=f"Profile {viewer_id} not found")
		candidate = profiles.get(candidate_id)
		if candidate is None:
			raise ProfileNotFound(message=f"Profile {candidate_id} not found")
		_require_complete(viewer)
		_require_complete(candidate)

		try:
			astro_raw, questionnaire_raw = await asyncio.gather(
				self.astro_grader.grade(viewer, candidate),
				self.questionnaire_grader.grade(viewer, candidate),
			)
		except Exception as exc:
			logger.warning(
				"grader_failed",
				extra={"candidate_id": candidate_id, "error": type(exc).__name__},
			)
			raise ScoringFailed(message=f"Grader failed: {type(exc).__name__}") from exc

		try:
			astro = Grade.parse(astro_raw)
			questionnaire = Grade.parse(questionnaire_raw)
		except ValueError as exc:
			raise ScoringFailed("invalid_grade", str(exc)) from exc

		score = CompatibilityScore.compute(
			viewer_id,
			candidate_id,
			astro,
			questionnaire,
			computed_at=self._clock(),
			retention=self.retention,
		)
		await self._persist(score)
		return score

	async def _persist(self, score: CompatibilityScore) -> None:
		try:
			await self.store.save(score)
		except Exception:
			logger.warning(
				"score_store_write_failed",
				extra={"candidate_id": score.candidate_id},
				exc_info=True,
			)
			obs_metrics.inc_score_store("error")
			return
		obs_metrics.inc_score_store("ok")
