"""Candidate retrieval contract and the in-memory implementation.

The PostgreSQL implementation lives in ``stellr.infra.matching_repo`` and
expresses the same pipeline as a single query.
"""

from __future__ import annotations

import math
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Protocol, Sequence, Tuple

from stellr.domain.matching.exceptions import InvalidMatchRequest, ProfileNotFound
from stellr.domain.matching.models import (
	CandidateFilters,
	CandidateSummary,
	Preferences,
	Profile,
	Relationship,
)

EARTH_RADIUS_KM = 6371.0


def haversine_km(origin: Tuple[float, float], target: Tuple[float, float]) -> float:
	lat1, lng1 = map(math.radians, origin)
	lat2, lng2 = map(math.radians, target)
	dlat = lat2 - lat1
	dlng = lng2 - lng1
	a = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlng / 2) ** 2
	return 2 * EARTH_RADIUS_KM * math.asin(min(1.0, math.sqrt(a)))


def gender_compatible(viewer: Profile, candidate: Profile, filters: CandidateFilters) -> bool:
	"""Both sides must admit each other; a filter overrides the viewer's own preference."""
	desired = viewer.preferences
	if filters.gender_preference is not None:
		desired = Preferences(genders=filters.gender_preference)
	return desired.admits_gender(candidate.gender) and candidate.preferences.admits_gender(viewer.gender)


def ordering_key(summary: CandidateSummary, last_active: Optional[datetime]) -> tuple:
	distance = summary.distance_km
	recency = -last_active.timestamp() if last_active is not None else math.inf
	return (distance is None, distance if distance is not None else 0.0, recency, summary.id)


def check_location(viewer: Profile, filters: CandidateFilters) -> None:
	if filters.max_distance_km is not None and viewer.coordinates is None:
		raise InvalidMatchRequest("location_required", "Viewer has no location for a distance filter")


class CandidateRepository(Protocol):
	async def find_candidates(
		self,
		viewer_id: str,
		filters: CandidateFilters,
		limit: int,
		offset: int,
	) -> List[CandidateSummary]:
		...

	async def load_profiles(self, ids: Sequence[str]) -> Dict[str, Profile]:
		...

	async def relationship(self, viewer_id: str, candidate_id: str) -> Relationship:
		...


class InMemoryCandidateRepository(CandidateRepository):
	def __init__(self, profiles: Iterable[Profile] = ()) -> None:
		self.profiles: dict[str, Profile] = {profile.id: profile for profile in profiles}
		self.blocks: set[tuple[str, str]] = set()
		self.matches: set[frozenset[str]] = set()

	def add(self, profile: Profile) -> None:
		self.profiles[profile.id] = profile

	def block(self, blocker_id: str, blocked_id: str) -> None:
		self.blocks.add((blocker_id, blocked_id))

	def match(self, user_a: str, user_b: str) -> None:
		self.matches.add(frozenset((user_a, user_b)))

	def _eligible(self, viewer: Profile, candidate: Profile, filters: CandidateFilters) -> Optional[CandidateSummary]:
		if candidate.id == viewer.id or candidate.id in viewer.swiped_ids:
			return None
		if (viewer.id, candidate.id) in self.blocks or (candidate.id, viewer.id) in self.blocks:
			return None
		if frozenset((viewer.id, candidate.id)) in self.matches:
			return None
		if not (candidate.onboarding_completed and candidate.has_birth_data and candidate.has_questionnaire):
			return None
		if not gender_compatible(viewer, candidate, filters):
			return None
		if filters.zodiac_sign and (candidate.zodiac_sign or "").lower() != filters.zodiac_sign:
			return None
		if filters.min_age is not None and (candidate.age is None or candidate.age < filters.min_age):
			return None
		if filters.max_age is not None and (candidate.age is None or candidate.age > filters.max_age):
			return None
		if filters.activity_type and filters.activity_type not in {a.lower() for a in candidate.activity_types}:
			return None

		distance: Optional[float] = None
		origin = viewer.coordinates
		target = candidate.coordinates
		if origin is not None and target is not None:
			distance = round(haversine_km(origin, target), 3)
		if filters.max_distance_km is not None and (distance is None or distance > filters.max_distance_km):
			return None

		return CandidateSummary(
			id=candidate.id,
			display_name=candidate.display_name,
			gender=candidate.gender,
			age=candidate.age,
			zodiac_sign=candidate.zodiac_sign,
			distance_km=distance,
		)

	async def find_candidates(
		self,
		viewer_id: str,
		filters: CandidateFilters,
		limit: int,
		offset: int,
	) -> List[CandidateSummary]:
		viewer = self.profiles.get(viewer_id)
		if viewer is None:
			raise ProfileNotFound(message=f"Viewer {viewer_id} not found")
		check_location(viewer, filters)

		summaries: list[tuple[CandidateSummary, Optional[datetime]]] = []
		for candidate in self.profiles.values():
			summary = self._eligible(viewer, candidate, filters)
			if summary is not None:
				summaries.append((summary, candidate.last_active))
		summaries.sort(key=lambda pair: ordering_key(*pair))
		return [summary for summary, _ in summaries[offset : offset + limit]]

	async def load_profiles(self, ids: Sequence[str]) -> Dict[str, Profile]:
		return {uid: self.profiles[uid] for uid in ids if uid in self.profiles}

	async def relationship(self, viewer_id: str, candidate_id: str) -> Relationship:
		blocked = (viewer_id, candidate_id) in self.blocks or (candidate_id, viewer_id) in self.blocks
		matched = frozenset((viewer_id, candidate_id)) in self.matches
		return Relationship(blocked=blocked, matched=matched)
