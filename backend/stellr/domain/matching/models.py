"""Domain models used by the matching core."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, Mapping, Optional, Tuple

from stellr.domain.matching.exceptions import InvalidMatchRequest
from stellr.domain.matching.grades import ASTRO_WEIGHT, QUESTIONNAIRE_WEIGHT, Grade, combine

EVERYONE = "everyone"
DEFAULT_RETENTION = timedelta(hours=24)


def _utcnow() -> datetime:
	return datetime.now(timezone.utc)


@dataclass(slots=True, frozen=True)
class BirthData:
	"""Birth facts plus the placements the chart calculator derived from them."""

	birth_date: Optional[date] = None
	birth_time: Optional[str] = None
	birth_location: Optional[str] = None
	sun_sign: Optional[str] = None
	moon_sign: Optional[str] = None
	rising_sign: Optional[str] = None

	@property
	def is_complete(self) -> bool:
		return self.birth_date is not None and bool(self.birth_location)


@dataclass(slots=True, frozen=True)
class Preferences:
	"""What a user asked to see."""

	genders: frozenset[str] = frozenset()
	min_age: Optional[int] = None
	max_age: Optional[int] = None
	max_distance_km: Optional[float] = None
	activity_types: frozenset[str] = frozenset()

	def admits_gender(self, gender: Optional[str]) -> bool:
		# No stated preference (or an unknown gender) constrains nothing
		if not self.genders or gender is None:
			return True
		if EVERYONE in self.genders:
			return True
		return gender.lower() in self.genders


@dataclass(slots=True, frozen=True)
class Profile:
	id: str
	display_name: str = ""
	gender: Optional[str] = None
	age: Optional[int] = None
	zodiac_sign: Optional[str] = None
	birth: Optional[BirthData] = None
	questionnaire_answers: Tuple[Dict[str, Any], ...] = ()
	lat: Optional[float] = None
	lng: Optional[float] = None
	preferences: Preferences = field(default_factory=Preferences)
	swiped_ids: frozenset[str] = frozenset()
	activity_types: frozenset[str] = frozenset()
	onboarding_completed: bool = True
	premium: bool = False
	last_active: Optional[datetime] = None

	@property
	def has_birth_data(self) -> bool:
		return self.birth is not None and self.birth.is_complete

	@property
	def has_questionnaire(self) -> bool:
		return len(self.questionnaire_answers) > 0

	@property
	def coordinates(self) -> Optional[Tuple[float, float]]:
		if self.lat is None or self.lng is None:
			return None
		return (self.lat, self.lng)


@dataclass(slots=True, frozen=True)
class CandidateSummary:
	id: str
	display_name: str = ""
	gender: Optional[str] = None
	age: Optional[int] = None
	zodiac_sign: Optional[str] = None
	distance_km: Optional[float] = None

	def to_dict(self) -> Dict[str, Any]:
		return {
			"id": self.id,
			"display_name": self.display_name,
			"gender": self.gender,
			"age": self.age,
			"zodiac_sign": self.zodiac_sign,
			"distance_km": self.distance_km,
		}


@dataclass(slots=True, frozen=True)
class Relationship:
	blocked: bool = False
	matched: bool = False


@dataclass(slots=True, frozen=True)
class ScoreBreakdown:
	"""Fixed-schema component breakdown persisted alongside every score."""

	astro_grade: Grade
	astro_points: int
	questionnaire_grade: Grade
	questionnaire_points: int
	astro_weight: float = ASTRO_WEIGHT
	questionnaire_weight: float = QUESTIONNAIRE_WEIGHT

	@classmethod
	def from_grades(cls, astro: Grade, questionnaire: Grade) -> "ScoreBreakdown":
		return cls(
			astro_grade=astro,
			astro_points=astro.points,
			questionnaire_grade=questionnaire,
			questionnaire_points=questionnaire.points,
		)

	def to_dict(self) -> Dict[str, Any]:
		return {
			"astro_grade": self.astro_grade.value,
			"astro_points": self.astro_points,
			"astro_weight": self.astro_weight,
			"questionnaire_grade": self.questionnaire_grade.value,
			"questionnaire_points": self.questionnaire_points,
			"questionnaire_weight": self.questionnaire_weight,
		}


@dataclass(slots=True, frozen=True)
class CompatibilityScore:
	viewer_id: str
	candidate_id: str
	astro_grade: Grade
	questionnaire_grade: Grade
	combined_score: int
	computed_at: datetime
	expires_at: datetime
	breakdown: ScoreBreakdown

	@classmethod
	def compute(
		cls,
		viewer_id: str,
		candidate_id: str,
		astro_grade: Grade,
		questionnaire_grade: Grade,
		*,
		computed_at: Optional[datetime] = None,
		retention: timedelta = DEFAULT_RETENTION,
	) -> "CompatibilityScore":
		"""Build a score; ``expires_at`` is always ``computed_at + retention``."""
		when = computed_at or _utcnow()
		return cls(
			viewer_id=viewer_id,
			candidate_id=candidate_id,
			astro_grade=astro_grade,
			questionnaire_grade=questionnaire_grade,
			combined_score=combine(astro_grade, questionnaire_grade),
			computed_at=when,
			expires_at=when + retention,
			breakdown=ScoreBreakdown.from_grades(astro_grade, questionnaire_grade),
		)

	def to_dict(self) -> Dict[str, Any]:
		return {
			"candidate_id": self.candidate_id,
			"astro_grade": self.astro_grade.value,
			"questionnaire_grade": self.questionnaire_grade.value,
			"combined_score": self.combined_score,
			"computed_at": self.computed_at.isoformat(),
		}


@dataclass(slots=True, frozen=True)
class BatchResult:
	candidate_id: str
	combined_score: int
	fallback: bool = False
	error: Optional[str] = None
	astro_grade: Optional[Grade] = None
	questionnaire_grade: Optional[Grade] = None

	@classmethod
	def from_score(cls, score: CompatibilityScore) -> "BatchResult":
		return cls(
			candidate_id=score.candidate_id,
			combined_score=score.combined_score,
			astro_grade=score.astro_grade,
			questionnaire_grade=score.questionnaire_grade,
		)

	def to_dict(self) -> Dict[str, Any]:
		return {
			"candidate_id": self.candidate_id,
			"combined_score": self.combined_score,
			"fallback": self.fallback,
			"error": self.error,
			"astro_grade": self.astro_grade.value if self.astro_grade else None,
			"questionnaire_grade": self.questionnaire_grade.value if self.questionnaire_grade else None,
		}


@dataclass(slots=True)
class BatchMetrics:
	requested: int = 0
	processed: int = 0
	truncated: bool = False
	succeeded: int = 0
	fallback: int = 0
	elapsed_ms: float = 0.0

	def to_dict(self) -> Dict[str, Any]:
		return {
			"requested": self.requested,
			"processed": self.processed,
			"truncated": self.truncated,
			"succeeded": self.succeeded,
			"fallback": self.fallback,
			"elapsed_ms": round(self.elapsed_ms, 3),
		}


@dataclass(slots=True)
class BatchOutcome:
	results: list[BatchResult] = field(default_factory=list)
	metrics: BatchMetrics = field(default_factory=BatchMetrics)


_NO_CONSTRAINT = frozenset({"", "any", "all"})
_NO_ACTIVITY_CONSTRAINT = _NO_CONSTRAINT | {"any date"}

_FILTER_ALIASES = {
	"genderPreference": "gender_preference",
	"zodiacSign": "zodiac_sign",
	"minAge": "min_age",
	"maxAge": "max_age",
	"maxDistance": "max_distance_km",
	"maxDistanceKm": "max_distance_km",
	"activityType": "activity_type",
}


def _text_or_none(value: Any, sentinels: frozenset[str] = _NO_CONSTRAINT) -> Optional[str]:
	if value is None:
		return None
	text = str(value).strip().lower()
	if text in sentinels:
		return None
	return text


def _int_or_none(name: str, value: Any) -> Optional[int]:
	if value is None or value == "":
		return None
	if isinstance(value, bool):
		raise InvalidMatchRequest("invalid_filters", f"{name} must be an integer")
	try:
		number = int(value)
	except (TypeError, ValueError) as exc:
		raise InvalidMatchRequest("invalid_filters", f"{name} must be an integer") from exc
	if number < 0:
		raise InvalidMatchRequest("invalid_filters", f"{name} must not be negative")
	return number


@dataclass(slots=True, frozen=True)
class CandidateFilters:
	"""Optional narrowing applied on top of the unconditional exclusions.

	Every field is optional; ``None`` means no constraint.
	"""

	gender_preference: Optional[frozenset[str]] = None
	zodiac_sign: Optional[str] = None
	min_age: Optional[int] = None
	max_age: Optional[int] = None
	max_distance_km: Optional[float] = None
	activity_type: Optional[str] = None

	@classmethod
	def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> "CandidateFilters":
		if not data:
			return cls()
		raw = {_FILTER_ALIASES.get(key, key): value for key, value in data.items()}

		genders: Optional[frozenset[str]] = None
		pref = raw.get("gender_preference")
		if isinstance(pref, str):
			pref = [pref]
		if pref is not None and (
			not isinstance(pref, (list, tuple)) or not all(isinstance(item, str) for item in pref)
		):
			raise InvalidMatchRequest("invalid_filters", "gender_preference must be a string or a list of strings")
		if pref:
			cleaned = {_text_or_none(item) for item in pref}
			cleaned.discard(None)
			if cleaned and EVERYONE not in cleaned:
				genders = frozenset(cleaned)  # type: ignore[arg-type]

		min_age = _int_or_none("min_age", raw.get("min_age"))
		max_age = _int_or_none("max_age", raw.get("max_age"))
		if min_age is not None and max_age is not None and min_age > max_age:
			raise InvalidMatchRequest("invalid_filters", "min_age must not exceed max_age")

		distance: Optional[float] = None
		raw_distance = raw.get("max_distance_km")
		if raw_distance is not None and raw_distance != "":
			if isinstance(raw_distance, bool):
				raise InvalidMatchRequest("invalid_filters", "max_distance_km must be a number")
			try:
				distance = float(raw_distance)
			except (TypeError, ValueError) as exc:
				raise InvalidMatchRequest("invalid_filters", "max_distance_km must be a number") from exc
			# NaN would silently disable the bound
			if not math.isfinite(distance) or distance <= 0:
				raise InvalidMatchRequest("invalid_filters", "max_distance_km must be a positive finite number")

		return cls(
			gender_preference=genders,
			zodiac_sign=_text_or_none(raw.get("zodiac_sign")),
			min_age=min_age,
			max_age=max_age,
			max_distance_km=distance,
			activity_type=_text_or_none(raw.get("activity_type"), _NO_ACTIVITY_CONSTRAINT),
		)

	def normalized(self) -> Dict[str, Any]:
		"""Canonical form used for cache keys; absent constraints are dropped."""
		out: Dict[str, Any] = {}
		if self.gender_preference:
			out["gender_preference"] = sorted(self.gender_preference)
		if self.zodiac_sign:
			out["zodiac_sign"] = self.zodiac_sign
		if self.min_age is not None:
			out["min_age"] = self.min_age
		if self.max_age is not None:
			out["max_age"] = self.max_age
		if self.max_distance_km is not None:
			out["max_distance_km"] = float(self.max_distance_km)
		if self.activity_type:
			out["activity_type"] = self.activity_type
		return out
