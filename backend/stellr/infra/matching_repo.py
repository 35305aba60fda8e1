"""PostgreSQL implementations of the candidate repository and score store."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, List, Mapping, Sequence
from uuid import UUID

import asyncpg

from stellr.domain.matching.exceptions import CandidateQueryError, ProfileNotFound
from stellr.domain.matching.models import (
    BirthData,
    CandidateFilters,
    CandidateSummary,
    CompatibilityScore,
    Preferences,
    Profile,
    Relationship,
)
from stellr.domain.matching.repository import CandidateRepository, check_location
from stellr.domain.matching.score_store import ScoreStore
from stellr.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)

_QUERY_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError)

_PROFILE_COLUMNS = """
    id::text AS id, display_name, gender, age, zodiac_sign,
    birth_date, birth_time, birth_location, sun_sign, moon_sign, rising_sign,
    questionnaire_responses, lat, lng, looking_for, min_age_pref, max_age_pref,
    max_distance_pref, activity_types, onboarding_completed, premium, last_active
"""

# Haversine on a 6371 km sphere; NULL when either side has no coordinates.
# looking_for and activity_types are stored as entered, so array elements are
# lower-cased before comparison (filter values arrive lower-cased).
_CANDIDATE_QUERY = """
WITH viewer AS (
    SELECT id, gender, lat, lng, looking_for FROM profiles WHERE id = $1::uuid
),
eligible AS (
    SELECT p.id, p.display_name, p.gender, p.age, p.zodiac_sign, p.last_active,
        CASE
            WHEN v.lat IS NOT NULL AND v.lng IS NOT NULL AND p.lat IS NOT NULL AND p.lng IS NOT NULL
            THEN 2 * 6371 * asin(least(1.0, sqrt(
                power(sin(radians(p.lat - v.lat) / 2), 2)
                + cos(radians(v.lat)) * cos(radians(p.lat)) * power(sin(radians(p.lng - v.lng) / 2), 2)
            )))
        END AS distance_km
    FROM profiles p
    CROSS JOIN viewer v
    WHERE p.id <> v.id
      AND p.onboarding_completed
      AND p.birth_date IS NOT NULL
      AND coalesce(p.birth_location, '') <> ''
      AND p.questionnaire_responses IS NOT NULL
      AND jsonb_array_length(p.questionnaire_responses) > 0
      AND NOT EXISTS (
          SELECT 1 FROM swipes s WHERE s.swiper_id = v.id AND s.swiped_id = p.id
      )
      AND NOT EXISTS (
          SELECT 1 FROM blocks b
          WHERE (b.blocker_id = v.id AND b.blocked_id = p.id)
             OR (b.blocker_id = p.id AND b.blocked_id = v.id)
      )
      AND NOT EXISTS (
          SELECT 1 FROM matches m
          WHERE (m.user1_id = v.id AND m.user2_id = p.id)
             OR (m.user1_id = p.id AND m.user2_id = v.id)
      )
      AND (
          p.gender IS NULL
          OR cardinality(coalesce($2::text[], v.looking_for, '{}'::text[])) = 0
          OR EXISTS (
              SELECT 1 FROM unnest(coalesce($2::text[], v.looking_for)) AS wanted(g)
              WHERE lower(wanted.g) IN ('everyone', lower(p.gender))
          )
      )
      AND (
          v.gender IS NULL
          OR cardinality(coalesce(p.looking_for, '{}'::text[])) = 0
          OR EXISTS (
              SELECT 1 FROM unnest(p.looking_for) AS wanted(g)
              WHERE lower(wanted.g) IN ('everyone', lower(v.gender))
          )
      )
      AND ($3::text IS NULL OR lower(p.zodiac_sign) = $3::text)
      AND ($4::int IS NULL OR p.age >= $4::int)
      AND ($5::int IS NULL OR p.age <= $5::int)
      AND (
          $7::text IS NULL
          OR EXISTS (SELECT 1 FROM unnest(p.activity_types) AS act(a) WHERE lower(act.a) = $7::text)
      )
)
SELECT id::text AS id, display_name, gender, age, zodiac_sign, distance_km
FROM eligible
WHERE $6::double precision IS NULL OR distance_km <= $6::double precision
ORDER BY distance_km ASC NULLS LAST, last_active DESC NULLS LAST, id ASC
LIMIT $8 OFFSET $9
"""


def _valid_uuids(ids: Sequence[str]) -> List[str]:
    out: List[str] = []
    for raw in ids:
        try:
            out.append(str(UUID(str(raw))))
        except ValueError:
            continue
    return out


def _answers(raw: Any) -> tuple:
    if raw is None:
        return ()
    if isinstance(raw, str):
        raw = json.loads(raw)
    if isinstance(raw, list):
        return tuple(item for item in raw if isinstance(item, dict))
    return ()


def profile_from_record(record: Mapping[str, Any]) -> Profile:
    birth = BirthData(
        birth_date=record.get("birth_date"),
        birth_time=record.get("birth_time"),
        birth_location=record.get("birth_location"),
        sun_sign=record.get("sun_sign"),
        moon_sign=record.get("moon_sign"),
        rising_sign=record.get("rising_sign"),
    )
    preferences = Preferences(
        genders=frozenset(g.lower() for g in (record.get("looking_for") or ())),
        min_age=record.get("min_age_pref"),
        max_age=record.get("max_age_pref"),
        max_distance_km=record.get("max_distance_pref"),
        activity_types=frozenset(record.get("activity_types") or ()),
    )
    return Profile(
        id=str(record["id"]),
        display_name=record.get("display_name") or "",
        gender=record.get("gender"),
        age=record.get("age"),
        zodiac_sign=record.get("zodiac_sign"),
        birth=birth,
        questionnaire_answers=_answers(record.get("questionnaire_responses")),
        lat=record.get("lat"),
        lng=record.get("lng"),
        preferences=preferences,
        activity_types=frozenset(record.get("activity_types") or ()),
        onboarding_completed=bool(record.get("onboarding_completed")),
        premium=bool(record.get("premium")),
        last_active=record.get("last_active"),
    )


class PostgresCandidateRepository(CandidateRepository):
    """Asyncpg-backed candidate retrieval; the whole filter pipeline runs in one query."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    async def _viewer(self, viewer_id: str) -> Profile:
        valid = _valid_uuids([viewer_id])
        if not valid:
            raise ProfileNotFound(message=f"Viewer {viewer_id} not found")
        record = await self.pool.fetchrow(f"SELECT {_PROFILE_COLUMNS} FROM profiles WHERE id = $1::uuid", valid[0])
        if record is None:
            raise ProfileNotFound(message=f"Viewer {viewer_id} not found")
        return profile_from_record(record)

    async def find_candidates(
        self,
        viewer_id: str,
        filters: CandidateFilters,
        limit: int,
        offset: int,
    ) -> List[CandidateSummary]:
        try:
            viewer = await self._viewer(viewer_id)
            check_location(viewer, filters)
            genders = sorted(filters.gender_preference) if filters.gender_preference is not None else None
            rows = await self.pool.fetch(
                _CANDIDATE_QUERY,
                viewer.id,
                genders,
                filters.zodiac_sign,
                filters.min_age,
                filters.max_age,
                filters.max_distance_km,
                filters.activity_type,
                limit,
                offset,
            )
        except _QUERY_ERRORS as exc:
            obs_metrics.inc_candidate_query("error")
            logger.error("candidate_query_failed", extra={"error": type(exc).__name__})
            raise CandidateQueryError(message="Candidate lookup failed") from exc
        obs_metrics.inc_candidate_query("ok")
        return [
            CandidateSummary(
                id=row["id"],
                display_name=row["display_name"] or "",
                gender=row["gender"],
                age=row["age"],
                zodiac_sign=row["zodiac_sign"],
                distance_km=round(float(row["distance_km"]), 3) if row["distance_km"] is not None else None,
            )
            for row in rows
        ]

    async def load_profiles(self, ids: Sequence[str]) -> Dict[str, Profile]:
        valid = _valid_uuids(ids)
        if not valid:
            return {}
        try:
            rows = await self.pool.fetch(
                f"SELECT {_PROFILE_COLUMNS} FROM profiles WHERE id = ANY($1::uuid[])",
                list(dict.fromkeys(valid)),
            )
        except _QUERY_ERRORS as exc:
            raise CandidateQueryError(message="Profile lookup failed") from exc
        profiles = [profile_from_record(row) for row in rows]
        return {profile.id: profile for profile in profiles}

    async def relationship(self, viewer_id: str, candidate_id: str) -> Relationship:
        valid = _valid_uuids([viewer_id, candidate_id])
        if len(valid) != 2:
            return Relationship()
        query = """
        SELECT
            EXISTS (
                SELECT 1 FROM blocks
                WHERE (blocker_id = $1::uuid AND blocked_id = $2::uuid)
                   OR (blocker_id = $2::uuid AND blocked_id = $1::uuid)
            ) AS blocked,
            EXISTS (
                SELECT 1 FROM matches
                WHERE (user1_id = $1::uuid AND user2_id = $2::uuid)
                   OR (user1_id = $2::uuid AND user2_id = $1::uuid)
            ) AS matched
        """
        try:
            record = await self.pool.fetchrow(query, valid[0], valid[1])
        except _QUERY_ERRORS as exc:
            raise CandidateQueryError(message="Relationship lookup failed") from exc
        if record is None:
            return Relationship()
        return Relationship(blocked=bool(record["blocked"]), matched=bool(record["matched"]))


class PostgresScoreStore(ScoreStore):
    """Upserts every computed score; rows expire after the retention window."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    async def save(self, score: CompatibilityScore) -> None:
        query = """
        INSERT INTO compatibility_scores (
            user_id, potential_match_id, astrological_grade, questionnaire_grade,
            compatibility_score, score_components, calculated_at, expires_at
        )
        VALUES ($1::uuid, $2::uuid, $3, $4, $5, $6::jsonb, $7, $8)
        ON CONFLICT (user_id, potential_match_id) DO UPDATE SET
            astrological_grade = EXCLUDED.astrological_grade,
            questionnaire_grade = EXCLUDED.questionnaire_grade,
            compatibility_score = EXCLUDED.compatibility_score,
            score_components = EXCLUDED.score_components,
            calculated_at = EXCLUDED.calculated_at,
            expires_at = EXCLUDED.expires_at
        """
        await self.pool.execute(
            query,
            score.viewer_id,
            score.candidate_id,
            score.astro_grade.value,
            score.questionnaire_grade.value,
            score.combined_score,
            score.breakdown.to_dict(),
            score.computed_at,
            score.expires_at,
        )
