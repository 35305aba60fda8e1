"""Service container for the matching core."""

from __future__ import annotations

from typing import Optional

import asyncpg
from redis.asyncio import Redis

from stellr.domain.matching.batch import BatchOrchestrator
from stellr.domain.matching.graders import Grader, PostgresFunctionGrader
from stellr.domain.matching.list_cache import CandidateListCache
from stellr.domain.matching.monitor import LatencyMonitor
from stellr.domain.matching.repository import CandidateRepository, InMemoryCandidateRepository
from stellr.domain.matching.score_store import InMemoryScoreStore, ScoreStore
from stellr.domain.matching.scorer import CompatibilityScorer
from stellr.domain.matching.service import MatchService
from stellr.infra.redis import RedisProxy, redis_client
from stellr.settings import settings

_repository: CandidateRepository = InMemoryCandidateRepository()
_score_store: ScoreStore = InMemoryScoreStore()
_astro_grader: Grader = PostgresFunctionGrader(settings.astro_grade_function)
_questionnaire_grader: Grader = PostgresFunctionGrader(settings.questionnaire_grade_function)
_redis_proxy: RedisProxy = redis_client
_monitor = LatencyMonitor()
_service: Optional[MatchService] = None


def _build() -> MatchService:
    scorer = CompatibilityScorer(
        repository=_repository,
        astro_grader=_astro_grader,
        questionnaire_grader=_questionnaire_grader,
        store=_score_store,
    )
    return MatchService(
        repository=_repository,
        list_cache=CandidateListCache(_redis_proxy),
        orchestrator=BatchOrchestrator(scorer),
        scorer=scorer,
        monitor=_monitor,
    )


def configure(
    *,
    repository: Optional[CandidateRepository] = None,
    score_store: Optional[ScoreStore] = None,
    astro_grader: Optional[Grader] = None,
    questionnaire_grader: Optional[Grader] = None,
    redis_proxy: Optional[RedisProxy] = None,
    monitor: Optional[LatencyMonitor] = None,
) -> MatchService:
    global _repository, _score_store, _astro_grader, _questionnaire_grader, _redis_proxy, _monitor, _service
    if repository is not None:
        _repository = repository
    if score_store is not None:
        _score_store = score_store
    if astro_grader is not None:
        _astro_grader = astro_grader
    if questionnaire_grader is not None:
        _questionnaire_grader = questionnaire_grader
    if monitor is not None:
        _monitor = monitor
    _redis_proxy = redis_proxy or _redis_proxy
    _service = _build()
    return _service


def configure_postgres(pool: asyncpg.Pool, redis_conn: Redis | RedisProxy | None = None) -> MatchService:
    # infra.matching_repo imports this package, so bind it late
    from stellr.infra.matching_repo import PostgresCandidateRepository, PostgresScoreStore

    proxy = None
    if redis_conn is not None:
        proxy = redis_conn if isinstance(redis_conn, RedisProxy) else RedisProxy(redis_conn)
    return configure(
        repository=PostgresCandidateRepository(pool),
        score_store=PostgresScoreStore(pool),
        astro_grader=PostgresFunctionGrader(settings.astro_grade_function, pool),
        questionnaire_grader=PostgresFunctionGrader(settings.questionnaire_grade_function, pool),
        redis_proxy=proxy,
    )


def get_match_service() -> MatchService:
    global _service
    if _service is None:
        _service = _build()
    return _service


def get_monitor() -> LatencyMonitor:
    return _monitor


def reset() -> None:
    """Back to in-memory defaults with a fresh monitor."""
    global _repository, _score_store, _astro_grader, _questionnaire_grader, _redis_proxy, _monitor, _service
    _repository = InMemoryCandidateRepository()
    _score_store = InMemoryScoreStore()
    _astro_grader = PostgresFunctionGrader(settings.astro_grade_function)
    _questionnaire_grader = PostgresFunctionGrader(settings.questionnaire_grade_function)
    _redis_proxy = redis_client
    _monitor = LatencyMonitor()
    _service = None
