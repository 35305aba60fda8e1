import asyncio
import sys
from datetime import date, datetime, timezone
from pathlib import Path
from types import SimpleNamespace

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from fakeredis.aioredis import FakeRedis

# Ensure backend package is importable when tests run from repo root
BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
	sys.path.insert(0, str(BACKEND_ROOT))

from stellr.domain.matching import container
from stellr.domain.matching.models import BirthData, Preferences, Profile
from stellr.domain.matching.monitor import LatencyMonitor
from stellr.domain.matching.repository import InMemoryCandidateRepository
from stellr.domain.matching.score_store import InMemoryScoreStore
from stellr.infra import postgres
from stellr.main import app
from stellr.settings import settings


class ScriptedGrader:
	"""Grader double: per-candidate grades, delays and failures, with a call log."""

	def __init__(self, default: str = "B") -> None:
		self.default = default
		self.grades: dict[str, str] = {}
		self.delays: dict[str, float] = {}
		self.failures: dict[str, Exception] = {}
		self.calls: list[tuple[str, str]] = []

	async def grade(self, viewer: Profile, candidate: Profile) -> str:
		self.calls.append((viewer.id, candidate.id))
		delay = self.delays.get(candidate.id)
		if delay:
			await asyncio.sleep(delay)
		failure = self.failures.get(candidate.id)
		if failure is not None:
			raise failure
		return self.grades.get(candidate.id, self.default)


class FailingScoreStore:
	def __init__(self) -> None:
		self.attempts = 0

	async def save(self, score) -> None:
		self.attempts += 1
		raise ConnectionError("score store unavailable")


def build_profile(uid: str, **overrides) -> Profile:
	fields = dict(
		id=uid,
		display_name=uid.title(),
		gender="female",
		age=28,
		zodiac_sign="leo",
		birth=BirthData(
			birth_date=date(1996, 8, 1),
			birth_time="12:00",
			birth_location="Montreal, QC",
			sun_sign="leo",
		),
		questionnaire_answers=({"question_id": 1, "answer": "often"},),
		lat=45.5017,
		lng=-73.5673,
		preferences=Preferences(),
		last_active=datetime(2025, 1, 1, tzinfo=timezone.utc),
	)
	fields.update(overrides)
	return Profile(**fields)


@pytest.fixture
def profile_factory():
	return build_profile


@pytest_asyncio.fixture(autouse=True)
async def fake_redis():
	from stellr.infra.redis import redis_client, set_redis_client
	original = redis_client.client
	client = FakeRedis(decode_responses=True)
	set_redis_client(client)
	try:
		yield client
	finally:
		set_redis_client(original)
		await client.flushall()


@pytest.fixture(autouse=True)
def patch_postgres(monkeypatch):
	async def _noop():
		return None

	monkeypatch.setattr(postgres, "init_pool", _noop)
	monkeypatch.setattr(postgres, "close_pool", _noop)


@pytest.fixture(autouse=True)
def force_test_settings():
	"""Ensure a consistent test environment.

	API tests authenticate via the X-User-Id header, which is only accepted in
	dev mode.
	"""
	original_env = settings.environment
	original_require_match = settings.match_single_requires_match
	settings.environment = "dev"
	settings.match_single_requires_match = False
	try:
		yield
	finally:
		settings.environment = original_env
		settings.match_single_requires_match = original_require_match


@pytest.fixture
def matching():
	"""In-memory matching stack wired through the container."""
	repo = InMemoryCandidateRepository()
	store = InMemoryScoreStore()
	astro = ScriptedGrader(default="A")
	questionnaire = ScriptedGrader(default="B")
	monitor = LatencyMonitor()
	service = container.configure(
		repository=repo,
		score_store=store,
		astro_grader=astro,
		questionnaire_grader=questionnaire,
		monitor=monitor,
	)
	try:
		yield SimpleNamespace(
			repo=repo,
			store=store,
			astro=astro,
			questionnaire=questionnaire,
			monitor=monitor,
			service=service,
		)
	finally:
		container.reset()


@pytest_asyncio.fixture
async def api_client():
	transport = ASGITransport(app=app)
	async with AsyncClient(transport=transport, base_url="http://testserver") as client:
		yield client


@pytest.fixture
def grader_factory():
	return ScriptedGrader


@pytest.fixture
def failing_store():
	return FailingScoreStore()
