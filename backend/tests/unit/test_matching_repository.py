from datetime import datetime, timedelta, timezone

import pytest

from stellr.domain.matching.exceptions import InvalidMatchRequest, ProfileNotFound
from stellr.domain.matching.models import BirthData, CandidateFilters, Preferences
from stellr.domain.matching.repository import InMemoryCandidateRepository, haversine_km

# Montreal downtown and nearby points
MTL = (45.5017, -73.5673)
LAVAL = (45.5699, -73.6920)  # ~12 km
QUEBEC = (46.8139, -71.2080)  # ~233 km


def _ids(summaries):
	return [summary.id for summary in summaries]


@pytest.fixture
def repo(profile_factory):
	viewer = profile_factory(
		"viewer",
		gender="female",
		preferences=Preferences(genders=frozenset({"male"})),
		swiped_ids=frozenset({"swiped"}),
	)
	return InMemoryCandidateRepository([viewer])


def test_haversine_matches_known_distance():
	assert haversine_km(MTL, MTL) == 0
	assert 230 < haversine_km(MTL, QUEBEC) < 236


@pytest.mark.asyncio
async def test_gender_preference_is_bidirectional(repo, profile_factory):
	repo.add(profile_factory("likes-women", gender="male", preferences=Preferences(genders=frozenset({"female"}))))
	repo.add(profile_factory("likes-men", gender="male", preferences=Preferences(genders=frozenset({"male"}))))
	repo.add(profile_factory("open", gender="male", preferences=Preferences(genders=frozenset({"everyone"}))))
	repo.add(profile_factory("no-pref", gender="male"))
	repo.add(profile_factory("woman", gender="female"))

	found = await repo.find_candidates("viewer", CandidateFilters(), limit=20, offset=0)
	assert sorted(_ids(found)) == ["likes-women", "no-pref", "open"]


@pytest.mark.asyncio
async def test_gender_filter_overrides_stated_preference(repo, profile_factory):
	repo.add(profile_factory("man", gender="male"))
	repo.add(profile_factory("woman", gender="female"))

	filters = CandidateFilters(gender_preference=frozenset({"female"}))
	found = await repo.find_candidates("viewer", filters, limit=20, offset=0)
	assert _ids(found) == ["woman"]


@pytest.mark.asyncio
async def test_unconditional_exclusions(repo, profile_factory):
	repo.add(profile_factory("swiped", gender="male"))
	repo.add(profile_factory("blocked-me", gender="male"))
	repo.add(profile_factory("i-blocked", gender="male"))
	repo.add(profile_factory("matched", gender="male"))
	repo.add(profile_factory("no-onboarding", gender="male", onboarding_completed=False))
	repo.add(profile_factory("no-birth", gender="male", birth=BirthData()))
	repo.add(profile_factory("no-answers", gender="male", questionnaire_answers=()))
	repo.add(profile_factory("eligible", gender="male"))
	repo.block("blocked-me", "viewer")
	repo.block("viewer", "i-blocked")
	repo.match("viewer", "matched")

	found = await repo.find_candidates("viewer", CandidateFilters(), limit=20, offset=0)
	assert _ids(found) == ["eligible"]


@pytest.mark.asyncio
async def test_optional_filters_apply_only_when_supplied(repo, profile_factory):
	repo.add(profile_factory("leo-25", gender="male", age=25, zodiac_sign="Leo", activity_types=frozenset({"Coffee"})))
	repo.add(profile_factory("virgo-35", gender="male", age=35, zodiac_sign="Virgo"))
	repo.add(profile_factory("ageless", gender="male", age=None, zodiac_sign="Leo"))

	everything = await repo.find_candidates("viewer", CandidateFilters(), limit=20, offset=0)
	assert len(everything) == 3

	by_sign = await repo.find_candidates("viewer", CandidateFilters(zodiac_sign="leo"), limit=20, offset=0)
	assert sorted(_ids(by_sign)) == ["ageless", "leo-25"]

	by_age = await repo.find_candidates("viewer", CandidateFilters(min_age=30, max_age=40), limit=20, offset=0)
	assert _ids(by_age) == ["virgo-35"]

	by_activity = await repo.find_candidates("viewer", CandidateFilters(activity_type="coffee"), limit=20, offset=0)
	assert _ids(by_activity) == ["leo-25"]


@pytest.mark.asyncio
async def test_distance_filter_excludes_far_and_unlocated(repo, profile_factory):
	repo.add(profile_factory("laval", gender="male", lat=LAVAL[0], lng=LAVAL[1]))
	repo.add(profile_factory("quebec", gender="male", lat=QUEBEC[0], lng=QUEBEC[1]))
	repo.add(profile_factory("nowhere", gender="male", lat=None, lng=None))

	found = await repo.find_candidates("viewer", CandidateFilters(max_distance_km=50), limit=20, offset=0)
	assert _ids(found) == ["laval"]
	assert 10 < found[0].distance_km < 15


@pytest.mark.asyncio
async def test_distance_filter_requires_viewer_location(profile_factory):
	repo = InMemoryCandidateRepository([profile_factory("viewer", lat=None, lng=None)])
	with pytest.raises(InvalidMatchRequest) as excinfo:
		await repo.find_candidates("viewer", CandidateFilters(max_distance_km=10), limit=20, offset=0)
	assert excinfo.value.reason == "location_required"


@pytest.mark.asyncio
async def test_unknown_viewer_raises(repo):
	with pytest.raises(ProfileNotFound):
		await repo.find_candidates("ghost", CandidateFilters(), limit=20, offset=0)


@pytest.mark.asyncio
async def test_ordering_is_stable_and_paginates(repo, profile_factory):
	now = datetime(2025, 6, 1, tzinfo=timezone.utc)
	repo.add(profile_factory("far", gender="male", lat=QUEBEC[0], lng=QUEBEC[1], last_active=now))
	repo.add(profile_factory("near-old", gender="male", lat=LAVAL[0], lng=LAVAL[1], last_active=now - timedelta(days=3)))
	repo.add(profile_factory("near-new", gender="male", lat=LAVAL[0], lng=LAVAL[1], last_active=now))
	repo.add(profile_factory("b-unlocated", gender="male", lat=None, lng=None, last_active=now))
	repo.add(profile_factory("a-unlocated", gender="male", lat=None, lng=None, last_active=now))

	found = await repo.find_candidates("viewer", CandidateFilters(), limit=20, offset=0)
	assert _ids(found) == ["near-new", "near-old", "far", "a-unlocated", "b-unlocated"]

	page = await repo.find_candidates("viewer", CandidateFilters(), limit=2, offset=2)
	assert _ids(page) == ["far", "a-unlocated"]


@pytest.mark.asyncio
async def test_relationship_flags(repo, profile_factory):
	repo.add(profile_factory("other"))
	assert (await repo.relationship("viewer", "other")).blocked is False
	repo.block("other", "viewer")
	repo.match("viewer", "other")
	rel = await repo.relationship("viewer", "other")
	assert rel.blocked is True
	assert rel.matched is True
