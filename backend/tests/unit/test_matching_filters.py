import pytest

from stellr.domain.matching.exceptions import InvalidMatchRequest
from stellr.domain.matching.models import CandidateFilters


def test_sentinels_mean_no_constraint():
	filters = CandidateFilters.from_mapping(
		{
			"zodiac_sign": "Any",
			"activity_type": "any date",
			"gender_preference": ["everyone"],
			"min_age": "",
		}
	)
	assert filters == CandidateFilters()
	assert filters.normalized() == {}


def test_camel_case_keys_are_accepted():
	filters = CandidateFilters.from_mapping(
		{"genderPreference": "Male", "zodiacSign": "Leo", "minAge": 21, "maxAge": "30", "maxDistance": 25}
	)
	assert filters.gender_preference == frozenset({"male"})
	assert filters.zodiac_sign == "leo"
	assert (filters.min_age, filters.max_age) == (21, 30)
	assert filters.max_distance_km == 25.0


def test_normalized_is_order_independent():
	first = CandidateFilters.from_mapping({"gender_preference": ["male", "female"], "max_distance_km": 10})
	second = CandidateFilters.from_mapping({"max_distance_km": 10.0, "gender_preference": ["Female", "MALE"]})
	assert first.normalized() == second.normalized()
	assert first.normalized()["gender_preference"] == ["female", "male"]


@pytest.mark.parametrize(
	"data",
	[
		{"min_age": 40, "max_age": 30},
		{"min_age": "abc"},
		{"max_age": -1},
		{"max_distance_km": 0},
		{"max_distance_km": "far"},
		{"min_age": True},
		{"genderPreference": 5},
		{"genderPreference": True},
		{"genderPreference": 2.5},
		{"genderPreference": ["female", 3]},
		{"maxDistanceKm": "nan"},
		{"maxDistanceKm": "inf"},
		{"maxDistanceKm": float("-inf")},
		{"maxDistanceKm": True},
	],
)
def test_malformed_filters_are_rejected(data):
	with pytest.raises(InvalidMatchRequest) as excinfo:
		CandidateFilters.from_mapping(data)
	assert excinfo.value.reason == "invalid_filters"
	assert excinfo.value.status_code == 400
