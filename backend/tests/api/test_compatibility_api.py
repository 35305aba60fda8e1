import pytest
from httpx import ASGITransport, AsyncClient

from stellr.domain.matching.models import BirthData
from stellr.infra import jwt as jwt_helper
from stellr.main import app
from stellr.settings import settings

VIEWER = {"X-User-Id": "viewer"}


@pytest.fixture
def seeded(matching, profile_factory):
	matching.repo.add(profile_factory("viewer"))
	for uid in ("c1", "c2", "c3"):
		matching.repo.add(profile_factory(uid))
	return matching


@pytest.mark.asyncio
async def test_single_compatibility(api_client, seeded):
	resp = await api_client.post("/compatibility", json={"single_candidate_id": "c1"}, headers=VIEWER)

	assert resp.status_code == 200
	body = resp.json()
	assert body["success"] is True
	assert body["data"]["candidate_id"] == "c1"
	assert body["data"]["astro_grade"] == "A"
	assert body["data"]["questionnaire_grade"] == "B"
	assert body["data"]["combined_score"] == 88
	assert body["performance"]["batch_size"] == 1
	assert body["request_id"] == resp.headers["X-Request-Id"]


@pytest.mark.asyncio
async def test_bearer_token_identifies_viewer(api_client, seeded):
	token = jwt_helper.encode_access("viewer")
	resp = await api_client.post(
		"/compatibility",
		json={"single_candidate_id": "c2"},
		headers={"Authorization": f"Bearer {token}"},
	)
	assert resp.status_code == 200
	assert seeded.astro.calls == [("viewer", "c2")]


@pytest.mark.asyncio
async def test_batch_compatibility_isolates_failures(api_client, seeded, profile_factory):
	seeded.repo.add(profile_factory("c2", questionnaire_answers=()))

	resp = await api_client.post(
		"/compatibility",
		json={"candidate_ids": ["c1", "c2", "c3"], "options": {"maxBatchSize": 2}},
		headers=VIEWER,
	)

	assert resp.status_code == 200
	data = resp.json()["data"]
	assert [r["candidate_id"] for r in data["results"]] == ["c1", "c2"]
	assert data["results"][1] == {
		"candidate_id": "c2",
		"combined_score": 50,
		"fallback": True,
		"error": "missing_questionnaire",
		"astro_grade": None,
		"questionnaire_grade": None,
	}
	assert data["metrics"]["truncated"] is True
	assert data["metrics"]["requested"] == 3
	assert resp.json()["performance"]["batch_size"] == 2


@pytest.mark.asyncio
async def test_single_candidate_wins_over_batch(api_client, seeded):
	resp = await api_client.post(
		"/compatibility",
		json={"single_candidate_id": "c1", "candidate_ids": ["c2", "c3"]},
		headers=VIEWER,
	)
	assert resp.status_code == 200
	assert resp.json()["data"]["candidate_id"] == "c1"


@pytest.mark.asyncio
async def test_potential_matches_second_call_uses_cache(api_client, seeded):
	first = await api_client.post("/compatibility", json={"filters": {"zodiacSign": "any"}}, headers=VIEWER)
	second = await api_client.post("/compatibility", json={"filters": {"zodiacSign": "any"}}, headers=VIEWER)

	assert first.status_code == 200 and second.status_code == 200
	first_data, second_data = first.json()["data"], second.json()["data"]
	assert first_data["cache_used"] is False
	assert second_data["cache_used"] is True
	assert second.json()["performance"]["cache_used"] is True
	assert [m["candidate_id"] for m in first_data["matches"]] == ["c1", "c2", "c3"]
	assert first_data["matches"][0]["candidate"]["display_name"] == "C1"
	assert second_data["matches"][0]["candidate"] is None
	assert [m["candidate_id"] for m in second_data["matches"]] == ["c1", "c2", "c3"]


@pytest.mark.asyncio
async def test_missing_identity_is_unauthorized(api_client, seeded):
	resp = await api_client.post("/compatibility", json={"single_candidate_id": "c1"})
	assert resp.status_code == 401
	assert resp.json()["error"]["code"] == "invalid_token"
	assert resp.json()["success"] is False


@pytest.mark.asyncio
async def test_dev_header_ignored_outside_dev(api_client, seeded):
	settings.environment = "production"
	resp = await api_client.post("/compatibility", json={"single_candidate_id": "c1"}, headers=VIEWER)
	assert resp.status_code == 401


@pytest.mark.asyncio
async def test_blocked_pair_is_forbidden(api_client, seeded):
	seeded.repo.block("viewer", "c1")
	resp = await api_client.post("/compatibility", json={"single_candidate_id": "c1"}, headers=VIEWER)
	assert resp.status_code == 403
	assert resp.json()["error"]["code"] == "blocked"


@pytest.mark.asyncio
async def test_unknown_candidate_is_not_found(api_client, seeded):
	resp = await api_client.post("/compatibility", json={"single_candidate_id": "ghost"}, headers=VIEWER)
	assert resp.status_code == 404
	assert resp.json()["error"]["code"] == "profile_not_found"


@pytest.mark.asyncio
async def test_incomplete_profile_is_unprocessable(api_client, seeded, profile_factory):
	seeded.repo.add(profile_factory("c1", birth=BirthData()))
	resp = await api_client.post("/compatibility", json={"single_candidate_id": "c1"}, headers=VIEWER)
	assert resp.status_code == 422
	assert resp.json()["error"]["code"] == "missing_birth_data"


@pytest.mark.asyncio
async def test_grader_failure_is_bad_gateway(api_client, seeded):
	seeded.questionnaire.failures["c1"] = ConnectionError("grader down")
	resp = await api_client.post("/compatibility", json={"single_candidate_id": "c1"}, headers=VIEWER)
	assert resp.status_code == 502
	assert resp.json()["error"]["code"] == "scoring_failed"


@pytest.mark.asyncio
@pytest.mark.parametrize(
	"body, code",
	[
		({"single_candidate_id": "viewer"}, "self_comparison"),
		({"candidate_ids": []}, "empty_candidates"),
		({"candidate_ids": "c1"}, "invalid_request"),
		({"filters": {"minAge": 40, "maxAge": 30}}, "invalid_filters"),
		({"filters": {"maxDistanceKm": "far"}}, "invalid_filters"),
		({"filters": {"genderPreference": 5}}, "invalid_filters"),
		({"filters": {"maxDistanceKm": "nan"}}, "invalid_filters"),
		({"options": {"limit": 0}}, "invalid_options"),
		({"candidate_ids": ["c1"], "options": {"oversizePolicy": "drop"}}, "invalid_options"),
	],
)
async def test_bad_requests(api_client, seeded, body, code):
	resp = await api_client.post("/compatibility", json=body, headers=VIEWER)
	assert resp.status_code == 400
	assert resp.json()["error"]["code"] == code


@pytest.mark.asyncio
async def test_reject_policy_reports_batch_too_large(api_client, seeded):
	resp = await api_client.post(
		"/compatibility",
		json={"candidate_ids": ["c1", "c2", "c3"], "options": {"max_batch_size": 2, "oversize_policy": "reject"}},
		headers=VIEWER,
	)
	assert resp.status_code == 400
	assert resp.json()["error"]["code"] == "batch_too_large"


@pytest.mark.asyncio
async def test_listing_never_rejects_and_pages_within_batch_cap(api_client, seeded):
	options = {"limit": 60, "max_batch_size": 2, "oversize_policy": "reject"}
	first = await api_client.post("/compatibility", json={"options": options}, headers=VIEWER)
	second = await api_client.post("/compatibility", json={"options": {**options, "offset": 2}}, headers=VIEWER)

	assert first.status_code == 200 and second.status_code == 200
	assert [m["candidate_id"] for m in first.json()["data"]["matches"]] == ["c1", "c2"]
	assert [m["candidate_id"] for m in second.json()["data"]["matches"]] == ["c3"]


@pytest.mark.asyncio
async def test_unexpected_error_is_internal(seeded, monkeypatch):
	async def _boom(viewer_id, candidate_id):
		raise RuntimeError("unexpected")

	monkeypatch.setattr(seeded.repo, "relationship", _boom)
	transport = ASGITransport(app=app, raise_app_exceptions=False)
	async with AsyncClient(transport=transport, base_url="http://testserver") as client:
		resp = await client.post("/compatibility", json={"single_candidate_id": "c1"}, headers=VIEWER)

	assert resp.status_code == 500
	assert resp.json()["error"]["code"] == "internal_error"
	assert "unexpected" not in resp.text


@pytest.mark.asyncio
async def test_perf_report_lists_operations(api_client, seeded):
	await api_client.post("/compatibility", json={"single_candidate_id": "c1"}, headers=VIEWER)
	await api_client.post("/compatibility", json={"single_candidate_id": "viewer"}, headers=VIEWER)

	resp = await api_client.get("/compatibility/perf", headers=VIEWER)

	assert resp.status_code == 200
	body = resp.json()
	assert body["target_ms"] == settings.match_latency_target_ms
	assert body["operations"]["single"]["count"] == 2
	assert "latency_p95" in body["operations"]["single"]["budgets"]


@pytest.mark.asyncio
async def test_health_live(api_client):
	resp = await api_client.get("/health/live")
	assert resp.status_code == 200
	assert resp.json()["status"] == "ok"


@pytest.mark.asyncio
async def test_metrics_require_admin_token(api_client, monkeypatch):
	monkeypatch.setattr(settings, "obs_metrics_public", False)
	monkeypatch.setattr(settings, "obs_admin_token", "s3cret")

	denied = await api_client.get("/metrics")
	allowed = await api_client.get("/metrics", headers={"X-Admin-Token": "s3cret"})

	assert denied.status_code == 403
	assert allowed.status_code == 200
	assert "stellr_compat_operations" in allowed.text


class _ReadyConn:
	def __init__(self, row):
		self.row = row

	async def fetchrow(self, query, *args):
		return self.row


class _ReadyPool:
	def __init__(self, row):
		self.conn = _ReadyConn(row)

	def acquire(self):
		pool = self

		class _Ctx:
			async def __aenter__(self):
				return pool.conn

			async def __aexit__(self, *exc):
				return False

		return _Ctx()


@pytest.mark.asyncio
@pytest.mark.parametrize(
	"row, status_code, state",
	[
		({"astro": True, "questionnaire": True}, 200, "ok"),
		({"astro": True, "questionnaire": False}, 503, "unavailable"),
	],
)
async def test_health_ready_checks_grader_functions(api_client, monkeypatch, row, status_code, state):
	from stellr.infra import postgres

	async def _pool():
		return _ReadyPool(row)

	monkeypatch.setattr(postgres, "get_pool", _pool)
	resp = await api_client.get("/health/ready")

	assert resp.status_code == status_code
	assert resp.json()["status"] == state
	assert resp.json()["checks"]["redis"]["ok"] is True
	assert resp.json()["checks"]["postgres"]["graders"] == row


@pytest.mark.asyncio
async def test_request_id_is_echoed_or_replaced(api_client, seeded):
	kept = await api_client.post(
		"/compatibility",
		json={"single_candidate_id": "c1"},
		headers={**VIEWER, "X-Request-Id": "req-12345678"},
	)
	replaced = await api_client.post(
		"/compatibility",
		json={"single_candidate_id": "c1"},
		headers={**VIEWER, "X-Request-Id": "bad id with spaces!"},
	)

	assert kept.headers["X-Request-Id"] == "req-12345678"
	assert kept.json()["request_id"] == "req-12345678"
	assert replaced.headers["X-Request-Id"] != "bad id with spaces!"
	assert replaced.json()["request_id"] == replaced.headers["X-Request-Id"]
