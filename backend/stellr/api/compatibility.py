"""Compatibility scoring endpoints."""

from __future__ import annotations

import time
from typing import Any, Dict

from fastapi import APIRouter, Depends, Request

from stellr.api.errors import STARTED_AT_ATTR
from stellr.api.request_id import get_request_id
from stellr.domain.matching.batch import BatchOptions
from stellr.domain.matching.container import get_match_service, get_monitor
from stellr.domain.matching.models import CandidateFilters
from stellr.domain.matching.monitor import LatencyMonitor, Performance
from stellr.domain.matching.schemas import CompatibilityEnvelope, CompatibilityRequest, PerformanceBlock
from stellr.domain.matching.service import MatchOptions, MatchService
from stellr.infra.auth import AuthenticatedUser, get_current_user

router = APIRouter(prefix="/compatibility", tags=["compatibility"])


def _envelope(request: Request, data: Any, performance: Performance) -> CompatibilityEnvelope:
	return CompatibilityEnvelope(
		success=True,
		data=data,
		performance=PerformanceBlock(**performance.to_dict()),
		request_id=get_request_id(request),
	)


@router.post("", response_model=CompatibilityEnvelope)
async def compatibility(
	payload: CompatibilityRequest,
	request: Request,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: MatchService = Depends(get_match_service),
) -> CompatibilityEnvelope:
	setattr(request.state, STARTED_AT_ATTR, time.perf_counter())

	if payload.single_candidate_id is not None:
		single = await service.get_single_compatibility(auth_user.id, payload.single_candidate_id)
		return _envelope(request, single.score.to_dict(), single.performance)

	if payload.candidate_ids is not None:
		batch = await service.get_batch_compatibility(
			auth_user.id,
			payload.candidate_ids,
			BatchOptions.from_mapping(payload.options),
		)
		data: Dict[str, Any] = {
			"results": [result.to_dict() for result in batch.results],
			"metrics": batch.metrics.to_dict(),
		}
		return _envelope(request, data, batch.performance)

	listing = await service.get_potential_matches(
		auth_user.id,
		CandidateFilters.from_mapping(payload.filters),
		MatchOptions.from_mapping(payload.options),
	)
	data = {
		"matches": [match.to_dict() for match in listing.matches],
		"metrics": listing.metrics.to_dict(),
		"cache_used": listing.cache_used,
	}
	return _envelope(request, data, listing.performance)


@router.get("/perf")
async def compatibility_perf(
	auth_user: AuthenticatedUser = Depends(get_current_user),
	monitor: LatencyMonitor = Depends(get_monitor),
) -> Dict[str, Any]:
	return {"target_ms": monitor.target_ms, "operations": monitor.stats()}
