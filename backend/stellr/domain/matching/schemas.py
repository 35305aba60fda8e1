"""Pydantic schemas for the compatibility endpoint."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class CompatibilityRequest(BaseModel):
	"""One body, three request shapes.

	``single_candidate_id`` wins over ``candidate_ids``; with neither present the
	request lists potential matches using ``filters``.
	"""

	model_config = ConfigDict(extra="ignore")

	single_candidate_id: Optional[str] = None
	candidate_ids: Optional[List[str]] = None
	filters: Optional[Dict[str, Any]] = None
	options: Optional[Dict[str, Any]] = None

	@field_validator("candidate_ids")
	@classmethod
	def _strip_ids(cls, value: Optional[List[str]]) -> Optional[List[str]]:
		if value is None:
			return None
		return [item.strip() for item in value]


class PerformanceBlock(BaseModel):
	response_time_ms: float = 0.0
	cache_used: bool = False
	batch_size: int = 0
	performance_warning: Optional[str] = None


class ErrorBody(BaseModel):
	code: str
	message: str


class CompatibilityEnvelope(BaseModel):
	success: bool
	data: Optional[Any] = None
	error: Optional[ErrorBody] = None
	performance: PerformanceBlock = Field(default_factory=PerformanceBlock)
	request_id: Optional[str] = None
