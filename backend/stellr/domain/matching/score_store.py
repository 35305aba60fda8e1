"""Write-only persistence of computed scores (audit and analytics)."""

from __future__ import annotations

from typing import Protocol

from stellr.domain.matching.models import CompatibilityScore


class ScoreStore(Protocol):
	async def save(self, score: CompatibilityScore) -> None:
		...


class InMemoryScoreStore(ScoreStore):
	"""Keeps the latest score per (viewer, candidate) pair plus a write log."""

	def __init__(self) -> None:
		self.scores: dict[tuple[str, str], CompatibilityScore] = {}
		self.writes: list[CompatibilityScore] = []

	async def save(self, score: CompatibilityScore) -> None:
		self.scores[(score.viewer_id, score.candidate_id)] = score
		self.writes.append(score)
