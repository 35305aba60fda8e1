"""Latency monitoring for compatibility operations.

Every Match Service operation runs inside ``LatencyMonitor.track``. Samples
that exceed the latency target are logged and counted but never interrupt the
request. A bounded window of recent samples per operation backs the
``/compatibility/perf`` report.
"""

from __future__ import annotations

import logging
import time
from collections import defaultdict, deque
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from statistics import mean, quantiles
from typing import AsyncIterator, Deque, Dict, List, Optional

from stellr.config.performance_budgets import evaluate_operation
from stellr.domain.matching.exceptions import MatchingError
from stellr.obs import logging as obs_logging
from stellr.obs import metrics as obs_metrics
from stellr.settings import settings

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Performance:
	response_time_ms: float
	cache_used: bool = False
	batch_size: int = 0
	performance_warning: Optional[str] = None

	def to_dict(self) -> Dict[str, object]:
		payload: Dict[str, object] = {
			"response_time_ms": round(self.response_time_ms, 3),
			"cache_used": self.cache_used,
			"batch_size": self.batch_size,
		}
		if self.performance_warning:
			payload["performance_warning"] = self.performance_warning
		return payload


@dataclass(slots=True)
class TrackedOperation:
	operation: str
	viewer_id: Optional[str]
	target_ms: float
	elapsed_ms: float = 0.0
	outcome: str = "ok"
	slow: bool = False

	@property
	def performance_warning(self) -> Optional[str]:
		if not self.slow:
			return None
		return f"{self.operation} took {self.elapsed_ms:.0f}ms (target {self.target_ms:.0f}ms)"

	def performance(self, *, cache_used: bool = False, batch_size: int = 0) -> Performance:
		return Performance(
			response_time_ms=self.elapsed_ms,
			cache_used=cache_used,
			batch_size=batch_size,
			performance_warning=self.performance_warning,
		)


@dataclass
class OperationWindow:
	"""Recent samples for one operation; only the newest ``size`` latencies are kept."""

	size: int = 1000
	latencies: Deque[float] = field(default_factory=deque)
	count: int = 0
	error_count: int = 0
	slow_count: int = 0

	def add(self, sample: TrackedOperation) -> None:
		self.latencies.append(sample.elapsed_ms)
		while len(self.latencies) > self.size:
			self.latencies.popleft()
		self.count += 1
		if sample.outcome == "error":
			self.error_count += 1
		if sample.slow:
			self.slow_count += 1

	def get_stats(self, operation: str) -> Dict:
		if not self.latencies:
			return {"count": 0}
		ordered: List[float] = sorted(self.latencies)
		if len(ordered) > 1:
			cuts = quantiles(ordered, n=100, method="inclusive")
			p50, p95, p99 = cuts[49], cuts[94], cuts[98]
		else:
			p50 = p95 = p99 = ordered[0]
		error_rate = self.error_count / max(self.count, 1)
		return {
			"count": self.count,
			"error_rate": error_rate,
			"slow_count": self.slow_count,
			"latency": {
				"min": ordered[0],
				"max": ordered[-1],
				"mean": mean(ordered),
				"p50": p50,
				"p95": p95,
				"p99": p99,
			},
			"budgets": evaluate_operation(operation, p95, error_rate),
		}


class LatencyMonitor:
	def __init__(self, *, target_ms: Optional[float] = None, window: Optional[int] = None) -> None:
		self.target_ms = target_ms if target_ms is not None else settings.match_latency_target_ms
		self.window = window or settings.match_monitor_window
		self._windows: Dict[str, OperationWindow] = defaultdict(lambda: OperationWindow(size=self.window))

	@asynccontextmanager
	async def track(self, operation: str, viewer_id: Optional[str] = None) -> AsyncIterator[TrackedOperation]:
		sample = TrackedOperation(operation=operation, viewer_id=viewer_id, target_ms=self.target_ms)
		tokens = obs_logging.bind_context(operation=operation, viewer_id=viewer_id)
		started = time.perf_counter()
		try:
			yield sample
		except MatchingError as exc:
			sample.outcome = "rejected" if exc.status_code < 500 else "error"
			raise
		except Exception:
			sample.outcome = "error"
			raise
		finally:
			sample.elapsed_ms = (time.perf_counter() - started) * 1000.0
			sample.slow = sample.elapsed_ms > self.target_ms
			self._record(sample)
			obs_logging.reset_context(tokens)

	def _record(self, sample: TrackedOperation) -> None:
		try:
			self._windows[sample.operation].add(sample)
			obs_metrics.observe_compat(sample.operation, sample.outcome, sample.elapsed_ms / 1000.0)
			if sample.slow:
				obs_metrics.inc_compat_slow(sample.operation)
				logger.warning(
					"compatibility_slow",
					extra={
						"operation": sample.operation,
						"viewer_id": sample.viewer_id,
						"elapsed_ms": round(sample.elapsed_ms, 3),
						"target_ms": self.target_ms,
					},
				)
		except Exception:
			logger.warning("latency_monitor_failed", exc_info=True)

	def stats(self) -> Dict[str, Dict]:
		return {operation: window.get_stats(operation) for operation, window in self._windows.items()}

	def reset(self) -> None:
		self._windows.clear()
