"""Central registry for Prometheus metrics used across the backend."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

REQUEST_COUNTER = Counter(
	"stellr_http_requests_total",
	"Total HTTP requests processed",
	["route", "method", "status"],
)

REQUEST_LATENCY = Histogram(
	"stellr_http_request_duration_seconds",
	"HTTP request latency in seconds",
	["route", "method"],
	buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0),
)

COMPAT_OPERATIONS = Counter(
	"stellr_compat_operations_total",
	"Compatibility operations processed",
	["operation", "outcome"],
)

COMPAT_LATENCY = Histogram(
	"stellr_compat_operation_duration_seconds",
	"Compatibility operation latency in seconds",
	["operation"],
	buckets=(0.01, 0.025, 0.05, 0.1, 0.2, 0.3, 0.5, 0.75, 1.0, 2.0, 5.0),
)

COMPAT_SLOW = Counter(
	"stellr_compat_slow_operations_total",
	"Compatibility operations exceeding the latency target",
	["operation"],
)

BATCH_RESULTS = Counter(
	"stellr_compat_batch_results_total",
	"Per-candidate batch outcomes",
	["result"],
)

BATCH_TRUNCATED = Counter(
	"stellr_compat_batch_truncated_total",
	"Batches clamped to the maximum batch size",
)

LIST_CACHE_LOOKUPS = Counter(
	"stellr_match_list_cache_total",
	"Candidate list cache lookups and writes",
	["result"],
)

SCORE_STORE_WRITES = Counter(
	"stellr_score_store_writes_total",
	"Compatibility score store writes",
	["result"],
)

CANDIDATE_QUERIES = Counter(
	"stellr_candidate_queries_total",
	"Candidate repository queries",
	["result"],
)

DEPENDENCY_UP = Gauge(
	"stellr_dependency_up",
	"Last readiness result per backing store (1 up, 0 down)",
	["dependency"],
)


def observe_request(route: str, method: str, status: int, elapsed_seconds: float) -> None:
	REQUEST_COUNTER.labels(route=route, method=method, status=str(status)).inc()
	REQUEST_LATENCY.labels(route=route, method=method).observe(elapsed_seconds)


def observe_compat(operation: str, outcome: str, elapsed_seconds: float) -> None:
	COMPAT_OPERATIONS.labels(operation=operation, outcome=outcome).inc()
	COMPAT_LATENCY.labels(operation=operation).observe(elapsed_seconds)


def inc_compat_slow(operation: str) -> None:
	COMPAT_SLOW.labels(operation=operation).inc()


def inc_batch_results(*, succeeded: int, fallback: int) -> None:
	if succeeded:
		BATCH_RESULTS.labels(result="succeeded").inc(succeeded)
	if fallback:
		BATCH_RESULTS.labels(result="fallback").inc(fallback)


def inc_batch_truncated() -> None:
	BATCH_TRUNCATED.inc()


def inc_list_cache(result: str) -> None:
	LIST_CACHE_LOOKUPS.labels(result=result).inc()


def inc_score_store(result: str) -> None:
	SCORE_STORE_WRITES.labels(result=result).inc()


def inc_candidate_query(result: str) -> None:
	CANDIDATE_QUERIES.labels(result=result).inc()


def mark_dependency(name: str, up: bool) -> None:
	DEPENDENCY_UP.labels(dependency=name).set(1 if up else 0)
