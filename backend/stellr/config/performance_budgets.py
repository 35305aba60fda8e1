"""
Compatibility Performance Budgets

Latency targets for the three matching operations. The monitor evaluates its
rolling p95 per operation against these.
"""

from dataclasses import dataclass
from typing import Dict, Optional
from enum import Enum


class MetricUnit(Enum):
    MILLISECONDS = "ms"
    PERCENTAGE = "%"


@dataclass
class PerformanceBudget:
    """A performance budget with target and warning thresholds."""

    name: str
    description: str
    target: float  # Good threshold
    warning: float  # Needs improvement threshold
    unit: MetricUnit
    category: str

    def evaluate(self, value: float) -> str:
        """Evaluate a metric value against thresholds."""
        if value <= self.target:
            return "good"
        elif value <= self.warning:
            return "needs-improvement"
        else:
            return "poor"


# ===== COMPATIBILITY OPERATION BUDGETS =====

COMPATIBILITY_BUDGETS = {
    "single": PerformanceBudget(
        name="Single Compatibility Latency",
        description="One fresh viewer/candidate score (P95)",
        target=100,
        warning=500,
        unit=MetricUnit.MILLISECONDS,
        category="compatibility",
    ),
    "batch": PerformanceBudget(
        name="Batch Compatibility Latency",
        description="Fan-out scoring of up to the batch cap (P95)",
        target=500,
        warning=1000,
        unit=MetricUnit.MILLISECONDS,
        category="compatibility",
    ),
    "potential_matches": PerformanceBudget(
        name="Potential Matches Latency",
        description="Candidate list plus fresh scores (P95)",
        target=200,
        warning=500,
        unit=MetricUnit.MILLISECONDS,
        category="compatibility",
    ),
}

ERROR_RATE_BUDGET = PerformanceBudget(
    name="Compatibility Error Rate",
    description="Percentage of operations ending in an error",
    target=1.0,
    warning=5.0,
    unit=MetricUnit.PERCENTAGE,
    category="reliability",
)


# ===== BUDGET HELPERS =====

def get_budget(operation: str) -> Optional[PerformanceBudget]:
    """Get the latency budget for an operation, if one is defined."""
    return COMPATIBILITY_BUDGETS.get(operation)


def evaluate_operation(operation: str, p95_ms: float, error_rate: float) -> Dict[str, Dict]:
    """
    Evaluate an operation's p95 latency and error rate.

    Returns:
        Dict with one evaluation per checked metric
    """
    results: Dict[str, Dict] = {}
    budget = get_budget(operation)
    if budget is not None:
        results["latency_p95"] = {
            "value": p95_ms,
            "unit": budget.unit.value,
            "target": budget.target,
            "warning": budget.warning,
            "status": budget.evaluate(p95_ms),
        }
    percent = error_rate * 100.0
    results["error_rate"] = {
        "value": percent,
        "unit": ERROR_RATE_BUDGET.unit.value,
        "target": ERROR_RATE_BUDGET.target,
        "warning": ERROR_RATE_BUDGET.warning,
        "status": ERROR_RATE_BUDGET.evaluate(percent),
    }
    return results
