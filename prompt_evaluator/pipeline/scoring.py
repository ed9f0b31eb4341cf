"""Score aggregation for evaluation runs."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Sequence


@dataclass(frozen=True)
class ItemOutcome:
    """The graded result of one dataset item within a run."""

    dataset_item_id: int
    score: int
    is_valid: bool
    failed: bool = False


def round_half_up(value: float) -> int:
    """Round to the nearest integer, with .5 going up (2.5 -> 3, not 2)."""
    return math.floor(value + 0.5)


def aggregate_score(scores: Sequence[int]) -> int:
    """Rounded mean of item scores; 0 for an empty run."""
    if not scores:
        return 0
    return round_half_up(sum(scores) / len(scores))


def accuracy(outcomes: Sequence[ItemOutcome]) -> int:
    """Percentage of items graded valid, rounded; 0 for an empty run."""
    if not outcomes:
        return 0
    valid = sum(1 for o in outcomes if o.is_valid)
    return round_half_up(100 * valid / len(outcomes))


def build_metrics(outcomes: Sequence[ItemOutcome]) -> dict[str, Any]:
    scores = [o.score for o in outcomes]
    mean = sum(scores) / len(scores) if scores else 0.0
    return {
        "accuracy": accuracy(outcomes),
        "item_count": len(outcomes),
        "valid_count": sum(1 for o in outcomes if o.is_valid),
        "failed_count": sum(1 for o in outcomes if o.failed),
        "average_score": round(mean, 2),
    }
