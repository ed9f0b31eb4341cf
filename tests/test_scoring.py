"""Tests for score aggregation."""

from __future__ import annotations

from prompt_evaluator.pipeline.scoring import (
    ItemOutcome,
    accuracy,
    aggregate_score,
    build_metrics,
    round_half_up,
)


def _outcome(score: int, is_valid: bool, failed: bool = False, item_id: int = 1) -> ItemOutcome:
    return ItemOutcome(dataset_item_id=item_id, score=score, is_valid=is_valid, failed=failed)


class TestRoundHalfUp:
    def test_half_rounds_up(self):
        assert round_half_up(2.5) == 3
        assert round_half_up(0.5) == 1

    def test_below_half_rounds_down(self):
        assert round_half_up(42.49) == 42

    def test_integer_unchanged(self):
        assert round_half_up(7.0) == 7


class TestAggregateScore:
    def test_empty_is_zero(self):
        assert aggregate_score([]) == 0

    def test_mean_rounded(self):
        assert aggregate_score([90, 0]) == 45
        assert aggregate_score([80, 85]) == 83  # 82.5 rounds up

    def test_single(self):
        assert aggregate_score([67]) == 67


class TestAccuracy:
    def test_empty_is_zero(self):
        assert accuracy([]) == 0

    def test_percentage_of_valid(self):
        outcomes = [_outcome(90, True), _outcome(10, False), _outcome(80, True)]
        assert accuracy(outcomes) == 67


class TestBuildMetrics:
    def test_counts(self):
        outcomes = [
            _outcome(90, True, item_id=1),
            _outcome(0, False, failed=True, item_id=2),
        ]
        metrics = build_metrics(outcomes)
        assert metrics == {
            "accuracy": 50,
            "item_count": 2,
            "valid_count": 1,
            "failed_count": 1,
            "average_score": 45.0,
        }

    def test_empty_run(self):
        metrics = build_metrics([])
        assert metrics["item_count"] == 0
        assert metrics["accuracy"] == 0
        assert metrics["average_score"] == 0.0
