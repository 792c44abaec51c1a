"""Tests for experiment lifecycle rules and winner evaluation."""

from datetime import datetime

import pytest

from modelrouter.models.experiment import Experiment, ExperimentStatus, VariantStats
from modelrouter.services.experiments import InvalidTransition, determine_winner, transition

NOW = datetime(2025, 6, 1, 12, 0, 0)


def _stats(calls: int, errors_pct: float = 0.0, cost: float = 1.0, avg_ms: float | None = 500.0):
    return VariantStats(
        model_id="m", calls=calls, cost_usd=cost, avg_response_ms=avg_ms, error_rate=errors_pct,
    )


def _experiment(status: str = ExperimentStatus.DRAFT) -> Experiment:
    return Experiment(
        name="exp", category="opus", model_a="claude-opus-4-1", model_b="claude-opus-4",
        status=status,
    )


def test_insufficient_data():
    winner, reason = determine_winner(_stats(19), _stats(100))
    assert winner is None
    assert "Insufficient data" in reason


def test_error_rate_decides_first():
    # B is cheaper, but its error rate is more than a point worse
    winner, reason = determine_winner(_stats(50, errors_pct=1.0), _stats(50, errors_pct=2.5, cost=0.1))
    assert winner == "model_a"
    assert "error rate" in reason


def test_cost_per_call_breaks_close_error_rates():
    winner, reason = determine_winner(_stats(50, errors_pct=1.0), _stats(50, errors_pct=1.5, cost=0.8))
    assert winner == "model_b"
    assert "cost" in reason


def test_latency_breaks_equal_cost():
    winner, reason = determine_winner(_stats(40, avg_ms=1200.0), _stats(40, avg_ms=800.0))
    assert winner == "model_b"
    assert "Faster" in reason


def test_tie_when_nothing_differs_enough():
    winner, _ = determine_winner(_stats(40, avg_ms=1000.0), _stats(40, cost=1.05, avg_ms=950.0))
    assert winner == "tie"


def test_tie_without_latency_samples():
    winner, _ = determine_winner(_stats(40, avg_ms=None), _stats(40, avg_ms=100.0))
    assert winner == "tie"


def test_start_stamps_started_at_once():
    exp = _experiment()
    transition(exp, ExperimentStatus.RUNNING, NOW)
    assert exp.status == ExperimentStatus.RUNNING
    assert exp.started_at == NOW

    transition(exp, ExperimentStatus.PAUSED, NOW)
    later = datetime(2025, 6, 2)
    transition(exp, ExperimentStatus.RUNNING, later)
    assert exp.started_at == NOW


def test_complete_sets_winner_and_end():
    exp = _experiment(ExperimentStatus.PAUSED)
    transition(exp, ExperimentStatus.COMPLETED, NOW)
    assert exp.ended_at == NOW
    assert exp.winner is None
    assert exp.winner_reason.startswith("Insufficient data")


@pytest.mark.parametrize("current,requested", [
    (ExperimentStatus.DRAFT, ExperimentStatus.COMPLETED),
    (ExperimentStatus.DRAFT, ExperimentStatus.PAUSED),
    (ExperimentStatus.COMPLETED, ExperimentStatus.RUNNING),
    (ExperimentStatus.RUNNING, ExperimentStatus.DRAFT),
])
def test_illegal_transitions(current, requested):
    exp = _experiment(current)
    with pytest.raises(InvalidTransition):
        transition(exp, requested, NOW)
    assert exp.status == current
