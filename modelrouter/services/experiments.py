"""Experiment lifecycle and winner evaluation."""

from __future__ import annotations

import logging
from datetime import datetime

from modelrouter.models.experiment import (
    STATUS_TRANSITIONS,
    Experiment,
    ExperimentStatus,
    ExperimentVariant,
    VariantStats,
)

logger = logging.getLogger(__name__)

# Minimum calls per variant before a winner is declared
MIN_CALLS_PER_VARIANT = 20
# Error-rate gap (percentage points) that decides on its own
ERROR_RATE_MARGIN = 1.0
# Relative gap for cost-per-call and response time
RELATIVE_MARGIN = 0.10


class InvalidTransition(Exception):
    def __init__(self, current: str, requested: str) -> None:
        super().__init__(f"Cannot move experiment from '{current}' to '{requested}'")
        self.current = current
        self.requested = requested


def transition(exp: Experiment, status: ExperimentStatus, now: datetime) -> None:
    """Move an experiment along its lifecycle, stamping start/end and the winner."""
    if status not in STATUS_TRANSITIONS.get(exp.status, set()):
        raise InvalidTransition(exp.status, status)

    exp.status = status
    exp.updated_at = now
    if status == ExperimentStatus.RUNNING and exp.started_at is None:
        exp.started_at = now
    elif status == ExperimentStatus.COMPLETED:
        exp.ended_at = now
        exp.winner, exp.winner_reason = determine_winner(
            exp.variant_stats(ExperimentVariant.MODEL_A),
            exp.variant_stats(ExperimentVariant.MODEL_B),
        )
        logger.info("Experiment %s completed: winner=%s (%s)", exp.name, exp.winner, exp.winner_reason)


def _relative_gap(a: float, b: float) -> float:
    high = max(a, b)
    return (high - min(a, b)) / high if high else 0.0


def determine_winner(a: VariantStats, b: VariantStats) -> tuple[str | None, str]:
    """Compare two variants: error rate, then cost per call, then latency."""
    if a.calls < MIN_CALLS_PER_VARIANT or b.calls < MIN_CALLS_PER_VARIANT:
        return None, (
            f"Insufficient data: need {MIN_CALLS_PER_VARIANT} calls per variant "
            f"(model_a={a.calls}, model_b={b.calls})"
        )

    a_err, b_err = a.error_rate or 0.0, b.error_rate or 0.0
    if abs(a_err - b_err) > ERROR_RATE_MARGIN:
        winner = ExperimentVariant.MODEL_A if a_err < b_err else ExperimentVariant.MODEL_B
        return winner.value, f"Lower error rate ({min(a_err, b_err):.2f}% vs {max(a_err, b_err):.2f}%)"

    a_cpc, b_cpc = a.cost_usd / a.calls, b.cost_usd / b.calls
    if _relative_gap(a_cpc, b_cpc) > RELATIVE_MARGIN:
        winner = ExperimentVariant.MODEL_A if a_cpc < b_cpc else ExperimentVariant.MODEL_B
        return winner.value, f"Lower cost per call (${min(a_cpc, b_cpc):.4f} vs ${max(a_cpc, b_cpc):.4f})"

    if a.avg_response_ms is not None and b.avg_response_ms is not None:
        if _relative_gap(a.avg_response_ms, b.avg_response_ms) > RELATIVE_MARGIN:
            faster_a = a.avg_response_ms < b.avg_response_ms
            winner = ExperimentVariant.MODEL_A if faster_a else ExperimentVariant.MODEL_B
            fast, slow = sorted((a.avg_response_ms, b.avg_response_ms))
            return winner.value, f"Faster responses ({fast:.0f}ms vs {slow:.0f}ms)"

    return "tie", "No significant difference between variants"
