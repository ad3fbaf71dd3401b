"""
Mastery estimator for deriving per-concept mastery from the attempt log.

This is a pure computation module with no I/O.
"""

import math
from collections import defaultdict
from collections.abc import Iterable, Sequence

from gapwise.application.stability_model import days_between
from gapwise.domain.constants import (
    CONFIDENCE_MAX,
    CONFIDENCE_MIN,
    RECENCY_HALF_LIFE_DAYS,
    STABILITY_SATURATION_DAYS,
    TREND_NOISE_THRESHOLD,
    TREND_WINDOW,
    WEIGHT_ACCURACY,
    WEIGHT_RECENCY,
    WEIGHT_STABILITY,
)
from gapwise.domain.errors import ComputationInvariantError
from gapwise.domain.models import Attempt, MasteryState, MemoryState, PerformanceTrend, Trend


def confidence_probability(confidence: int) -> float:
    """Map a 1-5 confidence rating linearly onto [0, 1]."""
    return (confidence - CONFIDENCE_MIN) / (CONFIDENCE_MAX - CONFIDENCE_MIN)


class MasteryEstimator:
    """
    Computes MasteryState records from attempts and memory states.

    Stateless and side-effect free; recompute() is idempotent.
    """

    def __init__(
        self,
        half_life_days: float = RECENCY_HALF_LIFE_DAYS,
        trend_window: int = TREND_WINDOW,
        trend_threshold: float = TREND_NOISE_THRESHOLD,
    ):
        self.half_life_days = half_life_days
        self.trend_window = trend_window
        self.trend_threshold = trend_threshold

    def recompute(
        self,
        concept_id: str,
        attempts: Iterable[Attempt],
        memory_states: Iterable[MemoryState],
    ) -> MasteryState:
        """
        Derive the mastery state of a concept.

        Args:
            concept_id: The concept being scored.
            attempts: Every attempt that targeted the concept, in any order.
            memory_states: The concept's (concept, item) memory states.

        Returns:
            A MasteryState; a zero state if there are no attempts.
        """
        history = sorted(attempts, key=lambda a: (a.timestamp, a.id))
        if not history:
            return MasteryState(concept_id=concept_id)

        states = sorted(memory_states, key=lambda s: s.item_id)
        stability = self._weighted_stability(states)

        total = len(history)
        correct = sum(1 for a in history if a.is_correct)
        avg_confidence = sum(a.confidence for a in history) / total
        brier = self._brier_score(history)
        score = self._score(history, stability)

        state = MasteryState(
            concept_id=concept_id,
            mastery_score=score,
            attempts=total,
            correct=correct,
            avg_confidence=round(avg_confidence, 4),
            brier_score=round(brier, 6),
            trend=self._trend(history, stability),
            stability=round(stability, 6),
            last_attempted=history[-1].timestamp,
        )
        return self._checked(state)

    # ---------- Components ----------

    def _brier_score(self, history: Sequence[Attempt]) -> float:
        """
        Mean squared gap between stated confidence and outcome.

        Lower is better calibrated.
        """
        total = 0.0
        for attempt in history:
            outcome = 1.0 if attempt.is_correct else 0.0
            total += (confidence_probability(attempt.confidence) - outcome) ** 2
        return total / len(history)

    def _weighted_stability(self, states: Sequence[MemoryState]) -> float:
        """Attempt-weighted mean stability of the concept's memory states."""
        weight = sum(s.reps for s in states)
        if weight == 0:
            return 0.0
        return sum(s.stability * s.reps for s in states) / weight

    def _recency_accuracy(self, history: Sequence[Attempt]) -> float:
        """Accuracy with exponential recency weights relative to the latest attempt."""
        reference = history[-1].timestamp
        weighted_correct = 0.0
        weight_sum = 0.0
        for attempt in history:
            age = days_between(attempt.timestamp, reference)
            weight = 0.5 ** (age / self.half_life_days)
            weight_sum += weight
            if attempt.is_correct:
                weighted_correct += weight
        return weighted_correct / weight_sum

    def _score(self, history: Sequence[Attempt], stability: float) -> float:
        accuracy = sum(1 for a in history if a.is_correct) / len(history)
        stability_factor = stability / (stability + STABILITY_SATURATION_DAYS)
        blended = 100.0 * (
            WEIGHT_ACCURACY * accuracy
            + WEIGHT_RECENCY * self._recency_accuracy(history)
            + WEIGHT_STABILITY * stability_factor
        )
        return round(min(max(blended, 0.0), 100.0), 2)

    def _trend(self, history: Sequence[Attempt], stability: float) -> Trend:
        """Compare the latest window of attempts with the window before it."""
        recent = history[-self.trend_window :]
        previous = history[-2 * self.trend_window : -self.trend_window]
        if not previous:
            return Trend.STABLE

        delta = self._score(recent, stability) - self._score(previous, stability)
        if delta > self.trend_threshold:
            return Trend.UP
        if delta < -self.trend_threshold:
            return Trend.DOWN
        return Trend.STABLE

    def _checked(self, state: MasteryState) -> MasteryState:
        if not (math.isfinite(state.mastery_score) and 0.0 <= state.mastery_score <= 100.0):
            raise ComputationInvariantError(
                f"Mastery score out of range for {state.concept_id}: {state.mastery_score}"
            )
        if not (math.isfinite(state.brier_score) and 0.0 <= state.brier_score <= 1.0):
            raise ComputationInvariantError(
                f"Brier score out of range for {state.concept_id}: {state.brier_score}"
            )
        if not math.isfinite(state.stability) or state.stability < 0:
            raise ComputationInvariantError(
                f"Aggregate stability out of range for {state.concept_id}: {state.stability}"
            )
        return state


def daily_performance(attempts: Iterable[Attempt]) -> list[PerformanceTrend]:
    """Group attempts by UTC calendar day into accuracy / volume / confidence points."""
    by_day: dict = defaultdict(list)
    for attempt in attempts:
        by_day[attempt.timestamp.date()].append(attempt)

    trends = []
    for day in sorted(by_day):
        group = by_day[day]
        trends.append(
            PerformanceTrend(
                date=day,
                accuracy=round(sum(1 for a in group if a.is_correct) / len(group), 4),
                items_completed=len(group),
                avg_confidence=round(sum(a.confidence for a in group) / len(group), 4),
            )
        )
    return trends
