"""
FSRS-style stability model.

Maps an attempt history for one (concept, item) pair to a MemoryState and
answers retrievability / due queries. This is a pure computation module with
no I/O and no randomness: the same attempt sequence always yields the same state.
"""

import math
from dataclasses import dataclass, replace
from datetime import datetime, timedelta

from gapwise.domain.constants import (
    DEFAULT_DESIRED_RETENTION,
    DIFFICULTY_MAX,
    DIFFICULTY_MIN,
    FSRS_DEFAULT_WEIGHTS,
    MAX_LAPSE_FRACTION,
    MAXIMUM_INTERVAL_DAYS,
    REFERENCE_RETRIEVABILITY,
    SECONDS_PER_DAY,
    STABILITY_MIN,
)
from gapwise.domain.errors import ComputationInvariantError
from gapwise.domain.models import Attempt, MemoryState, Rating


@dataclass(frozen=True)
class FsrsParameters:
    """
    Tunable constants for the scheduler.

    Attributes:
        weights: The 17 FSRS weights (see domain.constants for the layout).
        desired_retention: Retrievability at which an item becomes due.
        maximum_interval_days: Upper bound for any scheduled interval.
    """

    weights: tuple[float, ...] = FSRS_DEFAULT_WEIGHTS
    desired_retention: float = DEFAULT_DESIRED_RETENTION
    maximum_interval_days: int = MAXIMUM_INTERVAL_DAYS


def days_between(start: datetime, end: datetime) -> float:
    """Elapsed days from start to end, clamped at 0 for clock skew."""
    return max(0.0, (end - start).total_seconds() / SECONDS_PER_DAY)


class StabilityModel:
    """
    Computes memory stability, difficulty and retrievability.

    Stateless and side-effect free.
    """

    def __init__(self, params: FsrsParameters | None = None):
        self.params = params or FsrsParameters()
        self._w = self.params.weights

    # ---------- Queries ----------

    def rating_for(self, attempt: Attempt) -> Rating:
        """
        Derive a recall rating from correctness and confidence.

        Wrong answers are AGAIN; correct answers map confidence 1-2 to HARD,
        3 to GOOD and 4-5 to EASY.
        """
        if not attempt.is_correct:
            return Rating.AGAIN
        return Rating(min(max(attempt.confidence, Rating.HARD), Rating.EASY))

    def retrievability_at(self, state: MemoryState, as_of: datetime) -> float:
        """
        Probability of recall at `as_of`.

        R = 0.9^(t/S) where t = days since last review, S = stability.
        """
        return self._forgetting_curve(days_between(state.last_reviewed, as_of), state.stability)

    def is_due(self, state: MemoryState, as_of: datetime) -> bool:
        return as_of >= state.due_at

    def next_interval_days(self, stability: float) -> float:
        """Days until retrievability decays to the desired retention."""
        interval = stability * (
            math.log(self.params.desired_retention) / math.log(REFERENCE_RETRIEVABILITY)
        )
        return min(interval, float(self.params.maximum_interval_days))

    # ---------- Transitions ----------

    def initialize_state(self, attempt: Attempt, concept_id: str) -> MemoryState:
        """Build the state for the first exposure of a (concept, item) pair."""
        rating = self.rating_for(attempt)
        stability = self._initial_stability(rating)
        difficulty = self._initial_difficulty(rating)
        return self._checked(
            MemoryState(
                concept_id=concept_id,
                item_id=attempt.item_id,
                stability=stability,
                difficulty=difficulty,
                last_reviewed=attempt.timestamp,
                due_at=self._due_at(attempt.timestamp, stability),
                reps=1,
                lapses=1 if rating == Rating.AGAIN else 0,
            )
        )

    def update_state(self, state: MemoryState, attempt: Attempt) -> MemoryState:
        """
        Apply one more attempt to an existing state.

        Success grows stability more when retrievability was low at review
        time. Failure shrinks stability to a fraction of its previous value,
        never below STABILITY_MIN.
        """
        rating = self.rating_for(attempt)
        elapsed = days_between(state.last_reviewed, attempt.timestamp)
        retrievability = self._forgetting_curve(elapsed, state.stability)

        difficulty = self._next_difficulty(state.difficulty, rating)
        if rating == Rating.AGAIN:
            stability = self._lapse_stability(state.difficulty, state.stability, retrievability)
        else:
            stability = self._recall_stability(
                state.difficulty, state.stability, retrievability, rating
            )

        # Out-of-order attempts never move last_reviewed backwards.
        last_reviewed = max(state.last_reviewed, attempt.timestamp)
        return self._checked(
            replace(
                state,
                stability=stability,
                difficulty=difficulty,
                last_reviewed=last_reviewed,
                due_at=self._due_at(last_reviewed, stability),
                reps=state.reps + 1,
                lapses=state.lapses + (1 if rating == Rating.AGAIN else 0),
            )
        )

    def replay(self, attempts: list[Attempt], concept_id: str) -> MemoryState | None:
        """Rebuild a state from scratch by folding attempts in timestamp order."""
        state: MemoryState | None = None
        for attempt in sorted(attempts, key=lambda a: (a.timestamp, a.id)):
            if state is None:
                state = self.initialize_state(attempt, concept_id)
            else:
                state = self.update_state(state, attempt)
        return state

    # ---------- Formulas ----------

    def _forgetting_curve(self, elapsed_days: float, stability: float) -> float:
        if stability <= 0 or not math.isfinite(stability):
            raise ComputationInvariantError(f"Stability must be positive, got {stability}")
        return REFERENCE_RETRIEVABILITY ** (elapsed_days / stability)

    def _initial_stability(self, rating: Rating) -> float:
        return max(self._w[rating - 1], 0.1)

    def _initial_difficulty(self, rating: Rating) -> float:
        return self._constrain_difficulty(self._w[4] - self._w[5] * (rating - 3))

    def _next_difficulty(self, difficulty: float, rating: Rating) -> float:
        next_d = difficulty - self._w[6] * (rating - 3)
        # Mean reversion toward the initial GOOD difficulty.
        reverted = self._w[7] * self._w[4] + (1.0 - self._w[7]) * next_d
        return self._constrain_difficulty(reverted)

    def _recall_stability(
        self, difficulty: float, stability: float, retrievability: float, rating: Rating
    ) -> float:
        hard_penalty = self._w[15] if rating == Rating.HARD else 1.0
        easy_bonus = self._w[16] if rating == Rating.EASY else 1.0
        growth = (
            math.exp(self._w[8])
            * (11.0 - difficulty)
            * stability ** (-self._w[9])
            * (math.exp(self._w[10] * (1.0 - retrievability)) - 1.0)
            * hard_penalty
            * easy_bonus
        )
        return max(stability * (1.0 + growth), STABILITY_MIN)

    def _lapse_stability(self, difficulty: float, stability: float, retrievability: float) -> float:
        lapse = (
            self._w[11]
            * difficulty ** (-self._w[12])
            * ((stability + 1.0) ** self._w[13] - 1.0)
            * math.exp(self._w[14] * (1.0 - retrievability))
        )
        # Strictly shrinks above the floor; a state at the floor stays there.
        return max(min(lapse, stability * MAX_LAPSE_FRACTION), STABILITY_MIN)

    def _constrain_difficulty(self, difficulty: float) -> float:
        return min(max(difficulty, DIFFICULTY_MIN), DIFFICULTY_MAX)

    def _due_at(self, last_reviewed: datetime, stability: float) -> datetime:
        return last_reviewed + timedelta(days=self.next_interval_days(stability))

    def _checked(self, state: MemoryState) -> MemoryState:
        if not math.isfinite(state.stability) or state.stability <= 0:
            raise ComputationInvariantError(
                f"Stability out of range for ({state.concept_id}, {state.item_id}): "
                f"{state.stability}"
            )
        if not DIFFICULTY_MIN <= state.difficulty <= DIFFICULTY_MAX:
            raise ComputationInvariantError(
                f"Difficulty out of range for ({state.concept_id}, {state.item_id}): "
                f"{state.difficulty}"
            )
        return state


__all__ = ["FsrsParameters", "StabilityModel", "days_between"]
