"""
Attempt ingestion: the validated entry point for new evidence.

A submission is computed entirely in memory first (memory states for every
affected concept, then the recomputed mastery states) and only then written
inside one `repository.atomic()` block, so callers never see an attempt
without its derived state.
"""

import logging
from collections.abc import Callable
from datetime import datetime, timezone

from gapwise.application.id_service import new_attempt_id
from gapwise.application.mastery.estimator import MasteryEstimator
from gapwise.application.stability_model import StabilityModel
from gapwise.domain.constants import CONFIDENCE_MAX, CONFIDENCE_MIN
from gapwise.domain.errors import ComputationInvariantError, UnknownItemError, ValidationError
from gapwise.domain.models import Attempt, MasteryState, MemoryState
from gapwise.domain.ports import LearningRepository

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(moment: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def validate_attempt_input(item_id: str, confidence: int, time_spent_ms: int) -> None:
    """
    Reject malformed submissions before anything is read or written.

    Raises:
        ValidationError: On an empty item id, a confidence outside 1-5
            (booleans and floats included) or a negative duration.
    """
    if not isinstance(item_id, str) or not item_id.strip():
        raise ValidationError("item_id must be a non-empty string")
    if isinstance(confidence, bool) or not isinstance(confidence, int):
        raise ValidationError(f"confidence must be an integer, got {confidence!r}")
    if not CONFIDENCE_MIN <= confidence <= CONFIDENCE_MAX:
        raise ValidationError(
            f"confidence must be between {CONFIDENCE_MIN} and {CONFIDENCE_MAX}, got {confidence}"
        )
    if isinstance(time_spent_ms, bool) or not isinstance(time_spent_ms, int):
        raise ValidationError(f"time_spent_ms must be an integer, got {time_spent_ms!r}")
    if time_spent_ms < 0:
        raise ValidationError(f"time_spent_ms must be >= 0, got {time_spent_ms}")


class AttemptIngestion:
    """
    Validates attempts and applies them to the memory and mastery state.

    Not safe for concurrent use on its own; LearningService serializes calls.
    """

    def __init__(
        self,
        repository: LearningRepository,
        model: StabilityModel | None = None,
        estimator: MasteryEstimator | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._repo = repository
        self._model = model or StabilityModel()
        self._estimator = estimator or MasteryEstimator()
        self._clock = clock

    async def submit(
        self,
        item_id: str,
        session_id: str | None,
        user_answer: str,
        is_correct: bool,
        confidence: int,
        time_spent_ms: int,
        attempted_at: datetime | None = None,
        attempt_id: str | None = None,
    ) -> Attempt:
        """
        Record one attempt and update every affected concept.

        Args:
            attempted_at: Override for the timestamp (defaults to the clock).
            attempt_id: Caller-supplied id for idempotent retries.

        Returns:
            The stored Attempt. Re-submitting a known attempt id returns the
            stored attempt without applying it again.

        Raises:
            ValidationError: Malformed input.
            UnknownItemError: The item does not exist.
            ComputationInvariantError: A model produced an out-of-range value;
                nothing was written.
        """
        validate_attempt_input(item_id, confidence, time_spent_ms)

        if attempt_id is not None:
            existing = await self._repo.get_attempt(attempt_id)
            if existing is not None:
                logger.info(f"Attempt {attempt_id} already recorded; skipping")
                return existing

        item = await self._repo.get_item(item_id)
        if item is None:
            raise UnknownItemError(item_id)

        concept_ids = []
        for concept_id in item.concept_ids:
            if await self._repo.get_concept(concept_id) is not None:
                concept_ids.append(concept_id)
            else:
                logger.warning(f"Item {item_id} references deleted concept {concept_id}")

        attempt = Attempt(
            id=attempt_id or new_attempt_id(),
            item_id=item_id,
            concept_ids=tuple(concept_ids),
            user_answer=user_answer,
            is_correct=bool(is_correct),
            confidence=confidence,
            time_spent_ms=time_spent_ms,
            timestamp=as_utc(attempted_at) if attempted_at else self._clock(),
            session_id=session_id,
        )

        try:
            memory_updates, mastery_updates = await self._derive(attempt)
        except ComputationInvariantError as e:
            logger.error(f"Rejected attempt on {item_id}, previous state kept: {e}")
            raise

        async with self._repo.atomic():
            await self._repo.append_attempt(attempt)
            for state in memory_updates:
                await self._repo.put_memory_state(state)
            for mastery in mastery_updates:
                await self._repo.put_mastery_state(mastery)

        logger.info(
            f"Recorded attempt {attempt.id} on {item_id} "
            f"(correct={attempt.is_correct}, concepts={len(attempt.concept_ids)})"
        )
        return attempt

    async def _derive(self, attempt: Attempt) -> tuple[list[MemoryState], list[MasteryState]]:
        memory_updates: list[MemoryState] = []
        mastery_updates: list[MasteryState] = []

        for concept_id in attempt.concept_ids:
            history = await self._repo.get_attempts_for_concept(concept_id)
            previous = await self._repo.get_memory_state(concept_id, attempt.item_id)
            if previous is None:
                state = self._model.initialize_state(attempt, concept_id)
            elif attempt.timestamp <= previous.last_reviewed:
                # Back-dated: fold the pair's log in time order, as a rebuild would.
                item_history = [a for a in history if a.item_id == attempt.item_id]
                state = self._model.replay([*item_history, attempt], concept_id)
            else:
                state = self._model.update_state(previous, attempt)
            memory_updates.append(state)

            states = [
                s
                for s in await self._repo.get_memory_states_for_concept(concept_id)
                if s.item_id != attempt.item_id
            ]
            mastery_updates.append(
                self._estimator.recompute(concept_id, [*history, attempt], [*states, state])
            )

        return memory_updates, mastery_updates
