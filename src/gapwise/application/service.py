"""
Learning Service: Application layer orchestrator.

Exposes the inbound calls of the core (submit an attempt, read mastery,
build the daily plan, list the top gaps) over an injected repository.
"""

import asyncio
import logging
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import datetime

from gapwise.application.config import AppConfig
from gapwise.application.id_service import new_session_id
from gapwise.application.ingestion import AttemptIngestion, as_utc, utc_now
from gapwise.application.mastery.estimator import MasteryEstimator, daily_performance
from gapwise.application.mastery.gap_ranker import GapRanker, MasteryThresholds
from gapwise.application.plan_builder import build_plan
from gapwise.application.stability_model import FsrsParameters, StabilityModel
from gapwise.domain.errors import ComputationInvariantError, NotFoundError, ValidationError
from gapwise.domain.models import (
    Attempt,
    Concept,
    DailyPlan,
    GapSummary,
    Item,
    MasteryState,
    MemoryState,
    PerformanceTrend,
    PlanBudget,
    SessionType,
    StudySession,
)
from gapwise.domain.ports import LearningRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SubmissionOutcome:
    """
    Typed result of a submission.

    Exactly one of `attempt` and `error` is set.
    """

    attempt: Attempt | None = None
    error: ValidationError | NotFoundError | ComputationInvariantError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class _Snapshot:
    concepts: list[Concept]
    items: list[Item]
    memory_states: list[MemoryState]
    mastery_states: list[MasteryState]


class LearningService:
    """
    Application service for one learner profile.

    Follows Dependency Inversion: depends on the LearningRepository
    abstraction, not concrete adapter implementations. One lock per
    instance serializes submissions; reads snapshot state under the same
    lock so they never observe a half-applied attempt.
    """

    def __init__(
        self,
        repository: LearningRepository,
        config: AppConfig | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Args:
            repository: The repository (port) holding catalog, log and derived state.
            config: Settings; defaults are used if not provided.
            clock: Source of "now" for submissions and default plan dates.
        """
        self._repo = repository
        self.config = config or AppConfig.model_construct()
        self._clock = clock
        self._lock = asyncio.Lock()

        self.model = StabilityModel(FsrsParameters(desired_retention=self.config.desired_retention))
        self.estimator = MasteryEstimator()
        self.ranker = GapRanker(
            MasteryThresholds(
                critical=self.config.critical_threshold,
                weak=self.config.weak_threshold,
                strong=self.config.strong_threshold,
            )
        )
        self.ingestion = AttemptIngestion(repository, self.model, self.estimator, clock)

    # ---------- Commands ----------

    async def submit_attempt(
        self,
        item_id: str,
        session_id: str | None,
        user_answer: str,
        is_correct: bool,
        confidence: int,
        time_spent_ms: int,
        attempted_at: datetime | None = None,
        attempt_id: str | None = None,
    ) -> SubmissionOutcome:
        """
        Record an attempt.

        Validation, not-found and invariant failures come back as
        `SubmissionOutcome.error`; in every failure case nothing was written.
        """
        async with self._lock:
            try:
                attempt = await self.ingestion.submit(
                    item_id,
                    session_id,
                    user_answer,
                    is_correct,
                    confidence,
                    time_spent_ms,
                    attempted_at=attempted_at,
                    attempt_id=attempt_id,
                )
            except (ValidationError, NotFoundError, ComputationInvariantError) as e:
                logger.warning(f"Attempt on {item_id!r} rejected: {e}")
                return SubmissionOutcome(error=e)
        return SubmissionOutcome(attempt=attempt)

    async def rebuild_mastery(self) -> list[MasteryState]:
        """
        Recompute every concept's memory and mastery state from the attempt log.

        Concepts without attempts are skipped. Concepts whose recomputation
        violates an invariant keep their cached state.
        """
        async with self._lock:
            concepts = await self._repo.get_all_concepts()
            rebuilt = []
            for concept in concepts:
                attempts = await self._repo.get_attempts_for_concept(concept.id)
                if not attempts:
                    continue
                by_item: dict[str, list[Attempt]] = defaultdict(list)
                for attempt in attempts:
                    by_item[attempt.item_id].append(attempt)
                try:
                    states = [
                        self.model.replay(by_item[item_id], concept.id)
                        for item_id in sorted(by_item)
                    ]
                    mastery = self.estimator.recompute(concept.id, attempts, states)
                except ComputationInvariantError as e:
                    logger.error(f"Keeping cached mastery for {concept.id}: {e}")
                    continue
                async with self._repo.atomic():
                    for state in states:
                        await self._repo.put_memory_state(state)
                    await self._repo.put_mastery_state(mastery)
                rebuilt.append(mastery)
            return rebuilt

    async def create_session(
        self,
        session_type: SessionType | str = SessionType.MIXED,
        total_items: int = 0,
        concept_id: str | None = None,
        time_limit_ms: int | None = None,
    ) -> StudySession:
        """
        Start a study session that attempts can be tagged with.

        Raises:
            ValidationError: Unknown type, negative size, or variant fields that
                do not match the type (focused needs a concept, exam a time limit).
            NotFoundError: The focus concept does not exist.
        """
        try:
            session_type = SessionType(session_type)
        except ValueError:
            raise ValidationError(f"Unknown session type: {session_type!r}") from None
        if isinstance(total_items, bool) or not isinstance(total_items, int) or total_items < 0:
            raise ValidationError(
                f"total_items must be a non-negative integer, got {total_items!r}"
            )
        if (session_type == SessionType.FOCUSED) != (concept_id is not None):
            raise ValidationError("concept_id is required for focused sessions and only for them")
        if (session_type == SessionType.EXAM) != (time_limit_ms is not None):
            raise ValidationError("time_limit_ms is required for exams and only for them")
        if time_limit_ms is not None and time_limit_ms <= 0:
            raise ValidationError(f"time_limit_ms must be positive, got {time_limit_ms}")

        async with self._lock:
            if concept_id is not None and await self._repo.get_concept(concept_id) is None:
                raise NotFoundError(f"Unknown concept id: {concept_id!r}")
            session = StudySession(
                id=new_session_id(),
                session_type=session_type,
                started_at=self._clock(),
                total_items=total_items,
                concept_id=concept_id,
                time_limit_ms=time_limit_ms,
            )
            await self._repo.put_session(session)
        logger.info(f"Started {session_type.value} session {session.id}")
        return session

    async def complete_session(self, session_id: str) -> StudySession:
        """
        Close a session, summarising the attempts tagged with its id.

        Raises:
            NotFoundError: Unknown session.
            ValidationError: The session was already completed.
        """
        async with self._lock:
            session = await self._repo.get_session(session_id)
            if session is None:
                raise NotFoundError(f"Unknown session id: {session_id!r}")
            if session.completed_at is not None:
                raise ValidationError(f"Session {session_id} is already completed")

            attempts = [
                a for a in await self._repo.get_all_attempts() if a.session_id == session_id
            ]
            total = len(attempts)
            session = replace(
                session,
                completed_at=self._clock(),
                completed_items=total,
                accuracy=sum(a.is_correct for a in attempts) / total if total else 0.0,
                average_confidence=sum(a.confidence for a in attempts) / total if total else 0.0,
            )
            await self._repo.put_session(session)
        logger.info(f"Completed session {session_id} with {total} attempts")
        return session

    async def clear_all(self) -> None:
        async with self._lock:
            await self._repo.clear_all()
            logger.info("Cleared all learning data")

    # ---------- Queries ----------

    async def get_concept_mastery(self) -> list[MasteryState]:
        """Mastery for every concept; unattempted concepts get a zero state."""
        snapshot = await self._snapshot()
        cached = {m.concept_id: m for m in snapshot.mastery_states}
        return [cached.get(c.id) or MasteryState(concept_id=c.id) for c in snapshot.concepts]

    async def get_top_gaps(
        self, limit: int | None = None, as_of: datetime | None = None
    ) -> list[GapSummary]:
        snapshot = await self._snapshot()
        as_of = as_utc(as_of) if as_of else self._clock()
        live = {c.id for c in snapshot.concepts}
        return self.ranker.top_gaps(
            [m for m in snapshot.mastery_states if m.concept_id in live],
            limit=self.config.top_gaps_limit if limit is None else limit,
            backlog=self._backlog(snapshot.memory_states, as_of),
            names={c.id: c.name for c in snapshot.concepts},
        )

    async def get_diagnostic_candidates(self) -> list[str]:
        """Ids of concepts with fewer attempts than the coverage threshold."""
        snapshot = await self._snapshot()
        attempts = {m.concept_id: m.attempts for m in snapshot.mastery_states}
        return [
            c.id
            for c in snapshot.concepts
            if attempts.get(c.id, 0) < self.config.coverage_threshold
        ]

    async def get_daily_plan(
        self, as_of: datetime | None = None, budget: PlanBudget | None = None
    ) -> DailyPlan:
        snapshot = await self._snapshot()
        as_of = as_utc(as_of) if as_of else self._clock()
        budget = budget or PlanBudget(
            max_items=self.config.daily_item_budget,
            max_minutes=self.config.daily_time_budget_minutes,
            review_share=self.config.review_share,
        )
        return build_plan(
            as_of,
            snapshot.memory_states,
            snapshot.mastery_states,
            self._items_by_concept(snapshot.items),
            budget,
            snapshot.concepts,
            coverage_threshold=self.config.coverage_threshold,
            model=self.model,
            ranker=self.ranker,
        )

    async def get_due_count(self, as_of: datetime | None = None) -> int:
        """Live items that are due for review or have never been attempted."""
        snapshot = await self._snapshot()
        as_of = as_utc(as_of) if as_of else self._clock()
        states_by_item: dict[str, list[MemoryState]] = defaultdict(list)
        for state in snapshot.memory_states:
            states_by_item[state.item_id].append(state)
        return sum(
            1
            for item in snapshot.items
            if not states_by_item[item.id]
            or any(self.model.is_due(s, as_of) for s in states_by_item[item.id])
        )

    async def get_next_review_item(self, as_of: datetime | None = None) -> Item | None:
        """The first item of today's plan, if any."""
        plan = await self.get_daily_plan(as_of)
        if not plan.items:
            return None
        return await self._repo.get_item(plan.items[0].item_id)

    async def get_all_sessions(self) -> list[StudySession]:
        async with self._lock:
            return await self._repo.get_all_sessions()

    async def get_attempts_for_item(self, item_id: str) -> list[Attempt]:
        """The item's attempt log, oldest first. Deleted items keep their history."""
        async with self._lock:
            return await self._repo.get_attempts_for_item(item_id)

    async def get_performance_trends(self) -> list[PerformanceTrend]:
        async with self._lock:
            attempts = await self._repo.get_all_attempts()
        return daily_performance(attempts)

    # ---------- Helpers ----------

    async def _snapshot(self) -> _Snapshot:
        async with self._lock:
            return _Snapshot(
                concepts=await self._repo.get_all_concepts(),
                items=await self._repo.get_all_items(),
                memory_states=await self._repo.get_all_memory_states(),
                mastery_states=await self._repo.get_all_mastery_states(),
            )

    def _backlog(self, memory_states: list[MemoryState], as_of: datetime) -> dict[str, int]:
        backlog: dict[str, int] = defaultdict(int)
        for state in memory_states:
            if self.model.is_due(state, as_of):
                backlog[state.concept_id] += 1
        return dict(backlog)

    @staticmethod
    def _items_by_concept(items: list[Item]) -> dict[str, list[Item]]:
        grouped: dict[str, list[Item]] = defaultdict(list)
        for item in items:
            for concept_id in item.concept_ids:
                grouped[concept_id].append(item)
        return dict(grouped)
