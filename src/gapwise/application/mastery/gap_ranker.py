"""
Gap ranker: orders measured concepts by remediation priority.

Concepts without attempts are not a measured gap; they are reported
separately as "uncovered" for diagnostic selection.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from gapwise.domain.constants import (
    CRITICAL_THRESHOLD,
    DEFAULT_TOP_GAPS,
    STRONG_THRESHOLD,
    WEAK_THRESHOLD,
)
from gapwise.domain.models import Concept, GapLevel, GapSummary, MasteryState


@dataclass(frozen=True)
class MasteryThresholds:
    critical: float = CRITICAL_THRESHOLD
    weak: float = WEAK_THRESHOLD
    strong: float = STRONG_THRESHOLD


class GapRanker:
    def __init__(self, thresholds: MasteryThresholds | None = None):
        self.thresholds = thresholds or MasteryThresholds()

    def level_for(self, score: float) -> GapLevel:
        if score < self.thresholds.critical:
            return GapLevel.CRITICAL
        if score < self.thresholds.weak:
            return GapLevel.WEAK
        if score >= self.thresholds.strong:
            return GapLevel.STRONG
        return GapLevel.DEVELOPING

    def rank(
        self,
        mastery_states: Iterable[MasteryState],
        backlog: Mapping[str, int] | None = None,
        names: Mapping[str, str] | None = None,
    ) -> list[GapSummary]:
        """
        Sort measured concepts, biggest gap first.

        Order: mastery ascending, then stability ascending, then review
        backlog (due items) descending, then concept id.
        """
        backlog = backlog or {}
        names = names or {}
        measured = [m for m in mastery_states if m.attempts > 0]
        measured.sort(
            key=lambda m: (
                m.mastery_score,
                m.stability,
                -backlog.get(m.concept_id, 0),
                m.concept_id,
            )
        )
        return [
            GapSummary(
                concept_id=m.concept_id,
                mastery_score=m.mastery_score,
                stability=m.stability,
                review_backlog=backlog.get(m.concept_id, 0),
                attempts=m.attempts,
                trend=m.trend,
                level=self.level_for(m.mastery_score),
                concept_name=names.get(m.concept_id),
            )
            for m in measured
        ]

    def top_gaps(
        self,
        mastery_states: Iterable[MasteryState],
        limit: int = DEFAULT_TOP_GAPS,
        backlog: Mapping[str, int] | None = None,
        names: Mapping[str, str] | None = None,
    ) -> list[GapSummary]:
        return self.rank(mastery_states, backlog=backlog, names=names)[: max(limit, 0)]

    def uncovered(
        self, concepts: Iterable[Concept], mastery_states: Iterable[MasteryState]
    ) -> list[Concept]:
        """Concepts with zero attempts, ordered by domain, name and id."""
        attempted = {m.concept_id for m in mastery_states if m.attempts > 0}
        pending = [c for c in concepts if c.id not in attempted]
        return sorted(pending, key=lambda c: (c.domain, c.name, c.id))
