"""
Daily plan builder for time-boxed study sessions.

Builds an ordered plan by:
1. Collecting due reviews, most at-risk of being forgotten first
2. Collecting diagnostic items for uncovered and thinly covered concepts,
   round-robin across domains
3. Filling greedily within the item and time budget
"""

import logging
import math
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime

from gapwise.application.mastery.gap_ranker import GapRanker
from gapwise.application.stability_model import StabilityModel
from gapwise.domain.constants import DEFAULT_COVERAGE_THRESHOLD, DIAGNOSTIC_TARGET_DIFFICULTY
from gapwise.domain.errors import ValidationError
from gapwise.domain.models import (
    Concept,
    DailyPlan,
    Item,
    ItemType,
    MasteryState,
    MemoryState,
    PlanBudget,
    PlannedItem,
    PlanReason,
)

logger = logging.getLogger(__name__)

ITEM_MINUTES: dict[ItemType, float] = {
    ItemType.MCQ: 1.0,
    ItemType.CLOZE: 1.0,
    ItemType.FREE_RECALL: 1.5,
    ItemType.CALC: 3.0,
    ItemType.CASE: 4.0,
}

_EPSILON = 1e-9


def estimated_minutes(item: Item) -> float:
    """Fixed per-type time cost of attempting an item."""
    try:
        return ITEM_MINUTES[ItemType(item.type)]
    except (KeyError, ValueError):
        raise ValidationError(f"No time estimate for item type {item.type!r}") from None


@dataclass
class _ReviewCandidate:
    item: Item
    concept_id: str
    retrievability: float


@dataclass
class _DiagnosticCandidate:
    concept_id: str
    reason: PlanReason
    items: list[Item]  # Preferred candidate first


def build_plan(
    as_of: datetime,
    memory_states: Iterable[MemoryState],
    mastery_states: Iterable[MasteryState],
    items_by_concept: Mapping[str, Sequence[Item]],
    budget: PlanBudget,
    concepts: Iterable[Concept],
    coverage_threshold: int = DEFAULT_COVERAGE_THRESHOLD,
    model: StabilityModel | None = None,
    ranker: GapRanker | None = None,
) -> DailyPlan:
    """
    Build the study plan for `as_of`.

    Args:
        as_of: The moment the plan is requested for; due checks use it.
        memory_states: Every (concept, item) memory state.
        mastery_states: Every cached per-concept mastery state.
        items_by_concept: Live items per concept id (deleted items are absent).
        budget: Item and time limits plus the review share.
        concepts: Every concept in the catalog.
        coverage_threshold: Concepts with fewer attempts are diagnostic-eligible.

    Returns:
        A DailyPlan. Identical inputs always give an identical plan.
    """
    model = model or StabilityModel()
    ranker = ranker or GapRanker()
    memory_states = list(memory_states)
    mastery_states = list(mastery_states)
    concepts = list(concepts)

    reviews = _collect_reviews(as_of, memory_states, items_by_concept, model)
    diagnostics = _collect_diagnostics(
        concepts, mastery_states, memory_states, items_by_concept, coverage_threshold, ranker
    )

    selected: list[PlannedItem] = []
    planned_ids: set[str] = set()
    minutes = 0.0

    def try_add(item: Item, concept_id: str, reason: PlanReason) -> bool:
        nonlocal minutes
        if item.id in planned_ids or len(selected) >= budget.max_items:
            return False
        cost = estimated_minutes(item)
        if minutes + cost > budget.max_minutes + _EPSILON:
            return False
        minutes += cost
        planned_ids.add(item.id)
        selected.append(
            PlannedItem(
                item_id=item.id,
                concept_id=concept_id,
                reason=reason,
                priority=len(selected) + 1,
            )
        )
        return True

    review_cap = math.floor(budget.max_items * budget.review_share)
    taken_reviews = 0
    for candidate in reviews:
        if taken_reviews >= review_cap:
            break
        if try_add(candidate.item, candidate.concept_id, PlanReason.DUE_REVIEW):
            taken_reviews += 1

    for diag in diagnostics:
        if len(selected) >= budget.max_items:
            break
        for item in diag.items:
            if try_add(item, diag.concept_id, diag.reason):
                break

    # Leftover capacity goes back to the reviews that did not fit the share.
    for candidate in reviews:
        if len(selected) >= budget.max_items:
            break
        try_add(candidate.item, candidate.concept_id, PlanReason.DUE_REVIEW)

    plan = DailyPlan(
        date=as_of.date(),
        reviews=[p for p in selected if p.reason == PlanReason.DUE_REVIEW],
        diagnostics=[p for p in selected if p.reason != PlanReason.DUE_REVIEW],
        total_items=len(selected),
        estimated_time_minutes=round(minutes, 1),
        coverage_percent=_coverage_percent(concepts, mastery_states),
    )
    logger.debug(
        f"Plan for {plan.date}: {len(plan.reviews)} reviews, "
        f"{len(plan.diagnostics)} diagnostics, {plan.estimated_time_minutes} min"
    )
    return plan


def _collect_reviews(
    as_of: datetime,
    memory_states: Sequence[MemoryState],
    items_by_concept: Mapping[str, Sequence[Item]],
    model: StabilityModel,
) -> list[_ReviewCandidate]:
    """
    Due (concept, item) pairs ordered by ascending retrievability.

    An item shared by several concepts appears once, under its most at-risk pair.
    """
    candidates: list[_ReviewCandidate] = []
    for state in memory_states:
        if not model.is_due(state, as_of):
            continue
        item = _find_item(items_by_concept.get(state.concept_id, ()), state.item_id)
        if item is None:
            continue  # Item deleted or no longer tagged with this concept
        candidates.append(
            _ReviewCandidate(
                item=item,
                concept_id=state.concept_id,
                retrievability=model.retrievability_at(state, as_of),
            )
        )

    candidates.sort(key=lambda c: (c.retrievability, c.concept_id, c.item.id))

    seen: set[str] = set()
    unique: list[_ReviewCandidate] = []
    for candidate in candidates:
        if candidate.item.id not in seen:
            seen.add(candidate.item.id)
            unique.append(candidate)
    return unique


def _collect_diagnostics(
    concepts: Sequence[Concept],
    mastery_states: Sequence[MasteryState],
    memory_states: Sequence[MemoryState],
    items_by_concept: Mapping[str, Sequence[Item]],
    coverage_threshold: int,
    ranker: GapRanker,
) -> list[_DiagnosticCandidate]:
    """
    Diagnostic candidates for thinly covered concepts, interleaved across domains.

    Within a domain, uncovered concepts come first (ranker order), then
    low-attempt concepts in gap-rank order.
    """
    by_id = {c.id: c for c in concepts}
    thin = [
        m
        for m in mastery_states
        if m.concept_id in by_id and 0 < m.attempts < coverage_threshold
    ]

    ordered: list[tuple[Concept, PlanReason]] = [
        (c, PlanReason.DIAGNOSTIC_UNCOVERED) for c in ranker.uncovered(concepts, mastery_states)
    ]
    ordered += [
        (by_id[gap.concept_id], PlanReason.DIAGNOSTIC_GAP) for gap in ranker.rank(thin)
    ]

    per_domain: dict[str, list[tuple[Concept, PlanReason]]] = {}
    for concept, reason in ordered:
        per_domain.setdefault(concept.domain, []).append((concept, reason))

    seen_pairs = {(s.concept_id, s.item_id) for s in memory_states}
    result: list[_DiagnosticCandidate] = []
    for concept, reason in _round_robin([per_domain[d] for d in sorted(per_domain)]):
        items = sorted(
            items_by_concept.get(concept.id, ()),
            key=lambda i: (
                (concept.id, i.id) in seen_pairs,
                abs(i.difficulty - DIAGNOSTIC_TARGET_DIFFICULTY),
                i.id,
            ),
        )
        if items:
            result.append(_DiagnosticCandidate(concept_id=concept.id, reason=reason, items=items))
    return result


def _round_robin(queues: list[list]) -> list:
    out = []
    depth = max((len(q) for q in queues), default=0)
    for i in range(depth):
        for q in queues:
            if i < len(q):
                out.append(q[i])
    return out


def _find_item(items: Sequence[Item], item_id: str) -> Item | None:
    for item in items:
        if item.id == item_id:
            return item
    return None


def _coverage_percent(concepts: Sequence[Concept], mastery_states: Sequence[MasteryState]) -> int:
    if not concepts:
        return 0
    attempted = {m.concept_id for m in mastery_states if m.attempts > 0}
    covered = sum(1 for c in concepts if c.id in attempted)
    return int(math.floor(covered / len(concepts) * 100 + 0.5))
