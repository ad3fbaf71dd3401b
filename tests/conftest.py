from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from gapwise.domain.models import (
    Attempt,
    CalcContent,
    Concept,
    Item,
    ItemType,
    McqContent,
)
from gapwise.infrastructure.adapters.memory_repository import InMemoryLearningRepository

T0 = datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)


class FixedClock:
    """A controllable clock; call it to read the current time."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def t0():
    return T0


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def repo():
    return InMemoryLearningRepository()


@pytest.fixture
def make_attempt():
    """Factory for attempts on a single item, defaulting to a confident correct answer."""
    counter = {"n": 0}

    def _make(
        timestamp=T0,
        is_correct=True,
        confidence=4,
        item_id="itm_1",
        concept_ids=("con_a",),
        attempt_id=None,
        session_id=None,
    ) -> Attempt:
        counter["n"] += 1
        return Attempt(
            id=attempt_id or f"att_{counter['n']:04d}",
            item_id=item_id,
            concept_ids=tuple(concept_ids),
            user_answer="answer",
            is_correct=is_correct,
            confidence=confidence,
            time_spent_ms=1000,
            timestamp=timestamp,
            session_id=session_id,
        )

    return _make


def _concept(concept_id: str, name: str | None = None, domain: str = "Biology") -> Concept:
    return Concept(id=concept_id, name=name or concept_id.title(), domain=domain)


def _mcq(item_id: str, *concept_ids: str, difficulty: int = 50) -> Item:
    return Item(
        id=item_id,
        stem=f"Question {item_id}?",
        type=ItemType.MCQ,
        concept_ids=concept_ids,
        content=McqContent(choices=("A", "B", "C"), correct_answer="B"),
        difficulty=difficulty,
    )


def _calc(item_id: str, *concept_ids: str) -> Item:
    return Item(
        id=item_id,
        stem=f"Compute {item_id}",
        type=ItemType.CALC,
        concept_ids=concept_ids,
        content=CalcContent(calc_template="{a} * {b}", correct_answer=12.0, unit="mg"),
    )


@pytest.fixture
def make_concept():
    return _concept


@pytest.fixture
def make_mcq():
    return _mcq


@pytest.fixture
def make_calc():
    return _calc


@pytest_asyncio.fixture
async def seeded_repo(repo):
    """
    Catalog shared by the service-level tests.

    Cells and Genetics (Biology) carry items; Optics (Physics) has none.
    itm_2 targets both Biology concepts.
    """
    await repo.put_concept(_concept("con_a", "Cells"))
    await repo.put_concept(_concept("con_b", "Genetics"))
    await repo.put_concept(_concept("con_c", "Optics", domain="Physics"))
    await repo.put_item(_mcq("itm_1", "con_a"))
    await repo.put_item(_mcq("itm_2", "con_a", "con_b"))
    await repo.put_item(_mcq("itm_3", "con_b"))
    return repo
