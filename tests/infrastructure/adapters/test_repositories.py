"""Contract tests shared by both LearningRepository adapters."""

from dataclasses import replace
from datetime import timedelta

import pytest

from gapwise.domain.models import (
    CaseContent,
    CaseStep,
    ClozeContent,
    Item,
    ItemType,
    MasteryState,
    MemoryState,
    SessionType,
    StudySession,
    Trend,
)
from gapwise.infrastructure.adapters.memory_repository import InMemoryLearningRepository
from gapwise.infrastructure.adapters.sqlite_repository import SqliteLearningRepository


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path):
    if request.param == "memory":
        yield InMemoryLearningRepository()
    else:
        with SqliteLearningRepository(tmp_path / "data" / "gapwise.db") as repo:
            yield repo


def _memory_state(t0, concept_id="con_a", item_id="itm_1", stability=3.5):
    return MemoryState(
        concept_id=concept_id,
        item_id=item_id,
        stability=stability,
        difficulty=4.2,
        last_reviewed=t0,
        due_at=t0 + timedelta(days=stability),
        reps=2,
        lapses=1,
    )


@pytest.mark.asyncio
async def test_concepts_round_trip_and_order(store, make_concept):
    await store.put_concept(replace(make_concept("con_2", "Zebra"), tags=("x", "y")))
    await store.put_concept(make_concept("con_1", "Alpha"))

    concepts = await store.get_all_concepts()

    assert [c.name for c in concepts] == ["Alpha", "Zebra"]
    assert (await store.get_concept("con_2")).tags == ("x", "y")
    assert await store.get_concept("con_missing") is None
    assert await store.delete_concept("con_1") is True
    assert await store.delete_concept("con_1") is False


@pytest.mark.asyncio
async def test_items_round_trip_every_variant(store, make_mcq, make_calc):
    case = Item(
        id="itm_case",
        stem="Case?",
        type=ItemType.CASE,
        concept_ids=("con_a", "con_b"),
        content=CaseContent(
            case_steps=(CaseStep(prompt="Step 1", correct_answer="X", points=3, explanation="e"),)
        ),
        explanation="why",
        source="textbook",
    )
    cloze = Item(
        id="itm_cloze",
        stem="Fill",
        type=ItemType.CLOZE,
        concept_ids=("con_a",),
        content=ClozeContent(cloze_text="The {{mitochondria}} is the powerhouse."),
    )
    items = [make_mcq("itm_mcq", "con_a"), make_calc("itm_calc", "con_b"), case, cloze]
    for item in items:
        await store.put_item(item)

    assert await store.get_all_items() == sorted(items, key=lambda i: i.id)
    assert await store.get_item("itm_case") == case
    assert await store.delete_item("itm_case") is True
    assert await store.get_item("itm_case") is None


@pytest.mark.asyncio
async def test_append_attempt_dedupes_by_id(store, make_attempt, t0):
    attempt = make_attempt(attempt_id="att_1", concept_ids=("con_a", "con_b"))

    assert await store.append_attempt(attempt) is True
    assert await store.append_attempt(replace(attempt, is_correct=False)) is False

    assert await store.get_all_attempts() == [attempt]
    assert await store.get_attempt("att_1") == attempt


@pytest.mark.asyncio
async def test_attempts_for_concept_in_time_order(store, make_attempt, t0):
    late = make_attempt(timestamp=t0 + timedelta(days=1, microseconds=500), attempt_id="att_a")
    early = make_attempt(timestamp=t0, attempt_id="att_b")
    other = make_attempt(concept_ids=("con_b",), attempt_id="att_c")
    for attempt in (late, early, other):
        await store.append_attempt(attempt)

    assert await store.get_attempts_for_concept("con_a") == [early, late]
    assert await store.get_attempts_for_concept("con_b") == [other]
    assert (await store.get_attempt("att_a")).timestamp == late.timestamp


@pytest.mark.asyncio
async def test_memory_states(store, t0):
    state = _memory_state(t0)
    await store.put_memory_state(state)
    await store.put_memory_state(_memory_state(t0, item_id="itm_2"))
    await store.put_memory_state(_memory_state(t0, concept_id="con_b"))

    assert await store.get_memory_state("con_a", "itm_1") == state
    assert await store.get_memory_state("con_a", "itm_9") is None
    assert [s.item_id for s in await store.get_memory_states_for_concept("con_a")] == [
        "itm_1",
        "itm_2",
    ]

    await store.put_memory_state(replace(state, stability=9.0))
    assert (await store.get_memory_state("con_a", "itm_1")).stability == 9.0
    assert len(await store.get_all_memory_states()) == 3


@pytest.mark.asyncio
async def test_mastery_states(store, t0):
    state = MasteryState(
        concept_id="con_a",
        mastery_score=64.5,
        attempts=4,
        correct=3,
        avg_confidence=3.5,
        brier_score=0.12,
        trend=Trend.UP,
        stability=2.2,
        last_attempted=t0,
    )
    await store.put_mastery_state(state)
    await store.put_mastery_state(MasteryState(concept_id="con_b"))

    assert await store.get_mastery_state("con_a") == state
    assert await store.get_mastery_state("con_b") == MasteryState(concept_id="con_b")
    assert [m.concept_id for m in await store.get_all_mastery_states()] == ["con_a", "con_b"]


@pytest.mark.asyncio
async def test_atomic_rolls_back_on_error(store, make_attempt, t0):
    await store.put_memory_state(_memory_state(t0))

    with pytest.raises(RuntimeError):
        async with store.atomic():
            await store.append_attempt(make_attempt(attempt_id="att_1"))
            await store.put_memory_state(_memory_state(t0, stability=99.0))
            raise RuntimeError("boom")

    assert await store.get_all_attempts() == []
    assert (await store.get_memory_state("con_a", "itm_1")).stability == 3.5


@pytest.mark.asyncio
async def test_atomic_commits(store, make_attempt):
    async with store.atomic():
        await store.append_attempt(make_attempt(attempt_id="att_1"))

    assert len(await store.get_all_attempts()) == 1


@pytest.mark.asyncio
async def test_clear_all(store, make_concept, make_attempt, t0):
    await store.put_concept(make_concept("con_a"))
    await store.append_attempt(make_attempt())
    await store.put_memory_state(_memory_state(t0))
    await store.put_mastery_state(MasteryState(concept_id="con_a", attempts=1))

    await store.clear_all()

    assert await store.get_all_concepts() == []
    assert await store.get_all_attempts() == []
    assert await store.get_all_memory_states() == []
    assert await store.get_all_mastery_states() == []


@pytest.mark.asyncio
async def test_attempts_for_item(store, make_attempt, t0):
    late = make_attempt(timestamp=t0 + timedelta(days=2), attempt_id="att_a")
    early = make_attempt(timestamp=t0, attempt_id="att_b")
    other = make_attempt(item_id="itm_2", attempt_id="att_c")
    for attempt in (late, early, other):
        await store.append_attempt(attempt)

    assert await store.get_attempts_for_item("itm_1") == [early, late]
    assert await store.get_attempts_for_item("itm_missing") == []


@pytest.mark.asyncio
async def test_sessions_round_trip(store, t0):
    exam = StudySession(
        id="ses_2",
        session_type=SessionType.EXAM,
        started_at=t0 + timedelta(hours=1),
        total_items=10,
        time_limit_ms=600_000,
    )
    focused = StudySession(
        id="ses_1",
        session_type=SessionType.FOCUSED,
        started_at=t0,
        total_items=5,
        concept_id="con_a",
    )
    await store.put_session(exam)
    await store.put_session(focused)

    assert await store.get_all_sessions() == [focused, exam]
    assert await store.get_session("ses_missing") is None

    done = replace(exam, completed_at=t0 + timedelta(hours=2), completed_items=3, accuracy=0.5)
    await store.put_session(done)
    assert await store.get_session("ses_2") == done

    await store.clear_all()
    assert await store.get_all_sessions() == []
