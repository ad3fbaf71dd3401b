import asyncio
from datetime import timedelta

import pytest

from gapwise.application.config import AppConfig
from gapwise.application.service import LearningService
from gapwise.domain.errors import NotFoundError, UnknownItemError, ValidationError
from gapwise.domain.models import MasteryState, PlanBudget, PlanReason, SessionType


@pytest.fixture
def service(seeded_repo, clock):
    return LearningService(seeded_repo, clock=clock)


async def _answer(service, item_id, correct=True, confidence=4):
    outcome = await service.submit_attempt(item_id, None, "answer", correct, confidence, 1000)
    assert outcome.ok, outcome.error
    return outcome.attempt


@pytest.mark.asyncio
async def test_unattempted_concept_is_zero_and_diagnostic_but_not_a_gap(service):
    await _answer(service, "itm_3", correct=False)

    mastery = {m.concept_id: m for m in await service.get_concept_mastery()}
    gaps = await service.get_top_gaps()

    assert mastery["con_c"] == MasteryState(concept_id="con_c")
    assert mastery["con_a"].mastery_score == 0.0
    assert "con_c" not in [g.concept_id for g in gaps]
    assert "con_c" in await service.get_diagnostic_candidates()


@pytest.mark.asyncio
async def test_invalid_confidence_returns_validation_error(service, seeded_repo):
    outcome = await service.submit_attempt("itm_1", None, "B", True, 6, 1000)

    assert not outcome.ok
    assert outcome.attempt is None
    assert isinstance(outcome.error, ValidationError)
    assert await seeded_repo.get_all_attempts() == []
    assert await seeded_repo.get_all_memory_states() == []


@pytest.mark.asyncio
async def test_unknown_item_returns_typed_error(service):
    outcome = await service.submit_attempt("itm_nope", None, "B", True, 3, 1000)

    assert isinstance(outcome.error, UnknownItemError)


@pytest.mark.asyncio
async def test_top_gaps_weakest_first_with_names(service, clock):
    await _answer(service, "itm_1", correct=False)
    clock.advance(minutes=5)
    await _answer(service, "itm_3", correct=True)

    gaps = await service.get_top_gaps()

    assert [g.concept_id for g in gaps] == ["con_a", "con_b"]
    assert gaps[0].concept_name == "Cells"
    assert await service.get_top_gaps(limit=1) == gaps[:1]


@pytest.mark.asyncio
async def test_plan_picks_up_review_once_due(service, clock, t0):
    attempt = await _answer(service, "itm_1", correct=True, confidence=4)

    today = await service.get_daily_plan()
    assert today.reviews == []
    assert today.date == t0.date()

    later = await service.get_daily_plan(as_of=attempt.timestamp + timedelta(days=7))
    assert [(p.item_id, p.reason) for p in later.reviews] == [("itm_1", PlanReason.DUE_REVIEW)]


@pytest.mark.asyncio
async def test_plan_respects_explicit_budget(service):
    plan = await service.get_daily_plan(budget=PlanBudget(max_items=1, max_minutes=30))

    assert plan.total_items == 1
    assert plan.diagnostics[0].concept_id == "con_a"


@pytest.mark.asyncio
async def test_plan_uses_configured_budget(seeded_repo, clock):
    config = AppConfig.model_construct(daily_item_budget=2)
    service = LearningService(seeded_repo, config=config, clock=clock)

    plan = await service.get_daily_plan()

    assert plan.total_items == 2


@pytest.mark.asyncio
async def test_due_count_and_next_item(service, t0):
    assert await service.get_due_count() == 3
    assert (await service.get_next_review_item()).id == "itm_1"

    await _answer(service, "itm_1")

    assert await service.get_due_count() == 2
    assert await service.get_due_count(as_of=t0 + timedelta(days=30)) == 3


@pytest.mark.asyncio
async def test_next_item_none_when_nothing_to_study(repo, clock):
    service = LearningService(repo, clock=clock)

    assert await service.get_next_review_item() is None


@pytest.mark.asyncio
async def test_rebuild_matches_incremental_state(service, seeded_repo, clock):
    for i, correct in enumerate([True, False, True, True, False, True]):
        clock.advance(days=i + 1)
        await _answer(service, "itm_2" if i % 2 else "itm_1", correct=correct, confidence=3)

    incremental = await seeded_repo.get_all_mastery_states()
    memory = await seeded_repo.get_all_memory_states()

    rebuilt = await service.rebuild_mastery()

    assert sorted(rebuilt, key=lambda m: m.concept_id) == incremental
    assert await seeded_repo.get_all_mastery_states() == incremental
    assert await seeded_repo.get_all_memory_states() == memory


@pytest.mark.asyncio
async def test_concurrent_submissions_are_serialized(service, seeded_repo):
    outcomes = await asyncio.gather(
        *(service.submit_attempt("itm_1", None, "B", True, 3, 100) for _ in range(6))
    )

    assert all(o.ok for o in outcomes)
    assert len({o.attempt.id for o in outcomes}) == 6
    assert (await seeded_repo.get_mastery_state("con_a")).attempts == 6
    assert (await seeded_repo.get_memory_state("con_a", "itm_1")).reps == 6


@pytest.mark.asyncio
async def test_performance_trends(service, clock):
    await _answer(service, "itm_1", correct=True)
    await _answer(service, "itm_3", correct=False)
    clock.advance(days=1)
    await _answer(service, "itm_1", correct=True)

    trends = await service.get_performance_trends()

    assert [t.items_completed for t in trends] == [2, 1]
    assert trends[0].accuracy == 0.5


@pytest.mark.asyncio
async def test_clear_all(service, seeded_repo):
    await _answer(service, "itm_1")

    await service.clear_all()

    assert await seeded_repo.get_all_concepts() == []
    assert await seeded_repo.get_all_attempts() == []
    assert await service.get_concept_mastery() == []


@pytest.mark.asyncio
async def test_long_streak_of_wrong_answers_is_never_rejected(service, seeded_repo, clock):
    for _ in range(100):
        clock.advance(hours=1)
        await _answer(service, "itm_1", correct=False, confidence=2)

    state = await seeded_repo.get_memory_state("con_a", "itm_1")
    assert state.lapses == 100
    assert state.stability > 0

    clock.advance(days=3)
    await _answer(service, "itm_1", correct=True)
    assert (await seeded_repo.get_memory_state("con_a", "itm_1")).reps == 101


@pytest.mark.asyncio
async def test_rebuild_matches_incremental_state_with_back_dated_attempts(
    service, seeded_repo, t0
):
    for days, correct in [(10, True), (1, True), (5, False), (12, True)]:
        outcome = await service.submit_attempt(
            "itm_1", None, "answer", correct, 3, 1000, attempted_at=t0 + timedelta(days=days)
        )
        assert outcome.ok, outcome.error

    incremental = await seeded_repo.get_all_mastery_states()
    memory = await seeded_repo.get_all_memory_states()
    assert memory[0].last_reviewed == t0 + timedelta(days=12)

    await service.rebuild_mastery()

    assert await seeded_repo.get_all_mastery_states() == incremental
    assert await seeded_repo.get_all_memory_states() == memory


@pytest.mark.asyncio
async def test_session_lifecycle(service, clock):
    session = await service.create_session("diagnostic", total_items=3)
    assert session.id.startswith("ses_")
    assert session.session_type == SessionType.DIAGNOSTIC
    assert session.started_at == clock.now

    for correct, confidence in [(True, 5), (False, 2), (True, 4)]:
        outcome = await service.submit_attempt(
            "itm_1", session.id, "answer", correct, confidence, 1000
        )
        assert outcome.ok
    await _answer(service, "itm_2")
    clock.advance(minutes=20)

    done = await service.complete_session(session.id)

    assert done.completed_at == clock.now
    assert done.completed_items == 3
    assert done.accuracy == pytest.approx(2 / 3)
    assert done.average_confidence == pytest.approx(11 / 3)
    assert await service.get_all_sessions() == [done]

    with pytest.raises(ValidationError):
        await service.complete_session(session.id)


@pytest.mark.asyncio
async def test_empty_session_completes_with_zero_summary(service):
    session = await service.create_session()

    done = await service.complete_session(session.id)

    assert done.session_type == SessionType.MIXED
    assert (done.completed_items, done.accuracy, done.average_confidence) == (0, 0.0, 0.0)


@pytest.mark.asyncio
async def test_session_variants_are_validated(service):
    focused = await service.create_session(SessionType.FOCUSED, 5, concept_id="con_a")
    exam = await service.create_session("exam", 10, time_limit_ms=600_000)

    assert focused.concept_id == "con_a"
    assert exam.time_limit_ms == 600_000

    with pytest.raises(ValidationError):
        await service.create_session("focused", 5)
    with pytest.raises(ValidationError):
        await service.create_session("mixed", 5, concept_id="con_a")
    with pytest.raises(ValidationError):
        await service.create_session("exam", 5, time_limit_ms=0)
    with pytest.raises(ValidationError):
        await service.create_session("marathon")
    with pytest.raises(ValidationError):
        await service.create_session("mixed", -1)
    with pytest.raises(NotFoundError):
        await service.create_session("focused", 5, concept_id="con_missing")
    with pytest.raises(NotFoundError):
        await service.complete_session("ses_missing")


@pytest.mark.asyncio
async def test_attempts_for_item_in_time_order(service, t0):
    for days in (3, 1, 2):
        outcome = await service.submit_attempt(
            "itm_1", None, "answer", True, 3, 1000, attempted_at=t0 + timedelta(days=days)
        )
        assert outcome.ok
    await _answer(service, "itm_3")

    history = await service.get_attempts_for_item("itm_1")

    assert [a.timestamp for a in history] == [t0 + timedelta(days=d) for d in (1, 2, 3)]
    assert await service.get_attempts_for_item("itm_missing") == []
