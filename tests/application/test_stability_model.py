import random
from dataclasses import replace
from datetime import timedelta

import pytest

from gapwise.application.stability_model import FsrsParameters, StabilityModel, days_between
from gapwise.domain.constants import STABILITY_MIN
from gapwise.domain.errors import ComputationInvariantError
from gapwise.domain.models import Rating


@pytest.fixture
def model():
    return StabilityModel()


def test_rating_mapping(model, make_attempt):
    assert model.rating_for(make_attempt(is_correct=False, confidence=5)) == Rating.AGAIN
    assert model.rating_for(make_attempt(confidence=1)) == Rating.HARD
    assert model.rating_for(make_attempt(confidence=2)) == Rating.HARD
    assert model.rating_for(make_attempt(confidence=3)) == Rating.GOOD
    assert model.rating_for(make_attempt(confidence=5)) == Rating.EASY


def test_initialize_state_first_exposure(model, make_attempt, t0):
    state = model.initialize_state(make_attempt(confidence=3), "con_a")

    assert state.concept_id == "con_a"
    assert state.item_id == "itm_1"
    assert state.stability == pytest.approx(2.4)
    assert state.difficulty == pytest.approx(4.93)
    assert state.last_reviewed == t0
    # At desired retention 0.9 the interval equals the stability.
    assert state.due_at == t0 + timedelta(days=2.4)
    assert state.reps == 1
    assert state.lapses == 0


def test_initialize_state_wrong_answer_counts_lapse(model, make_attempt):
    state = model.initialize_state(make_attempt(is_correct=False), "con_a")

    assert state.lapses == 1
    assert state.stability == pytest.approx(0.4)
    assert state.difficulty > 4.93


def test_retrievability_is_one_at_review_and_point_nine_at_stability(model, make_attempt, t0):
    state = model.initialize_state(make_attempt(confidence=4), "con_a")

    assert model.retrievability_at(state, t0) == pytest.approx(1.0)
    assert model.retrievability_at(state, t0 + timedelta(days=state.stability)) == pytest.approx(
        0.9
    )


def test_monotonic_forgetting(model, make_attempt, t0):
    state = model.initialize_state(make_attempt(), "con_a")
    values = [model.retrievability_at(state, t0 + timedelta(days=d)) for d in range(0, 60, 3)]

    assert all(a >= b for a, b in zip(values, values[1:]))
    assert all(0.0 < v <= 1.0 for v in values)


def test_clock_skew_clamps_to_zero(model, make_attempt, t0):
    state = model.initialize_state(make_attempt(), "con_a")

    assert days_between(t0, t0 - timedelta(days=3)) == 0.0
    assert model.retrievability_at(state, t0 - timedelta(days=3)) == pytest.approx(1.0)


def test_out_of_order_attempt_keeps_last_reviewed(model, make_attempt, t0):
    state = model.initialize_state(make_attempt(confidence=3), "con_a")
    earlier = make_attempt(timestamp=t0 - timedelta(days=2), confidence=3)

    updated = model.update_state(state, earlier)

    assert updated.last_reviewed == t0
    # Zero elapsed time means no growth from the retrievability term.
    assert updated.stability == pytest.approx(state.stability)
    assert updated.reps == 2


def test_success_on_more_forgotten_item_grows_more(model, make_attempt, t0):
    state = model.initialize_state(make_attempt(confidence=3), "con_a")

    soon = model.update_state(state, make_attempt(timestamp=t0 + timedelta(days=1), confidence=3))
    late = model.update_state(
        state, make_attempt(timestamp=t0 + timedelta(days=20), confidence=3)
    )

    assert soon.stability > state.stability
    assert late.stability - state.stability >= soon.stability - state.stability


@pytest.mark.parametrize("elapsed_days", [0, 1, 5, 30, 400])
@pytest.mark.parametrize("stability", [0.4, 2.4, 15.0, 300.0])
def test_failure_always_shrinks_stability(model, make_attempt, t0, elapsed_days, stability):
    state = replace(
        model.initialize_state(make_attempt(confidence=3), "con_a"), stability=stability
    )
    failed = model.update_state(
        state, make_attempt(timestamp=t0 + timedelta(days=elapsed_days), is_correct=False)
    )

    assert failed.stability < stability
    assert failed.stability > 0
    assert failed.lapses == state.lapses + 1


def test_difficulty_stays_in_bounds(model, make_attempt, t0):
    state = model.initialize_state(make_attempt(is_correct=False), "con_a")
    for day in range(1, 40):
        state = model.update_state(
            state, make_attempt(timestamp=t0 + timedelta(days=day), is_correct=False)
        )
        assert 1.0 <= state.difficulty <= 10.0

    for day in range(40, 80):
        state = model.update_state(
            state, make_attempt(timestamp=t0 + timedelta(days=day), confidence=5)
        )
        assert 1.0 <= state.difficulty <= 10.0


def test_due_at_follows_last_review_and_interval(model, make_attempt, t0):
    state = model.initialize_state(make_attempt(), "con_a")
    updated = model.update_state(state, make_attempt(timestamp=t0 + timedelta(days=4)))

    expected = updated.last_reviewed + timedelta(days=model.next_interval_days(updated.stability))
    assert updated.due_at == expected


def test_is_due_boundary(model, make_attempt):
    state = model.initialize_state(make_attempt(), "con_a")

    assert model.is_due(state, state.due_at)
    assert not model.is_due(state, state.due_at - timedelta(seconds=1))


def test_interval_respects_retention_and_cap():
    lenient = StabilityModel(FsrsParameters(desired_retention=0.8))

    assert lenient.next_interval_days(10.0) > 10.0
    assert lenient.next_interval_days(1e9) == 36500.0


def test_replay_is_deterministic_and_order_independent(model, make_attempt, t0):
    attempts = [
        make_attempt(timestamp=t0 + timedelta(days=d), is_correct=d % 3 != 0, confidence=3)
        for d in range(12)
    ]
    shuffled = attempts[:]
    random.Random(7).shuffle(shuffled)

    assert model.replay(attempts, "con_a") == model.replay(attempts, "con_a")
    assert model.replay(shuffled, "con_a") == model.replay(attempts, "con_a")
    assert model.replay([], "con_a") is None


def test_non_positive_stability_is_an_invariant_violation(model, make_attempt, t0):
    state = replace(model.initialize_state(make_attempt(), "con_a"), stability=0.0)

    with pytest.raises(ComputationInvariantError):
        model.retrievability_at(state, t0 + timedelta(days=1))


def test_repeated_failures_bottom_out_at_floor(model, make_attempt, t0):
    state = model.initialize_state(make_attempt(is_correct=False), "con_a")
    for hour in range(1, 101):
        failed = model.update_state(
            state, make_attempt(timestamp=t0 + timedelta(hours=hour), is_correct=False)
        )
        if state.stability > STABILITY_MIN:
            assert failed.stability < state.stability
        assert failed.stability >= STABILITY_MIN
        state = failed

    assert state.stability == STABILITY_MIN
    assert state.lapses == 101


def test_replay_survives_long_failure_streak(model, make_attempt, t0):
    attempts = [
        make_attempt(timestamp=t0 + timedelta(hours=h), is_correct=False, attempt_id=f"att_{h:03d}")
        for h in range(100)
    ]
    attempts.append(
        make_attempt(timestamp=t0 + timedelta(days=10), confidence=4, attempt_id="att_999")
    )

    state = model.replay(attempts, "con_a")

    assert state.reps == 101
    assert state.stability > STABILITY_MIN
