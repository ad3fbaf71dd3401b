import pytest

from gapwise.application.service import LearningService
from gapwise.infrastructure.adapters.sqlite_repository import SqliteLearningRepository


@pytest.mark.asyncio
async def test_data_survives_reopen(tmp_path, make_concept, make_mcq, clock):
    db_path = tmp_path / "nested" / "gapwise.db"

    with SqliteLearningRepository(db_path) as repo:
        await repo.put_concept(make_concept("con_a", "Cells"))
        await repo.put_item(make_mcq("itm_1", "con_a"))
        outcome = await LearningService(repo, clock=clock).submit_attempt(
            "itm_1", "sess", "B", True, 4, 900
        )
        assert outcome.ok

    with SqliteLearningRepository(db_path) as repo:
        assert [c.name for c in await repo.get_all_concepts()] == ["Cells"]
        assert await repo.get_attempt(outcome.attempt.id) == outcome.attempt
        mastery = await repo.get_mastery_state("con_a")
        assert mastery.attempts == 1
        assert mastery.last_attempted == clock.now


@pytest.mark.asyncio
async def test_in_memory_database(make_concept):
    with SqliteLearningRepository(":memory:") as repo:
        await repo.put_concept(make_concept("con_a"))

        assert len(await repo.get_all_concepts()) == 1


@pytest.mark.asyncio
async def test_nested_atomic_joins_outer_transaction(tmp_path, make_concept):
    with SqliteLearningRepository(tmp_path / "gapwise.db") as repo:
        with pytest.raises(ValueError):
            async with repo.atomic():
                async with repo.atomic():
                    await repo.put_concept(make_concept("con_a"))
                raise ValueError("outer failure")

        assert await repo.get_all_concepts() == []
