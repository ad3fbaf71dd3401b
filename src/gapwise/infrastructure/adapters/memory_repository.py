"""
In-memory repository: dict-backed implementation of LearningRepository.

Used by tests and by callers that embed the core without a database.
"""

import copy
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from gapwise.domain.models import (
    Attempt,
    Concept,
    Item,
    MasteryState,
    MemoryState,
    StudySession,
)
from gapwise.domain.ports import LearningRepository

logger = logging.getLogger(__name__)


class InMemoryLearningRepository(LearningRepository):
    def __init__(self):
        self._concepts: dict[str, Concept] = {}
        self._items: dict[str, Item] = {}
        self._attempts: dict[str, Attempt] = {}
        self._memory: dict[tuple[str, str], MemoryState] = {}
        self._mastery: dict[str, MasteryState] = {}
        self._sessions: dict[str, StudySession] = {}

    async def get_all_concepts(self) -> list[Concept]:
        return sorted(self._concepts.values(), key=lambda c: (c.name, c.id))

    async def get_concept(self, concept_id: str) -> Concept | None:
        return self._concepts.get(concept_id)

    async def put_concept(self, concept: Concept) -> None:
        self._concepts[concept.id] = concept

    async def delete_concept(self, concept_id: str) -> bool:
        return self._concepts.pop(concept_id, None) is not None

    async def get_all_items(self) -> list[Item]:
        return sorted(self._items.values(), key=lambda i: i.id)

    async def get_item(self, item_id: str) -> Item | None:
        return self._items.get(item_id)

    async def put_item(self, item: Item) -> None:
        self._items[item.id] = item

    async def delete_item(self, item_id: str) -> bool:
        return self._items.pop(item_id, None) is not None

    async def get_attempts_for_concept(self, concept_id: str) -> list[Attempt]:
        return sorted(
            (a for a in self._attempts.values() if concept_id in a.concept_ids),
            key=lambda a: (a.timestamp, a.id),
        )

    async def get_all_attempts(self) -> list[Attempt]:
        return sorted(self._attempts.values(), key=lambda a: (a.timestamp, a.id))

    async def get_attempts_for_item(self, item_id: str) -> list[Attempt]:
        return sorted(
            (a for a in self._attempts.values() if a.item_id == item_id),
            key=lambda a: (a.timestamp, a.id),
        )

    async def get_attempt(self, attempt_id: str) -> Attempt | None:
        return self._attempts.get(attempt_id)

    async def append_attempt(self, attempt: Attempt) -> bool:
        if attempt.id in self._attempts:
            logger.debug(f"Duplicate attempt {attempt.id} ignored")
            return False
        self._attempts[attempt.id] = attempt
        return True

    async def get_memory_state(self, concept_id: str, item_id: str) -> MemoryState | None:
        return self._memory.get((concept_id, item_id))

    async def get_memory_states_for_concept(self, concept_id: str) -> list[MemoryState]:
        return sorted(
            (s for (cid, _), s in self._memory.items() if cid == concept_id),
            key=lambda s: s.item_id,
        )

    async def get_all_memory_states(self) -> list[MemoryState]:
        return [self._memory[key] for key in sorted(self._memory)]

    async def put_memory_state(self, state: MemoryState) -> None:
        self._memory[(state.concept_id, state.item_id)] = state

    async def get_mastery_state(self, concept_id: str) -> MasteryState | None:
        return self._mastery.get(concept_id)

    async def get_all_mastery_states(self) -> list[MasteryState]:
        return [self._mastery[key] for key in sorted(self._mastery)]

    async def put_mastery_state(self, state: MasteryState) -> None:
        self._mastery[state.concept_id] = state

    async def get_session(self, session_id: str) -> StudySession | None:
        return self._sessions.get(session_id)

    async def get_all_sessions(self) -> list[StudySession]:
        return sorted(self._sessions.values(), key=lambda s: (s.started_at, s.id))

    async def put_session(self, session: StudySession) -> None:
        self._sessions[session.id] = session

    @asynccontextmanager
    async def atomic(self) -> AsyncIterator[None]:
        # Values are frozen dataclasses, so shallow copies are enough to restore.
        saved = {name: copy.copy(getattr(self, name)) for name in self._tables()}
        try:
            yield
        except BaseException:
            for name, table in saved.items():
                setattr(self, name, table)
            raise

    async def clear_all(self) -> None:
        for name in self._tables():
            getattr(self, name).clear()

    @staticmethod
    def _tables() -> tuple[str, ...]:
        return ("_concepts", "_items", "_attempts", "_memory", "_mastery", "_sessions")
