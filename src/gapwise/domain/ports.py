"""
Ports (interfaces) for persistence.

These define the contract that infrastructure adapters must implement.
Application services depend on these abstractions, not concrete implementations.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager

from .models import Attempt, Concept, Item, MasteryState, MemoryState, StudySession


class LearningRepository(ABC):
    """
    Port for reading and writing the learner's catalog, attempt log and derived state.

    Implementations:
        - InMemoryLearningRepository: dict-backed, used by tests and embedding callers.
        - SqliteLearningRepository: the local single-user SQLite store.
    """

    # ---------- Catalog ----------

    @abstractmethod
    async def get_all_concepts(self) -> list[Concept]:
        """Return every concept ordered by name, then id."""

    @abstractmethod
    async def get_concept(self, concept_id: str) -> Concept | None:
        pass

    @abstractmethod
    async def put_concept(self, concept: Concept) -> None:
        pass

    @abstractmethod
    async def delete_concept(self, concept_id: str) -> bool:
        pass

    @abstractmethod
    async def get_all_items(self) -> list[Item]:
        """Return every item ordered by id."""

    @abstractmethod
    async def get_item(self, item_id: str) -> Item | None:
        pass

    @abstractmethod
    async def put_item(self, item: Item) -> None:
        pass

    @abstractmethod
    async def delete_item(self, item_id: str) -> bool:
        pass

    # ---------- Attempt log ----------

    @abstractmethod
    async def get_attempts_for_concept(self, concept_id: str) -> list[Attempt]:
        """
        Fetch the attempt history for a concept.

        Returns:
            Attempts whose denormalized concept_ids contain the concept,
            sorted by timestamp ascending.
        """

    @abstractmethod
    async def get_all_attempts(self) -> list[Attempt]:
        pass

    @abstractmethod
    async def get_attempts_for_item(self, item_id: str) -> list[Attempt]:
        """Attempts on one item, sorted by timestamp ascending."""

    @abstractmethod
    async def get_attempt(self, attempt_id: str) -> Attempt | None:
        pass

    @abstractmethod
    async def append_attempt(self, attempt: Attempt) -> bool:
        """
        Append an attempt to the log.

        Returns:
            False if an attempt with the same id is already stored (nothing written).
        """

    # ---------- Derived state ----------

    @abstractmethod
    async def get_memory_state(self, concept_id: str, item_id: str) -> MemoryState | None:
        pass

    @abstractmethod
    async def get_memory_states_for_concept(self, concept_id: str) -> list[MemoryState]:
        pass

    @abstractmethod
    async def get_all_memory_states(self) -> list[MemoryState]:
        pass

    @abstractmethod
    async def put_memory_state(self, state: MemoryState) -> None:
        pass

    @abstractmethod
    async def get_mastery_state(self, concept_id: str) -> MasteryState | None:
        pass

    @abstractmethod
    async def get_all_mastery_states(self) -> list[MasteryState]:
        pass

    @abstractmethod
    async def put_mastery_state(self, state: MasteryState) -> None:
        pass

    # ---------- Sessions ----------

    @abstractmethod
    async def get_session(self, session_id: str) -> StudySession | None:
        pass

    @abstractmethod
    async def get_all_sessions(self) -> list[StudySession]:
        """Return every session ordered by start time, then id."""

    @abstractmethod
    async def put_session(self, session: StudySession) -> None:
        pass

    # ---------- Housekeeping ----------

    @abstractmethod
    def atomic(self) -> AbstractAsyncContextManager[None]:
        """
        Group writes so that they all become visible together or not at all.

        If the block raises, every write made inside it is rolled back.
        """

    @abstractmethod
    async def clear_all(self) -> None:
        pass
