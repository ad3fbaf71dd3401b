"""
Repository Factory
Centralizes the logic for selecting the persistence adapter.
"""

from gapwise.application.config import AppConfig
from gapwise.application.service import LearningService
from gapwise.domain.ports import LearningRepository
from gapwise.infrastructure.adapters.memory_repository import InMemoryLearningRepository
from gapwise.infrastructure.adapters.sqlite_repository import SqliteLearningRepository


def get_repository(config: AppConfig) -> LearningRepository:
    """
    Returns the LearningRepository implementation selected by config.
    """
    if config.backend == "memory":
        return InMemoryLearningRepository()
    return SqliteLearningRepository(config.database_path)


def get_learning_service(config: AppConfig) -> LearningService:
    return LearningService(get_repository(config), config=config)
