# Infrastructure Adapters Package
from .memory_repository import InMemoryLearningRepository
from .sqlite_repository import SqliteLearningRepository

__all__ = ["InMemoryLearningRepository", "SqliteLearningRepository"]
