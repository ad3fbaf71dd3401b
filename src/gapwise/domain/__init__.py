# Domain Package
from .errors import (
    ComputationInvariantError,
    GapwiseError,
    NotFoundError,
    UnknownItemError,
    ValidationError,
)
from .models import (
    Attempt,
    Concept,
    DailyPlan,
    GapLevel,
    GapSummary,
    Item,
    ItemType,
    MasteryState,
    MemoryState,
    PlanBudget,
    PlannedItem,
    PlanReason,
    Rating,
    SessionType,
    StudySession,
    Trend,
)
from .ports import LearningRepository

__all__ = [
    "Attempt",
    "Concept",
    "DailyPlan",
    "GapLevel",
    "GapSummary",
    "Item",
    "ItemType",
    "MasteryState",
    "MemoryState",
    "PlanBudget",
    "PlannedItem",
    "PlanReason",
    "Rating",
    "SessionType",
    "StudySession",
    "Trend",
    "LearningRepository",
    "GapwiseError",
    "ValidationError",
    "NotFoundError",
    "UnknownItemError",
    "ComputationInvariantError",
]
