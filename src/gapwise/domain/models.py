"""
Domain models for concepts, items, attempts and the state derived from them.

These are pure data structures with no I/O or external dependencies.
"""

from collections.abc import Mapping
from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from enum import Enum, IntEnum
from typing import Any

from .constants import DEFAULT_REVIEW_SHARE


class ItemType(str, Enum):
    MCQ = "mcq"
    FREE_RECALL = "free-recall"
    CALC = "calc"
    CASE = "case"
    CLOZE = "cloze"


class Rating(IntEnum):
    """Recall quality derived from correctness and confidence."""

    AGAIN = 1
    HARD = 2
    GOOD = 3
    EASY = 4


class Trend(str, Enum):
    UP = "up"
    DOWN = "down"
    STABLE = "stable"


class PlanReason(str, Enum):
    DUE_REVIEW = "due-review"
    DIAGNOSTIC_GAP = "diagnostic-gap"
    DIAGNOSTIC_UNCOVERED = "diagnostic-uncovered"


class GapLevel(str, Enum):
    CRITICAL = "critical"
    WEAK = "weak"
    DEVELOPING = "developing"
    STRONG = "strong"


class SessionType(str, Enum):
    MIXED = "mixed"
    DIAGNOSTIC = "diagnostic"
    FOCUSED = "focused"
    EXAM = "exam"


@dataclass(frozen=True)
class Concept:
    id: str
    name: str
    domain: str
    subdomain: str | None = None
    description: str | None = None
    tags: tuple[str, ...] = ()


# ---------- Item content variants (one per ItemType) ----------


@dataclass(frozen=True)
class McqContent:
    choices: tuple[str, ...]
    correct_answer: str


@dataclass(frozen=True)
class FreeRecallContent:
    correct_answer: str


@dataclass(frozen=True)
class CalcContent:
    calc_template: str
    correct_answer: float | None = None
    unit: str = ""


@dataclass(frozen=True)
class CaseStep:
    prompt: str
    correct_answer: str
    points: int = 1
    explanation: str = ""


@dataclass(frozen=True)
class CaseContent:
    case_steps: tuple[CaseStep, ...]


@dataclass(frozen=True)
class ClozeContent:
    cloze_text: str


ItemContent = McqContent | FreeRecallContent | CalcContent | CaseContent | ClozeContent

CONTENT_TYPES: dict[ItemType, type] = {
    ItemType.MCQ: McqContent,
    ItemType.FREE_RECALL: FreeRecallContent,
    ItemType.CALC: CalcContent,
    ItemType.CASE: CaseContent,
    ItemType.CLOZE: ClozeContent,
}


@dataclass(frozen=True)
class Item:
    """
    A practice item.

    Attributes:
        type: Discriminator for `content`.
        concept_ids: Concepts this item targets; correctness propagates to all.
        difficulty: Author-set prior, 0-100 (not the FSRS difficulty).
    """

    id: str
    stem: str
    type: ItemType
    concept_ids: tuple[str, ...]
    content: ItemContent
    difficulty: int = 50
    explanation: str = ""
    source: str | None = None


@dataclass(frozen=True)
class Attempt:
    """
    An immutable answer record.

    `concept_ids` is denormalized from the item at submission time so
    recomputation never has to dereference a possibly deleted item.
    """

    id: str
    item_id: str
    concept_ids: tuple[str, ...]
    user_answer: str
    is_correct: bool
    confidence: int  # 1-5
    time_spent_ms: int
    timestamp: datetime
    session_id: str | None = None


@dataclass(frozen=True)
class StudySession:
    """
    A study sitting that attempts can be tagged with.

    Focused sessions carry `concept_id`; exams carry `time_limit_ms`.
    The completion figures are computed from the tagged attempts when the
    session is completed.
    """

    id: str
    session_type: SessionType
    started_at: datetime
    total_items: int
    concept_id: str | None = None
    time_limit_ms: int | None = None
    completed_at: datetime | None = None
    completed_items: int = 0
    accuracy: float = 0.0
    average_confidence: float = 0.0


@dataclass(frozen=True)
class MemoryState:
    """
    FSRS memory state for one (concept, item) pair.

    Attributes:
        stability: Days until recall probability drops to 90%.
        difficulty: Intrinsic difficulty on the 1-10 scale.
        due_at: Always last_reviewed + interval(stability); never set on its own.
    """

    concept_id: str
    item_id: str
    stability: float
    difficulty: float
    last_reviewed: datetime
    due_at: datetime
    reps: int = 1
    lapses: int = 0


@dataclass(frozen=True)
class MasteryState:
    concept_id: str
    mastery_score: float = 0.0
    attempts: int = 0
    correct: int = 0
    avg_confidence: float = 0.0
    brier_score: float = 0.0
    trend: Trend = Trend.STABLE
    stability: float = 0.0
    last_attempted: datetime | None = None


@dataclass(frozen=True)
class GapSummary:
    concept_id: str
    mastery_score: float
    stability: float
    review_backlog: int
    attempts: int
    trend: Trend
    level: GapLevel
    concept_name: str | None = None


@dataclass(frozen=True)
class PlannedItem:
    item_id: str
    concept_id: str
    reason: PlanReason
    priority: int


@dataclass(frozen=True)
class PlanBudget:
    max_items: int
    max_minutes: float
    review_share: float = DEFAULT_REVIEW_SHARE


@dataclass
class DailyPlan:
    date: date
    reviews: list[PlannedItem] = field(default_factory=list)
    diagnostics: list[PlannedItem] = field(default_factory=list)
    total_items: int = 0
    estimated_time_minutes: float = 0.0
    coverage_percent: int = 0

    @property
    def items(self) -> list[PlannedItem]:
        """All planned items in priority order."""
        return sorted(self.reviews + self.diagnostics, key=lambda p: p.priority)


@dataclass(frozen=True)
class PerformanceTrend:
    date: date
    accuracy: float
    items_completed: int
    avg_confidence: float


def content_to_dict(content: ItemContent) -> dict[str, Any]:
    """Flatten an item content variant into plain JSON-compatible data."""
    data = asdict(content)
    for key, value in data.items():
        if isinstance(value, tuple):
            data[key] = list(value)
    return data


def content_from_dict(item_type: ItemType | str, data: Mapping[str, Any]) -> ItemContent:
    """
    Build the content variant for `item_type` from plain data.

    Unknown keys are ignored; missing required keys raise KeyError, a
    non-mapping case step raises TypeError.
    """
    item_type = ItemType(item_type)
    if item_type == ItemType.MCQ:
        return McqContent(
            choices=tuple(str(c) for c in data.get("choices") or ()),
            correct_answer=str(data["correct_answer"]),
        )
    if item_type == ItemType.FREE_RECALL:
        return FreeRecallContent(correct_answer=str(data["correct_answer"]))
    if item_type == ItemType.CALC:
        answer = data.get("correct_answer")
        return CalcContent(
            calc_template=str(data["calc_template"]),
            correct_answer=float(answer) if answer is not None else None,
            unit=str(data.get("unit") or ""),
        )
    if item_type == ItemType.CASE:
        steps = []
        for raw in data.get("case_steps") or ():
            if not isinstance(raw, Mapping):
                raise TypeError(f"case step must be a mapping, got {type(raw).__name__}")
            steps.append(
                CaseStep(
                    prompt=str(raw["prompt"]),
                    correct_answer=str(raw["correct_answer"]),
                    points=int(raw.get("points", 1)),
                    explanation=str(raw.get("explanation") or ""),
                )
            )
        return CaseContent(case_steps=tuple(steps))
    if item_type == ItemType.CLOZE:
        return ClozeContent(cloze_text=str(data["cloze_text"]))
    raise ValueError(f"Unhandled item type: {item_type}")
