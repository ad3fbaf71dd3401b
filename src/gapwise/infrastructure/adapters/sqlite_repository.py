"""
SQLite Repository: Infrastructure adapter for the local learner database.

Implements LearningRepository on a single SQLite file. Catalog rows, the
append-only attempt log and the derived memory/mastery caches live in
separate tables; writes inside `atomic()` share one transaction.
"""

import json
import logging
import sqlite3
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path

from gapwise.domain.models import (
    Attempt,
    Concept,
    Item,
    ItemType,
    MasteryState,
    MemoryState,
    SessionType,
    StudySession,
    Trend,
    content_from_dict,
    content_to_dict,
)
from gapwise.domain.ports import LearningRepository

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS concepts (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    domain TEXT NOT NULL,
    subdomain TEXT,
    description TEXT,
    tags TEXT NOT NULL DEFAULT '[]'
);
CREATE TABLE IF NOT EXISTS items (
    id TEXT PRIMARY KEY,
    stem TEXT NOT NULL,
    type TEXT NOT NULL,
    concept_ids TEXT NOT NULL,
    content TEXT NOT NULL,
    difficulty INTEGER NOT NULL DEFAULT 50,
    explanation TEXT NOT NULL DEFAULT '',
    source TEXT
);
CREATE TABLE IF NOT EXISTS attempts (
    id TEXT PRIMARY KEY,
    item_id TEXT NOT NULL,
    session_id TEXT,
    concept_ids TEXT NOT NULL,
    user_answer TEXT NOT NULL,
    is_correct INTEGER NOT NULL,
    confidence INTEGER NOT NULL,
    time_spent_ms INTEGER NOT NULL,
    attempted_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS attempt_concepts (
    attempt_id TEXT NOT NULL,
    concept_id TEXT NOT NULL,
    PRIMARY KEY (attempt_id, concept_id)
);
CREATE TABLE IF NOT EXISTS memory_states (
    concept_id TEXT NOT NULL,
    item_id TEXT NOT NULL,
    stability REAL NOT NULL,
    difficulty REAL NOT NULL,
    last_reviewed TEXT NOT NULL,
    due_at TEXT NOT NULL,
    reps INTEGER NOT NULL,
    lapses INTEGER NOT NULL,
    PRIMARY KEY (concept_id, item_id)
);
CREATE TABLE IF NOT EXISTS mastery_states (
    concept_id TEXT PRIMARY KEY,
    mastery_score REAL NOT NULL,
    attempts INTEGER NOT NULL,
    correct INTEGER NOT NULL,
    avg_confidence REAL NOT NULL,
    brier_score REAL NOT NULL,
    trend TEXT NOT NULL,
    stability REAL NOT NULL,
    last_attempted TEXT
);
CREATE TABLE IF NOT EXISTS sessions (
    id TEXT PRIMARY KEY,
    session_type TEXT NOT NULL,
    started_at TEXT NOT NULL,
    total_items INTEGER NOT NULL,
    concept_id TEXT,
    time_limit_ms INTEGER,
    completed_at TEXT,
    completed_items INTEGER NOT NULL DEFAULT 0,
    accuracy REAL NOT NULL DEFAULT 0,
    average_confidence REAL NOT NULL DEFAULT 0
);
CREATE INDEX IF NOT EXISTS idx_attempts_item_id ON attempts(item_id);
CREATE INDEX IF NOT EXISTS idx_attempt_concepts_concept ON attempt_concepts(concept_id);
"""

TABLES = (
    "concepts",
    "items",
    "attempts",
    "attempt_concepts",
    "memory_states",
    "mastery_states",
    "sessions",
)


class SqliteLearningRepository(LearningRepository):
    """
    Stores the learner's data in SQLite.

    Pass ":memory:" for a throwaway database. Usable as a context manager,
    which closes the connection on exit.
    """

    def __init__(self, db_path: Path | str):
        self.db_path = db_path
        if str(db_path) != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        # Autocommit mode; atomic() opens explicit transactions.
        self._conn = sqlite3.connect(str(db_path), isolation_level=None, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.executescript(SCHEMA)
        self._in_transaction = False

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> "SqliteLearningRepository":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ---------- Catalog ----------

    async def get_all_concepts(self) -> list[Concept]:
        rows = self._conn.execute("SELECT * FROM concepts ORDER BY name, id").fetchall()
        return [self._to_concept(r) for r in rows]

    async def get_concept(self, concept_id: str) -> Concept | None:
        row = self._conn.execute("SELECT * FROM concepts WHERE id = ?", (concept_id,)).fetchone()
        return self._to_concept(row) if row else None

    async def put_concept(self, concept: Concept) -> None:
        self._conn.execute(
            "INSERT OR REPLACE INTO concepts (id, name, domain, subdomain, description, tags) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (
                concept.id,
                concept.name,
                concept.domain,
                concept.subdomain,
                concept.description,
                json.dumps(list(concept.tags)),
            ),
        )

    async def delete_concept(self, concept_id: str) -> bool:
        cur = self._conn.execute("DELETE FROM concepts WHERE id = ?", (concept_id,))
        return cur.rowcount > 0

    async def get_all_items(self) -> list[Item]:
        rows = self._conn.execute("SELECT * FROM items ORDER BY id").fetchall()
        return [self._to_item(r) for r in rows]

    async def get_item(self, item_id: str) -> Item | None:
        row = self._conn.execute("SELECT * FROM items WHERE id = ?", (item_id,)).fetchone()
        return self._to_item(row) if row else None

    async def put_item(self, item: Item) -> None:
        self._conn.execute(
            "INSERT OR REPLACE INTO items "
            "(id, stem, type, concept_ids, content, difficulty, explanation, source) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (
                item.id,
                item.stem,
                ItemType(item.type).value,
                json.dumps(list(item.concept_ids)),
                json.dumps(content_to_dict(item.content)),
                item.difficulty,
                item.explanation,
                item.source,
            ),
        )

    async def delete_item(self, item_id: str) -> bool:
        cur = self._conn.execute("DELETE FROM items WHERE id = ?", (item_id,))
        return cur.rowcount > 0

    # ---------- Attempt log ----------

    async def get_attempts_for_concept(self, concept_id: str) -> list[Attempt]:
        rows = self._conn.execute(
            "SELECT a.* FROM attempts a "
            "JOIN attempt_concepts ac ON ac.attempt_id = a.id "
            "WHERE ac.concept_id = ?",
            (concept_id,),
        ).fetchall()
        return self._sorted_attempts(rows)

    async def get_all_attempts(self) -> list[Attempt]:
        return self._sorted_attempts(self._conn.execute("SELECT * FROM attempts").fetchall())

    async def get_attempts_for_item(self, item_id: str) -> list[Attempt]:
        rows = self._conn.execute(
            "SELECT * FROM attempts WHERE item_id = ?", (item_id,)
        ).fetchall()
        return self._sorted_attempts(rows)

    async def get_attempt(self, attempt_id: str) -> Attempt | None:
        row = self._conn.execute("SELECT * FROM attempts WHERE id = ?", (attempt_id,)).fetchone()
        return self._to_attempt(row) if row else None

    async def append_attempt(self, attempt: Attempt) -> bool:
        cur = self._conn.execute(
            "INSERT OR IGNORE INTO attempts "
            "(id, item_id, session_id, concept_ids, user_answer, is_correct, confidence, "
            "time_spent_ms, attempted_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                attempt.id,
                attempt.item_id,
                attempt.session_id,
                json.dumps(list(attempt.concept_ids)),
                attempt.user_answer,
                int(attempt.is_correct),
                attempt.confidence,
                attempt.time_spent_ms,
                attempt.timestamp.isoformat(),
            ),
        )
        if cur.rowcount == 0:
            logger.debug(f"Duplicate attempt {attempt.id} ignored")
            return False
        self._conn.executemany(
            "INSERT OR IGNORE INTO attempt_concepts (attempt_id, concept_id) VALUES (?, ?)",
            [(attempt.id, cid) for cid in attempt.concept_ids],
        )
        return True

    # ---------- Derived state ----------

    async def get_memory_state(self, concept_id: str, item_id: str) -> MemoryState | None:
        row = self._conn.execute(
            "SELECT * FROM memory_states WHERE concept_id = ? AND item_id = ?",
            (concept_id, item_id),
        ).fetchone()
        return self._to_memory_state(row) if row else None

    async def get_memory_states_for_concept(self, concept_id: str) -> list[MemoryState]:
        rows = self._conn.execute(
            "SELECT * FROM memory_states WHERE concept_id = ? ORDER BY item_id", (concept_id,)
        ).fetchall()
        return [self._to_memory_state(r) for r in rows]

    async def get_all_memory_states(self) -> list[MemoryState]:
        rows = self._conn.execute(
            "SELECT * FROM memory_states ORDER BY concept_id, item_id"
        ).fetchall()
        return [self._to_memory_state(r) for r in rows]

    async def put_memory_state(self, state: MemoryState) -> None:
        self._conn.execute(
            "INSERT OR REPLACE INTO memory_states "
            "(concept_id, item_id, stability, difficulty, last_reviewed, due_at, reps, lapses) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (
                state.concept_id,
                state.item_id,
                state.stability,
                state.difficulty,
                state.last_reviewed.isoformat(),
                state.due_at.isoformat(),
                state.reps,
                state.lapses,
            ),
        )

    async def get_mastery_state(self, concept_id: str) -> MasteryState | None:
        row = self._conn.execute(
            "SELECT * FROM mastery_states WHERE concept_id = ?", (concept_id,)
        ).fetchone()
        return self._to_mastery_state(row) if row else None

    async def get_all_mastery_states(self) -> list[MasteryState]:
        rows = self._conn.execute("SELECT * FROM mastery_states ORDER BY concept_id").fetchall()
        return [self._to_mastery_state(r) for r in rows]

    async def put_mastery_state(self, state: MasteryState) -> None:
        self._conn.execute(
            "INSERT OR REPLACE INTO mastery_states "
            "(concept_id, mastery_score, attempts, correct, avg_confidence, brier_score, "
            "trend, stability, last_attempted) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                state.concept_id,
                state.mastery_score,
                state.attempts,
                state.correct,
                state.avg_confidence,
                state.brier_score,
                Trend(state.trend).value,
                state.stability,
                state.last_attempted.isoformat() if state.last_attempted else None,
            ),
        )

    # ---------- Sessions ----------

    async def get_session(self, session_id: str) -> StudySession | None:
        row = self._conn.execute("SELECT * FROM sessions WHERE id = ?", (session_id,)).fetchone()
        return self._to_session(row) if row else None

    async def get_all_sessions(self) -> list[StudySession]:
        rows = self._conn.execute("SELECT * FROM sessions").fetchall()
        return sorted((self._to_session(r) for r in rows), key=lambda s: (s.started_at, s.id))

    async def put_session(self, session: StudySession) -> None:
        self._conn.execute(
            "INSERT OR REPLACE INTO sessions "
            "(id, session_type, started_at, total_items, concept_id, time_limit_ms, "
            "completed_at, completed_items, accuracy, average_confidence) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                session.id,
                SessionType(session.session_type).value,
                session.started_at.isoformat(),
                session.total_items,
                session.concept_id,
                session.time_limit_ms,
                session.completed_at.isoformat() if session.completed_at else None,
                session.completed_items,
                session.accuracy,
                session.average_confidence,
            ),
        )

    # ---------- Housekeeping ----------

    @asynccontextmanager
    async def atomic(self) -> AsyncIterator[None]:
        if self._in_transaction:
            yield
            return
        self._conn.execute("BEGIN")
        self._in_transaction = True
        try:
            yield
        except BaseException:
            self._conn.execute("ROLLBACK")
            raise
        else:
            self._conn.execute("COMMIT")
        finally:
            self._in_transaction = False

    async def clear_all(self) -> None:
        async with self.atomic():
            for table in TABLES:
                self._conn.execute(f"DELETE FROM {table}")

    # ---------- Row mapping ----------

    @staticmethod
    def _to_concept(row: sqlite3.Row) -> Concept:
        return Concept(
            id=row["id"],
            name=row["name"],
            domain=row["domain"],
            subdomain=row["subdomain"],
            description=row["description"],
            tags=tuple(json.loads(row["tags"])),
        )

    @staticmethod
    def _to_item(row: sqlite3.Row) -> Item:
        item_type = ItemType(row["type"])
        return Item(
            id=row["id"],
            stem=row["stem"],
            type=item_type,
            concept_ids=tuple(json.loads(row["concept_ids"])),
            content=content_from_dict(item_type, json.loads(row["content"])),
            difficulty=row["difficulty"],
            explanation=row["explanation"],
            source=row["source"],
        )

    @staticmethod
    def _to_attempt(row: sqlite3.Row) -> Attempt:
        return Attempt(
            id=row["id"],
            item_id=row["item_id"],
            concept_ids=tuple(json.loads(row["concept_ids"])),
            user_answer=row["user_answer"],
            is_correct=bool(row["is_correct"]),
            confidence=row["confidence"],
            time_spent_ms=row["time_spent_ms"],
            timestamp=datetime.fromisoformat(row["attempted_at"]),
            session_id=row["session_id"],
        )

    def _sorted_attempts(self, rows: list[sqlite3.Row]) -> list[Attempt]:
        # ISO strings with optional microseconds do not sort lexically.
        return sorted((self._to_attempt(r) for r in rows), key=lambda a: (a.timestamp, a.id))

    @staticmethod
    def _to_memory_state(row: sqlite3.Row) -> MemoryState:
        return MemoryState(
            concept_id=row["concept_id"],
            item_id=row["item_id"],
            stability=row["stability"],
            difficulty=row["difficulty"],
            last_reviewed=datetime.fromisoformat(row["last_reviewed"]),
            due_at=datetime.fromisoformat(row["due_at"]),
            reps=row["reps"],
            lapses=row["lapses"],
        )

    @staticmethod
    def _to_mastery_state(row: sqlite3.Row) -> MasteryState:
        return MasteryState(
            concept_id=row["concept_id"],
            mastery_score=row["mastery_score"],
            attempts=row["attempts"],
            correct=row["correct"],
            avg_confidence=row["avg_confidence"],
            brier_score=row["brier_score"],
            trend=Trend(row["trend"]),
            stability=row["stability"],
            last_attempted=(
                datetime.fromisoformat(row["last_attempted"]) if row["last_attempted"] else None
            ),
        )

    @staticmethod
    def _to_session(row: sqlite3.Row) -> StudySession:
        return StudySession(
            id=row["id"],
            session_type=SessionType(row["session_type"]),
            started_at=datetime.fromisoformat(row["started_at"]),
            total_items=row["total_items"],
            concept_id=row["concept_id"],
            time_limit_ms=row["time_limit_ms"],
            completed_at=(
                datetime.fromisoformat(row["completed_at"]) if row["completed_at"] else None
            ),
            completed_items=row["completed_items"],
            accuracy=row["accuracy"],
            average_confidence=row["average_confidence"],
        )
