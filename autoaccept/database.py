"""SQLite persistence for autoaccept.

3 tables:
- settings: JSON-encoded configuration values
- stats: accepted/blocked counters per scope ("global" or a workspace path)
- decisions: bounded log of classifier decisions taken by the hook

WAL mode for concurrent reads, single writer lock for atomic writes.
"""

import os
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, Optional

from pydantic import BaseModel, computed_field

GLOBAL_SCOPE = "global"

# Commands are truncated before they are stored
MAX_COMMAND_LENGTH = 1000

# Oldest decisions beyond this many are dropped on insert
MAX_DECISIONS = 500


# ---------------------------------------------------------------------------
# Pydantic v2 Models
# ---------------------------------------------------------------------------


class StatsRow(BaseModel):
    """Pydantic v2 model for a stats row."""

    scope: str = GLOBAL_SCOPE
    accepted: int = 0
    blocked: int = 0
    updated_at: Optional[str] = None

    @computed_field
    @property
    def total(self) -> int:
        return self.accepted + self.blocked


class Decision(BaseModel):
    """Pydantic v2 model for a decisions row."""

    id: int
    timestamp: str
    command: Optional[str] = None
    decision: str
    method: Optional[str] = None
    reason: Optional[str] = None
    score: Optional[int] = None
    level: Optional[int] = None
    session_id: Optional[str] = None
    repo_path: Optional[str] = None


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS settings (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT
);

CREATE TABLE IF NOT EXISTS stats (
    scope TEXT PRIMARY KEY,
    accepted INTEGER NOT NULL DEFAULT 0,
    blocked INTEGER NOT NULL DEFAULT 0,
    updated_at TEXT
);

CREATE TABLE IF NOT EXISTS decisions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    timestamp TEXT NOT NULL,
    command TEXT,
    decision TEXT NOT NULL,
    method TEXT,
    reason TEXT,
    score INTEGER,
    level INTEGER,
    session_id TEXT,
    repo_path TEXT
);

CREATE INDEX IF NOT EXISTS idx_decisions_timestamp ON decisions(timestamp);
CREATE INDEX IF NOT EXISTS idx_decisions_decision ON decisions(decision);
"""


def default_db_path() -> str:
    """Return the database path: $AUTOACCEPT_DB or ~/.autoaccept/autoaccept.db"""
    return os.environ.get("AUTOACCEPT_DB") or str(Path.home() / ".autoaccept" / "autoaccept.db")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class Database:
    """SQLite database manager with WAL mode and thread-safe writes.

    >>> db = Database(":memory:")
    >>> db.db_path
    ':memory:'
    """

    def __init__(self, db_path: Optional[str] = None, max_decisions: int = MAX_DECISIONS):
        if db_path is None:
            db_path = default_db_path()

        self.db_path = db_path
        self.max_decisions = max_decisions
        self._write_lock = threading.Lock()
        self._local = threading.local()

        # Create parent dir + file if needed (skip for :memory:)
        if db_path != ":memory:" and not Path(db_path).exists():
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
            Path(db_path).touch()

        self._init_schema()

    # ------------------------------------------------------------------
    # Connection helpers
    # ------------------------------------------------------------------

    def _get_connection(self) -> sqlite3.Connection:
        if not hasattr(self._local, "connection") or self._local.connection is None:
            conn = sqlite3.connect(self.db_path, timeout=30.0, check_same_thread=False)
            conn.execute("PRAGMA journal_mode=WAL")
            conn.row_factory = sqlite3.Row
            self._local.connection = conn
        return self._local.connection

    @contextmanager
    def _writer(self) -> Iterator[sqlite3.Connection]:
        with self._write_lock:
            conn = self._get_connection()
            try:
                yield conn
                conn.commit()
            except Exception:
                conn.rollback()
                raise

    @contextmanager
    def _reader(self) -> Iterator[sqlite3.Connection]:
        yield self._get_connection()

    def _init_schema(self) -> None:
        with self._writer() as conn:
            conn.executescript(SCHEMA_SQL)

    def close(self) -> None:
        if hasattr(self._local, "connection") and self._local.connection:
            self._local.connection.close()
            self._local.connection = None

    # ==================================================================
    # Settings CRUD
    # ==================================================================

    def get_setting(self, key: str) -> Optional[str]:
        """Get a setting value by key.

        >>> db = Database(":memory:")
        >>> db.get_setting("nonexistent") is None
        True
        """
        with self._reader() as conn:
            cursor = conn.execute("SELECT value FROM settings WHERE key = ?", (key,))
            row = cursor.fetchone()
            return row["value"] if row else None

    def set_setting(self, key: str, value: str) -> None:
        """Set a setting value (upsert).

        >>> db = Database(":memory:")
        >>> db.set_setting("autoaccept.safe_mode", "true")
        >>> db.get_setting("autoaccept.safe_mode")
        'true'
        """
        with self._writer() as conn:
            conn.execute(
                """INSERT INTO settings (key, value, updated_at)
                   VALUES (?, ?, ?)
                   ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at""",
                (key, value, _now()),
            )

    def list_settings(self) -> list[dict]:
        """List all settings.

        >>> Database(":memory:").list_settings()
        []
        """
        with self._reader() as conn:
            cursor = conn.execute("SELECT * FROM settings ORDER BY key ASC")
            return [dict(row) for row in cursor.fetchall()]

    def delete_setting(self, key: str) -> bool:
        """Delete a setting.

        >>> db = Database(":memory:")
        >>> db.set_setting("tmp", '"val"')
        >>> db.delete_setting("tmp")
        True
        """
        with self._writer() as conn:
            cursor = conn.execute("DELETE FROM settings WHERE key = ?", (key,))
            return cursor.rowcount > 0

    # ==================================================================
    # Stats
    # ==================================================================

    def increment_stats(
        self,
        accepted: int = 0,
        blocked: int = 0,
        workspace: Optional[str] = None,
    ) -> None:
        """Add to the global counters and, if given, the workspace's counters.

        >>> db = Database(":memory:")
        >>> db.increment_stats(accepted=2, blocked=1, workspace="/repo")
        >>> db.get_stats().accepted, db.get_stats("/repo").blocked
        (2, 1)
        """
        if not (accepted or blocked):
            return
        scopes = [GLOBAL_SCOPE] + ([workspace] if workspace else [])
        now = _now()
        with self._writer() as conn:
            for scope in scopes:
                conn.execute(
                    """INSERT INTO stats (scope, accepted, blocked, updated_at)
                       VALUES (?, ?, ?, ?)
                       ON CONFLICT(scope) DO UPDATE SET
                           accepted = accepted + excluded.accepted,
                           blocked = blocked + excluded.blocked,
                           updated_at = excluded.updated_at""",
                    (scope, accepted, blocked, now),
                )

    def get_stats(self, scope: str = GLOBAL_SCOPE) -> StatsRow:
        """Counters for one scope (zeros when never written).

        >>> Database(":memory:").get_stats().total
        0
        """
        with self._reader() as conn:
            row = conn.execute("SELECT * FROM stats WHERE scope = ?", (scope,)).fetchone()
            return StatsRow(**dict(row)) if row else StatsRow(scope=scope)

    def reset_stats(self, scope: Optional[str] = None) -> int:
        """Zero one scope, or every scope when ``scope`` is None. Returns rows reset.

        >>> db = Database(":memory:")
        >>> db.increment_stats(accepted=1)
        >>> db.reset_stats()
        1
        >>> db.get_stats().accepted
        0
        """
        with self._writer() as conn:
            if scope:
                cursor = conn.execute("DELETE FROM stats WHERE scope = ?", (scope,))
            else:
                cursor = conn.execute("DELETE FROM stats")
            return cursor.rowcount

    # ==================================================================
    # Decisions
    # ==================================================================

    def record_decision(
        self,
        decision: str,
        command: Optional[str] = None,
        method: Optional[str] = None,
        reason: Optional[str] = None,
        score: Optional[int] = None,
        level: Optional[int] = None,
        session_id: Optional[str] = None,
        repo_path: Optional[str] = None,
        timestamp: Optional[str] = None,
    ) -> int:
        """Record a classifier decision, dropping the oldest beyond ``max_decisions``.

        >>> db = Database(":memory:", max_decisions=2)
        >>> db.record_decision("ALLOW", command="ls", score=0) > 0
        True
        >>> for cmd in ("pwd", "whoami"):
        ...     _ = db.record_decision("ALLOW", command=cmd)
        >>> [r["command"] for r in db.list_decisions()["rows"]]
        ['whoami', 'pwd']
        """
        if command and len(command) > MAX_COMMAND_LENGTH:
            command = command[:MAX_COMMAND_LENGTH]
        with self._writer() as conn:
            cursor = conn.execute(
                """INSERT INTO decisions
                   (timestamp, command, decision, method, reason, score, level, session_id, repo_path)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (timestamp or _now(), command, decision, method, reason, score, level,
                 session_id, repo_path),
            )
            conn.execute(
                """DELETE FROM decisions WHERE id NOT IN (
                       SELECT id FROM decisions ORDER BY timestamp DESC, id DESC LIMIT ?)""",
                (self.max_decisions,),
            )
            return cursor.lastrowid or 0

    def list_decisions(
        self,
        limit: int = 50,
        offset: int = 0,
        decision: Optional[str] = None,
    ) -> dict:
        """Recent decisions, newest first. ``{"rows": [...], "total": N}``.

        >>> Database(":memory:").list_decisions()
        {'rows': [], 'total': 0}
        """
        where = " WHERE decision = ?" if decision else ""
        params: list = [decision] if decision else []
        with self._reader() as conn:
            total = conn.execute(f"SELECT COUNT(*) FROM decisions{where}", params).fetchone()[0]
            cursor = conn.execute(
                f"SELECT * FROM decisions{where} ORDER BY timestamp DESC, id DESC LIMIT ? OFFSET ?",
                params + [limit, offset],
            )
            return {"rows": [dict(row) for row in cursor.fetchall()], "total": total}

    def purge_decisions(self, before_iso: Optional[str] = None) -> int:
        """Delete decisions older than ``before_iso`` (or all). Returns rows deleted.

        >>> db = Database(":memory:")
        >>> db.record_decision("ASK_USER", command="rm -rf /")
        1
        >>> db.purge_decisions()
        1
        """
        with self._writer() as conn:
            if before_iso:
                cursor = conn.execute("DELETE FROM decisions WHERE timestamp < ?", (before_iso,))
            else:
                cursor = conn.execute("DELETE FROM decisions")
            return cursor.rowcount
