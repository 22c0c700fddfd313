"""Persistent session and learning state using SQLite.

Snapshots are insert-only: popping a snapshot marks its row consumed
rather than deleting it. Learning models are stored as one row per
version, and versions must strictly increase.

Every sqlite3 failure (locked, read-only or corrupt database) surfaces as
StateStoreError so callers can recover with in-memory state.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from pydantic import ValidationError

from ctxpack.context.models import ContextProfile, Snapshot
from ctxpack.exceptions import ModelCorruption, StateStoreError
from ctxpack.learning.model import LearningModel

logger = logging.getLogger("ctxpack.state")


class StateStore:
    """Persists session stacks, active profiles and learning models.

    One connection is shared across threads and guarded by a lock; the
    switcher and the background learner both write through it.
    """

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = Path(db_path)
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.RLock()

    def _get_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            try:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
                conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            except (OSError, sqlite3.Error) as e:
                raise StateStoreError(f"Cannot open state database {self.db_path}: {e}") from e
            try:
                conn.row_factory = sqlite3.Row
                conn.execute("PRAGMA journal_mode=WAL")
                self._create_tables(conn)
            except sqlite3.Error as e:
                conn.close()
                raise StateStoreError(f"Unusable state database {self.db_path}: {e}") from e
            self._conn = conn
        return self._conn

    @contextmanager
    def _db(self) -> Iterator[sqlite3.Connection]:
        """Locked access to the connection; sqlite3 errors become StateStoreError."""
        with self._lock:
            try:
                yield self._get_conn()
            except sqlite3.Error as e:
                if self._conn is not None:
                    try:
                        self._conn.rollback()
                    except sqlite3.Error as rollback_error:
                        logger.debug(f"Rollback failed: {rollback_error}")
                raise StateStoreError(f"State database {self.db_path} failed: {e}") from e

    @staticmethod
    def _create_tables(conn: sqlite3.Connection) -> None:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS snapshots (
                id TEXT PRIMARY KEY,
                session_id TEXT NOT NULL,
                seq INTEGER NOT NULL,
                payload TEXT NOT NULL,
                created_at REAL NOT NULL,
                consumed_at REAL
            );

            CREATE TABLE IF NOT EXISTS active_profiles (
                session_id TEXT PRIMARY KEY,
                payload TEXT NOT NULL,
                updated_at REAL NOT NULL
            );

            CREATE TABLE IF NOT EXISTS models (
                version INTEGER PRIMARY KEY,
                payload TEXT NOT NULL,
                created_at REAL NOT NULL
            );

            CREATE TABLE IF NOT EXISTS affinity (
                path_a TEXT NOT NULL,
                path_b TEXT NOT NULL,
                count INTEGER NOT NULL,
                PRIMARY KEY (path_a, path_b)
            );

            CREATE TABLE IF NOT EXISTS metadata (
                key TEXT PRIMARY KEY,
                value TEXT
            );

            CREATE INDEX IF NOT EXISTS idx_snapshots_session ON snapshots(session_id, seq);
        """)
        conn.commit()

    # ------------------------------------------------------------------
    # Session stacks
    # ------------------------------------------------------------------

    def push_snapshot(self, snapshot: Snapshot) -> None:
        """Append a snapshot to the top of its session's stack."""
        with self._db() as conn:
            row = conn.execute(
                "SELECT COALESCE(MAX(seq), 0) AS top FROM snapshots WHERE session_id = ?",
                (snapshot.session_id,),
            ).fetchone()
            try:
                conn.execute(
                    """INSERT INTO snapshots (id, session_id, seq, payload, created_at)
                       VALUES (?, ?, ?, ?, ?)""",
                    (
                        snapshot.id,
                        snapshot.session_id,
                        row["top"] + 1,
                        snapshot.model_dump_json(),
                        snapshot.created_at,
                    ),
                )
            except sqlite3.IntegrityError as e:
                conn.rollback()
                raise StateStoreError(f"Snapshot '{snapshot.id}' already stored") from e
            conn.commit()

    def consume_snapshot(self, snapshot_id: str) -> bool:
        """Mark a snapshot popped. Returns False if it was not on a stack."""
        with self._db() as conn:
            cur = conn.execute(
                "UPDATE snapshots SET consumed_at = ? WHERE id = ? AND consumed_at IS NULL",
                (time.time(), snapshot_id),
            )
            conn.commit()
            return cur.rowcount > 0

    def load_stack(self, session_id: str) -> list[Snapshot]:
        """Unconsumed snapshots for a session, bottom of the stack first."""
        with self._db() as conn:
            rows = conn.execute(
                """SELECT id, payload FROM snapshots
                   WHERE session_id = ? AND consumed_at IS NULL
                   ORDER BY seq""",
                (session_id,),
            ).fetchall()

        stack = []
        for row in rows:
            try:
                stack.append(Snapshot.model_validate_json(row["payload"]))
            except ValidationError as e:
                logger.warning(f"Skipping unreadable snapshot '{row['id']}': {e.error_count()} errors")
        return stack

    def session_ids(self) -> list[str]:
        with self._db() as conn:
            rows = conn.execute(
                """SELECT session_id FROM snapshots WHERE consumed_at IS NULL
                   UNION SELECT session_id FROM active_profiles
                   ORDER BY session_id"""
            ).fetchall()
        return [row["session_id"] for row in rows]

    def save_active(self, session_id: str, profile: ContextProfile) -> None:
        with self._db() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO active_profiles (session_id, payload, updated_at) VALUES (?, ?, ?)",
                (session_id, profile.model_dump_json(), time.time()),
            )
            conn.commit()

    def load_active(self, session_id: str) -> ContextProfile | None:
        with self._db() as conn:
            row = conn.execute(
                "SELECT payload FROM active_profiles WHERE session_id = ?", (session_id,)
            ).fetchone()
        if not row:
            return None
        try:
            return ContextProfile.model_validate_json(row["payload"])
        except ValidationError as e:
            logger.warning(f"Discarding unreadable active profile for '{session_id}': {e.error_count()} errors")
            return None

    def clear_active(self, session_id: str) -> None:
        with self._db() as conn:
            conn.execute("DELETE FROM active_profiles WHERE session_id = ?", (session_id,))
            conn.commit()

    # ------------------------------------------------------------------
    # Learning model
    # ------------------------------------------------------------------

    def save_model(self, model: LearningModel) -> None:
        """Insert a new model version and refresh the affinity table."""
        with self._db() as conn:
            latest = self.latest_model_version()
            if latest is not None and model.version <= latest:
                raise StateStoreError(
                    f"Model version {model.version} is not newer than stored v{latest}"
                )
            conn.execute(
                "INSERT INTO models (version, payload, created_at) VALUES (?, ?, ?)",
                (model.version, model.model_dump_json(), time.time()),
            )
            conn.execute("DELETE FROM affinity")
            conn.executemany(
                "INSERT INTO affinity (path_a, path_b, count) VALUES (?, ?, ?)",
                [
                    (a, b, count)
                    for a, partners in model.co_access.items()
                    for b, count in partners.items()
                    if a < b
                ],
            )
            conn.commit()

    def load_model(self) -> LearningModel | None:
        """The newest stored model, or None if nothing was saved yet.

        Raises ModelCorruption if the stored payload cannot be parsed.
        Range checks on the weights are left to ``LearningModel.check``.
        """
        with self._db() as conn:
            row = conn.execute(
                "SELECT version, payload FROM models ORDER BY version DESC LIMIT 1"
            ).fetchone()
        if not row:
            return None
        try:
            return LearningModel.model_validate_json(row["payload"])
        except ValidationError as e:
            raise ModelCorruption(f"Stored model v{row['version']} is unreadable: {e}") from e

    def latest_model_version(self) -> int | None:
        with self._db() as conn:
            row = conn.execute("SELECT MAX(version) AS v FROM models").fetchone()
        return row["v"]

    def model_versions(self) -> list[int]:
        with self._db() as conn:
            rows = conn.execute("SELECT version FROM models ORDER BY version").fetchall()
        return [row["version"] for row in rows]

    def affinity(self) -> dict[tuple[str, str], int]:
        """Stored co-access counts keyed by (a, b) with a < b."""
        with self._db() as conn:
            rows = conn.execute("SELECT path_a, path_b, count FROM affinity").fetchall()
        return {(row["path_a"], row["path_b"]): row["count"] for row in rows}

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------

    def get_metadata(self, key: str):
        with self._db() as conn:
            row = conn.execute("SELECT value FROM metadata WHERE key = ?", (key,)).fetchone()
        if row:
            return json.loads(row["value"])
        return None

    def set_metadata(self, key: str, value) -> None:
        with self._db() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO metadata (key, value) VALUES (?, ?)",
                (key, json.dumps(value)),
            )
            conn.commit()

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._conn:
                self._conn.close()
                self._conn = None
