"""
State Storage Module - DuckDB-backed persistence for engine state

Engine state (sessions, the event log, user preferences and the open session)
is kept as JSON documents under stable string keys in a single local DuckDB
file. Loads never raise: an unreadable document is logged and treated as
missing so the engine can start from empty state.
"""
from __future__ import annotations
import datetime as dt
import json
import logging
import os
import threading
from typing import Any, Dict, Optional

import duckdb

from settings import load_config

logger = logging.getLogger(__name__)

SESSIONS_KEY = "vibebarn-sessions"
EVENTS_KEY = "vibebarn-events"
PREFERENCES_KEY = "vibebarn-user-preferences"
CURRENT_SESSION_KEY = "vibebarn-current-session"

STATE_KEYS = (SESSIONS_KEY, EVENTS_KEY, PREFERENCES_KEY, CURRENT_SESSION_KEY)


class StateStorage:
    """Key -> JSON document store on top of DuckDB"""

    def __init__(self, db_path: Optional[str] = None):
        """
        Args:
            db_path: Path to DuckDB database file, or ":memory:". If None, uses
                the configured ENGINE_STATE_DB location.
        """
        if db_path is None:
            db_path = load_config().engine.state_db_path

        if db_path != ":memory:":
            db_path = os.path.abspath(db_path)
            os.makedirs(os.path.dirname(db_path), exist_ok=True)

        self.db_path = db_path
        self._lock = threading.Lock()
        self.conn: Optional[duckdb.DuckDBPyConnection] = duckdb.connect(db_path)
        self._create_tables(self.conn)

    def _create_tables(self, conn: duckdb.DuckDBPyConnection) -> None:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS engine_state (
                key TEXT PRIMARY KEY,
                document TEXT,
                updated_at TIMESTAMP
            )
        """)
        logger.info(f"State storage initialized at {self.db_path}")

    def _connection(self) -> duckdb.DuckDBPyConnection:
        if self.conn is None:
            raise RuntimeError(f"State storage at {self.db_path} is closed")
        return self.conn

    def save(self, key: str, document: Any) -> None:
        """Serialize and upsert one document."""
        payload = json.dumps(document, ensure_ascii=False)
        with self._lock:
            conn = self._connection()
            conn.execute(
                "INSERT OR REPLACE INTO engine_state VALUES (?, ?, ?)",
                [key, payload, dt.datetime.now()],
            )
        logger.debug(f"Saved state document {key} ({len(payload)} bytes)")

    def save_many(self, documents: Dict[str, Any]) -> None:
        payloads = {key: json.dumps(doc, ensure_ascii=False) for key, doc in documents.items()}
        now = dt.datetime.now()
        with self._lock:
            conn = self._connection()
            conn.execute("BEGIN TRANSACTION")
            try:
                for key, payload in payloads.items():
                    conn.execute(
                        "INSERT OR REPLACE INTO engine_state VALUES (?, ?, ?)",
                        [key, payload, now],
                    )
                conn.execute("COMMIT")
            except duckdb.Error:
                conn.execute("ROLLBACK")
                raise

    def load(self, key: str) -> Optional[Any]:
        """
        Returns the decoded document, or None when the key is missing, the
        document cannot be parsed, or the storage cannot be read.
        """
        try:
            with self._lock:
                row = self._connection().execute(
                    "SELECT document FROM engine_state WHERE key = ?", [key]
                ).fetchone()
        except (duckdb.Error, RuntimeError) as e:
            logger.warning(f"Could not read state document {key}: {e}")
            return None

        if row is None or row[0] is None:
            return None

        try:
            return json.loads(row[0])
        except json.JSONDecodeError as e:
            logger.warning(f"Discarding corrupt state document {key}: {e}")
            return None

    def delete(self, key: str) -> None:
        with self._lock:
            self._connection().execute("DELETE FROM engine_state WHERE key = ?", [key])

    def keys(self) -> list:
        with self._lock:
            rows = self._connection().execute("SELECT key FROM engine_state ORDER BY key").fetchall()
        return [row[0] for row in rows]

    def clear(self) -> None:
        """Remove every stored document"""
        logger.warning("Clearing all persisted engine state...")
        with self._lock:
            self._connection().execute("DELETE FROM engine_state")
        logger.info("Persisted engine state cleared")

    def close(self) -> None:
        with self._lock:
            if self.conn is not None:
                try:
                    self.conn.close()
                except duckdb.Error as e:
                    logger.warning(f"Error closing state storage: {e}")
                self.conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
