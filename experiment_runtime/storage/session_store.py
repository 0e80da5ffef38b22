"""
SQLite Session Store
====================

Provides persistence for:
- Local key/value items (participant ID, one-time setup flags)
- Session records (who ran which experiments, and when)
"""

import sqlite3
import json
from typing import Any, Dict, List, Optional
from datetime import datetime
from pathlib import Path
import logging

logger = logging.getLogger(__name__)

USER_ID_KEY = "jspsych_userId"
NOTIFICATIONS_SETUP_KEY = "notificationsSetup"


class SessionStore:
    """
    SQLite store for participant-local state.

    Tables:
    - local_storage: String key/value items
    - sessions: One row per completed session
    """

    def __init__(self, db_path: str = "data/sessions.db"):
        """
        Initialize the session store.

        Args:
            db_path: Path to SQLite database file, or ":memory:"
        """
        self.db_path = db_path
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        self.conn: Optional[sqlite3.Connection] = None
        self._connect()
        self._create_tables()

        logger.info(f"SessionStore initialized: {db_path}")

    def _connect(self):
        """Establish database connection."""
        self.conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        self.conn.row_factory = sqlite3.Row

    def _create_tables(self):
        """Create database tables if they don't exist."""
        cursor = self.conn.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS local_storage (
                key TEXT PRIMARY KEY,
                value TEXT,
                updated_at TEXT
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS sessions (
                session_id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT,
                started_at TEXT,
                completed_at TEXT,
                trial_count INTEGER DEFAULT 0,
                experiments_json TEXT,
                failed_json TEXT
            )
        """)

        cursor.execute("CREATE INDEX IF NOT EXISTS idx_sessions_user ON sessions(user_id)")

        self.conn.commit()
        logger.debug("Database tables created/verified")

    # ==================== Local Storage ====================

    def get_item(self, key: str) -> Optional[str]:
        """Get a stored item, or None."""
        cursor = self.conn.cursor()
        cursor.execute("SELECT value FROM local_storage WHERE key = ?", (key,))
        row = cursor.fetchone()
        return None if row is None else row["value"]

    def set_item(self, key: str, value: Any):
        """Store an item; non-string values are stored as their string form."""
        cursor = self.conn.cursor()
        cursor.execute("""
            INSERT OR REPLACE INTO local_storage (key, value, updated_at)
            VALUES (?, ?, ?)
        """, (key, str(value), datetime.now().isoformat()))
        self.conn.commit()
        logger.debug(f"Stored item {key}")

    def remove_item(self, key: str) -> bool:
        cursor = self.conn.cursor()
        cursor.execute("DELETE FROM local_storage WHERE key = ?", (key,))
        self.conn.commit()
        return cursor.rowcount > 0

    def clear(self):
        """Remove every local storage item."""
        cursor = self.conn.cursor()
        cursor.execute("DELETE FROM local_storage")
        self.conn.commit()

    # ==================== Sessions ====================

    def save_session(
        self,
        user_id: Optional[str],
        started_at: datetime,
        completed_at: datetime,
        trial_count: int,
        experiments: List[str],
        failed: Optional[List[str]] = None,
    ) -> int:
        """
        Save a completed session.

        Returns:
            The new session ID
        """
        cursor = self.conn.cursor()
        cursor.execute("""
            INSERT INTO sessions (
                user_id, started_at, completed_at, trial_count,
                experiments_json, failed_json
            ) VALUES (?, ?, ?, ?, ?, ?)
        """, (
            user_id,
            started_at.isoformat(),
            completed_at.isoformat(),
            trial_count,
            json.dumps(experiments),
            json.dumps(failed or []),
        ))
        self.conn.commit()

        session_id = cursor.lastrowid
        logger.debug(f"Saved session {session_id} for user {user_id}")
        return session_id

    def list_sessions(self, user_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """List saved sessions, oldest first, optionally for one user."""
        cursor = self.conn.cursor()

        if user_id:
            cursor.execute(
                "SELECT * FROM sessions WHERE user_id = ? ORDER BY session_id",
                (user_id,)
            )
        else:
            cursor.execute("SELECT * FROM sessions ORDER BY session_id")

        return [
            {
                "session_id": row["session_id"],
                "user_id": row["user_id"],
                "started_at": row["started_at"],
                "completed_at": row["completed_at"],
                "trial_count": row["trial_count"],
                "experiments": json.loads(row["experiments_json"]),
                "failed": json.loads(row["failed_json"]) if row["failed_json"] else [],
            }
            for row in cursor.fetchall()
        ]

    # ==================== Utility ====================

    def close(self):
        """Close database connection."""
        if self.conn:
            self.conn.close()
            self.conn = None
            logger.info("Database connection closed")

    def get_table_counts(self) -> Dict[str, int]:
        """Get row counts for all tables."""
        cursor = self.conn.cursor()
        counts = {}

        for table in ["local_storage", "sessions"]:
            cursor.execute(f"SELECT COUNT(*) FROM {table}")
            counts[table] = cursor.fetchone()[0]

        return counts
