"""DuckDB-backed message store.

Append-only persistence for chat lines with time-ordered reads.

Database Schema:
    messages table:
        - seq: Auto-incrementing insertion counter (tie-break for ordering)
        - id: Message UUID
        - text: Message body ('' allowed, never NULL)
        - username: Author username captured at write time
        - user_id: Author user ID
        - created_at: Server-assigned timestamp (UTC, naive in storage)

Thread Safety:
    A DuckDB connection is not safe for concurrent use. The chat core calls
    this store through ``asyncio.to_thread`` so every public method takes
    ``self._lock``; this also serializes writes, which is what keeps
    ``created_at`` non-decreasing in insertion order.

Usage:
    store = MessageStore.get_instance()
    msg = store.create("hello", username="alice", user_id="u-1")
    history = store.list_history(limit=50)
"""
import logging
import threading
import uuid
from datetime import datetime, timezone
from typing import List, Optional

import duckdb

from .schemas import Message

logger = logging.getLogger(__name__)

_COLUMNS = "id, text, username, user_id, created_at"


class MessageStore:
    """Singleton store for chat messages.

    Attributes:
        _instance: Singleton instance of the store.
        _db_path: Path to the DuckDB database file.
    """

    _instance: Optional["MessageStore"] = None
    _db_path: str = "livechat.duckdb"

    def __init__(self, db_path: Optional[str] = None) -> None:
        """Open the database and create the schema if needed.

        Args:
            db_path: Path to DuckDB file, or ":memory:".
        """
        if db_path:
            self._db_path = db_path
        self._lock = threading.Lock()
        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        self._last_created_at: Optional[datetime] = None
        self._initialize_db()

    @classmethod
    def get_instance(cls, db_path: Optional[str] = None) -> "MessageStore":
        """Get or create the singleton instance.

        Args:
            db_path: Optional database path (only used on first call).
        """
        if cls._instance is None:
            cls._instance = cls(db_path)
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Close and drop the singleton (for testing)."""
        if cls._instance is not None:
            cls._instance.close()
            cls._instance = None

    def _get_connection(self) -> duckdb.DuckDBPyConnection:
        if self._connection is None:
            self._connection = duckdb.connect(self._db_path)
        return self._connection

    def _initialize_db(self) -> None:
        conn = self._get_connection()
        conn.execute("CREATE SEQUENCE IF NOT EXISTS messages_seq START 1")
        conn.execute("""
            CREATE TABLE IF NOT EXISTS messages (
                seq BIGINT DEFAULT nextval('messages_seq') PRIMARY KEY,
                id VARCHAR NOT NULL UNIQUE,
                text VARCHAR NOT NULL,
                username VARCHAR NOT NULL,
                user_id VARCHAR NOT NULL,
                created_at TIMESTAMP NOT NULL
            )
        """)
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_messages_created ON messages(created_at)"
        )
        row = conn.execute("SELECT max(created_at) FROM messages").fetchone()
        if row and row[0] is not None:
            self._last_created_at = row[0].replace(tzinfo=timezone.utc)
        logger.info("[MessageStore] Initialized with db=%s", self._db_path)

    # -----------------------------------------------------------------------
    # Operations
    # -----------------------------------------------------------------------

    def create(
        self,
        text: str,
        username: str,
        user_id: str,
        message_id: Optional[str] = None,
    ) -> Message:
        """Append a message and return the stored record.

        The timestamp is never earlier than the previous insert, even if
        the wall clock steps backwards.

        Args:
            message_id: Caller-chosen id, so a write whose result was never
                observed can still be found and removed. Generated if omitted.
        """
        with self._lock:
            created_at = datetime.now(timezone.utc)
            if self._last_created_at is not None and created_at < self._last_created_at:
                created_at = self._last_created_at

            message = Message(
                id=message_id or str(uuid.uuid4()),
                text=text if text is not None else "",
                username=username,
                userId=user_id,
                createdAt=created_at,
            )
            self._get_connection().execute(
                f"INSERT INTO messages ({_COLUMNS}) VALUES (?, ?, ?, ?, ?)",
                [
                    message.id,
                    message.text,
                    message.username,
                    message.userId,
                    created_at.replace(tzinfo=None),
                ],
            )
            self._last_created_at = created_at
            return message

    def list_history(self, limit: int) -> List[Message]:
        """Return up to ``limit`` messages, oldest first."""
        with self._lock:
            rows = self._get_connection().execute(
                f"""
                SELECT {_COLUMNS}
                FROM messages
                ORDER BY created_at ASC, seq ASC
                LIMIT ?
                """,
                [limit],
            ).fetchall()
        return [self._row_to_message(row) for row in rows]

    def count(self) -> int:
        with self._lock:
            row = self._get_connection().execute(
                "SELECT count(*) FROM messages"
            ).fetchone()
        return int(row[0]) if row else 0

    def delete(self, message_id: str) -> bool:
        """Delete one message by id; returns False if it was not stored."""
        with self._lock:
            deleted = self._get_connection().execute(
                "DELETE FROM messages WHERE id = ? RETURNING id", [message_id]
            ).fetchone()
        return deleted is not None

    def delete_all(self) -> int:
        """Delete every message in one statement; returns how many were removed."""
        with self._lock:
            deleted = self._get_connection().execute(
                "DELETE FROM messages RETURNING id"
            ).fetchall()
        logger.info("[MessageStore] Deleted %d messages", len(deleted))
        return len(deleted)

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._connection is not None:
                self._connection.close()
                self._connection = None

    # -----------------------------------------------------------------------
    # Internal
    # -----------------------------------------------------------------------

    @staticmethod
    def _row_to_message(row) -> Message:
        created_at = row[4]
        if isinstance(created_at, datetime) and created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)
        return Message(
            id=row[0],
            text=row[1],
            username=row[2],
            userId=row[3],
            createdAt=created_at,
        )
