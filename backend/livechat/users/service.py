"""UserStore: DuckDB-backed credential store."""
import logging
import threading
import uuid
from datetime import datetime, timezone
from typing import Optional, Tuple

import duckdb

from livechat.exceptions import ValidationError

from .schemas import User

logger = logging.getLogger(__name__)

_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS users (
    id            VARCHAR PRIMARY KEY,
    username      VARCHAR NOT NULL,
    password_hash VARCHAR NOT NULL,
    created_at    TIMESTAMP NOT NULL
)
"""


class UserStore:
    """Singleton store for user accounts.

    Password hashing happens in :mod:`livechat.auth.service`; this class only
    stores and returns the encoded hash. Username uniqueness is checked under
    ``self._lock`` rather than with a UNIQUE index, since DuckDB rewrites
    updates of indexed columns as delete + insert.
    """

    _instance: Optional["UserStore"] = None
    _default_db_path: str = "livechat.duckdb"

    def __init__(self, db_path: Optional[str] = None) -> None:
        self._db_path = db_path or self._default_db_path
        self._lock = threading.Lock()
        self._conn = duckdb.connect(self._db_path)
        self._conn.execute(_CREATE_TABLE)
        logger.info("[UserStore] Initialized with db=%s", self._db_path)

    @classmethod
    def get_instance(cls, db_path: Optional[str] = None) -> "UserStore":
        if cls._instance is None:
            cls._instance = cls(db_path)
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        if cls._instance is not None:
            cls._instance.close()
            cls._instance = None

    # -----------------------------------------------------------------------
    # CRUD
    # -----------------------------------------------------------------------

    def create(self, username: str, password_hash: str) -> User:
        """Insert a new user.

        Raises:
            ValidationError: If the username is already taken.
        """
        with self._lock:
            if self._find_id(username) is not None:
                raise ValidationError("User already exists")
            user_id = str(uuid.uuid4())
            now = datetime.now(timezone.utc).replace(tzinfo=None)
            self._conn.execute(
                "INSERT INTO users (id, username, password_hash, created_at) VALUES (?, ?, ?, ?)",
                [user_id, username, password_hash, now],
            )
            return self._get(user_id)

    def get(self, user_id: str) -> Optional[User]:
        with self._lock:
            return self._get(user_id)

    def get_credentials(self, username: str) -> Optional[Tuple[User, str]]:
        """Return ``(user, password_hash)`` for a username, or None."""
        with self._lock:
            row = self._conn.execute(
                "SELECT id, username, created_at, password_hash FROM users WHERE username = ?",
                [username],
            ).fetchone()
        if row is None:
            return None
        return self._row_to_user(row), row[3]

    def update(
        self,
        user_id: str,
        username: Optional[str] = None,
        password_hash: Optional[str] = None,
    ) -> Optional[User]:
        """Change username and/or password hash.

        Messages already written keep the author name they were stored with.

        Raises:
            ValidationError: If the new username belongs to another user.
        """
        with self._lock:
            fields = {}
            if username:
                owner = self._find_id(username)
                if owner is not None and owner != user_id:
                    raise ValidationError("Username already taken")
                fields["username"] = username
            if password_hash:
                fields["password_hash"] = password_hash
            if fields:
                set_clause = ", ".join(f"{k} = ?" for k in fields)
                self._conn.execute(
                    f"UPDATE users SET {set_clause} WHERE id = ?",
                    list(fields.values()) + [user_id],
                )
            return self._get(user_id)

    def delete(self, user_id: str) -> bool:
        with self._lock:
            result = self._conn.execute(
                "DELETE FROM users WHERE id = ? RETURNING id", [user_id]
            ).fetchone()
        return result is not None

    def count(self) -> int:
        with self._lock:
            row = self._conn.execute("SELECT count(*) FROM users").fetchone()
        return int(row[0]) if row else 0

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # -----------------------------------------------------------------------
    # Internal
    # -----------------------------------------------------------------------

    def _find_id(self, username: str) -> Optional[str]:
        row = self._conn.execute(
            "SELECT id FROM users WHERE username = ?", [username]
        ).fetchone()
        return row[0] if row else None

    def _get(self, user_id: str) -> Optional[User]:
        row = self._conn.execute(
            "SELECT id, username, created_at FROM users WHERE id = ?", [user_id]
        ).fetchone()
        return self._row_to_user(row) if row else None

    @staticmethod
    def _row_to_user(row) -> User:
        created_at = row[2]
        if isinstance(created_at, datetime) and created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)
        return User(id=row[0], username=row[1], createdAt=created_at)
