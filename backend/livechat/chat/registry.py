"""Session registry and reference-counted presence.

The registry is the only owner of the active-session collection. The
online presence set is derived from it: a username is online iff it has at
least one registered session, so a user with two tabs open stays online
until both are closed.

All methods are synchronous and are called from the event loop. The
coordinator wraps each mutation together with the presence broadcast it
triggers in one ``asyncio.Lock``; see ``BroadcastCoordinator``.
"""
import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from livechat.auth.schemas import Identity

logger = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    """Lifecycle of one persistent connection."""
    CONNECTING = "connecting"
    AUTHENTICATED = "authenticated"
    ACTIVE = "active"
    CLOSED = "closed"


@dataclass(eq=False)
class Session:
    """One authenticated live connection.

    Attributes:
        identity: Owning user; fixed for the session's lifetime.
        connection: Transport with an async ``send_json(dict)`` (a WebSocket).
        id: Unique connection identifier.
        typing: Last typing state this session announced.
        state: Position in the connection state machine.
    """
    identity: Identity
    connection: Any
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    typing: bool = False
    state: ConnectionState = ConnectionState.AUTHENTICATED

    @property
    def username(self) -> str:
        return self.identity.username

    @property
    def user_id(self) -> str:
        return self.identity.userId


class SessionRegistry:
    """Active sessions plus per-username session counts."""

    def __init__(self) -> None:
        # session_id -> Session
        self._sessions: Dict[str, Session] = {}
        # username -> number of registered sessions (insertion order = online order)
        self._presence: Dict[str, int] = {}

    def register(self, session: Session) -> bool:
        """Add a session.

        Returns:
            True if this made the username go online (its first session).
        """
        if session.id in self._sessions:
            return False
        self._sessions[session.id] = session
        count = self._presence.get(session.username, 0)
        self._presence[session.username] = count + 1
        logger.debug("Registered session %s for %s (sessions=%d)", session.id, session.username, count + 1)
        return count == 0

    def deregister(self, session_id: str) -> Optional[Tuple[Session, bool]]:
        """Remove a session.

        Returns:
            ``(session, went_offline)`` or None if the id is not registered
            (already removed, or never was).
        """
        session = self._sessions.pop(session_id, None)
        if session is None:
            return None
        remaining = self._presence.get(session.username, 0) - 1
        logger.debug("Deregistered session %s for %s (remaining=%d)", session_id, session.username, max(remaining, 0))
        if remaining <= 0:
            self._presence.pop(session.username, None)
            return session, True
        self._presence[session.username] = remaining
        return session, False

    def snapshot(self) -> List[str]:
        """Online usernames, in the order they came online."""
        return list(self._presence)

    def sessions(self) -> List[Session]:
        return list(self._sessions.values())

    def get(self, session_id: str) -> Optional[Session]:
        return self._sessions.get(session_id)

    def is_online(self, username: str) -> bool:
        return username in self._presence

    def session_count(self, username: str) -> int:
        return self._presence.get(username, 0)

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions
