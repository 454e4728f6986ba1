"""Broadcast coordinator for the real-time chat.

This module owns the lifecycle of every persistent connection and routes
its events: it authenticates connections through the identity verifier,
registers sessions in the :class:`SessionRegistry`, persists messages via
the message store, and fans events out to connected sessions.

Connection state machine::

    Connecting --verify ok--> Authenticated --registered--> Active --> Closed
    Connecting --verify failed------------------------------------> Closed

Key features:
    - Reference-counted presence (user:join / user:left once per user)
    - Explicit delivery scope: ``fan_out(event, recipients)``
    - Concurrent fan-out with asyncio.gather(); one failing or slow
      recipient never blocks or aborts delivery to the others
    - Bounded timeouts on identity checks, store calls and sends
    - Idempotent disconnect cleanup

Concurrency:
    Designed for a single event loop. Registry mutations and the presence
    broadcasts they trigger run under one ``asyncio.Lock``, so presence
    snapshots are never interleaved. Store and verifier calls are blocking
    (DuckDB) and run in worker threads via ``asyncio.to_thread``.
"""
import asyncio
import logging
import uuid
from typing import Any, Callable, List, Optional, Set

from livechat.auth.schemas import Identity
from livechat.auth.service import AuthService, get_auth_service
from livechat.config import ChatSettings, get_config
from livechat.exceptions import (
    AuthenticationError,
    DeliveryError,
    PersistenceError,
    ValidationError,
)
from livechat.messages.schemas import Message
from livechat.messages.service import MessageStore

from .events import (
    InboundEvent,
    MessageErrorPayload,
    OnlineUpdate,
    OutboundEvent,
    TypingAnnouncement,
    UserPresence,
    build_event,
    message_event,
)
from .registry import ConnectionState, Session, SessionRegistry

logger = logging.getLogger(__name__)

# =============================================================================
# Recipient selectors
# =============================================================================

Recipients = Callable[[Session], bool]


def everyone() -> Recipients:
    return lambda session: True


def all_except(excluded: Session) -> Recipients:
    return lambda session: session.id != excluded.id


def only(target: Session) -> Recipients:
    return lambda session: session.id == target.id


# =============================================================================
# History limit
# =============================================================================


def clamp_history_limit(
    requested: Any,
    default: int = 50,
    maximum: int = 200,
) -> int:
    """Normalize a client-supplied history limit.

    Missing, non-numeric, non-finite, zero or negative values give
    ``default``; anything above ``maximum`` is capped.
    """
    if requested is None or isinstance(requested, bool):
        return default
    try:
        limit = int(requested)
    except (TypeError, ValueError, OverflowError):
        return default
    if limit <= 0:
        return default
    return min(limit, maximum)


# =============================================================================
# Coordinator
# =============================================================================


class BroadcastCoordinator:
    """Connection lifecycle and event routing for all chat sessions.

    Collaborators default to the process-wide instances and are resolved
    lazily, so the module-level coordinator can be created before the app
    has loaded its configuration.

    Args:
        store: Message store (``create``, ``list_history``, ``delete``,
            ``delete_all``).
        verifier: Identity verifier (``verify(token) -> Identity``).
        settings: Limits and timeouts; defaults to ``get_config().chat``.
    """

    def __init__(
        self,
        store: Optional[MessageStore] = None,
        verifier: Optional[AuthService] = None,
        settings: Optional[ChatSettings] = None,
    ) -> None:
        self._store = store
        self._verifier = verifier
        self._settings = settings
        self.registry = SessionRegistry()
        self._presence_lock = asyncio.Lock()
        self._late_writes: Set[asyncio.Task] = set()

    @property
    def store(self) -> MessageStore:
        if self._store is None:
            return MessageStore.get_instance(get_config().storage.db_path)
        return self._store

    @property
    def verifier(self) -> AuthService:
        return self._verifier if self._verifier is not None else get_auth_service()

    @property
    def settings(self) -> ChatSettings:
        return self._settings if self._settings is not None else get_config().chat

    # -------------------------------------------------------------------------
    # Connection lifecycle
    # -------------------------------------------------------------------------

    async def authenticate(self, token: Optional[str]) -> Identity:
        """Verify a connection credential (Connecting -> Authenticated).

        Raises:
            AuthenticationError: Rejected, failed or timed-out verification.
                No session exists at this point.
        """
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self.verifier.verify, token),
                timeout=self.settings.verify_timeout_seconds,
            )
        except AuthenticationError:
            raise
        except asyncio.TimeoutError:
            logger.warning("[Coordinator] Identity verification timed out")
            raise AuthenticationError("Unauthorized")
        except Exception as e:
            logger.error("[Coordinator] Identity verification failed: %s", e, exc_info=True)
            raise AuthenticationError("Unauthorized")

    def create_session(self, connection: Any, identity: Identity) -> Session:
        """Allocate a session for an authenticated connection (not yet registered)."""
        return Session(identity=identity, connection=connection)

    async def open_session(self, session: Session) -> Session:
        """Register a session and announce presence (Authenticated -> Active).

        A session closed before it was opened stays closed.
        """
        async with self._presence_lock:
            if session.state is ConnectionState.CLOSED:
                return session
            went_online = self.registry.register(session)
            session.state = ConnectionState.ACTIVE
            logger.info(
                "[Coordinator] %s connected (session=%s, sessions=%d)",
                session.username, session.id, len(self.registry),
            )
            if went_online:
                await self.fan_out(
                    build_event(OutboundEvent.USER_JOIN, UserPresence(username=session.username))
                )
            await self._broadcast_presence()
        return session

    async def close_session(self, session: Session) -> bool:
        """Deregister a session and announce departure (Active -> Closed).

        Safe to call more than once; only the first call has effects.

        Returns:
            True if the session was registered and has now been removed.
        """
        async with self._presence_lock:
            removed = self.registry.deregister(session.id)
            session.state = ConnectionState.CLOSED
            if removed is None:
                return False

            _, went_offline = removed
            logger.info(
                "[Coordinator] %s disconnected (session=%s, offline=%s)",
                session.username, session.id, went_offline,
            )
            if went_offline:
                await self.fan_out(
                    build_event(OutboundEvent.USER_LEFT, UserPresence(username=session.username))
                )
                await self._broadcast_presence()

            # Clears a typing indicator the client never got to stop.
            session.typing = False
            await self.fan_out(
                build_event(
                    OutboundEvent.USER_TYPING,
                    TypingAnnouncement(username=session.username, typing=False),
                )
            )
        return True

    async def close_user_sessions(self, user_id: str, reason: str = "Account deleted") -> int:
        """Revoke every session of ``user_id`` and close its connection with 1008.

        Presence and typing are cleaned up as for a normal disconnect; the
        receive loops of those connections end on their own.

        Returns:
            Number of sessions closed.
        """
        targets = [s for s in self.registry.sessions() if s.user_id == user_id]
        closed = 0
        for session in targets:
            if await self.close_session(session):
                closed += 1
            try:
                await asyncio.wait_for(
                    session.connection.close(code=1008, reason=reason),
                    timeout=self.settings.send_timeout_seconds,
                )
            except Exception as e:
                logger.warning(
                    "[Coordinator] Could not close connection for %s (session=%s): %r",
                    session.username, session.id, e,
                )
        if targets:
            logger.info("[Coordinator] Revoked %d session(s) of user %s", closed, user_id)
        return closed

    async def _broadcast_presence(self) -> None:
        await self.fan_out(
            build_event(OutboundEvent.ONLINE_UPDATE, OnlineUpdate(users=self.registry.snapshot()))
        )

    # -------------------------------------------------------------------------
    # Inbound events (Active -> Active)
    # -------------------------------------------------------------------------

    async def handle_event(self, session: Session, frame: Any) -> None:
        """Route one inbound frame from ``session``.

        Accepts ``{"type": ..., "data": {...}}``; payload keys placed
        directly on the frame are accepted too. Unknown types are ignored,
        as is anything sent on a session that is no longer active.
        """
        if session.state is not ConnectionState.ACTIVE:
            logger.debug("[Coordinator] Dropping frame on %s session %s", session.state.value, session.id)
            return
        if not isinstance(frame, dict):
            logger.warning("[Coordinator] Ignoring non-object frame from %s", session.username)
            return

        event_type = frame.get("type")
        data = frame.get("data")
        if not isinstance(data, dict):
            data = {k: v for k, v in frame.items() if k not in ("type", "data")}
        logger.debug("[Coordinator] %s sent %s", session.username, event_type)

        if event_type == InboundEvent.MESSAGE.value:
            await self.post_message(session, data.get("text"))
        elif event_type == InboundEvent.GET_HISTORY.value:
            await self.send_history(session, data.get("limit"))
        elif event_type == InboundEvent.TYPING.value:
            await self.set_typing(session, data.get("typing"))
        else:
            logger.warning(
                "[Coordinator] Unknown event type %r from %s", event_type, session.username
            )

    async def post_message(self, session: Session, text: Any) -> Optional[Message]:
        """Persist a message and broadcast it to every session.

        The author always comes from the session's identity. If the store
        fails, only the sender hears about it (``message:error``).
        """
        if text is None:
            text = ""
        elif not isinstance(text, str):
            text = str(text)

        try:
            message = await self._create_message(session, text)
        except PersistenceError as e:
            logger.error("[Coordinator] Failed to create message for %s: %s", session.username, e.message)
            await self.fan_out(
                build_event(
                    OutboundEvent.MESSAGE_ERROR,
                    MessageErrorPayload(message="Failed to save message"),
                ),
                only(session),
            )
            return None

        await self.fan_out(message_event(message))
        return message

    async def send_history(self, session: Session, limit: Any = None) -> List[Message]:
        """Reply to ``session`` only with the oldest-first history.

        History is best-effort: a store failure yields an empty list.
        """
        settings = self.settings
        clamped = clamp_history_limit(
            limit,
            default=settings.default_history_limit,
            maximum=settings.max_history_limit,
        )
        try:
            messages = await self._call_store(self.store.list_history, clamped)
        except PersistenceError as e:
            logger.error("[Coordinator] get:history failed: %s", e.message)
            messages = []

        await self.fan_out(build_event(OutboundEvent.CHAT_HISTORY, messages), only(session))
        return messages

    async def set_typing(self, session: Session, typing: Any) -> None:
        """Record and announce typing state to everyone except the sender."""
        session.typing = bool(typing)
        await self.fan_out(
            build_event(
                OutboundEvent.USER_TYPING,
                TypingAnnouncement(username=session.username, typing=session.typing),
            ),
            all_except(session),
        )

    # -------------------------------------------------------------------------
    # Administrative
    # -------------------------------------------------------------------------

    async def clear_history(self, confirm: Any) -> int:
        """Delete every stored message and tell all sessions to drop theirs.

        Args:
            confirm: Must be exactly ``True``.

        Returns:
            Number of messages deleted.

        Raises:
            ValidationError: ``confirm`` missing or not true; nothing deleted.
            PersistenceError: The store failed; nothing broadcast.
        """
        if confirm is not True:
            raise ValidationError(
                "Confirm deletion by sending { confirm: true } in the request body."
            )
        try:
            deleted = await self._call_store(self.store.delete_all)
        except PersistenceError as e:
            logger.error("[Coordinator] Error deleting messages: %s", e.message)
            raise PersistenceError("Failed to delete messages") from e

        await self.fan_out(build_event(OutboundEvent.HISTORY_DELETED))
        return deleted

    # -------------------------------------------------------------------------
    # Fan-out
    # -------------------------------------------------------------------------

    async def fan_out(self, event: dict, recipients: Optional[Recipients] = None) -> int:
        """Deliver ``event`` to every registered session matching ``recipients``.

        Sends run concurrently; per-recipient failures are logged and do
        not affect delivery to the rest.

        Returns:
            Number of sessions the event was delivered to.
        """
        select = recipients or everyone()
        targets = [s for s in self.registry.sessions() if select(s)]
        if not targets:
            return 0

        results = await asyncio.gather(
            *[self._safe_send(session, event) for session in targets],
            return_exceptions=True,
        )
        return sum(1 for result in results if result is True)

    async def _safe_send(self, session: Session, event: dict) -> bool:
        try:
            await asyncio.wait_for(
                session.connection.send_json(event),
                timeout=self.settings.send_timeout_seconds,
            )
            return True
        except Exception as e:
            error = DeliveryError(
                f"Failed to deliver {event.get('type')} to {session.username} "
                f"(session={session.id}): {e!r}"
            )
            logger.warning("[Coordinator] %s", error.message)
            return False

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    async def _call_store(self, fn: Callable, *args: Any) -> Any:
        """Run a blocking store call in a worker thread with a timeout.

        Raises:
            PersistenceError: On any store exception or timeout.
        """
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(fn, *args),
                timeout=self.settings.store_timeout_seconds,
            )
        except PersistenceError:
            raise
        except asyncio.TimeoutError:
            raise PersistenceError("Message store timed out")
        except Exception as e:
            raise PersistenceError(f"Message store error: {e}") from e

    async def _create_message(self, session: Session, text: str) -> Message:
        """Persist a message under the store timeout.

        The id is chosen up front. A write that outlives the timeout keeps
        running in its worker thread, so it is tracked and its row removed
        once it lands: the sender was already told the post failed.

        Raises:
            PersistenceError: On any store exception or timeout.
        """
        message_id = str(uuid.uuid4())
        write = asyncio.ensure_future(
            asyncio.to_thread(
                self.store.create, text, session.username, session.user_id, message_id
            )
        )
        try:
            return await asyncio.wait_for(
                asyncio.shield(write),
                timeout=self.settings.store_timeout_seconds,
            )
        except asyncio.TimeoutError:
            self._track_late_write(write, message_id)
            raise PersistenceError("Message store timed out")
        except asyncio.CancelledError:
            self._track_late_write(write, message_id)
            raise
        except Exception as e:
            raise PersistenceError(f"Message store error: {e}") from e

    def _track_late_write(self, write: asyncio.Future, message_id: str) -> None:
        task = asyncio.ensure_future(self._discard_late_write(write, message_id))
        self._late_writes.add(task)
        task.add_done_callback(self._late_writes.discard)

    async def _discard_late_write(self, write: asyncio.Future, message_id: str) -> None:
        try:
            await write
        except Exception as e:
            logger.info("[Coordinator] Timed-out write %s never committed: %s", message_id, e)
            return
        try:
            await asyncio.to_thread(self.store.delete, message_id)
        except Exception:
            logger.error(
                "[Coordinator] Could not remove timed-out message %s", message_id, exc_info=True
            )
            return
        logger.warning("[Coordinator] Removed message %s committed after its timeout", message_id)

    async def drain(self) -> None:
        """Wait until every timed-out write has been resolved."""
        if self._late_writes:
            await asyncio.gather(*list(self._late_writes), return_exceptions=True)

    def online_users(self) -> List[str]:
        return self.registry.snapshot()

    def session_count(self) -> int:
        return len(self.registry)


_coordinator: Optional[BroadcastCoordinator] = None


def get_coordinator() -> BroadcastCoordinator:
    """Return the process-wide coordinator, creating it on first use."""
    global _coordinator
    if _coordinator is None:
        _coordinator = BroadcastCoordinator()
    return _coordinator


def set_coordinator(coordinator: Optional[BroadcastCoordinator]) -> None:
    global _coordinator
    _coordinator = coordinator
