"""Real-time chat core: session registry, broadcast coordinator, WebSocket route."""

from .manager import BroadcastCoordinator, get_coordinator, set_coordinator
from .registry import ConnectionState, Session, SessionRegistry

__all__ = [
    "BroadcastCoordinator",
    "ConnectionState",
    "Session",
    "SessionRegistry",
    "get_coordinator",
    "set_coordinator",
]
