"""Error taxonomy shared by the chat core and the HTTP layer.

Each class carries a human-readable ``message``. The FastAPI exception
handlers in :mod:`livechat.main` translate them to JSON responses; the
WebSocket layer recovers from them at the operation boundary.
"""


class ChatError(Exception):
    """Base class for all livechat errors."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class AuthenticationError(ChatError):
    """Bad, missing or expired credential."""


class ValidationError(ChatError):
    """Request rejected before any side effect (e.g. missing confirmation)."""


class PersistenceError(ChatError):
    """Message or user store unavailable, failed, or timed out."""


class DeliveryError(ChatError):
    """Failed to deliver an event to a single recipient."""
