"""Message persistence (DuckDB) and the bulk-delete endpoint."""

from .schemas import DeleteHistoryRequest, Message
from .service import MessageStore

__all__ = [
    "DeleteHistoryRequest",
    "Message",
    "MessageStore",
]
