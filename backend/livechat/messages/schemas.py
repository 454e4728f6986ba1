"""Pydantic schemas for persisted chat messages.

The author's username is copied onto the message when it is written and is
never re-resolved from the user record: renaming an account must not
rewrite history.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field, StrictBool


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Message(BaseModel):
    """A persisted chat line, as stored and as broadcast to clients.

    Attributes:
        id: Unique message identifier (UUID).
        text: Message body. May be empty, never None.
        username: Author's username at the time of writing.
        userId: Author's user id.
        createdAt: Server-assigned creation time (UTC).
    """
    id: str = Field(default_factory=lambda: str(uuid.uuid4()), description="Message ID")
    text: str = Field(default="", description="Message text")
    username: str = Field(..., description="Author username (denormalized)")
    userId: str = Field(..., description="Author user ID")
    createdAt: datetime = Field(default_factory=_utcnow, description="Creation time (UTC)")


class DeleteHistoryRequest(BaseModel):
    """Request body for the administrative bulk delete."""
    confirm: Optional[StrictBool] = Field(
        None, description="Must be true for the deletion to run"
    )
