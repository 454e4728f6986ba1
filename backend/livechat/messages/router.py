"""Message administration endpoints.

Endpoints:
    DELETE /api/messages - Delete the whole chat history (requires
                           {"confirm": true}); connected clients receive
                           history:deleted
"""
import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends

from livechat.auth.dependencies import get_current_identity
from livechat.auth.schemas import Identity
from livechat.chat.manager import get_coordinator

from .schemas import DeleteHistoryRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/messages", tags=["messages"])


@router.delete("")
async def delete_messages(
    body: Optional[DeleteHistoryRequest] = Body(None),
    identity: Identity = Depends(get_current_identity),
) -> dict:
    """Delete every message.

    Returns:
        ``{"ok": true}``. 400 without confirmation (nothing deleted),
        500 if the store fails.
    """
    confirm = body.confirm if body is not None else None
    deleted = await get_coordinator().clear_history(confirm)
    logger.info("[messages] %s deleted chat history (%d messages)", identity.username, deleted)
    return {"ok": True}
