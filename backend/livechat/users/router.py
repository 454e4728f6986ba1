"""User profile router: endpoints for the authenticated user.

Endpoints:
    GET    /api/users/me - Current user
    PUT    /api/users/me - Change username and/or password
    DELETE /api/users/me - Delete the account
"""
import asyncio
import logging

from fastapi import APIRouter, Depends

from livechat.auth.dependencies import get_current_identity
from livechat.auth.schemas import Identity
from livechat.auth.service import get_auth_service
from livechat.chat.manager import get_coordinator
from livechat.exceptions import AuthenticationError

from .schemas import User, UserUpdate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/users", tags=["users"])


@router.get("/me", response_model=User)
def get_me(identity: Identity = Depends(get_current_identity)) -> User:
    user = get_auth_service().users.get(identity.userId)
    if user is None:
        raise AuthenticationError("Invalid token")
    return user


@router.put("/me", response_model=User)
def update_me(
    body: UserUpdate,
    identity: Identity = Depends(get_current_identity),
) -> User:
    """Update the current user's username and/or password.

    Messages already posted keep the username they were written with.
    """
    user = get_auth_service().update_profile(
        identity.userId, username=body.username, password=body.password
    )
    if user is None:
        raise AuthenticationError("Invalid token")
    logger.info("[users] Updated %s (%s)", user.username, user.id)
    return user


@router.delete("/me")
async def delete_me(identity: Identity = Depends(get_current_identity)) -> dict:
    """Delete the account and disconnect its open chat sessions."""
    await asyncio.to_thread(get_auth_service().users.delete, identity.userId)
    await get_coordinator().close_user_sessions(identity.userId)
    logger.info("[users] Deleted %s (%s)", identity.username, identity.userId)
    return {"message": "User deleted"}
