"""Chat router providing the real-time WebSocket endpoint.

This module provides:
    - WebSocket /ws/chat?token=<jwt>: Real-time chat for one authenticated user

Protocol Flow:
    1. Client connects with its token as a query parameter
       → invalid/missing token: socket closed with 1008 before accept
    2. Server accepts and registers the session
       → all sessions receive user:join (first session of that user only)
         and online:update
    3. Client sends {type: "message", data: {text}}
       → all sessions receive {type: "message", data: <Message>}
    4. Client sends {type: "get:history", data: {limit}}
       → requester receives {type: "chat:history", data: [...]}
    5. Client sends {type: "typing", data: {typing}}
       → other sessions receive {type: "user:typing", data: {username, typing}}
    6. On disconnect → user:left + online:update (last session only) and
       user:typing {typing: false} to the remaining sessions
    7. Account deleted → socket closed with 1008, same cleanup as (6)

Binary frames and frames that are not JSON are ignored.
"""
import asyncio
import json
import logging
from typing import Optional

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect, status

from livechat.exceptions import AuthenticationError

from .manager import get_coordinator
from .registry import ConnectionState

logger = logging.getLogger(__name__)

router = APIRouter()


@router.websocket("/ws/chat")
async def websocket_chat_endpoint(
    websocket: WebSocket,
    token: Optional[str] = Query(None, description="Bearer token issued at login"),
) -> None:
    """WebSocket endpoint for one chat connection.

    SECURITY: the token is verified before the socket is accepted, so a
    rejected client never gets a session or sees any event.
    """
    coordinator = get_coordinator()

    try:
        identity = await coordinator.authenticate(token)
    except AuthenticationError as e:
        logger.warning("[WS] Rejected connection: %s", e.message)
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    session = coordinator.create_session(websocket, identity)

    try:
        await coordinator.open_session(session)

        while session.state is ConnectionState.ACTIVE:
            received = await websocket.receive()
            if received["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(received.get("code", 1000), received.get("reason"))
            raw = received.get("text")
            if raw is None:
                logger.warning("[WS] Ignoring binary frame from %s", identity.username)
                continue
            try:
                frame = json.loads(raw)
            except json.JSONDecodeError:
                logger.warning("[WS] Ignoring malformed frame from %s", identity.username)
                continue
            await coordinator.handle_event(session, frame)

    except WebSocketDisconnect as e:
        logger.info("[WS] %s disconnected (code=%s)", identity.username, e.code)
    except Exception:
        logger.exception("[WS] Connection error for %s", identity.username)
    finally:
        # Runs on graceful close, abrupt drop and task cancellation alike.
        await asyncio.shield(coordinator.close_session(session))
