"""Event names and payloads for the chat WebSocket protocol.

Every frame, in both directions, is a JSON object::

    {"type": "<event name>", "data": <payload>}

Inbound (client -> server):
    - message:      {"text": str}
    - get:history:  {"limit": int}   (optional)
    - typing:       {"typing": bool}

Outbound (server -> clients):
    - user:join       {"username"}          first session of a user only
    - user:left       {"username"}          last session of a user only
    - online:update   {"users": [...]}      after any presence transition
    - message         Message record        to everyone, sender included
    - message:error   {"message"}           to the sender only
    - chat:history    [Message, ...]        to the requester only
    - user:typing     {"username", "typing"}
    - history:deleted {}
"""
from enum import Enum
from typing import Any, List

from pydantic import BaseModel, Field

from livechat.messages.schemas import Message


class InboundEvent(str, Enum):
    MESSAGE = "message"
    GET_HISTORY = "get:history"
    TYPING = "typing"


class OutboundEvent(str, Enum):
    USER_JOIN = "user:join"
    USER_LEFT = "user:left"
    ONLINE_UPDATE = "online:update"
    MESSAGE = "message"
    MESSAGE_ERROR = "message:error"
    CHAT_HISTORY = "chat:history"
    USER_TYPING = "user:typing"
    HISTORY_DELETED = "history:deleted"


# =============================================================================
# Payloads
# =============================================================================


class UserPresence(BaseModel):
    """Payload of user:join and user:left."""
    username: str


class OnlineUpdate(BaseModel):
    """Full snapshot of online usernames."""
    users: List[str] = Field(default_factory=list)


class TypingAnnouncement(BaseModel):
    """Ephemeral typing state; never persisted."""
    username: str
    typing: bool


class MessageErrorPayload(BaseModel):
    message: str


def build_event(event: OutboundEvent, payload: Any = None) -> dict:
    """Wrap a payload in the outbound frame envelope.

    Pydantic models (and lists of them) are dumped in JSON mode so
    datetimes serialize as ISO strings.
    """
    if isinstance(payload, BaseModel):
        data = payload.model_dump(mode="json")
    elif isinstance(payload, list):
        data = [
            item.model_dump(mode="json") if isinstance(item, BaseModel) else item
            for item in payload
        ]
    elif payload is None:
        data = {}
    else:
        data = payload
    return {"type": event.value, "data": data}


def message_event(message: Message) -> dict:
    return build_event(OutboundEvent.MESSAGE, message)
