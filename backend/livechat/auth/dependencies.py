"""FastAPI dependencies for bearer-token authentication."""
from typing import Optional

from fastapi import Header

from livechat.exceptions import AuthenticationError

from .schemas import Identity
from .service import get_auth_service


def get_current_identity(authorization: Optional[str] = Header(None)) -> Identity:
    """Resolve ``Authorization: Bearer <token>`` to an Identity.

    Plain ``def`` so FastAPI runs the store lookup in its threadpool.

    Raises:
        AuthenticationError: Header missing or token rejected (mapped to 401).
    """
    if not authorization:
        raise AuthenticationError("Missing token")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise AuthenticationError("Invalid token")
    return get_auth_service().verify(token.strip())
