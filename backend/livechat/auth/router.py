"""Auth router for username/password accounts.

Endpoints:
    POST /api/auth/register - Create an account, returns {token, user}
    POST /api/auth/login    - Check credentials, returns {token, user}
"""
import logging

from fastapi import APIRouter

from .schemas import Credentials, TokenResponse
from .service import get_auth_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


@router.post("/register", response_model=TokenResponse)
def register(body: Credentials) -> TokenResponse:
    """Register a new user.

    Returns 400 when username or password is missing, or the username
    already exists.
    """
    token, user = get_auth_service().register(body.username, body.password)
    return TokenResponse(token=token, user=user)


@router.post("/login", response_model=TokenResponse)
def login(body: Credentials) -> TokenResponse:
    """Log in and receive a fresh token.

    Returns 400 "Invalid credentials" for an unknown user or wrong password.
    """
    token, user = get_auth_service().login(body.username, body.password)
    logger.info("User %s logged in", user.username)
    return TokenResponse(token=token, user=user)
