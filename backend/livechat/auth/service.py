"""Password hashing, token issuance and identity verification.

Tokens are HS256 JWTs carrying the user id (``sub``) and username. The
verifier always re-reads the user from the store, so a deleted account is
rejected even while its token is still unexpired, and the identity carries
the user's current username.

Passwords are stored as ``pbkdf2_sha256$<iterations>$<salt>$<digest>``.
"""
import hashlib
import hmac
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

import jwt

from livechat.config import AppSettings, get_config
from livechat.exceptions import AuthenticationError, ValidationError
from livechat.users.schemas import User
from livechat.users.service import UserStore

from .schemas import Identity

logger = logging.getLogger(__name__)

_HASH_SCHEME = "pbkdf2_sha256"


def hash_password(password: str, iterations: int = 200_000) -> str:
    """Hash a password with a fresh random salt."""
    salt = secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac(
        "sha256", password.encode("utf-8"), salt.encode("ascii"), iterations
    )
    return f"{_HASH_SCHEME}${iterations}${salt}${digest.hex()}"


def verify_password(password: str, encoded: str) -> bool:
    """Check a password against an encoded hash (constant-time compare)."""
    try:
        scheme, iterations, salt, expected = encoded.split("$", 3)
        rounds = int(iterations)
    except ValueError:
        return False
    if scheme != _HASH_SCHEME:
        return False
    digest = hashlib.pbkdf2_hmac(
        "sha256", password.encode("utf-8"), salt.encode("ascii"), rounds
    )
    return hmac.compare_digest(digest.hex(), expected)


class AuthService:
    """Registers and logs in users, issues tokens and verifies them.

    ``verify`` is the identity check used both by the REST dependency
    (``Authorization: Bearer``) and by the WebSocket handshake (``?token=``).
    """

    def __init__(self, users: UserStore, config: Optional[AppSettings] = None):
        self.users = users
        self.config = config or get_config()

    # -----------------------------------------------------------------------
    # Tokens
    # -----------------------------------------------------------------------

    def issue_token(self, user: User) -> str:
        payload = {
            "sub": user.id,
            "username": user.username,
            "iat": datetime.now(timezone.utc),
        }
        minutes = self.config.auth.token_expire_minutes
        if minutes > 0:
            payload["exp"] = datetime.now(timezone.utc) + timedelta(minutes=minutes)
        jwt_secrets = self.config.secrets.jwt
        return jwt.encode(payload, jwt_secrets.secret_key, algorithm=jwt_secrets.algorithm)

    def verify(self, token: Optional[str]) -> Identity:
        """Resolve a bearer token to an identity.

        Raises:
            AuthenticationError: Missing, malformed, expired or revoked token.
        """
        if not token:
            raise AuthenticationError("Missing token")
        jwt_secrets = self.config.secrets.jwt
        try:
            claims = jwt.decode(
                token, jwt_secrets.secret_key, algorithms=[jwt_secrets.algorithm]
            )
        except jwt.ExpiredSignatureError:
            raise AuthenticationError("Token expired")
        except jwt.InvalidTokenError as e:
            logger.debug("Rejected token: %s", e)
            raise AuthenticationError("Invalid token")

        user_id = claims.get("sub")
        user = self.users.get(user_id) if user_id else None
        if user is None:
            raise AuthenticationError("Invalid token")
        return Identity(userId=user.id, username=user.username)

    # -----------------------------------------------------------------------
    # Accounts
    # -----------------------------------------------------------------------

    def register(self, username: str, password: str) -> Tuple[str, User]:
        """Create an account and return ``(token, user)``.

        Raises:
            ValidationError: Missing data or username taken.
        """
        if not username or not password:
            raise ValidationError("Missing data")
        user = self.users.create(
            username,
            hash_password(password, self.config.auth.password_iterations),
        )
        logger.info("Registered user %s (%s)", user.username, user.id)
        return self.issue_token(user), user

    def login(self, username: str, password: str) -> Tuple[str, User]:
        """Check credentials and return ``(token, user)``.

        Raises:
            ValidationError: Unknown user or wrong password.
        """
        found = self.users.get_credentials(username) if username else None
        if found is None or not verify_password(password or "", found[1]):
            raise ValidationError("Invalid credentials")
        user = found[0]
        return self.issue_token(user), user

    def update_profile(
        self,
        user_id: str,
        username: Optional[str] = None,
        password: Optional[str] = None,
    ) -> Optional[User]:
        password_hash = (
            hash_password(password, self.config.auth.password_iterations)
            if password else None
        )
        return self.users.update(user_id, username=username, password_hash=password_hash)


_auth_service: Optional[AuthService] = None


def get_auth_service() -> AuthService:
    """Return the process-wide AuthService, creating it on first use."""
    global _auth_service
    if _auth_service is None:
        config = get_config()
        _auth_service = AuthService(UserStore.get_instance(config.storage.db_path), config)
    return _auth_service


def set_auth_service(service: Optional[AuthService]) -> None:
    global _auth_service
    _auth_service = service
