"""Pydantic schemas for authentication."""
from pydantic import BaseModel, Field

from livechat.users.schemas import User


class Identity(BaseModel):
    """Who is behind a verified credential.

    Attributes:
        userId: The user's ID.
        username: The user's current username.
    """
    userId: str = Field(..., description="User ID")
    username: str = Field(..., description="Username")


class Credentials(BaseModel):
    """Request body for register and login.

    Fields default to empty so that missing data is reported as a 400
    by the handlers rather than a schema error.
    """
    username: str = Field(default="", description="Username")
    password: str = Field(default="", description="Password")


class TokenResponse(BaseModel):
    token: str
    user: User
