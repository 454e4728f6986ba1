"""Pydantic schemas for user accounts."""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class User(BaseModel):
    """Public view of a user account (never includes the password hash)."""
    id: str = Field(..., description="User ID")
    username: str = Field(..., description="Unique username")
    createdAt: datetime = Field(..., description="Account creation time (UTC)")


class UserUpdate(BaseModel):
    """Request body for PUT /api/users/me (all fields optional)."""
    username: Optional[str] = Field(default=None, description="New username")
    password: Optional[str] = Field(default=None, description="New password")
