"""User accounts: DuckDB credential store and profile endpoints."""

from .schemas import User, UserUpdate
from .service import UserStore

__all__ = ["User", "UserStore", "UserUpdate"]
