"""Account storage and sign-in flows."""

from .user_store import SQLiteUserStore, User
from .service import AuthService

__all__ = ["SQLiteUserStore", "User", "AuthService"]
