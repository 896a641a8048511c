"""Session persistence and context assembly."""

from .sqlite_store import SQLiteSessionStore
from .context_builder import ContextBuilder

__all__ = [
    "SQLiteSessionStore",
    "ContextBuilder",
]
