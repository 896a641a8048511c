"""Quota ledger schemas."""

from enum import Enum
from pydantic import BaseModel, Field


class QuotaKind(str, Enum):
    """Which counter a quota check targets."""
    ANONYMOUS = "anon"
    USER = "user"
    IP = "ip"


class QuotaDecision(BaseModel):
    """Outcome of an atomic check-and-increment."""
    allowed: bool
    remaining: int = Field(0, ge=0)


class QuotaUsage(BaseModel):
    """Read-only snapshot of a daily counter."""
    used: int = 0
    limit: int
    remaining: int = 0
    is_authenticated: bool = False


class LinkResult(BaseModel):
    """Outcome of folding anonymous usage into a user counter."""
    linked: bool = False
    count: int = 0
