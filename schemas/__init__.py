"""Pydantic schemas for the prompt enhancer."""

from .identity import AnonymousIdentity, UserIdentity, Identity, RequestIdentity
from .session import Synopsis, SynopsisUpdate, ChatTurn, Session, SessionPage, ContextUsed, TokenUsage, PromptRecord
from .quota import QuotaKind, QuotaDecision, QuotaUsage, LinkResult
from .enhance import (
    Classification,
    ContextResult,
    VerificationResult,
    EnhancementResult,
    EnhanceRequest,
    EnhanceResponse,
)

__all__ = [
    "AnonymousIdentity",
    "UserIdentity",
    "Identity",
    "RequestIdentity",
    "Synopsis",
    "SynopsisUpdate",
    "ChatTurn",
    "Session",
    "SessionPage",
    "ContextUsed",
    "TokenUsage",
    "PromptRecord",
    "QuotaKind",
    "QuotaDecision",
    "QuotaUsage",
    "LinkResult",
    "Classification",
    "ContextResult",
    "VerificationResult",
    "EnhancementResult",
    "EnhanceRequest",
    "EnhanceResponse",
]
