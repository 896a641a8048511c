"""Enhancement request/response schemas."""

from typing import Optional
from pydantic import BaseModel, Field

from .session import ChatTurn, ContextUsed, TokenUsage


class Classification(BaseModel):
    """Whether a prompt continues a prior exchange."""
    is_follow_up: bool
    confidence: float = Field(0.0, ge=0.0, le=1.0)


class ContextResult(BaseModel):
    """Bounded context string handed to the enhancement call."""
    context: str = ""
    context_used: ContextUsed = Field(default_factory=ContextUsed)


class VerificationResult(BaseModel):
    """Structural check of an enhanced prompt."""
    is_valid: bool
    missing: list[str] = Field(default_factory=list)
    score: float = Field(0.0, ge=0.0, le=1.0)


class EnhancementResult(BaseModel):
    """Raw output of the enhancement service."""
    enhanced_text: str
    tokens: TokenUsage = Field(default_factory=TokenUsage)
    model: str


class EnhanceRequest(BaseModel):
    """Inbound enhancement request."""
    prompt: str = Field(..., min_length=1, max_length=5000)
    session_id: Optional[str] = None
    use_history: bool = False
    last_messages: list[ChatTurn] = Field(default_factory=list)
    auto_create_session: bool = False


class EnhanceResponse(BaseModel):
    """Outbound enhancement response."""
    enhanced_prompt: str
    prompt_id: str
    session_id: Optional[str] = None
    use_history: bool = False
    context_used: ContextUsed = Field(default_factory=ContextUsed)
    latency_ms: int = 0
    tokens: TokenUsage = Field(default_factory=TokenUsage)
    quota_remaining: int = 0
