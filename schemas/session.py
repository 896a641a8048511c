"""Session, synopsis and prompt record schemas."""

from datetime import datetime, timezone
from typing import Literal, Optional
from pydantic import BaseModel, Field, field_validator

from .identity import Identity

SYNOPSIS_FIELD_MAX_CHARS = 120
SYNOPSIS_SCALAR_FIELDS = ("goal", "tone", "constraints", "audience", "style")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _clip(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value[:SYNOPSIS_FIELD_MAX_CHARS]


class SynopsisUpdate(BaseModel):
    """Partial synopsis; only non-empty fields are applied on merge."""
    goal: Optional[str] = None
    tone: Optional[str] = None
    constraints: Optional[str] = None
    audience: Optional[str] = None
    style: Optional[str] = None
    todos: Optional[list[str]] = None

    @field_validator(*SYNOPSIS_SCALAR_FIELDS)
    @classmethod
    def _clip_scalar(cls, v: Optional[str]) -> Optional[str]:
        return _clip(v)

    @field_validator("todos")
    @classmethod
    def _clip_todos(cls, v: Optional[list[str]]) -> Optional[list[str]]:
        if v is None:
            return None
        return [t for t in (_clip(item) for item in v) if t]

    def is_empty(self) -> bool:
        return not any(getattr(self, name) for name in SYNOPSIS_SCALAR_FIELDS) and not self.todos


class Synopsis(SynopsisUpdate):
    """Rolling summary of a session's conversation."""
    todos: list[str] = Field(default_factory=list)

    def merged(self, update: SynopsisUpdate) -> "Synopsis":
        """Field-wise merge: non-empty values in `update` overwrite, the rest is kept."""
        data = self.model_dump()
        for name in SYNOPSIS_SCALAR_FIELDS:
            value = getattr(update, name)
            if value:
                data[name] = value
        if update.todos:
            data["todos"] = list(update.todos)
        return Synopsis(**data)


class ChatTurn(BaseModel):
    """One message of the client-side conversation."""
    role: Literal["user", "assistant"]
    content: str


class Session(BaseModel):
    """A conversation container owned by exactly one identity."""
    session_id: str
    owner: Identity = Field(..., discriminator="kind")
    title: Optional[str] = Field(None, max_length=200)
    synopsis: Synopsis = Field(default_factory=Synopsis)
    synopsis_version: int = 0
    last_message_at: datetime = Field(default_factory=utcnow)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class SessionPage(BaseModel):
    """One page of a session listing."""
    sessions: list[Session] = Field(default_factory=list)
    total: int = 0
    page: int = 1
    limit: int = 10

    @property
    def total_pages(self) -> int:
        return (self.total + self.limit - 1) // self.limit if self.limit else 0


class ContextUsed(BaseModel):
    """How much history fed an enhancement call."""
    last_turns: int = 0
    synopsis_chars: int = 0


class TokenUsage(BaseModel):
    input: int = 0
    output: int = 0


class PromptRecord(BaseModel):
    """A persisted enhancement (one turn)."""
    prompt_id: str
    owner: Identity = Field(..., discriminator="kind")
    session_id: Optional[str] = None
    original: str = Field(..., max_length=10000)
    enhanced: str = Field(..., max_length=10000)
    use_history: bool = False
    context_used: ContextUsed = Field(default_factory=ContextUsed)
    model: str
    latency_ms: int = 0
    tokens: TokenUsage = Field(default_factory=TokenUsage)
    accepted: Optional[bool] = None
    created_at: datetime = Field(default_factory=utcnow)
