"""Identity schemas: who owns a session, a prompt or a quota counter."""

from typing import Literal, Optional, Union
from pydantic import BaseModel, ConfigDict, Field


class AnonymousIdentity(BaseModel):
    """A not-yet-authenticated visitor, identified by a long-lived cookie token."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["anonymous"] = "anonymous"
    id: str = Field(..., min_length=1)

    @property
    def owner_column(self) -> str:
        return "anon_id"


class UserIdentity(BaseModel):
    """An authenticated account."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["user"] = "user"
    id: str = Field(..., min_length=1)

    @property
    def owner_column(self) -> str:
        return "user_id"


Identity = Union[AnonymousIdentity, UserIdentity]


class RequestIdentity(BaseModel):
    """Identity as resolved by the upstream auth layer for a single request."""
    anon_id: str
    user_id: Optional[str] = None
    client_ip: str = "unknown"

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None

    @property
    def owner(self) -> Identity:
        """Authenticated requests act as the user, everything else as the anonymous id."""
        if self.user_id:
            return UserIdentity(id=self.user_id)
        return AnonymousIdentity(id=self.anon_id)


def identity_from_columns(anon_id: Optional[str], user_id: Optional[str]) -> Identity:
    """Rebuild an Identity from the two mutually exclusive storage columns."""
    if user_id and anon_id:
        raise ValueError("Row has both anon_id and user_id set")
    if user_id:
        return UserIdentity(id=user_id)
    if anon_id:
        return AnonymousIdentity(id=anon_id)
    raise ValueError("Row has neither anon_id nor user_id set")


def identity_columns(owner: Identity) -> tuple[Optional[str], Optional[str]]:
    """Split an Identity into (anon_id, user_id) storage columns."""
    if isinstance(owner, UserIdentity):
        return None, owner.id
    return owner.id, None
