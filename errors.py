"""Exceptions raised by the prompt enhancer core."""

from schemas.quota import QuotaKind


class EnhancerError(Exception):
    """Base class for all enhancer errors."""


class QuotaExceeded(EnhancerError):
    """Daily quota exhausted; not retryable until the next UTC day."""

    MESSAGES = {
        QuotaKind.IP: "Too many requests from this IP address",
        QuotaKind.USER: "You have reached your daily limit of {limit} enhancements",
        QuotaKind.ANONYMOUS: "You have reached your daily limit of {limit} enhancements. Sign up for more!",
    }

    def __init__(self, kind: QuotaKind, limit: int):
        self.kind = kind
        self.limit = limit
        self.remaining = 0
        self.retry_after = "tomorrow"
        super().__init__(self.MESSAGES[kind].format(limit=limit))


class SessionNotFound(EnhancerError):
    """Session does not exist or is not owned by the caller."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__("Session not found")


class UpstreamEnhancementFailure(EnhancerError):
    """The enhancement service call failed."""


class AuthError(EnhancerError):
    """Base class for authentication failures."""


class UserAlreadyExists(AuthError):
    """Signup with an email that is already registered."""


class InvalidCredentials(AuthError):
    """Unknown email or wrong password."""
