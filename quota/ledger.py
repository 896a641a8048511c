"""Daily quota ledger for anonymous visitors, users and client IPs."""

import logging
from datetime import datetime
from typing import Callable, Optional

from pydantic import BaseModel

from errors import QuotaExceeded
from schemas.identity import RequestIdentity
from schemas.quota import QuotaKind, QuotaDecision, QuotaUsage
from .counter_store import CounterStore
from .day_key import quota_key, seconds_until_midnight, utcnow

logger = logging.getLogger(__name__)


class QuotaPolicy(BaseModel):
    """Daily ceilings per counter kind."""
    anonymous: int = 10
    user: int = 20
    ip_anonymous: int = 30
    ip_authenticated: int = 60

    def ceiling(self, kind: QuotaKind, is_authenticated: bool = False) -> int:
        if kind == QuotaKind.ANONYMOUS:
            return self.anonymous
        if kind == QuotaKind.USER:
            return self.user
        return self.ip_authenticated if is_authenticated else self.ip_anonymous


class QuotaLedger:
    """Check-and-increment and read access to the daily counters."""

    def __init__(
        self,
        store: CounterStore,
        policy: Optional[QuotaPolicy] = None,
        clock: Callable[[], datetime] = utcnow
    ):
        self.store = store
        self.policy = policy or QuotaPolicy()
        self.clock = clock

    def _key(self, kind: QuotaKind, identity_key: str) -> str:
        return quota_key(kind, identity_key, self.clock())

    def check_and_increment(
        self,
        kind: QuotaKind,
        identity_key: str,
        ceiling: Optional[int] = None
    ) -> QuotaDecision:
        """
        Admit one request against a daily counter.

        Args:
            kind: Counter kind
            identity_key: Anonymous id, user id or client IP
            ceiling: Override of the policy ceiling for `kind`

        Returns:
            QuotaDecision; remaining is 0 when not allowed
        """
        if ceiling is None:
            ceiling = self.policy.ceiling(kind)
        ttl = seconds_until_midnight(self.clock())
        allowed, count = self.store.check_and_increment(self._key(kind, identity_key), ceiling, ttl)
        if not allowed:
            return QuotaDecision(allowed=False, remaining=0)
        return QuotaDecision(allowed=True, remaining=max(0, ceiling - count))

    def get_usage(self, kind: QuotaKind, identity_key: str, limit: Optional[int] = None) -> QuotaUsage:
        """Read-only snapshot; does not touch the counter or its expiry."""
        if limit is None:
            limit = self.policy.ceiling(kind)
        used = self.store.get(self._key(kind, identity_key))
        return QuotaUsage(used=used, limit=limit, remaining=max(0, limit - used))

    def counter_ttl(self, kind: QuotaKind, identity_key: str) -> Optional[int]:
        return self.store.ttl(self._key(kind, identity_key))

    def admit(self, identity: RequestIdentity) -> QuotaDecision:
        """
        Run the IP soft cap, then the identity-specific quota.

        Raises:
            QuotaExceeded: when either counter is exhausted
        """
        authenticated = identity.is_authenticated
        ip_limit = self.policy.ceiling(QuotaKind.IP, authenticated)
        ip_decision = self.check_and_increment(QuotaKind.IP, identity.client_ip, ip_limit)
        if not ip_decision.allowed:
            logger.warning(f"IP quota exceeded for {identity.client_ip}")
            raise QuotaExceeded(QuotaKind.IP, ip_limit)

        if authenticated:
            kind, key = QuotaKind.USER, identity.user_id
        else:
            kind, key = QuotaKind.ANONYMOUS, identity.anon_id

        limit = self.policy.ceiling(kind)
        decision = self.check_and_increment(kind, key, limit)
        if not decision.allowed:
            logger.warning(f"{kind.name.capitalize()} quota exceeded for {key}")
            raise QuotaExceeded(kind, limit)
        return decision

    def usage_for(self, identity: RequestIdentity) -> QuotaUsage:
        """Usage of the counter that `admit` would charge for this identity."""
        if identity.is_authenticated:
            usage = self.get_usage(QuotaKind.USER, identity.user_id)
        else:
            usage = self.get_usage(QuotaKind.ANONYMOUS, identity.anon_id)
        usage.is_authenticated = identity.is_authenticated
        return usage

    def purge_expired(self) -> int:
        """Drop expired counters where the backend does not expire them itself."""
        return self.store.purge_expired()
