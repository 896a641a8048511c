"""Once-per-day fold of anonymous usage into a user's quota counter."""

import logging
from datetime import datetime
from typing import Callable

from schemas.quota import QuotaKind, LinkResult
from .counter_store import CounterStore
from .day_key import link_key, quota_key, seconds_until_midnight, utcnow

logger = logging.getLogger(__name__)


class IdentityLinker:
    """Transfers an anonymous identity's daily usage to the user it signs in as."""

    def __init__(self, store: CounterStore, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.clock = clock

    def link_anonymous_to_user(self, user_id: str, anon_id: str) -> LinkResult:
        """
        Fold today's anonymous count into the user's counter, at most once per day.

        The anonymous counter itself is left untouched. When the anonymous
        counter is empty no marker is written, so usage later the same day
        can still be linked.

        Args:
            user_id: Authenticated user id
            anon_id: Anonymous id presented by the client

        Returns:
            LinkResult; linked=False, count=0 for already-linked or nothing to link
        """
        now = self.clock()
        folded = self.store.link(
            anon_key=quota_key(QuotaKind.ANONYMOUS, anon_id, now),
            user_key=quota_key(QuotaKind.USER, user_id, now),
            marker_key=link_key(user_id, anon_id, now),
            ttl_seconds=seconds_until_midnight(now),
        )
        if folded is None:
            logger.debug(f"Anonymous id {anon_id} already linked to user {user_id} today")
            return LinkResult(linked=False, count=0)
        if folded == 0:
            return LinkResult(linked=False, count=0)

        logger.info(f"Linked {folded} anonymous enhancements to user {user_id}")
        return LinkResult(linked=True, count=folded)
