"""Synopsis refresh as a dramatiq actor, plus the worker that runs it."""

import logging
from typing import List, Union

import dramatiq
from dramatiq.brokers.stub import StubBroker

from agents.synopsis import SynopsisSummarizer
from errors import SessionNotFound
from memory.sqlite_store import SQLiteSessionStore
from schemas.session import ChatTurn

logger = logging.getLogger(__name__)

SYNOPSIS_QUEUE = "synopsis"
SYNOPSIS_ACTOR = "refresh_synopsis"


class SynopsisRefresher:
    """Folds new turns into a session's synopsis through the summarizer."""

    def __init__(self, store: SQLiteSessionStore, summarizer: SynopsisSummarizer):
        """
        Initialize refresher.

        Args:
            store: Session store to update
            summarizer: Produces synopsis updates
        """
        self.store = store
        self.summarizer = summarizer

    def refresh(self, session_id: str, delta_turns: List[Union[ChatTurn, dict]]) -> int:
        """
        Refresh one session's synopsis.

        Args:
            session_id: Session to update
            delta_turns: Turns since the last refresh, as models or message dicts

        Returns:
            The session's new synopsis version

        Raises:
            SessionNotFound: if the session was deleted after the refresh was queued
        """
        turns = [t if isinstance(t, ChatTurn) else ChatTurn(**t) for t in delta_turns]
        logger.info(f"Processing synopsis update: session={session_id} turns={len(turns)}")

        session = self.store.get_session(session_id)
        if not session:
            raise SessionNotFound(session_id)

        update = self.summarizer.summarize(session.synopsis, turns)
        updated = self.store.update_synopsis(session_id, update)
        if not updated:
            raise SessionNotFound(session_id)

        logger.info(f"Synopsis updated: session={session_id} version={updated.synopsis_version}")
        return updated.synopsis_version


def create_synopsis_actor(
    broker: dramatiq.Broker,
    refresher: SynopsisRefresher,
    max_retries: int = 2,
    min_backoff: int = 2000,
    max_backoff: int = 60000
) -> dramatiq.Actor:
    """
    Declare the refresh actor on `broker`.

    Failed refreshes are retried by the Retries middleware with exponential
    backoff (milliseconds) and dead-lettered after the last retry.
    """
    def refresh_synopsis(session_id: str, delta_turns: list):
        try:
            refresher.refresh(session_id, delta_turns)
        except Exception as e:
            logger.error(f"Synopsis update failed: session={session_id}: {e}")
            raise

    return dramatiq.actor(
        refresh_synopsis,
        actor_name=SYNOPSIS_ACTOR,
        queue_name=SYNOPSIS_QUEUE,
        broker=broker,
        max_retries=max_retries,
        min_backoff=min_backoff,
        max_backoff=max_backoff,
    )


def create_broker(backend: str, redis_url: str) -> dramatiq.Broker:
    """
    Message broker for the refresh queue.

    "redis" is durable and shared between processes; "stub" keeps messages
    in memory and only reaches a worker running in the same process.
    """
    if backend == "redis":
        from dramatiq.brokers.redis import RedisBroker
        logger.info(f"Using Redis message broker: {redis_url}")
        return RedisBroker(url=redis_url)
    if backend == "stub":
        return StubBroker()
    raise ValueError(f"Unknown queue backend: {backend}")


def create_worker(
    broker: dramatiq.Broker,
    concurrency: int = 2,
    worker_timeout: int = 1000
) -> dramatiq.Worker:
    """Worker consuming the refresh queue with `concurrency` threads."""
    return dramatiq.Worker(
        broker,
        queues={SYNOPSIS_QUEUE},
        worker_threads=concurrency,
        worker_timeout=worker_timeout,
    )
