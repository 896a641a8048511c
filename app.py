"""Composition root: builds every component once and wires them together."""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

import dramatiq

from agents.classifier import InputClassifier
from agents.enhancer import PromptEnhancer
from agents.synopsis import SynopsisSummarizer
from agents.verifier import PromptVerifier
from auth.service import AuthService
from auth.user_store import SQLiteUserStore
from config.settings import Settings
from llm.base_client import BaseLLMClient
from llm.factory import create_llm_client
from memory.context_builder import ContextBuilder
from memory.sqlite_store import SQLiteSessionStore
from orchestrator import EnhancementOrchestrator
from quota.counter_store import CounterStore, SQLiteCounterStore
from quota.ledger import QuotaLedger, QuotaPolicy
from quota.linker import IdentityLinker
from quota.redis_store import RedisCounterStore
from schemas.session import utcnow
from worker.synopsis_worker import (
    SynopsisRefresher,
    create_broker,
    create_synopsis_actor,
    create_worker,
)

logger = logging.getLogger(__name__)


@dataclass
class Application:
    """Wired components shared by the CLI and the Streamlit page."""
    settings: Settings
    llm_client: BaseLLMClient
    counter_store: CounterStore
    ledger: QuotaLedger
    linker: IdentityLinker
    session_store: SQLiteSessionStore
    broker: dramatiq.Broker
    synopsis_actor: dramatiq.Actor
    orchestrator: EnhancementOrchestrator
    auth: AuthService
    worker: dramatiq.Worker


def create_counter_store(settings: Settings, clock: Callable[[], datetime] = utcnow) -> CounterStore:
    """Counter backend selected by `settings.counter_backend`."""
    if settings.counter_backend == "redis":
        logger.info(f"Using Redis counter store: {settings.redis_url}")
        return RedisCounterStore.from_url(settings.redis_url)
    if settings.counter_backend == "sqlite":
        return SQLiteCounterStore(db_path=settings.db_path, clock=clock)
    raise ValueError(f"Unknown counter backend: {settings.counter_backend}")


def create_application(
    settings: Optional[Settings] = None,
    llm_client: Optional[BaseLLMClient] = None,
    clock: Callable[[], datetime] = utcnow
) -> Application:
    """
    Build the application.

    Args:
        settings: Application settings
        llm_client: Pre-built LLM client; created from settings when omitted
        clock: Returns the current UTC time

    Returns:
        Application with every component constructed

    Raises:
        ValueError: if no LLM client is given and no API key is configured
    """
    settings = settings or Settings()

    if llm_client is None:
        api_key = settings.get_llm_api_key()
        if not api_key:
            raise ValueError(f"No API key configured for LLM provider {settings.llm_provider}")
        llm_client = create_llm_client(
            provider=settings.llm_provider,
            api_key=api_key,
            model=settings.llm_model
        )
    logger.info(
        f"LLM client initialized: {llm_client.get_provider_name()} ({llm_client.get_model_name()})"
    )

    counter_store = create_counter_store(settings, clock)
    policy = QuotaPolicy(
        anonymous=settings.anon_daily_limit,
        user=settings.user_daily_limit,
        ip_anonymous=settings.ip_daily_limit_anon,
        ip_authenticated=settings.ip_daily_limit_user,
    )
    ledger = QuotaLedger(counter_store, policy=policy, clock=clock)
    linker = IdentityLinker(counter_store, clock=clock)

    session_store = SQLiteSessionStore(db_path=settings.db_path, clock=clock)
    broker = create_broker(settings.queue_backend, settings.redis_url)
    synopsis_actor = create_synopsis_actor(
        broker,
        SynopsisRefresher(session_store, SynopsisSummarizer(llm_client)),
        max_retries=settings.synopsis_max_retries,
        min_backoff=settings.synopsis_min_backoff_ms,
        max_backoff=settings.synopsis_max_backoff_ms,
    )

    orchestrator = EnhancementOrchestrator(
        ledger=ledger,
        store=session_store,
        classifier=InputClassifier(),
        context_builder=ContextBuilder(
            max_recent_turns=settings.context_max_turns,
            max_context_chars=settings.context_max_chars,
        ),
        enhancer=PromptEnhancer(llm_client),
        verifier=PromptVerifier(),
        synopsis_actor=synopsis_actor,
        synopsis_delay=settings.synopsis_delay_seconds,
    )

    worker = create_worker(broker, concurrency=settings.worker_concurrency)

    auth = AuthService(SQLiteUserStore(db_path=settings.db_path, clock=clock), linker)

    logger.info(
        f"Application ready (db={settings.db_path}, counters={settings.counter_backend}, "
        f"queue={settings.queue_backend})"
    )
    return Application(
        settings=settings,
        llm_client=llm_client,
        counter_store=counter_store,
        ledger=ledger,
        linker=linker,
        session_store=session_store,
        broker=broker,
        synopsis_actor=synopsis_actor,
        orchestrator=orchestrator,
        auth=auth,
        worker=worker,
    )
