"""Request orchestration for prompt enhancement and session management."""

import time
import logging
from typing import List, Optional

import dramatiq

from agents.classifier import InputClassifier
from agents.enhancer import PromptEnhancer
from agents.verifier import PromptVerifier
from errors import SessionNotFound
from memory.context_builder import ContextBuilder
from memory.sqlite_store import SQLiteSessionStore
from quota.ledger import QuotaLedger
from schemas.enhance import ContextResult, EnhanceRequest, EnhanceResponse
from schemas.identity import AnonymousIdentity, RequestIdentity, UserIdentity
from schemas.quota import QuotaUsage
from schemas.session import ChatTurn, PromptRecord, Session, SessionPage

logger = logging.getLogger(__name__)

RECENT_PROMPTS_LIMIT = 20


class EnhancementOrchestrator:
    """Runs the enhancement pipeline and the session operations around it."""

    def __init__(
        self,
        ledger: QuotaLedger,
        store: SQLiteSessionStore,
        classifier: InputClassifier,
        context_builder: ContextBuilder,
        enhancer: PromptEnhancer,
        verifier: PromptVerifier,
        synopsis_actor: Optional[dramatiq.Actor] = None,
        synopsis_delay: float = 5.0
    ):
        """
        Initialize orchestrator.

        Args:
            ledger: Daily quota ledger
            store: Session and prompt store
            classifier: Follow-up classifier
            context_builder: Builds the bounded history context
            enhancer: Enhancement service wrapper
            verifier: Structural check of enhanced prompts
            synopsis_actor: Actor that refreshes session synopses; skipped when None
            synopsis_delay: Seconds before a queued refresh is delivered
        """
        self.ledger = ledger
        self.store = store
        self.classifier = classifier
        self.context_builder = context_builder
        self.enhancer = enhancer
        self.verifier = verifier
        self.synopsis_actor = synopsis_actor
        self.synopsis_delay = synopsis_delay

    # ------------------------------------------------------------------
    # Enhancement
    # ------------------------------------------------------------------

    def enhance(self, request: EnhanceRequest, identity: RequestIdentity) -> EnhanceResponse:
        """
        Enhance one prompt end-to-end.

        Args:
            request: Validated enhancement request
            identity: Identity resolved by the auth layer

        Returns:
            EnhanceResponse

        Raises:
            QuotaExceeded: before any other work when a daily quota is spent
            UpstreamEnhancementFailure: when the enhancement call fails
        """
        started = time.monotonic()
        decision = self.ledger.admit(identity)

        classification = self.classifier.classify(request.prompt)
        owner = identity.owner

        session = self._resolve_session(request, identity)

        # History comes only from a session the caller owns
        use_history = request.use_history and classification.is_follow_up and session is not None
        context = ContextResult()
        if use_history:
            context = self._build_context(session, request.last_messages)

        result = self.enhancer.enhance(request.prompt, context.context or None)
        enhanced = result.enhanced_text

        verification = self.verifier.verify(enhanced)
        if not verification.is_valid:
            logger.info(f"Enhanced prompt missing {verification.missing}, attempting repair")
            enhanced = self.enhancer.repair(enhanced, request.prompt, verification.missing)

        latency_ms = int((time.monotonic() - started) * 1000)
        record = self.store.create_prompt(
            owner=owner,
            original=request.prompt,
            enhanced=enhanced,
            model=result.model,
            session_id=session.session_id if session else None,
            use_history=use_history,
            context_used=context.context_used,
            latency_ms=latency_ms,
            tokens=result.tokens,
        )

        if session:
            self._schedule_synopsis_refresh(session.session_id, request, enhanced)

        logger.info(
            f"Enhancement complete: prompt={record.prompt_id} follow_up={classification.is_follow_up} "
            f"history={use_history} latency={latency_ms}ms"
        )

        return EnhanceResponse(
            enhanced_prompt=record.enhanced,
            prompt_id=record.prompt_id,
            session_id=record.session_id,
            use_history=use_history,
            context_used=record.context_used,
            latency_ms=latency_ms,
            tokens=record.tokens,
            quota_remaining=decision.remaining,
        )

    def _resolve_session(self, request: EnhanceRequest, identity: RequestIdentity) -> Optional[Session]:
        """Owned session for the request, auto-created if asked. Failures are logged and ignored."""
        owner = identity.owner
        if request.session_id:
            try:
                session = self.store.find_owned(request.session_id, owner)
            except Exception as e:
                logger.error(f"Failed to load session {request.session_id}: {e}")
                return None
            if session is None:
                logger.warning(f"Session {request.session_id} not found for {owner.kind} {owner.id}")
            return session

        if request.auto_create_session:
            try:
                return self.store.create_session(owner)
            except Exception as e:
                logger.error(f"Failed to auto-create session: {e}")
        return None

    def _build_context(self, session: Session, last_messages: List[ChatTurn]) -> ContextResult:
        try:
            return self.context_builder.build(session.synopsis, last_messages)
        except Exception as e:
            logger.error(f"Failed to build context: {e}")
            return ContextResult()

    def _schedule_synopsis_refresh(self, session_id: str, request: EnhanceRequest, enhanced: str):
        if self.synopsis_actor is None:
            return
        delta_turns = list(request.last_messages[-self.context_builder.max_recent_turns:])
        delta_turns += [
            ChatTurn(role="user", content=request.prompt),
            ChatTurn(role="assistant", content=enhanced),
        ]
        try:
            self.synopsis_actor.send_with_options(
                args=(session_id, [t.model_dump() for t in delta_turns]),
                delay=int(self.synopsis_delay * 1000),
            )
        except Exception as e:
            logger.error(f"Failed to enqueue synopsis update for session {session_id}: {e}")

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def create_session(self, identity: RequestIdentity, title: Optional[str] = None) -> Session:
        return self.store.create_session(identity.owner, title)

    def list_sessions(self, identity: RequestIdentity, page: int = 1, limit: int = 10) -> SessionPage:
        return self.store.list_sessions(identity.owner, page=page, limit=limit)

    def get_session_detail(self, session_id: str, identity: RequestIdentity) -> tuple[Session, List[PromptRecord]]:
        """
        Owned session with its most recent prompts, newest first.

        Raises:
            SessionNotFound: if missing or owned by someone else
        """
        session = self.store.find_owned(session_id, identity.owner)
        if not session:
            raise SessionNotFound(session_id)
        return session, self.store.get_session_prompts(session_id, limit=RECENT_PROMPTS_LIMIT)

    def rename_session(self, session_id: str, identity: RequestIdentity, title: str) -> Session:
        session = self.store.update_title(session_id, identity.owner, title)
        if not session:
            raise SessionNotFound(session_id)
        return session

    def delete_session(self, session_id: str, identity: RequestIdentity) -> int:
        """Delete an owned session; returns the number of prompts removed with it."""
        deleted = self.store.delete_session(session_id, identity.owner)
        if deleted is None:
            raise SessionNotFound(session_id)
        return deleted

    def merge_session(self, session_id: str, identity: RequestIdentity) -> Session:
        """
        Move a session owned by the request's anonymous id to its user.

        Raises:
            PermissionError: if the request is not authenticated
            SessionNotFound: if the anonymous id does not own the session
        """
        if not identity.is_authenticated:
            raise PermissionError("Merging a session requires an authenticated user")
        session = self.store.merge_into_user(session_id, identity.anon_id, identity.user_id)
        if not session:
            raise SessionNotFound(session_id)
        return session

    def record_feedback(self, prompt_id: str, identity: RequestIdentity, accepted: bool) -> bool:
        return self.store.mark_feedback(prompt_id, identity.owner, accepted)

    def usage(self, identity: RequestIdentity) -> QuotaUsage:
        return self.ledger.usage_for(identity)


def owner_label(owner) -> str:
    """Short human-readable owner description for CLI and UI output."""
    if isinstance(owner, UserIdentity):
        return f"user:{owner.id}"
    if isinstance(owner, AnonymousIdentity):
        return f"anon:{owner.id}"
    return str(owner)
