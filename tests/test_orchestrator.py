"""End-to-end tests for the enhancement orchestrator."""

import tempfile
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import ANY, Mock

import pytest
from dramatiq import Message
from dramatiq.brokers.stub import StubBroker
from dramatiq.common import dq_name

from agents.classifier import InputClassifier
from agents.enhancer import PromptEnhancer
from agents.verifier import PromptVerifier
from errors import QuotaExceeded, SessionNotFound, UpstreamEnhancementFailure
from llm.base_client import BaseLLMClient, LLMResponse
from memory.context_builder import ContextBuilder
from memory.sqlite_store import SQLiteSessionStore
from orchestrator import EnhancementOrchestrator
from quota.counter_store import SQLiteCounterStore
from quota.ledger import QuotaLedger
from schemas.enhance import EnhanceRequest
from schemas.identity import AnonymousIdentity, RequestIdentity, UserIdentity
from schemas.quota import QuotaKind
from schemas.session import ChatTurn, SynopsisUpdate
from worker.synopsis_worker import SYNOPSIS_QUEUE, SynopsisRefresher, create_synopsis_actor

GOOD_PROMPT = "Write a 200-word summary about solar power for a general audience in a neutral tone."


class TestEnhancementOrchestrator:
    """Test the enhancement pipeline against real SQLite stores and a mock LLM."""

    def setup_method(self):
        """Set up test fixtures."""
        self.tmpdir = tempfile.TemporaryDirectory()
        self.now = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)
        clock = lambda: self.now
        db_path = str(Path(self.tmpdir.name) / "enhancer.db")

        self.llm = Mock(spec=BaseLLMClient)
        self.llm.get_model_name.return_value = "gpt-4o-mini"
        self.llm.chat.return_value = LLMResponse(
            content=GOOD_PROMPT,
            usage={"prompt_tokens": 40, "completion_tokens": 20}
        )

        self.ledger = QuotaLedger(SQLiteCounterStore(db_path=db_path, clock=clock), clock=clock)
        self.store = SQLiteSessionStore(db_path=db_path, clock=clock)
        self.broker = StubBroker()
        self.actor = create_synopsis_actor(self.broker, Mock(spec=SynopsisRefresher))
        self.orchestrator = EnhancementOrchestrator(
            ledger=self.ledger,
            store=self.store,
            classifier=InputClassifier(),
            context_builder=ContextBuilder(),
            enhancer=PromptEnhancer(self.llm),
            verifier=PromptVerifier(),
            synopsis_actor=self.actor,
            synopsis_delay=5.0,
        )
        self.anon = RequestIdentity(anon_id="a1", client_ip="1.2.3.4")
        self.user = RequestIdentity(anon_id="a1", user_id="u1", client_ip="1.2.3.4")

    def teardown_method(self):
        self.broker.close()
        self.tmpdir.cleanup()

    def _queued_refreshes(self):
        queue = self.broker.queues[dq_name(SYNOPSIS_QUEUE)]
        return [Message.decode(data) for data in list(queue.queue)]

    def test_anonymous_daily_quota(self):
        """Test ten anonymous enhancements, then rejection without an LLM call."""
        remaining = []
        for _ in range(10):
            response = self.orchestrator.enhance(EnhanceRequest(prompt="solar power"), self.anon)
            remaining.append(response.quota_remaining)

        assert remaining == list(range(9, -1, -1))

        calls_before = self.llm.chat.call_count
        with pytest.raises(QuotaExceeded) as exc_info:
            self.orchestrator.enhance(EnhanceRequest(prompt="solar power"), self.anon)

        assert exc_info.value.remaining == 0
        assert exc_info.value.retry_after == "tomorrow"
        assert self.llm.chat.call_count == calls_before

    def test_standalone_prompt_persisted(self):
        response = self.orchestrator.enhance(EnhanceRequest(prompt="solar power"), self.anon)

        assert response.enhanced_prompt == GOOD_PROMPT
        assert response.session_id is None
        assert response.use_history is False
        assert response.tokens.input == 40
        records = self.store.get_owner_prompts(AnonymousIdentity(id="a1"))
        assert [r.prompt_id for r in records] == [response.prompt_id]
        assert records[0].model == "gpt-4o-mini"
        assert self._queued_refreshes() == []

    def test_auto_create_session(self):
        response = self.orchestrator.enhance(
            EnhanceRequest(prompt="solar power", auto_create_session=True), self.user
        )

        session = self.store.find_owned(response.session_id, UserIdentity(id="u1"))
        assert session is not None
        refreshes = self._queued_refreshes()
        assert len(refreshes) == 1
        assert refreshes[0].args[0] == response.session_id

    def test_follow_up_uses_session_context(self):
        """Test that synopsis and turns reach the LLM for a follow-up."""
        session = self.store.create_session(AnonymousIdentity(id="a1"))
        self.store.update_synopsis(session.session_id, SynopsisUpdate(goal="solar explainer"))
        request = EnhanceRequest(
            prompt="Can you make it shorter?",
            session_id=session.session_id,
            use_history=True,
            last_messages=[
                ChatTurn(role="user", content="solar power"),
                ChatTurn(role="assistant", content=GOOD_PROMPT),
            ],
        )

        response = self.orchestrator.enhance(request, self.anon)

        assert response.use_history is True
        assert response.session_id == session.session_id
        assert response.context_used.last_turns == 2
        assert response.context_used.synopsis_chars == len("solar explainer")
        user_message = self.llm.chat.call_args_list[0].kwargs["messages"][1].content
        assert user_message.startswith("Context: Session Context:\nGoal: solar explainer")
        assert user_message.endswith("Current input: Can you make it shorter?")

        refreshes = self._queued_refreshes()
        assert len(refreshes) == 1
        session_id, delta_turns = refreshes[0].args
        assert session_id == session.session_id
        assert [t["role"] for t in delta_turns] == ["user", "assistant", "user", "assistant"]
        assert delta_turns[2] == {"role": "user", "content": "Can you make it shorter?"}

    def test_standalone_prompt_ignores_history(self):
        session = self.store.create_session(AnonymousIdentity(id="a1"))
        request = EnhanceRequest(
            prompt="Write a haiku about autumn",
            session_id=session.session_id,
            use_history=True,
            last_messages=[ChatTurn(role="user", content="earlier")],
        )

        response = self.orchestrator.enhance(request, self.anon)

        assert response.use_history is False
        assert response.context_used.last_turns == 0
        assert self.llm.chat.call_args_list[0].kwargs["messages"][1].content == "Write a haiku about autumn"

    def test_foreign_session_is_not_used(self):
        """Test that another identity's session is neither read nor attached."""
        session = self.store.create_session(AnonymousIdentity(id="someone-else"))
        self.store.update_synopsis(session.session_id, SynopsisUpdate(goal="secret"))

        response = self.orchestrator.enhance(
            EnhanceRequest(
                prompt="What about it?",
                session_id=session.session_id,
                use_history=True,
                last_messages=[ChatTurn(role="user", content="earlier draft")],
            ),
            self.anon
        )

        assert response.session_id is None
        assert response.use_history is False
        assert response.context_used.last_turns == 0
        assert "earlier draft" not in self.llm.chat.call_args_list[0].kwargs["messages"][1].content
        assert "secret" not in self.llm.chat.call_args_list[0].kwargs["messages"][1].content
        assert self.store.get_session_prompts(session.session_id) == []

    def test_follow_up_without_session_has_no_history(self):
        response = self.orchestrator.enhance(
            EnhanceRequest(
                prompt="Can you make it shorter?",
                use_history=True,
                last_messages=[ChatTurn(role="user", content="solar power")],
            ),
            self.anon
        )

        assert response.use_history is False
        assert response.context_used.last_turns == 0
        assert self.llm.chat.call_args_list[0].kwargs["messages"][1].content == "Can you make it shorter?"
        record = self.store.get_owner_prompts(AnonymousIdentity(id="a1"))[0]
        assert record.use_history is False

    def test_upstream_failure_is_fatal(self):
        self.llm.chat.side_effect = RuntimeError("service down")

        with pytest.raises(UpstreamEnhancementFailure):
            self.orchestrator.enhance(EnhanceRequest(prompt="solar power"), self.anon)

        assert self.store.get_owner_prompts(AnonymousIdentity(id="a1")) == []

    def test_failed_verification_triggers_repair(self):
        self.llm.chat.side_effect = [
            LLMResponse(content="solar"),
            LLMResponse(content=GOOD_PROMPT),
        ]

        response = self.orchestrator.enhance(EnhanceRequest(prompt="solar"), self.anon)

        assert response.enhanced_prompt == GOOD_PROMPT
        assert self.llm.chat.call_count == 2

    def test_failed_repair_keeps_enhanced_text(self):
        self.llm.chat.side_effect = [LLMResponse(content="solar"), RuntimeError("boom")]

        response = self.orchestrator.enhance(EnhanceRequest(prompt="solar"), self.anon)

        assert response.enhanced_prompt == "solar"

    def test_enqueue_failure_does_not_fail_request(self):
        self.orchestrator.synopsis_actor = Mock()
        self.orchestrator.synopsis_actor.send_with_options.side_effect = RuntimeError("broker down")

        response = self.orchestrator.enhance(
            EnhanceRequest(prompt="solar power", auto_create_session=True), self.anon
        )

        assert response.prompt_id
        assert len(self.store.get_session_prompts(response.session_id)) == 1

    def test_refresh_sent_with_delay(self):
        self.orchestrator.synopsis_actor = Mock()
        session = self.store.create_session(AnonymousIdentity(id="a1"))

        self.orchestrator.enhance(
            EnhanceRequest(prompt="solar power", session_id=session.session_id), self.anon
        )

        self.orchestrator.synopsis_actor.send_with_options.assert_called_once_with(
            args=(session.session_id, ANY), delay=5000
        )

    def test_session_detail_and_crud(self):
        session = self.orchestrator.create_session(self.anon, title="Ideas")
        self.orchestrator.enhance(
            EnhanceRequest(prompt="solar power", session_id=session.session_id), self.anon
        )

        found, prompts = self.orchestrator.get_session_detail(session.session_id, self.anon)
        assert found.title == "Ideas"
        assert len(prompts) == 1

        renamed = self.orchestrator.rename_session(session.session_id, self.anon, "Energy")
        assert renamed.title == "Energy"
        assert self.orchestrator.list_sessions(self.anon).total == 1

        assert self.orchestrator.delete_session(session.session_id, self.anon) == 1
        with pytest.raises(SessionNotFound):
            self.orchestrator.get_session_detail(session.session_id, self.anon)

    def test_not_owned_session_raises_not_found(self):
        session = self.orchestrator.create_session(self.anon)
        stranger = RequestIdentity(anon_id="a2")

        with pytest.raises(SessionNotFound):
            self.orchestrator.get_session_detail(session.session_id, stranger)
        with pytest.raises(SessionNotFound):
            self.orchestrator.rename_session(session.session_id, stranger, "x")
        with pytest.raises(SessionNotFound):
            self.orchestrator.delete_session(session.session_id, stranger)

    def test_merge_session(self):
        session = self.orchestrator.create_session(self.anon)
        self.orchestrator.enhance(
            EnhanceRequest(prompt="solar power", session_id=session.session_id), self.anon
        )

        merged = self.orchestrator.merge_session(session.session_id, self.user)

        assert merged.owner == UserIdentity(id="u1")
        _, prompts = self.orchestrator.get_session_detail(session.session_id, self.user)
        assert prompts[0].owner == UserIdentity(id="u1")

    def test_merge_requires_authentication(self):
        session = self.orchestrator.create_session(self.anon)

        with pytest.raises(PermissionError):
            self.orchestrator.merge_session(session.session_id, self.anon)

    def test_usage(self):
        self.orchestrator.enhance(EnhanceRequest(prompt="solar power"), self.user)

        usage = self.orchestrator.usage(self.user)

        assert usage.used == 1
        assert usage.limit == 20
        assert usage.is_authenticated is True
        assert self.ledger.get_usage(QuotaKind.IP, "1.2.3.4").used == 1
