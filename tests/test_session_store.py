"""Tests for the SQLite session store."""

import sqlite3
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from memory.sqlite_store import SQLiteSessionStore
from schemas.identity import AnonymousIdentity, UserIdentity
from schemas.session import ContextUsed, SynopsisUpdate, TokenUsage


class TestSQLiteSessionStore:
    """Test sessions, ownership and prompt records."""

    def setup_method(self):
        """Set up test fixtures."""
        self.tmpdir = tempfile.TemporaryDirectory()
        self.now = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)
        self.db_path = str(Path(self.tmpdir.name) / "enhancer.db")
        self.store = SQLiteSessionStore(db_path=self.db_path, clock=lambda: self.now)
        self.anon = AnonymousIdentity(id="a1")
        self.user = UserIdentity(id="u1")

    def teardown_method(self):
        self.tmpdir.cleanup()

    def _tick(self, seconds: int = 1):
        self.now += timedelta(seconds=seconds)

    def _add_prompt(self, owner, session_id, text="write a poem"):
        self._tick()
        return self.store.create_prompt(
            owner=owner,
            original=text,
            enhanced=f"Write a short poem about {text}",
            model="gpt-4o-mini",
            session_id=session_id,
            use_history=False,
            context_used=ContextUsed(),
            latency_ms=12,
            tokens=TokenUsage(input=5, output=9),
        )

    def test_create_session(self):
        session = self.store.create_session(self.anon, title="Drafts")

        assert session.owner == self.anon
        assert session.title == "Drafts"
        assert session.synopsis_version == 0
        assert session.synopsis.is_empty()

    def test_title_is_clipped(self):
        session = self.store.create_session(self.anon, title="x" * 300)
        assert len(session.title) == 200

    def test_find_owned_filters_by_owner(self):
        """Test that another identity cannot see the session."""
        session = self.store.create_session(self.anon)

        assert self.store.find_owned(session.session_id, self.anon) is not None
        assert self.store.find_owned(session.session_id, AnonymousIdentity(id="a2")) is None
        # Same id string under the other ownership kind does not match
        assert self.store.find_owned(session.session_id, UserIdentity(id="a1")) is None

    def test_find_owned_missing(self):
        assert self.store.find_owned("missing", self.anon) is None

    def test_owner_exclusivity_enforced_by_table(self):
        conn = sqlite3.connect(self.db_path)
        try:
            with pytest.raises(sqlite3.IntegrityError):
                conn.execute(
                    """
                    INSERT INTO sessions (session_id, anon_id, user_id, synopsis,
                                          last_message_at, created_at, updated_at)
                    VALUES ('s', 'a1', 'u1', '{}', 'x', 'x', 'x')
                    """
                )
        finally:
            conn.close()

    def test_list_sessions_orders_by_activity(self):
        first = self.store.create_session(self.user, title="first")
        self._tick()
        second = self.store.create_session(self.user, title="second")
        self._tick()
        self._add_prompt(self.user, first.session_id)
        self.store.create_session(self.anon, title="not mine")

        page = self.store.list_sessions(self.user, page=1, limit=10)

        assert [s.session_id for s in page.sessions] == [first.session_id, second.session_id]
        assert page.total == 2
        assert page.total_pages == 1

    def test_list_sessions_pagination(self):
        for i in range(5):
            self._tick()
            self.store.create_session(self.user, title=f"s{i}")

        page = self.store.list_sessions(self.user, page=2, limit=2)

        assert [s.title for s in page.sessions] == ["s2", "s1"]
        assert page.total == 5
        assert page.total_pages == 3

    def test_update_title(self):
        session = self.store.create_session(self.anon)
        self._tick(60)

        updated = self.store.update_title(session.session_id, self.anon, "Renamed")

        assert updated.title == "Renamed"
        assert updated.last_message_at == self.now

    def test_update_title_not_owned(self):
        session = self.store.create_session(self.anon)
        assert self.store.update_title(session.session_id, self.user, "Nope") is None

    def test_delete_session_cascades(self):
        """Test that prompts of the session go with it."""
        session = self.store.create_session(self.anon)
        other = self.store.create_session(self.anon)
        self._add_prompt(self.anon, session.session_id)
        self._add_prompt(self.anon, session.session_id)
        self._add_prompt(self.anon, other.session_id)

        deleted = self.store.delete_session(session.session_id, self.anon)

        assert deleted == 2
        assert self.store.find_owned(session.session_id, self.anon) is None
        assert self.store.get_session_prompts(session.session_id) == []
        assert len(self.store.get_session_prompts(other.session_id)) == 1

    def test_delete_session_not_owned_keeps_prompts(self):
        session = self.store.create_session(self.anon)
        self._add_prompt(self.anon, session.session_id)

        assert self.store.delete_session(session.session_id, self.user) is None
        assert len(self.store.get_session_prompts(session.session_id)) == 1

    def test_merge_transfers_session_and_prompts(self):
        """Test ownership transfer from anonymous id to user."""
        session = self.store.create_session(self.anon)
        self._add_prompt(self.anon, session.session_id)
        self._add_prompt(self.anon, session.session_id)
        loose = self._add_prompt(self.anon, None)

        merged = self.store.merge_into_user(session.session_id, "a1", "u1")

        assert merged.owner == self.user
        assert self.store.find_owned(session.session_id, self.anon) is None
        assert self.store.find_owned(session.session_id, self.user) is not None
        prompts = self.store.get_session_prompts(session.session_id)
        assert len(prompts) == 2
        assert all(p.owner == self.user for p in prompts)
        # Prompts outside the session keep their owner
        anon_prompts = self.store.get_owner_prompts(self.anon)
        assert [p.prompt_id for p in anon_prompts] == [loose.prompt_id]

    def test_merge_requires_anonymous_owner(self):
        session = self.store.create_session(self.anon)

        assert self.store.merge_into_user(session.session_id, "a2", "u1") is None
        assert self.store.find_owned(session.session_id, self.anon) is not None

    def test_merge_happens_once(self):
        session = self.store.create_session(self.anon)
        self.store.merge_into_user(session.session_id, "a1", "u1")

        assert self.store.merge_into_user(session.session_id, "a1", "u2") is None

    def test_partial_synopsis_merge(self):
        """Test that untouched fields survive and the version goes up by one."""
        session = self.store.create_session(self.anon)
        self.store.update_synopsis(session.session_id, SynopsisUpdate(goal="blog post", tone="casual"))
        self._tick(30)

        updated = self.store.update_synopsis(session.session_id, SynopsisUpdate(goal="newsletter"))

        assert updated.synopsis.goal == "newsletter"
        assert updated.synopsis.tone == "casual"
        assert updated.synopsis_version == 2
        assert updated.last_message_at == self.now
        stored = self.store.get_session(session.session_id)
        assert stored.synopsis.tone == "casual"
        assert stored.synopsis_version == 2

    def test_synopsis_fields_clipped(self):
        session = self.store.create_session(self.anon)
        updated = self.store.update_synopsis(session.session_id, SynopsisUpdate(goal="g" * 200))
        assert len(updated.synopsis.goal) == 120

    def test_update_synopsis_missing_session(self):
        assert self.store.update_synopsis("missing", SynopsisUpdate(goal="x")) is None

    def test_todos(self):
        session = self.store.create_session(self.anon)

        updated = self.store.add_todo(session.session_id, "add a CTA")
        assert updated.synopsis.todos == ["add a CTA"]
        assert updated.synopsis_version == 1

        unchanged = self.store.add_todo(session.session_id, "add a CTA")
        assert unchanged.synopsis_version == 1

        removed = self.store.remove_todo(session.session_id, "add a CTA")
        assert removed.synopsis.todos == []
        assert removed.synopsis_version == 2

    def test_create_prompt_bumps_session_activity(self):
        session = self.store.create_session(self.anon)
        record = self._add_prompt(self.anon, session.session_id)

        stored = self.store.get_session(session.session_id)
        assert stored.last_message_at == record.created_at

    def test_session_prompts_newest_first(self):
        session = self.store.create_session(self.anon)
        first = self._add_prompt(self.anon, session.session_id, "one")
        second = self._add_prompt(self.anon, session.session_id, "two")

        prompts = self.store.get_session_prompts(session.session_id)

        assert [p.prompt_id for p in prompts] == [second.prompt_id, first.prompt_id]
        assert prompts[0].tokens.output == 9

    def test_feedback_and_acceptance_rate(self):
        a = self._add_prompt(self.user, None)
        b = self._add_prompt(self.user, None)
        self._add_prompt(self.user, None)

        assert self.store.mark_feedback(a.prompt_id, self.user, True)
        assert self.store.mark_feedback(b.prompt_id, self.user, False)
        assert not self.store.mark_feedback(a.prompt_id, self.anon, False)

        stats = self.store.acceptance_rate(user_id="u1")
        assert stats == {"total": 2, "accepted": 1, "rate": 50.0}
