"""Tests for account flows."""

import sqlite3
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import Mock, patch

import pytest

from auth.service import AuthService, hash_password, verify_password
from auth.user_store import GoogleProfile, SQLiteUserStore
from errors import InvalidCredentials, UserAlreadyExists
from quota.counter_store import SQLiteCounterStore
from quota.ledger import QuotaLedger
from quota.linker import IdentityLinker
from schemas.quota import QuotaKind


class TestPasswordHashing:
    """Test bcrypt hashing helpers."""

    def test_round_trip(self):
        encoded = hash_password("s3cret", rounds=4)
        assert encoded.startswith("$2b$04$")
        assert verify_password("s3cret", encoded)
        assert not verify_password("wrong", encoded)

    def test_salted(self):
        assert hash_password("same", rounds=4) != hash_password("same", rounds=4)

    def test_malformed_hash(self):
        assert not verify_password("x", None)
        assert not verify_password("x", "not-a-hash")


class TestAuthService:
    """Test signup, login and the Google callback, each with a quota link."""

    def setup_method(self):
        """Set up test fixtures."""
        self.tmpdir = tempfile.TemporaryDirectory()
        self.now = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)
        clock = lambda: self.now
        db_path = str(Path(self.tmpdir.name) / "enhancer.db")
        counters = SQLiteCounterStore(db_path=db_path, clock=clock)
        self.ledger = QuotaLedger(counters, clock=clock)
        self.linker = IdentityLinker(counters, clock=clock)
        self.users = SQLiteUserStore(db_path=db_path, clock=clock)
        self.auth = AuthService(self.users, self.linker)

    def teardown_method(self):
        self.tmpdir.cleanup()

    def _use_anonymous(self, anon_id: str, times: int):
        for _ in range(times):
            self.ledger.check_and_increment(QuotaKind.ANONYMOUS, anon_id)

    def test_signup_links_anonymous_usage(self):
        self._use_anonymous("a1", 3)

        user = self.auth.signup("Ada@Example.com ", "pw", anon_id="a1")

        assert user.email == "ada@example.com"
        assert user.email_verified is False
        assert self.ledger.get_usage(QuotaKind.USER, user.user_id).used == 3

    def test_signup_duplicate_email(self):
        self.auth.signup("ada@example.com", "pw")

        with pytest.raises(UserAlreadyExists):
            self.auth.signup("ADA@example.com", "other")

    def test_login(self):
        created = self.auth.signup("ada@example.com", "pw")
        self._use_anonymous("a2", 2)

        user = self.auth.login("ada@example.com", "pw", anon_id="a2")

        assert user.user_id == created.user_id
        assert self.ledger.get_usage(QuotaKind.USER, user.user_id).used == 2

    def test_login_wrong_password(self):
        self.auth.signup("ada@example.com", "pw")

        with pytest.raises(InvalidCredentials):
            self.auth.login("ada@example.com", "nope")

    def test_login_unknown_email(self):
        with pytest.raises(InvalidCredentials):
            self.auth.login("nobody@example.com", "pw")

    def test_login_twice_links_once(self):
        self.auth.signup("ada@example.com", "pw")
        self._use_anonymous("a1", 2)

        user = self.auth.login("ada@example.com", "pw", anon_id="a1")
        self.auth.login("ada@example.com", "pw", anon_id="a1")

        assert self.ledger.get_usage(QuotaKind.USER, user.user_id).used == 2

    def test_oauth_creates_verified_user(self):
        user = self.auth.oauth_callback(
            "grace@example.com", "google-sub-1", name="Grace", picture="http://pic"
        )

        assert user.email_verified is True
        assert user.google.sub == "google-sub-1"
        stored = self.users.find_by_email("grace@example.com")
        assert stored.google.name == "Grace"
        assert stored.password_hash is None

    def test_oauth_attaches_to_existing_account(self):
        created = self.auth.signup("ada@example.com", "pw")

        user = self.auth.oauth_callback("ada@example.com", "sub-9")

        assert user.user_id == created.user_id
        stored = self.users.find_by_email("ada@example.com")
        assert stored.email_verified is True
        assert stored.google.sub == "sub-9"
        # Password login keeps working
        assert self.auth.login("ada@example.com", "pw").user_id == created.user_id

    def test_link_failure_does_not_block_login(self):
        """Test that a counter backend error is logged and swallowed."""
        linker = Mock(spec=IdentityLinker)
        linker.link_anonymous_to_user.side_effect = RuntimeError("redis down")
        auth = AuthService(self.users, linker)
        auth.signup("ada@example.com", "pw")

        user = auth.login("ada@example.com", "pw", anon_id="a1")

        assert user.email == "ada@example.com"

    def test_explicit_link(self):
        user = self.auth.signup("ada@example.com", "pw")
        self._use_anonymous("a1", 4)

        first = self.auth.link_anonymous(user.user_id, "a1")
        second = self.auth.link_anonymous(user.user_id, "a1")

        assert (first.linked, first.count) == (True, 4)
        assert (second.linked, second.count) == (False, 0)


class TestSQLiteUserStore:
    """Test the account store."""

    def setup_method(self):
        """Set up test fixtures."""
        self.tmpdir = tempfile.TemporaryDirectory()
        self.now = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)
        db_path = str(Path(self.tmpdir.name) / "enhancer.db")
        self.users = SQLiteUserStore(db_path=db_path, clock=lambda: self.now)

    def teardown_method(self):
        self.tmpdir.cleanup()

    def _failing_connection(self):
        conn = Mock()
        conn.execute.side_effect = sqlite3.OperationalError("database is locked")
        return conn

    def test_email_is_normalized(self):
        self.users.create_user("  Ada@Example.COM ")
        assert self.users.find_by_email("ada@example.com").email == "ada@example.com"

    def test_find_by_email_closes_connection_on_error(self):
        conn = self._failing_connection()

        with patch.object(self.users, "_get_connection", return_value=conn):
            with pytest.raises(sqlite3.OperationalError):
                self.users.find_by_email("ada@example.com")

        conn.close.assert_called_once()

    def test_set_google_profile_closes_connection_on_error(self):
        conn = self._failing_connection()

        with patch.object(self.users, "_get_connection", return_value=conn):
            with pytest.raises(sqlite3.OperationalError):
                self.users.set_google_profile("u1", GoogleProfile(sub="g-1"))

        conn.close.assert_called_once()
