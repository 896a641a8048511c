"""Sign-up, login and Google callback flows.

Every successful sign-in folds the caller's anonymous usage for the day
into the user's quota counter.
"""

import logging
import sqlite3
from typing import Optional

import bcrypt

from errors import InvalidCredentials, UserAlreadyExists
from quota.linker import IdentityLinker
from schemas.quota import LinkResult
from .user_store import GoogleProfile, SQLiteUserStore, User

logger = logging.getLogger(__name__)

BCRYPT_ROUNDS = 12


def hash_password(password: str, rounds: int = BCRYPT_ROUNDS) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds)).decode("utf-8")


def verify_password(password: str, password_hash: Optional[str]) -> bool:
    if not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


class AuthService:
    """Account flows on top of the user store and the identity linker."""

    def __init__(self, user_store: SQLiteUserStore, linker: IdentityLinker):
        """
        Initialize auth service.

        Args:
            user_store: Account storage
            linker: Folds anonymous usage into user counters
        """
        self.user_store = user_store
        self.linker = linker

    def _link_quietly(self, user_id: str, anon_id: Optional[str]) -> LinkResult:
        # Sign-in must succeed even if the counter backend is unavailable.
        if not anon_id:
            return LinkResult()
        try:
            return self.linker.link_anonymous_to_user(user_id, anon_id)
        except Exception as e:
            logger.error(f"Failed to link anonymous usage for user {user_id}: {e}")
            return LinkResult()

    def signup(self, email: str, password: str, anon_id: Optional[str] = None) -> User:
        """
        Create a password account.

        Raises:
            UserAlreadyExists: if the email is already registered
        """
        if self.user_store.find_by_email(email):
            raise UserAlreadyExists("User already exists")
        try:
            user = self.user_store.create_user(email, password_hash=hash_password(password))
        except sqlite3.IntegrityError as e:
            raise UserAlreadyExists("User already exists") from e

        self._link_quietly(user.user_id, anon_id)
        return user

    def login(self, email: str, password: str, anon_id: Optional[str] = None) -> User:
        """
        Check a password login.

        Raises:
            InvalidCredentials: for an unknown email or a wrong password
        """
        user = self.user_store.find_by_email(email)
        if not user or not verify_password(password, user.password_hash):
            logger.info("Login rejected")
            raise InvalidCredentials("Invalid credentials")

        self._link_quietly(user.user_id, anon_id)
        return user

    def oauth_callback(
        self,
        email: str,
        subject: str,
        name: Optional[str] = None,
        picture: Optional[str] = None,
        anon_id: Optional[str] = None
    ) -> User:
        """
        Find or create the account for a verified Google identity.

        An existing password account with the same email gets the Google
        profile attached.
        """
        google = GoogleProfile(sub=subject, name=name, picture=picture)
        user = self.user_store.find_by_email(email)
        if user is None:
            user = self.user_store.create_user(email, google=google, email_verified=True)
        else:
            self.user_store.set_google_profile(user.user_id, google)
            user = user.model_copy(update={"google": google, "email_verified": True})

        self._link_quietly(user.user_id, anon_id)
        return user

    def link_anonymous(self, user_id: str, anon_id: str) -> LinkResult:
        """Explicit link request from an already authenticated client."""
        return self.linker.link_anonymous_to_user(user_id, anon_id)
