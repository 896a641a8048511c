"""SQLite-based user accounts."""

import sqlite3
import uuid
import logging
from pathlib import Path
from datetime import datetime
from typing import Callable, Optional

from pydantic import BaseModel, Field

from schemas.session import utcnow

logger = logging.getLogger(__name__)


class GoogleProfile(BaseModel):
    """Provider data returned by the Google identity callback."""
    sub: str
    name: Optional[str] = None
    picture: Optional[str] = None


class User(BaseModel):
    """An account."""
    user_id: str
    email: str
    password_hash: Optional[str] = None
    google: Optional[GoogleProfile] = None
    email_verified: bool = False
    created_at: datetime = Field(default_factory=utcnow)


class SQLiteUserStore:
    """SQLite-backed user account store."""

    def __init__(self, db_path: str = "data/enhancer.db", clock: Callable[[], datetime] = utcnow):
        """
        Initialize user store.

        Args:
            db_path: Path to SQLite database file
            clock: Returns the current UTC time
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.clock = clock
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=30.0)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self):
        conn = self._get_connection()
        conn.execute("""
            CREATE TABLE IF NOT EXISTS users (
                user_id TEXT PRIMARY KEY,
                email TEXT NOT NULL UNIQUE,
                password_hash TEXT,
                google_sub TEXT,
                google_name TEXT,
                google_picture TEXT,
                email_verified INTEGER NOT NULL DEFAULT 0,
                created_at TIMESTAMP NOT NULL
            )
        """)
        conn.execute("CREATE INDEX IF NOT EXISTS idx_users_google ON users(google_sub)")
        conn.commit()
        conn.close()

    @staticmethod
    def normalize_email(email: str) -> str:
        return email.strip().lower()

    @staticmethod
    def _row_to_user(row: sqlite3.Row) -> User:
        google = None
        if row["google_sub"]:
            google = GoogleProfile(
                sub=row["google_sub"],
                name=row["google_name"],
                picture=row["google_picture"],
            )
        return User(
            user_id=row["user_id"],
            email=row["email"],
            password_hash=row["password_hash"],
            google=google,
            email_verified=bool(row["email_verified"]),
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    def find_by_email(self, email: str) -> Optional[User]:
        conn = self._get_connection()
        try:
            row = conn.execute(
                "SELECT * FROM users WHERE email = ?", (self.normalize_email(email),)
            ).fetchone()
        finally:
            conn.close()
        return self._row_to_user(row) if row else None

    def create_user(
        self,
        email: str,
        password_hash: Optional[str] = None,
        google: Optional[GoogleProfile] = None,
        email_verified: bool = False
    ) -> User:
        """
        Insert a new account.

        Raises:
            sqlite3.IntegrityError: if the email is already registered
        """
        user = User(
            user_id=uuid.uuid4().hex,
            email=self.normalize_email(email),
            password_hash=password_hash,
            google=google,
            email_verified=email_verified,
            created_at=self.clock(),
        )
        conn = self._get_connection()
        try:
            conn.execute(
                """
                INSERT INTO users (user_id, email, password_hash, google_sub, google_name,
                                   google_picture, email_verified, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (user.user_id, user.email, password_hash,
                 google.sub if google else None,
                 google.name if google else None,
                 google.picture if google else None,
                 int(email_verified), user.created_at.isoformat())
            )
            conn.commit()
        finally:
            conn.close()

        logger.info(f"User created: {user.user_id}")
        return user

    def set_google_profile(self, user_id: str, google: GoogleProfile) -> None:
        """Attach provider data and mark the email verified."""
        conn = self._get_connection()
        try:
            conn.execute(
                """
                UPDATE users SET google_sub = ?, google_name = ?, google_picture = ?, email_verified = 1
                WHERE user_id = ?
                """,
                (google.sub, google.name, google.picture, user_id)
            )
            conn.commit()
        finally:
            conn.close()
