"""SQLite-based store for sessions and their prompt records."""

import sqlite3
import json
import uuid
import logging
from contextlib import contextmanager
from pathlib import Path
from datetime import datetime
from typing import Callable, Iterator, Optional, List

from schemas.identity import Identity, identity_columns, identity_from_columns
from schemas.session import (
    Session,
    SessionPage,
    Synopsis,
    SynopsisUpdate,
    PromptRecord,
    ContextUsed,
    TokenUsage,
    utcnow,
)

logger = logging.getLogger(__name__)

TITLE_MAX_CHARS = 200
PROMPT_MAX_CHARS = 10000


def _ts(value: datetime) -> str:
    return value.isoformat()


def _parse_ts(value: Optional[str]) -> datetime:
    return datetime.fromisoformat(value) if value else utcnow()


class SQLiteSessionStore:
    """
    SQLite-backed persistent store for sessions and prompt records.

    Every session lookup made on behalf of a caller is filtered by the
    ownership column matching the caller's identity. That filter is the
    only access control sessions have.
    """

    def __init__(
        self,
        db_path: str = "data/enhancer.db",
        clock: Callable[[], datetime] = utcnow,
        timeout: float = 30.0
    ):
        """
        Initialize SQLite session store.

        Args:
            db_path: Path to SQLite database file
            clock: Returns the current UTC time
            timeout: Seconds to wait for the database write lock
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.clock = clock
        self.timeout = timeout
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        """Get database connection with row factory."""
        conn = sqlite3.connect(self.db_path, timeout=self.timeout, isolation_level=None)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        conn = self._get_connection()
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
        finally:
            conn.close()

    def _init_db(self):
        """Initialize database schema."""
        conn = self._get_connection()
        cursor = conn.cursor()

        # Sessions table; exactly one of anon_id / user_id owns the row
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS sessions (
                session_id TEXT PRIMARY KEY,
                anon_id TEXT,
                user_id TEXT,
                title TEXT,
                synopsis TEXT NOT NULL DEFAULT '{}',
                synopsis_version INTEGER NOT NULL DEFAULT 0,
                last_message_at TIMESTAMP NOT NULL,
                created_at TIMESTAMP NOT NULL,
                updated_at TIMESTAMP NOT NULL,
                CHECK ((anon_id IS NULL) <> (user_id IS NULL))
            )
        """)

        # Prompt records table
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS prompts (
                prompt_id TEXT PRIMARY KEY,
                session_id TEXT,
                anon_id TEXT,
                user_id TEXT,
                original TEXT NOT NULL,
                enhanced TEXT NOT NULL,
                use_history INTEGER NOT NULL DEFAULT 0,
                context_used TEXT NOT NULL DEFAULT '{}',
                model TEXT NOT NULL,
                latency_ms INTEGER NOT NULL DEFAULT 0,
                tokens_in INTEGER NOT NULL DEFAULT 0,
                tokens_out INTEGER NOT NULL DEFAULT 0,
                accepted INTEGER,
                created_at TIMESTAMP NOT NULL
            )
        """)

        # Indexes
        cursor.execute(
            "CREATE INDEX IF NOT EXISTS idx_sessions_user ON sessions(user_id, last_message_at)"
        )
        cursor.execute(
            "CREATE INDEX IF NOT EXISTS idx_sessions_anon ON sessions(anon_id, last_message_at)"
        )
        cursor.execute(
            "CREATE INDEX IF NOT EXISTS idx_prompts_session ON prompts(session_id, created_at)"
        )
        cursor.execute(
            "CREATE INDEX IF NOT EXISTS idx_prompts_user ON prompts(user_id, created_at)"
        )

        conn.close()
        logger.info(f"Database initialized at {self.db_path}")

    # ------------------------------------------------------------------
    # Row mapping
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_session(row: sqlite3.Row) -> Session:
        return Session(
            session_id=row["session_id"],
            owner=identity_from_columns(row["anon_id"], row["user_id"]),
            title=row["title"],
            synopsis=Synopsis(**json.loads(row["synopsis"] or "{}")),
            synopsis_version=row["synopsis_version"],
            last_message_at=_parse_ts(row["last_message_at"]),
            created_at=_parse_ts(row["created_at"]),
            updated_at=_parse_ts(row["updated_at"]),
        )

    @staticmethod
    def _row_to_prompt(row: sqlite3.Row) -> PromptRecord:
        accepted = row["accepted"]
        return PromptRecord(
            prompt_id=row["prompt_id"],
            owner=identity_from_columns(row["anon_id"], row["user_id"]),
            session_id=row["session_id"],
            original=row["original"],
            enhanced=row["enhanced"],
            use_history=bool(row["use_history"]),
            context_used=ContextUsed(**json.loads(row["context_used"] or "{}")),
            model=row["model"],
            latency_ms=row["latency_ms"],
            tokens=TokenUsage(input=row["tokens_in"], output=row["tokens_out"]),
            accepted=None if accepted is None else bool(accepted),
            created_at=_parse_ts(row["created_at"]),
        )

    @staticmethod
    def _fetch_owned(conn: sqlite3.Connection, session_id: str, owner: Identity) -> Optional[sqlite3.Row]:
        # owner_column is one of two fixed names, never caller-supplied text
        return conn.execute(
            f"SELECT * FROM sessions WHERE session_id = ? AND {owner.owner_column} = ?",
            (session_id, owner.id)
        ).fetchone()

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def create_session(self, owner: Identity, title: Optional[str] = None) -> Session:
        """
        Create a new session with an empty synopsis.

        Args:
            owner: Anonymous or user identity that owns the session
            title: Optional title

        Returns:
            Created Session object
        """
        now = self.clock()
        session = Session(
            session_id=uuid.uuid4().hex,
            owner=owner,
            title=title[:TITLE_MAX_CHARS] if title else None,
            last_message_at=now,
            created_at=now,
            updated_at=now,
        )
        anon_id, user_id = identity_columns(owner)

        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO sessions (session_id, anon_id, user_id, title, synopsis,
                                      synopsis_version, last_message_at, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, 0, ?, ?, ?)
                """,
                (session.session_id, anon_id, user_id, session.title,
                 session.synopsis.model_dump_json(), _ts(now), _ts(now), _ts(now))
            )

        logger.info(f"Session created: {session.session_id} ({owner.kind} {owner.id})")
        return session

    def find_owned(self, session_id: str, owner: Identity) -> Optional[Session]:
        """
        Get a session only if `owner` owns it.

        Args:
            session_id: Session ID
            owner: Identity presented by the caller

        Returns:
            Session or None if missing or owned by someone else
        """
        conn = self._get_connection()
        try:
            row = self._fetch_owned(conn, session_id, owner)
        finally:
            conn.close()
        return self._row_to_session(row) if row else None

    def get_session(self, session_id: str) -> Optional[Session]:
        """Unfiltered lookup for trusted internal callers such as the synopsis worker."""
        conn = self._get_connection()
        try:
            row = conn.execute(
                "SELECT * FROM sessions WHERE session_id = ?", (session_id,)
            ).fetchone()
        finally:
            conn.close()
        return self._row_to_session(row) if row else None

    def list_sessions(self, owner: Identity, page: int = 1, limit: int = 10) -> SessionPage:
        """
        List an identity's sessions, most recently active first.

        Args:
            owner: Identity whose sessions to list
            page: 1-based page number
            limit: Page size

        Returns:
            SessionPage with the sessions and the total count
        """
        page = max(page, 1)
        limit = max(limit, 1)
        column = owner.owner_column

        conn = self._get_connection()
        try:
            rows = conn.execute(
                f"""
                SELECT * FROM sessions
                WHERE {column} = ?
                ORDER BY last_message_at DESC
                LIMIT ? OFFSET ?
                """,
                (owner.id, limit, (page - 1) * limit)
            ).fetchall()
            total = conn.execute(
                f"SELECT COUNT(*) FROM sessions WHERE {column} = ?", (owner.id,)
            ).fetchone()[0]
        finally:
            conn.close()

        return SessionPage(
            sessions=[self._row_to_session(row) for row in rows],
            total=total,
            page=page,
            limit=limit,
        )

    def update_title(self, session_id: str, owner: Identity, title: str) -> Optional[Session]:
        """Rename an owned session. Returns None when not found or not owned."""
        now = _ts(self.clock())
        with self._transaction() as conn:
            cursor = conn.execute(
                f"""
                UPDATE sessions SET title = ?, last_message_at = ?, updated_at = ?
                WHERE session_id = ? AND {owner.owner_column} = ?
                """,
                (title[:TITLE_MAX_CHARS], now, now, session_id, owner.id)
            )
            if cursor.rowcount == 0:
                return None
            row = self._fetch_owned(conn, session_id, owner)

        logger.info(f"Session updated: {session_id}")
        return self._row_to_session(row)

    def delete_session(self, session_id: str, owner: Identity) -> Optional[int]:
        """
        Delete an owned session and every prompt record in it.

        Args:
            session_id: Session ID
            owner: Identity presented by the caller

        Returns:
            Number of deleted prompt records, or None if not found / not owned
        """
        with self._transaction() as conn:
            cursor = conn.execute(
                f"DELETE FROM sessions WHERE session_id = ? AND {owner.owner_column} = ?",
                (session_id, owner.id)
            )
            if cursor.rowcount == 0:
                return None
            deleted_prompts = conn.execute(
                "DELETE FROM prompts WHERE session_id = ?", (session_id,)
            ).rowcount

        logger.info(f"Session deleted: {session_id} ({deleted_prompts} prompts)")
        return deleted_prompts

    def merge_into_user(self, session_id: str, anon_id: str, user_id: str) -> Optional[Session]:
        """
        Transfer an anonymous session and all its prompt records to a user.

        The session row and the prompt rows are rewritten in one transaction;
        if either update fails both are rolled back.

        Args:
            session_id: Session ID
            anon_id: Anonymous id that currently owns the session
            user_id: Authenticated user id taking ownership

        Returns:
            The merged Session, or None if the session is not owned by anon_id
        """
        now = _ts(self.clock())
        try:
            with self._transaction() as conn:
                cursor = conn.execute(
                    """
                    UPDATE sessions SET user_id = ?, anon_id = NULL, updated_at = ?
                    WHERE session_id = ? AND anon_id = ?
                    """,
                    (user_id, now, session_id, anon_id)
                )
                if cursor.rowcount == 0:
                    return None
                moved = conn.execute(
                    "UPDATE prompts SET user_id = ?, anon_id = NULL WHERE session_id = ?",
                    (user_id, session_id)
                ).rowcount
                row = conn.execute(
                    "SELECT * FROM sessions WHERE session_id = ?", (session_id,)
                ).fetchone()
        except sqlite3.Error as e:
            logger.error(f"Session merge incomplete, rolled back: {session_id}: {e}")
            raise

        stragglers = self._count_foreign_prompts(session_id, user_id)
        if stragglers:
            logger.error(
                f"Session {session_id} merged but {stragglers} prompts are not owned by {user_id}"
            )

        logger.info(f"Session merged with user: {session_id} -> {user_id} ({moved} prompts)")
        return self._row_to_session(row)

    def _count_foreign_prompts(self, session_id: str, user_id: str) -> int:
        """Prompts in the session whose owner differs from user_id."""
        conn = self._get_connection()
        try:
            return conn.execute(
                """
                SELECT COUNT(*) FROM prompts
                WHERE session_id = ? AND (user_id IS NULL OR user_id <> ?)
                """,
                (session_id, user_id)
            ).fetchone()[0]
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Synopsis
    # ------------------------------------------------------------------

    def _rewrite_synopsis(self, session_id: str, mutate: Callable[[Synopsis], Optional[Synopsis]]) -> Optional[Session]:
        """Read-modify-write the synopsis; `mutate` returns None for no change."""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM sessions WHERE session_id = ?", (session_id,)
            ).fetchone()
            if not row:
                return None
            session = self._row_to_session(row)
            synopsis = mutate(session.synopsis)
            if synopsis is None:
                return session

            now = self.clock()
            conn.execute(
                """
                UPDATE sessions
                SET synopsis = ?, synopsis_version = synopsis_version + 1,
                    last_message_at = ?, updated_at = ?
                WHERE session_id = ?
                """,
                (synopsis.model_dump_json(), _ts(now), _ts(now), session_id)
            )
            return session.model_copy(update={
                "synopsis": synopsis,
                "synopsis_version": session.synopsis_version + 1,
                "last_message_at": now,
                "updated_at": now,
            })

    def update_synopsis(self, session_id: str, update: SynopsisUpdate) -> Optional[Session]:
        """
        Merge a partial synopsis into the session and bump its version.

        Args:
            session_id: Session ID
            update: Fields to overwrite; empty fields keep their old value

        Returns:
            Updated Session or None if the session no longer exists
        """
        return self._rewrite_synopsis(session_id, lambda current: current.merged(update))

    def add_todo(self, session_id: str, todo: str) -> Optional[Session]:
        """Append a todo unless it is already listed."""
        def mutate(current: Synopsis) -> Optional[Synopsis]:
            if todo in current.todos:
                return None
            return current.model_copy(update={"todos": current.todos + [todo]})

        return self._rewrite_synopsis(session_id, mutate)

    def remove_todo(self, session_id: str, todo: str) -> Optional[Session]:
        """Remove a todo if present."""
        def mutate(current: Synopsis) -> Optional[Synopsis]:
            if todo not in current.todos:
                return None
            return current.model_copy(update={"todos": [t for t in current.todos if t != todo]})

        return self._rewrite_synopsis(session_id, mutate)

    # ------------------------------------------------------------------
    # Prompt records
    # ------------------------------------------------------------------

    def create_prompt(
        self,
        owner: Identity,
        original: str,
        enhanced: str,
        model: str,
        session_id: Optional[str] = None,
        use_history: bool = False,
        context_used: Optional[ContextUsed] = None,
        latency_ms: int = 0,
        tokens: Optional[TokenUsage] = None
    ) -> PromptRecord:
        """
        Persist a prompt record.

        Args:
            owner: Identity the prompt belongs to
            original: Prompt as typed by the user
            enhanced: Final enhanced prompt
            model: Model identifier that produced it
            session_id: Optional session the prompt belongs to
            use_history: Whether history-based context was used
            context_used: How much context was used
            latency_ms: End-to-end latency
            tokens: Token counts reported by the model

        Returns:
            Created PromptRecord
        """
        record = PromptRecord(
            prompt_id=uuid.uuid4().hex,
            owner=owner,
            session_id=session_id,
            original=original[:PROMPT_MAX_CHARS],
            enhanced=enhanced[:PROMPT_MAX_CHARS],
            use_history=use_history,
            context_used=context_used or ContextUsed(),
            model=model,
            latency_ms=latency_ms,
            tokens=tokens or TokenUsage(),
            created_at=self.clock(),
        )
        anon_id, user_id = identity_columns(owner)

        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO prompts (prompt_id, session_id, anon_id, user_id, original, enhanced,
                                     use_history, context_used, model, latency_ms,
                                     tokens_in, tokens_out, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (record.prompt_id, session_id, anon_id, user_id, record.original, record.enhanced,
                 int(use_history), record.context_used.model_dump_json(), model, latency_ms,
                 record.tokens.input, record.tokens.output, _ts(record.created_at))
            )
            if session_id:
                conn.execute(
                    "UPDATE sessions SET last_message_at = ? WHERE session_id = ?",
                    (_ts(record.created_at), session_id)
                )

        return record

    def get_session_prompts(self, session_id: str, limit: int = 20) -> List[PromptRecord]:
        """Most recent prompt records of a session, newest first."""
        conn = self._get_connection()
        try:
            rows = conn.execute(
                """
                SELECT * FROM prompts WHERE session_id = ?
                ORDER BY created_at DESC, rowid DESC LIMIT ?
                """,
                (session_id, limit)
            ).fetchall()
        finally:
            conn.close()
        return [self._row_to_prompt(row) for row in rows]

    def get_owner_prompts(self, owner: Identity, limit: int = 50) -> List[PromptRecord]:
        """Most recent prompt records owned by an identity, newest first."""
        conn = self._get_connection()
        try:
            rows = conn.execute(
                f"""
                SELECT * FROM prompts WHERE {owner.owner_column} = ?
                ORDER BY created_at DESC, rowid DESC LIMIT ?
                """,
                (owner.id, limit)
            ).fetchall()
        finally:
            conn.close()
        return [self._row_to_prompt(row) for row in rows]

    def mark_feedback(self, prompt_id: str, owner: Identity, accepted: bool) -> bool:
        """Record accept/reject feedback on an owned prompt. Returns False if not found."""
        with self._transaction() as conn:
            cursor = conn.execute(
                f"UPDATE prompts SET accepted = ? WHERE prompt_id = ? AND {owner.owner_column} = ?",
                (int(accepted), prompt_id, owner.id)
            )
            return cursor.rowcount > 0

    def acceptance_rate(self, user_id: Optional[str] = None) -> dict:
        """
        Share of prompts with feedback that were accepted.

        Args:
            user_id: Restrict to one user's prompts

        Returns:
            {"total": int, "accepted": int, "rate": percent}
        """
        query = "SELECT COUNT(*), COALESCE(SUM(accepted), 0) FROM prompts WHERE accepted IS NOT NULL"
        params: tuple = ()
        if user_id:
            query += " AND user_id = ?"
            params = (user_id,)

        conn = self._get_connection()
        try:
            total, accepted = conn.execute(query, params).fetchone()
        finally:
            conn.close()

        return {
            "total": total,
            "accepted": accepted,
            "rate": (accepted / total) * 100 if total else 0,
        }
