"""Bounded context assembly from a session synopsis and recent turns."""

import logging
from typing import List, Optional

from schemas.enhance import ContextResult
from schemas.session import ChatTurn, ContextUsed, Synopsis

logger = logging.getLogger(__name__)


class ContextBuilder:
    """Builds the context string fed to the enhancement call."""

    # Configuration
    MAX_RECENT_TURNS = 6  # ~3 user/assistant exchanges
    MAX_CONTEXT_CHARS = 2000
    TRUNCATION_MARKER = "..."

    SYNOPSIS_LABELS = [
        ("goal", "Goal"),
        ("tone", "Tone"),
        ("constraints", "Constraints"),
        ("audience", "Audience"),
        ("style", "Style"),
    ]

    def __init__(
        self,
        max_recent_turns: Optional[int] = None,
        max_context_chars: Optional[int] = None
    ):
        self.max_recent_turns = max_recent_turns or self.MAX_RECENT_TURNS
        self.max_context_chars = max_context_chars or self.MAX_CONTEXT_CHARS

    def build(self, synopsis: Optional[Synopsis], recent_turns: List[ChatTurn]) -> ContextResult:
        """
        Render synopsis and trailing turns into a single bounded string.

        Truncation is a hard cut on the assembled text and may end mid-line.

        Args:
            synopsis: Session synopsis (may be empty)
            recent_turns: Client-side conversation, oldest first

        Returns:
            ContextResult with the context and how much of each source was used
        """
        parts = []
        synopsis_chars = 0

        if synopsis:
            lines = []
            for field, label in self.SYNOPSIS_LABELS:
                value = getattr(synopsis, field)
                if value:
                    lines.append(f"{label}: {value}")
                    synopsis_chars += len(value)
            if synopsis.todos:
                todos = ", ".join(synopsis.todos)
                lines.append(f"TODOs: {todos}")
                synopsis_chars += len(todos)

            if lines:
                parts.append("Session Context:\n" + "\n".join(lines))

        turns = recent_turns[-self.max_recent_turns:] if recent_turns else []
        if turns:
            conversation = "\n".join(f"{turn.role}: {turn.content}" for turn in turns)
            parts.append(f"Recent conversation:\n{conversation}")

        context = "\n\n".join(parts)
        if len(context) > self.max_context_chars:
            logger.debug(f"Context truncated from {len(context)} to {self.max_context_chars} chars")
            context = context[:self.max_context_chars] + self.TRUNCATION_MARKER

        return ContextResult(
            context=context,
            context_used=ContextUsed(last_turns=len(turns), synopsis_chars=synopsis_chars),
        )
