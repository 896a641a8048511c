"""Synopsis refresh: ask the LLM for an updated session summary and parse it."""

import re
import logging
from typing import List

from llm.base_client import BaseLLMClient, Message
from schemas.session import ChatTurn, Synopsis, SynopsisUpdate, SYNOPSIS_SCALAR_FIELDS

logger = logging.getLogger(__name__)

_BULLET = re.compile(r"^\s*(?:[-*•]|\d+[.)])?\s*\**([A-Za-z][A-Za-z /_-]*?)\**\s*:\s*\**\s*(.+?)\s*$")

_KEY_ALIASES = {
    "todo": "todos",
    "todos": "todos",
    "to-do": "todos",
    "to-dos": "todos",
    "to do": "todos",
    "constraint": "constraints",
}


def parse_synopsis_response(text: str) -> SynopsisUpdate:
    """
    Extract synopsis fields from free-form bullets like "- Goal: ...".

    Unrecognised lines are skipped, so malformed output yields an empty or
    partial update rather than an error. A combined key such as
    "Tone/Style" fills both fields.

    Args:
        text: Raw model output

    Returns:
        SynopsisUpdate with whatever fields could be read
    """
    fields = {}
    todos = []

    for line in (text or "").splitlines():
        match = _BULLET.match(line)
        if not match:
            continue
        raw_key, value = match.group(1), match.group(2).strip().strip("*").strip()
        if not value:
            continue

        for part in re.split(r"\s*/\s*", raw_key.strip().lower()):
            key = _KEY_ALIASES.get(part, part)
            if key in SYNOPSIS_SCALAR_FIELDS:
                fields[key] = value
            elif key == "todos":
                todos.extend(t.strip() for t in value.split(";") if t.strip())

    if todos:
        fields["todos"] = todos
    return SynopsisUpdate(**fields)


class SynopsisSummarizer:
    """Produces synopsis updates from the previous synopsis and new turns."""

    SYSTEM_PROMPT = (
        "You are a helpful assistant that updates conversation synopses based on recent messages."
    )

    def __init__(self, llm_client: BaseLLMClient):
        self.llm_client = llm_client

    def summarize(self, current: Synopsis, delta_turns: List[ChatTurn]) -> SynopsisUpdate:
        """
        Ask the LLM for an updated synopsis.

        Service failures propagate so the job can be retried; parse
        failures degrade to an empty update.
        """
        synopsis_text = "\n".join(
            f"{name}: {getattr(current, name)}"
            for name in SYNOPSIS_SCALAR_FIELDS if getattr(current, name)
        )
        if current.todos:
            synopsis_text += ("\n" if synopsis_text else "") + f"todos: {'; '.join(current.todos)}"

        recent_text = "\n".join(f"{turn.role}: {turn.content}" for turn in delta_turns)

        prompt = (
            f"Previous synopsis:\n{synopsis_text or 'None'}\n\n"
            f"Recent conversation:\n{recent_text}\n\n"
            "Return 3-6 bullets formatted as '- Key: value' using the keys Goal, Tone, "
            "Constraints, Audience, Style and Todos (separate todos with ';'); "
            "<=120 chars each; update existing fields conservatively."
        )

        response = self.llm_client.chat(
            messages=[
                Message(role="system", content=self.SYSTEM_PROMPT),
                Message(role="user", content=prompt),
            ],
            temperature=0.1,
            max_tokens=500,
        )

        update = parse_synopsis_response(response.content)
        if update.is_empty():
            logger.warning("Synopsis response could not be parsed; keeping previous synopsis")
        return update
