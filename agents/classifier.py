"""Heuristic follow-up classifier for incoming prompts."""

import re
from schemas.enhance import Classification


class InputClassifier:
    """Decides whether a prompt continues a prior exchange or stands alone."""

    def __init__(self):
        """Initialize classifier with marker categories, checked in order."""
        self.categories = {
            "continuation": re.compile(
                r"^(continue|keep going|more|next|and then|also|additionally|furthermore|moreover)\b",
                re.IGNORECASE,
            ),
            "clarifying": re.compile(
                r"^(what about|how about|can you|could you|would you|please)\b",
                re.IGNORECASE,
            ),
            "contrastive": re.compile(
                r"^(but|however|though|although|except|unless)\b",
                re.IGNORECASE,
            ),
            "acknowledgement": re.compile(
                r"^(yes|no|ok|okay|sure|absolutely|definitely|thanks|thank you|thx)\b",
                re.IGNORECASE,
            ),
            "question": re.compile(r"\?$"),
        }

    def classify(self, prompt: str) -> Classification:
        """
        Classify a prompt as follow-up or standalone.

        Args:
            prompt: Raw prompt text

        Returns:
            Classification; confidence is the share of categories matched
        """
        text = prompt.strip()
        matched = self.matched_categories(text)
        return Classification(
            is_follow_up=len(matched) >= 1,
            confidence=min(len(matched) / len(self.categories), 1.0),
        )

    def matched_categories(self, text: str) -> list[str]:
        """Names of the categories whose marker matches the text."""
        return [name for name, pattern in self.categories.items() if pattern.search(text)]
