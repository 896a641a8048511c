"""Rule-based verifier for enhanced prompts."""

import re
from schemas.enhance import VerificationResult


class PromptVerifier:
    """Checks that an enhanced prompt states a task, an object and output constraints."""

    REQUIRED_ELEMENTS = ["task", "object", "output"]

    def __init__(self):
        """Initialize verifier with element patterns."""
        self.element_patterns = {
            "task": [
                r"\b(write|create|generate|produce|develop|build|make|compose|draft|formulate)",
                r"\b(analyze|examine|review|evaluate|assess|study|investigate)",
                r"\b(explain|describe|summarize|outline|detail|elaborate)",
            ],
            "object": [
                r"\b(about|regarding|concerning|on|for|of)\b",
                r"\b(document|text|content|material|information|data)",
                r"\b(topic|subject|theme|issue|matter)",
            ],
            "output": [
                r"\b(format|style|tone|voice|approach|method)",
                r"\b(length|size|extent|scope|detail|level)",
                r"\b(audience|reader|viewer|user|target)",
                r"\b(purpose|goal|objective|aim|intention)",
            ],
        }

    def verify(self, prompt: str) -> VerificationResult:
        """
        Verify an enhanced prompt.

        Args:
            prompt: Enhanced prompt text

        Returns:
            VerificationResult listing the missing elements
        """
        prompt_lower = prompt.lower()
        missing = []

        for element in self.REQUIRED_ELEMENTS:
            patterns = self.element_patterns[element]
            if not any(re.search(pattern, prompt_lower) for pattern in patterns):
                missing.append(element)

        found = len(self.REQUIRED_ELEMENTS) - len(missing)
        return VerificationResult(
            is_valid=not missing,
            missing=missing,
            score=found / len(self.REQUIRED_ELEMENTS),
        )
