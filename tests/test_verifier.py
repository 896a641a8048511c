"""Tests for the rule-based verifier."""

from agents.verifier import PromptVerifier


class TestPromptVerifier:
    """Test element detection."""

    def setup_method(self):
        """Set up test fixtures."""
        self.verifier = PromptVerifier()

    def test_complete_prompt(self):
        result = self.verifier.verify(
            "Write a 300-word blog post about remote work for a general audience in a friendly tone."
        )

        assert result.is_valid is True
        assert result.missing == []
        assert result.score == 1.0

    def test_missing_output_constraints(self):
        result = self.verifier.verify("Write a blog post about remote work.")

        assert result.is_valid is False
        assert result.missing == ["output"]
        assert result.score == 2 / 3

    def test_nothing_found(self):
        result = self.verifier.verify("hello")

        assert result.missing == ["task", "object", "output"]
        assert result.score == 0.0
