"""Tests for the follow-up classifier."""

from agents.classifier import InputClassifier


class TestInputClassifier:
    """Test follow-up detection."""

    def setup_method(self):
        """Set up test fixtures."""
        self.classifier = InputClassifier()

    def test_question_with_clarifying_opener(self):
        result = self.classifier.classify("What about a shorter version?")

        assert result.is_follow_up is True
        assert result.confidence == 0.4

    def test_standalone_request(self):
        result = self.classifier.classify("Write a haiku about autumn")

        assert result.is_follow_up is False
        assert result.confidence == 0.0

    def test_continuation(self):
        assert self.classifier.classify("continue").is_follow_up is True
        assert self.classifier.classify("Also add a title").is_follow_up is True

    def test_contrastive(self):
        assert self.classifier.classify("But make it formal").is_follow_up is True

    def test_acknowledgement(self):
        assert self.classifier.classify("thanks, that works").is_follow_up is True
        assert self.classifier.classify("OK").is_follow_up is True

    def test_marker_must_open_prompt(self):
        """Test that markers in the middle of the text do not count."""
        assert self.classifier.classify("Write more poems about the sea").is_follow_up is False

    def test_whole_words_only(self):
        assert self.classifier.classify("Nextcloud setup guide").is_follow_up is False
        assert self.classifier.classify("Butter chicken recipe").is_follow_up is False

    def test_surrounding_whitespace_ignored(self):
        result = self.classifier.classify("   is this right?   ")
        assert result.is_follow_up is True
        assert result.confidence == 0.2

    def test_matched_categories(self):
        matched = self.classifier.matched_categories("Can you shorten it?")
        assert matched == ["clarifying", "question"]
