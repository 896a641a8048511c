"""Agents for the Prompt Enhancer."""

from .classifier import InputClassifier
from .verifier import PromptVerifier
from .enhancer import PromptEnhancer
from .synopsis import SynopsisSummarizer, parse_synopsis_response

__all__ = [
    "InputClassifier",
    "PromptVerifier",
    "PromptEnhancer",
    "SynopsisSummarizer",
    "parse_synopsis_response",
]
