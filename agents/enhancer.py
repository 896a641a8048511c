"""LLM-backed prompt enhancement and repair."""

import logging
from typing import List, Optional

from errors import UpstreamEnhancementFailure
from llm.base_client import BaseLLMClient, Message
from schemas.enhance import EnhancementResult
from schemas.session import TokenUsage

logger = logging.getLogger(__name__)


class PromptEnhancer:
    """
    Rewrites user prompts through the enhancement service.

    The enhancement call is the primary action of a request, so its
    failures propagate. The repair pass is best-effort.
    """

    SYSTEM_PROMPT = (
        "You rewrite prompts; preserve meaning; add only implied constraints; "
        "return ONLY the rewritten prompt."
    )

    REPAIR_SYSTEM_PROMPT = (
        "You are a prompt enhancement assistant. Fix the given prompt to include "
        "task, object, and output constraints."
    )

    def __init__(self, llm_client: BaseLLMClient):
        """
        Initialize enhancer.

        Args:
            llm_client: Client for the enhancement service
        """
        self.llm_client = llm_client

    def enhance(self, prompt: str, context: Optional[str] = None) -> EnhancementResult:
        """
        Enhance a prompt, optionally grounded in session context.

        Args:
            prompt: Original user prompt
            context: Bounded context from the context builder

        Returns:
            EnhancementResult with the rewritten text, token counts and model

        Raises:
            UpstreamEnhancementFailure: if the service call fails
        """
        if context:
            user_content = f"Context: {context}\n\nCurrent input: {prompt}"
        else:
            user_content = prompt

        messages = [
            Message(role="system", content=self.SYSTEM_PROMPT),
            Message(role="user", content=user_content),
        ]

        try:
            response = self.llm_client.chat(messages=messages, temperature=0.1, max_tokens=1000)
        except Exception as e:
            logger.error(f"Enhancement call failed: {e}")
            raise UpstreamEnhancementFailure("Failed to enhance prompt") from e

        model = self.llm_client.get_model_name()
        logger.info(
            f"Prompt enhanced with {model} "
            f"(tokens in={response.input_tokens}, out={response.output_tokens}, context={bool(context)})"
        )

        return EnhancementResult(
            enhanced_text=response.content or prompt,
            tokens=TokenUsage(input=response.input_tokens, output=response.output_tokens),
            model=model,
        )

    def repair(self, enhanced: str, original: str, missing: List[str]) -> str:
        """
        Ask the service to add missing elements to an enhanced prompt.

        Args:
            enhanced: Enhanced prompt that failed verification
            original: Original user prompt
            missing: Names of the missing elements

        Returns:
            Repaired prompt, or `enhanced` unchanged if the repair fails
        """
        wanted = ", ".join(missing) if missing else "task, object, and output constraints"
        messages = [
            Message(role="system", content=self.REPAIR_SYSTEM_PROMPT),
            Message(
                role="user",
                content=(
                    f"Original: {original}\n"
                    f"Enhanced (needs fixing): {enhanced}\n\n"
                    f"Fix the enhanced prompt so it includes: {wanted}. "
                    "Return ONLY the fixed prompt."
                ),
            ),
        ]

        try:
            response = self.llm_client.chat(messages=messages, temperature=0.1, max_tokens=500)
        except Exception as e:
            logger.error(f"Prompt repair failed: {e}")
            return enhanced

        return response.content or enhanced
