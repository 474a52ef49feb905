"""
Rewrites casual user input into a clearer prompt with a small, fast model.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from openera_mcp.config import EnhancementSettings
from openera_mcp.llm.provider import ModelProvider
from openera_mcp.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_ENHANCEMENT_PROMPT = """You are a prompt enhancement specialist. Your job is to take casual, natural language input and transform it into clear, effective prompts that will get better results from AI systems.

Guidelines:
- Make the intent crystal clear
- Add helpful context and structure
- Specify the desired output format when relevant
- Include any necessary constraints or requirements
- Keep the enhanced prompt concise but comprehensive
- Preserve the original meaning while making it more actionable

Transform this user input into an enhanced prompt:"""


@dataclass
class EnhancementResult:
    original_input: str
    enhanced_prompt: str
    model: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "originalInput": self.original_input,
            "enhancedPrompt": self.enhanced_prompt,
            "model": self.model,
        }


class PromptEnhancer:
    """Runs the enhancement prompt against the configured model provider."""

    def __init__(self, provider: ModelProvider, settings: Optional[EnhancementSettings] = None):
        self.provider = provider
        self.settings = settings or EnhancementSettings()

    @property
    def model_label(self) -> str:
        # Reported without the routing vendor prefix, e.g. "gpt-4.1-nano".
        return self.settings.model.split("/")[-1]

    async def enhance_prompt(
        self, user_input: str, system_prompt: Optional[str] = None
    ) -> EnhancementResult:
        """
        Enhance ``user_input``.

        Args:
            user_input: The text to rewrite.
            system_prompt: Replaces the default enhancement instruction.

        Raises:
            ValueError: If ``user_input`` is blank.
            ModelInvocationFailed: If the model call fails.
        """
        if not user_input or not user_input.strip():
            raise ValueError("No input provided")

        logger.info(f"Enhancing prompt with {self.model_label}...")
        text = await self.provider.generate(
            user_input,
            model=self.settings.model,
            system=system_prompt or self.settings.system_prompt or DEFAULT_ENHANCEMENT_PROMPT,
            temperature=self.settings.temperature,
            max_tokens=self.settings.max_tokens,
            api_key=self.settings.api_key,
        )
        logger.info("Prompt enhanced successfully")

        return EnhancementResult(
            original_input=user_input,
            enhanced_prompt=text,
            model=self.model_label,
        )
