"""
Model invocation for the Openera MCP service.
"""

from .provider import (
    CompletionStep,
    FinishResult,
    MockProvider,
    ModelProvider,
    OpenRouterProvider,
    StreamEvent,
    ToolCall,
    create_provider,
    message_text,
)
from .enhance import DEFAULT_ENHANCEMENT_PROMPT, EnhancementResult, PromptEnhancer

__all__ = [
    "CompletionStep",
    "FinishResult",
    "MockProvider",
    "ModelProvider",
    "OpenRouterProvider",
    "StreamEvent",
    "ToolCall",
    "create_provider",
    "message_text",
    "DEFAULT_ENHANCEMENT_PROMPT",
    "EnhancementResult",
    "PromptEnhancer",
]
