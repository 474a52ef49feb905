"""
Per-turn orchestration: context, tools and instructions for the model.
"""

from .instructions import build_system_prompt
from .assembler import (
    ChatMessage,
    TurnContextAssembler,
    TurnPayload,
    TurnRequest,
    attach_images,
)

__all__ = [
    "build_system_prompt",
    "ChatMessage",
    "TurnContextAssembler",
    "TurnPayload",
    "TurnRequest",
    "attach_images",
]
