"""LLM subsystem -- request data model, model catalog and token counting."""

from agentctx.llm.models import ModelCatalog, ModelInfo, TokenizerKind
from agentctx.llm.token_counter import TokenCounter, TokenOverheads
from agentctx.llm.transport import Transport, TransportError
from agentctx.llm.types import (
    ImageBlock,
    LLMRequest,
    Message,
    Role,
    StreamChunk,
    TextBlock,
    ThinkingBlock,
    ToolDefinition,
    ToolResultBlock,
    ToolUseBlock,
)

__all__ = [
    "ImageBlock",
    "LLMRequest",
    "Message",
    "ModelCatalog",
    "ModelInfo",
    "Role",
    "StreamChunk",
    "TextBlock",
    "ThinkingBlock",
    "TokenCounter",
    "TokenOverheads",
    "TokenizerKind",
    "ToolDefinition",
    "ToolResultBlock",
    "ToolUseBlock",
    "Transport",
    "TransportError",
]
