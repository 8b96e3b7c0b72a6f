"""Core types for the LLM request data model."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union


class Role:
    USER = "user"
    ASSISTANT = "assistant"


# ---------------------------------------------------------------------------
# Content blocks
# ---------------------------------------------------------------------------


@dataclass
class TextBlock:
    text: str


@dataclass
class ThinkingBlock:
    """Extended-thinking text emitted by the assistant."""

    text: str


@dataclass
class ImageBlock:
    """
    An image, either inline (*source_type* ``"base64"``) or by reference
    (*source_type* ``"url"``).
    """

    data: str
    media_type: str = "image/png"
    source_type: str = "base64"


@dataclass
class ToolUseBlock:
    """An assistant's request to invoke a tool."""

    id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)


@dataclass
class ToolResultBlock:
    """
    The result of a tool invocation, sent back on a user message.

    *content* is plain text, a JSON-compatible structure, or an
    :class:`ImageBlock`.
    """

    tool_use_id: str
    content: str | dict | list | ImageBlock = ""
    is_error: bool = False


ContentBlock = Union[TextBlock, ThinkingBlock, ImageBlock, ToolUseBlock, ToolResultBlock]


def block_to_dict(block: ContentBlock) -> dict[str, Any]:
    """Serialize a content block to a JSON-compatible dict."""
    if isinstance(block, TextBlock):
        return {"type": "text", "text": block.text}
    if isinstance(block, ThinkingBlock):
        return {"type": "thinking", "text": block.text}
    if isinstance(block, ImageBlock):
        return {
            "type": "image",
            "data": block.data,
            "media_type": block.media_type,
            "source_type": block.source_type,
        }
    if isinstance(block, ToolUseBlock):
        return {"type": "tool_use", "id": block.id, "name": block.name, "input": block.input}
    if isinstance(block, ToolResultBlock):
        content: Any = block.content
        if isinstance(content, ImageBlock):
            content = block_to_dict(content)
            kind = "image"
        elif isinstance(content, str):
            kind = "text"
        else:
            kind = "json"
        return {
            "type": "tool_result",
            "tool_use_id": block.tool_use_id,
            "content_kind": kind,
            "content": content,
            "is_error": block.is_error,
        }
    raise TypeError(f"Unknown content block: {type(block).__name__}")


def block_from_dict(data: dict[str, Any]) -> ContentBlock:
    """Reconstruct a content block from a dict produced by ``block_to_dict``."""
    kind = data.get("type")
    if kind == "text":
        return TextBlock(text=data["text"])
    if kind == "thinking":
        return ThinkingBlock(text=data["text"])
    if kind == "image":
        return ImageBlock(
            data=data["data"],
            media_type=data.get("media_type", "image/png"),
            source_type=data.get("source_type", "base64"),
        )
    if kind == "tool_use":
        return ToolUseBlock(id=data["id"], name=data["name"], input=data.get("input", {}))
    if kind == "tool_result":
        content = data.get("content", "")
        if data.get("content_kind") == "image":
            content = block_from_dict(content)
        return ToolResultBlock(
            tool_use_id=data["tool_use_id"],
            content=content,
            is_error=data.get("is_error", False),
        )
    raise ValueError(f"Unknown content block type: {kind!r}")


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


@dataclass
class Message:
    """A single message in a conversation."""

    role: str  # "user" or "assistant"
    content: list[ContentBlock] = field(default_factory=list)

    @classmethod
    def user(cls, text: str) -> Message:
        return cls(role=Role.USER, content=[TextBlock(text)])

    @classmethod
    def assistant(cls, text: str) -> Message:
        return cls(role=Role.ASSISTANT, content=[TextBlock(text)])

    def tool_use_ids(self) -> list[str]:
        return [b.id for b in self.content if isinstance(b, ToolUseBlock)]

    def tool_result_ids(self) -> list[str]:
        return [b.tool_use_id for b in self.content if isinstance(b, ToolResultBlock)]

    def text(self) -> str:
        """Concatenated text of all plain-text blocks."""
        return "".join(b.text for b in self.content if isinstance(b, TextBlock))

    def to_dict(self) -> dict[str, Any]:
        return {"role": self.role, "content": [block_to_dict(b) for b in self.content]}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Message:
        return cls(
            role=data["role"],
            content=[block_from_dict(b) for b in data.get("content", [])],
        )


@dataclass
class ToolDefinition:
    """A tool declaration sent alongside the request."""

    name: str
    description: str
    input_schema: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ToolDefinition:
        return cls(
            name=data["name"],
            description=data.get("description", ""),
            input_schema=data.get("input_schema", {}),
        )


@dataclass
class LLMRequest:
    """
    Provider-agnostic request handed to a transport.

    *system* is positioned by the transport as its provider expects.
    """

    model: str
    system: str | None = None
    messages: list[Message] = field(default_factory=list)
    tools: list[ToolDefinition] = field(default_factory=list)
    max_tokens: int | None = 4096
    temperature: float | None = None
    stream: bool = True
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass
class StreamChunk:
    """
    A single chunk yielded by a transport while streaming a response.

    *delta* carries new text content, *thinking* new thinking text.
    *tool_uses* carries fully-assembled tool-use requests.
    *done* is ``True`` on the final chunk.
    """

    delta: str = ""
    thinking: str = ""
    tool_uses: list[ToolUseBlock] | None = None
    stop_reason: str | None = None
    done: bool = False
