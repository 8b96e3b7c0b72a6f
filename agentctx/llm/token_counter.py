"""
Token counting with per-model tokenizer families.

Models whose family has a BPE tokenizer are counted with ``tiktoken``'s
``cl100k_base`` encoding.  Claude, GPT-like and Gemini models all share that
encoding as an approximation.  Unknown models (and any model when the
encoding cannot be loaded) use a character heuristic: ``ceil(chars / 4)``.

Counting never raises.
"""

from __future__ import annotations

import json
import logging
import math
from dataclasses import astuple, dataclass
from typing import Any

import tiktoken

from agentctx.llm.models import ModelCatalog, TokenizerKind
from agentctx.llm.types import (
    ImageBlock,
    Message,
    TextBlock,
    ThinkingBlock,
    ToolDefinition,
    ToolResultBlock,
    ToolUseBlock,
)

logger = logging.getLogger(__name__)


@dataclass
class TokenOverheads:
    """Fixed costs added on top of tokenizer counts."""

    per_message: int = 4
    message_boundary: int = 3
    tool_block: int = 10
    image: int = 1000
    per_tool: int = 20
    chars_per_token: int = 4


def _to_json(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"), sort_keys=True)


class TokenCounter:
    """
    Estimate token counts for text, messages and tool declarations.

    Parameters
    ----------
    catalog:
        Model catalog used to resolve each model's tokenizer family.
    overheads:
        Structural overhead constants.
    encoding_name:
        ``tiktoken`` encoding shared by all BPE tokenizer families.
    """

    def __init__(
        self,
        catalog: ModelCatalog | None = None,
        overheads: TokenOverheads | None = None,
        encoding_name: str = "cl100k_base",
    ) -> None:
        self.catalog = catalog or ModelCatalog()
        self.overheads = overheads or TokenOverheads()
        self.encoding_name = encoding_name
        self._encoding: Any = None
        self._encoding_failed = False

    @property
    def fingerprint(self) -> tuple:
        """Encoding and overheads; counts from equal fingerprints agree."""
        return (self.encoding_name, astuple(self.overheads))

    # ------------------------------------------------------------------
    # Tokenizers
    # ------------------------------------------------------------------

    def _bpe(self) -> Any:
        if self._encoding is None and not self._encoding_failed:
            try:
                self._encoding = tiktoken.get_encoding(self.encoding_name)
            except Exception as exc:
                # Encoding files unavailable (offline, unknown name) -- degrade.
                logger.warning(
                    "Could not load tiktoken encoding %r, using heuristic counts: %s",
                    self.encoding_name,
                    exc,
                )
                self._encoding_failed = True
        return self._encoding

    def _heuristic(self, text: str) -> int:
        return math.ceil(len(text) / self.overheads.chars_per_token)

    def _count(self, tokenizer: TokenizerKind, text: str) -> int:
        if not text:
            return 0
        if tokenizer is TokenizerKind.HEURISTIC:
            return self._heuristic(text)
        encoding = self._bpe()
        if encoding is None:
            return self._heuristic(text)
        return len(encoding.encode_ordinary(text))

    def _block_tokens(self, tokenizer: TokenizerKind, block: Any) -> int:
        oh = self.overheads
        if isinstance(block, (TextBlock, ThinkingBlock)):
            return self._count(tokenizer, block.text)
        if isinstance(block, ToolUseBlock):
            return (
                self._count(tokenizer, block.name)
                + self._count(tokenizer, _to_json(block.input))
                + oh.tool_block
            )
        if isinstance(block, ToolResultBlock):
            content = block.content
            if isinstance(content, ImageBlock):
                content_tokens = oh.image
            elif isinstance(content, str):
                content_tokens = self._count(tokenizer, content)
            else:
                content_tokens = self._count(tokenizer, _to_json(content))
            return content_tokens + oh.tool_block
        if isinstance(block, ImageBlock):
            return oh.image
        raise TypeError(f"Unknown content block: {type(block).__name__}")

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def count_text(self, model: str, text: str) -> int:
        """Return the estimated token count of *text* for *model*."""
        info = self.catalog.info_for(model)
        return self._count(info.tokenizer, text)

    def count_messages(self, model: str, messages: list[Message]) -> int:
        """
        Estimate the token count of a message batch.

        Each message adds a role/formatting overhead; the batch as a whole
        adds one message-boundary overhead, however many messages it holds.
        """
        info = self.catalog.info_for(model)
        total = 0
        for msg in messages:
            total += self.overheads.per_message
            for block in msg.content:
                total += self._block_tokens(info.tokenizer, block)
        total += self.overheads.message_boundary
        return total

    def count_tools(self, model: str, tools: list[ToolDefinition]) -> int:
        """Estimate the prompt cost of the declared tools."""
        info = self.catalog.info_for(model)
        total = 0
        for tool in tools:
            total += self._count(info.tokenizer, tool.name)
            total += self._count(info.tokenizer, tool.description)
            total += self._count(info.tokenizer, _to_json(tool.input_schema))
            total += self.overheads.per_tool
        return total
