"""
Context segments.

A segment is a typed, ordered group of messages.  Segments are the unit the
budget packer keeps or drops: a segment is sent whole or not at all.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from agentctx.llm.types import Message


class SegmentKind(Enum):
    """Segment kinds, highest intended retention priority first."""

    SYSTEM = "system"
    INSTRUCTIONS = "instructions"
    REPO_CONTEXT = "repo_context"
    CHAT_HISTORY = "chat_history"
    TOOL_EXCHANGE = "tool_exchange"
    SUMMARY = "summary"


@dataclass
class ContextSegment:
    """
    A group of messages with a priority kind and a position in its thread.

    Attributes
    ----------
    kind:
        Retention priority class.
    messages:
        Messages sent verbatim when the segment is included.
    sequence:
        Position in the owning thread.  Assigned by
        :meth:`AgentThread.add_segment`; any caller-supplied value is
        overwritten there.
    token_count:
        Memoised token cost, filled on first count.  Never persisted.
    counted_key:
        ``(model, counter fingerprint)`` the memoised count was computed
        for (``None`` when the count was supplied by the caller).
    """

    kind: SegmentKind
    messages: list[Message] = field(default_factory=list)
    sequence: int = 0
    token_count: int | None = field(default=None, compare=False)
    counted_key: tuple | None = field(default=None, repr=False, compare=False)

    @classmethod
    def chat(cls, messages: list[Message], sequence: int = 0) -> ContextSegment:
        return cls(SegmentKind.CHAT_HISTORY, messages, sequence)

    @classmethod
    def tool_exchange(cls, messages: list[Message], sequence: int = 0) -> ContextSegment:
        return cls(SegmentKind.TOOL_EXCHANGE, messages, sequence)

    @classmethod
    def system(cls, text: str, sequence: int = 0) -> ContextSegment:
        # The request's own system slot is filled separately.
        return cls(SegmentKind.SYSTEM, [Message.user(text)], sequence)

    def count_tokens(self, model: str, counter: Any) -> int:
        """
        Return the segment's token cost for *model*, memoising it.

        The memo is reused only for the same model counted by a counter with
        the same encoding and overheads.
        """
        key = (model, counter.fingerprint)
        if self.token_count is not None and self.counted_key in (None, key):
            return self.token_count
        self.token_count = counter.count_messages(model, self.messages)
        self.counted_key = key
        return self.token_count

    def forget_count(self) -> None:
        """Drop the memoised count after the messages changed."""
        self.token_count = None
        self.counted_key = None

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "sequence": self.sequence,
            "messages": [m.to_dict() for m in self.messages],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ContextSegment:
        return cls(
            kind=SegmentKind(data["kind"]),
            messages=[Message.from_dict(m) for m in data.get("messages", [])],
            sequence=int(data.get("sequence", 0)),
        )
