"""
Agent conversation threads.

A thread owns an append-only log of :class:`ContextSegment` objects.  The
thread stamps every appended segment with the next value of its own
sequence counter, so segment order cannot be forged by callers.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from agentctx.session.segments import ContextSegment


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class AgentThread:
    """
    A conversation.

    Attributes
    ----------
    id:
        ``"T-"`` followed by a UUID4.
    title:
        Human-readable title.
    model:
        Target model identifier.
    segments:
        Segment log, ordered by sequence.
    created_at / updated_at:
        UTC timestamps.
    next_sequence:
        Sequence number the next appended segment will receive.
    metadata:
        Free-form string metadata.
    """

    model: str
    id: str = field(default_factory=lambda: f"T-{uuid.uuid4()}")
    title: str = "New conversation"
    segments: list[ContextSegment] = field(default_factory=list)
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime | None = None
    next_sequence: int = 0
    metadata: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.updated_at is None:
            self.updated_at = self.created_at

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def add_segment(self, segment: ContextSegment) -> int:
        """Append *segment* and return the sequence number it was given."""
        seq = self.next_sequence
        self.next_sequence += 1
        segment.sequence = seq
        self.segments.append(segment)
        self.touch()
        return seq

    def peek_sequence(self) -> int:
        """Return the next sequence number without consuming it."""
        return self.next_sequence

    def clear(self) -> None:
        """Drop all segments and restart the sequence counter."""
        self.segments.clear()
        self.next_sequence = 0
        self.touch()

    def set_model(self, model: str) -> None:
        self.model = model
        self.touch()

    def set_title(self, title: str) -> None:
        self.title = title
        self.touch()

    def touch(self) -> None:
        """Bump ``updated_at`` (never backwards)."""
        now = _now()
        if self.updated_at is None or now > self.updated_at:
            self.updated_at = now

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a plain dict suitable for JSON / SQLite storage."""
        assert self.updated_at is not None
        return {
            "id": self.id,
            "title": self.title,
            "model": self.model,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "next_sequence": self.next_sequence,
            "metadata": dict(self.metadata),
            "segments": [s.to_dict() for s in self.segments],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AgentThread:
        """Reconstruct a thread from a dict produced by ``to_dict``."""
        segments = [ContextSegment.from_dict(s) for s in data.get("segments", [])]
        next_sequence = int(data.get("next_sequence", 0))
        if segments:
            # Never hand out a sequence that is already in the log.
            next_sequence = max(next_sequence, segments[-1].sequence + 1)
        return cls(
            id=data["id"],
            title=data.get("title", "New conversation"),
            model=data["model"],
            segments=segments,
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
            next_sequence=next_sequence,
            metadata=dict(data.get("metadata", {})),
        )
