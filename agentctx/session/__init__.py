"""Session management: segments, threads, persistence, repair, context packing."""

from agentctx.session.context import BuildContextParams, ContextManager, split_last_turn
from agentctx.session.repair import repair_thread
from agentctx.session.segments import ContextSegment, SegmentKind
from agentctx.session.session import ThreadSession
from agentctx.session.store import InMemoryThreadStore, SqliteThreadStore, ThreadStore
from agentctx.session.thread import AgentThread

__all__ = [
    "AgentThread",
    "BuildContextParams",
    "ContextManager",
    "ContextSegment",
    "InMemoryThreadStore",
    "SegmentKind",
    "SqliteThreadStore",
    "ThreadSession",
    "ThreadStore",
    "repair_thread",
    "split_last_turn",
]
