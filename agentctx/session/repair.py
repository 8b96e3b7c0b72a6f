"""
Orphaned tool-result repair.

A persisted thread can end up holding a tool-result block whose tool-use
block no longer exists (an upstream bug dropped the assistant's request but
kept the result).  Providers reject such requests outright, so threads are
healed on load:

1.  Collect every tool-use id emitted by assistant messages.
2.  Remove tool-result blocks on user messages whose id is not in that set.
3.  Remove messages emptied by step 2, then segments with no content left.

The pass is idempotent.  A malformed segment is skipped, not fatal.
"""

from __future__ import annotations

import logging

from agentctx.llm.types import Role, ToolResultBlock, ToolUseBlock
from agentctx.session.segments import ContextSegment
from agentctx.session.thread import AgentThread
from agentctx.types import RepairReport

logger = logging.getLogger(__name__)


def _tool_use_ids(seg: ContextSegment) -> set[str]:
    ids: set[str] = set()
    for msg in seg.messages:
        if msg.role == Role.ASSISTANT:
            ids.update(b.id for b in msg.content if isinstance(b, ToolUseBlock))
    return ids


def _strip_orphans(seg: ContextSegment, known_ids: set[str]) -> int:
    """
    Remove orphaned results from *seg*; return how many were removed.

    The new block lists are computed for every message before any of them
    is assigned, so a segment that raises part way through is left as it
    was.
    """
    orphans: list[str] = []
    planned = []
    for msg in seg.messages:
        blocks = list(msg.content)
        if msg.role == Role.USER:
            kept = []
            for b in blocks:
                if isinstance(b, ToolResultBlock) and b.tool_use_id not in known_ids:
                    orphans.append(b.tool_use_id)
                else:
                    kept.append(b)
            blocks = kept
        planned.append((msg, blocks))

    if not orphans:
        return 0
    for tool_use_id in orphans:
        logger.info("Dropped orphaned tool_result: tool_use_id=%s", tool_use_id)
    kept_messages = []
    for msg, blocks in planned:
        if msg.role == Role.USER and not blocks and msg.content:
            continue
        msg.content = blocks
        kept_messages.append(msg)
    seg.messages = kept_messages
    seg.forget_count()
    return len(orphans)


def repair_thread(thread: AgentThread) -> RepairReport:
    """
    Remove orphaned tool results from *thread* in place.

    Returns a :class:`RepairReport`; ``removed_results`` is the removal
    count.  ``updated_at`` is bumped only when something was removed.
    """
    report = RepairReport()
    malformed: set[int] = set()

    known_ids: set[str] = set()
    for seg in thread.segments:
        try:
            known_ids |= _tool_use_ids(seg)
        except (AttributeError, TypeError) as exc:
            logger.warning("Skipping malformed segment %s: %s", getattr(seg, "sequence", "?"), exc)
            malformed.add(id(seg))
    report.skipped_segments = len(malformed)

    survivors: list[ContextSegment] = []
    for seg in thread.segments:
        if id(seg) in malformed:
            survivors.append(seg)
            continue
        try:
            report.removed_results += _strip_orphans(seg, known_ids)
            empty = all(not msg.content for msg in seg.messages)
        except (AttributeError, TypeError) as exc:
            logger.warning("Skipping malformed segment %s: %s", getattr(seg, "sequence", "?"), exc)
            report.skipped_segments += 1
            survivors.append(seg)
            continue
        if empty:
            report.removed_segments += 1
            continue
        survivors.append(seg)

    if report.changed:
        thread.segments = survivors
        thread.touch()
        logger.info(
            "Repaired thread %s: removed %d orphaned tool result(s), %d empty segment(s)",
            thread.id,
            report.removed_results,
            report.removed_segments,
        )
    return report
