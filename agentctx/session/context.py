"""
Token-budgeted request builder.

Given the full segment log of a thread, a system prompt (plus an abbreviated
fallback) and tool declarations, :class:`ContextManager` assembles an
:class:`~agentctx.llm.types.LLMRequest` that fits the model's context
window.

The packing strategy is:

1.  Compute the *budget*: context window minus reserved output minus a
    safety margin (a percentage of the window).
2.  Cost the mandatory content: system prompt, tool declarations and the
    *last turn* -- the trailing span of segments found by
    :func:`split_last_turn`.
3.  If the mandatory content does not fit, switch to the abbreviated system
    prompt.  The last turn and the tools are never dropped.
4.  Walk the older segments newest-first, keeping each one that fits in the
    remaining budget and skipping (not stopping at) those that don't.
5.  Drop any kept older segment that would split a tool-use/tool-result
    pair.  The last turn itself is sent as-is, even if a tool use it
    answers was not kept.
6.  Emit kept older segments, then the last turn, in chronological order.

All budget arithmetic is clamped at zero.  Nothing here raises: an over-full
request is reported through ``truncated`` and ``segments_dropped``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from agentctx.llm.models import ModelCatalog
from agentctx.llm.token_counter import TokenCounter
from agentctx.llm.types import LLMRequest, Message, ToolDefinition
from agentctx.session.segments import ContextSegment, SegmentKind
from agentctx.types import BuiltContext

logger = logging.getLogger(__name__)


@dataclass
class BuildContextParams:
    """Inputs for a single :meth:`ContextManager.build_request` call."""

    model: str
    system_prompt: str | None = None
    short_system_prompt: str | None = None
    tools: list[ToolDefinition] = field(default_factory=list)
    segments: list[ContextSegment] = field(default_factory=list)
    max_output_tokens: int | None = None


def split_last_turn(
    segments: list[ContextSegment],
) -> tuple[list[ContextSegment], list[ContextSegment]]:
    """
    Split *segments* into ``(last_turn, older)``.

    Scans backwards from the newest segment.  Tool exchanges extend the
    preserved span and open a tool run; a chat segment extends the span and
    either ends the scan (outside a tool run) or closes the run and keeps
    scanning.  Any other kind ends the scan outside a tool run and is passed
    over inside one.
    """
    start = len(segments)
    in_tool_run = False

    for i in range(len(segments) - 1, -1, -1):
        kind = segments[i].kind
        if kind is SegmentKind.TOOL_EXCHANGE:
            in_tool_run = True
            start = i
        elif kind is SegmentKind.CHAT_HISTORY:
            start = i
            if not in_tool_run:
                break
            in_tool_run = False
        elif not in_tool_run:
            break

    return segments[start:], segments[:start]


def _ids(segments: list[ContextSegment]) -> tuple[set[str], set[str]]:
    """Return ``(tool_use_ids, tool_result_ids)`` across *segments*."""
    uses: set[str] = set()
    results: set[str] = set()
    for seg in segments:
        for msg in seg.messages:
            uses.update(msg.tool_use_ids())
            results.update(msg.tool_result_ids())
    return uses, results


def _split_pairs(
    included: list[ContextSegment],
    last_turn: list[ContextSegment],
    all_segments: list[ContextSegment],
) -> list[ContextSegment]:
    """
    Return the older included segments that break a tool pairing.

    A segment breaks a pairing when it carries a tool result whose tool use
    is not being sent, or a tool use whose result exists in the log but is
    not being sent.  Removing one segment can orphan another, so this runs
    to a fixed point.

    Only *included* is checked.  The last turn counts as sent but is never
    dropped, so a result in it whose tool use was packed out still goes
    out unpaired.
    """
    _, logged_results = _ids(all_segments)
    kept = list(included)
    removed: list[ContextSegment] = []

    while True:
        uses, results = _ids(kept + last_turn)
        broken = []
        for seg in kept:
            seg_uses, seg_results = _ids([seg])
            if seg_results - uses or ((seg_uses & logged_results) - results):
                broken.append(seg)
        if not broken:
            return removed
        broken_ids = {id(seg) for seg in broken}
        kept = [seg for seg in kept if id(seg) not in broken_ids]
        removed.extend(broken)


class ContextManager:
    """
    Build bounded requests from a segment log.

    Parameters
    ----------
    catalog:
        Model catalog used for context-window and output reservations.
    counter:
        Token counter.
    safety_margin_percent:
        Share of the context window held back on top of the output
        reservation.
    """

    def __init__(
        self,
        catalog: ModelCatalog,
        counter: TokenCounter,
        safety_margin_percent: int = 2,
    ) -> None:
        self.catalog = catalog
        self.counter = counter
        self.safety_margin_percent = safety_margin_percent

    def budget_for(self, model: str, max_output_tokens: int | None = None) -> int:
        """Tokens available for input content on *model*."""
        info = self.catalog.info_for(model)
        reserved = (
            max_output_tokens
            if max_output_tokens is not None
            else info.default_max_output_tokens
        )
        safety = info.max_context_tokens * self.safety_margin_percent // 100
        return max(0, max(0, info.max_context_tokens - reserved) - safety)

    def build_request(self, params: BuildContextParams) -> BuiltContext:
        """Pack *params* into a request that fits the model's budget."""
        model = params.model
        info = self.catalog.info_for(model)
        max_output = (
            params.max_output_tokens
            if params.max_output_tokens is not None
            else info.default_max_output_tokens
        )
        budget = self.budget_for(model, params.max_output_tokens)

        # -- Mandatory content -------------------------------------------
        tools_tokens = self.counter.count_tools(model, params.tools)
        last_turn, older = split_last_turn(params.segments)
        last_turn_tokens = sum(seg.count_tokens(model, self.counter) for seg in last_turn)

        system = params.system_prompt
        system_tokens = self.counter.count_text(model, system or "")
        shortened = False
        if system_tokens + tools_tokens + last_turn_tokens > budget:
            system = params.short_system_prompt
            system_tokens = self.counter.count_text(model, system or "")
            shortened = True

        mandatory = system_tokens + tools_tokens + last_turn_tokens
        remaining = max(0, budget - mandatory)

        # -- Greedy fill, newest first -----------------------------------
        included: list[ContextSegment] = []
        dropped = 0
        for seg in sorted(older, key=lambda s: s.sequence, reverse=True):
            cost = seg.count_tokens(model, self.counter)
            if cost <= remaining:
                included.append(seg)
                remaining -= cost
            else:
                dropped += 1

        unpaired = _split_pairs(included, last_turn, params.segments)
        if unpaired:
            unpaired_ids = {id(seg) for seg in unpaired}
            included = [seg for seg in included if id(seg) not in unpaired_ids]
            for seg in unpaired:
                remaining += seg.count_tokens(model, self.counter)
            dropped += len(unpaired)

        included.reverse()

        messages: list[Message] = []
        for seg in included:
            messages.extend(seg.messages)
        for seg in last_turn:
            messages.extend(seg.messages)

        request = LLMRequest(
            model=model,
            system=system,
            messages=messages,
            tools=list(params.tools),
            max_tokens=max_output,
            stream=True,
        )

        built = BuiltContext(
            request=request,
            total_tokens=max(0, budget - remaining),
            budget=budget,
            truncated=dropped > 0,
            segments_included=len(included) + len(last_turn),
            segments_dropped=dropped,
            mandatory_tokens=mandatory,
            system_prompt_shortened=shortened,
        )
        if built.truncated:
            logger.info(
                "Context truncated for %s: dropped %d segment(s), %d/%d tokens",
                model,
                dropped,
                built.total_tokens,
                budget,
            )
        return built
