"""
High-level thread session.

Ties together the thread store, the consistency repair pass and the context
manager to provide a coherent API for the agent loop and UI code:

- Start, resume (repairing on load), save and clear threads.
- Append typed segments.
- Build a token-budgeted request.
- Stream a reply through a transport and record it.
"""

from __future__ import annotations

import logging

from agentctx.llm.transport import Transport, TransportError
from agentctx.llm.types import (
    ContentBlock,
    Message,
    Role,
    TextBlock,
    ThinkingBlock,
    ToolDefinition,
    ToolResultBlock,
)
from agentctx.session.context import BuildContextParams, ContextManager
from agentctx.session.repair import repair_thread
from agentctx.session.segments import ContextSegment, SegmentKind
from agentctx.session.store import ThreadStore
from agentctx.session.thread import AgentThread
from agentctx.types import BuiltContext

logger = logging.getLogger(__name__)


class ThreadSession:
    """
    Manages a single agent thread.

    Parameters
    ----------
    store:
        Persistent thread store.
    context_manager:
        Request builder (owns the model catalog and token counter).
    repair_on_load:
        Run the orphaned tool-result repair when resuming a thread.
    """

    def __init__(
        self,
        store: ThreadStore,
        context_manager: ContextManager,
        repair_on_load: bool = True,
    ) -> None:
        self.store = store
        self.context_manager = context_manager
        self.repair_on_load = repair_on_load
        self.thread: AgentThread | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def new_thread(self, model: str, title: str | None = None) -> AgentThread:
        """Start a new, empty thread and make it current."""
        thread = AgentThread(model=model)
        if title:
            thread.title = title
        self.thread = thread
        return thread

    async def resume(self, thread_id: str) -> int:
        """
        Load an existing thread, heal it, and make it current.

        Returns the number of orphaned tool results removed.  A healed
        thread is saved back immediately.

        Raises
        ------
        ValueError
            If the thread does not exist in the store.
        """
        thread = await self.store.get(thread_id)
        if thread is None:
            raise ValueError(f"Thread not found: {thread_id}")
        removed = 0
        if self.repair_on_load:
            report = repair_thread(thread)
            removed = report.removed_results
            if report.changed:
                await self.store.save(thread)
        self.thread = thread
        return removed

    async def save(self) -> None:
        """Persist the current thread."""
        await self.store.save(self._require_thread())

    def clear(self) -> None:
        """Empty the current thread and restart its sequence counter."""
        self._require_thread().clear()

    def _require_thread(self) -> AgentThread:
        if self.thread is None:
            raise RuntimeError("No active thread -- call new_thread() or resume() first")
        return self.thread

    # ------------------------------------------------------------------
    # Segment recording
    # ------------------------------------------------------------------

    def append_segment(self, kind: SegmentKind, messages: list[Message]) -> int:
        """Append a segment of *kind* and return its sequence number."""
        return self._require_thread().add_segment(ContextSegment(kind, list(messages)))

    def add_user_message(self, text: str) -> int:
        return self.append_segment(SegmentKind.CHAT_HISTORY, [Message.user(text)])

    def add_assistant_message(self, blocks: list[ContentBlock]) -> int:
        return self.append_segment(
            SegmentKind.CHAT_HISTORY, [Message(role=Role.ASSISTANT, content=list(blocks))]
        )

    def add_tool_results(self, results: list[ToolResultBlock]) -> int:
        """Record tool results as one tool exchange, one user message each."""
        return self.append_segment(
            SegmentKind.TOOL_EXCHANGE,
            [Message(role=Role.USER, content=[r]) for r in results],
        )

    # ------------------------------------------------------------------
    # Context window
    # ------------------------------------------------------------------

    def build_context(
        self,
        system_prompt: str | None,
        short_system_prompt: str | None = None,
        tools: list[ToolDefinition] | None = None,
        max_output_tokens: int | None = None,
    ) -> BuiltContext:
        """Build a token-budgeted request from the current thread."""
        thread = self._require_thread()
        return self.context_manager.build_request(
            BuildContextParams(
                model=thread.model,
                system_prompt=system_prompt,
                short_system_prompt=short_system_prompt,
                tools=list(tools or []),
                segments=list(thread.segments),
                max_output_tokens=max_output_tokens,
            )
        )

    async def respond(
        self,
        transport: Transport,
        system_prompt: str | None,
        short_system_prompt: str | None = None,
        tools: list[ToolDefinition] | None = None,
        max_output_tokens: int | None = None,
    ) -> Message:
        """
        Send the bounded request through *transport* and record the reply.

        Text, thinking and tool-use output is assembled into one assistant
        message, appended as a chat segment, and the thread is saved.

        Raises
        ------
        TransportError
            If the transport fails.  Nothing is recorded in that case.
        """
        thread = self._require_thread()
        built = self.build_context(system_prompt, short_system_prompt, tools, max_output_tokens)

        text: list[str] = []
        thinking: list[str] = []
        tool_uses = []
        try:
            async for chunk in transport.stream(built.request):
                if chunk.thinking:
                    thinking.append(chunk.thinking)
                if chunk.delta:
                    text.append(chunk.delta)
                if chunk.tool_uses:
                    tool_uses.extend(chunk.tool_uses)
                if chunk.done:
                    break
        except TransportError:
            raise
        except Exception as exc:
            raise TransportError(f"{transport.name}: {exc}") from exc

        blocks: list[ContentBlock] = []
        if thinking:
            blocks.append(ThinkingBlock("".join(thinking)))
        if text:
            blocks.append(TextBlock("".join(text)))
        blocks.extend(tool_uses)

        reply = Message(role=Role.ASSISTANT, content=blocks)
        if blocks:
            thread.add_segment(ContextSegment(SegmentKind.CHAT_HISTORY, [reply]))
            await self.store.save(thread)
        else:
            logger.warning("Transport %s returned an empty reply", transport.name)
        return reply
