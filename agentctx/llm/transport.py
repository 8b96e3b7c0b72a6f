"""Abstract base class for LLM transports."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import AsyncIterator

from agentctx.llm.types import LLMRequest, StreamChunk


class TransportError(RuntimeError):
    """A transport failed to deliver the request or its response stream."""


class Transport(ABC):
    """
    A transport delivers a built :class:`LLMRequest` to one model provider.

    Implementations yield ``StreamChunk`` objects; the last chunk has
    ``done=True``.  Failures are raised as :class:`TransportError`.
    """

    @abstractmethod
    async def stream(self, request: LLMRequest) -> AsyncIterator[StreamChunk]:
        """Send *request* and stream the response."""
        ...
        # Make the method an async generator so sub-classes can ``yield``.
        # This line is unreachable but satisfies the type checker.
        if False:  # pragma: no cover
            yield StreamChunk()  # type: ignore[misc]

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable transport name (e.g. ``"anthropic"``)."""
        ...
