from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from agentctx.llm.types import LLMRequest


class ErrorCode:
    LOCK_TIMEOUT = "lock_timeout"
    BACKEND_ERROR = "backend_error"
    NOT_FOUND = "not_found"
    CORRUPT_RECORD = "corrupt_record"


class ThreadStoreError(RuntimeError):
    """A recoverable persistence failure (lock contention or backend error)."""

    def __init__(self, cause: str, code: str = ErrorCode.BACKEND_ERROR) -> None:
        super().__init__(cause)
        self.cause = cause
        self.code = code


@dataclass
class BuiltContext:
    """A bounded request plus the diagnostics of how it was packed."""

    request: LLMRequest
    total_tokens: int
    budget: int
    truncated: bool
    segments_included: int
    segments_dropped: int
    mandatory_tokens: int = 0
    system_prompt_shortened: bool = False


@dataclass
class ThreadSummary:
    id: str
    title: str
    model: str
    updated_at: datetime
    segment_count: int


@dataclass
class RepairReport:
    removed_results: int = 0
    removed_segments: int = 0
    skipped_segments: int = 0

    @property
    def changed(self) -> bool:
        return bool(self.removed_results or self.removed_segments)
