"""Output formatting utilities for the CLI."""

from __future__ import annotations

import json

from rich.console import Console
from rich.syntax import Syntax
from rich.table import Table
from rich.text import Text

from agentctx.llm.types import (
    ContentBlock,
    ImageBlock,
    TextBlock,
    ThinkingBlock,
    ToolResultBlock,
    ToolUseBlock,
)
from agentctx.llm.models import ModelInfo
from agentctx.session.segments import SegmentKind
from agentctx.session.thread import AgentThread
from agentctx.types import BuiltContext, RepairReport, ThreadSummary

KIND_COLORS = {
    SegmentKind.SYSTEM: "magenta",
    SegmentKind.INSTRUCTIONS: "magenta",
    SegmentKind.REPO_CONTEXT: "dim",
    SegmentKind.CHAT_HISTORY: "blue",
    SegmentKind.TOOL_EXCHANGE: "yellow",
    SegmentKind.SUMMARY: "cyan",
}


def describe_block(block: ContentBlock, width: int = 80) -> str:
    """One-line description of a content block."""
    if isinstance(block, TextBlock):
        return block.text[:width]
    if isinstance(block, ThinkingBlock):
        return f"(thinking) {block.text[:width]}"
    if isinstance(block, ToolUseBlock):
        return f"{block.name}({json.dumps(block.input)[:width]}) #{block.id}"
    if isinstance(block, ToolResultBlock):
        status = "ERR" if block.is_error else "OK"
        if isinstance(block.content, ImageBlock):
            body = "<image>"
        elif isinstance(block.content, str):
            body = block.content[:width]
        else:
            body = json.dumps(block.content)[:width]
        return f"-> #{block.tool_use_id} {status}: {body}"
    if isinstance(block, ImageBlock):
        return f"<image {block.media_type}>"
    raise TypeError(f"Unknown content block: {type(block).__name__}")


class OutputFormatter:
    """Rich-based output formatting for the agentctx CLI."""

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    def format_thread_list(self, summaries: list[ThreadSummary]) -> None:
        if not summaries:
            self.console.print("[dim]No threads found.[/dim]")
            return

        table = Table(title="Threads")
        table.add_column("ID", style="cyan", no_wrap=True)
        table.add_column("Title")
        table.add_column("Model", no_wrap=True)
        table.add_column("Updated", no_wrap=True)
        table.add_column("Segments", justify="right")

        for s in summaries:
            table.add_row(
                s.id,
                s.title,
                s.model,
                s.updated_at.strftime("%Y-%m-%d %H:%M:%S"),
                str(s.segment_count),
            )

        self.console.print(table)

    def format_thread(self, thread: AgentThread) -> None:
        self.console.print(
            f"[bold]{thread.title}[/bold]  [dim]{thread.id} · {thread.model}[/dim]"
        )
        if not thread.segments:
            self.console.print("[dim]No segments.[/dim]")
            return

        for seg in thread.segments:
            color = KIND_COLORS.get(seg.kind, "white")
            self.console.print(f"  [{color}]#{seg.sequence:<4d} {seg.kind.value}[/{color}]")
            for msg in seg.messages:
                for block in msg.content:
                    self.console.print(f"      {msg.role:>9s}  {describe_block(block)}")

    def format_built_context(self, built: BuiltContext) -> None:
        table = Table(title=f"Context for {built.request.model}", show_header=False)
        table.add_column("Field", style="dim")
        table.add_column("Value")

        used = Text(f"{built.total_tokens:,} / {built.budget:,}")
        if built.total_tokens >= built.budget:
            used.stylize("bold red")
        table.add_row("Tokens", used)
        table.add_row("Mandatory", f"{built.mandatory_tokens:,}")
        table.add_row("Segments included", str(built.segments_included))
        table.add_row("Segments dropped", str(built.segments_dropped))
        table.add_row("Truncated", "[yellow]yes[/yellow]" if built.truncated else "no")
        table.add_row(
            "System prompt",
            "[yellow]abbreviated[/yellow]" if built.system_prompt_shortened else "full",
        )
        table.add_row("Messages", str(len(built.request.messages)))

        self.console.print(table)

    def format_repair(self, thread_id: str, report: RepairReport) -> None:
        if not report.changed:
            self.console.print(f"[green]{thread_id}: consistent[/green]")
        else:
            self.console.print(
                f"[yellow]{thread_id}: removed {report.removed_results} orphaned "
                f"tool result(s), {report.removed_segments} empty segment(s)[/yellow]"
            )
        if report.skipped_segments:
            self.console.print(f"  [red]skipped {report.skipped_segments} malformed segment(s)[/red]")

    def format_model_list(self, models: list[ModelInfo]) -> None:
        table = Table(title="Models")
        table.add_column("Name", style="cyan", no_wrap=True)
        table.add_column("Provider", no_wrap=True)
        table.add_column("Context", justify="right")
        table.add_column("Output", justify="right")
        table.add_column("Tokenizer", no_wrap=True)

        for m in models:
            table.add_row(
                m.name,
                m.provider,
                f"{m.max_context_tokens:,}",
                f"{m.default_max_output_tokens:,}",
                m.tokenizer.value,
            )

        self.console.print(table)

    def format_config(self, config: dict) -> None:
        config_json = json.dumps(config, indent=2, default=str)
        self.console.print(Syntax(config_json, "json", theme="monokai"))
