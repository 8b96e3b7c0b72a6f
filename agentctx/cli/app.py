"""
Main CLI application for agentctx.

Usage:
    ctx threads list|show|delete|repair|export
    ctx context build THREAD_ID [--system TEXT | --system-file PATH]
    ctx models list [--provider NAME]
    ctx config show|validate
    ctx version
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from agentctx import __version__
from agentctx.config import AgentCtxConfig, load_config
from agentctx.types import ThreadStoreError

app = typer.Typer(name="ctx", help="Context budgeting for LLM agent threads")
threads_app = typer.Typer(help="Thread management")
context_app = typer.Typer(help="Context window inspection")
models_app = typer.Typer(help="Model catalog")
config_app = typer.Typer(help="Configuration management")

app.add_typer(threads_app, name="threads")
app.add_typer(context_app, name="context")
app.add_typer(models_app, name="models")
app.add_typer(config_app, name="config")

console = Console()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _get_config_path() -> Path | None:
    """Find config file in standard locations."""
    candidates = [
        Path.cwd() / "agentctx.yaml",
        Path.cwd() / "agentctx.yml",
        Path.home() / ".config" / "agentctx" / "config.yaml",
        Path.home() / ".agentctx" / "config.yaml",
    ]
    for p in candidates:
        if p.is_file():
            return p
    return None


async def _open_store(cfg: AgentCtxConfig):
    from agentctx.session.store import InMemoryThreadStore, SqliteThreadStore

    if cfg.store.backend == "memory":
        return InMemoryThreadStore(lock_timeout=cfg.store.lock_timeout_seconds)
    store = SqliteThreadStore(cfg.store.db_path, lock_timeout=cfg.store.lock_timeout_seconds)
    await store.init()
    return store


async def _close_store(store) -> None:
    close = getattr(store, "close", None)
    if close is not None:
        await close()


def _run(coro) -> None:
    """Run *coro*, turning persistence failures into a clean exit."""
    try:
        asyncio.run(coro)
    except ThreadStoreError as e:
        console.print(f"[red]Store error:[/red] {e.cause}")
        raise typer.Exit(1)


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# ---------------------------------------------------------------------------
# Threads
# ---------------------------------------------------------------------------

@threads_app.command("list")
def threads_list():
    """List threads, most recently updated first."""

    async def _list():
        from agentctx.cli.output import OutputFormatter

        cfg = load_config(_get_config_path())
        store = await _open_store(cfg)
        try:
            summaries = await store.list_summary()
        finally:
            await _close_store(store)
        OutputFormatter(console).format_thread_list(summaries)

    _run(_list())


@threads_app.command("show")
def threads_show(thread_id: str = typer.Argument(..., help="Thread ID")):
    """Show a thread's segments."""

    async def _show():
        from agentctx.cli.output import OutputFormatter

        cfg = load_config(_get_config_path())
        store = await _open_store(cfg)
        try:
            thread = await store.get(thread_id)
        finally:
            await _close_store(store)
        if thread is None:
            console.print(f"[red]Thread not found:[/red] {thread_id}")
            raise typer.Exit(1)
        OutputFormatter(console).format_thread(thread)

    _run(_show())


@threads_app.command("delete")
def threads_delete(thread_id: str = typer.Argument(..., help="Thread ID")):
    """Delete a thread."""

    async def _delete():
        cfg = load_config(_get_config_path())
        store = await _open_store(cfg)
        try:
            await store.delete(thread_id)
        finally:
            await _close_store(store)
        console.print(f"Deleted thread: {thread_id}")

    _run(_delete())


@threads_app.command("repair")
def threads_repair(
    thread_id: Optional[str] = typer.Argument(None, help="Thread ID (all threads if omitted)"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Report without saving"),
):
    """Remove orphaned tool results from stored threads."""

    async def _repair():
        from agentctx.cli.output import OutputFormatter
        from agentctx.session.repair import repair_thread

        cfg = load_config(_get_config_path())
        store = await _open_store(cfg)
        formatter = OutputFormatter(console)
        try:
            ids = [thread_id] if thread_id else await store.list()
            for tid in ids:
                thread = await store.get(tid)
                if thread is None:
                    console.print(f"[red]Thread not found:[/red] {tid}")
                    continue
                report = repair_thread(thread)
                if report.changed and not dry_run:
                    await store.save(thread)
                formatter.format_repair(tid, report)
        finally:
            await _close_store(store)

    _run(_repair())


@threads_app.command("export")
def threads_export(thread_id: str = typer.Argument(..., help="Thread ID")):
    """Print a thread as JSON."""

    async def _export():
        cfg = load_config(_get_config_path())
        store = await _open_store(cfg)
        try:
            thread = await store.get(thread_id)
        finally:
            await _close_store(store)
        if thread is None:
            console.print(f"[red]Thread not found:[/red] {thread_id}")
            raise typer.Exit(1)
        typer.echo(json.dumps(thread.to_dict(), indent=2))

    _run(_export())


# ---------------------------------------------------------------------------
# Context
# ---------------------------------------------------------------------------

@context_app.command("build")
def context_build(
    thread_id: str = typer.Argument(..., help="Thread ID"),
    system: Optional[str] = typer.Option(None, "--system", help="System prompt text"),
    system_file: Optional[Path] = typer.Option(None, "--system-file", help="Read system prompt from file"),
    short_system: Optional[str] = typer.Option(None, "--short-system", help="Abbreviated system prompt"),
    tools_file: Optional[Path] = typer.Option(None, "--tools-file", help="JSON list of tool declarations"),
    max_output: Optional[int] = typer.Option(None, "--max-output", help="Output tokens to reserve"),
):
    """Build the bounded request for a thread and show its diagnostics."""

    async def _build():
        from agentctx.cli.output import OutputFormatter
        from agentctx.llm.token_counter import TokenCounter
        from agentctx.llm.types import ToolDefinition
        from agentctx.session.context import ContextManager
        from agentctx.session.session import ThreadSession

        cfg = load_config(_get_config_path())
        system_prompt = system
        if system_file is not None:
            system_prompt = system_file.read_text(encoding="utf-8")
        tools = []
        if tools_file is not None:
            tools = [ToolDefinition.from_dict(t) for t in json.loads(tools_file.read_text(encoding="utf-8"))]

        catalog = cfg.models.build_catalog()
        counter = TokenCounter(catalog, cfg.context.overheads(), cfg.context.encoding)
        manager = ContextManager(catalog, counter, cfg.context.safety_margin_percent)

        store = await _open_store(cfg)
        try:
            session = ThreadSession(store, manager, repair_on_load=cfg.store.repair_on_load)
            try:
                removed = await session.resume(thread_id)
            except ValueError as e:
                console.print(f"[red]{e}[/red]")
                raise typer.Exit(1)
            if removed:
                console.print(f"[yellow]Repaired {removed} orphaned tool result(s).[/yellow]")
            built = session.build_context(
                system_prompt,
                short_system,
                tools,
                max_output if max_output is not None else cfg.llm.max_output_tokens,
            )
        finally:
            await _close_store(store)
        OutputFormatter(console).format_built_context(built)

    _run(_build())


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------

@models_app.command("list")
def models_list(
    provider: Optional[str] = typer.Option(None, help="Only show this provider's models"),
):
    """List known models."""
    from agentctx.cli.output import OutputFormatter

    catalog = load_config(_get_config_path()).models.build_catalog()
    names = catalog.models_for_provider(provider) if provider else catalog.list()
    OutputFormatter(console).format_model_list([catalog.info_for(n) for n in names])


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

@config_app.command("show")
def config_show():
    """Show effective config."""
    from agentctx.cli.output import OutputFormatter

    cfg = load_config(_get_config_path())
    OutputFormatter(console).format_config(cfg.to_dict())


@config_app.command("validate")
def config_validate():
    """Validate config and show any type issues."""
    config_path = _get_config_path()
    try:
        cfg = load_config(config_path)
        cfg.models.build_catalog()
        console.print("[green]Config is valid.[/green]")
        if config_path:
            console.print(f"  Loaded from: {config_path}")
        else:
            console.print("  [dim]No config file found, using defaults.[/dim]")
        console.print(f"  Default model: {cfg.llm.model}")
        console.print(f"  Store: {cfg.store.backend} ({cfg.store.db_path})")
        console.print(f"  Safety margin: {cfg.context.safety_margin_percent}%")
    except Exception as e:
        console.print(f"[red]Config validation failed:[/red] {e}")
        raise typer.Exit(1)


@app.command()
def version():
    """Show version."""
    console.print(f"agentctx v{__version__}")


def main():
    app()


if __name__ == "__main__":
    main()
