"""
Tests for the ``ctx`` command-line interface.
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from agentctx.cli.app import app
from agentctx.llm.types import Message, Role, ToolResultBlock
from agentctx.session.segments import ContextSegment
from agentctx.session.store import SqliteThreadStore
from agentctx.session.thread import AgentThread

runner = CliRunner()


@pytest.fixture
def db_path(tmp_path: Path, monkeypatch) -> str:
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.chdir(tmp_path)
    path = str(tmp_path / "threads.db")
    monkeypatch.setenv("AGENTCTX_STORE_DB_PATH", path)
    return path


def seed(db_path: str, orphan: bool = False) -> AgentThread:
    thread = AgentThread(model="mystery-model", title="Demo")
    thread.add_segment(ContextSegment.chat([Message.user("hello")]))
    thread.add_segment(ContextSegment.chat([Message.assistant("hi")]))
    if orphan:
        thread.add_segment(
            ContextSegment.tool_exchange(
                [Message(role=Role.USER, content=[ToolResultBlock("t-lost", "ok")])]
            )
        )

    async def _save():
        store = SqliteThreadStore(db_path)
        await store.init()
        try:
            await store.save(thread)
        finally:
            await store.close()

    asyncio.run(_save())
    return thread


class TestCli:
    def test_version(self):
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert "agentctx v0.1.0" in result.output

    def test_models_list(self, db_path: str):
        result = runner.invoke(app, ["models", "list", "--provider", "gemini"])
        assert result.exit_code == 0
        assert "gemini" in result.output

    def test_threads_list_empty(self, db_path: str):
        result = runner.invoke(app, ["threads", "list"])
        assert result.exit_code == 0
        assert "No threads found." in result.output

    def test_threads_show(self, db_path: str):
        thread = seed(db_path)
        result = runner.invoke(app, ["threads", "show", thread.id])
        assert result.exit_code == 0
        assert "Demo" in result.output
        assert "hello" in result.output

    def test_threads_show_missing(self, db_path: str):
        result = runner.invoke(app, ["threads", "show", "T-missing"])
        assert result.exit_code == 1

    def test_threads_export(self, db_path: str):
        thread = seed(db_path)
        result = runner.invoke(app, ["threads", "export", thread.id])
        assert result.exit_code == 0
        assert json.loads(result.output)["id"] == thread.id

    def test_threads_repair(self, db_path: str):
        thread = seed(db_path, orphan=True)
        result = runner.invoke(app, ["threads", "repair", thread.id])
        assert result.exit_code == 0
        assert "removed 1" in result.output

        result = runner.invoke(app, ["threads", "repair", thread.id])
        assert "consistent" in result.output

    def test_threads_delete(self, db_path: str):
        thread = seed(db_path)
        assert runner.invoke(app, ["threads", "delete", thread.id]).exit_code == 0
        assert runner.invoke(app, ["threads", "show", thread.id]).exit_code == 1

    def test_context_build(self, db_path: str):
        thread = seed(db_path)
        result = runner.invoke(
            app, ["context", "build", thread.id, "--system", "Be brief.", "--max-output", "1000"]
        )
        assert result.exit_code == 0
        assert "Segments included" in result.output

    def test_context_build_missing(self, db_path: str):
        result = runner.invoke(app, ["context", "build", "T-missing"])
        assert result.exit_code == 1
        assert "Thread not found" in result.output

    def test_config_show(self, db_path: str):
        result = runner.invoke(app, ["config", "show"])
        assert result.exit_code == 0
        assert "safety_margin_percent" in result.output

    def test_config_validate(self, db_path: str):
        result = runner.invoke(app, ["config", "validate"])
        assert result.exit_code == 0
        assert "Config is valid." in result.output
