"""
Tests for the thread stores and the reader/writer lock.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from agentctx.llm.types import ImageBlock, Message, Role, ToolResultBlock, ToolUseBlock
from agentctx.session.locks import ReadWriteLock
from agentctx.session.segments import ContextSegment
from agentctx.session.store import (
    SCHEMA_VERSION,
    InMemoryThreadStore,
    SqliteThreadStore,
    ThreadStore,
)
from agentctx.session.thread import AgentThread
from agentctx.types import ErrorCode, ThreadStoreError


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def tmp_db(tmp_path: Path) -> str:
    return str(tmp_path / "test_threads.db")


@pytest.fixture
async def sqlite_store(tmp_db: str):
    s = SqliteThreadStore(tmp_db)
    await s.init()
    yield s
    await s.close()


@pytest.fixture(params=["memory", "sqlite"])
async def store(request, tmp_db: str):
    if request.param == "memory":
        yield InMemoryThreadStore()
        return
    s = SqliteThreadStore(tmp_db)
    await s.init()
    yield s
    await s.close()


def make_thread(title: str = "Demo", n: int = 2) -> AgentThread:
    thread = AgentThread(model="gpt-4o", title=title)
    for i in range(n):
        thread.add_segment(ContextSegment.chat([Message.user(f"message {i}")]))
    return thread


# ===================================================================
# ThreadStore contract (both backends)
# ===================================================================


class TestThreadStore:
    async def test_get_unknown(self, store: ThreadStore):
        assert await store.get("T-missing") is None

    async def test_save_and_get(self, store: ThreadStore):
        thread = make_thread()
        await store.save(thread)

        loaded = await store.get(thread.id)
        assert loaded is not None
        assert loaded.id == thread.id
        assert loaded.title == "Demo"
        assert loaded.model == "gpt-4o"
        assert [s.sequence for s in loaded.segments] == [0, 1]
        assert loaded.segments[1].messages[0].text() == "message 1"
        assert loaded.peek_sequence() == 2
        assert loaded.updated_at == thread.updated_at

    async def test_get_returns_snapshot(self, store: ThreadStore):
        thread = make_thread()
        await store.save(thread)

        thread.add_segment(ContextSegment.chat([Message.user("unsaved")]))
        loaded = await store.get(thread.id)
        assert len(loaded.segments) == 2

        loaded.segments.clear()
        again = await store.get(thread.id)
        assert len(again.segments) == 2

    async def test_save_replaces(self, store: ThreadStore):
        thread = make_thread(n=2)
        await store.save(thread)
        thread.add_segment(ContextSegment.chat([Message.user("third")]))
        thread.set_title("Renamed")
        await store.save(thread)

        loaded = await store.get(thread.id)
        assert loaded.title == "Renamed"
        assert len(loaded.segments) == 3

        thread.clear()
        await store.save(thread)
        assert (await store.get(thread.id)).segments == []

    async def test_tool_blocks_survive(self, store: ThreadStore):
        thread = AgentThread(model="gpt-4o")
        thread.add_segment(
            ContextSegment.chat(
                [Message(role=Role.ASSISTANT, content=[ToolUseBlock("t1", "shot", {"url": "x"})])]
            )
        )
        thread.add_segment(
            ContextSegment.tool_exchange(
                [Message(role=Role.USER, content=[ToolResultBlock("t1", ImageBlock("AAAA"))])]
            )
        )
        await store.save(thread)

        loaded = await store.get(thread.id)
        assert loaded.segments == thread.segments

    async def test_delete(self, store: ThreadStore):
        thread = make_thread()
        await store.save(thread)
        await store.delete(thread.id)
        assert await store.get(thread.id) is None
        assert await store.list() == []

    async def test_delete_unknown_is_noop(self, store: ThreadStore):
        await store.delete("T-missing")

    async def test_list(self, store: ThreadStore):
        a, b = make_thread("a"), make_thread("b")
        await store.save(a)
        await store.save(b)
        assert sorted(await store.list()) == sorted([a.id, b.id])

    async def test_list_summary_newest_first(self, store: ThreadStore):
        base = datetime(2025, 1, 1, tzinfo=timezone.utc)
        older, newer = make_thread("older", n=1), make_thread("newer", n=3)
        older.updated_at = base
        newer.updated_at = base + timedelta(hours=1)
        await store.save(newer)
        await store.save(older)

        summaries = await store.list_summary()
        assert [s.title for s in summaries] == ["newer", "older"]
        assert [s.segment_count for s in summaries] == [3, 1]
        assert summaries[0].updated_at == newer.updated_at
        assert summaries[0].model == "gpt-4o"


# ===================================================================
# SQLite-specific behaviour
# ===================================================================


class TestSqliteThreadStore:
    async def test_schema_version(self, sqlite_store: SqliteThreadStore):
        assert await sqlite_store.get_schema_version() == SCHEMA_VERSION

    async def test_persists_across_connections(self, tmp_db: str):
        thread = make_thread()
        first = SqliteThreadStore(tmp_db)
        await first.init()
        await first.save(thread)
        await first.close()

        second = SqliteThreadStore(tmp_db)
        await second.init()
        try:
            loaded = await second.get(thread.id)
            assert loaded is not None
            assert len(loaded.segments) == 2
            assert await second.get_schema_version() == SCHEMA_VERSION
        finally:
            await second.close()

    async def test_corrupt_record(self, sqlite_store: SqliteThreadStore):
        thread = make_thread()
        await sqlite_store.save(thread)
        await sqlite_store._db.execute(
            "UPDATE segments SET messages = ? WHERE thread_id = ?", ("{not json", thread.id)
        )
        await sqlite_store._db.commit()

        with pytest.raises(ThreadStoreError) as exc_info:
            await sqlite_store.get(thread.id)
        assert exc_info.value.code == ErrorCode.CORRUPT_RECORD

    async def test_write_lock_timeout(self, tmp_db: str):
        s = SqliteThreadStore(tmp_db, lock_timeout=0.05)
        await s.init()
        try:
            async with s._lock.read():
                with pytest.raises(ThreadStoreError) as exc_info:
                    await s.save(make_thread())
            assert exc_info.value.code == ErrorCode.LOCK_TIMEOUT

            await s.save(make_thread())
        finally:
            await s.close()

    async def test_read_waits_for_save_in_progress(self, tmp_db: str):
        s = SqliteThreadStore(tmp_db, lock_timeout=5.0)
        await s.init()
        try:
            thread = make_thread(n=50)
            await s.save(thread)
            seen: set[int] = set()

            async def reader():
                for _ in range(200):
                    loaded = await s.get(thread.id)
                    seen.add(len(loaded.segments))

            async def writer():
                for _ in range(20):
                    await s.save(thread)

            await asyncio.gather(reader(), writer())
            assert seen == {50}
        finally:
            await s.close()

    async def test_unopenable_database(self, tmp_path: Path):
        target = tmp_path / "a-directory.db"
        target.mkdir()
        s = SqliteThreadStore(str(target))
        with pytest.raises(ThreadStoreError) as exc_info:
            await s.init()
        assert exc_info.value.code == ErrorCode.BACKEND_ERROR
        await s.close()


# ===================================================================
# In-memory store and locking
# ===================================================================


class TestInMemoryThreadStore:
    async def test_lock_timeout_raises(self):
        s = InMemoryThreadStore(lock_timeout=0.05)
        async with s._lock.write():
            with pytest.raises(ThreadStoreError) as exc_info:
                await s.get("T-any")
        assert exc_info.value.code == ErrorCode.LOCK_TIMEOUT
        assert await s.get("T-any") is None


class TestReadWriteLock:
    async def test_readers_share(self):
        lock = ReadWriteLock(timeout=0.05)
        async with lock.read():
            async with lock.read():
                pass

    async def test_writer_excludes_readers(self):
        lock = ReadWriteLock(timeout=0.05)
        async with lock.write():
            with pytest.raises(ThreadStoreError):
                async with lock.read():
                    pass

    async def test_readers_exclude_writer(self):
        lock = ReadWriteLock(timeout=0.05)
        async with lock.read():
            with pytest.raises(ThreadStoreError):
                async with lock.write():
                    pass

    async def test_writer_runs_after_readers_leave(self):
        lock = ReadWriteLock(timeout=1.0)
        order: list[str] = []

        async def writer():
            async with lock.write():
                order.append("write")

        async with lock.read():
            task = asyncio.create_task(writer())
            await asyncio.sleep(0.01)
            order.append("read-done")
        await task
        assert order == ["read-done", "write"]

    async def test_waiting_writer_blocks_new_readers(self):
        lock = ReadWriteLock(timeout=1.0)
        order: list[str] = []

        async def writer():
            async with lock.write():
                order.append("write")

        async def reader():
            async with lock.read():
                order.append("late-read")

        async with lock.read():
            w = asyncio.create_task(writer())
            await asyncio.sleep(0.01)
            r = asyncio.create_task(reader())
            await asyncio.sleep(0.01)
        await asyncio.gather(w, r)
        assert order == ["write", "late-read"]

    async def test_timed_out_writer_releases_readers(self):
        lock = ReadWriteLock(timeout=0.05)
        async with lock.read():
            with pytest.raises(ThreadStoreError):
                async with lock.write():
                    pass
            async with lock.read():
                pass
