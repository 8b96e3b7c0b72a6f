"""
Thread persistence.

:class:`ThreadStore` is the contract the session layer depends on.  Two
implementations are provided:

- :class:`InMemoryThreadStore` for tests and ephemeral use, guarded by a
  reader/writer lock.
- :class:`SqliteThreadStore`, backed by ``aiosqlite``.  Reads and writes
  share one connection, so the same reader/writer lock keeps a read from
  landing between the statements of a save.  Schema is version-tracked
  via a ``schema_version`` table and migrations are applied automatically
  on ``init()``.

Stores keep snapshots: a saved thread is serialized, and ``get`` always
returns a fresh object.  Lock timeouts and backend failures are raised as
:class:`~agentctx.types.ThreadStoreError`.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, AsyncIterator

import aiosqlite

from agentctx.session.locks import ReadWriteLock
from agentctx.session.thread import AgentThread
from agentctx.types import ErrorCode, ThreadStoreError, ThreadSummary


class ThreadStore(ABC):
    """Persistence contract for agent threads."""

    @abstractmethod
    async def get(self, thread_id: str) -> AgentThread | None:
        """Return the thread, or ``None`` if it does not exist."""

    @abstractmethod
    async def save(self, thread: AgentThread) -> None:
        """Insert or replace the thread."""

    @abstractmethod
    async def delete(self, thread_id: str) -> None:
        """Delete the thread.  Deleting an unknown id is a no-op."""

    @abstractmethod
    async def list(self) -> list[str]:
        """Return all stored thread ids."""

    @abstractmethod
    async def list_summary(self) -> list[ThreadSummary]:
        """Return thread summaries, most recently updated first."""


def _summary(data: dict[str, Any]) -> ThreadSummary:
    return ThreadSummary(
        id=data["id"],
        title=data["title"],
        model=data["model"],
        updated_at=datetime.fromisoformat(data["updated_at"]),
        segment_count=len(data["segments"]),
    )


# ---------------------------------------------------------------------------
# In-memory store
# ---------------------------------------------------------------------------


class InMemoryThreadStore(ThreadStore):
    """
    Process-local store.

    Parameters
    ----------
    lock_timeout:
        Seconds to wait for the reader/writer lock before failing.
    """

    def __init__(self, lock_timeout: float | None = 5.0) -> None:
        self._threads: dict[str, dict[str, Any]] = {}
        self._lock = ReadWriteLock(timeout=lock_timeout)

    async def get(self, thread_id: str) -> AgentThread | None:
        async with self._lock.read():
            data = self._threads.get(thread_id)
        if data is None:
            return None
        return AgentThread.from_dict(data)

    async def save(self, thread: AgentThread) -> None:
        # json round-trip gives a deep, detached snapshot.
        snapshot = json.loads(json.dumps(thread.to_dict()))
        async with self._lock.write():
            self._threads[thread.id] = snapshot

    async def delete(self, thread_id: str) -> None:
        async with self._lock.write():
            self._threads.pop(thread_id, None)

    async def list(self) -> list[str]:
        async with self._lock.read():
            return list(self._threads)

    async def list_summary(self) -> list[ThreadSummary]:
        async with self._lock.read():
            summaries = [_summary(d) for d in self._threads.values()]
        summaries.sort(key=lambda s: s.updated_at, reverse=True)
        return summaries


# ---------------------------------------------------------------------------
# Schema management
# ---------------------------------------------------------------------------

SCHEMA_VERSION = 1

MIGRATIONS: dict[int, list[str]] = {
    1: [
        """CREATE TABLE IF NOT EXISTS schema_version (
            version INTEGER NOT NULL
        )""",
        """CREATE TABLE IF NOT EXISTS threads (
            thread_id TEXT PRIMARY KEY,
            title TEXT NOT NULL,
            model TEXT NOT NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            next_sequence INTEGER NOT NULL DEFAULT 0,
            metadata TEXT NOT NULL DEFAULT '{}'
        )""",
        """CREATE TABLE IF NOT EXISTS segments (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            thread_id TEXT NOT NULL,
            sequence INTEGER NOT NULL,
            kind TEXT NOT NULL,
            messages TEXT NOT NULL,
            UNIQUE (thread_id, sequence),
            FOREIGN KEY (thread_id) REFERENCES threads(thread_id) ON DELETE CASCADE
        )""",
        """CREATE INDEX IF NOT EXISTS idx_segments_thread ON segments(thread_id)""",
        """CREATE INDEX IF NOT EXISTS idx_threads_updated ON threads(updated_at)""",
    ],
}


# ---------------------------------------------------------------------------
# SQLite store
# ---------------------------------------------------------------------------


class SqliteThreadStore(ThreadStore):
    """
    Async SQLite store for threads and their segments.

    Usage::

        store = SqliteThreadStore("~/.agentctx/threads.db")
        await store.init()
        await store.save(thread)
        thread = await store.get(thread.id)
        await store.close()
    """

    def __init__(self, db_path: str, lock_timeout: float | None = 5.0) -> None:
        self.db_path = Path(db_path).expanduser().resolve()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.lock_timeout = lock_timeout
        self._lock = ReadWriteLock(timeout=lock_timeout)
        self._db: aiosqlite.Connection | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def init(self) -> None:
        """Open the database and ensure the schema is up to date."""
        try:
            self._db = await aiosqlite.connect(str(self.db_path))
            await self._db.execute("PRAGMA journal_mode=WAL")
            await self._db.execute("PRAGMA foreign_keys=ON")
            await self._run_migrations()
        except aiosqlite.Error as exc:
            raise ThreadStoreError(f"Failed to open thread database {self.db_path}: {exc}") from exc

    async def close(self) -> None:
        """Close the database connection."""
        if self._db is not None:
            await self._db.close()
            self._db = None

    # ------------------------------------------------------------------
    # Migration runner
    # ------------------------------------------------------------------

    async def _get_schema_version(self) -> int:
        """Return the current schema version, or 0 if not initialised."""
        assert self._db is not None
        cursor = await self._db.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name='schema_version'"
        )
        row = await cursor.fetchone()
        if row is None:
            return 0
        cursor = await self._db.execute("SELECT version FROM schema_version LIMIT 1")
        row = await cursor.fetchone()
        if row is None:
            return 0
        return int(row[0])

    async def _set_schema_version(self, version: int) -> None:
        assert self._db is not None
        cursor = await self._db.execute("SELECT COUNT(*) FROM schema_version")
        row = await cursor.fetchone()
        assert row is not None
        if row[0] == 0:
            await self._db.execute(
                "INSERT INTO schema_version (version) VALUES (?)", (version,)
            )
        else:
            await self._db.execute(
                "UPDATE schema_version SET version = ?", (version,)
            )

    async def _run_migrations(self) -> None:
        """Apply any pending migrations sequentially."""
        assert self._db is not None
        current = await self._get_schema_version()
        if current >= SCHEMA_VERSION:
            return

        for version in range(current + 1, SCHEMA_VERSION + 1):
            stmts = MIGRATIONS.get(version)
            if stmts is None:
                raise RuntimeError(f"Missing migration for schema version {version}")
            for stmt in stmts:
                await self._db.execute(stmt)
            await self._set_schema_version(version)

        await self._db.commit()

    async def get_schema_version(self) -> int:
        """Public accessor for the current schema version."""
        return await self._get_schema_version()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _writing(self, action: str) -> AsyncIterator[aiosqlite.Connection]:
        """Hold the write lock (bounded) and translate backend failures."""
        assert self._db is not None
        async with self._lock.write():
            try:
                yield self._db
                await self._db.commit()
            except aiosqlite.Error as exc:
                await self._db.rollback()
                raise ThreadStoreError(f"Failed to {action}: {exc}") from exc

    # ------------------------------------------------------------------
    # ThreadStore API
    # ------------------------------------------------------------------

    async def get(self, thread_id: str) -> AgentThread | None:
        assert self._db is not None
        async with self._lock.read():
            try:
                cursor = await self._db.execute(
                    """SELECT thread_id, title, model, created_at, updated_at,
                              next_sequence, metadata
                       FROM threads WHERE thread_id = ?""",
                    (thread_id,),
                )
                row = await cursor.fetchone()
                if row is None:
                    return None
                cursor = await self._db.execute(
                    """SELECT sequence, kind, messages
                       FROM segments WHERE thread_id = ?
                       ORDER BY sequence ASC""",
                    (thread_id,),
                )
                seg_rows = await cursor.fetchall()
            except aiosqlite.Error as exc:
                raise ThreadStoreError(f"Failed to load thread {thread_id}: {exc}") from exc

        try:
            return AgentThread.from_dict(
                {
                    "id": row[0],
                    "title": row[1],
                    "model": row[2],
                    "created_at": row[3],
                    "updated_at": row[4],
                    "next_sequence": row[5],
                    "metadata": json.loads(row[6]),
                    "segments": [
                        {
                            "sequence": s[0],
                            "kind": s[1],
                            "messages": json.loads(s[2]),
                        }
                        for s in seg_rows
                    ],
                }
            )
        except (KeyError, ValueError, TypeError) as exc:
            raise ThreadStoreError(
                f"Corrupt record for thread {thread_id}: {exc}",
                code=ErrorCode.CORRUPT_RECORD,
            ) from exc

    async def save(self, thread: AgentThread) -> None:
        data = thread.to_dict()
        seg_rows = [
            (
                data["id"],
                s["sequence"],
                s["kind"],
                json.dumps(s["messages"]),
            )
            for s in data["segments"]
        ]
        async with self._writing(f"save thread {thread.id}") as db:
            await db.execute(
                """INSERT INTO threads
                   (thread_id, title, model, created_at, updated_at, next_sequence, metadata)
                   VALUES (?, ?, ?, ?, ?, ?, ?)
                   ON CONFLICT(thread_id) DO UPDATE SET
                       title = excluded.title,
                       model = excluded.model,
                       updated_at = excluded.updated_at,
                       next_sequence = excluded.next_sequence,
                       metadata = excluded.metadata""",
                (
                    data["id"],
                    data["title"],
                    data["model"],
                    data["created_at"],
                    data["updated_at"],
                    data["next_sequence"],
                    json.dumps(data["metadata"]),
                ),
            )
            await db.execute("DELETE FROM segments WHERE thread_id = ?", (data["id"],))
            await db.executemany(
                """INSERT INTO segments
                   (thread_id, sequence, kind, messages)
                   VALUES (?, ?, ?, ?)""",
                seg_rows,
            )

    async def delete(self, thread_id: str) -> None:
        async with self._writing(f"delete thread {thread_id}") as db:
            # Cascade should handle segments; explicit for portability.
            await db.execute("DELETE FROM segments WHERE thread_id = ?", (thread_id,))
            await db.execute("DELETE FROM threads WHERE thread_id = ?", (thread_id,))

    async def list(self) -> list[str]:
        assert self._db is not None
        async with self._lock.read():
            try:
                cursor = await self._db.execute("SELECT thread_id FROM threads")
                rows = await cursor.fetchall()
            except aiosqlite.Error as exc:
                raise ThreadStoreError(f"Failed to list threads: {exc}") from exc
        return [row[0] for row in rows]

    async def list_summary(self) -> list[ThreadSummary]:
        assert self._db is not None
        async with self._lock.read():
            try:
                cursor = await self._db.execute(
                    """SELECT t.thread_id, t.title, t.model, t.updated_at,
                              (SELECT COUNT(*) FROM segments s WHERE s.thread_id = t.thread_id)
                       FROM threads t
                       ORDER BY t.updated_at DESC"""
                )
                rows = await cursor.fetchall()
            except aiosqlite.Error as exc:
                raise ThreadStoreError(f"Failed to list threads: {exc}") from exc
        return [
            ThreadSummary(
                id=row[0],
                title=row[1],
                model=row[2],
                updated_at=datetime.fromisoformat(row[3]),
                segment_count=int(row[4]),
            )
            for row in rows
        ]
