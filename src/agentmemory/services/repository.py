"""SQLite relational store for agent memories.

This is the authoritative copy of every memory. The vector index may hold
stale entries; visibility is decided here by ``is_active`` alone.

Nested fields (``context``, ``tags``) are stored as JSON text. Conversion
between rows and typed ``Memory`` objects happens only in this module.
"""

import asyncio
import json
import logging
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional, Union

from ..interfaces import (
    ContextFilter,
    IMemoryRepository,
    InteractionType,
    Memory,
    MemoryContext,
    MemoryMetadata,
    MemoryStats,
    SortBy,
)
from ..utils import utcnow

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS agent_memories (
    id TEXT PRIMARY KEY,
    owner_id TEXT NOT NULL,
    content TEXT NOT NULL,
    embedding TEXT,
    context TEXT NOT NULL DEFAULT '{}',
    tags TEXT NOT NULL DEFAULT '[]',
    heat_score REAL NOT NULL DEFAULT 0.5
        CHECK (heat_score >= 0 AND heat_score <= 1),
    expires_at TEXT,
    is_active INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    last_accessed TEXT NOT NULL,
    access_count INTEGER NOT NULL DEFAULT 0
);
CREATE INDEX IF NOT EXISTS idx_agent_memories_owner_active_heat
    ON agent_memories(owner_id, is_active, heat_score DESC);
CREATE INDEX IF NOT EXISTS idx_agent_memories_owner_active_created
    ON agent_memories(owner_id, is_active, created_at DESC);
CREATE INDEX IF NOT EXISTS idx_agent_memories_expires_at
    ON agent_memories(expires_at) WHERE expires_at IS NOT NULL;
"""

# Column per sort mode; "relevance" has no relational meaning and falls back to heat
_SORT_COLUMNS = {
    "heat": "heat_score",
    "recency": "created_at",
    "relevance": "heat_score",
}

# SQLite's default limit on host parameters is 999 on older builds
_MAX_PARAMS = 900


def _ts(value: Optional[datetime]) -> Optional[str]:
    """Fixed-width UTC ISO timestamps so string comparison orders correctly."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _context_to_json(context: MemoryContext) -> str:
    return json.dumps({
        "interactionType": context.interaction_type.value if context.interaction_type else None,
        "forumId": context.forum_id,
        "forumName": context.forum_name,
        "postId": context.post_id,
        "postTitle": context.post_title,
        "commentId": context.comment_id,
        "timestamp": _ts(context.timestamp),
    })


def _context_from_json(raw: str) -> MemoryContext:
    data = json.loads(raw or "{}")
    interaction = data.get("interactionType")
    return MemoryContext(
        interaction_type=InteractionType(interaction) if interaction else None,
        forum_id=data.get("forumId"),
        forum_name=data.get("forumName"),
        post_id=data.get("postId"),
        post_title=data.get("postTitle"),
        comment_id=data.get("commentId"),
        timestamp=_parse_ts(data.get("timestamp")) or utcnow(),
    )


def _row_to_memory(row: sqlite3.Row) -> Memory:
    return Memory(
        id=row["id"],
        owner_id=row["owner_id"],
        content=row["content"],
        embedding=json.loads(row["embedding"]) if row["embedding"] else None,
        context=_context_from_json(row["context"]),
        metadata=MemoryMetadata(
            heat_score=row["heat_score"],
            expires_at=_parse_ts(row["expires_at"]),
            tags=json.loads(row["tags"] or "[]"),
            is_active=bool(row["is_active"]),
        ),
        created_at=_parse_ts(row["created_at"]),
        last_accessed=_parse_ts(row["last_accessed"]),
        access_count=row["access_count"],
    )


class SQLiteMemoryRepository(IMemoryRepository):
    """SQLite-backed memory repository.

    Connection management:
        Uses a persistent SQLite connection with WAL mode for better
        concurrency. Thread-safe with an RLock protecting database
        operations. Blocking calls run in a worker thread via
        ``asyncio.to_thread`` so the event loop is never blocked.

        Lifecycle:
            repo = SQLiteMemoryRepository(db_path)
            try:
                await repo.insert(memory)
            finally:
                await repo.close()
    """

    def __init__(self, db_path: Union[str, Path] = ":memory:"):
        """Initialize repository with SQLite database.

        Args:
            db_path: Path to the SQLite database file, or ":memory:".
        """
        self.db_path = str(db_path)
        if self.db_path != ":memory:":
            Path(self.db_path).expanduser().parent.mkdir(parents=True, exist_ok=True)
            self.db_path = str(Path(self.db_path).expanduser())

        self._conn: Optional[sqlite3.Connection] = sqlite3.connect(
            self.db_path,
            check_same_thread=False,
        )
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.RLock()

        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(_SCHEMA)
        self._conn.commit()

    def __repr__(self) -> str:
        return f"SQLiteMemoryRepository(db_path={self.db_path!r})"

    async def _run(self, fn, *args: Any) -> Any:
        return await asyncio.to_thread(fn, *args)

    def _select_active(self, memory_ids: list[str]) -> list[Memory]:
        """Active rows for ``memory_ids``, in the order the ids were given."""
        by_id: dict[str, Memory] = {}
        for start in range(0, len(memory_ids), _MAX_PARAMS):
            chunk = memory_ids[start:start + _MAX_PARAMS]
            placeholders = ", ".join("?" for _ in chunk)
            rows = self._conn.execute(
                f"SELECT * FROM agent_memories WHERE is_active = 1 AND id IN ({placeholders})",
                chunk,
            ).fetchall()
            for row in rows:
                by_id[row["id"]] = _row_to_memory(row)
        return [by_id[mid] for mid in dict.fromkeys(memory_ids) if mid in by_id]

    # -- writes ---------------------------------------------------------------

    def _insert(self, memory: Memory) -> Memory:
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO agent_memories (
                    id, owner_id, content, embedding, context, tags,
                    heat_score, expires_at, is_active, created_at, updated_at,
                    last_accessed, access_count
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    memory.id,
                    memory.owner_id,
                    memory.content,
                    json.dumps(memory.embedding) if memory.embedding is not None else None,
                    _context_to_json(memory.context),
                    json.dumps(memory.metadata.tags),
                    memory.metadata.heat_score,
                    _ts(memory.metadata.expires_at),
                    1 if memory.metadata.is_active else 0,
                    _ts(memory.created_at),
                    _ts(memory.created_at),
                    _ts(memory.last_accessed),
                    memory.access_count,
                ),
            )
            self._conn.commit()
            row = self._conn.execute(
                "SELECT * FROM agent_memories WHERE id = ?", (memory.id,)
            ).fetchone()
        return _row_to_memory(row)

    async def insert(self, memory: Memory) -> Memory:
        return await self._run(self._insert, memory)

    def _update_access(
        self,
        memory_ids: list[str],
        accessed_at: datetime,
        growth_factor: float,
    ) -> list[Memory]:
        unique_ids = list(dict.fromkeys(memory_ids))
        with self._lock:
            for start in range(0, len(unique_ids), _MAX_PARAMS):
                chunk = unique_ids[start:start + _MAX_PARAMS]
                placeholders = ", ".join("?" for _ in chunk)
                self._conn.execute(
                    f"""
                    UPDATE agent_memories
                    SET last_accessed = ?,
                        access_count = access_count + 1,
                        heat_score = MIN(heat_score * ?, 1.0)
                    WHERE is_active = 1 AND id IN ({placeholders})
                    """,
                    [_ts(accessed_at), growth_factor, *chunk],
                )
            self._conn.commit()
            return self._select_active(memory_ids)

    async def update_access(
        self,
        memory_ids: list[str],
        accessed_at: datetime,
        growth_factor: float,
    ) -> list[Memory]:
        if not memory_ids:
            return []
        return await self._run(self._update_access, memory_ids, accessed_at, growth_factor)

    def _deactivate(self, memory_ids: list[str], now: datetime) -> list[str]:
        changed: list[str] = []
        unique_ids = list(dict.fromkeys(memory_ids))
        with self._lock:
            for start in range(0, len(unique_ids), _MAX_PARAMS):
                chunk = unique_ids[start:start + _MAX_PARAMS]
                placeholders = ", ".join("?" for _ in chunk)
                rows = self._conn.execute(
                    f"SELECT id FROM agent_memories WHERE is_active = 1 AND id IN ({placeholders})",
                    chunk,
                ).fetchall()
                ids = [row["id"] for row in rows]
                if not ids:
                    continue
                placeholders = ", ".join("?" for _ in ids)
                self._conn.execute(
                    f"""
                    UPDATE agent_memories
                    SET is_active = 0, updated_at = ?
                    WHERE is_active = 1 AND id IN ({placeholders})
                    """,
                    [_ts(now), *ids],
                )
                changed.extend(ids)
            self._conn.commit()
        return changed

    async def deactivate(self, memory_ids: list[str], now: datetime) -> list[str]:
        if not memory_ids:
            return []
        return await self._run(self._deactivate, memory_ids, now)

    def _deactivate_owner(self, owner_id: str, now: datetime) -> list[str]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT id FROM agent_memories WHERE owner_id = ? AND is_active = 1",
                (owner_id,),
            ).fetchall()
            return self._deactivate([row["id"] for row in rows], now)

    async def deactivate_owner(self, owner_id: str, now: datetime) -> list[str]:
        return await self._run(self._deactivate_owner, owner_id, now)

    # -- reads ----------------------------------------------------------------

    def _get(self, memory_id: str) -> Optional[Memory]:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM agent_memories WHERE id = ? AND is_active = 1",
                (memory_id,),
            ).fetchone()
        return _row_to_memory(row) if row else None

    async def get(self, memory_id: str) -> Optional[Memory]:
        return await self._run(self._get, memory_id)

    def _get_many(self, memory_ids: list[str]) -> list[Memory]:
        with self._lock:
            return self._select_active(memory_ids)

    async def get_many(self, memory_ids: list[str]) -> list[Memory]:
        if not memory_ids:
            return []
        return await self._run(self._get_many, memory_ids)

    def _search(
        self,
        owner_id: str,
        context_filter: Optional[ContextFilter],
        sort_by: SortBy,
        limit: int,
    ) -> list[Memory]:
        sql = "SELECT * FROM agent_memories WHERE owner_id = ? AND is_active = 1"
        params: list[Any] = [owner_id]

        if context_filter is not None:
            if context_filter.forum_id is not None:
                sql += " AND json_extract(context, '$.forumId') = ?"
                params.append(context_filter.forum_id)
            if context_filter.post_id is not None:
                sql += " AND json_extract(context, '$.postId') = ?"
                params.append(context_filter.post_id)
            if context_filter.interaction_type is not None:
                sql += " AND json_extract(context, '$.interactionType') = ?"
                params.append(context_filter.interaction_type.value)

        column = _SORT_COLUMNS.get(sort_by, "heat_score")
        sql += f" ORDER BY {column} DESC, created_at DESC LIMIT ?"
        params.append(limit)

        with self._lock:
            rows = self._conn.execute(sql, params).fetchall()
        return [_row_to_memory(row) for row in rows]

    async def search(
        self,
        owner_id: str,
        context_filter: Optional[ContextFilter] = None,
        sort_by: SortBy = "heat",
        limit: int = 10,
    ) -> list[Memory]:
        return await self._run(self._search, owner_id, context_filter, sort_by, limit)

    def _select_for_cleanup(
        self,
        now: datetime,
        cutoff: datetime,
        min_heat_score: float,
        batch_size: int,
    ) -> list[str]:
        with self._lock:
            rows = self._conn.execute(
                """
                SELECT id FROM agent_memories
                WHERE is_active = 1
                AND (
                    (expires_at IS NOT NULL AND expires_at < ?)
                    OR (created_at < ? AND heat_score < ?)
                )
                LIMIT ?
                """,
                (_ts(now), _ts(cutoff), min_heat_score, batch_size),
            ).fetchall()
        return [row["id"] for row in rows]

    async def select_for_cleanup(
        self,
        now: datetime,
        cutoff: datetime,
        min_heat_score: float,
        batch_size: int,
    ) -> list[str]:
        return await self._run(
            self._select_for_cleanup, now, cutoff, min_heat_score, batch_size
        )

    def _stats(self, owner_id: str) -> MemoryStats:
        with self._lock:
            row = self._conn.execute(
                """
                SELECT
                    COUNT(*) AS total_memories,
                    COALESCE(SUM(is_active), 0) AS active_memories,
                    AVG(heat_score) AS avg_heat_score,
                    MIN(created_at) AS oldest_memory,
                    MAX(created_at) AS newest_memory
                FROM agent_memories
                WHERE owner_id = ?
                """,
                (owner_id,),
            ).fetchone()
            context_rows = self._conn.execute(
                """
                SELECT json_extract(context, '$.interactionType') AS type,
                       COUNT(*) AS count
                FROM agent_memories
                WHERE owner_id = ? AND is_active = 1
                  AND json_extract(context, '$.interactionType') IS NOT NULL
                GROUP BY type
                ORDER BY count DESC, type ASC
                LIMIT 5
                """,
                (owner_id,),
            ).fetchall()

        return MemoryStats(
            total_memories=row["total_memories"],
            active_memories=row["active_memories"],
            average_heat_score=row["avg_heat_score"] or 0.0,
            oldest_memory=_parse_ts(row["oldest_memory"]),
            newest_memory=_parse_ts(row["newest_memory"]),
            top_contexts=[(r["type"], r["count"]) for r in context_rows],
        )

    async def stats(self, owner_id: str) -> MemoryStats:
        return await self._run(self._stats, owner_id)

    async def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
