"""Vector index implementations.

Provides LanceDB (persistent, local or cloud) and in-memory indexes. The
index only holds vectors and a small metadata payload keyed by memory id;
the relational repository stays the source of truth for memory content
and visibility.
"""

import asyncio
import json
import logging
import os
import re
from pathlib import Path
from typing import Any, Optional, Union

from ..errors import ProviderUnavailable, VectorIndexError
from ..interfaces import IVectorIndex, VectorMatch, VectorRecord
from ..utils import cosine_similarity

logger = logging.getLogger(__name__)

_SAFE_ID = re.compile(r'^[a-zA-Z0-9\-_]+$')


def _sanitize_id(value: str) -> str:
    """Reject memory ids that could break out of a filter expression.

    Memory ids are UUIDs: alphanumerics and hyphens only.
    """
    if not _SAFE_ID.match(value):
        raise VectorIndexError(f"Invalid id format: {value[:20]}...")
    return value


def _quote(value: str) -> str:
    """SQL string literal for a free-form value such as an owner id."""
    if "\x00" in value:
        raise VectorIndexError("Invalid value: contains NUL")
    return "'" + value.replace("'", "''") + "'"


class LanceDBVectorIndex(IVectorIndex):
    """LanceDB-backed vector index.

    Supports both local file storage and LanceDB Cloud. Disabled when
    neither ``db_path`` nor ``db_uri`` is given. LanceDB calls block, so
    each runs in a worker thread and the store's timeout can cancel the
    wait on it.
    """

    TABLE_NAME = "memory_vectors"

    def __init__(
        self,
        dimensions: int = 1536,
        db_path: Optional[Union[str, Path]] = None,
        db_uri: Optional[str] = None,
        api_key: Optional[str] = None,
        table_name: str = TABLE_NAME,
    ):
        self.dimensions = dimensions
        self.db_path = Path(db_path).expanduser() if db_path else None
        self.db_uri = db_uri
        self.api_key = api_key or os.environ.get("LANCEDB_API_KEY")
        self.table_name = table_name

        self._db = None
        self._table = None
        self._initialized = False
        self._init_lock = asyncio.Lock()

    def __repr__(self) -> str:
        where = self.db_uri or self.db_path
        return f"LanceDBVectorIndex(location={where!s}, table={self.table_name!r})"

    def is_enabled(self) -> bool:
        return self.db_path is not None or bool(self.db_uri)

    async def _ensure_initialized(self):
        """Lazily initialize database connection."""
        if self._initialized:
            return
        if not self.is_enabled():
            raise ProviderUnavailable("Vector index not configured")

        async with self._init_lock:
            if self._initialized:
                return
            try:
                await asyncio.to_thread(self._connect)
            except Exception as e:
                logger.error("Failed to connect to vector index %s: %s", self.table_name, e)
                raise VectorIndexError(f"Vector index connection failed: {e}") from e

            self._initialized = True
            logger.info("Vector index connected (table=%s)", self.table_name)

    def _connect(self) -> None:
        import lancedb
        import pyarrow as pa

        if self.db_uri:
            self._db = lancedb.connect(self.db_uri, api_key=self.api_key)
        else:
            self.db_path.mkdir(parents=True, exist_ok=True)
            self._db = lancedb.connect(str(self.db_path))

        schema = pa.schema([
            pa.field("id", pa.string()),
            pa.field("owner_id", pa.string()),
            pa.field("vector", pa.list_(pa.float32(), self.dimensions)),
            pa.field("metadata", pa.string()),
        ])
        # Opens the table when it already exists
        self._table = self._db.create_table(self.table_name, schema=schema, exist_ok=True)

    def _to_row(self, memory_id: str, vector: list[float], metadata: dict[str, Any]) -> dict:
        if len(vector) != self.dimensions:
            raise VectorIndexError(
                f"Invalid embedding dimension: got {len(vector)}, expected {self.dimensions}"
            )
        return {
            "id": _sanitize_id(memory_id),
            "owner_id": str(metadata.get("owner_id", "")),
            "vector": vector,
            "metadata": json.dumps(metadata, default=str),
        }

    async def upsert(
        self,
        memory_id: str,
        vector: list[float],
        metadata: dict[str, Any],
    ) -> None:
        await self.upsert_many([VectorRecord(id=memory_id, vector=vector, metadata=metadata)])

    async def upsert_many(self, records: list[VectorRecord]) -> None:
        if not records:
            return
        await self._ensure_initialized()

        rows = [self._to_row(r.id, r.vector, r.metadata) for r in records]
        try:
            await asyncio.to_thread(self._merge_rows, rows)
        except Exception as e:
            logger.error("Failed to upsert %d vectors: %s", len(rows), e)
            raise VectorIndexError(f"Vector upsert failed: {e}") from e
        logger.debug("Vectors upserted (count=%d)", len(rows))

    def _merge_rows(self, rows: list[dict]) -> None:
        (
            self._table.merge_insert("id")
            .when_matched_update_all()
            .when_not_matched_insert_all()
            .execute(rows)
        )

    async def query(
        self,
        vector: list[float],
        top_k: int = 10,
        owner_id: Optional[str] = None,
    ) -> list[VectorMatch]:
        await self._ensure_initialized()
        top_k = max(1, min(top_k, self.MAX_QUERY_TOP_K))
        where = f"owner_id = {_quote(owner_id)}" if owner_id is not None else None

        try:
            rows = await asyncio.to_thread(self._search, vector, top_k, where)
        except Exception as e:
            logger.error("Vector query failed (owner=%s): %s", owner_id, e)
            raise VectorIndexError(f"Vector query failed: {e}") from e

        matches = []
        for row in rows:
            # LanceDB returns squared L2 distance. For unit vectors:
            # L2² = 2 * (1 - cosine_similarity)
            distance = row.get("_distance", 0.0)
            similarity = max(-1.0, min(1.0, 1 - distance / 2))
            matches.append(VectorMatch(
                id=row["id"],
                score=similarity,
                metadata=json.loads(row.get("metadata") or "{}"),
            ))

        matches.sort(key=lambda m: m.score, reverse=True)
        return matches

    def _search(self, vector: list[float], top_k: int, where: Optional[str]) -> list[dict]:
        search = self._table.search(vector)
        if where is not None:
            search = search.where(where, prefilter=True)
        return search.limit(top_k).to_list()

    async def delete(self, memory_id: str) -> None:
        await self.delete_many([memory_id])

    async def delete_many(self, memory_ids: list[str]) -> None:
        if not memory_ids:
            return
        await self._ensure_initialized()

        quoted = ", ".join(f"'{_sanitize_id(mid)}'" for mid in memory_ids)
        try:
            await asyncio.to_thread(self._table.delete, f"id IN ({quoted})")
        except Exception as e:
            logger.error("Failed to delete %d vectors: %s", len(memory_ids), e)
            raise VectorIndexError(f"Vector delete failed: {e}") from e
        logger.debug("Vectors deleted (count=%d)", len(memory_ids))


class InMemoryVectorIndex(IVectorIndex):
    """Simple in-memory vector index for testing and single-process use."""

    def __init__(self, dimensions: int = 1536):
        self.dimensions = dimensions
        self._vectors: dict[str, tuple[list[float], dict[str, Any]]] = {}

    def is_enabled(self) -> bool:
        return True

    def __len__(self) -> int:
        return len(self._vectors)

    def __contains__(self, memory_id: str) -> bool:
        return memory_id in self._vectors

    async def upsert(
        self,
        memory_id: str,
        vector: list[float],
        metadata: dict[str, Any],
    ) -> None:
        if len(vector) != self.dimensions:
            raise VectorIndexError(
                f"Invalid embedding dimension: got {len(vector)}, expected {self.dimensions}"
            )
        self._vectors[memory_id] = (list(vector), dict(metadata))

    async def query(
        self,
        vector: list[float],
        top_k: int = 10,
        owner_id: Optional[str] = None,
    ) -> list[VectorMatch]:
        top_k = max(1, min(top_k, self.MAX_QUERY_TOP_K))
        matches = []
        for memory_id, (stored, metadata) in self._vectors.items():
            if owner_id is not None and metadata.get("owner_id") != owner_id:
                continue
            try:
                score = cosine_similarity(vector, stored)
            except ValueError as e:
                raise VectorIndexError(str(e)) from e
            matches.append(VectorMatch(id=memory_id, score=score, metadata=dict(metadata)))

        matches.sort(key=lambda m: m.score, reverse=True)
        return matches[:top_k]

    async def delete(self, memory_id: str) -> None:
        self._vectors.pop(memory_id, None)

    async def delete_many(self, memory_ids: list[str]) -> None:
        for memory_id in memory_ids:
            self._vectors.pop(memory_id, None)
