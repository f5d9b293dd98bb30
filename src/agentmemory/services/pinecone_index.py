"""Pinecone vector index over the data-plane REST API."""

import logging
import os
from typing import Any, Optional

import httpx

from ..errors import ProviderUnavailable, VectorIndexError
from ..interfaces import IVectorIndex, VectorMatch, VectorRecord

logger = logging.getLogger(__name__)


class PineconeVectorIndex(IVectorIndex):
    """Pinecone-backed vector index.

    Talks to the index host directly (``https://<index>-<project>.svc...``)
    with ``httpx``. Pinecone has no filter-based delete on serverless
    indexes, so ``delete_all_for_owner`` uses the bounded query-then-delete
    from :class:`IVectorIndex`.

    Usage:
        index = PineconeVectorIndex(
            api_key="pc-...",
            host="https://memories-abc123.svc.us-east-1.pinecone.io",
        )
    """

    API_VERSION = "2025-01"
    # Pinecone caps upsert requests at 1000 vectors and delete requests at 1000 ids
    MAX_BATCH = 1000
    # Queries returning metadata are capped lower than id-only queries
    MAX_METADATA_TOP_K = 1000

    def __init__(
        self,
        api_key: Optional[str] = None,
        host: Optional[str] = None,
        namespace: str = "",
        dimensions: int = 1536,
        timeout_seconds: float = 30.0,
    ):
        self.api_key = api_key or os.environ.get("PINECONE_API_KEY")
        self.host = self._resolve_host(host or os.environ.get("PINECONE_INDEX_HOST"))
        self.namespace = namespace
        self.dimensions = dimensions
        self.timeout_seconds = timeout_seconds

        self._client: Optional[httpx.AsyncClient] = None

        if self.is_enabled():
            logger.info("Vector index service initialized (host=%s)", self.host)
        else:
            logger.warning("Vector index disabled - PINECONE_API_KEY or index host not configured")

    @staticmethod
    def _resolve_host(host: Optional[str]) -> Optional[str]:
        if host is None or host.strip() == "":
            return None
        host = host.strip().rstrip("/")
        if not host.startswith(("http://", "https://")):
            host = f"https://{host}"
        return host

    def __repr__(self) -> str:
        return f"PineconeVectorIndex(host={self.host!r}, api_key=***)"

    def is_enabled(self) -> bool:
        return bool(self.api_key) and bool(self.host)

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if not self.is_enabled():
            raise ProviderUnavailable("Vector index not configured")
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.host,
                timeout=httpx.Timeout(self.timeout_seconds),
                headers={
                    "Api-Key": self.api_key,
                    "Content-Type": "application/json",
                    "X-Pinecone-API-Version": self.API_VERSION,
                },
            )
        return self._client

    async def _post(self, path: str, payload: dict) -> dict:
        client = await self._get_client()
        try:
            response = await client.post(path, json=payload)
        except httpx.TimeoutException as e:
            raise VectorIndexError(f"Vector index request timed out: {path}") from e
        except httpx.RequestError as e:
            raise VectorIndexError(f"Vector index request failed: {e}") from e

        if response.status_code != 200:
            try:
                detail = response.json().get("message", response.text)
            except Exception:
                detail = response.text[:200]
            raise VectorIndexError(
                f"Vector index error ({response.status_code}) on {path}: {detail}"
            )
        if not response.content:
            return {}
        return response.json()

    async def upsert(
        self,
        memory_id: str,
        vector: list[float],
        metadata: dict[str, Any],
    ) -> None:
        await self.upsert_many([VectorRecord(id=memory_id, vector=vector, metadata=metadata)])

    async def upsert_many(self, records: list[VectorRecord]) -> None:
        for record in records:
            if len(record.vector) != self.dimensions:
                raise VectorIndexError(
                    f"Invalid embedding dimension: got {len(record.vector)}, "
                    f"expected {self.dimensions}"
                )

        for start in range(0, len(records), self.MAX_BATCH):
            batch = records[start:start + self.MAX_BATCH]
            payload: dict[str, Any] = {
                "vectors": [
                    {"id": r.id, "values": r.vector, "metadata": _flatten(r.metadata)}
                    for r in batch
                ],
            }
            if self.namespace:
                payload["namespace"] = self.namespace
            try:
                await self._post("/vectors/upsert", payload)
            except VectorIndexError as e:
                logger.error("Failed to upsert %d vectors: %s", len(batch), e)
                raise
            logger.debug("Vectors upserted (count=%d)", len(batch))

    async def query(
        self,
        vector: list[float],
        top_k: int = 10,
        owner_id: Optional[str] = None,
    ) -> list[VectorMatch]:
        return await self._query(vector, top_k, owner_id, include_metadata=True)

    async def _query(
        self,
        vector: list[float],
        top_k: int,
        owner_id: Optional[str],
        include_metadata: bool,
    ) -> list[VectorMatch]:
        limit = self.MAX_METADATA_TOP_K if include_metadata else self.MAX_QUERY_TOP_K
        payload: dict[str, Any] = {
            "vector": vector,
            "topK": max(1, min(top_k, limit)),
            "includeMetadata": include_metadata,
            "includeValues": False,
        }
        if owner_id is not None:
            payload["filter"] = {"owner_id": {"$eq": owner_id}}
        if self.namespace:
            payload["namespace"] = self.namespace

        try:
            data = await self._post("/query", payload)
        except VectorIndexError as e:
            logger.error("Failed to search similar memories (owner=%s): %s", owner_id, e)
            raise

        matches = [
            VectorMatch(
                id=m["id"],
                score=float(m.get("score") or 0.0),
                metadata=m.get("metadata") or {},
            )
            for m in data.get("matches", [])
        ]
        logger.debug(
            "Similar memories found (owner=%s, count=%d, top_score=%s)",
            owner_id,
            len(matches),
            matches[0].score if matches else None,
        )
        return matches

    async def delete(self, memory_id: str) -> None:
        await self.delete_many([memory_id])

    async def delete_many(self, memory_ids: list[str]) -> None:
        for start in range(0, len(memory_ids), self.MAX_BATCH):
            batch = memory_ids[start:start + self.MAX_BATCH]
            payload: dict[str, Any] = {"ids": batch}
            if self.namespace:
                payload["namespace"] = self.namespace
            try:
                await self._post("/vectors/delete", payload)
            except VectorIndexError as e:
                logger.error("Failed to delete %d vectors: %s", len(batch), e)
                raise
            logger.debug("Vectors deleted (count=%d)", len(batch))

    async def delete_all_for_owner(self, owner_id: str) -> int:
        """Query ids only so the full ``MAX_QUERY_TOP_K`` window is allowed.

        Same bounded-result limit as :meth:`IVectorIndex.delete_all_for_owner`.
        """
        dummy = [0.0] * self.dimensions
        matches = await self._query(
            dummy, self.MAX_QUERY_TOP_K, owner_id, include_metadata=False
        )
        ids = [m.id for m in matches]
        if ids:
            await self.delete_many(ids)
        return len(ids)

    async def close(self):
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()


def _flatten(metadata: dict[str, Any]) -> dict[str, Any]:
    """Pinecone metadata values must be strings, numbers, booleans or
    lists of strings. Drop nulls and stringify everything else."""
    flat: dict[str, Any] = {}
    for key, value in metadata.items():
        if value is None:
            continue
        if isinstance(value, (str, bool, int, float)):
            flat[key] = value
        elif isinstance(value, (list, tuple)):
            flat[key] = [str(v) for v in value]
        else:
            flat[key] = str(value)
    return flat
