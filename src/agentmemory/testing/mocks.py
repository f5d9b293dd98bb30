"""Mock collaborators for testing the memory store."""

import asyncio
from typing import Any, Optional

from ..errors import GenerationError, ProviderUnavailable, VectorIndexError
from ..interfaces import IEmbeddingProvider, VectorMatch, VectorRecord
from ..services.vector_index import InMemoryVectorIndex
from .embedding_utils import hash_to_embedding


class MockEmbeddingProvider(IEmbeddingProvider):
    """Mock embedding provider.

    Uses deterministic hashing for reproducible tests. Can be configured
    to be disabled, to fail every call, or to respond slowly.
    """

    def __init__(
        self,
        dimensions: int = 64,
        enabled: bool = True,
        fail: bool = False,
        latency_ms: float = 0,
    ):
        """Initialize mock embedding provider.

        Args:
            dimensions: Dimension of generated embeddings.
            enabled: Value reported by ``is_enabled``.
            fail: Raise GenerationError on every call.
            latency_ms: Simulated latency per call.
        """
        self.dimensions = dimensions
        self.enabled = enabled
        self.fail = fail
        self.latency_ms = latency_ms
        self.call_count = 0

    def is_enabled(self) -> bool:
        return self.enabled

    async def generate_embedding(self, text: str) -> list[float]:
        results = await self.generate_embeddings([text])
        return results[0]

    async def generate_embeddings(self, texts: list[str]) -> list[list[float]]:
        if not self.enabled:
            raise ProviderUnavailable("Embedding service not configured")
        self.call_count += 1

        if self.latency_ms > 0:
            await asyncio.sleep(self.latency_ms / 1000)

        if self.fail:
            raise GenerationError("Mock embedding API failure")

        return [hash_to_embedding(t, self.dimensions) for t in texts]


class MockVectorIndex(InMemoryVectorIndex):
    """In-memory vector index with failure injection.

    Args:
        dimensions: Expected vector dimension.
        enabled: Value reported by ``is_enabled``.
        fail_on: Operation names that raise VectorIndexError
            ("upsert", "query", "delete").
        latency_ms: Simulated latency per call.
    """

    def __init__(
        self,
        dimensions: int = 64,
        enabled: bool = True,
        fail_on: Optional[set[str]] = None,
        latency_ms: float = 0,
    ):
        super().__init__(dimensions=dimensions)
        self.enabled = enabled
        self.fail_on = set(fail_on or ())
        self.latency_ms = latency_ms
        self.calls: list[str] = []

    def is_enabled(self) -> bool:
        return self.enabled

    async def _before(self, operation: str) -> None:
        self.calls.append(operation)
        if not self.enabled:
            raise ProviderUnavailable("Vector index not configured")
        if self.latency_ms > 0:
            await asyncio.sleep(self.latency_ms / 1000)
        if operation in self.fail_on:
            raise VectorIndexError(f"Mock vector index {operation} failure")

    async def upsert(
        self,
        memory_id: str,
        vector: list[float],
        metadata: dict[str, Any],
    ) -> None:
        await self._before("upsert")
        await super().upsert(memory_id, vector, metadata)

    async def upsert_many(self, records: list[VectorRecord]) -> None:
        await self._before("upsert")
        for record in records:
            await super().upsert(record.id, record.vector, record.metadata)

    async def query(
        self,
        vector: list[float],
        top_k: int = 10,
        owner_id: Optional[str] = None,
    ) -> list[VectorMatch]:
        await self._before("query")
        return await super().query(vector, top_k=top_k, owner_id=owner_id)

    async def delete(self, memory_id: str) -> None:
        await self._before("delete")
        await super().delete(memory_id)

    async def delete_many(self, memory_ids: list[str]) -> None:
        await self._before("delete")
        await super().delete_many(memory_ids)
