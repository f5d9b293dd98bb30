"""Core interfaces for the agent memory subsystem.

The three collaborators (embedding provider, vector index, relational
repository) are defined here as abstract base classes so that ``MemoryStore``
can be wired with real backends in production and fakes in tests.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Literal, Optional
import uuid

from .utils import cosine_similarity, utcnow

SortBy = Literal["relevance", "heat", "recency"]
RetrievalMethod = Literal["vector", "relational"]

SORT_OPTIONS: tuple[str, ...] = ("relevance", "heat", "recency")


class InteractionType(Enum):
    """Kind of forum interaction that produced a memory."""
    POST = "post"
    COMMENT = "comment"
    VOTE = "vote"
    VIEW = "view"


@dataclass
class MemoryContext:
    """Where and how a memory was formed. Immutable after creation."""
    interaction_type: Optional[InteractionType] = None
    forum_id: Optional[str] = None
    forum_name: Optional[str] = None
    post_id: Optional[str] = None
    post_title: Optional[str] = None
    comment_id: Optional[str] = None
    timestamp: datetime = field(default_factory=utcnow)


@dataclass
class MemoryMetadata:
    """Mutable retention metadata.

    Attributes:
        heat_score: Retained relevance in [0, 1]. Grows on access only.
        expires_at: Optional explicit expiry instant.
        tags: Set-like list of tags.
        is_active: False once soft-deleted. Never flips back.
    """
    heat_score: float = 0.5
    expires_at: Optional[datetime] = None
    tags: list[str] = field(default_factory=list)
    is_active: bool = True


@dataclass
class Memory:
    """A single agent memory."""
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    owner_id: str = ""
    content: str = ""
    embedding: Optional[list[float]] = None
    context: MemoryContext = field(default_factory=MemoryContext)
    metadata: MemoryMetadata = field(default_factory=MemoryMetadata)
    created_at: datetime = field(default_factory=utcnow)
    last_accessed: datetime = field(default_factory=utcnow)
    access_count: int = 0

    def __repr__(self) -> str:
        preview = self.content[:50] + "..." if len(self.content) > 50 else self.content
        return (
            f"Memory(id={self.id[:8]}..., owner={self.owner_id}, "
            f"heat={self.metadata.heat_score:.3f}, content='{preview}')"
        )


@dataclass
class CreateMemoryInput:
    """Arguments for creating a memory."""
    owner_id: str
    content: str
    context: MemoryContext = field(default_factory=MemoryContext)
    tags: list[str] = field(default_factory=list)
    expires_at: Optional[datetime] = None


@dataclass
class ContextFilter:
    """Optional equality filters on a memory's context."""
    forum_id: Optional[str] = None
    post_id: Optional[str] = None
    interaction_type: Optional[InteractionType] = None

    def matches(self, context: MemoryContext) -> bool:
        if self.forum_id is not None and context.forum_id != self.forum_id:
            return False
        if self.post_id is not None and context.post_id != self.post_id:
            return False
        if (
            self.interaction_type is not None
            and context.interaction_type != self.interaction_type
        ):
            return False
        return True


@dataclass
class MemoryQuery:
    """Search request, always scoped to one owner.

    ``limit`` and ``min_relevance`` left as None take the store's search
    defaults (10 and 0.7 unless configured otherwise).
    """
    owner_id: str
    text: Optional[str] = None
    limit: Optional[int] = None
    min_relevance: Optional[float] = None
    context_filter: Optional[ContextFilter] = None
    sort_by: SortBy = "relevance"


@dataclass
class SearchResult:
    """A memory returned by search.

    Attributes:
        memory: The memory, reflecting the access just recorded.
        score: Vector similarity on the vector path, heat score on the
            relational path.
        retrieval_method: Which path produced the result.
    """
    memory: Memory
    score: float
    retrieval_method: RetrievalMethod = "relational"

    def __repr__(self) -> str:
        return (
            f"SearchResult(score={self.score:.3f}, method={self.retrieval_method}, "
            f"memory_id={self.memory.id[:8]}...)"
        )


@dataclass
class MemoryStats:
    """Aggregate statistics for one owner."""
    total_memories: int = 0
    active_memories: int = 0
    average_heat_score: float = 0.0
    oldest_memory: Optional[datetime] = None
    newest_memory: Optional[datetime] = None
    top_contexts: list[tuple[str, int]] = field(default_factory=list)


@dataclass
class VectorMatch:
    """A single hit from a vector index query."""
    id: str
    score: float
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class VectorRecord:
    """A vector to upsert, keyed by memory id."""
    id: str
    vector: list[float]
    metadata: dict[str, Any] = field(default_factory=dict)


class IEmbeddingProvider(ABC):
    """Interface for embedding generation."""

    dimensions: int

    @abstractmethod
    def is_enabled(self) -> bool:
        """Whether the provider is configured. Performs no I/O."""
        pass

    @abstractmethod
    async def generate_embedding(self, text: str) -> list[float]:
        """Generate an embedding for one text.

        Raises:
            ProviderUnavailable: If the provider is not configured.
            GenerationError: On transport or API failure.
        """
        pass

    @abstractmethod
    async def generate_embeddings(self, texts: list[str]) -> list[list[float]]:
        """Generate embeddings for several texts in one request."""
        pass

    def cosine_similarity(self, a: list[float], b: list[float]) -> float:
        """Cosine similarity in [-1, 1].

        Raises:
            DimensionMismatch: If the vectors differ in length.
        """
        return cosine_similarity(a, b)


class IVectorIndex(ABC):
    """Interface for a vector index keyed by memory id."""

    # Largest top_k a single query may request
    MAX_QUERY_TOP_K = 10000

    dimensions: int

    @abstractmethod
    def is_enabled(self) -> bool:
        """Whether the index is configured."""
        pass

    @abstractmethod
    async def upsert(
        self,
        memory_id: str,
        vector: list[float],
        metadata: dict[str, Any],
    ) -> None:
        """Insert or replace the vector for ``memory_id``."""
        pass

    async def upsert_many(self, records: list[VectorRecord]) -> None:
        """Insert or replace several vectors.

        Default implementation upserts one at a time. Backends with a
        native batch write should override.
        """
        for record in records:
            await self.upsert(record.id, record.vector, record.metadata)

    @abstractmethod
    async def query(
        self,
        vector: list[float],
        top_k: int = 10,
        owner_id: Optional[str] = None,
    ) -> list[VectorMatch]:
        """Return up to ``top_k`` matches ranked by similarity."""
        pass

    @abstractmethod
    async def delete(self, memory_id: str) -> None:
        """Remove one vector. Missing ids are ignored."""
        pass

    @abstractmethod
    async def delete_many(self, memory_ids: list[str]) -> None:
        """Remove several vectors. Missing ids are ignored."""
        pass

    async def delete_all_for_owner(self, owner_id: str) -> int:
        """Remove every vector belonging to ``owner_id``.

        Vector backends generally have no filter-based delete, so this
        queries a zero vector filtered by owner with ``MAX_QUERY_TOP_K``
        results and deletes the returned ids.

        Known limit: an owner with more than ``MAX_QUERY_TOP_K`` vectors is
        only partially purged by one call. The remainder stays in the index
        until a later call; relational ``is_active`` still hides them from
        search results.

        Returns:
            Number of ids submitted for deletion.
        """
        dummy = [0.0] * self.dimensions
        matches = await self.query(dummy, top_k=self.MAX_QUERY_TOP_K, owner_id=owner_id)
        ids = [m.id for m in matches]
        if ids:
            await self.delete_many(ids)
        return len(ids)


class IMemoryRepository(ABC):
    """Interface for the authoritative relational store."""

    @abstractmethod
    async def insert(self, memory: Memory) -> Memory:
        """Persist a new memory row and return it as stored."""
        pass

    @abstractmethod
    async def get(self, memory_id: str) -> Optional[Memory]:
        """Fetch one active memory."""
        pass

    @abstractmethod
    async def get_many(self, memory_ids: list[str]) -> list[Memory]:
        """Fetch active memories by id. Missing or inactive ids are skipped."""
        pass

    @abstractmethod
    async def search(
        self,
        owner_id: str,
        context_filter: Optional[ContextFilter] = None,
        sort_by: SortBy = "heat",
        limit: int = 10,
    ) -> list[Memory]:
        """Active memories of an owner, filtered and ordered."""
        pass

    @abstractmethod
    async def update_access(
        self,
        memory_ids: list[str],
        accessed_at: datetime,
        growth_factor: float,
    ) -> list[Memory]:
        """Record one access on each active memory and return the updated rows."""
        pass

    @abstractmethod
    async def select_for_cleanup(
        self,
        now: datetime,
        cutoff: datetime,
        min_heat_score: float,
        batch_size: int,
    ) -> list[str]:
        """Ids of active memories that are expired, or older than ``cutoff``
        with heat below ``min_heat_score``."""
        pass

    @abstractmethod
    async def deactivate(self, memory_ids: list[str], now: datetime) -> list[str]:
        """Soft-delete memories. Returns the ids that were active before."""
        pass

    @abstractmethod
    async def deactivate_owner(self, owner_id: str, now: datetime) -> list[str]:
        """Soft-delete every active memory of an owner."""
        pass

    @abstractmethod
    async def stats(self, owner_id: str) -> MemoryStats:
        """Aggregate statistics for an owner."""
        pass

    async def close(self) -> None:
        """Release resources."""
        pass
