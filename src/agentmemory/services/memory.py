"""Memory Store - main API for agent memories.

Orchestrates the relational repository (authoritative), the embedding
provider and the vector index (both best-effort). Heat score grows on every
successful read and is the retention signal used by cleanup.
"""

import asyncio
import logging
from dataclasses import dataclass, replace
from datetime import timedelta, timezone
from typing import Any, Awaitable, Generic, Optional, TypeVar
import uuid

from ..config import CleanupConfig, MemoryConfig, SearchConfig
from ..errors import NotFoundError, ValidationError
from ..interfaces import (
    SORT_OPTIONS,
    CreateMemoryInput,
    IEmbeddingProvider,
    IMemoryRepository,
    InteractionType,
    IVectorIndex,
    Memory,
    MemoryContext,
    MemoryMetadata,
    MemoryQuery,
    MemoryStats,
    SearchResult,
    VectorRecord,
)
from ..utils import utcnow

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Heat score multiplier applied on every access
HEAT_GROWTH_FACTOR = 1.1
BASE_HEAT_SCORE = 0.5
MAX_HEAT_SCORE = 1.0


@dataclass
class StepResult(Generic[T]):
    """Outcome of a best-effort step: a value, or the error that was ignored."""
    value: Optional[T] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def calculate_initial_heat_score(content: str, context: MemoryContext) -> float:
    """Initial heat from content length and interaction type.

    Base 0.5; +0.1 above 500 characters and another +0.1 above 1000;
    +0.2 for posts, +0.1 for comments; capped at 1.0.
    """
    score = BASE_HEAT_SCORE

    if len(content) > 500:
        score += 0.1
    if len(content) > 1000:
        score += 0.1

    if context.interaction_type == InteractionType.POST:
        score += 0.2
    elif context.interaction_type == InteractionType.COMMENT:
        score += 0.1

    # Stored at 0.001 precision
    return round(min(score, MAX_HEAT_SCORE), 3)


class MemoryStore:
    """Relevance-ranked, persistent memory store for agents.

    Usage:
        store = MemoryStore(
            repository=SQLiteMemoryRepository("memories.db"),
            embedding_provider=OpenAIEmbeddingService(),
            vector_index=LanceDBVectorIndex(db_path="vectors"),
        )

        memory = await store.create_memory(CreateMemoryInput(
            owner_id="agent-1",
            content="Discussed caching strategies",
            context=MemoryContext(interaction_type=InteractionType.POST),
        ))
        results = await store.search_memories(
            MemoryQuery(owner_id="agent-1", text="caching")
        )

    Either collaborator may be omitted or unconfigured; the store then runs
    on the relational repository alone.
    """

    def __init__(
        self,
        repository: IMemoryRepository,
        embedding_provider: Optional[IEmbeddingProvider] = None,
        vector_index: Optional[IVectorIndex] = None,
        cleanup_config: Optional[CleanupConfig] = None,
        search_config: Optional[SearchConfig] = None,
        operation_timeout: Optional[float] = None,
    ):
        self.repository = repository
        self.embedding_provider = embedding_provider
        self.vector_index = vector_index
        self.cleanup_config = cleanup_config or CleanupConfig()
        self.search_config = search_config or SearchConfig()
        self.operation_timeout = operation_timeout

        if self.vector_search_enabled:
            logger.info("Memory store initialized with vector search")
        else:
            logger.warning("Memory store running without vector search")

    # -- capabilities ---------------------------------------------------------

    @property
    def embedding_enabled(self) -> bool:
        return self.embedding_provider is not None and self.embedding_provider.is_enabled()

    @property
    def index_enabled(self) -> bool:
        return self.vector_index is not None and self.vector_index.is_enabled()

    @property
    def vector_search_enabled(self) -> bool:
        return self.embedding_enabled and self.index_enabled

    # -- best-effort helpers --------------------------------------------------

    async def _bounded(self, call: Awaitable[T]) -> T:
        """Await an external call under the store's operation timeout."""
        if self.operation_timeout is None:
            return await call
        return await asyncio.wait_for(call, timeout=self.operation_timeout)

    async def _attempt(self, step: str, call: Awaitable[T], **log_context: Any) -> StepResult[T]:
        """Run a non-critical external call, logging and returning any failure."""
        details = ", ".join(f"{k}={v}" for k, v in log_context.items())
        try:
            value = await self._bounded(call)
        except asyncio.TimeoutError as e:
            logger.warning(
                "%s timed out after %ss (%s)", step, self.operation_timeout, details
            )
            return StepResult(error=e)
        except Exception as e:
            logger.warning("%s failed (%s): %s", step, details, e)
            return StepResult(error=e)
        return StepResult(value=value)

    @staticmethod
    def _vector_metadata(memory: Memory) -> dict[str, Any]:
        context = memory.context
        return {
            "owner_id": memory.owner_id,
            "interaction_type": context.interaction_type.value if context.interaction_type else None,
            "forum_id": context.forum_id,
            "post_id": context.post_id,
            "tags": list(memory.metadata.tags),
            "created_at": memory.created_at.isoformat(),
        }

    # -- creation -------------------------------------------------------------

    def _build_memory(self, data: CreateMemoryInput) -> Memory:
        """Validate input and build an unsaved memory."""
        if not data.owner_id or not str(data.owner_id).strip():
            raise ValidationError("owner_id is required")
        if not data.content or not data.content.strip():
            raise ValidationError("content is required")

        context = data.context or MemoryContext()
        if context.interaction_type is not None and not isinstance(
            context.interaction_type, InteractionType
        ):
            try:
                interaction_type = InteractionType(context.interaction_type)
            except ValueError:
                raise ValidationError(
                    f"Invalid interaction type: {context.interaction_type}"
                )
            context = replace(context, interaction_type=interaction_type)

        expires_at = data.expires_at
        if expires_at is not None:
            if expires_at.tzinfo is None:
                expires_at = expires_at.replace(tzinfo=timezone.utc)
            expires_at = expires_at.astimezone(timezone.utc)

        tags = list(dict.fromkeys(t.strip() for t in (data.tags or []) if t and t.strip()))
        now = utcnow()

        return Memory(
            id=str(uuid.uuid4()),
            owner_id=data.owner_id,
            content=data.content,
            context=context,
            metadata=MemoryMetadata(
                heat_score=calculate_initial_heat_score(data.content, context),
                expires_at=expires_at,
                tags=tags,
                is_active=True,
            ),
            created_at=now,
            last_accessed=now,
            access_count=0,
        )

    async def create_memory(self, data: CreateMemoryInput) -> Memory:
        """Create a memory.

        Embedding generation and vector indexing are best-effort: a failure
        in either is logged and the memory is still created.

        Raises:
            ValidationError: If owner_id or content is missing.
        """
        memory = self._build_memory(data)

        if self.embedding_enabled:
            result = await self._attempt(
                "Embedding generation",
                self.embedding_provider.generate_embedding(memory.content),
                memory_id=memory.id,
            )
            if result.ok:
                memory.embedding = result.value

        stored = await self.repository.insert(memory)

        if stored.embedding is not None and self.index_enabled:
            await self._attempt(
                "Vector upsert",
                self.vector_index.upsert(stored.id, stored.embedding, self._vector_metadata(stored)),
                memory_id=stored.id,
            )

        logger.info("Memory created (id=%s, owner=%s)", stored.id, stored.owner_id)
        return stored

    async def create_memories(self, inputs: list[CreateMemoryInput]) -> list[Memory]:
        """Create several memories with one batched embedding call.

        Same failure policy as :meth:`create_memory`. All inputs are
        validated before anything is written.
        """
        memories = [self._build_memory(data) for data in inputs]
        if not memories:
            return []

        if self.embedding_enabled:
            result = await self._attempt(
                "Batch embedding generation",
                self.embedding_provider.generate_embeddings([m.content for m in memories]),
                count=len(memories),
            )
            if result.ok and len(result.value) == len(memories):
                for memory, embedding in zip(memories, result.value):
                    memory.embedding = embedding

        stored = [await self.repository.insert(memory) for memory in memories]

        records = [
            VectorRecord(id=m.id, vector=m.embedding, metadata=self._vector_metadata(m))
            for m in stored
            if m.embedding is not None
        ]
        if records and self.index_enabled:
            await self._attempt(
                "Batch vector upsert",
                self.vector_index.upsert_many(records),
                count=len(records),
            )

        logger.info("Memories created (count=%d)", len(stored))
        return stored

    # -- reads ----------------------------------------------------------------

    async def search_memories(self, query: MemoryQuery) -> list[SearchResult]:
        """Hybrid search: vector similarity first, relational fallback.

        The vector path is used when both the embedding provider and the
        index are enabled and ``query.text`` is given. Any failure on that
        path falls through to the relational path. Every returned memory
        has its access recorded.

        Raises:
            ValidationError: On a missing owner, bad limit or unknown sort.
        """
        if not query.owner_id:
            raise ValidationError("owner_id is required")
        if query.sort_by not in SORT_OPTIONS:
            raise ValidationError(
                f"Invalid sort_by: {query.sort_by}. Valid options: {', '.join(SORT_OPTIONS)}"
            )
        limit = query.limit if query.limit is not None else self.search_config.default_limit
        if limit < 1:
            raise ValidationError("limit must be >= 1")

        if self.vector_search_enabled and query.text:
            results = await self._vector_search(query, limit)
            if results is not None:
                return results
            logger.warning(
                "Vector search failed, falling back to database (owner=%s)", query.owner_id
            )

        return await self._relational_search(query, limit)

    async def _vector_search(
        self, query: MemoryQuery, limit: int
    ) -> Optional[list[SearchResult]]:
        """Vector path. Returns None when it could not complete."""
        min_relevance = (
            query.min_relevance
            if query.min_relevance is not None
            else self.search_config.min_relevance
        )

        embedded = await self._attempt(
            "Query embedding", self.embedding_provider.generate_embedding(query.text)
        )
        if not embedded.ok:
            return None

        queried = await self._attempt(
            "Vector query",
            self.vector_index.query(embedded.value, top_k=limit, owner_id=query.owner_id),
            owner=query.owner_id,
        )
        if not queried.ok:
            return None

        scores = {
            m.id: m.score for m in queried.value if m.score >= min_relevance
        }
        if not scores:
            return []

        # The index may hold entries the repository has since deactivated
        memories = await self.repository.get_many(list(scores))
        if query.context_filter is not None:
            memories = [m for m in memories if query.context_filter.matches(m.context)]

        results = [
            SearchResult(memory=m, score=scores[m.id], retrieval_method="vector")
            for m in memories
        ]
        return await self._track_and_sort(results, query.sort_by)

    async def _relational_search(self, query: MemoryQuery, limit: int) -> list[SearchResult]:
        memories = await self.repository.search(
            owner_id=query.owner_id,
            context_filter=query.context_filter,
            sort_by=query.sort_by,
            limit=limit,
        )
        results = [
            SearchResult(memory=m, score=m.metadata.heat_score, retrieval_method="relational")
            for m in memories
        ]
        tracked = await self._track_and_sort(results, None)
        for result in tracked:
            result.score = result.memory.metadata.heat_score
        return tracked

    async def _track_and_sort(
        self, results: list[SearchResult], sort_by: Optional[str]
    ) -> list[SearchResult]:
        """Record an access on every result, then order them.

        ``sort_by`` None keeps the incoming order.
        """
        if not results:
            return []

        updated = await self.update_memory_access([r.memory.id for r in results])
        by_id = {m.id: m for m in updated}
        tracked = [
            SearchResult(memory=by_id[r.memory.id], score=r.score, retrieval_method=r.retrieval_method)
            for r in results
            if r.memory.id in by_id
        ]

        if sort_by == "heat":
            tracked.sort(key=lambda r: r.memory.metadata.heat_score, reverse=True)
        elif sort_by == "recency":
            tracked.sort(key=lambda r: r.memory.created_at, reverse=True)
        elif sort_by == "relevance":
            tracked.sort(key=lambda r: r.score, reverse=True)
        return tracked

    async def get_memory(self, memory_id: str) -> Memory:
        """Fetch one memory and record the access.

        Raises:
            NotFoundError: If no active memory has this id.
        """
        memory = await self.repository.get(memory_id)
        if memory is None:
            raise NotFoundError(f"Memory not found: {memory_id}")

        updated = await self.update_memory_access([memory_id])
        if not updated:
            # Deactivated between the read and the access update
            raise NotFoundError(f"Memory not found: {memory_id}")
        return updated[0]

    async def update_memory_access(self, memory_ids: list[str]) -> list[Memory]:
        """Record one access on each memory.

        Sets ``last_accessed`` to now, increments ``access_count`` and
        multiplies ``heat_score`` by ``HEAT_GROWTH_FACTOR``, capped at 1.0.
        This is the only place heat rises; nothing lowers it.

        Returns:
            The updated active memories.
        """
        if not memory_ids:
            return []
        return await self.repository.update_access(memory_ids, utcnow(), HEAT_GROWTH_FACTOR)

    async def get_memory_stats(self, owner_id: str) -> MemoryStats:
        """Counts, heat average, age range and top interaction types."""
        if not owner_id:
            raise ValidationError("owner_id is required")
        return await self.repository.stats(owner_id)

    # -- deletion -------------------------------------------------------------

    async def delete_memory(self, memory_id: str) -> None:
        """Soft-delete one memory and best-effort remove its vector.

        Raises:
            NotFoundError: If no active memory has this id, including a
                memory that was already deleted.
        """
        deactivated = await self.repository.deactivate([memory_id], utcnow())
        if not deactivated:
            raise NotFoundError(f"Memory not found: {memory_id}")

        if self.index_enabled:
            await self._attempt(
                "Vector delete", self.vector_index.delete(memory_id), memory_id=memory_id
            )

        logger.info("Memory deleted (id=%s)", memory_id)

    async def cleanup_memories(self, config: Optional[CleanupConfig] = None) -> int:
        """Evict expired memories and aged low-heat memories.

        Selects up to ``batch_size`` active memories that have expired, or
        that are older than ``max_age_days`` with heat below
        ``min_heat_score``. Safe to run concurrently with itself and with
        reads: each row is deactivated exactly once.

        Returns:
            Number of memories this call deactivated.
        """
        config = config or self.cleanup_config
        now = utcnow()
        cutoff = now - timedelta(days=config.max_age_days)

        candidates = await self.repository.select_for_cleanup(
            now=now,
            cutoff=cutoff,
            min_heat_score=config.min_heat_score,
            batch_size=config.batch_size,
        )
        if not candidates:
            logger.info("No memories to clean up")
            return 0

        deactivated = await self.repository.deactivate(candidates, now)

        if deactivated and self.index_enabled:
            await self._attempt(
                "Vector cleanup",
                self.vector_index.delete_many(deactivated),
                count=len(deactivated),
            )

        logger.info("Memories cleaned up (count=%d)", len(deactivated))
        return len(deactivated)

    async def purge_owner(self, owner_id: str) -> int:
        """Soft-delete every memory of an owner.

        Vector removal goes through ``delete_all_for_owner`` and shares its
        bounded-result limit; leftovers stay invisible because their rows
        are inactive.

        Returns:
            Number of memories deactivated.
        """
        if not owner_id:
            raise ValidationError("owner_id is required")

        deactivated = await self.repository.deactivate_owner(owner_id, utcnow())

        if self.index_enabled:
            await self._attempt(
                "Vector owner purge",
                self.vector_index.delete_all_for_owner(owner_id),
                owner=owner_id,
            )

        logger.info("All memories deactivated (owner=%s, count=%d)", owner_id, len(deactivated))
        return len(deactivated)

    async def close(self) -> None:
        """Close collaborator connections."""
        for collaborator in (self.embedding_provider, self.vector_index):
            close = getattr(collaborator, "close", None)
            if close is not None:
                await close()
        await self.repository.close()


async def run_cleanup_loop(
    store: MemoryStore,
    interval_seconds: Optional[float] = None,
    config: Optional[CleanupConfig] = None,
) -> None:
    """Background task that periodically evicts memories.

    Runs until cancelled. A failed run is logged and retried on the next
    tick.
    """
    config = config or store.cleanup_config
    interval = interval_seconds if interval_seconds is not None else config.interval_seconds
    while True:
        try:
            await asyncio.sleep(interval)
            deactivated = await store.cleanup_memories(config)
            if deactivated > 0:
                logger.info(
                    "Memory cleanup: deactivated %d memories (max_age_days=%s, min_heat=%s)",
                    deactivated,
                    config.max_age_days,
                    config.min_heat_score,
                )
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Memory cleanup failed")


def create_memory_store(config: Optional[MemoryConfig] = None) -> MemoryStore:
    """Factory function to create a memory store from configuration.

    Args:
        config: Full configuration. Defaults to ``MemoryConfig.from_env()``.

    Returns:
        Configured MemoryStore. Collaborators without credentials are
        created disabled rather than failing.
    """
    from .embeddings import OpenAIEmbeddingService
    from .pinecone_index import PineconeVectorIndex
    from .repository import SQLiteMemoryRepository
    from .vector_index import InMemoryVectorIndex, LanceDBVectorIndex

    config = config or MemoryConfig.from_env()
    errors = config.validate()
    if errors:
        raise ValueError(f"Configuration errors: {errors}")

    embedding_service = OpenAIEmbeddingService(
        api_key=config.embedding.api_key,
        model=config.embedding.model,
        dimensions=config.embedding.dimensions,
        timeout_seconds=config.embedding.timeout_seconds,
        api_base=config.embedding.api_base,
    )

    index_config = config.vector_index
    vector_index: Optional[IVectorIndex]
    if index_config.provider == "lancedb":
        vector_index = LanceDBVectorIndex(
            dimensions=config.embedding.dimensions,
            db_path=index_config.path if not index_config.uri else None,
            db_uri=index_config.uri,
            api_key=index_config.api_key,
            table_name=index_config.table_name,
        )
    elif index_config.provider == "pinecone":
        vector_index = PineconeVectorIndex(
            api_key=index_config.api_key,
            host=index_config.host,
            namespace=index_config.namespace,
            dimensions=config.embedding.dimensions,
            timeout_seconds=index_config.timeout_seconds,
        )
    elif index_config.provider == "memory":
        vector_index = InMemoryVectorIndex(dimensions=config.embedding.dimensions)
    else:
        vector_index = None

    return MemoryStore(
        repository=SQLiteMemoryRepository(config.database.path),
        embedding_provider=embedding_service,
        vector_index=vector_index,
        cleanup_config=config.cleanup,
        search_config=config.search,
        operation_timeout=config.operation_timeout_seconds,
    )
