"""Pytest fixtures for agent memory tests."""

import pytest

from agentmemory.interfaces import CreateMemoryInput, InteractionType, MemoryContext
from agentmemory.services.memory import MemoryStore
from agentmemory.services.repository import SQLiteMemoryRepository
from agentmemory.testing import MockEmbeddingProvider, MockVectorIndex

DIMENSIONS = 64


@pytest.fixture
async def repository(tmp_path):
    """Provide a SQLite repository in a temporary directory."""
    repo = SQLiteMemoryRepository(tmp_path / "memories.db")
    yield repo
    await repo.close()


@pytest.fixture
def embedding_provider():
    """Provide a mock embedding provider."""
    return MockEmbeddingProvider(dimensions=DIMENSIONS)


@pytest.fixture
def vector_index():
    """Provide a mock vector index."""
    return MockVectorIndex(dimensions=DIMENSIONS)


@pytest.fixture
def store(repository, embedding_provider, vector_index):
    """Provide a memory store with every collaborator enabled."""
    return MemoryStore(
        repository=repository,
        embedding_provider=embedding_provider,
        vector_index=vector_index,
        operation_timeout=1.0,
    )


@pytest.fixture
def relational_store(repository):
    """Provide a memory store with no vector collaborators."""
    return MemoryStore(repository=repository)


def make_input(
    content: str = "Discussed caching strategies",
    owner_id: str = "agent-1",
    interaction_type: InteractionType | None = None,
    **context,
) -> CreateMemoryInput:
    """Build a CreateMemoryInput with sensible defaults."""
    return CreateMemoryInput(
        owner_id=owner_id,
        content=content,
        context=MemoryContext(interaction_type=interaction_type, **context),
    )
