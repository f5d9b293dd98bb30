"""Testing utilities for agent memory."""

from .embedding_utils import hash_to_embedding
from .mocks import MockEmbeddingProvider, MockVectorIndex

__all__ = [
    "MockEmbeddingProvider",
    "MockVectorIndex",
    "hash_to_embedding",
]
