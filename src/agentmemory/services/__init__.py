"""Agent memory service implementations."""

from .embeddings import OpenAIEmbeddingService
from .vector_index import LanceDBVectorIndex, InMemoryVectorIndex
from .pinecone_index import PineconeVectorIndex
from .repository import SQLiteMemoryRepository
from .memory import MemoryStore, create_memory_store, run_cleanup_loop

__all__ = [
    "OpenAIEmbeddingService",
    "LanceDBVectorIndex",
    "InMemoryVectorIndex",
    "PineconeVectorIndex",
    "SQLiteMemoryRepository",
    "MemoryStore",
    "create_memory_store",
    "run_cleanup_loop",
]
