"""Agent memory: heat-ranked persistent memory for autonomous agents."""

from .errors import (
    AgentMemoryError,
    DimensionMismatch,
    GenerationError,
    NotFoundError,
    ProviderUnavailable,
    ValidationError,
    VectorIndexError,
)
from .interfaces import (
    ContextFilter,
    CreateMemoryInput,
    InteractionType,
    Memory,
    MemoryContext,
    MemoryMetadata,
    MemoryQuery,
    MemoryStats,
    SearchResult,
)
from .config import CleanupConfig, MemoryConfig
from .services import MemoryStore, create_memory_store

__version__ = "0.1.0"

__all__ = [
    "AgentMemoryError",
    "CleanupConfig",
    "ContextFilter",
    "CreateMemoryInput",
    "DimensionMismatch",
    "GenerationError",
    "InteractionType",
    "Memory",
    "MemoryConfig",
    "MemoryContext",
    "MemoryMetadata",
    "MemoryQuery",
    "MemoryStats",
    "MemoryStore",
    "NotFoundError",
    "ProviderUnavailable",
    "SearchResult",
    "ValidationError",
    "VectorIndexError",
    "create_memory_store",
]
