"""Agent memory configuration."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

VECTOR_INDEX_PROVIDERS = ("lancedb", "pinecone", "memory", "none")


@dataclass
class EmbeddingConfig:
    """Embedding service configuration.

    The service is disabled (not an error) when no API key and no local
    api_base are available.

    For Ollama:
        api_base: http://localhost:11434/v1
        model: nomic-embed-text
        dimensions: 768
    """
    model: str = "text-embedding-3-small"
    api_key: Optional[str] = None
    api_base: Optional[str] = None
    dimensions: int = 1536
    timeout_seconds: float = 30.0

    def __post_init__(self):
        if self.api_key is None:
            self.api_key = os.environ.get("OPENAI_API_KEY")
        if self.api_base is None:
            self.api_base = os.environ.get("AGENT_MEMORY_EMBEDDING_API_BASE")
        if self.dimensions < 1:
            raise ValueError("dimensions must be positive")
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")


@dataclass
class VectorIndexConfig:
    """Vector index configuration.

    provider:
        lancedb: local ``path`` or LanceDB Cloud ``uri``
        pinecone: ``api_key`` + index ``host`` (+ optional ``namespace``)
        memory: in-process, not persisted
        none: vector search disabled
    """
    provider: str = "lancedb"
    path: Optional[str] = "~/.agent-memory/lancedb"
    uri: Optional[str] = None
    api_key: Optional[str] = None
    host: Optional[str] = None
    namespace: str = ""
    table_name: str = "memory_vectors"
    timeout_seconds: float = 30.0

    def __post_init__(self):
        if self.provider not in VECTOR_INDEX_PROVIDERS:
            raise ValueError(
                f"Invalid vector index provider: {self.provider}. "
                f"Valid options: {', '.join(VECTOR_INDEX_PROVIDERS)}"
            )
        if self.provider == "pinecone":
            if self.api_key is None:
                self.api_key = os.environ.get("PINECONE_API_KEY")
            if self.host is None:
                self.host = os.environ.get("PINECONE_INDEX_HOST")
        if self.path:
            self.path = str(Path(self.path).expanduser())


@dataclass
class DatabaseConfig:
    """Relational store configuration."""
    path: str = "~/.agent-memory/memories.db"

    def __post_init__(self):
        if self.path != ":memory:":
            self.path = str(Path(self.path).expanduser())


@dataclass
class CleanupConfig:
    """Eviction parameters for ``MemoryStore.cleanup_memories``.

    A memory is evicted when it has expired, or when it is older than
    ``max_age_days`` and its heat score is below ``min_heat_score``.
    """
    max_age_days: float = 90
    min_heat_score: float = 0.1
    batch_size: int = 100
    interval_seconds: float = 6 * 60 * 60  # Background loop period

    def __post_init__(self):
        if self.max_age_days < 0:
            raise ValueError("max_age_days must be non-negative")
        if not 0 <= self.min_heat_score <= 1:
            raise ValueError("min_heat_score must be between 0 and 1")
        if self.batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        if self.interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")


@dataclass
class SearchConfig:
    """Defaults applied to searches that leave them unset."""
    default_limit: int = 10
    min_relevance: float = 0.7

    def __post_init__(self):
        if self.default_limit < 1:
            raise ValueError("default_limit must be >= 1")
        if not -1 <= self.min_relevance <= 1:
            raise ValueError("min_relevance must be between -1 and 1")


@dataclass
class MemoryConfig:
    """Full memory subsystem configuration."""
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    vector_index: VectorIndexConfig = field(default_factory=VectorIndexConfig)
    cleanup: CleanupConfig = field(default_factory=CleanupConfig)
    search: SearchConfig = field(default_factory=SearchConfig)
    # Upper bound for any single embedding or vector index call
    operation_timeout_seconds: Optional[float] = 10.0

    @classmethod
    def from_file(cls, path: str | Path) -> "MemoryConfig":
        """Load configuration from YAML file."""
        path = Path(path).expanduser()
        if not path.exists():
            return cls()

        with open(path) as f:
            data = yaml.safe_load(f) or {}

        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: dict) -> "MemoryConfig":
        """Create configuration from dictionary."""
        database_data = data.get("database", {})
        embedding_data = data.get("embedding", {})
        vector_data = data.get("vector_index", {})
        cleanup_data = data.get("cleanup", {})
        search_data = data.get("search", {})

        return cls(
            database=DatabaseConfig(**database_data) if database_data else DatabaseConfig(),
            embedding=EmbeddingConfig(**embedding_data) if embedding_data else EmbeddingConfig(),
            vector_index=VectorIndexConfig(**vector_data) if vector_data else VectorIndexConfig(),
            cleanup=CleanupConfig(**cleanup_data) if cleanup_data else CleanupConfig(),
            search=SearchConfig(**search_data) if search_data else SearchConfig(),
            operation_timeout_seconds=data.get("operation_timeout_seconds", 10.0),
        )

    @classmethod
    def from_env(cls) -> "MemoryConfig":
        """Create configuration from the file named by AGENT_MEMORY_CONFIG."""
        config_path = os.environ.get(
            "AGENT_MEMORY_CONFIG",
            "~/.agent-memory/config.yaml"
        )
        return cls.from_file(config_path)

    def validate(self) -> list[str]:
        """Validate configuration, return list of errors.

        Missing embedding or vector index credentials are not errors: the
        store runs relational-only in that case.
        """
        errors = []

        if not self.database.path:
            errors.append("database.path is required")

        if self.vector_index.provider == "lancedb" and not (
            self.vector_index.path or self.vector_index.uri
        ):
            errors.append("vector_index.path or vector_index.uri is required for lancedb")

        if (
            self.operation_timeout_seconds is not None
            and self.operation_timeout_seconds <= 0
        ):
            errors.append("operation_timeout_seconds must be positive")

        return errors
