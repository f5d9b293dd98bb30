"""Exceptions raised by the agent memory subsystem."""


class AgentMemoryError(Exception):
    """Base class for all agent memory errors."""


class ProviderUnavailable(AgentMemoryError):
    """An embedding provider or vector index was called while not configured."""


class GenerationError(AgentMemoryError):
    """Embedding generation failed (transport, timeout or API error)."""


class VectorIndexError(AgentMemoryError):
    """A vector index operation failed (transport, timeout or API error)."""


class NotFoundError(AgentMemoryError):
    """No active memory matches the given id."""


class DimensionMismatch(AgentMemoryError, ValueError):
    """Two vectors of different length were compared."""


class ValidationError(AgentMemoryError, ValueError):
    """Invalid input to a memory operation."""
