"""OpenAI Embedding Service.

Production embedding provider using OpenAI's text-embedding-3-small model
or any OpenAI-compatible endpoint.
"""

import logging
import os
from typing import Optional

import httpx

from ..errors import GenerationError, ProviderUnavailable
from ..interfaces import IEmbeddingProvider
from ..utils import normalize_embedding

logger = logging.getLogger(__name__)


class OpenAIEmbeddingService(IEmbeddingProvider):
    """OpenAI-compatible embedding service.

    Supports OpenAI, Ollama, and any OpenAI-compatible embedding API.

    Unlike a hard dependency, a missing API key does not fail construction:
    the service reports ``is_enabled() == False`` and the memory store
    degrades to relational-only operation.

    Usage:
        # OpenAI
        service = OpenAIEmbeddingService(api_key="sk-...")

        # Ollama (local)
        service = OpenAIEmbeddingService(
            api_base="http://localhost:11434/v1",
            model="nomic-embed-text",
            dimensions=768,
        )
    """

    DEFAULT_MODEL = "text-embedding-3-small"
    DEFAULT_DIMENSIONS = 1536
    DEFAULT_API_BASE = "https://api.openai.com/v1"
    LOCAL_API_KEY_PLACEHOLDER = "local-no-key-needed"

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = DEFAULT_MODEL,
        dimensions: int = DEFAULT_DIMENSIONS,
        timeout_seconds: float = 30.0,
        api_base: Optional[str] = None,
    ):
        """Initialize OpenAI-compatible embedding service.

        Args:
            api_key: API key. Falls back to OPENAI_API_KEY env var.
                     Not required when api_base points to a local service (e.g., Ollama).
            model: Embedding model to use.
            dimensions: Output embedding dimensions, fixed per deployment.
            timeout_seconds: Request timeout. A timeout raises GenerationError.
            api_base: Base URL for the embedding API. Defaults to OpenAI.

        Security Note:
            API keys are stored in memory and used in HTTP headers. Never log
            the _client object or include it in error reports.
        """
        if dimensions < 1 or dimensions > 8192:
            raise ValueError(
                f"Dimensions must be between 1 and 8192, got {dimensions}"
            )

        self.api_url = self._resolve_api_url(api_base)

        is_local = (
            api_base is not None
            and api_base.strip() != ""
            and "api.openai.com" not in api_base.lower()
        )

        self.api_key = api_key or os.environ.get("OPENAI_API_KEY")
        if not self.api_key and is_local:
            self.api_key = self.LOCAL_API_KEY_PLACEHOLDER

        self.model = model
        self.dimensions = dimensions
        self.timeout_seconds = timeout_seconds

        self._client: Optional[httpx.AsyncClient] = None

        if self.is_enabled():
            logger.info("Embedding service initialized (model=%s)", self.model)
        else:
            logger.warning("Embedding service disabled - OPENAI_API_KEY not configured")

    @staticmethod
    def _resolve_api_url(api_base: Optional[str] = None) -> str:
        """Resolve the full embeddings API URL from an optional base.

        Raises:
            ValueError: If api_base is not a valid HTTP(S) URL.
        """
        if api_base is None or api_base.strip() == "":
            return f"{OpenAIEmbeddingService.DEFAULT_API_BASE}/embeddings"

        base = api_base.strip().rstrip("/")

        if base and not base.startswith(("http://", "https://")):
            raise ValueError(
                f"api_base must be an HTTP(S) URL, got: {base}"
            )

        if base.endswith("/embeddings"):
            return base

        return f"{base}/embeddings"

    def __repr__(self) -> str:
        """Safe repr that masks API key to prevent accidental logging."""
        return f"OpenAIEmbeddingService(model={self.model!r}, api_key=***)"

    def is_enabled(self) -> bool:
        return bool(self.api_key)

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout_seconds),
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                }
            )
        return self._client

    async def generate_embedding(self, text: str) -> list[float]:
        """Generate embedding for a single text."""
        results = await self.generate_embeddings([text])
        return results[0]

    async def generate_embeddings(self, texts: list[str]) -> list[list[float]]:
        """Generate embeddings for multiple texts in one request.

        Raises:
            ProviderUnavailable: If no API key or local endpoint is configured.
            GenerationError: On HTTP error status, timeout or transport failure.
        """
        if not self.is_enabled():
            raise ProviderUnavailable("Embedding service not configured")
        if not texts:
            return []

        cleaned_texts = [self._clean_text(t) for t in texts]
        client = await self._get_client()

        payload = {
            "model": self.model,
            "input": cleaned_texts,
            "dimensions": self.dimensions,
            "encoding_format": "float",
        }

        try:
            response = await client.post(self.api_url, json=payload)
        except httpx.TimeoutException as e:
            logger.error("Embedding request timed out after %ss", self.timeout_seconds)
            raise GenerationError(f"Embedding request timed out: {e}") from e
        except httpx.RequestError as e:
            logger.error("Embedding request failed: %s", e)
            raise GenerationError(f"Embedding request failed: {e}") from e

        if response.status_code != 200:
            try:
                error_detail = (
                    response.json()
                    .get("error", {})
                    .get("message", response.text)
                )
            except Exception:
                error_detail = response.text[:200]
            logger.error(
                "Failed to generate embeddings (status=%s, count=%d)",
                response.status_code,
                len(texts),
            )
            raise GenerationError(
                f"Embedding API error ({response.status_code}): {error_detail}"
            )

        data = response.json()
        items = sorted(data["data"], key=lambda x: x["index"])
        embeddings = [normalize_embedding(item["embedding"]) for item in items]

        if len(embeddings) != len(texts):
            raise GenerationError(
                f"Embedding API returned {len(embeddings)} vectors for {len(texts)} inputs"
            )
        for embedding in embeddings:
            if len(embedding) != self.dimensions:
                raise GenerationError(
                    f"Invalid embedding dimension: got {len(embedding)}, "
                    f"expected {self.dimensions}"
                )

        logger.debug(
            "Embeddings generated (count=%d, dimension=%d)",
            len(embeddings),
            self.dimensions,
        )
        return embeddings

    def _clean_text(self, text: str) -> str:
        """Clean text for embedding.

        Normalizes whitespace and truncates to fit within token limits.
        Uses encoding-aware truncation to avoid splitting UTF-8 characters.
        """
        cleaned = " ".join(text.split())

        # text-embedding-3-small supports 8191 tokens; 4 bytes per token worst case
        max_bytes = 8191 * 4

        encoded = cleaned.encode('utf-8')
        if len(encoded) > max_bytes:
            cleaned = encoded[:max_bytes].decode('utf-8', errors='ignore')

        return cleaned

    async def close(self):
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
