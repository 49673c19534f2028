"""
Embedding service using OpenAI.

Embeds utterance text for theme clustering. Results are cached by text
hash because feed redelivery and snapshot reloads offer the same
utterance text more than once.
"""

import hashlib

import structlog
from openai import AsyncOpenAI

from live_insight.config import Settings, get_settings
from live_insight.utils.latency import latency_tracked

logger = structlog.get_logger(__name__)


class EmbeddingService:
    """
    OpenAI embedding service for utterance vectorization.

    Text longer than `embedding_max_chars` is truncated before the call.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        client: AsyncOpenAI | None = None,
        max_cache_size: int = 5000,
    ) -> None:
        self.settings = settings or get_settings()
        self._client = client
        self._cache: dict[str, list[float]] = {}
        self._max_cache_size = max_cache_size

    def _get_client(self) -> AsyncOpenAI:
        """Get or create OpenAI client."""
        if self._client is None:
            self._client = AsyncOpenAI(
                api_key=self.settings.openai_api_key.get_secret_value()
            )
        return self._client

    def _cache_key(self, text: str) -> str:
        return hashlib.sha256(text.encode()).hexdigest()[:16]

    @latency_tracked("embedding_single")
    async def embed_text(self, text: str) -> list[float] | None:
        """
        Generate an embedding for one utterance.

        Args:
            text: Text to embed

        Returns:
            Embedding vector, or None for blank text
        """
        t = (text or "").strip()[: self.settings.embedding_max_chars]
        if not t:
            return None

        cache_key = self._cache_key(t)
        if cache_key in self._cache:
            logger.debug("embedding_cache_hit", text_preview=t[:30])
            return self._cache[cache_key]

        try:
            response = await self._get_client().embeddings.create(
                model=self.settings.embedding_model,
                input=t,
            )
        except Exception as e:
            logger.error("embedding_failed", error=str(e), text_preview=t[:30])
            raise

        embedding = list(response.data[0].embedding)
        self._add_to_cache(cache_key, embedding)
        logger.debug("embedding_generated", text_preview=t[:30], dimensions=len(embedding))
        return embedding

    def _add_to_cache(self, key: str, embedding: list[float]) -> None:
        """Add embedding to cache with size limit."""
        if len(self._cache) >= self._max_cache_size:
            # Drop the oldest 10%
            for k in list(self._cache.keys())[: self._max_cache_size // 10]:
                del self._cache[k]
        self._cache[key] = embedding

    @property
    def cache_size(self) -> int:
        return len(self._cache)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
        self._client = None
