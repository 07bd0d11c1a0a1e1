"""OpenRouter embedding adapter — batch ``/embeddings`` requests.

Vectors are requested at the configured dimensionality (768 by default)
so they fit the pgvector columns of the ontology and semantic index tables.
"""

import logging
from typing import Any

import httpx

from semantic_query.application.interfaces.embedding_provider import EmbeddingProvider
from semantic_query.domain.exceptions import EmbeddingProviderError
from semantic_query.infrastructure.openrouter.openrouter_transport import (
    DEFAULT_APP_NAME,
    DEFAULT_BASE_URL,
    OpenRouterTransport,
)

logger = logging.getLogger(__name__)


class OpenRouterEmbeddingProvider(EmbeddingProvider):
    """Infrastructure adapter — generates embeddings via OpenRouter."""

    provider_name = "openrouter"

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        app_name: str = DEFAULT_APP_NAME,
        model: str = "google/gemini-embedding-001",
        model_dimensions: int = 768,
        http_client: httpx.AsyncClient | None = None,
    ):
        self._transport = OpenRouterTransport(api_key, base_url, app_name, http_client)
        self._model = model
        self._dimensions = model_dimensions

    @property
    def dimensions(self) -> int:
        return self._dimensions

    async def generate_embeddings(self, texts: list[str]) -> list[list[float]]:
        """One vector per text, in input order. An empty batch makes no request."""
        if not texts:
            return []

        payload: dict[str, Any] = {
            "model": self._model,
            "input": texts,
            "dimensions": self._dimensions,
        }
        response = await self._transport.post(
            "embeddings",
            payload,
            lambda e: EmbeddingProviderError(self.provider_name, 503, f"Request failed: {e}"),
        )

        if response.status_code != 200:
            error_text = response.text[:500]
            logger.error("Embedding API error %d: %s", response.status_code, error_text)
            raise EmbeddingProviderError(self.provider_name, response.status_code, error_text)

        items = response.json().get("data", [])
        if len(items) != len(texts):
            raise EmbeddingProviderError(
                self.provider_name,
                500,
                f"Expected {len(texts)} embeddings, got {len(items)}",
            )

        vectors = [item["embedding"] for item in sorted(items, key=lambda x: x.get("index", 0))]
        logger.info("Generated %d embeddings (model=%s, dims=%d)", len(vectors), self._model, self._dimensions)
        return vectors
