"""Semantic Searcher — concepts → ranked form fields and non-form columns.

Embeddings are cached per normalized concept and full ranked result lists
per (customer, sorted concepts, corpora, min confidence), both with a
5-minute TTL. A repeated identical search is answered from the results
cache without touching the embedding provider or the index.
"""

import logging

from semantic_query.application.interfaces import EmbeddingProvider, SemanticIndexRepository
from semantic_query.application.services.measurement_concepts import expand_with_measurement_keys
from semantic_query.application.services.ttl_cache import TTLCache, cache_key
from semantic_query.domain.entities import SemanticSearchResult
from semantic_query.domain.exceptions import InvalidArgumentError

logger = logging.getLogger(__name__)

DEFAULT_MIN_CONFIDENCE = 0.7
DEFAULT_CACHE_TTL_MS = 5 * 60 * 1000


def _normalize(concept: str) -> str:
    return " ".join(concept.lower().split())


class SemanticSearcher:
    """Finds schema fields for concepts via concept ids and embedding similarity."""

    def __init__(
        self,
        repository: SemanticIndexRepository,
        embedding_provider: EmbeddingProvider | None,
        *,
        min_confidence: float = DEFAULT_MIN_CONFIDENCE,
        cache_ttl_ms: int = DEFAULT_CACHE_TTL_MS,
        embedding_dimensions: int = 768,
        embedding_cache: TTLCache[list[float]] | None = None,
        results_cache: TTLCache[list[SemanticSearchResult]] | None = None,
    ):
        self._repository = repository
        self._embedding_provider = embedding_provider
        self._min_confidence = min_confidence
        self._dimensions = embedding_dimensions
        # Caches outlive a request when shared ones are passed in
        self.embedding_cache: TTLCache[list[float]] = (
            embedding_cache if embedding_cache is not None
            else TTLCache(cache_ttl_ms, name="search-embeddings")
        )
        self.results_cache: TTLCache[list[SemanticSearchResult]] = (
            results_cache if results_cache is not None
            else TTLCache(cache_ttl_ms, name="search-results")
        )

    async def search_form_fields(
        self,
        customer_id: str,
        concepts: list[str],
        *,
        min_confidence: float | None = None,
        limit: int | None = None,
        include_non_form: bool = False,
    ) -> list[SemanticSearchResult]:
        """Form fields (plus non-form columns when asked) ranked by confidence.

        Raises:
            InvalidArgumentError: ``customer_id`` or ``concepts`` is empty.
        """
        return await self._search(
            customer_id,
            concepts,
            include_form=True,
            include_non_form=include_non_form,
            min_confidence=min_confidence,
            limit=limit,
        )

    async def search_non_form_columns(
        self,
        customer_id: str,
        concepts: list[str],
        *,
        min_confidence: float | None = None,
        limit: int | None = None,
    ) -> list[SemanticSearchResult]:
        """Non-form columns only, ranked by confidence."""
        return await self._search(
            customer_id,
            concepts,
            include_form=False,
            include_non_form=True,
            min_confidence=min_confidence,
            limit=limit,
        )

    def caches(self) -> list[TTLCache]:
        return [self.embedding_cache, self.results_cache]

    # ── Internals ────────────────────────────────────────────────────

    async def _search(
        self,
        customer_id: str,
        concepts: list[str],
        *,
        include_form: bool,
        include_non_form: bool,
        min_confidence: float | None,
        limit: int | None,
    ) -> list[SemanticSearchResult]:
        if not customer_id or not customer_id.strip() or not concepts:
            raise InvalidArgumentError("customerId and at least one concept are required")

        threshold = self._min_confidence if min_confidence is None else min_confidence
        key = cache_key(
            customer_id,
            ",".join(sorted(concepts)),
            include_form,
            include_non_form,
            threshold,
        )
        cached = self.results_cache.get(key)
        if cached is not None:
            logger.debug("Search results cache hit for customer %s", customer_id)
            return self._truncate(cached, limit)

        search_concepts = expand_with_measurement_keys(concepts)
        if not search_concepts:
            raise InvalidArgumentError("At least one valid concept is required for search")

        concept_ids = await self._resolve_concept_ids(search_concepts)
        embeddings = await self._embed_all(concepts)

        results: list[SemanticSearchResult] = []
        complete = True
        if include_form:
            found, ok = await self._query(
                self._repository.search_form_fields,
                "form fields", customer_id, search_concepts, embeddings, concept_ids, threshold,
            )
            results.extend(found)
            complete = complete and ok
        if include_non_form:
            found, ok = await self._query(
                self._repository.search_non_form_columns,
                "non-form columns", customer_id, search_concepts, embeddings, concept_ids, threshold,
            )
            results.extend(found)
            complete = complete and ok

        results.sort(key=lambda r: r.confidence, reverse=True)
        if complete:
            self.results_cache.set(key, results)
        logger.info(
            "Semantic search for %d concepts returned %d hits (customer %s)",
            len(concepts), len(results), customer_id,
        )
        return self._truncate(results, limit)

    async def _query(
        self,
        method,
        label: str,
        customer_id: str,
        concepts: list[str],
        embeddings: list[list[float]],
        concept_ids: list[str],
        min_confidence: float,
    ) -> tuple[list[SemanticSearchResult], bool]:
        try:
            found = await method(
                customer_id,
                concepts=concepts,
                embeddings=embeddings,
                concept_ids=concept_ids,
                min_confidence=min_confidence,
            )
        except Exception:
            logger.exception("Error searching %s for customer %s", label, customer_id)
            return [], False
        return found, True

    async def _resolve_concept_ids(self, concepts: list[str]) -> list[str]:
        try:
            return await self._repository.resolve_concept_ids(concepts)
        except Exception as e:
            logger.warning("Failed to resolve concept IDs: %s", e)
            return []

    async def _embed_all(self, concepts: list[str]) -> list[list[float]]:
        """One vector per concept; misses are embedded in a single batch call."""
        vectors: dict[str, list[float]] = {}
        missing: list[str] = []
        for concept in concepts:
            normalized = _normalize(concept)
            if normalized in vectors or normalized in missing:
                continue
            cached = self.embedding_cache.get(f"emb:{normalized}")
            if cached is not None:
                vectors[normalized] = cached
            else:
                missing.append(normalized)

        if missing:
            fresh = await self._generate(missing)
            for normalized, vector in zip(missing, fresh):
                vectors[normalized] = vector

        return [vectors[_normalize(c)] for c in concepts]

    async def _generate(self, texts: list[str]) -> list[list[float]]:
        zero = [0.0] * self._dimensions
        if self._embedding_provider is None:
            return [list(zero) for _ in texts]
        try:
            generated = await self._embedding_provider.generate_embeddings(texts)
        except Exception as e:
            logger.warning("Failed to generate embeddings for %s: %s", texts, e)
            return [list(zero) for _ in texts]
        if len(generated) != len(texts):
            logger.warning("Embedding provider returned %d vectors for %d texts", len(generated), len(texts))
            return [list(zero) for _ in texts]

        for text, vector in zip(texts, generated):
            self.embedding_cache.set(f"emb:{text}", vector)
        return generated

    @staticmethod
    def _truncate(results: list[SemanticSearchResult], limit: int | None) -> list[SemanticSearchResult]:
        if limit is None or limit <= 0:
            return list(results)
        return results[:limit]
