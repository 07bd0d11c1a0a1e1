"""FastAPI dependency injection — wires infrastructure to application layer.

Caches (intent classification, search embeddings and results) live in
process-wide singletons so they survive across requests; repositories are
bound to the per-request session.
"""

import logging
from collections.abc import AsyncGenerator
from functools import lru_cache

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine

from semantic_query.config import get_settings
from semantic_query.application.interfaces import ChatProvider, EmbeddingProvider
from semantic_query.application.services import (
    CachingIntentClassifier,
    ConceptExpander,
    IntentClassifier,
    IntentExtractionService,
    NonFormSchemaDiscoveryService,
    QueryPipelineService,
    SemanticSearcher,
    SqlComposer,
    SqlGenerationService,
    SqlSafetyEnforcer,
    SqlStructureValidator,
    TTLCache,
)
from semantic_query.application.services.ontology_seeder import load_measurement_families
from semantic_query.application.services.sql_safety import default_rules
from semantic_query.domain.entities import MeasurementFamily, SemanticSearchResult
from semantic_query.infrastructure.database.session import get_async_url, get_db_session
from semantic_query.infrastructure.database.repositories import (
    PgNonFormProfileRepository,
    PgOntologyRepository,
    PgSemanticIndexRepository,
)
from semantic_query.infrastructure.openrouter import OpenRouterClient, OpenRouterEmbeddingProvider
from semantic_query.infrastructure.target import (
    SQLAlchemyQueryExecutor,
    information_schema_source_factory,
)

logger = logging.getLogger(__name__)


# ── Process-wide singletons ──────────────────────────────────────────

@lru_cache
def get_chat_provider() -> ChatProvider | None:
    """OpenRouter chat client, or None when no API key is configured."""
    settings = get_settings()
    if not settings.openrouter_api_key.strip():
        logger.warning("OPENROUTER_API_KEY is not configured; LLM features are disabled.")
        return None
    return OpenRouterClient(
        api_key=settings.openrouter_api_key,
        base_url=settings.openrouter_base_url,
        app_name=settings.openrouter_app_name,
    )


@lru_cache
def get_embedding_provider() -> EmbeddingProvider | None:
    settings = get_settings()
    if not settings.openrouter_api_key.strip():
        return None
    return OpenRouterEmbeddingProvider(
        api_key=settings.openrouter_api_key,
        base_url=settings.openrouter_base_url,
        app_name=settings.openrouter_app_name,
        model=settings.embedding_model,
        model_dimensions=settings.embedding_dimensions,
    )


@lru_cache
def get_intent_classifier() -> CachingIntentClassifier:
    settings = get_settings()
    classifier = IntentClassifier(
        get_chat_provider(),
        settings.classification_model,
        threshold=settings.intent_confidence_threshold,
        ai_timeout_s=settings.intent_ai_timeout_ms / 1000,
    )
    return CachingIntentClassifier(
        classifier,
        pattern_ttl_ms=settings.intent_cache_ttl_ms,
        ai_ttl_ms=settings.intent_cache_ttl_ms,
    )


@lru_cache
def get_search_embedding_cache() -> TTLCache[list[float]]:
    return TTLCache(get_settings().search_cache_ttl_ms, name="search-embeddings")


@lru_cache
def get_search_results_cache() -> TTLCache[list[SemanticSearchResult]]:
    return TTLCache(get_settings().search_cache_ttl_ms, name="search-results")


def get_all_caches() -> list[TTLCache]:
    """Every cache swept by the background CacheSweeper."""
    return [
        *get_intent_classifier().caches(),
        get_search_embedding_cache(),
        get_search_results_cache(),
    ]


@lru_cache
def get_sql_enforcer() -> SqlSafetyEnforcer:
    settings = get_settings()
    return SqlSafetyEnforcer(
        default_rules(
            row_cap=settings.default_row_cap,
            schema=settings.discovery_schema,
            max_columns=settings.max_select_columns,
        )
    )


@lru_cache
def get_measurement_families() -> tuple[MeasurementFamily, ...]:
    settings = get_settings()
    return tuple(load_measurement_families(settings.resolve_path(settings.measurement_families_file)))


@lru_cache
def get_target_engine() -> AsyncEngine | None:
    """Engine for the customer analytics database, if one is configured."""
    url = get_settings().target_database_url.strip()
    if not url:
        return None
    return create_async_engine(get_async_url(url), pool_pre_ping=True)


# ── Request-scoped services ──────────────────────────────────────────

def _build_searcher(session: AsyncSession) -> SemanticSearcher:
    settings = get_settings()
    return SemanticSearcher(
        PgSemanticIndexRepository(session),
        get_embedding_provider(),
        min_confidence=settings.search_min_confidence,
        cache_ttl_ms=settings.search_cache_ttl_ms,
        embedding_dimensions=settings.embedding_dimensions,
        embedding_cache=get_search_embedding_cache(),
        results_cache=get_search_results_cache(),
    )


async def get_semantic_searcher(
    session: AsyncSession = Depends(get_db_session),
) -> AsyncGenerator[SemanticSearcher, None]:
    """Provides a SemanticSearcher bound to the request session and shared caches."""
    yield _build_searcher(session)


async def get_query_pipeline(
    session: AsyncSession = Depends(get_db_session),
) -> AsyncGenerator[QueryPipelineService, None]:
    """Provides the full question → SQL pipeline."""
    settings = get_settings()
    provider = get_chat_provider()
    enforcer = get_sql_enforcer()

    generator = None
    composer = None
    if provider is not None:
        generator = SqlGenerationService(provider, settings.sql_generation_model)
        composer = SqlComposer(provider, settings.composition_model, enforcer=enforcer)

    engine = get_target_engine()
    yield QueryPipelineService(
        classifier=get_intent_classifier(),
        extractor=IntentExtractionService(provider, settings.extraction_model),
        expander=ConceptExpander(settings.max_concepts),
        searcher=_build_searcher(session),
        generator=generator,
        composer=composer,
        enforcer=enforcer,
        structure_validator=SqlStructureValidator(),
        executor=SQLAlchemyQueryExecutor(engine) if engine is not None else None,
    )


async def get_discovery_service(
    session: AsyncSession = Depends(get_db_session),
) -> AsyncGenerator[NonFormSchemaDiscoveryService, None]:
    """Provides the non-form schema discovery service."""
    settings = get_settings()
    yield NonFormSchemaDiscoveryService(
        ontology_repo=PgOntologyRepository(session),
        profile_repo=PgNonFormProfileRepository(session),
        embedding_provider=get_embedding_provider(),
        column_source_factory=information_schema_source_factory,
        measurement_families=list(get_measurement_families()),
        schema=settings.discovery_schema,
        high_confidence_threshold=settings.discovery_high_confidence,
        review_threshold=settings.discovery_review_threshold,
    )
