"""FastAPI application factory."""

import logging
from contextlib import asynccontextmanager
from collections.abc import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from semantic_query.config import get_settings
from semantic_query.domain.exceptions import ChatProviderError, InvalidArgumentError
from semantic_query.infrastructure.database import Base, engine
from semantic_query.infrastructure.database.session import async_session_factory
from semantic_query.infrastructure.database.repositories import PgOntologyRepository
from semantic_query.application.services import CacheSweeper
from semantic_query.application.services.ontology_seeder import OntologySeeder
from semantic_query.infrastructure.dependencies import (
    get_all_caches,
    get_embedding_provider,
    get_target_engine,
)
from semantic_query.infrastructure.logging.log_config import setup_logging
from semantic_query.presentation.api.router import router as api_router

logger = logging.getLogger(__name__)


async def _ensure_database_exists() -> None:
    """Create the PostgreSQL database if it does not yet exist.

    Connects to the default ``postgres`` maintenance database, checks for the
    target database name, and issues ``CREATE DATABASE`` when missing.
    """
    from urllib.parse import urlparse

    import asyncpg

    settings = get_settings()
    parsed = urlparse(settings.database_url)
    db_name = parsed.path.lstrip("/")
    if not db_name:
        return

    # Build a connection URL pointing at the default 'postgres' database
    maintenance_url = settings.database_url.rsplit("/", 1)[0] + "/postgres"

    try:
        conn = await asyncpg.connect(maintenance_url)
        try:
            exists = await conn.fetchval(
                "SELECT 1 FROM pg_database WHERE datname = $1", db_name
            )
            if not exists:
                # CREATE DATABASE cannot run inside a transaction block
                await conn.execute(f'CREATE DATABASE "{db_name}"')
                logger.info("Created database '%s'", db_name)
            else:
                logger.debug("Database '%s' already exists", db_name)
        finally:
            await conn.close()
    except Exception as exc:
        logger.warning("Could not auto-create database '%s': %s", db_name, exc)


async def _seed_ontology() -> None:
    """Load the clinical ontology YAML into ClinicalOntology (idempotent upsert)."""
    settings = get_settings()
    try:
        async with async_session_factory() as session:
            seeder = OntologySeeder(
                ontology_file=settings.resolve_path(settings.ontology_file),
                repository=PgOntologyRepository(session),
                embedding_provider=get_embedding_provider(),
            )
            total = await seeder.seed()
            await session.commit()
            logger.info("Ontology seeded: %d concepts loaded", total)
    except Exception:
        logger.exception("Failed to seed ontology — continuing without it")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan — create tables, seed ontology, start cache sweeper."""
    settings = get_settings()
    setup_logging()

    # 0. Ensure the PostgreSQL database exists (auto-create if missing)
    await _ensure_database_exists()

    # 1. Create all database tables (enable pgvector extension first)
    async with engine.begin() as conn:
        await conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
        await conn.run_sync(Base.metadata.create_all)

    # 2. Seed ontology YAML → DB
    await _seed_ontology()

    # 3. Start periodic cache sweep
    sweeper = CacheSweeper(get_all_caches(), interval_seconds=settings.cache_sweep_interval_seconds)
    await sweeper.start()

    yield

    # Shutdown
    await sweeper.stop()
    target = get_target_engine()
    if target is not None:
        await target.dispose()
    await engine.dispose()


async def _invalid_argument_handler(request: Request, exc: InvalidArgumentError) -> JSONResponse:
    return JSONResponse(status_code=422, content={"detail": exc.message})


async def _chat_provider_error_handler(request: Request, exc: ChatProviderError) -> JSONResponse:
    logger.warning("Chat provider error on %s: %s", request.url.path, exc)
    return JSONResponse(
        status_code=502,
        content={"detail": exc.message, "provider": exc.provider},
    )


def create_app() -> FastAPI:
    """Factory function that builds and configures the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.app_title,
        version=settings.app_version,
        lifespan=lifespan,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(InvalidArgumentError, _invalid_argument_handler)
    app.add_exception_handler(ChatProviderError, _chat_provider_error_handler)

    # Mount API routes
    app.include_router(api_router)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "semantic_query.main:app",
        host="0.0.0.0",
        port=8020,
        reload=True,
    )
