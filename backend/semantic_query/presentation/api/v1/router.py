"""V1 API router — aggregates all v1 endpoint routers."""

from fastapi import APIRouter

from semantic_query.presentation.api.v1.endpoints.health import router as health_router
from semantic_query.presentation.api.v1.query_controller import router as query_router
from semantic_query.presentation.api.v1.sql_controller import router as sql_router
from semantic_query.presentation.api.v1.discovery_controller import router as discovery_router
from semantic_query.presentation.api.v1.search_controller import router as search_router

router = APIRouter(prefix="/v1")
router.include_router(health_router)
router.include_router(query_router)
router.include_router(sql_router)
router.include_router(discovery_router)
router.include_router(search_router)
