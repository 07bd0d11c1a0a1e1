"""Health check endpoint — reports configuration, never touches a database."""

from fastapi import APIRouter

from semantic_query.config import get_settings

router = APIRouter(tags=["Health"])


@router.get("/health")
async def health_check() -> dict:
    settings = get_settings()
    return {
        "status": "healthy",
        "version": settings.app_version,
        "environment": settings.app_env,
        "llm_configured": bool(settings.openrouter_api_key.strip()),
        "execution_enabled": bool(settings.target_database_url.strip()),
    }
