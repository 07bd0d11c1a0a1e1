"""Per-category log levels for the semantic query service.

Each Settings field below controls one group of loggers, so the noisy
ones (SQLAlchemy statements, outbound HTTP, the per-turn pipeline trace)
can be turned up or down independently. Called once from the FastAPI
lifespan.
"""

import logging
import sys

from semantic_query.config import Settings, get_settings

_CATEGORY_MAP: dict[str, tuple[str, ...]] = {
    "log_level_sql": ("sqlalchemy.engine", "sqlalchemy.pool", "asyncpg"),
    "log_level_http": ("httpx", "httpcore"),
    "log_level_uvicorn": ("uvicorn", "uvicorn.access", "uvicorn.error"),
    # PipelineLogger component names plus the background sweeper
    "log_level_pipeline": (
        "QueryPipeline",
        "NonFormSchemaDiscovery",
        "semantic_query.application.services.cache_sweeper",
    ),
    "log_level_openrouter": ("semantic_query.infrastructure.openrouter",),
}

_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


def _parse_level(raw: str) -> int:
    """Level name → logging constant; unknown names mean INFO."""
    numeric = getattr(logging, str(raw).upper(), None)
    return numeric if isinstance(numeric, int) else logging.INFO


def _ensure_root_handler(root: logging.Logger) -> None:
    # uvicorn installs its own handlers; scripts and tests may not.
    if root.handlers:
        return
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(_FORMAT))
    root.addHandler(handler)


def setup_logging(settings: Settings | None = None) -> dict[str, int]:
    """Apply root and per-category levels. Returns the level set per logger name ("" is root)."""
    settings = settings or get_settings()

    root = logging.getLogger()
    root.setLevel(_parse_level(settings.log_level))
    _ensure_root_handler(root)

    applied: dict[str, int] = {"": root.level}
    for field_name, logger_names in _CATEGORY_MAP.items():
        level = _parse_level(getattr(settings, field_name))
        for name in logger_names:
            logging.getLogger(name).setLevel(level)
            applied[name] = level

    logging.getLogger(__name__).debug(
        "Log levels: %s",
        ", ".join(f"{name or 'root'}={logging.getLevelName(level)}" for name, level in applied.items()),
    )
    return applied
