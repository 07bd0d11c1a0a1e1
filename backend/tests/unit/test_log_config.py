"""Unit tests for per-category logging configuration."""

import logging

import pytest

from semantic_query.config import Settings
from semantic_query.infrastructure.logging.log_config import _parse_level, setup_logging


class TestParseLevel:
    def test_known_names_are_case_insensitive(self):
        assert _parse_level("debug") == logging.DEBUG
        assert _parse_level("WARNING") == logging.WARNING

    def test_unknown_name_falls_back_to_info(self):
        assert _parse_level("chatty") == logging.INFO


@pytest.fixture(autouse=True)
def restore_root_level():
    root = logging.getLogger()
    level = root.level
    yield
    root.setLevel(level)


class TestSetupLogging:
    def test_applies_category_levels(self):
        settings = Settings(
            _env_file=None,
            log_level="WARNING",
            log_level_sql="DEBUG",
            log_level_http="ERROR",
            log_level_pipeline="DEBUG",
        )

        applied = setup_logging(settings)

        assert applied[""] == logging.WARNING
        assert applied["sqlalchemy.engine"] == logging.DEBUG
        assert applied["httpx"] == logging.ERROR
        assert applied["QueryPipeline"] == logging.DEBUG
        assert applied["semantic_query.infrastructure.openrouter"] == logging.INFO
        assert logging.getLogger("httpcore").level == logging.ERROR
        assert logging.getLogger("NonFormSchemaDiscovery").level == logging.DEBUG

    def test_invalid_level_uses_info(self):
        applied = setup_logging(Settings(_env_file=None, log_level_uvicorn="loud"))

        assert applied["uvicorn"] == logging.INFO
