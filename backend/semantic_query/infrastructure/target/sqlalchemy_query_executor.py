"""QueryExecutor that runs validated SQL against the target database."""

import logging
from typing import Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

from semantic_query.application.interfaces import QueryExecutor
from semantic_query.domain.entities import QueryExecutionResult

logger = logging.getLogger(__name__)


class SQLAlchemyQueryExecutor(QueryExecutor):
    """Executes read-only statements on a pooled async engine.

    The statement is expected to have passed the safety enforcer; the
    transaction is always rolled back.
    """

    def __init__(self, engine: AsyncEngine):
        self._engine = engine

    async def execute(
        self, sql: str, params: dict[str, Any] | None = None
    ) -> QueryExecutionResult:
        async with self._engine.connect() as conn:
            try:
                result = await conn.execute(text(sql), params or {})
                columns = list(result.keys())
                rows = [dict(row._mapping) for row in result.all()]
            finally:
                await conn.rollback()

        logger.info("Query returned %d rows, %d columns", len(rows), len(columns))
        return QueryExecutionResult(columns=columns, rows=rows)
