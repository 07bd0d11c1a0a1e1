"""Abstract interface (port) for executing validated SQL."""

from abc import ABC, abstractmethod
from typing import Any

from semantic_query.domain.entities import QueryExecutionResult


class QueryExecutor(ABC):
    """Runs a statement that already passed the safety enforcer."""

    @abstractmethod
    async def execute(
        self, sql: str, params: dict[str, Any] | None = None
    ) -> QueryExecutionResult:
        """Execute ``sql`` and return its columns and rows."""
        ...
