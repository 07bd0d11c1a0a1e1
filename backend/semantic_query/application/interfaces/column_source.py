"""Abstract interface (port) for reading a target database's column catalog."""

from abc import ABC, abstractmethod
from collections.abc import Callable

from semantic_query.domain.entities import ColumnRecord


class ColumnSource(ABC):
    """Lists the columns of one schema in the customer's analytics database."""

    @abstractmethod
    async def list_columns(self, schema: str) -> list[ColumnRecord]:
        """Return columns ordered by table name, then ordinal position."""
        ...

    async def close(self) -> None:
        """Release any connection resources."""
        return None


# Builds a ColumnSource for a customer connection string.
ColumnSourceFactory = Callable[[str], ColumnSource]
