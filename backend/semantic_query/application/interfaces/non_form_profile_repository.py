"""Abstract repository interface (port) for persisted non-form column profiles."""

from abc import ABC, abstractmethod

from semantic_query.domain.entities import NonFormColumnProfile, StoredColumnProfile


class NonFormProfileRepository(ABC):
    """Port for the ``SemanticIndexNonForm`` corpus written by discovery."""

    @abstractmethod
    async def get_stored(
        self, customer_id: str, table_name: str, column_name: str
    ) -> StoredColumnProfile | None:
        """Return the currently stored assignment for one column, if any."""
        ...

    @abstractmethod
    async def upsert(
        self,
        customer_id: str,
        profile: NonFormColumnProfile,
        *,
        discovery_run_id: str | None = None,
    ) -> None:
        """Insert or update one profile keyed by (customer, table, column)."""
        ...

    @abstractmethod
    async def prune_stale(
        self, customer_id: str, keep: set[tuple[str, str]]
    ) -> int:
        """Delete the customer's rows whose (table, column) is not in ``keep``.

        Returns the number of deleted rows.
        """
        ...
