"""SQLAlchemy implementation of NonFormProfileRepository."""

import logging

from sqlalchemy import delete, func, select, tuple_
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from semantic_query.application.interfaces import NonFormProfileRepository
from semantic_query.domain.entities import NonFormColumnProfile, StoredColumnProfile
from semantic_query.infrastructure.database.models import SemanticIndexNonFormModel

logger = logging.getLogger(__name__)

_CONFLICT_COLUMNS = ["customer_id", "table_name", "column_name"]


class PgNonFormProfileRepository(NonFormProfileRepository):
    """Concrete non-form profile repository backed by PostgreSQL."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_stored(
        self, customer_id: str, table_name: str, column_name: str
    ) -> StoredColumnProfile | None:
        async with self._session.begin_nested():
            result = await self._session.execute(
                select(SemanticIndexNonFormModel).where(
                    SemanticIndexNonFormModel.customer_id == customer_id,
                    SemanticIndexNonFormModel.table_name == table_name,
                    SemanticIndexNonFormModel.column_name == column_name,
                )
            )
            model = result.scalar_one_or_none()
        if model is None:
            return None
        return StoredColumnProfile(
            semantic_concept=model.semantic_concept,
            semantic_category=model.semantic_category,
            concept_id=model.concept_id,
            metadata=model.metadata_ or {},
        )

    async def upsert(
        self,
        customer_id: str,
        profile: NonFormColumnProfile,
        *,
        discovery_run_id: str | None = None,
    ) -> None:
        values = {
            "customer_id": customer_id,
            "table_name": profile.table_name,
            "column_name": profile.column_name,
            "data_type": profile.data_type,
            "semantic_concept": profile.semantic_concept,
            "semantic_category": profile.semantic_category,
            "concept_id": profile.concept_id,
            "confidence": profile.confidence,
            "is_filterable": profile.is_filterable,
            "is_joinable": profile.is_joinable,
            "is_review_required": profile.is_review_required,
            "review_note": profile.review_note,
            "discovery_run_id": discovery_run_id,
            "metadata": dict(profile.metadata),
            "embedding": profile.embedding or None,
        }
        stmt = insert(SemanticIndexNonFormModel.__table__).values(**values)
        update_cols = {k: stmt.excluded[k] for k in values if k not in _CONFLICT_COLUMNS}
        update_cols["discovered_at"] = func.now()
        # One savepoint per row: a failed write must not abort the caller's transaction.
        async with self._session.begin_nested():
            await self._session.execute(
                stmt.on_conflict_do_update(index_elements=_CONFLICT_COLUMNS, set_=update_cols)
            )

    async def prune_stale(self, customer_id: str, keep: set[tuple[str, str]]) -> int:
        stmt = delete(SemanticIndexNonFormModel).where(
            SemanticIndexNonFormModel.customer_id == customer_id
        )
        if keep:
            stmt = stmt.where(
                tuple_(
                    SemanticIndexNonFormModel.table_name,
                    SemanticIndexNonFormModel.column_name,
                ).not_in(sorted(keep))
            )
        result = await self._session.execute(stmt)
        count = result.rowcount or 0
        if count > 0:
            logger.info("Pruned %d stale non-form columns for customer %s", count, customer_id)
        return count
