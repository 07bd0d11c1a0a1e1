"""SQLAlchemy implementation of OntologyRepository — PostgreSQL + pgvector."""

import logging
from typing import Any, Iterable

from sqlalchemy import func, literal_column, select, text
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from semantic_query.application.interfaces import OntologyRepository
from semantic_query.domain.entities import ClinicalConcept, OntologyDataSource, OntologyMatch
from semantic_query.infrastructure.database.models import ClinicalOntologyModel

logger = logging.getLogger(__name__)


def _parse_data_source(entry: Any) -> tuple[str, str, float | None] | None:
    """``"schema.table.column"`` or ``{"table", "column", "confidence"}`` → parts."""
    if isinstance(entry, str):
        table, sep, column = entry.rpartition(".")
        if not sep:
            return None
        return table.strip(), column.strip(), None
    if isinstance(entry, dict):
        table = entry.get("table")
        column = entry.get("column")
        confidence = entry.get("confidence")
        if not isinstance(table, str) or not isinstance(column, str):
            return None
        if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
            confidence = None
        return table.strip(), column.strip(), confidence
    return None


def build_data_source_map(
    rows: Iterable[tuple[str, str, str, list[Any] | None]],
) -> dict[str, OntologyDataSource]:
    """Fold ``(id, concept_name, concept_type, data_sources)`` rows into a lookup.

    Keys are lowercase ``schema.table.column``. When several concepts claim
    the same column the one with the higher stated confidence wins; a
    missing confidence counts as zero.
    """
    mapping: dict[str, OntologyDataSource] = {}
    for concept_id, concept_name, concept_type, data_sources in rows:
        for entry in data_sources or []:
            parsed = _parse_data_source(entry)
            if parsed is None:
                continue
            table, column, confidence = parsed
            if not table or not column:
                continue
            key = f"{table.lower()}.{column.lower()}"
            existing = mapping.get(key)
            if existing is None or (confidence or 0) > (existing.confidence or 0):
                mapping[key] = OntologyDataSource(
                    concept_id=concept_id,
                    concept_name=concept_name,
                    concept_type=concept_type,
                    confidence=confidence,
                )
    return mapping


class PgOntologyRepository(OntologyRepository):
    """Concrete ontology repository backed by PostgreSQL + pgvector."""

    def __init__(self, session: AsyncSession):
        self._session = session

    # ── Read Operations ──────────────────────────────────────────────

    async def find_nearest(self, embedding: list[float]) -> OntologyMatch | None:
        if not embedding or not any(embedding):
            return None

        vector_str = f"[{','.join(str(v) for v in embedding)}]"
        similarity_expr = literal_column(
            f"1 - (clinical_ontology.embedding <=> '{vector_str}'::vector)"
        ).label("similarity")

        result = await self._session.execute(
            select(
                ClinicalOntologyModel.id,
                ClinicalOntologyModel.concept_name,
                ClinicalOntologyModel.canonical_name,
                ClinicalOntologyModel.concept_type,
                ClinicalOntologyModel.metadata_,
                similarity_expr,
            )
            .where(ClinicalOntologyModel.embedding.is_not(None))
            .order_by(text("similarity DESC"))
            .limit(1)
        )
        row = result.first()
        if row is None:
            return None
        return OntologyMatch(
            concept_id=row.id,
            concept_name=row.concept_name,
            canonical_name=row.canonical_name,
            concept_type=row.concept_type,
            metadata=row.metadata_ or {},
            similarity=float(row.similarity),
        )

    async def get_data_source_map(self) -> dict[str, OntologyDataSource]:
        result = await self._session.execute(
            select(
                ClinicalOntologyModel.id,
                ClinicalOntologyModel.concept_name,
                ClinicalOntologyModel.concept_type,
                ClinicalOntologyModel.data_sources,
            ).where(func.jsonb_array_length(ClinicalOntologyModel.data_sources) > 0)
        )
        return build_data_source_map(tuple(row) for row in result.all())

    async def get_concept_ids_by_name(self) -> dict[str, str]:
        result = await self._session.execute(
            select(ClinicalOntologyModel.concept_name, ClinicalOntologyModel.id)
        )
        return {name.lower(): concept_id for name, concept_id in result.all()}

    async def count(self) -> int:
        result = await self._session.execute(
            select(func.count()).select_from(ClinicalOntologyModel)
        )
        return int(result.scalar_one())

    # ── Write Operations ─────────────────────────────────────────────

    async def save_concept(self, concept: ClinicalConcept) -> None:
        values = {
            "concept_name": concept.concept_name,
            "canonical_name": concept.canonical_name,
            "concept_type": concept.concept_type,
            "preferred_term": concept.preferred_term,
            "description": concept.description,
            "synonyms": list(concept.synonyms),
            "metadata": dict(concept.metadata),
            "data_sources": list(concept.data_sources),
            "embedding": concept.embedding or None,
        }
        if concept.id:
            values["id"] = concept.id

        stmt = insert(ClinicalOntologyModel.__table__).values(**values)
        # A seed without vectors keeps previously stored embeddings
        keep = {"id", "concept_name"} | ({"embedding"} if values["embedding"] is None else set())
        update_cols = {k: stmt.excluded[k] for k in values if k not in keep}
        update_cols["updated_at"] = func.now()
        await self._session.execute(
            stmt.on_conflict_do_update(index_elements=["concept_name"], set_=update_cols)
        )
        logger.debug("Saved ontology concept %s", concept.concept_name)
