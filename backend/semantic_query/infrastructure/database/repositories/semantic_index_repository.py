"""SQLAlchemy implementation of SemanticIndexRepository — pgvector-powered field search."""

import logging

from sqlalchemy import case, func, literal_column, or_, select
from sqlalchemy.dialects.postgresql import array
from sqlalchemy.ext.asyncio import AsyncSession

from semantic_query.application.interfaces import SemanticIndexRepository
from semantic_query.domain.entities import SearchSource, SemanticSearchResult
from semantic_query.infrastructure.database.models import (
    ClinicalOntologyModel,
    SemanticIndexFieldModel,
    SemanticIndexModel,
    SemanticIndexNonFormModel,
)

logger = logging.getLogger(__name__)


def _vector_literal(embedding: list[float]) -> str:
    return f"'[{','.join(str(v) for v in embedding)}]'::vector"


def similarity_sql(table: str, embeddings: list[list[float]]) -> str | None:
    """Best cosine similarity of ``table.embedding`` to any of the vectors.

    Zero vectors (embedding fallback) are skipped since their cosine
    distance is undefined. Returns None when no usable vector remains.
    """
    terms = [
        f"1 - ({table}.embedding <=> {_vector_literal(e)})"
        for e in embeddings
        if e and any(e)
    ]
    if not terms:
        return None
    if len(terms) == 1:
        return terms[0]
    return f"GREATEST({', '.join(terms)})"


class PgSemanticIndexRepository(SemanticIndexRepository):
    """Concrete semantic index repository backed by PostgreSQL + pgvector."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def resolve_concept_ids(self, concepts: list[str]) -> list[str]:
        lowered = sorted({c.strip().lower() for c in concepts if c and c.strip()})
        if not lowered:
            return []

        synonym = func.jsonb_array_elements_text(ClinicalOntologyModel.synonyms).table_valued("value")
        synonym_match = (
            select(literal_column("1"))
            .select_from(synonym)
            .where(func.lower(synonym.c.value).in_(lowered))
            .exists()
        )
        result = await self._session.execute(
            select(ClinicalOntologyModel.id).where(
                or_(
                    func.lower(ClinicalOntologyModel.concept_name).in_(lowered),
                    func.lower(ClinicalOntologyModel.canonical_name).in_(lowered),
                    func.lower(ClinicalOntologyModel.preferred_term).in_(lowered),
                    synonym_match,
                )
            )
        )
        return [row[0] for row in result.all()]

    # ── Form fields ──────────────────────────────────────────────────

    async def search_form_fields(
        self,
        customer_id: str,
        *,
        concepts: list[str],
        embeddings: list[list[float]],
        concept_ids: list[str],
        min_confidence: float,
    ) -> list[SemanticSearchResult]:
        field = SemanticIndexFieldModel
        lowered = [c.lower() for c in concepts]
        similarity = similarity_sql(field.__tablename__, embeddings)

        matches = [func.lower(field.semantic_concept).in_(lowered)]
        if concept_ids:
            matches.append(field.concept_id.in_(concept_ids))
        if similarity is not None:
            matches.append(literal_column(similarity) >= min_confidence)

        query = (
            select(
                field.id,
                field.field_name,
                field.data_type,
                field.semantic_concept,
                field.concept_id,
                field.confidence,
                SemanticIndexModel.form_name,
                literal_column(similarity or "NULL").label("similarity"),
            )
            .select_from(field)
            .join(SemanticIndexModel, SemanticIndexModel.id == field.semantic_index_id)
            .where(SemanticIndexModel.customer_id == customer_id)
            .where(field.confidence >= min_confidence)
            .where(or_(*matches))
            .order_by(
                self._rank(field.concept_id, field.semantic_concept, concept_ids, lowered),
                field.confidence.desc(),
                field.field_name,
            )
        )
        rows = (await self._session.execute(query)).all()
        logger.debug("Form field search matched %d rows for customer %s", len(rows), customer_id)

        return [
            SemanticSearchResult(
                id=row.id,
                source=SearchSource.FORM,
                semantic_concept=row.semantic_concept or "",
                data_type=row.data_type,
                confidence=float(row.confidence or 0.0),
                field_name=row.field_name,
                form_name=row.form_name,
                concept_id=row.concept_id,
                similarity_score=float(row.similarity) if row.similarity is not None else None,
            )
            for row in rows
        ]

    # ── Non-form columns ─────────────────────────────────────────────

    async def search_non_form_columns(
        self,
        customer_id: str,
        *,
        concepts: list[str],
        embeddings: list[list[float]],
        concept_ids: list[str],
        min_confidence: float,
    ) -> list[SemanticSearchResult]:
        column = SemanticIndexNonFormModel
        lowered = [c.lower() for c in concepts]
        similarity = similarity_sql(column.__tablename__, embeddings)

        matches = [
            func.lower(column.semantic_concept).in_(lowered),
            column.metadata_["concepts"].has_any(array(concepts)),
        ]
        if concept_ids:
            matches.append(column.concept_id.in_(concept_ids))
        if similarity is not None:
            matches.append(literal_column(similarity) >= min_confidence)

        query = (
            select(
                column.id,
                column.table_name,
                column.column_name,
                column.data_type,
                column.semantic_concept,
                column.concept_id,
                column.confidence,
                literal_column(similarity or "NULL").label("similarity"),
            )
            .where(column.customer_id == customer_id)
            .where(column.confidence >= min_confidence)
            .where(or_(*matches))
            .order_by(
                self._rank(column.concept_id, column.semantic_concept, concept_ids, lowered),
                column.confidence.desc(),
                column.table_name,
                column.column_name,
            )
        )
        rows = (await self._session.execute(query)).all()
        logger.debug("Non-form search matched %d rows for customer %s", len(rows), customer_id)

        return [
            SemanticSearchResult(
                id=row.id,
                source=SearchSource.NON_FORM,
                semantic_concept=row.semantic_concept or "",
                data_type=row.data_type,
                confidence=float(row.confidence or 0.0),
                table_name=row.table_name,
                column_name=row.column_name,
                concept_id=row.concept_id,
                similarity_score=float(row.similarity) if row.similarity is not None else None,
            )
            for row in rows
        ]

    @staticmethod
    def _rank(concept_id_col, concept_col, concept_ids: list[str], lowered: list[str]):
        """1 for a concept-id hit, 2 for a concept-name hit, 3 for similarity only."""
        whens = []
        if concept_ids:
            whens.append((concept_id_col.in_(concept_ids), 1))
        whens.append((func.lower(concept_col).in_(lowered), 2))
        return case(*whens, else_=3)
