"""SQLAlchemy ORM models for the clinical ontology and the semantic index.

All tables live in Postgres with the pgvector extension. Embedding columns
are 768-dimensional and carry HNSW cosine indexes.
"""

import uuid

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship

from pgvector.sqlalchemy import Vector

from semantic_query.infrastructure.database.base import Base

EMBEDDING_DIMENSIONS = 768


def _generate_uuid() -> str:
    return str(uuid.uuid4())


class ClinicalOntologyModel(Base):
    """A curated clinical concept with its precomputed embedding."""

    __tablename__ = "clinical_ontology"

    id = Column(String(36), primary_key=True, default=_generate_uuid)
    concept_name = Column(String(200), nullable=False, unique=True)
    canonical_name = Column(String(200), nullable=False)
    concept_type = Column(String(100), nullable=False, index=True)
    preferred_term = Column(String(200), nullable=True)
    description = Column(Text, nullable=True)
    synonyms = Column(JSONB, nullable=False, server_default="[]")
    metadata_ = Column("metadata", JSONB, nullable=False, server_default="{}")
    # ["rpt.Measurement.area", {"table": ..., "column": ..., "confidence": ...}]
    data_sources = Column(JSONB, nullable=False, server_default="[]")
    embedding = Column(Vector(EMBEDDING_DIMENSIONS), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        Index("idx_ontology_embedding_hnsw", embedding, postgresql_using="hnsw",
              postgresql_ops={"embedding": "vector_cosine_ops"}),
    )


class SemanticIndexModel(Base):
    """One indexed assessment form of a customer."""

    __tablename__ = "semantic_index"

    id = Column(String(36), primary_key=True, default=_generate_uuid)
    customer_id = Column(String(100), nullable=False, index=True)
    form_name = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    fields = relationship(
        "SemanticIndexFieldModel",
        back_populates="semantic_index",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        UniqueConstraint("customer_id", "form_name", name="uq_semantic_index_form"),
    )


class SemanticIndexFieldModel(Base):
    """A form field with its assigned semantic concept."""

    __tablename__ = "semantic_index_field"

    id = Column(String(36), primary_key=True, default=_generate_uuid)
    semantic_index_id = Column(
        String(36),
        ForeignKey("semantic_index.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    field_name = Column(String(255), nullable=False)
    data_type = Column(String(100), nullable=True)
    semantic_concept = Column(String(200), nullable=True, index=True)
    concept_id = Column(String(36), nullable=True, index=True)
    confidence = Column(Float, nullable=True)
    ordinal = Column(Integer, nullable=True)
    embedding = Column(Vector(EMBEDDING_DIMENSIONS), nullable=True)

    semantic_index = relationship("SemanticIndexModel", back_populates="fields")

    __table_args__ = (
        Index("idx_index_field_embedding_hnsw", embedding, postgresql_using="hnsw",
              postgresql_ops={"embedding": "vector_cosine_ops"}),
    )


class SemanticIndexNonFormModel(Base):
    """A profiled reporting-schema column, written by non-form discovery."""

    __tablename__ = "semantic_index_nonform"

    id = Column(String(36), primary_key=True, default=_generate_uuid)
    customer_id = Column(String(100), nullable=False, index=True)
    table_name = Column(String(255), nullable=False)
    column_name = Column(String(255), nullable=False)
    data_type = Column(String(100), nullable=True)
    semantic_concept = Column(String(200), nullable=True, index=True)
    semantic_category = Column(String(200), nullable=True)
    concept_id = Column(String(36), nullable=True, index=True)
    confidence = Column(Float, nullable=True)
    is_filterable = Column(Boolean, nullable=False, default=False)
    is_joinable = Column(Boolean, nullable=False, default=False)
    is_review_required = Column(Boolean, nullable=False, default=True)
    review_note = Column(Text, nullable=True)
    discovery_run_id = Column(String(100), nullable=True)
    metadata_ = Column("metadata", JSONB, nullable=False, server_default="{}")
    embedding = Column(Vector(EMBEDDING_DIMENSIONS), nullable=True)
    discovered_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("customer_id", "table_name", "column_name", name="uq_nonform_column"),
        Index("idx_nonform_embedding_hnsw", embedding, postgresql_using="hnsw",
              postgresql_ops={"embedding": "vector_cosine_ops"}),
    )
