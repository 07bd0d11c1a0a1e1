"""Pydantic schemas for non-form schema discovery and semantic search."""

from pydantic import BaseModel, Field
from typing import Any

from .query import SearchResultSchema


# ── Discovery ────────────────────────────────────────────────────────


class NonFormDiscoveryRequest(BaseModel):
    customer_id: str = Field(..., min_length=1)
    connection_string: str = Field(..., min_length=1, description="SQLAlchemy URL of the analytics database")
    discovery_run_id: str | None = None


class ColumnProfileSchema(BaseModel):
    table_name: str
    column_name: str
    data_type: str | None = None
    semantic_concept: str | None = None
    semantic_category: str | None = None
    concept_id: str | None = None
    confidence: float | None = None
    is_filterable: bool = False
    is_joinable: bool = False
    is_review_required: bool = True
    review_note: str | None = None
    metadata: dict[str, Any] = {}


class NonFormDiscoveryResponse(BaseModel):
    """Summary of one discovery run."""

    customer_id: str
    columns: list[ColumnProfileSchema] = []
    discovered_columns: int = 0
    high_confidence_columns: int = 0
    filterable_columns: int = 0
    joinable_columns: int = 0
    review_required_columns: int = 0
    average_confidence: float | None = None
    pruned_columns: int = 0
    warnings: list[str] = []
    errors: list[str] = []


# ── Search ───────────────────────────────────────────────────────────


class FieldSearchRequest(BaseModel):
    customer_id: str = Field(..., min_length=1)
    concepts: list[str] = Field(..., min_length=1)
    include_form: bool = True
    include_non_form: bool = False
    min_confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    limit: int | None = Field(default=None, ge=1, le=500)


class FieldSearchResponse(BaseModel):
    results: list[SearchResultSchema] = []
    total: int = 0
