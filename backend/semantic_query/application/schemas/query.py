"""Pydantic schemas for the query pipeline API."""

from pydantic import BaseModel, Field
from typing import Any


# ── Request Schemas ──────────────────────────────────────────────────


class ClassifyRequest(BaseModel):
    """Request body for intent classification only."""

    question: str = Field(..., min_length=1, description="Natural-language question")
    customer_id: str = Field(..., min_length=1)
    enable_cache: bool = True


class PreviousTurnSchema(BaseModel):
    """The previous turn of a conversation, used for SQL composition."""

    question: str
    sql: str


class AskRequest(BaseModel):
    """Request body for one conversational turn."""

    question: str = Field(..., min_length=1, description="Natural-language question")
    customer_id: str = Field(..., min_length=1)
    previous_turn: PreviousTurnSchema | None = None
    desired_fields: list[str] = Field(
        default_factory=list,
        description='Enrichment fields such as "patient.firstName"',
    )
    execute: bool = Field(default=False, description="Run the validated SQL on the target database")
    enable_cache: bool = True


# ── Response Schemas ─────────────────────────────────────────────────


class ClassificationSchema(BaseModel):
    """Intent classification of a question."""

    intent: str
    description: str
    confidence: float
    method: str
    matched_patterns: list[str] = []
    reasoning: str = ""


class FilterPhraseSchema(BaseModel):
    operator: str
    user_phrase: str
    value: str | None = None


class StructuredIntentSchema(BaseModel):
    """Analysis type, metrics and filters extracted from the question."""

    type: str
    metrics: list[str] = []
    filters: list[FilterPhraseSchema] = []
    confidence: float = 0.0
    reasoning: str = ""


class ConceptSetSchema(BaseModel):
    concepts: list[str] = []
    sources: list[str] = []
    explanations: list[str] = []


class SearchResultSchema(BaseModel):
    """A form field or non-form column matched by semantic search."""

    id: str
    source: str
    semantic_concept: str
    data_type: str | None = None
    confidence: float
    field_name: str | None = None
    form_name: str | None = None
    table_name: str | None = None
    column_name: str | None = None
    concept_id: str | None = None
    similarity_score: float | None = None


class ExecutionSchema(BaseModel):
    columns: list[str] = []
    rows: list[dict[str, Any]] = []


class TurnResultSchema(BaseModel):
    """Outcome of one conversational turn."""

    question: str
    classification: ClassificationSchema
    structured_intent: StructuredIntentSchema
    concepts: ConceptSetSchema
    context: list[SearchResultSchema] = []
    sql: str | None = None
    strategy: str
    is_valid: bool
    warnings: list[str] = []
    errors: list[str] = []
    execution: ExecutionSchema | None = None
