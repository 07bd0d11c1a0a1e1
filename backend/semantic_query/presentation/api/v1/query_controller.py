"""Query API controller — intent classification and conversational turns."""

from fastapi import APIRouter, Depends

from semantic_query.application.schemas.query import (
    AskRequest,
    ClassificationSchema,
    ClassifyRequest,
    ConceptSetSchema,
    ExecutionSchema,
    FilterPhraseSchema,
    SearchResultSchema,
    StructuredIntentSchema,
    TurnResultSchema,
)
from semantic_query.application.services import CachingIntentClassifier, QueryPipelineService
from semantic_query.domain.entities import (
    ClassificationResult,
    PreviousTurn,
    SemanticSearchResult,
    TurnResult,
)
from semantic_query.infrastructure.dependencies import get_intent_classifier, get_query_pipeline

router = APIRouter(prefix="/query", tags=["query"])


# ── Helpers ──────────────────────────────────────────────────────────


def _to_classification_schema(result: ClassificationResult) -> ClassificationSchema:
    return ClassificationSchema(
        intent=result.intent.value,
        description=result.intent.description,
        confidence=result.confidence,
        method=result.method.value,
        matched_patterns=list(result.matched_patterns),
        reasoning=result.reasoning,
    )


def to_search_result_schema(result: SemanticSearchResult) -> SearchResultSchema:
    return SearchResultSchema(
        id=result.id,
        source=result.source.value,
        semantic_concept=result.semantic_concept,
        data_type=result.data_type,
        confidence=result.confidence,
        field_name=result.field_name,
        form_name=result.form_name,
        table_name=result.table_name,
        column_name=result.column_name,
        concept_id=result.concept_id,
        similarity_score=result.similarity_score,
    )


def _to_turn_schema(turn: TurnResult) -> TurnResultSchema:
    """Map domain TurnResult to response schema."""
    structured = turn.structured_intent
    return TurnResultSchema(
        question=turn.question,
        classification=_to_classification_schema(turn.classification),
        structured_intent=StructuredIntentSchema(
            type=structured.type,
            metrics=structured.metrics,
            filters=[
                FilterPhraseSchema(operator=f.operator, user_phrase=f.user_phrase, value=f.value)
                for f in structured.filters
            ],
            confidence=structured.confidence,
            reasoning=structured.reasoning,
        ),
        concepts=ConceptSetSchema(
            concepts=turn.concepts.concepts,
            sources=[s.value for s in turn.concepts.sources],
            explanations=turn.concepts.explanations,
        ),
        context=[to_search_result_schema(r) for r in turn.context],
        sql=turn.sql,
        strategy=turn.strategy.value,
        is_valid=turn.is_valid,
        warnings=turn.warnings,
        errors=turn.errors,
        execution=(
            ExecutionSchema(columns=turn.execution.columns, rows=turn.execution.rows)
            if turn.execution is not None else None
        ),
    )


# ── Endpoints ────────────────────────────────────────────────────────


@router.post("/classify", response_model=ClassificationSchema)
async def classify_question(
    body: ClassifyRequest,
    classifier: CachingIntentClassifier = Depends(get_intent_classifier),
):
    """Classify a question's intent (patterns first, AI fallback)."""
    result = await classifier.classify(
        body.question, body.customer_id, enable_cache=body.enable_cache
    )
    return _to_classification_schema(result)


@router.post("/ask", response_model=TurnResultSchema)
async def ask_question(
    body: AskRequest,
    pipeline: QueryPipelineService = Depends(get_query_pipeline),
):
    """Run one conversational turn: question → validated SQL (→ rows)."""
    previous = (
        PreviousTurn(question=body.previous_turn.question, sql=body.previous_turn.sql)
        if body.previous_turn is not None else None
    )
    turn = await pipeline.ask(
        body.question,
        body.customer_id,
        previous,
        desired_fields=body.desired_fields,
        execute=body.execute,
        enable_cache=body.enable_cache,
    )
    return _to_turn_schema(turn)
