"""Search API controller — concept search over the semantic index."""

from fastapi import APIRouter, Depends

from semantic_query.application.schemas.discovery import FieldSearchRequest, FieldSearchResponse
from semantic_query.application.services import SemanticSearcher
from semantic_query.infrastructure.dependencies import get_semantic_searcher
from semantic_query.presentation.api.v1.query_controller import to_search_result_schema

router = APIRouter(prefix="/search", tags=["search"])


@router.post("/fields", response_model=FieldSearchResponse)
async def search_fields(
    body: FieldSearchRequest,
    searcher: SemanticSearcher = Depends(get_semantic_searcher),
):
    """Find form fields (and optionally non-form columns) for a list of concepts."""
    if body.include_form:
        results = await searcher.search_form_fields(
            body.customer_id,
            body.concepts,
            min_confidence=body.min_confidence,
            limit=body.limit,
            include_non_form=body.include_non_form,
        )
    else:
        results = await searcher.search_non_form_columns(
            body.customer_id,
            body.concepts,
            min_confidence=body.min_confidence,
            limit=body.limit,
        )
    return FieldSearchResponse(
        results=[to_search_result_schema(r) for r in results],
        total=len(results),
    )
