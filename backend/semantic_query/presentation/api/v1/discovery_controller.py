"""Discovery API controller — non-form schema discovery for a customer."""

from fastapi import APIRouter, Depends

from semantic_query.application.schemas.discovery import (
    ColumnProfileSchema,
    NonFormDiscoveryRequest,
    NonFormDiscoveryResponse,
)
from semantic_query.application.services import NonFormSchemaDiscoveryService
from semantic_query.infrastructure.dependencies import get_discovery_service

router = APIRouter(prefix="/discovery", tags=["discovery"])


@router.post("/non-form", response_model=NonFormDiscoveryResponse)
async def discover_non_form_columns(
    body: NonFormDiscoveryRequest,
    service: NonFormSchemaDiscoveryService = Depends(get_discovery_service),
):
    """Profile every column of the reporting schema and persist the results."""
    result = await service.discover(
        body.customer_id,
        body.connection_string,
        discovery_run_id=body.discovery_run_id,
    )
    return NonFormDiscoveryResponse(
        customer_id=result.customer_id,
        columns=[
            ColumnProfileSchema(
                table_name=c.table_name,
                column_name=c.column_name,
                data_type=c.data_type,
                semantic_concept=c.semantic_concept,
                semantic_category=c.semantic_category,
                concept_id=c.concept_id,
                confidence=c.confidence,
                is_filterable=c.is_filterable,
                is_joinable=c.is_joinable,
                is_review_required=c.is_review_required,
                review_note=c.review_note,
                metadata=c.metadata,
            )
            for c in result.columns
        ],
        discovered_columns=result.discovered_columns,
        high_confidence_columns=result.high_confidence_columns,
        filterable_columns=result.filterable_columns,
        joinable_columns=result.joinable_columns,
        review_required_columns=result.review_required_columns,
        average_confidence=result.average_confidence,
        pruned_columns=result.pruned_columns,
        warnings=result.warnings,
        errors=result.errors,
    )
