"""SQL API controller — safety enforcement and enrichment field resolution."""

from fastapi import APIRouter, Depends

from semantic_query.application.schemas.sql import (
    DesiredFieldsRequest,
    DesiredFieldsResponse,
    SqlValidateRequest,
    SqlValidateResponse,
    StructureErrorSchema,
)
from semantic_query.application.services import SqlSafetyEnforcer, SqlStructureValidator
from semantic_query.application.services.sql_safety import validate_desired_fields
from semantic_query.infrastructure.dependencies import get_sql_enforcer

router = APIRouter(prefix="/sql", tags=["sql"])

_structure_validator = SqlStructureValidator()


@router.post("/validate", response_model=SqlValidateResponse)
async def validate_sql(
    body: SqlValidateRequest,
    enforcer: SqlSafetyEnforcer = Depends(get_sql_enforcer),
):
    """Apply the safety rule chain; optionally check GROUP BY / ORDER BY structure."""
    result = enforcer.validate(body.sql)
    structure_errors: list[StructureErrorSchema] = []
    if result.is_valid and body.check_structure:
        structure = _structure_validator.validate(result.modified_sql)
        structure_errors = [
            StructureErrorSchema(
                type=e.type.value,
                message=e.message,
                suggestion=e.suggestion,
                expression=e.expression,
            )
            for e in structure.errors
        ]
    return SqlValidateResponse(
        is_valid=result.is_valid and not structure_errors,
        modified_sql=result.modified_sql,
        warnings=result.warnings,
        structure_errors=structure_errors,
    )


@router.post("/desired-fields", response_model=DesiredFieldsResponse)
async def resolve_desired_fields(body: DesiredFieldsRequest):
    """Resolve ``entity.field`` tokens against the enrichment whitelist."""
    resolution = validate_desired_fields(body.desired_fields)
    return DesiredFieldsResponse(
        fields_applied=resolution.fields_applied,
        rejected_fields=resolution.rejected_fields,
        join_summary=resolution.join_summary,
        select_columns=resolution.select_columns,
    )
