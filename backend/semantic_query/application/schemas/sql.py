"""Pydantic schemas for SQL validation endpoints."""

from pydantic import BaseModel, Field


class SqlValidateRequest(BaseModel):
    sql: str = Field(..., description="SQL statement to check")
    check_structure: bool = Field(default=True, description="Also run GROUP BY / ORDER BY checks")


class StructureErrorSchema(BaseModel):
    type: str
    message: str
    suggestion: str
    expression: str | None = None


class SqlValidateResponse(BaseModel):
    """Safety verdict plus optional structure errors."""

    is_valid: bool
    modified_sql: str | None = None
    warnings: list[str] = []
    structure_errors: list[StructureErrorSchema] = []


class DesiredFieldsRequest(BaseModel):
    desired_fields: list[str] = Field(default_factory=list)


class DesiredFieldsResponse(BaseModel):
    """Whitelisted enrichment fields resolved to joins and select columns."""

    fields_applied: list[str] = []
    rejected_fields: list[str] = []
    join_summary: str = ""
    select_columns: list[str] = []
