"""Domain entities for SQL validation, enrichment and composition."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


@dataclass
class SqlValidationResult:
    """Outcome of the safety enforcer for one candidate statement."""

    is_valid: bool
    modified_sql: str | None = None
    warnings: list[str] = field(default_factory=list)


@dataclass
class DesiredFieldResolution:
    """Whitelisted enrichment fields plus the JOINs that bring them in."""

    fields_applied: list[str] = field(default_factory=list)
    rejected_fields: list[str] = field(default_factory=list)
    join_summary: str = ""
    select_columns: list[str] = field(default_factory=list)


@dataclass
class EnrichmentValidationResult:
    """Whether generated SQL selected only the requested enrichment aliases."""

    is_valid: bool
    extra_fields: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


class CompositionStrategy(str, Enum):
    """How a follow-up question reuses the previous query."""

    CTE = "cte"
    MERGED_WHERE = "merged_where"
    FRESH = "fresh"


@dataclass
class CompositionDecision:
    """Whether the new question refines the previous one."""

    should_compose: bool
    confidence: float
    reasoning: str = ""
    strategy: CompositionStrategy | None = None


@dataclass
class ComposedQuery:
    """SQL produced by composing onto a previous query."""

    sql: str
    strategy: CompositionStrategy
    reasoning: str = ""

    @property
    def is_building_on_previous(self) -> bool:
        return self.strategy != CompositionStrategy.FRESH


@dataclass
class ComposedSqlValidation:
    """Composition-specific checks plus the safety enforcer verdict."""

    valid: bool
    errors: list[str] = field(default_factory=list)
    safety: SqlValidationResult | None = None


class StructureErrorType(str, Enum):
    GROUP_BY_VIOLATION = "GROUP_BY_VIOLATION"
    ORDER_BY_VIOLATION = "ORDER_BY_VIOLATION"
    AGGREGATE_VIOLATION = "AGGREGATE_VIOLATION"


@dataclass(frozen=True)
class StructureError:
    type: StructureErrorType
    message: str
    suggestion: str
    expression: str | None = None


@dataclass
class StructureValidationResult:
    """GROUP BY / ORDER BY / aggregate correctness of a statement."""

    is_valid: bool = True
    errors: list[StructureError] = field(default_factory=list)
    grouped_expressions: list[str] = field(default_factory=list)
    order_by_expressions: list[str] = field(default_factory=list)


@dataclass
class QueryExecutionResult:
    """Rows returned by the external executor."""

    columns: list[str] = field(default_factory=list)
    rows: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class GeneratedSql:
    """Fresh SQL written by the LLM for one question."""

    sql: str
    explanation: str = ""
