"""Domain entities for non-form schema discovery (per-column profiling)."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


@dataclass(frozen=True)
class ColumnRecord:
    """One column as reported by the target database catalog."""

    table_schema: str
    table_name: str
    column_name: str
    data_type: str | None = None
    ordinal_position: int | None = None
    is_nullable: bool | None = None
    character_max_length: int | None = None
    numeric_precision: int | None = None
    numeric_scale: int | None = None

    @property
    def qualified_table(self) -> str:
        return f"{self.table_schema}.{self.table_name}"


@dataclass(frozen=True)
class HeuristicVerdict:
    """A boolean decision plus the reason that produced it."""

    value: bool
    reason: str


class OverrideSource(str, Enum):
    """Who assigned a column's semantic concept, highest priority first."""

    MANUAL_REVIEW = "manual_review"
    ADMIN_UI = "admin_ui"
    MEASUREMENT_HEURISTIC = "measurement_heuristic"
    MIGRATION = "migration"
    ONTOLOGY_BACKED = "ontology_backed"
    DISCOVERY_INFERRED = "discovery_inferred"


class OverrideLevel(str, Enum):
    """Which semantic fields an override locks."""

    SEMANTIC_CONCEPT = "semantic_concept"
    SEMANTIC_CATEGORY = "semantic_category"
    BOTH = "both"
    METADATA_ONLY = "metadata_only"


@dataclass
class OverrideMetadata:
    """Provenance of a column's semantic assignment, stored in row metadata."""

    source: OverrideSource
    level: OverrideLevel
    date: datetime | None
    reason: str | None = None
    overridden_by: str | None = None
    original_value: str | None = None


@dataclass
class StoredColumnProfile:
    """The currently persisted semantic assignment for one column."""

    semantic_concept: str | None
    semantic_category: str | None
    concept_id: str | None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class NonFormColumnProfile:
    """Discovery output for one schema column.

    ``is_filterable``/``is_joinable`` come from name and data-type heuristics
    only; ``is_review_required`` comes from confidence alone.
    """

    table_name: str
    column_name: str
    data_type: str | None
    semantic_concept: str | None = None
    semantic_category: str | None = None
    concept_id: str | None = None
    confidence: float | None = None
    is_filterable: bool = False
    is_joinable: bool = False
    is_review_required: bool = True
    review_note: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    embedding: list[float] | None = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.table_name, self.column_name)


@dataclass
class NonFormSchemaDiscoveryResult:
    """Summary of one discovery run for a customer."""

    customer_id: str
    columns: list[NonFormColumnProfile] = field(default_factory=list)
    discovered_columns: int = 0
    high_confidence_columns: int = 0
    filterable_columns: int = 0
    joinable_columns: int = 0
    review_required_columns: int = 0
    average_confidence: float | None = None
    pruned_columns: int = 0
    warnings: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class MeasurementFamily:
    """Heuristic concept for well-known measurement/time columns."""

    key: str
    tables: tuple[str, ...]
    columns: tuple[str, ...]
    canonical_concept: str
    confidence: float
    unit: str | None = None

    def matches(self, qualified_table: str, column_name: str) -> bool:
        table = qualified_table.lower()
        column = column_name.lower()
        return (
            any(t.lower() == table for t in self.tables)
            and any(c.lower() == column for c in self.columns)
        )
