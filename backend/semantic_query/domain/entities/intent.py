"""Domain entities for question intent classification."""

from dataclasses import dataclass, field
from enum import Enum


class QueryIntent(str, Enum):
    """Closed set of structural question shapes."""

    AGGREGATION_BY_CATEGORY = "aggregation_by_category"
    TIME_SERIES_TREND = "time_series_trend"
    TEMPORAL_PROXIMITY_QUERY = "temporal_proximity_query"
    ASSESSMENT_CORRELATION_CHECK = "assessment_correlation_check"
    WORKFLOW_STATUS_MONITORING = "workflow_status_monitoring"
    LATEST_PER_ENTITY = "latest_per_entity"
    AS_OF_STATE = "as_of_state"
    TOP_K = "top_k"
    PIVOT = "pivot"
    JOIN_ANALYSIS = "join_analysis"
    LEGACY_UNKNOWN = "legacy_unknown"

    @property
    def description(self) -> str:
        return INTENT_DESCRIPTIONS[self]


INTENT_DESCRIPTIONS: dict[QueryIntent, str] = {
    QueryIntent.AGGREGATION_BY_CATEGORY: "Count/sum/average grouped by categories",
    QueryIntent.TIME_SERIES_TREND: "Trends over time periods",
    QueryIntent.TEMPORAL_PROXIMITY_QUERY: (
        'Outcomes at a specific time point (e.g., "at 4 weeks", "around 12 weeks")'
    ),
    QueryIntent.ASSESSMENT_CORRELATION_CHECK: (
        'Missing or mismatched data across assessment types (e.g., "visits without billing")'
    ),
    QueryIntent.WORKFLOW_STATUS_MONITORING: (
        'Filter or group by workflow status/state (e.g., "forms by status")'
    ),
    QueryIntent.LATEST_PER_ENTITY: "Most recent record per entity",
    QueryIntent.AS_OF_STATE: "State at a specific date",
    QueryIntent.TOP_K: "Top/bottom N results",
    QueryIntent.PIVOT: "Transform rows to columns",
    QueryIntent.JOIN_ANALYSIS: "Combine multiple data sources",
    QueryIntent.LEGACY_UNKNOWN: "Unknown or unclassified query type",
}


class ClassificationMethod(str, Enum):
    """How a classification was reached."""

    PATTERN = "pattern"
    AI = "ai"
    FALLBACK = "fallback"


@dataclass(frozen=True)
class IntentCandidate:
    """A single pattern detector's proposal."""

    intent: QueryIntent
    confidence: float
    matched_patterns: tuple[str, ...] = ()


@dataclass(frozen=True)
class ClassificationResult:
    """Final intent classification for one question (immutable, cacheable)."""

    intent: QueryIntent
    confidence: float
    method: ClassificationMethod
    matched_patterns: tuple[str, ...] = ()
    reasoning: str = ""


@dataclass
class FilterPhrase:
    """A filter extracted from a question, expressed in the user's words."""

    operator: str = "equals"
    user_phrase: str = ""
    value: str | None = None


@dataclass
class StructuredIntent:
    """Analysis type, requested metrics and filters extracted from a question."""

    type: str
    metrics: list[str] = field(default_factory=list)
    filters: list[FilterPhrase] = field(default_factory=list)
    confidence: float = 0.0
    reasoning: str = ""
