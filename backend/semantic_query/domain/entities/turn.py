"""Domain entities for one conversational question → SQL turn."""

from dataclasses import dataclass, field

from .concept import ExpandedConceptSet, SemanticSearchResult
from .intent import ClassificationResult, StructuredIntent
from .sql import CompositionStrategy, QueryExecutionResult


@dataclass(frozen=True)
class PreviousTurn:
    """The prior question and the SQL that answered it."""

    question: str
    sql: str


@dataclass
class TurnResult:
    """Everything produced while answering one question."""

    question: str
    classification: ClassificationResult
    structured_intent: StructuredIntent
    concepts: ExpandedConceptSet
    context: list[SemanticSearchResult] = field(default_factory=list)
    sql: str | None = None
    strategy: CompositionStrategy = CompositionStrategy.FRESH
    is_valid: bool = False
    warnings: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    execution: QueryExecutionResult | None = None
