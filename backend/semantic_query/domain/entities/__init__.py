from .chat_message import ChatMessage, TokenUsage, ChatCompletionResult
from .outcome import Outcome
from .intent import (
    QueryIntent,
    INTENT_DESCRIPTIONS,
    ClassificationMethod,
    IntentCandidate,
    ClassificationResult,
    FilterPhrase,
    StructuredIntent,
)
from .concept import (
    ConceptSource,
    ExpandedConceptSet,
    SearchSource,
    SemanticSearchResult,
    OntologyMatch,
    OntologyDataSource,
    ClinicalConcept,
)
from .schema_discovery import (
    ColumnRecord,
    HeuristicVerdict,
    OverrideSource,
    OverrideLevel,
    OverrideMetadata,
    StoredColumnProfile,
    NonFormColumnProfile,
    NonFormSchemaDiscoveryResult,
    MeasurementFamily,
)
from .sql import (
    SqlValidationResult,
    DesiredFieldResolution,
    EnrichmentValidationResult,
    CompositionStrategy,
    CompositionDecision,
    ComposedQuery,
    ComposedSqlValidation,
    GeneratedSql,
    StructureErrorType,
    StructureError,
    StructureValidationResult,
    QueryExecutionResult,
)
from .turn import PreviousTurn, TurnResult

__all__ = [
    "ChatMessage",
    "TokenUsage",
    "ChatCompletionResult",
    "Outcome",
    "QueryIntent",
    "INTENT_DESCRIPTIONS",
    "ClassificationMethod",
    "IntentCandidate",
    "ClassificationResult",
    "FilterPhrase",
    "StructuredIntent",
    "ConceptSource",
    "ExpandedConceptSet",
    "SearchSource",
    "SemanticSearchResult",
    "OntologyMatch",
    "OntologyDataSource",
    "ClinicalConcept",
    "ColumnRecord",
    "HeuristicVerdict",
    "OverrideSource",
    "OverrideLevel",
    "OverrideMetadata",
    "StoredColumnProfile",
    "NonFormColumnProfile",
    "NonFormSchemaDiscoveryResult",
    "MeasurementFamily",
    "SqlValidationResult",
    "DesiredFieldResolution",
    "EnrichmentValidationResult",
    "CompositionStrategy",
    "CompositionDecision",
    "ComposedQuery",
    "ComposedSqlValidation",
    "GeneratedSql",
    "StructureErrorType",
    "StructureError",
    "StructureValidationResult",
    "QueryExecutionResult",
    "PreviousTurn",
    "TurnResult",
]
