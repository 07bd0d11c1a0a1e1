from .query import (
    ClassifyRequest,
    PreviousTurnSchema,
    AskRequest,
    ClassificationSchema,
    FilterPhraseSchema,
    StructuredIntentSchema,
    ConceptSetSchema,
    SearchResultSchema,
    ExecutionSchema,
    TurnResultSchema,
)
from .sql import (
    SqlValidateRequest,
    StructureErrorSchema,
    SqlValidateResponse,
    DesiredFieldsRequest,
    DesiredFieldsResponse,
)
from .discovery import (
    NonFormDiscoveryRequest,
    ColumnProfileSchema,
    NonFormDiscoveryResponse,
    FieldSearchRequest,
    FieldSearchResponse,
)

__all__ = [
    "ClassifyRequest",
    "PreviousTurnSchema",
    "AskRequest",
    "ClassificationSchema",
    "FilterPhraseSchema",
    "StructuredIntentSchema",
    "ConceptSetSchema",
    "SearchResultSchema",
    "ExecutionSchema",
    "TurnResultSchema",
    "SqlValidateRequest",
    "StructureErrorSchema",
    "SqlValidateResponse",
    "DesiredFieldsRequest",
    "DesiredFieldsResponse",
    "NonFormDiscoveryRequest",
    "ColumnProfileSchema",
    "NonFormDiscoveryResponse",
    "FieldSearchRequest",
    "FieldSearchResponse",
]
