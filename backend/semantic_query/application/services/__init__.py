from .cache_sweeper import CacheSweeper
from .concept_expander import ConceptExpander
from .intent_classifier import CachingIntentClassifier, IntentClassifier
from .intent_extraction_service import IntentExtractionService
from .query_pipeline import QueryPipelineService
from .schema_discovery_service import NonFormSchemaDiscoveryService
from .semantic_searcher import SemanticSearcher
from .sql_composer import SqlComposer
from .sql_generation_service import SqlGenerationService
from .sql_safety import SqlSafetyEnforcer
from .sql_structure_validator import SqlStructureValidator
from .ttl_cache import TTLCache

__all__ = [
    "CacheSweeper",
    "ConceptExpander",
    "CachingIntentClassifier",
    "IntentClassifier",
    "IntentExtractionService",
    "QueryPipelineService",
    "NonFormSchemaDiscoveryService",
    "SemanticSearcher",
    "SqlComposer",
    "SqlGenerationService",
    "SqlSafetyEnforcer",
    "SqlStructureValidator",
    "TTLCache",
]
