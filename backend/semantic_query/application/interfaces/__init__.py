from .chat_provider import ChatProvider
from .embedding_provider import EmbeddingProvider
from .semantic_index_repository import SemanticIndexRepository
from .ontology_repository import OntologyRepository
from .non_form_profile_repository import NonFormProfileRepository
from .column_source import ColumnSource, ColumnSourceFactory
from .query_executor import QueryExecutor

__all__ = [
    "ChatProvider",
    "EmbeddingProvider",
    "SemanticIndexRepository",
    "OntologyRepository",
    "NonFormProfileRepository",
    "ColumnSource",
    "ColumnSourceFactory",
    "QueryExecutor",
]
