from .ontology_repository import PgOntologyRepository, build_data_source_map
from .semantic_index_repository import PgSemanticIndexRepository
from .non_form_profile_repository import PgNonFormProfileRepository

__all__ = [
    "PgOntologyRepository",
    "PgSemanticIndexRepository",
    "PgNonFormProfileRepository",
    "build_data_source_map",
]
