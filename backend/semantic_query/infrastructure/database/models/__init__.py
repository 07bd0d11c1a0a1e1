from .semantic_models import (
    ClinicalOntologyModel,
    SemanticIndexFieldModel,
    SemanticIndexModel,
    SemanticIndexNonFormModel,
)

__all__ = [
    "ClinicalOntologyModel",
    "SemanticIndexModel",
    "SemanticIndexFieldModel",
    "SemanticIndexNonFormModel",
]
