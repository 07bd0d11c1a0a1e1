from .base import Base
from .session import engine, async_session_factory, get_db_session
from .models import (
    ClinicalOntologyModel,
    SemanticIndexModel,
    SemanticIndexFieldModel,
    SemanticIndexNonFormModel,
)

__all__ = [
    "Base",
    "engine",
    "async_session_factory",
    "get_db_session",
    "ClinicalOntologyModel",
    "SemanticIndexModel",
    "SemanticIndexFieldModel",
    "SemanticIndexNonFormModel",
]
