"""Domain entities for semantic concepts and search results."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ConceptSource(str, Enum):
    """Where an expanded concept came from."""

    METRIC = "metric"
    FILTER = "filter"
    INTENT_TYPE = "intent_type"


@dataclass
class ExpandedConceptSet:
    """Bounded, deduplicated and ranked concepts for semantic search.

    ``concepts``, ``sources`` and ``explanations`` are parallel lists.
    """

    concepts: list[str] = field(default_factory=list)
    sources: list[ConceptSource] = field(default_factory=list)
    explanations: list[str] = field(default_factory=list)


class SearchSource(str, Enum):
    """Which corpus a search hit came from."""

    FORM = "form"
    NON_FORM = "non_form"


@dataclass(frozen=True)
class SemanticSearchResult:
    """A form field or non-form column matching one or more concepts."""

    id: str
    source: SearchSource
    semantic_concept: str
    data_type: str | None
    confidence: float
    field_name: str | None = None
    form_name: str | None = None
    column_name: str | None = None
    table_name: str | None = None
    concept_id: str | None = None
    similarity_score: float | None = None


@dataclass(frozen=True)
class OntologyMatch:
    """The nearest ontology entry for one embedding query."""

    concept_id: str
    concept_name: str
    canonical_name: str
    concept_type: str
    metadata: dict[str, Any] = field(default_factory=dict)
    similarity: float = 0.0


@dataclass(frozen=True)
class OntologyDataSource:
    """An explicit ontology → schema column mapping (``data_sources`` entry)."""

    concept_id: str
    concept_name: str
    concept_type: str
    confidence: float | None = None


@dataclass
class ClinicalConcept:
    """A curated ontology concept, optionally carrying its embedding.

    ``data_sources`` lists explicit schema columns for the concept, either as
    ``"schema.table.column"`` strings or ``{"table", "column", "confidence"}``
    mappings.
    """

    concept_name: str
    canonical_name: str
    concept_type: str
    id: str | None = None
    preferred_term: str | None = None
    description: str = ""
    synonyms: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    data_sources: list[Any] = field(default_factory=list)
    embedding: list[float] | None = None

    def embedding_text(self) -> str:
        """Text used to embed this concept."""
        parts = [self.concept_name, self.canonical_name, self.description, *self.synonyms]
        return " ".join(p.strip() for p in parts if p and p.strip())
