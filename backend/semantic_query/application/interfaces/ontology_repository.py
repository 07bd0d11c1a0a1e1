"""Abstract repository interface (port) for the clinical ontology."""

from abc import ABC, abstractmethod

from semantic_query.domain.entities import ClinicalConcept, OntologyDataSource, OntologyMatch


class OntologyRepository(ABC):
    """Port for ontology persistence and nearest-neighbour lookup."""

    @abstractmethod
    async def find_nearest(self, embedding: list[float]) -> OntologyMatch | None:
        """Return the single nearest concept by cosine distance, or None."""
        ...

    @abstractmethod
    async def get_data_source_map(self) -> dict[str, OntologyDataSource]:
        """Explicit column mappings keyed by lowercase ``schema.table.column``."""
        ...

    @abstractmethod
    async def get_concept_ids_by_name(self) -> dict[str, str]:
        """Concept ids keyed by lowercase concept name."""
        ...

    @abstractmethod
    async def save_concept(self, concept: ClinicalConcept) -> None:
        """Persist a concept (insert or replace by concept name)."""
        ...

    @abstractmethod
    async def count(self) -> int:
        """Number of stored concepts."""
        ...
