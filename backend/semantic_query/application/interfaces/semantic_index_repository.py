"""Abstract repository interface (port) for the indexed form / non-form corpus."""

from abc import ABC, abstractmethod

from semantic_query.domain.entities import SemanticSearchResult


class SemanticIndexRepository(ABC):
    """Port for similarity search over indexed schema fields."""

    @abstractmethod
    async def resolve_concept_ids(self, concepts: list[str]) -> list[str]:
        """Map concept phrases to ontology concept ids.

        Matches concept name, canonical name, preferred term and synonyms
        case-insensitively. Returns an empty list when nothing matches.
        """
        ...

    @abstractmethod
    async def search_form_fields(
        self,
        customer_id: str,
        *,
        concepts: list[str],
        embeddings: list[list[float]],
        concept_ids: list[str],
        min_confidence: float,
    ) -> list[SemanticSearchResult]:
        """Run one similarity query for a batch of concepts over form fields.

        A row is a hit when its concept id or semantic concept matches, or when
        its embedding similarity to any concept vector reaches ``min_confidence``.
        """
        ...

    @abstractmethod
    async def search_non_form_columns(
        self,
        customer_id: str,
        *,
        concepts: list[str],
        embeddings: list[list[float]],
        concept_ids: list[str],
        min_confidence: float,
    ) -> list[SemanticSearchResult]:
        """Run one similarity query for a batch of concepts over non-form columns."""
        ...
