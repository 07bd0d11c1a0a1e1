"""Ontology seeder — loads the clinical ontology YAML into the repository.

Executed once at application startup via the FastAPI lifespan. Concepts
are upserted by ``concept_name``; embeddings are computed in one batch
when an embedding provider is configured.
"""

import logging
from pathlib import Path
from typing import Any

import yaml

from semantic_query.application.interfaces import EmbeddingProvider, OntologyRepository
from semantic_query.domain.entities import ClinicalConcept, MeasurementFamily

logger = logging.getLogger(__name__)


def _load_yaml(path: Path) -> dict | None:
    """Load and parse a YAML file, returning None on error."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            return yaml.safe_load(f)
    except (OSError, yaml.YAMLError):
        logger.exception("Failed to parse YAML file: %s", path)
        return None


def _build_concept(entry: dict[str, Any]) -> ClinicalConcept:
    name = entry["concept_name"]
    return ClinicalConcept(
        concept_name=name,
        canonical_name=entry.get("canonical_name", name),
        concept_type=entry.get("concept_type", "general"),
        preferred_term=entry.get("preferred_term"),
        description=(entry.get("description") or "").strip(),
        synonyms=[str(s) for s in entry.get("synonyms", [])],
        metadata=dict(entry.get("metadata") or {}),
        data_sources=list(entry.get("data_sources") or []),
    )


def load_ontology_concepts(path: str | Path) -> list[ClinicalConcept]:
    """Parse the ``concepts:`` list of an ontology YAML file."""
    data = _load_yaml(Path(path))
    if not data:
        return []

    concepts: list[ClinicalConcept] = []
    for entry in data.get("concepts", []):
        if not isinstance(entry, dict) or not entry.get("concept_name"):
            logger.warning("Skipping ontology entry without concept_name: %r", entry)
            continue
        concepts.append(_build_concept(entry))
    return concepts


def load_measurement_families(path: str | Path) -> list[MeasurementFamily]:
    """Parse the ``families:`` mapping of the measurement-families YAML file."""
    data = _load_yaml(Path(path))
    if not data:
        return []

    families: list[MeasurementFamily] = []
    for key, family in (data.get("families") or {}).items():
        try:
            families.append(
                MeasurementFamily(
                    key=key,
                    tables=tuple(family["tables"]),
                    columns=tuple(family["columns"]),
                    canonical_concept=family["canonical_concept"],
                    confidence=float(family["confidence"]),
                    unit=family.get("unit"),
                )
            )
        except (KeyError, TypeError, ValueError):
            logger.warning("Skipping malformed measurement family %r", key)
    logger.info("Loaded %d measurement families", len(families))
    return families


class OntologySeeder:
    """Seeds the ontology repository from a YAML file."""

    def __init__(
        self,
        ontology_file: str | Path,
        repository: OntologyRepository,
        embedding_provider: EmbeddingProvider | None = None,
    ):
        self._path = Path(ontology_file)
        self._repo = repository
        self._embedding_provider = embedding_provider

    async def seed(self) -> int:
        """Upsert every concept in the file. Returns the number saved."""
        if not self._path.exists():
            logger.warning("Ontology file not found: %s", self._path)
            return 0

        concepts = load_ontology_concepts(self._path)
        if not concepts:
            return 0

        await self._attach_embeddings(concepts)
        for concept in concepts:
            await self._repo.save_concept(concept)

        logger.info("Seeded %d ontology concepts from %s", len(concepts), self._path.name)
        return len(concepts)

    async def _attach_embeddings(self, concepts: list[ClinicalConcept]) -> None:
        if self._embedding_provider is None:
            logger.info("No embedding provider configured — seeding ontology without vectors")
            return
        try:
            vectors = await self._embedding_provider.generate_embeddings(
                [c.embedding_text() for c in concepts]
            )
        except Exception as e:
            logger.warning("Failed to embed ontology concepts: %s", e)
            return
        for concept, vector in zip(concepts, vectors):
            concept.embedding = vector
