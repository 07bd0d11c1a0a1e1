"""Non-form schema discovery — profiles every column of the reporting schema.

For each column of the customer's ``rpt`` schema:
  1. Static heuristics decide ``is_filterable`` / ``is_joinable`` from the
     declared data type and the column name.
  2. A semantic concept is assigned, in order of precedence, from explicit
     ontology ``data_sources`` mappings, the nearest ontology entry by
     embedding, or a measurement-family heuristic.
  3. ``is_review_required`` follows from the confidence alone.
  4. The profile is upserted, respecting higher-priority manual overrides.
Rows not touched by the run are pruned afterwards, unless any upsert failed.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any

from semantic_query.application.interfaces import (
    ColumnSourceFactory,
    EmbeddingProvider,
    NonFormProfileRepository,
    OntologyRepository,
)
from semantic_query.application.services.override_policy import (
    apply_override_fields,
    create_override,
    format_original_value,
    read_override,
    should_use_incoming,
)
from semantic_query.domain.entities import (
    ColumnRecord,
    HeuristicVerdict,
    MeasurementFamily,
    NonFormColumnProfile,
    NonFormSchemaDiscoveryResult,
    OntologyDataSource,
    OverrideMetadata,
    OverrideSource,
)
from semantic_query.domain.exceptions import InvalidArgumentError
from semantic_query.infrastructure.logging.colored_logger import PipelineLogger, PipelineStage

logger = logging.getLogger(__name__)
plog = PipelineLogger("NonFormSchemaDiscovery")

HIGH_CONFIDENCE_THRESHOLD = 0.85
REVIEW_THRESHOLD = 0.7
DATA_SOURCE_DEFAULT_CONFIDENCE = 0.95

NON_FILTERABLE_TYPES = frozenset({
    "image", "text", "ntext", "sql_variant", "xml", "hierarchyid",
    "timestamp", "varbinary", "geography", "geometry",
})

LIKELY_JOIN_SUFFIXES = ("id", "_id", "fk", "_fk", "key", "_key")


# ── Heuristics ───────────────────────────────────────────────────────

def _normalise_type(data_type: str | None) -> str | None:
    if not data_type or not data_type.strip():
        return None
    return data_type.strip().lower()


def infer_filterable(column_name: str, data_type: str | None) -> HeuristicVerdict:
    """Whether a column can sensibly appear in a WHERE clause, by type only."""
    t = _normalise_type(data_type)
    if t in NON_FILTERABLE_TYPES:
        return HeuristicVerdict(False, "Data type excluded from filtering")
    if t is None:
        return HeuristicVerdict(True, "Unknown type, default filterable")
    if "char" in t:
        return HeuristicVerdict(True, "Textual column suitable for filters")
    if "int" in t:
        return HeuristicVerdict(True, "Integer column suitable for filters")
    if "decimal" in t or "numeric" in t:
        return HeuristicVerdict(True, "Numeric column suitable for filters")
    if "date" in t or "time" in t:
        return HeuristicVerdict(True, "Temporal column suitable for filters")
    if "uniqueidentifier" in t:
        return HeuristicVerdict(True, "Identifier column suitable for equality filters")
    if t == "bit":
        return HeuristicVerdict(True, "Boolean column suitable for filters")
    return HeuristicVerdict(False, "Data type not recognised as filterable")


def infer_joinable(column_name: str, data_type: str | None) -> HeuristicVerdict:
    """Whether a column looks like a join key, by name suffix and type."""
    if not column_name.lower().endswith(LIKELY_JOIN_SUFFIXES):
        return HeuristicVerdict(False, "Column name does not resemble a join key")
    t = _normalise_type(data_type)
    if t is None:
        return HeuristicVerdict(True, "Likely join key based on naming convention")
    if "int" in t or "uniqueidentifier" in t or "char" in t:
        return HeuristicVerdict(True, "Naming and type suggest foreign key")
    return HeuristicVerdict(False, "Naming matches join pattern but type is not join-friendly")


def build_embedding_prompt(column: ColumnRecord) -> str:
    """``"rpt Measurement area decimal"`` style text embedded for the column."""
    segments = [
        column.qualified_table.replace(".", " "),
        column.column_name,
        column.data_type or "",
    ]
    text = " ".join(s.strip() for s in segments if s and s.strip())
    return re.sub(r"\s+", " ", text)


def _clamp(value: float) -> float:
    return min(max(value, 0.0), 1.0)


def _average(values: list[float]) -> float | None:
    if not values:
        return None
    return round(sum(values) / len(values), 2)


@dataclass
class _Assignment:
    concept: str | None = None
    category: str | None = None
    concept_id: str | None = None
    confidence: float | None = None
    source: OverrideSource | None = None
    reason: str | None = None
    review_sources: list[str] = field(default_factory=list)
    embedding: list[float] | None = None


# ── Service ──────────────────────────────────────────────────────────

class NonFormSchemaDiscoveryService:
    """Batch job that writes the non-form corpus searched by the Semantic Searcher."""

    def __init__(
        self,
        ontology_repo: OntologyRepository,
        profile_repo: NonFormProfileRepository,
        embedding_provider: EmbeddingProvider | None,
        column_source_factory: ColumnSourceFactory,
        *,
        measurement_families: list[MeasurementFamily] | None = None,
        schema: str = "rpt",
        high_confidence_threshold: float = HIGH_CONFIDENCE_THRESHOLD,
        review_threshold: float = REVIEW_THRESHOLD,
    ):
        self._ontology_repo = ontology_repo
        self._profile_repo = profile_repo
        self._embedding_provider = embedding_provider
        self._column_source_factory = column_source_factory
        self._families = list(measurement_families or [])
        self._schema = schema
        self._high = high_confidence_threshold
        self._review = review_threshold

    async def discover(
        self,
        customer_id: str,
        connection_string: str,
        discovery_run_id: str | None = None,
    ) -> NonFormSchemaDiscoveryResult:
        if not customer_id:
            raise InvalidArgumentError("customerId is required for non-form schema discovery")
        if not connection_string:
            raise InvalidArgumentError("connectionString is required for non-form schema discovery")

        plog.separator(f"Non-form discovery {customer_id}")
        source = self._column_source_factory(connection_string)
        try:
            with plog.timed_step(PipelineStage.DISCOVERY, "Reading column catalog", schema=self._schema):
                columns = await source.list_columns(self._schema)
        finally:
            await source.close()

        data_sources = await self._load_data_sources()
        concept_ids = await self._load_concept_ids()

        result = NonFormSchemaDiscoveryResult(customer_id=customer_id)
        confidences: list[float] = []
        keep: set[tuple[str, str]] = set()
        had_upsert_error = False

        for column in columns:
            profile = await self._profile_column(column, data_sources, concept_ids, result)
            keep.add(profile.key)
            if profile.confidence is not None:
                confidences.append(profile.confidence)
                if profile.confidence >= self._high:
                    result.high_confidence_columns += 1
            if profile.is_review_required:
                result.review_required_columns += 1
            if profile.is_filterable:
                result.filterable_columns += 1
            if profile.is_joinable:
                result.joinable_columns += 1

            try:
                await self._profile_repo.upsert(customer_id, profile, discovery_run_id=discovery_run_id)
            except Exception as e:
                had_upsert_error = True
                logger.warning("Failed to persist %s.%s: %s", profile.table_name, profile.column_name, e)
                result.errors.append(f"Failed to persist {profile.table_name}.{profile.column_name}: {e}")
            result.columns.append(profile)

        if not had_upsert_error and keep:
            try:
                result.pruned_columns = await self._profile_repo.prune_stale(customer_id, keep)
            except Exception as e:
                logger.warning("Failed to prune stale non-form columns: %s", e)
                result.errors.append(f"Failed to prune stale non-form columns: {e}")
        elif had_upsert_error:
            plog.step_warning(PipelineStage.DISCOVERY, "Skipping stale-row pruning after write failures")

        result.discovered_columns = len(result.columns)
        result.average_confidence = _average(confidences)
        plog.stats(
            discovered=result.discovered_columns,
            high_confidence=result.high_confidence_columns,
            review_required=result.review_required_columns,
            pruned=result.pruned_columns,
            errors=len(result.errors),
        )
        return result

    # ── Per column ───────────────────────────────────────────────────

    async def _profile_column(
        self,
        column: ColumnRecord,
        data_sources: dict[str, OntologyDataSource],
        concept_ids: dict[str, str],
        result: NonFormSchemaDiscoveryResult,
    ) -> NonFormColumnProfile:
        table = column.qualified_table
        label = f"{table}.{column.column_name}"
        prompt = build_embedding_prompt(column)
        filterable = infer_filterable(column.column_name, column.data_type)
        joinable = infer_joinable(column.column_name, column.data_type)

        review_note: str | None = None
        try:
            assignment = await self._assign(column, prompt, data_sources, concept_ids)
        except Exception as e:
            logger.warning("Discovery failed for %s: %s", label, e)
            assignment = _Assignment()
            review_note = f"Discovery error: {e}"
            result.errors.append(f"{label}: {e}")
        else:
            if assignment.source is None:
                result.warnings.append(f"{label} has no ontology match")

        confidence = assignment.confidence
        is_review_required = confidence is None or confidence < self._review
        if confidence is not None and is_review_required:
            result.warnings.append(f"{label} flagged for review (confidence {confidence:.2f})")
            review_note = f"Confidence {confidence:.2f} below review threshold {self._review:g}"
        if assignment.review_sources:
            tag = f"[SOURCE:{'|'.join(assignment.review_sources)}]"
            review_note = f"{tag} {review_note}" if review_note else tag

        metadata: dict[str, Any] = {
            "schema": column.table_schema,
            "ordinalPosition": column.ordinal_position,
            "isNullable": column.is_nullable,
            "characterMaxLength": column.character_max_length,
            "numericPrecision": column.numeric_precision,
            "numericScale": column.numeric_scale,
            "heuristics": {
                "embeddingPrompt": prompt,
                "filterable": {"value": filterable.value, "reason": filterable.reason},
                "joinable": {"value": joinable.value, "reason": joinable.reason},
                "highConfidenceThreshold": self._high,
                "reviewThreshold": self._review,
            },
        }

        profile = NonFormColumnProfile(
            table_name=table,
            column_name=column.column_name,
            data_type=column.data_type,
            semantic_concept=assignment.concept,
            semantic_category=assignment.category,
            concept_id=assignment.concept_id,
            confidence=confidence,
            is_filterable=filterable.value,
            is_joinable=joinable.value,
            is_review_required=is_review_required,
            review_note=review_note,
            metadata=metadata,
            embedding=assignment.embedding,
        )
        await self._apply_overrides(result.customer_id, profile, assignment)
        return profile

    async def _assign(
        self,
        column: ColumnRecord,
        prompt: str,
        data_sources: dict[str, OntologyDataSource],
        concept_ids: dict[str, str],
    ) -> _Assignment:
        key = f"{column.qualified_table}.{column.column_name}".lower()
        assignment = _Assignment()

        mapped = data_sources.get(key)
        if mapped is not None:
            assignment.concept = mapped.concept_name
            assignment.category = mapped.concept_type
            assignment.concept_id = mapped.concept_id
            assignment.confidence = (
                _clamp(mapped.confidence) if mapped.confidence is not None
                else DATA_SOURCE_DEFAULT_CONFIDENCE
            )
            assignment.source = OverrideSource.ONTOLOGY_BACKED
            assignment.reason = f"ontology_data_sources:{key}"
            assignment.review_sources.append(assignment.reason)
            return assignment

        if self._embedding_provider is not None:
            embedding = await self._embedding_provider.embed(prompt)
            assignment.embedding = embedding or None
            match = await self._ontology_repo.find_nearest(embedding) if embedding else None
            if match is not None:
                concept_type_key = match.metadata.get("concept_type_key")
                category_key = match.metadata.get("category_key")
                assignment.concept = (
                    concept_type_key.strip()
                    if isinstance(concept_type_key, str) and concept_type_key.strip()
                    else match.concept_type
                )
                assignment.category = (
                    category_key.strip()
                    if isinstance(category_key, str) and category_key.strip()
                    else match.concept_name
                )
                assignment.concept_id = match.concept_id
                assignment.confidence = round(_clamp(match.similarity), 2)
                assignment.source = OverrideSource.DISCOVERY_INFERRED
                assignment.reason = f"ontology_embedding:{match.concept_name}"
                assignment.review_sources.append(assignment.reason)
                return assignment

        family = next(
            (f for f in self._families if f.matches(column.qualified_table, column.column_name)),
            None,
        )
        if family is not None:
            assignment.concept = family.canonical_concept
            assignment.category = family.key
            assignment.concept_id = concept_ids.get(family.canonical_concept.lower())
            assignment.confidence = _clamp(family.confidence)
            assignment.source = OverrideSource.MEASUREMENT_HEURISTIC
            assignment.reason = f"measurement_family:{family.key}"
            assignment.review_sources.append(assignment.reason)
        return assignment

    async def _apply_overrides(
        self,
        customer_id: str,
        profile: NonFormColumnProfile,
        assignment: _Assignment,
    ) -> None:
        """Keep fields locked by a higher-priority source and record provenance."""
        incoming: OverrideMetadata | None = None
        if assignment.source is not None and profile.semantic_concept:
            incoming = create_override(assignment.source, reason=assignment.reason)

        try:
            stored = await self._profile_repo.get_stored(
                customer_id, profile.table_name, profile.column_name
            )
        except Exception as e:
            logger.warning(
                "Failed to check overrides for %s.%s: %s", profile.table_name, profile.column_name, e
            )
            stored = None

        if stored is None:
            apply_override_fields(profile.metadata, incoming)
            return

        existing = read_override(stored.metadata)
        profile.metadata = {**stored.metadata, **profile.metadata}
        if incoming is None:
            apply_override_fields(profile.metadata, existing)
            return

        persisted = incoming
        blocked = False
        if should_use_incoming(existing, incoming, "semantic_concept"):
            incoming.original_value = format_original_value(
                stored.semantic_concept, stored.semantic_category
            )
        else:
            profile.semantic_concept = stored.semantic_concept
            profile.concept_id = stored.concept_id
            persisted = existing
            blocked = True

        if not should_use_incoming(existing, incoming, "semantic_category"):
            profile.semantic_category = stored.semantic_category
            persisted = existing
            blocked = True

        apply_override_fields(profile.metadata, persisted)
        if blocked and existing is not None:
            tag = f"[override preserved:{existing.source.value}]"
            profile.review_note = f"{profile.review_note} {tag}" if profile.review_note else tag
            logger.info(
                "Override preserved for %s.%s (source=%s)",
                profile.table_name, profile.column_name, existing.source.value,
            )

    # ── Lookups ──────────────────────────────────────────────────────

    async def _load_data_sources(self) -> dict[str, OntologyDataSource]:
        try:
            return await self._ontology_repo.get_data_source_map()
        except Exception as e:
            logger.warning("Failed to build ontology data_sources map: %s", e)
            return {}

    async def _load_concept_ids(self) -> dict[str, str]:
        try:
            return await self._ontology_repo.get_concept_ids_by_name()
        except Exception as e:
            logger.warning("Failed to build ontology concept map: %s", e)
            return {}
