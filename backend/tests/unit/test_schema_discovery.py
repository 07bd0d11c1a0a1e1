"""Unit tests for non-form schema discovery."""

import pytest

from semantic_query.application.interfaces.column_source import ColumnSource
from semantic_query.application.interfaces.embedding_provider import EmbeddingProvider
from semantic_query.application.interfaces.non_form_profile_repository import (
    NonFormProfileRepository,
)
from semantic_query.application.interfaces.ontology_repository import OntologyRepository
from semantic_query.application.services.schema_discovery_service import (
    NonFormSchemaDiscoveryService,
    build_embedding_prompt,
    infer_filterable,
    infer_joinable,
)
from semantic_query.domain.entities import (
    ColumnRecord,
    MeasurementFamily,
    OntologyDataSource,
    OntologyMatch,
    StoredColumnProfile,
)
from semantic_query.domain.exceptions import EmbeddingProviderError, InvalidArgumentError


# ── Fakes ──


class FakeColumnSource(ColumnSource):
    def __init__(self, columns: list[ColumnRecord], *, error: Exception | None = None):
        self._columns = columns
        self._error = error
        self.closed = False
        self.schemas: list[str] = []

    async def list_columns(self, schema: str) -> list[ColumnRecord]:
        self.schemas.append(schema)
        if self._error:
            raise self._error
        return list(self._columns)

    async def close(self) -> None:
        self.closed = True


class FakeOntologyRepository(OntologyRepository):
    def __init__(
        self,
        match: OntologyMatch | None = None,
        *,
        data_sources: dict[str, OntologyDataSource] | None = None,
        concept_ids: dict[str, str] | None = None,
    ):
        self._match = match
        self._data_sources = data_sources or {}
        self._concept_ids = concept_ids or {}
        self.nearest_calls = 0

    async def find_nearest(self, embedding: list[float]) -> OntologyMatch | None:
        self.nearest_calls += 1
        return self._match

    async def get_data_source_map(self) -> dict[str, OntologyDataSource]:
        return dict(self._data_sources)

    async def get_concept_ids_by_name(self) -> dict[str, str]:
        return dict(self._concept_ids)

    async def save_concept(self, concept) -> None:
        raise NotImplementedError

    async def count(self) -> int:
        return 0


class FakeProfileRepository(NonFormProfileRepository):
    def __init__(
        self,
        stored: dict[tuple[str, str], StoredColumnProfile] | None = None,
        *,
        failing: set[tuple[str, str]] | None = None,
    ):
        self._stored = stored or {}
        self._failing = failing or set()
        self.upserts: list = []
        self.pruned_with: set[tuple[str, str]] | None = None

    async def get_stored(self, customer_id, table_name, column_name):
        return self._stored.get((table_name, column_name))

    async def upsert(self, customer_id, profile, *, discovery_run_id=None) -> None:
        if profile.key in self._failing:
            raise RuntimeError("write failed")
        self.upserts.append((customer_id, profile, discovery_run_id))

    async def prune_stale(self, customer_id, keep) -> int:
        self.pruned_with = set(keep)
        return 4


class FakeEmbeddingProvider(EmbeddingProvider):
    def __init__(self, *, error: Exception | None = None):
        self._error = error
        self.texts: list[str] = []

    @property
    def dimensions(self) -> int:
        return 3

    async def generate_embeddings(self, texts: list[str]) -> list[list[float]]:
        self.texts.extend(texts)
        if self._error:
            raise self._error
        return [[0.1, 0.2, 0.3] for _ in texts]


PATIENT_ID = ColumnRecord("rpt", "Patient", "patientId", "int", ordinal_position=1)
AREA = ColumnRecord("rpt", "Measurement", "area", "decimal", ordinal_position=3)
NOTE_BODY = ColumnRecord("rpt", "Note", "body", "text", ordinal_position=2)


def _match(similarity: float) -> OntologyMatch:
    return OntologyMatch(
        concept_id="c-area",
        concept_name="wound area",
        canonical_name="Wound Area",
        concept_type="measurement",
        metadata={"concept_type_key": "wound_area", "category_key": "wound_measurements"},
        similarity=similarity,
    )


def _service(ontology, profiles, embeddings, source, **kwargs) -> NonFormSchemaDiscoveryService:
    return NonFormSchemaDiscoveryService(ontology, profiles, embeddings, lambda _cs: source, **kwargs)


# ── Heuristics ──


class TestHeuristics:
    @pytest.mark.parametrize(
        ("data_type", "expected"),
        [
            ("varbinary", False),
            ("xml", False),
            ("geography", False),
            ("nvarchar", True),
            ("bigint", True),
            ("decimal", True),
            ("datetime2", True),
            ("uniqueidentifier", True),
            ("bit", True),
            (None, True),
            ("money", False),
        ],
    )
    def test_filterable_by_type(self, data_type, expected):
        assert infer_filterable("anything", data_type).value is expected

    def test_joinable_needs_key_suffix_and_key_type(self):
        assert infer_joinable("patientFk", "int").value is True
        assert infer_joinable("PatientId", "uniqueidentifier").value is True
        assert infer_joinable("patient_key", "nvarchar").value is True
        assert infer_joinable("PatientId", "datetime").value is False
        assert infer_joinable("name", "int").value is False
        assert infer_joinable("visitId", None).value is True

    def test_embedding_prompt(self):
        assert build_embedding_prompt(AREA) == "rpt Measurement area decimal"
        assert build_embedding_prompt(ColumnRecord("rpt", "Note", "body")) == "rpt Note body"


# ── Discovery ──


class TestNonFormSchemaDiscovery:
    @pytest.mark.asyncio
    async def test_requires_customer_and_connection(self):
        service = _service(FakeOntologyRepository(), FakeProfileRepository(), None, FakeColumnSource([]))
        with pytest.raises(InvalidArgumentError):
            await service.discover("", "Server=x")
        with pytest.raises(InvalidArgumentError):
            await service.discover("customer-1", "")

    @pytest.mark.asyncio
    async def test_profiles_every_column_and_prunes(self):
        ontology = FakeOntologyRepository(
            _match(0.9),
            data_sources={
                "rpt.patient.patientid": OntologyDataSource("c-patient", "patient", "identifier"),
            },
        )
        profiles = FakeProfileRepository()
        embeddings = FakeEmbeddingProvider()
        source = FakeColumnSource([PATIENT_ID, AREA, NOTE_BODY])

        result = await _service(ontology, profiles, embeddings, source).discover(
            "customer-1", "Server=x", discovery_run_id="run-7"
        )

        assert source.schemas == ["rpt"]
        assert source.closed
        assert result.discovered_columns == 3
        assert result.filterable_columns == 2
        assert result.joinable_columns == 1
        assert result.high_confidence_columns == 3
        assert result.review_required_columns == 0
        assert result.average_confidence == 0.92
        assert result.pruned_columns == 4
        assert profiles.pruned_with == {
            ("rpt.Patient", "patientId"),
            ("rpt.Measurement", "area"),
            ("rpt.Note", "body"),
        }
        assert [run for _, _, run in profiles.upserts] == ["run-7"] * 3

        patient, area, _ = result.columns
        assert patient.semantic_concept == "patient"
        assert patient.confidence == 0.95
        assert patient.metadata["override_source"] == "ontology_backed"
        assert area.semantic_concept == "wound_area"
        assert area.semantic_category == "wound_measurements"
        assert area.concept_id == "c-area"
        assert area.embedding == [0.1, 0.2, 0.3]
        assert area.metadata["override_source"] == "discovery_inferred"
        # explicit mappings skip the embedding lookup
        assert embeddings.texts == ["rpt Measurement area decimal", "rpt Note body text"]

    @pytest.mark.asyncio
    async def test_low_confidence_requires_review(self):
        result = await _service(
            FakeOntologyRepository(_match(0.5)),
            FakeProfileRepository(),
            FakeEmbeddingProvider(),
            FakeColumnSource([AREA]),
        ).discover("customer-1", "Server=x")

        column = result.columns[0]
        assert column.is_review_required
        assert column.confidence == 0.5
        assert "below review threshold" in column.review_note
        assert result.review_required_columns == 1
        assert any("flagged for review" in w for w in result.warnings)

    @pytest.mark.asyncio
    async def test_filterable_does_not_depend_on_confidence(self):
        result = await _service(
            FakeOntologyRepository(None),
            FakeProfileRepository(),
            FakeEmbeddingProvider(),
            FakeColumnSource([AREA, NOTE_BODY]),
        ).discover("customer-1", "Server=x")

        area, body = result.columns
        assert area.confidence is None
        assert area.is_filterable
        assert not body.is_filterable
        assert all(c.is_review_required for c in result.columns)
        assert result.average_confidence is None
        assert any("has no ontology match" in w for w in result.warnings)

    @pytest.mark.asyncio
    async def test_measurement_family_without_embeddings(self):
        family = MeasurementFamily(
            key="wound_area",
            tables=("rpt.Measurement",),
            columns=("area",),
            canonical_concept="Wound Area",
            confidence=0.9,
            unit="cm2",
        )
        result = await _service(
            FakeOntologyRepository(concept_ids={"wound area": "c-area"}),
            FakeProfileRepository(),
            None,
            FakeColumnSource([AREA]),
            measurement_families=[family],
        ).discover("customer-1", "Server=x")

        column = result.columns[0]
        assert column.semantic_concept == "Wound Area"
        assert column.semantic_category == "wound_area"
        assert column.concept_id == "c-area"
        assert column.metadata["override_source"] == "measurement_heuristic"

    @pytest.mark.asyncio
    async def test_embedding_failure_is_recorded_per_column(self):
        profiles = FakeProfileRepository()
        result = await _service(
            FakeOntologyRepository(_match(0.9)),
            profiles,
            FakeEmbeddingProvider(error=EmbeddingProviderError("fake", 503, "down")),
            FakeColumnSource([AREA, NOTE_BODY]),
        ).discover("customer-1", "Server=x")

        assert len(result.errors) == 2
        assert result.errors[0].startswith("rpt.Measurement.area:")
        assert result.columns[0].review_note.startswith("Discovery error:")
        assert len(profiles.upserts) == 2
        assert profiles.pruned_with is not None

    @pytest.mark.asyncio
    async def test_write_failure_skips_pruning(self):
        profiles = FakeProfileRepository(failing={("rpt.Measurement", "area")})
        result = await _service(
            FakeOntologyRepository(_match(0.9)),
            profiles,
            FakeEmbeddingProvider(),
            FakeColumnSource([AREA, NOTE_BODY]),
        ).discover("customer-1", "Server=x")

        assert profiles.pruned_with is None
        assert result.pruned_columns == 0
        assert any("Failed to persist rpt.Measurement.area" in e for e in result.errors)
        assert result.discovered_columns == 2

    @pytest.mark.asyncio
    async def test_catalog_failure_still_closes_source(self):
        source = FakeColumnSource([], error=RuntimeError("login failed"))
        service = _service(FakeOntologyRepository(), FakeProfileRepository(), None, source)

        with pytest.raises(RuntimeError):
            await service.discover("customer-1", "Server=x")
        assert source.closed


class TestOverrides:
    @pytest.mark.asyncio
    async def test_manual_review_is_preserved(self):
        stored = StoredColumnProfile(
            semantic_concept="reviewed_area",
            semantic_category="reviewed_category",
            concept_id="c-reviewed",
            metadata={
                "override_source": "manual_review",
                "override_level": "both",
                "override_date": "2025-01-01T00:00:00+00:00",
                "reviewer_note": "checked",
            },
        )
        result = await _service(
            FakeOntologyRepository(_match(0.9)),
            FakeProfileRepository({("rpt.Measurement", "area"): stored}),
            FakeEmbeddingProvider(),
            FakeColumnSource([AREA]),
        ).discover("customer-1", "Server=x")

        column = result.columns[0]
        assert column.semantic_concept == "reviewed_area"
        assert column.semantic_category == "reviewed_category"
        assert column.concept_id == "c-reviewed"
        assert column.metadata["override_source"] == "manual_review"
        assert column.metadata["reviewer_note"] == "checked"
        assert "[override preserved:manual_review]" in column.review_note

    @pytest.mark.asyncio
    async def test_lower_priority_assignment_is_replaced(self):
        stored = StoredColumnProfile(
            semantic_concept="old_concept",
            semantic_category="old_category",
            concept_id="c-old",
            metadata={
                "override_source": "discovery_inferred",
                "override_level": "metadata_only",
                "override_date": "2025-01-01T00:00:00+00:00",
            },
        )
        ontology = FakeOntologyRepository(
            data_sources={
                "rpt.measurement.area": OntologyDataSource("c-area", "wound area", "measurement", 0.88),
            },
        )
        result = await _service(
            ontology,
            FakeProfileRepository({("rpt.Measurement", "area"): stored}),
            FakeEmbeddingProvider(),
            FakeColumnSource([AREA]),
        ).discover("customer-1", "Server=x")

        column = result.columns[0]
        assert column.semantic_concept == "wound area"
        assert column.confidence == 0.88
        assert column.metadata["override_source"] == "ontology_backed"
        assert column.metadata["original_value"] == "concept:old_concept | category:old_category"
