"""API tests for the query, SQL, search and discovery endpoints.

Request-scoped services are replaced through ``app.dependency_overrides``
so no database or LLM provider is needed.
"""

import pytest
from httpx import ASGITransport, AsyncClient

from semantic_query.application.interfaces import SemanticIndexRepository
from semantic_query.application.services import (
    CachingIntentClassifier,
    IntentClassifier,
    SemanticSearcher,
)
from semantic_query.domain.entities import (
    ClassificationMethod,
    ClassificationResult,
    CompositionStrategy,
    ConceptSource,
    ExpandedConceptSet,
    NonFormColumnProfile,
    NonFormSchemaDiscoveryResult,
    QueryExecutionResult,
    QueryIntent,
    SearchSource,
    SemanticSearchResult,
    StructuredIntent,
    TurnResult,
)
from semantic_query.domain.exceptions import ChatProviderError, InvalidArgumentError
from semantic_query.infrastructure.dependencies import (
    get_discovery_service,
    get_intent_classifier,
    get_query_pipeline,
    get_semantic_searcher,
)
from semantic_query.main import app


# ── Fakes ──


class FakePipeline:
    def __init__(self, error: Exception | None = None):
        self.error = error
        self.calls: list[dict] = []

    async def ask(self, question, customer_id, previous_turn=None, **kwargs) -> TurnResult:
        self.calls.append({"question": question, "previous_turn": previous_turn, **kwargs})
        if self.error:
            raise self.error
        return TurnResult(
            question=question,
            classification=ClassificationResult(
                intent=QueryIntent.TOP_K,
                confidence=0.9,
                method=ClassificationMethod.PATTERN,
                matched_patterns=("top:top 5",),
            ),
            structured_intent=StructuredIntent(type="ranking", metrics=["wound area"]),
            concepts=ExpandedConceptSet(
                concepts=["wound area"],
                sources=[ConceptSource.METRIC],
                explanations=["metric"],
            ),
            sql="SELECT TOP 5 area FROM rpt.Measurement ORDER BY area DESC",
            strategy=CompositionStrategy.FRESH,
            is_valid=True,
            execution=QueryExecutionResult(columns=["area"], rows=[{"area": 12.5}]),
        )


class FakeDiscoveryService:
    def __init__(self):
        self.calls: list[tuple] = []

    async def discover(self, customer_id, connection_string, *, discovery_run_id=None):
        self.calls.append((customer_id, connection_string, discovery_run_id))
        return NonFormSchemaDiscoveryResult(
            customer_id=customer_id,
            columns=[
                NonFormColumnProfile(
                    table_name="rpt.Measurement",
                    column_name="area",
                    data_type="decimal",
                    semantic_concept="percent_area_reduction",
                    confidence=0.95,
                    is_filterable=True,
                    is_review_required=False,
                    embedding=[0.1, 0.2],
                )
            ],
            discovered_columns=1,
            high_confidence_columns=1,
            filterable_columns=1,
            average_confidence=0.95,
            pruned_columns=2,
        )


class FakeSemanticIndexRepository(SemanticIndexRepository):
    async def resolve_concept_ids(self, concepts):
        return []

    async def search_form_fields(self, customer_id, **kwargs):
        return [
            SemanticSearchResult(
                id="f1",
                source=SearchSource.FORM,
                semantic_concept="wound area",
                data_type="number",
                confidence=0.88,
                field_name="Area",
                form_name="Wound Assessment",
            )
        ]

    async def search_non_form_columns(self, customer_id, **kwargs):
        return [
            SemanticSearchResult(
                id="c1",
                source=SearchSource.NON_FORM,
                semantic_concept="wound area",
                data_type="decimal",
                confidence=0.92,
                table_name="rpt.Measurement",
                column_name="area",
            )
        ]


# ── Fixtures ──


@pytest.fixture
def overrides():
    yield app.dependency_overrides
    app.dependency_overrides.clear()


@pytest.fixture
async def client():
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


def _searcher() -> SemanticSearcher:
    return SemanticSearcher(FakeSemanticIndexRepository(), None)


# ── Tests ──


class TestClassifyEndpoint:
    @pytest.mark.asyncio
    async def test_pattern_classification(self, client, overrides):
        overrides[get_intent_classifier] = lambda: CachingIntentClassifier(IntentClassifier(None))

        response = await client.post(
            "/api/v1/query/classify",
            json={"question": "What is the healing rate at 12 weeks?", "customer_id": "cust-1"},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["intent"] == "temporal_proximity_query"
        assert data["method"] == "pattern"
        assert data["confidence"] == 0.9

    @pytest.mark.asyncio
    async def test_missing_question_is_rejected(self, client):
        response = await client.post("/api/v1/query/classify", json={"customer_id": "cust-1"})

        assert response.status_code == 422


class TestAskEndpoint:
    @pytest.mark.asyncio
    async def test_turn_is_serialized(self, client, overrides):
        pipeline = FakePipeline()
        overrides[get_query_pipeline] = lambda: pipeline

        response = await client.post(
            "/api/v1/query/ask",
            json={
                "question": "top 5 largest wounds",
                "customer_id": "cust-1",
                "previous_turn": {"question": "list wounds", "sql": "SELECT id FROM rpt.Wound"},
                "desired_fields": ["patient.firstName"],
                "execute": True,
            },
        )

        assert response.status_code == 200
        data = response.json()
        assert data["classification"]["intent"] == "top_k"
        assert data["concepts"]["sources"] == ["metric"]
        assert data["strategy"] == "fresh"
        assert data["is_valid"] is True
        assert data["execution"] == {"columns": ["area"], "rows": [{"area": 12.5}]}

        call = pipeline.calls[0]
        assert call["previous_turn"].sql == "SELECT id FROM rpt.Wound"
        assert call["desired_fields"] == ["patient.firstName"]
        assert call["execute"] is True

    @pytest.mark.asyncio
    async def test_invalid_argument_maps_to_422(self, client, overrides):
        overrides[get_query_pipeline] = lambda: FakePipeline(InvalidArgumentError("customer_id is required"))

        response = await client.post(
            "/api/v1/query/ask", json={"question": "how many wounds?", "customer_id": " "}
        )

        assert response.status_code == 422
        assert response.json() == {"detail": "customer_id is required"}

    @pytest.mark.asyncio
    async def test_provider_error_maps_to_502(self, client, overrides):
        overrides[get_query_pipeline] = lambda: FakePipeline(
            ChatProviderError("openrouter", 429, "Rate limit exceeded")
        )

        response = await client.post(
            "/api/v1/query/ask", json={"question": "how many wounds?", "customer_id": "cust-1"}
        )

        assert response.status_code == 502
        assert response.json() == {"detail": "Rate limit exceeded", "provider": "openrouter"}


class TestSqlEndpoints:
    @pytest.mark.asyncio
    async def test_validate_enforces_safety(self, client):
        response = await client.post("/api/v1/sql/validate", json={"sql": "SELECT * FROM Assessment"})

        assert response.status_code == 200
        data = response.json()
        assert data["is_valid"] is True
        assert data["modified_sql"] == "SELECT TOP 1000 * FROM rpt.Assessment"
        assert "Added TOP 1000 clause for safety" in data["warnings"]

    @pytest.mark.asyncio
    async def test_validate_rejects_dangerous_sql(self, client):
        response = await client.post("/api/v1/sql/validate", json={"sql": "DROP TABLE rpt.Patient"})

        data = response.json()
        assert data["is_valid"] is False
        assert data["modified_sql"] is None
        assert data["structure_errors"] == []

    @pytest.mark.asyncio
    async def test_desired_fields(self, client):
        response = await client.post(
            "/api/v1/sql/desired-fields",
            json={"desired_fields": ["patient.firstName", "invalid.x"]},
        )

        data = response.json()
        assert data["fields_applied"] == ["patient.firstName"]
        assert data["rejected_fields"] == ["invalid.x"]
        assert data["select_columns"] == ["P.firstName AS patient_firstName"]


class TestSearchEndpoint:
    @pytest.mark.asyncio
    async def test_form_and_non_form_results(self, client, overrides):
        overrides[get_semantic_searcher] = _searcher

        response = await client.post(
            "/api/v1/search/fields",
            json={"customer_id": "cust-1", "concepts": ["wound area"], "include_non_form": True},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 2
        assert [r["source"] for r in data["results"]] == ["non_form", "form"]

    @pytest.mark.asyncio
    async def test_non_form_only(self, client, overrides):
        overrides[get_semantic_searcher] = _searcher

        response = await client.post(
            "/api/v1/search/fields",
            json={"customer_id": "cust-1", "concepts": ["wound area"], "include_form": False},
        )

        data = response.json()
        assert data["total"] == 1
        assert data["results"][0]["column_name"] == "area"

    @pytest.mark.asyncio
    async def test_empty_concepts_rejected(self, client):
        response = await client.post(
            "/api/v1/search/fields", json={"customer_id": "cust-1", "concepts": []}
        )

        assert response.status_code == 422


class TestDiscoveryEndpoint:
    @pytest.mark.asyncio
    async def test_discovery_summary(self, client, overrides):
        service = FakeDiscoveryService()
        overrides[get_discovery_service] = lambda: service

        response = await client.post(
            "/api/v1/discovery/non-form",
            json={
                "customer_id": "cust-1",
                "connection_string": "mssql+aioodbc://reader@analytics/db",
                "discovery_run_id": "run-7",
            },
        )

        assert response.status_code == 200
        data = response.json()
        assert data["discovered_columns"] == 1
        assert data["pruned_columns"] == 2
        assert data["columns"][0]["semantic_concept"] == "percent_area_reduction"
        assert "embedding" not in data["columns"][0]
        assert service.calls == [("cust-1", "mssql+aioodbc://reader@analytics/db", "run-7")]
