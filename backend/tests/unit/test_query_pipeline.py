"""Unit tests for the end-to-end query pipeline of one turn."""

import json
from typing import Any

import pytest

from semantic_query.application.interfaces.chat_provider import ChatProvider
from semantic_query.application.interfaces.query_executor import QueryExecutor
from semantic_query.application.interfaces.semantic_index_repository import (
    SemanticIndexRepository,
)
from semantic_query.application.services.concept_expander import ConceptExpander
from semantic_query.application.services.intent_classifier import (
    CachingIntentClassifier,
    IntentClassifier,
)
from semantic_query.application.services.intent_extraction_service import IntentExtractionService
from semantic_query.application.services.query_pipeline import (
    QueryPipelineService,
    expansion_intent,
)
from semantic_query.application.services.semantic_searcher import SemanticSearcher
from semantic_query.application.services.sql_composer import SqlComposer
from semantic_query.domain.entities import (
    ChatCompletionResult,
    ChatMessage,
    ClassificationMethod,
    ClassificationResult,
    CompositionStrategy,
    GeneratedSql,
    PreviousTurn,
    QueryExecutionResult,
    QueryIntent,
    StructuredIntent,
)
from semantic_query.domain.exceptions import InvalidArgumentError, SqlGenerationError


# ── Fakes ──


class FakeChatProvider(ChatProvider):
    def __init__(self, *replies: str):
        self._replies = list(replies)
        self.calls = 0

    @property
    def provider_name(self) -> str:
        return "fake"

    async def complete(
        self,
        messages: list[ChatMessage],
        model: str,
        *,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> ChatCompletionResult:
        self.calls += 1
        return ChatCompletionResult(model=model, content=self._replies.pop(0), finish_reason="stop")


class FakeSemanticIndexRepository(SemanticIndexRepository):
    def __init__(self):
        self.form_calls: list[dict] = []
        self.non_form_calls: list[dict] = []

    async def resolve_concept_ids(self, concepts):
        return []

    async def search_form_fields(self, customer_id, **kwargs):
        self.form_calls.append(kwargs)
        return []

    async def search_non_form_columns(self, customer_id, **kwargs):
        self.non_form_calls.append(kwargs)
        return []


class FakeSqlGenerator:
    """Returns scripted statements and records each request."""

    def __init__(self, *statements: str, error: Exception | None = None):
        self._statements = list(statements)
        self._error = error
        self.requests: list[dict[str, Any]] = []

    async def generate(self, question: str, **kwargs) -> GeneratedSql:
        self.requests.append({"question": question, **kwargs})
        if self._error:
            raise self._error
        return GeneratedSql(sql=self._statements.pop(0))


class FakeQueryExecutor(QueryExecutor):
    def __init__(self, *, error: Exception | None = None):
        self._error = error
        self.executed: list[str] = []

    async def execute(self, sql, params=None) -> QueryExecutionResult:
        self.executed.append(sql)
        if self._error:
            raise self._error
        return QueryExecutionResult(columns=["total"], rows=[{"total": 42}])


PREVIOUS = PreviousTurn(
    question="Show female patients",
    sql="SELECT TOP 1000 id, age FROM rpt.Patient WHERE gender = 'F'",
)
COMPOSE_YES = '{"shouldCompose": true, "reasoning": "refines", "confidence": 0.9}'
COMPOSE_NO = '{"shouldCompose": false, "reasoning": "new entity", "confidence": 0.9}'
CTE_SQL = f"WITH previous_result AS ({PREVIOUS.sql}) SELECT * FROM previous_result WHERE age > 40"


def _composition(strategy: str, sql: str) -> str:
    return json.dumps({"strategy": strategy, "sql": sql, "reasoning": "test"})


@pytest.fixture
def repository():
    return FakeSemanticIndexRepository()


def _pipeline(repository, generator=None, composer=None, executor=None) -> QueryPipelineService:
    return QueryPipelineService(
        classifier=CachingIntentClassifier(IntentClassifier(None)),
        extractor=IntentExtractionService(None),
        expander=ConceptExpander(),
        searcher=SemanticSearcher(repository, None, embedding_dimensions=3),
        generator=generator,
        composer=composer,
        executor=executor,
    )


# ── Tests ──


def test_expansion_intent_prefers_known_classification():
    structured = StructuredIntent(type="trend_analysis")
    known = ClassificationResult(QueryIntent.TOP_K, 0.9, ClassificationMethod.AI)
    unknown = ClassificationResult(QueryIntent.LEGACY_UNKNOWN, 0.0, ClassificationMethod.FALLBACK)
    assert expansion_intent(known, structured) == "top_k"
    assert expansion_intent(unknown, structured) == "trend_analysis"


class TestFreshGeneration:
    @pytest.mark.asyncio
    async def test_question_to_safe_sql(self, repository):
        generator = FakeSqlGenerator("SELECT COUNT(*) FROM Wound")

        turn = await _pipeline(repository, generator).ask("How many wounds healed?", "customer-1")

        assert turn.is_valid
        assert turn.strategy == CompositionStrategy.FRESH
        assert turn.sql == "SELECT TOP 1000 COUNT(*) FROM rpt.Wound"
        assert "Added TOP 1000 clause for safety" in turn.warnings
        assert turn.classification.intent == QueryIntent.LEGACY_UNKNOWN
        assert turn.structured_intent.metrics == ["count"]
        assert turn.concepts.concepts[0] == "count"
        assert repository.form_calls[0]["concepts"][0] == "count"
        assert len(repository.non_form_calls) == 1
        assert generator.requests[0]["structure_errors"] is None

    @pytest.mark.asyncio
    async def test_requires_question_and_customer(self, repository):
        pipeline = _pipeline(repository, FakeSqlGenerator())
        with pytest.raises(InvalidArgumentError):
            await pipeline.ask("  ", "customer-1")
        with pytest.raises(InvalidArgumentError):
            await pipeline.ask("How many wounds?", "")

    @pytest.mark.asyncio
    async def test_structure_errors_get_one_repair_attempt(self, repository):
        broken = "SELECT TOP 5 clinic, COUNT(*) AS n FROM rpt.Wound GROUP BY clinic ORDER BY createdAt"
        fixed = "SELECT TOP 5 clinic, COUNT(*) AS n FROM rpt.Wound GROUP BY clinic ORDER BY n DESC"
        generator = FakeSqlGenerator(broken, fixed)

        turn = await _pipeline(repository, generator).ask("Wounds per clinic", "customer-1")

        assert turn.is_valid
        assert turn.sql == fixed
        assert len(generator.requests) == 2
        retry = generator.requests[1]
        assert retry["previous_attempt"] == broken
        assert retry["structure_errors"][0].expression == "createdAt"

    @pytest.mark.asyncio
    async def test_structure_errors_after_repair_fail_the_turn(self, repository):
        broken = "SELECT TOP 5 clinic, COUNT(*) AS n FROM rpt.Wound GROUP BY clinic ORDER BY createdAt"
        generator = FakeSqlGenerator(broken, broken)

        turn = await _pipeline(repository, generator).ask("Wounds per clinic", "customer-1")

        assert not turn.is_valid
        assert turn.sql is None
        assert any(e.startswith("GROUP_BY_VIOLATION") for e in turn.errors)

    @pytest.mark.asyncio
    async def test_unsafe_sql_never_reaches_executor(self, repository):
        executor = FakeQueryExecutor()
        generator = FakeSqlGenerator("SELECT 1; DROP TABLE rpt.Patient")

        turn = await _pipeline(repository, generator, executor=executor).ask(
            "How many wounds?", "customer-1", execute=True
        )

        assert not turn.is_valid
        assert turn.sql is None
        assert "Dangerous SQL keyword detected: DROP" in turn.errors
        assert executor.executed == []

    @pytest.mark.asyncio
    async def test_generation_error_is_reported(self, repository):
        generator = FakeSqlGenerator(error=SqlGenerationError("LLM response was not valid JSON"))
        turn = await _pipeline(repository, generator).ask("How many wounds?", "customer-1")
        assert turn.errors == ["LLM response was not valid JSON"]

    @pytest.mark.asyncio
    async def test_without_generator(self, repository):
        turn = await _pipeline(repository).ask("How many wounds?", "customer-1")
        assert turn.errors == ["No SQL generation provider is configured"]


class TestComposition:
    @pytest.mark.asyncio
    async def test_valid_composition_is_used(self, repository):
        composer = SqlComposer(FakeChatProvider(COMPOSE_YES, _composition("cte", CTE_SQL)), "test-model")
        generator = FakeSqlGenerator()

        turn = await _pipeline(repository, generator, composer).ask(
            "Which ones are older than 40?", "customer-1", PREVIOUS
        )

        assert turn.is_valid
        assert turn.strategy == CompositionStrategy.CTE
        assert turn.sql == (
            f"WITH previous_result AS ({PREVIOUS.sql}) SELECT TOP 1000 * FROM previous_result WHERE age > 40"
        )
        assert generator.requests == []

    @pytest.mark.asyncio
    async def test_invalid_composed_sql_is_regenerated_fresh(self, repository):
        provider = FakeChatProvider(COMPOSE_YES, _composition("merged_where", "DELETE FROM rpt.Patient"))
        generator = FakeSqlGenerator("SELECT TOP 10 id FROM rpt.Patient WHERE age > 40")

        turn = await _pipeline(repository, generator, SqlComposer(provider, "test-model")).ask(
            "Which ones are older than 40?", "customer-1", PREVIOUS
        )

        assert turn.strategy == CompositionStrategy.FRESH
        assert turn.sql == "SELECT TOP 10 id FROM rpt.Patient WHERE age > 40"
        assert "DELETE" not in turn.sql
        assert len(generator.requests) == 1
        assert "Composed SQL failed validation; generated fresh SQL instead" in turn.warnings

    @pytest.mark.asyncio
    async def test_composed_sql_with_structure_errors_is_regenerated(self, repository):
        grouped = (
            f"WITH previous_result AS ({PREVIOUS.sql}) "
            "SELECT age, COUNT(*) AS n FROM previous_result GROUP BY age ORDER BY id"
        )
        provider = FakeChatProvider(COMPOSE_YES, _composition("cte", grouped))
        generator = FakeSqlGenerator("SELECT TOP 10 age, COUNT(*) AS n FROM rpt.Patient GROUP BY age")

        turn = await _pipeline(repository, generator, SqlComposer(provider, "test-model")).ask(
            "Count them by age", "customer-1", PREVIOUS
        )

        assert turn.strategy == CompositionStrategy.FRESH
        assert len(generator.requests) == 1

    @pytest.mark.asyncio
    async def test_unrelated_question_skips_composition(self, repository):
        provider = FakeChatProvider(COMPOSE_NO)
        generator = FakeSqlGenerator("SELECT TOP 10 name FROM rpt.Clinic")

        turn = await _pipeline(repository, generator, SqlComposer(provider, "test-model")).ask(
            "List clinics", "customer-1", PREVIOUS
        )

        assert provider.calls == 1
        assert turn.strategy == CompositionStrategy.FRESH
        assert len(generator.requests) == 1

    @pytest.mark.asyncio
    async def test_fresh_strategy_uses_generator(self, repository):
        provider = FakeChatProvider(COMPOSE_YES, _composition("fresh", "SELECT TOP 1 1"))
        generator = FakeSqlGenerator("SELECT TOP 10 name FROM rpt.Clinic")

        turn = await _pipeline(repository, generator, SqlComposer(provider, "test-model")).ask(
            "List clinics", "customer-1", PREVIOUS
        )

        assert turn.sql == "SELECT TOP 10 name FROM rpt.Clinic"

    @pytest.mark.asyncio
    async def test_unusable_composition_falls_back(self, repository):
        provider = FakeChatProvider(COMPOSE_YES, "not json")
        generator = FakeSqlGenerator("SELECT TOP 10 id FROM rpt.Patient")

        turn = await _pipeline(repository, generator, SqlComposer(provider, "test-model")).ask(
            "Which ones are older than 40?", "customer-1", PREVIOUS
        )

        assert turn.is_valid
        assert any(w.startswith("Composition failed") for w in turn.warnings)


class TestExecutionAndEnrichment:
    @pytest.mark.asyncio
    async def test_executes_validated_sql(self, repository):
        executor = FakeQueryExecutor()
        generator = FakeSqlGenerator("SELECT COUNT(*) AS total FROM Wound")

        turn = await _pipeline(repository, generator, executor=executor).ask(
            "How many wounds?", "customer-1", execute=True
        )

        assert executor.executed == ["SELECT TOP 1000 COUNT(*) AS total FROM rpt.Wound"]
        assert turn.execution.rows == [{"total": 42}]

    @pytest.mark.asyncio
    async def test_execution_failure_is_reported(self, repository):
        executor = FakeQueryExecutor(error=RuntimeError("timeout expired"))
        generator = FakeSqlGenerator("SELECT TOP 5 id FROM rpt.Wound")

        turn = await _pipeline(repository, generator, executor=executor).ask(
            "List wounds", "customer-1", execute=True
        )

        assert turn.is_valid
        assert turn.execution is None
        assert turn.errors == ["Query execution failed: timeout expired"]

    @pytest.mark.asyncio
    async def test_execution_without_executor(self, repository):
        generator = FakeSqlGenerator("SELECT TOP 5 id FROM rpt.Wound")
        turn = await _pipeline(repository, generator).ask("List wounds", "customer-1", execute=True)
        assert "Query execution is not configured" in turn.warnings

    @pytest.mark.asyncio
    async def test_desired_fields(self, repository):
        generator = FakeSqlGenerator(
            "SELECT TOP 5 base.id, P.firstName AS patient_firstName, W.label AS wound_label "
            "FROM rpt.Wound AS base INNER JOIN rpt.Patient AS P ON base.patientFk = P.id "
            "INNER JOIN rpt.Wound AS W ON base.woundFk = W.id"
        )

        turn = await _pipeline(repository, generator).ask(
            "List wounds", "customer-1", desired_fields=["patient.firstName", "patient.ssn"]
        )

        assert generator.requests[0]["desired_fields"].fields_applied == ["patient.firstName"]
        assert "Ignored unsupported enrichment fields: patient.ssn" in turn.warnings
        assert any("wound_label" in w for w in turn.warnings)
