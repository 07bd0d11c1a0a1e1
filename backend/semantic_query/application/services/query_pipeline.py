"""Query pipeline — one conversational turn from question to validated SQL.

  classify → extract → expand → search → compose-or-fresh → enforce → (execute)

Composed SQL that fails validation is discarded and fresh SQL is generated
instead. Fresh SQL that breaks GROUP BY / ORDER BY rules gets one repair
attempt with the structure errors fed back to the LLM. Nothing reaches the
executor unless it passed the safety enforcer.
"""

import logging

from semantic_query.application.interfaces import QueryExecutor
from semantic_query.application.services.concept_expander import INTENT_KEYWORDS, ConceptExpander
from semantic_query.application.services.intent_classifier import CachingIntentClassifier
from semantic_query.application.services.intent_extraction_service import IntentExtractionService
from semantic_query.application.services.semantic_searcher import SemanticSearcher
from semantic_query.application.services.sql_composer import SqlComposer
from semantic_query.application.services.sql_generation_service import SqlGenerationService
from semantic_query.application.services.sql_safety import (
    SqlSafetyEnforcer,
    validate_desired_fields,
    validate_enrichment_fields,
)
from semantic_query.application.services.sql_structure_validator import SqlStructureValidator
from semantic_query.domain.entities import (
    ClassificationResult,
    CompositionStrategy,
    DesiredFieldResolution,
    PreviousTurn,
    QueryIntent,
    StructuredIntent,
    StructureValidationResult,
    SqlValidationResult,
    TurnResult,
)
from semantic_query.domain.exceptions import (
    CompositionError,
    InvalidArgumentError,
    SqlGenerationError,
)
from semantic_query.infrastructure.logging.colored_logger import PipelineLogger, PipelineStage

logger = logging.getLogger(__name__)
plog = PipelineLogger("QueryPipeline")

MAX_STRUCTURE_FIXES = 1


def expansion_intent(classification: ClassificationResult, structured: StructuredIntent) -> str:
    """Intent label whose keywords seed the concept list."""
    label = classification.intent.value
    if classification.intent != QueryIntent.LEGACY_UNKNOWN and label in INTENT_KEYWORDS:
        return label
    return structured.type


class QueryPipelineService:
    """Runs the semantic query pipeline for one question."""

    def __init__(
        self,
        classifier: CachingIntentClassifier,
        extractor: IntentExtractionService,
        expander: ConceptExpander,
        searcher: SemanticSearcher,
        generator: SqlGenerationService | None,
        composer: SqlComposer | None = None,
        *,
        enforcer: SqlSafetyEnforcer | None = None,
        structure_validator: SqlStructureValidator | None = None,
        executor: QueryExecutor | None = None,
        include_non_form: bool = True,
        max_structure_fixes: int = MAX_STRUCTURE_FIXES,
    ):
        self._classifier = classifier
        self._extractor = extractor
        self._expander = expander
        self._searcher = searcher
        self._generator = generator
        self._composer = composer
        self._enforcer = enforcer or SqlSafetyEnforcer()
        self._structure_validator = structure_validator or SqlStructureValidator()
        self._executor = executor
        self._include_non_form = include_non_form
        self._max_structure_fixes = max_structure_fixes

    async def ask(
        self,
        question: str,
        customer_id: str,
        previous_turn: PreviousTurn | None = None,
        *,
        desired_fields: list[str] | None = None,
        execute: bool = False,
        enable_cache: bool = True,
    ) -> TurnResult:
        if not question or not question.strip():
            raise InvalidArgumentError("question is required")
        if not customer_id or not customer_id.strip():
            raise InvalidArgumentError("customerId is required")

        plog.separator(f"Turn {customer_id}")

        with plog.timed_step(PipelineStage.CLASSIFY, "Classifying question"):
            classification = await self._classifier.classify(
                question, customer_id, enable_cache=enable_cache
            )
        plog.detail(
            f"intent={classification.intent.value}",
            confidence=classification.confidence,
            method=classification.method.value,
        )

        with plog.timed_step(PipelineStage.EXTRACT, "Extracting structured intent"):
            structured = await self._extractor.extract(question)

        with plog.timed_step(PipelineStage.EXPAND, "Expanding concepts"):
            concepts = self._expander.build(
                expansion_intent(classification, structured),
                structured.metrics,
                structured.filters,
            )
        plog.detail("concepts", count=len(concepts.concepts))

        turn = TurnResult(
            question=question,
            classification=classification,
            structured_intent=structured,
            concepts=concepts,
        )
        if concepts.concepts:
            with plog.timed_step(PipelineStage.SEARCH, "Searching semantic index"):
                turn.context = await self._searcher.search_form_fields(
                    customer_id, concepts.concepts, include_non_form=self._include_non_form
                )

        enrichment = validate_desired_fields(desired_fields)
        if enrichment.rejected_fields:
            turn.warnings.append(
                f"Ignored unsupported enrichment fields: {', '.join(enrichment.rejected_fields)}"
            )

        safety = await self._compose(turn, previous_turn)
        if safety is None:
            safety = await self._generate_fresh(turn, enrichment)
        if safety is None:
            return turn

        turn.warnings.extend(safety.warnings)
        turn.sql = safety.modified_sql
        turn.is_valid = True

        if enrichment.fields_applied and turn.sql:
            check = validate_enrichment_fields(turn.sql, enrichment.fields_applied)
            turn.warnings.extend(check.warnings)

        if execute:
            await self._execute(turn)

        plog.step_complete(
            PipelineStage.COMPLETE, "Turn complete",
            strategy=turn.strategy.value, warnings=len(turn.warnings),
        )
        return turn

    # ── Composition ──────────────────────────────────────────────────

    async def _compose(self, turn: TurnResult, previous: PreviousTurn | None) -> SqlValidationResult | None:
        """Validated composed SQL, or None when fresh generation should run."""
        if previous is None or self._composer is None or not previous.sql.strip():
            return None

        with plog.timed_step(PipelineStage.COMPOSE, "Deciding compose vs fresh"):
            decision = await self._composer.should_compose_query(
                turn.question, previous.question, previous.sql
            )
        if not decision.should_compose:
            plog.detail("fresh query", reasoning=decision.reasoning)
            return None

        try:
            composed = await self._composer.compose_query(previous.sql, previous.question, turn.question)
        except CompositionError as e:
            plog.step_warning(PipelineStage.COMPOSE, f"Composition failed, generating fresh SQL: {e}")
            turn.warnings.append(f"Composition failed; generated fresh SQL instead ({e})")
            return None

        if composed.strategy == CompositionStrategy.FRESH:
            return None

        with plog.timed_step(PipelineStage.VALIDATE, "Validating composed SQL"):
            validation = self._composer.validate_composed_sql(composed.sql)
            structure = (
                self._structure_validator.validate(validation.safety.modified_sql)
                if validation.valid else None
            )
        if not validation.valid or (structure is not None and not structure.is_valid):
            errors = validation.errors or [e.message for e in structure.errors]
            plog.step_warning(PipelineStage.VALIDATE, f"Composed SQL rejected: {'; '.join(errors)}")
            turn.warnings.append("Composed SQL failed validation; generated fresh SQL instead")
            return None

        turn.strategy = composed.strategy
        return validation.safety

    # ── Fresh generation ─────────────────────────────────────────────

    async def _generate_fresh(
        self, turn: TurnResult, enrichment: DesiredFieldResolution
    ) -> SqlValidationResult | None:
        turn.strategy = CompositionStrategy.FRESH
        if self._generator is None:
            turn.errors.append("No SQL generation provider is configured")
            return None

        structure_errors = None
        previous_attempt = None
        for attempt in range(self._max_structure_fixes + 1):
            try:
                with plog.timed_step(PipelineStage.GENERATE, "Generating SQL", attempt=attempt + 1):
                    generated = await self._generator.generate(
                        turn.question,
                        classification=turn.classification,
                        structured_intent=turn.structured_intent,
                        context=turn.context,
                        desired_fields=enrichment,
                        structure_errors=structure_errors,
                        previous_attempt=previous_attempt,
                    )
            except SqlGenerationError as e:
                turn.errors.append(str(e))
                return None

            with plog.timed_step(PipelineStage.VALIDATE, "Enforcing SQL safety"):
                safety = self._enforcer.validate(generated.sql)
            if not safety.is_valid:
                turn.errors.extend(safety.warnings)
                return None

            structure = self._structure_validator.validate(safety.modified_sql)
            if structure.is_valid:
                return safety

            structure_errors = structure.errors
            previous_attempt = generated.sql
            plog.step_warning(
                PipelineStage.VALIDATE,
                f"Structure errors: {'; '.join(e.message for e in structure.errors)}",
            )

        turn.errors.extend(self._structure_messages(structure))
        return None

    @staticmethod
    def _structure_messages(structure: StructureValidationResult) -> list[str]:
        return [f"{e.type.value}: {e.message}" for e in structure.errors]

    # ── Execution ────────────────────────────────────────────────────

    async def _execute(self, turn: TurnResult) -> None:
        if self._executor is None:
            turn.warnings.append("Query execution is not configured")
            return
        try:
            with plog.timed_step(PipelineStage.EXECUTE, "Executing SQL"):
                turn.execution = await self._executor.execute(turn.sql)
        except Exception as e:
            logger.exception("Query execution failed")
            turn.errors.append(f"Query execution failed: {e}")

