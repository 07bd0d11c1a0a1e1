"""Fresh SQL generation from the semantic context bundle of one question."""

import logging
import re

from semantic_query.application.interfaces import ChatProvider
from semantic_query.application.services.llm_support import complete_text, parse_llm_json
from semantic_query.domain.entities import (
    ClassificationResult,
    DesiredFieldResolution,
    GeneratedSql,
    SearchSource,
    SemanticSearchResult,
    StructuredIntent,
    StructureError,
)
from semantic_query.domain.exceptions import SqlGenerationError

logger = logging.getLogger(__name__)

GENERATION_TEMPERATURE = 0.1
GENERATION_MAX_TOKENS = 2000
MAX_CONTEXT_FIELDS = 40

_GENERATION_SYSTEM_PROMPT = """You are an expert MS SQL Server data analyst specializing in clinical wound care data analysis.
Your task is to write one read-only T-SQL query that answers the user's question.

Rules:
- Use only tables of the rpt reporting schema and always qualify them (rpt.Patient, rpt.Wound, ...).
- SELECT or WITH ... SELECT only. Never modify data, never use temporary tables.
- Prefer the fields listed under "Relevant fields"; their semantic concepts explain what they hold.
- In grouped queries every ORDER BY item must be grouped or aggregated.
- Do not nest aggregate functions.
- Only select enrichment columns that are explicitly requested.

Return ONLY a JSON object:
{
  "explanation": "<short explanation of the approach>",
  "generatedSql": "<the SQL query>"
}"""

_SQL_FENCE = re.compile(r"```(?:sql)?\s*(.*?)```", re.IGNORECASE | re.DOTALL)


def _format_field(result: SemanticSearchResult) -> str:
    if result.source == SearchSource.FORM:
        location = f"form '{result.form_name}' field '{result.field_name}'"
    else:
        location = f"{result.table_name}.{result.column_name}"
    data_type = f", {result.data_type}" if result.data_type else ""
    return f"- {location} ({result.semantic_concept}{data_type}, confidence {result.confidence:.2f})"


def build_generation_prompt(
    question: str,
    *,
    classification: ClassificationResult | None = None,
    structured_intent: StructuredIntent | None = None,
    context: list[SemanticSearchResult] | None = None,
    desired_fields: DesiredFieldResolution | None = None,
    structure_errors: list[StructureError] | None = None,
    previous_attempt: str | None = None,
) -> str:
    sections = ["# Question Context", "", f'User question: "{question}"', ""]

    if classification is not None:
        sections += [
            f"Query intent: {classification.intent.value} - {classification.intent.description}",
            "",
        ]
    if structured_intent is not None:
        sections += [
            "Intent analysis:",
            f"- Type: {structured_intent.type}",
            f"- Metrics: {', '.join(structured_intent.metrics) or 'None'}",
            f"- Confidence: {structured_intent.confidence:.2f}",
        ]
        for f in structured_intent.filters:
            value = f" = {f.value}" if f.value else ""
            sections.append(f'- Filter: "{f.user_phrase}" ({f.operator}{value})')
        sections.append("")

    if context:
        sections += ["# Relevant fields", ""]
        sections += [_format_field(r) for r in context[:MAX_CONTEXT_FIELDS]]
        sections.append("")

    if desired_fields and desired_fields.fields_applied:
        sections += [
            "# Requested enrichment",
            "",
            "Alias the base query as `base` and add exactly these columns:",
            *(f"- {column}" for column in desired_fields.select_columns),
            "Using these joins:",
            desired_fields.join_summary,
            "",
        ]

    if structure_errors:
        sections += ["# Fix these problems from the previous attempt", ""]
        if previous_attempt:
            sections += ["```sql", previous_attempt, "```", ""]
        sections += [f"- {e.message} {e.suggestion}" for e in structure_errors]
        sections.append("")

    sections += [
        "# Instructions",
        "",
        "Use the rpt.* reporting schema for all tables.",
        "Return ONLY a valid JSON object matching the format defined in the system prompt.",
    ]
    return "\n".join(sections)


def parse_generation_response(text: str) -> GeneratedSql:
    data = parse_llm_json(text)
    if data is not None:
        sql = data.get("generatedSql") or data.get("sql")
        if isinstance(sql, str) and sql.strip():
            return GeneratedSql(sql=sql.strip(), explanation=str(data.get("explanation") or ""))
        raise SqlGenerationError("LLM response did not include generatedSql")

    fenced = _SQL_FENCE.search(text)
    if fenced and fenced.group(1).strip():
        return GeneratedSql(sql=fenced.group(1).strip())
    raise SqlGenerationError("LLM response was not valid JSON")


class SqlGenerationService:
    """Writes fresh SQL for a question through the chat provider."""

    def __init__(self, chat_provider: ChatProvider, model: str, *, timeout_s: float | None = 60.0):
        self._provider = chat_provider
        self._model = model
        self._timeout_s = timeout_s

    async def generate(
        self,
        question: str,
        *,
        classification: ClassificationResult | None = None,
        structured_intent: StructuredIntent | None = None,
        context: list[SemanticSearchResult] | None = None,
        desired_fields: DesiredFieldResolution | None = None,
        structure_errors: list[StructureError] | None = None,
        previous_attempt: str | None = None,
    ) -> GeneratedSql:
        """Generate one statement; ``structure_errors`` turns this into a repair request.

        Raises:
            SqlGenerationError: the provider failed or returned no SQL.
        """
        prompt = build_generation_prompt(
            question,
            classification=classification,
            structured_intent=structured_intent,
            context=context,
            desired_fields=desired_fields,
            structure_errors=structure_errors,
            previous_attempt=previous_attempt,
        )
        outcome = await complete_text(
            self._provider,
            system_prompt=_GENERATION_SYSTEM_PROMPT,
            user_prompt=prompt,
            model=self._model,
            temperature=GENERATION_TEMPERATURE,
            max_tokens=GENERATION_MAX_TOKENS,
            timeout_s=self._timeout_s,
            feature="sql_generation",
        )
        if not outcome.ok:
            raise SqlGenerationError(f"SQL generation failed: {outcome.error}")
        generated = parse_generation_response(outcome.value)
        logger.debug("Generated SQL (%d chars)", len(generated.sql))
        return generated
