"""SQL Composer — extend the previous turn's query instead of starting over.

Two LLM calls:
  - ``should_compose_query`` decides whether a follow-up question refines
    the previous one (temperature 0.0). Any failure answers "no".
  - ``compose_query`` produces ``{strategy, sql}`` as a CTE wrapper, a merged
    WHERE clause, or ``fresh`` (temperature 0.1). Unusable output raises
    ``CompositionError``.

``validate_composed_sql`` must pass before composed SQL is used; callers
regenerate fresh SQL otherwise.
"""

import logging
import re

from semantic_query.application.interfaces import ChatProvider
from semantic_query.application.services.llm_support import complete_text, parse_llm_json
from semantic_query.application.services.sql_safety import SqlSafetyEnforcer
from semantic_query.application.services.sql_text import mask_sql, paren_depths
from semantic_query.domain.entities import (
    ComposedQuery,
    ComposedSqlValidation,
    CompositionDecision,
    CompositionStrategy,
)
from semantic_query.domain.exceptions import CompositionError

logger = logging.getLogger(__name__)

DECISION_TEMPERATURE = 0.0
COMPOSITION_TEMPERATURE = 0.1
MAX_CTE_CHAIN = 3

_SAFE_DECISION_REASONING = "Error determining relationship; generating fresh query for safety"

_DECISION_SYSTEM_PROMPT = """You are a SQL query relationship analyzer for healthcare data conversations.

Your task is to determine if a current question builds upon (filters/aggregates/refines) previous query results,
or is an independent question requiring fresh data retrieval.

Key principles:
- Questions with pronouns (which ones, those, they) almost always build on previous
- Questions with vague aggregations (what's the average?, how many?) without entity names likely build on previous
- Questions with explicit entity names (show male patients, count clinics) are usually independent
- Time period shifts without pronouns are usually independent (Q1 → Q2)

Return ONLY a valid JSON object. No markdown, no explanations outside JSON."""

_COMPOSITION_SYSTEM_PROMPT = """You are a SQL query composer for healthcare data analysis.

Your task is to generate SQL that builds upon previous queries in a conversation.

Context carryover rules:
1. When the user says "which ones", "those", "they": build on the previous query using a CTE.
2. When the user asks for an aggregation over previous results: wrap the previous query, then aggregate.
3. When the user asks a completely different question: generate fresh SQL (ignore previous).
4. Do not chain more than 3 CTEs. If composition gets complex, merge WHERE clauses instead.

Privacy requirements:
- Never store query results.
- Never use CREATE TEMP TABLE or SELECT ... INTO temporary tables.
- Always use CTEs for composition.

Return ONLY the JSON object. No markdown, no explanation outside the JSON."""


def build_decision_prompt(new_question: str, previous_question: str, previous_sql: str) -> str:
    return (
        "You are analyzing a conversation about healthcare data to determine query relationships.\n\n"
        f'Previous question: "{previous_question}"\n\n'
        f"Previous SQL:\n```sql\n{previous_sql}\n```\n\n"
        f'Current question: "{new_question}"\n\n'
        "Task: Determine if the current question BUILDS ON the previous question's results, "
        "or is an INDEPENDENT question.\n\n"
        "BUILDS ON (shouldCompose: true):\n"
        '- Filtering previous results: "Show female patients" → "Which ones are older than 40?"\n'
        '- Aggregating previous results: "Show patients with wounds" → "What\'s their average age?"\n'
        '- Refining previous query: "List all assessments" → "Only show from last month"\n\n'
        "INDEPENDENT (shouldCompose: false):\n"
        '- Different subset of same entity: "Show female patients" → "Show male patients"\n'
        '- Completely different entity: "How many patients?" → "How many clinics?"\n'
        '- Parallel question: "Count active wounds" → "Count healed wounds"\n\n'
        "Return JSON:\n"
        "{\n"
        '  "shouldCompose": true | false,\n'
        '  "reasoning": "<brief explanation>",\n'
        '  "confidence": <0.0-1.0>\n'
        "}"
    )


def build_composition_prompt(previous_sql: str, previous_question: str, new_question: str) -> str:
    return (
        f'Previous question: "{previous_question}"\n'
        f"Previous SQL:\n```sql\n{previous_sql}\n```\n\n"
        f'Current question: "{new_question}"\n\n'
        "Task: Generate SQL that builds on the previous query.\n\n"
        "Composition strategies:\n"
        "1. cte (preferred): wrap the previous query in a CTE, e.g.\n"
        "   WITH previous_result AS (<previous SQL>)\n"
        "   SELECT * FROM previous_result WHERE <additional filters>\n"
        "2. merged_where: add the new predicate to the existing WHERE clause\n"
        "3. fresh: generate new SQL if the questions are unrelated\n\n"
        "Return JSON:\n"
        "{\n"
        '  "strategy": "cte" | "merged_where" | "fresh",\n'
        '  "sql": "...",\n'
        '  "reasoning": "<why this strategy was chosen>"\n'
        "}"
    )


def parse_composition_decision(text: str) -> CompositionDecision:
    """Raises ValueError when the reply is not a usable decision."""
    data = parse_llm_json(text)
    if data is None:
        raise ValueError("No valid JSON object found in composition decision response")
    should_compose = data.get("shouldCompose")
    if not isinstance(should_compose, bool):
        raise ValueError("Invalid composition decision: missing shouldCompose boolean")

    confidence = data.get("confidence")
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
        confidence = 1.0
    return CompositionDecision(
        should_compose=should_compose,
        confidence=min(max(float(confidence), 0.0), 1.0),
        reasoning=str(data.get("reasoning") or "No reasoning provided"),
    )


def parse_composition_response(text: str) -> ComposedQuery:
    data = parse_llm_json(text)
    if data is None:
        raise CompositionError("Invalid composition response: no valid JSON found")
    sql = data.get("sql")
    try:
        strategy = CompositionStrategy(data.get("strategy"))
    except ValueError:
        strategy = None
    if not isinstance(sql, str) or not sql.strip() or strategy is None:
        raise CompositionError("Invalid composition response: missing or invalid sql/strategy")
    return ComposedQuery(
        sql=sql.strip(),
        strategy=strategy,
        reasoning=str(data.get("reasoning") or "No reasoning provided"),
    )


_WITH = re.compile(r"^\s*WITH\b", re.IGNORECASE)
_SELECT = re.compile(r"\bSELECT\b", re.IGNORECASE)
_CREATE_TEMP = re.compile(r"CREATE\s+TEMP", re.IGNORECASE)
_INTO_TEMP = re.compile(r"INTO\s+(?:TEMP|#)", re.IGNORECASE)


def count_top_level_ctes(sql: str) -> int:
    """``WITH a AS (...), b AS (...) SELECT ...`` → 2; 0 without a WITH."""
    masked = mask_sql(sql)
    if not _WITH.match(masked):
        return 0
    depths = paren_depths(masked)
    select = next((m for m in _SELECT.finditer(masked) if depths[m.start()] == 0), None)
    end = select.start() if select else len(masked)
    commas = sum(1 for i in range(end) if masked[i] == "," and depths[i] == 0)
    return commas + 1


class SqlComposer:
    """Decides compose-vs-fresh for follow-ups and performs the composition."""

    def __init__(
        self,
        chat_provider: ChatProvider,
        model: str,
        *,
        enforcer: SqlSafetyEnforcer | None = None,
        timeout_s: float | None = 60.0,
    ):
        self._provider = chat_provider
        self._model = model
        self._enforcer = enforcer or SqlSafetyEnforcer()
        self._timeout_s = timeout_s

    async def should_compose_query(
        self,
        new_question: str,
        previous_question: str,
        previous_sql: str,
    ) -> CompositionDecision:
        """Never raises; any failure means "generate fresh"."""
        outcome = await complete_text(
            self._provider,
            system_prompt=_DECISION_SYSTEM_PROMPT,
            user_prompt=build_decision_prompt(new_question, previous_question, previous_sql),
            model=self._model,
            temperature=DECISION_TEMPERATURE,
            timeout_s=self._timeout_s,
            feature="composition_decision",
        )
        if outcome.ok:
            try:
                return parse_composition_decision(outcome.value)
            except ValueError as e:
                error = str(e)
        else:
            error = outcome.error

        logger.error(
            "Failed to determine composition (previous=%r, current=%r): %s",
            previous_question[:100], new_question[:100], error,
        )
        return CompositionDecision(
            should_compose=False,
            confidence=0.0,
            reasoning=_SAFE_DECISION_REASONING,
        )

    async def compose_query(
        self,
        previous_sql: str,
        previous_question: str,
        new_question: str,
    ) -> ComposedQuery:
        """Ask the LLM to build the follow-up query on top of ``previous_sql``.

        Raises:
            CompositionError: the LLM failed or replied with unusable output.
        """
        outcome = await complete_text(
            self._provider,
            system_prompt=_COMPOSITION_SYSTEM_PROMPT,
            user_prompt=build_composition_prompt(previous_sql, previous_question, new_question),
            model=self._model,
            temperature=COMPOSITION_TEMPERATURE,
            timeout_s=self._timeout_s,
            feature="composition",
        )
        if not outcome.ok:
            raise CompositionError(f"Composition request failed: {outcome.error}")
        composed = parse_composition_response(outcome.value)
        logger.info("Composed follow-up query (strategy=%s)", composed.strategy.value)
        return composed

    def validate_composed_sql(self, sql: str) -> ComposedSqlValidation:
        """Composition limits first, then the full safety rule chain."""
        errors: list[str] = []
        masked = mask_sql(sql or "")
        if _CREATE_TEMP.search(masked):
            errors.append("Temporary tables are not allowed")
        if _INTO_TEMP.search(masked):
            errors.append("Cannot insert into temporary tables")

        ctes = count_top_level_ctes(sql or "")
        if ctes > MAX_CTE_CHAIN:
            errors.append(
                f"Too many CTEs in chain ({ctes}, max {MAX_CTE_CHAIN}). "
                "Consider simplifying or using merged WHERE clauses instead."
            )

        safety = self._enforcer.validate(sql or "")
        if not safety.is_valid:
            errors.extend(safety.warnings)
        return ComposedSqlValidation(valid=not errors, errors=errors, safety=safety)
