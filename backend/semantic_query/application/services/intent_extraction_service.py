"""Structured intent extraction — analysis type, metrics and filter phrases.

The LLM reads the question and returns the analytical goal plus the user's
own wording for metrics and filters; that wording feeds the Concept
Expander. When the LLM is unavailable or answers with something unusable,
a keyword heuristic keeps the turn going.
"""

import logging
import re

from semantic_query.application.interfaces import ChatProvider
from semantic_query.application.services.llm_support import complete_text, parse_llm_json
from semantic_query.domain.entities import FilterPhrase, Outcome, StructuredIntent

logger = logging.getLogger(__name__)

ANALYSIS_TYPES = (
    "outcome_analysis",
    "trend_analysis",
    "cohort_comparison",
    "risk_assessment",
    "quality_metrics",
    "operational_metrics",
)

EXTRACTION_TEMPERATURE = 0.1
EXTRACTION_MAX_TOKENS = 800

_EXTRACTION_SYSTEM_PROMPT = """You analyse questions about wound care data and extract a structured intent used for SQL generation.

Analysis types:
- outcome_analysis: results such as healing rate, infection rate, closure percentage (default)
- trend_analysis: how something changes over time
- cohort_comparison: two or more explicitly named groups compared with each other
- risk_assessment: patients or wounds at risk
- quality_metrics: clinical quality indicators and compliance
- operational_metrics: workload and efficiency, e.g. assessments per day

Metrics are specific measurement goals in snake_case ("average_healing_rate", "patient_count").
Filters keep the user's exact wording in "userPhrase"; "operator" is one of equals, not_equals,
greater_than, less_than, in, contains; "value" is the normalised value or null.

Return ONLY a JSON object:
{
  "type": "<analysis type>",
  "metrics": ["<metric>"],
  "filters": [{"operator": "equals", "userPhrase": "<phrase>", "value": null}],
  "confidence": <0.0-1.0>,
  "reasoning": "<one sentence>"
}"""

_FILTER_OPERATORS = {"equals", "not_equals", "greater_than", "less_than", "in", "contains"}


def build_extraction_prompt(question: str, ontology_terms: list[str] | None = None) -> str:
    lines = [f'Question: "{question}"', ""]
    if ontology_terms:
        lines.append("Known clinical concepts:")
        lines.extend(f"- {term}" for term in ontology_terms[:20])
        lines.append("")
    lines.append("Respond with the JSON object only, without markdown fences.")
    return "\n".join(lines)


def parse_extraction_response(text: str) -> Outcome[StructuredIntent]:
    data = parse_llm_json(text)
    if data is None:
        return Outcome.failure("Invalid JSON in extraction response")

    intent_type = data.get("type")
    if intent_type not in ANALYSIS_TYPES:
        return Outcome.failure(f"Invalid analysis type: {intent_type}")

    metrics = data.get("metrics")
    if not isinstance(metrics, list) or not metrics:
        return Outcome.failure("'metrics' must be a non-empty array")

    raw_filters = data.get("filters") or []
    if not isinstance(raw_filters, list):
        return Outcome.failure("'filters' must be an array")

    confidence = data.get("confidence")
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)) or not 0 <= confidence <= 1:
        return Outcome.failure("'confidence' must be a number between 0 and 1")

    filters = []
    for item in raw_filters:
        if not isinstance(item, dict):
            continue
        phrase = str(item.get("userPhrase") or item.get("userTerm") or "").strip()
        if not phrase:
            continue
        operator = str(item.get("operator") or "equals")
        value = item.get("value")
        filters.append(FilterPhrase(
            operator=operator if operator in _FILTER_OPERATORS else "equals",
            user_phrase=phrase,
            value=None if value is None else str(value),
        ))

    return Outcome.success(StructuredIntent(
        type=intent_type,
        metrics=[str(m) for m in metrics if str(m).strip()],
        filters=filters,
        confidence=float(confidence),
        reasoning=str(data.get("reasoning") or ""),
    ))


def heuristic_intent(question: str) -> StructuredIntent:
    """Keyword-only extraction used when the LLM cannot help."""
    lower = question.lower().strip()

    if re.match(r"^how many\b", lower) or re.match(r"^count\s+", lower):
        return StructuredIntent(
            type="outcome_analysis", metrics=["count"], confidence=0.85,
            reasoning="Detected count pattern (heuristic fallback)",
        )
    if re.search(r"\baverage\b|\bavg\b", lower):
        return StructuredIntent(
            type="outcome_analysis", metrics=["average"], confidence=0.75,
            reasoning="Detected average/aggregation pattern (heuristic fallback)",
        )
    if re.search(r"\btrend|over time|\bchange|\bgetting\b|\bfaster\b|\bslower\b", lower):
        return StructuredIntent(
            type="trend_analysis", metrics=["trend"], confidence=0.75,
            reasoning="Detected trend analysis pattern (heuristic fallback)",
        )
    if re.search(r"\bcompare|\bvs\b\.?|\bversus\b|\bdifference\b|\bbetween\b", lower):
        return StructuredIntent(
            type="cohort_comparison", metrics=["comparison"], confidence=0.7,
            reasoning="Detected comparison pattern (heuristic fallback)",
        )
    if re.match(r"^(?:show|list|get|find|retrieve)\b", lower):
        return StructuredIntent(
            type="outcome_analysis", metrics=["list"], confidence=0.7,
            reasoning="Detected list/show pattern (heuristic fallback)",
        )
    return StructuredIntent(
        type="outcome_analysis", metrics=["data"], confidence=0.5,
        reasoning="Could not classify with LLM; using generic outcome analysis fallback",
    )


class IntentExtractionService:
    """Extracts a StructuredIntent per question; never raises for LLM failures."""

    def __init__(self, chat_provider: ChatProvider | None, model: str = "", *, timeout_s: float = 60.0):
        self._chat_provider = chat_provider
        self._model = model
        self._timeout_s = timeout_s

    async def extract(self, question: str, ontology_terms: list[str] | None = None) -> StructuredIntent:
        if self._chat_provider is None or not question.strip():
            return heuristic_intent(question)

        reply = await complete_text(
            self._chat_provider,
            system_prompt=_EXTRACTION_SYSTEM_PROMPT,
            user_prompt=build_extraction_prompt(question, ontology_terms),
            model=self._model,
            temperature=EXTRACTION_TEMPERATURE,
            max_tokens=EXTRACTION_MAX_TOKENS,
            timeout_s=self._timeout_s,
            feature="intent_extraction",
        )
        if not reply.ok:
            logger.warning("Intent extraction failed (%s), using heuristic fallback", reply.error)
            return heuristic_intent(question)

        parsed = parse_extraction_response(reply.value)
        if not parsed.ok:
            logger.warning("Unusable extraction response (%s), using heuristic fallback", parsed.error)
            return heuristic_intent(question)
        return parsed.value
