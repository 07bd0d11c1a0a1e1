"""Concept Expander — bounded, deduplicated search concepts for one question.

Candidates come from three sources in fixed priority order: requested
metrics, filter phrases in the user's words, then canonical keywords for the
intent type. Each source is ranked by frequency (first occurrence breaks
ties) and capped before merging; near-duplicates across sources collapse to
the first-seen form.
"""

import re
from collections.abc import Iterable
from dataclasses import dataclass

from semantic_query.application.services.measurement_concepts import measurement_concept_key
from semantic_query.domain.entities import ConceptSource, ExpandedConceptSet, FilterPhrase

MAX_CONCEPTS = 25
MAX_METRICS = 10
MAX_FILTER_PHRASES = 10
MAX_INTENT_KEYWORDS = 5
SIMILARITY_THRESHOLD = 0.9
"""Phrases at least this similar (edit distance over length) are duplicates."""

INTENT_KEYWORDS: dict[str, list[str]] = {
    # Structured analysis types
    "outcome_analysis": ["outcome", "result", "healing", "closure", "improvement"],
    "trend_analysis": ["trend", "change over time", "trajectory", "increase", "decrease"],
    "cohort_comparison": ["compare", "versus", "cohort difference", "group comparison", "vs"],
    "risk_assessment": ["risk", "likelihood", "probability", "complication", "risk factor"],
    "quality_metrics": ["quality", "compliance", "protocol", "performance", "benchmark"],
    "operational_metrics": ["operations", "throughput", "volume", "efficiency", "workflow"],
    # Query intents
    "temporal_proximity_query": [
        "temporal", "time", "baseline", "measurement", "weeks", "days",
        "at", "around", "near", "close to",
    ],
    "assessment_correlation_check": [
        "assessment", "missing", "correlation", "relationship", "match",
        "compare", "reconciliation", "discrepancy", "mismatch",
    ],
    "workflow_status_monitoring": [
        "workflow", "status", "state", "progress", "stage", "pending",
        "complete", "in progress", "approved", "rejected",
    ],
    "aggregation_by_category": ["count", "category", "group", "total"],
    "time_series_trend": ["trend", "over time", "period"],
    "latest_per_entity": ["latest", "most recent", "last"],
    "as_of_state": ["as of", "state", "snapshot"],
    "top_k": ["top", "highest", "lowest"],
}


def normalize_concept(value: str) -> str:
    """Lowercase, keep ``[a-z0-9_ ]`` and collapse whitespace."""
    cleaned = re.sub(r"[^a-z0-9_ ]+", " ", value.lower())
    return re.sub(r"\s+", " ", cleaned).strip()


def _dedup_key(value: str) -> str:
    return re.sub(r"\s+", " ", value.replace("_", " ")).strip()


def levenshtein(a: str, b: str) -> int:
    """Edit distance between two strings (insert, delete, substitute)."""
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            cost = 0 if ca == cb else 1
            current.append(min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + cost))
        previous = current
    return previous[-1]


def similarity(a: str, b: str) -> float:
    if not a or not b:
        return 0.0
    longer = max(len(a), len(b))
    return (longer - levenshtein(a, b)) / longer


@dataclass
class _Ranked:
    concept: str
    source: ConceptSource
    count: int
    first_index: int
    raw: str


def _rank(
    phrases: Iterable[str],
    source: ConceptSource,
    limit: int,
    max_freq: int,
) -> list[_Ranked]:
    counts: dict[str, _Ranked] = {}
    for index, phrase in enumerate(phrases):
        normalized = normalize_concept(phrase)
        if not normalized:
            continue
        key = measurement_concept_key(phrase) or normalized
        existing = counts.get(key)
        if existing:
            existing.count = min(existing.count + 1, max_freq)
        else:
            counts[key] = _Ranked(key, source, 1, index, phrase)
    ranked = sorted(counts.values(), key=lambda r: (-r.count, r.first_index))
    return ranked[:limit]


class ConceptExpander:
    """Builds the concept list fed to the Semantic Searcher."""

    def __init__(self, max_concepts: int = MAX_CONCEPTS):
        self._max_concepts = min(max_concepts, MAX_CONCEPTS) if max_concepts > 0 else MAX_CONCEPTS

    def build(
        self,
        intent_type: str | None,
        metrics: list[str] | None = None,
        filters: list[FilterPhrase] | None = None,
        *,
        max_concepts: int | None = None,
        max_phrase_freq: int = 5,
    ) -> ExpandedConceptSet:
        """Concatenate ranked metrics, filter phrases and intent keywords.

        ``max_concepts`` may lower the cap for one call but never raise it
        above 25.
        """
        cap = self._max_concepts
        if max_concepts and max_concepts > 0:
            cap = min(max_concepts, cap)

        filter_phrases = [f.user_phrase for f in (filters or []) if f.user_phrase]
        candidates = [
            *_rank(metrics or [], ConceptSource.METRIC, MAX_METRICS, max_phrase_freq),
            *_rank(filter_phrases, ConceptSource.FILTER, MAX_FILTER_PHRASES, max_phrase_freq),
            *_rank(INTENT_KEYWORDS.get(intent_type or "", []), ConceptSource.INTENT_TYPE, MAX_INTENT_KEYWORDS, 1),
        ]

        result = ExpandedConceptSet()
        kept_keys: list[str] = []
        for candidate in candidates:
            if len(result.concepts) >= cap:
                break
            key = _dedup_key(candidate.concept)
            if self._is_duplicate(key, kept_keys):
                continue
            kept_keys.append(key)
            result.concepts.append(candidate.concept)
            result.sources.append(candidate.source)
            result.explanations.append(
                f"{candidate.source.value}:{candidate.raw} (freq={candidate.count})"
            )
        return result

    @staticmethod
    def _is_duplicate(key: str, kept: list[str]) -> bool:
        return any(k == key or similarity(key, k) >= SIMILARITY_THRESHOLD for k in kept)
