"""Rule-based intent detectors — one per intent, no external calls.

Each detector inspects a lowercased question and returns either ``None`` or
an ``IntentCandidate`` carrying one of exactly two (or three, for workflow
status) fixed confidence tiers. Keywords match on word boundaries so that
``at`` does not fire inside ``patients`` and ``no`` does not fire inside
``notes``.
"""

import re
from abc import ABC, abstractmethod

from semantic_query.domain.entities import IntentCandidate, QueryIntent


def _term_pattern(term: str, *, inflected: bool = False) -> re.Pattern[str]:
    """Whole-word regex for ``term``; ``inflected`` also accepts a plural ``s``."""
    body = r"\s+".join(re.escape(part) for part in term.split())
    suffix = r"(?:s|es)?" if inflected else ""
    return re.compile(rf"(?<![a-z0-9]){body}{suffix}(?![a-z0-9])")


def _compile(terms: list[str], *, inflected: bool = False) -> list[tuple[str, re.Pattern[str]]]:
    return [(term, _term_pattern(term, inflected=inflected)) for term in terms]


def _first_match(text: str, terms: list[tuple[str, re.Pattern[str]]]) -> str | None:
    for term, pattern in terms:
        if pattern.search(text):
            return term
    return None


def _all_matches(text: str, terms: list[tuple[str, re.Pattern[str]]]) -> list[str]:
    return [term for term, pattern in terms if pattern.search(text)]


class IntentDetector(ABC):
    """A pattern matcher for a single intent."""

    intent: QueryIntent

    @abstractmethod
    def detect(self, question: str) -> IntentCandidate | None:
        """Return a candidate when the question has this intent's shape."""
        ...


# ── Temporal proximity ───────────────────────────────────────────────

_PROXIMITY_TERMS = _compile([
    "at", "around", "approximately", "near", "close to", "within",
    "by", "after", "since", "roughly", "about",
])

_TIME_UNITS = [
    re.compile(r"\b(\d+)[\s-]*(?:weeks?|wks?)\b"),
    re.compile(r"\b(\d+)[\s-]*(?:months?|mos?)\b"),
    re.compile(r"\b(\d+)[\s-]*(?:days?)\b"),
    re.compile(r"\b(\d+)[\s-]*(?:years?|yrs?)\b"),
]

_OUTCOME_TERMS = _compile([
    "healing", "healed", "outcome", "result", "reduction", "improvement",
    "measurement", "area", "size", "change", "progress",
], inflected=True)

# "in the last 4 weeks" describes a window, not a time point
_RANGE_MARKER = re.compile(
    r"(?:\bin\s+the\s+(?:last|past)|\bwithin\s+the\s+(?:last|past)"
    r"|\bover\s+the(?:\s+(?:last|past))?|\bduring\s+the(?:\s+(?:last|past))?"
    r"|\bpast|\bprevious|\blast)\s*$"
)


class TemporalProximityDetector(IntentDetector):
    """Outcomes at a specific time point, e.g. "healing rate at 4 weeks"."""

    intent = QueryIntent.TEMPORAL_PROXIMITY_QUERY
    HIGH_CONFIDENCE = 0.9
    MEDIUM_CONFIDENCE = 0.6

    def detect(self, question: str) -> IntentCandidate | None:
        lower = question.lower()
        time_unit = self._find_time_point(lower)
        if time_unit is None:
            return None

        proximity = _first_match(lower, _PROXIMITY_TERMS)
        outcome = _first_match(lower, _OUTCOME_TERMS)

        patterns: list[str] = []
        if proximity:
            patterns.append(f"proximity:{proximity}")
        patterns.append(f"timeUnit:{time_unit}")
        if outcome:
            patterns.append(f"outcome:{outcome}")

        if proximity and outcome:
            return IntentCandidate(self.intent, self.HIGH_CONFIDENCE, tuple(patterns))
        if proximity or outcome:
            return IntentCandidate(self.intent, self.MEDIUM_CONFIDENCE, tuple(patterns))
        return None

    @staticmethod
    def _find_time_point(lower: str) -> str | None:
        """First time-unit phrase that is not part of a date range."""
        for pattern in _TIME_UNITS:
            for match in pattern.finditer(lower):
                if _RANGE_MARKER.search(lower[: match.start()]):
                    continue
                return match.group(0)
        return None


# ── Assessment correlation ───────────────────────────────────────────

_ANTI_JOIN_TERMS = _compile([
    "no", "without", "lacking", "missing", "with no", "not have", "absent",
])

_CORRELATION_TERMS = _compile([
    "compare", "comparison", "reconciliation", "between", "discrepancy",
    "mismatch", "versus",
])

_ASSESSMENT_TYPE_TERMS = _compile([
    "visit", "discharge", "billing", "documentation", "clinical", "intake",
    "assessment", "form",
], inflected=True)


class AssessmentCorrelationDetector(IntentDetector):
    """Missing or mismatched data across assessment types."""

    intent = QueryIntent.ASSESSMENT_CORRELATION_CHECK
    HIGH_CONFIDENCE = 0.85
    MEDIUM_CONFIDENCE = 0.75

    def detect(self, question: str) -> IntentCandidate | None:
        lower = question.lower()
        anti_join = _first_match(lower, _ANTI_JOIN_TERMS)
        correlation = _first_match(lower, _CORRELATION_TERMS)
        types = _all_matches(lower, _ASSESSMENT_TYPE_TERMS)

        patterns: list[str] = []
        if anti_join:
            patterns.append(f"antiJoin:{anti_join}")
        if correlation:
            patterns.append(f"correlation:{correlation}")
        patterns.extend(f"assessmentType:{t}" for t in types)

        if len(types) < 2:
            return None
        if anti_join:
            return IntentCandidate(self.intent, self.HIGH_CONFIDENCE, tuple(patterns))
        if correlation:
            return IntentCandidate(self.intent, self.MEDIUM_CONFIDENCE, tuple(patterns))
        return None


# ── Workflow status ──────────────────────────────────────────────────

_STATUS_TERMS = _compile([
    "status", "state", "pending", "complete", "completed", "approved",
    "rejected", "in progress", "draft", "submitted",
])

_GROUP_BY_TERMS = _compile([
    "by status", "by state", "group by", "grouped by", "breakdown",
])

_AGE_TERMS = _compile([
    "days old", "older than", "aging", "stale", "overdue",
])


class WorkflowStatusDetector(IntentDetector):
    """Filter or group records by workflow status."""

    intent = QueryIntent.WORKFLOW_STATUS_MONITORING
    GROUPED_CONFIDENCE = 0.9
    AGED_CONFIDENCE = 0.8
    STATUS_ONLY_CONFIDENCE = 0.6

    def detect(self, question: str) -> IntentCandidate | None:
        lower = question.lower()
        status = _first_match(lower, _STATUS_TERMS)
        if status is None:
            return None

        group_by = _first_match(lower, _GROUP_BY_TERMS)
        age = _first_match(lower, _AGE_TERMS)

        patterns = [f"status:{status}"]
        if group_by:
            patterns.append(f"groupBy:{group_by}")
        if age:
            patterns.append(f"age:{age}")

        if group_by:
            confidence = self.GROUPED_CONFIDENCE
        elif age:
            confidence = self.AGED_CONFIDENCE
        else:
            confidence = self.STATUS_ONLY_CONFIDENCE
        return IntentCandidate(self.intent, confidence, tuple(patterns))


# Fixed evaluation order
DEFAULT_DETECTORS: tuple[IntentDetector, ...] = (
    TemporalProximityDetector(),
    AssessmentCorrelationDetector(),
    WorkflowStatusDetector(),
)
