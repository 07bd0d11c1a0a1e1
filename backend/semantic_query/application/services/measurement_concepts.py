"""Canonical measurement/time concept keys and the phrases that map to them.

Shared by the Concept Expander (metric canonicalization) and the Semantic
Searcher (canonical keys searched alongside the raw phrase).
"""

import re

MEASUREMENT_CONCEPT_SYNONYMS: dict[str, list[str]] = {
    "percent_area_reduction": [
        "percent area reduction",
        "percentage area reduction",
        "area reduction",
        "area change",
        "reduction in area",
        "wound size reduction",
        "reduction in wound size",
    ],
    "healing_rate": [
        "healing rate",
        "rate of healing",
        "wound healing rate",
        "speed of healing",
    ],
    "time_to_closure": [
        "time to closure",
        "time to heal",
        "time until healed",
        "time from baseline to closure",
        "days to closure",
        "weeks to closure",
    ],
    "measurement_date": [
        "measurement date",
        "date of measurement",
        "assessment date",
        "baseline date",
        "timepoint",
        "time point",
        "at 12 weeks",
        "at 52 weeks",
        "days from baseline",
    ],
}


def _normalize(phrase: str) -> str:
    cleaned = re.sub(r"[^a-z0-9\s%]", " ", phrase.lower())
    return re.sub(r"\s+", " ", cleaned).strip()


_NORMALIZED_SYNONYMS: list[tuple[str, str]] = [
    (key, _normalize(synonym))
    for key, synonyms in MEASUREMENT_CONCEPT_SYNONYMS.items()
    for synonym in synonyms
]


def measurement_concept_key(phrase: str) -> str | None:
    """Canonical key for a phrase that equals or contains a known synonym."""
    if not phrase or not phrase.strip():
        return None
    normalized = _normalize(phrase)
    for key, synonym in _NORMALIZED_SYNONYMS:
        if synonym and (normalized == synonym or synonym in normalized):
            return key
    return None


def expand_with_measurement_keys(concepts: list[str]) -> list[str]:
    """Trimmed, order-preserving concepts with canonical keys inserted after their phrase."""
    ordered: list[str] = []
    seen: set[str] = set()

    def add(value: str | None) -> None:
        if not value:
            return
        trimmed = value.strip()
        if trimmed and trimmed not in seen:
            seen.add(trimmed)
            ordered.append(trimmed)

    for concept in concepts:
        add(concept)
        add(measurement_concept_key(concept))
    return ordered
