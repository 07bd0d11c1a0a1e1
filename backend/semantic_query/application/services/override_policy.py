"""Precedence rules for semantic assignments on stored non-form columns.

A row's metadata records who last assigned its concept/category
(``override_source``), which fields that assignment locks
(``override_level``) and when (``override_date``). Discovery only replaces a
locked field when its own source has a higher priority, or the same priority
and a newer date.
"""

from datetime import datetime, timezone
from typing import Any

from semantic_query.domain.entities import OverrideLevel, OverrideMetadata, OverrideSource

SOURCE_PRIORITY: dict[OverrideSource, int] = {
    OverrideSource.MANUAL_REVIEW: 500,
    OverrideSource.ADMIN_UI: 500,
    OverrideSource.MEASUREMENT_HEURISTIC: 400,
    OverrideSource.MIGRATION: 350,
    OverrideSource.ONTOLOGY_BACKED: 300,
    OverrideSource.DISCOVERY_INFERRED: 100,
}

SOURCE_DEFAULT_LEVEL: dict[OverrideSource, OverrideLevel] = {
    OverrideSource.MANUAL_REVIEW: OverrideLevel.BOTH,
    OverrideSource.ADMIN_UI: OverrideLevel.BOTH,
    OverrideSource.MEASUREMENT_HEURISTIC: OverrideLevel.BOTH,
    OverrideSource.MIGRATION: OverrideLevel.BOTH,
    OverrideSource.ONTOLOGY_BACKED: OverrideLevel.SEMANTIC_CONCEPT,
    OverrideSource.DISCOVERY_INFERRED: OverrideLevel.METADATA_ONLY,
}

_OVERRIDE_KEYS = (
    "override_source",
    "override_level",
    "override_date",
    "override_reason",
    "overridden_by",
    "original_value",
)


def _parse_date(value: Any) -> datetime | None:
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def create_override(
    source: OverrideSource,
    *,
    level: OverrideLevel | None = None,
    reason: str | None = None,
    overridden_by: str | None = None,
    original_value: str | None = None,
    date: datetime | None = None,
) -> OverrideMetadata:
    return OverrideMetadata(
        source=source,
        level=level or SOURCE_DEFAULT_LEVEL[source],
        date=date or datetime.now(timezone.utc),
        reason=reason,
        overridden_by=overridden_by,
        original_value=original_value,
    )


def read_override(metadata: Any) -> OverrideMetadata | None:
    """Override block stored in a row's metadata, or None when absent/invalid."""
    if not isinstance(metadata, dict):
        return None
    try:
        source = OverrideSource(metadata.get("override_source"))
        level = OverrideLevel(metadata.get("override_level"))
    except ValueError:
        return None
    raw_date = metadata.get("override_date")
    if not isinstance(raw_date, str) or not raw_date.strip():
        return None

    def _str(key: str) -> str | None:
        value = metadata.get(key)
        return value if isinstance(value, str) else None

    return OverrideMetadata(
        source=source,
        level=level,
        date=_parse_date(raw_date),
        reason=_str("override_reason"),
        overridden_by=_str("overridden_by"),
        original_value=_str("original_value"),
    )


def locks_field(level: OverrideLevel, field: str) -> bool:
    if level == OverrideLevel.BOTH:
        return True
    return level.value == field


def should_use_incoming(
    existing: OverrideMetadata | None,
    incoming: OverrideMetadata,
    field: str,
) -> bool:
    """Whether ``incoming`` may replace ``field`` ("semantic_concept"/"semantic_category")."""
    if existing is None or not locks_field(existing.level, field):
        return True

    existing_priority = SOURCE_PRIORITY.get(existing.source, 0)
    incoming_priority = SOURCE_PRIORITY.get(incoming.source, 0)
    if incoming_priority != existing_priority:
        return incoming_priority > existing_priority

    if existing.date is None and incoming.date is None:
        return False
    if incoming.date is None:
        return False
    if existing.date is None:
        return True
    return incoming.date >= existing.date


def format_original_value(concept: str | None, category: str | None) -> str | None:
    parts = []
    if concept:
        parts.append(f"concept:{concept}")
    if category:
        parts.append(f"category:{category}")
    return " | ".join(parts) or None


def apply_override_fields(target: dict[str, Any], override: OverrideMetadata | None) -> dict[str, Any]:
    """Write (or clear) the override block on a metadata dict in place."""
    for key in _OVERRIDE_KEYS:
        target.pop(key, None)
    if override is None:
        return target

    target["override_source"] = override.source.value
    target["override_level"] = override.level.value
    if override.date is not None:
        target["override_date"] = override.date.isoformat()
    if override.reason:
        target["override_reason"] = override.reason
    if override.overridden_by:
        target["overridden_by"] = override.overridden_by
    if override.original_value:
        target["original_value"] = override.original_value
    return target
