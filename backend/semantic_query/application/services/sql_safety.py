"""SQL Safety Enforcer — reject unsafe statements and rewrite safe ones.

Each check is an independent, named rule applied in a fixed order:

  1. ``statement_type``      — must begin with SELECT or WITH (halts otherwise)
  2. ``dangerous_keywords``  — whole-word denylist (DROP, DELETE, … SP_, XP_)
  3. ``row_cap``             — cap the outer result unless it already has TOP/OFFSET
  4. ``schema_prefix``       — qualify sensitive tables in FROM lists and JOINs
  5. ``column_count``        — advisory warning for very wide SELECT lists

Rules see the statement through ``mask_sql``, so comments and string
literals never trigger a denylist hit or a rewrite.

Also hosts the enrichment-field whitelist used to join patient / wound
attributes onto a base query.
"""

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from semantic_query.application.services.sql_text import (
    mask_sql,
    paren_depths,
    select_modifiers,
    split_top_level,
    top_level_matches,
    top_level_select,
    top_level_select_list,
)
from semantic_query.domain.entities import (
    DesiredFieldResolution,
    EnrichmentValidationResult,
    SqlValidationResult,
)

logger = logging.getLogger(__name__)

DEFAULT_ROW_CAP = 1000
DEFAULT_MAX_COLUMNS = 20
DEFAULT_SCHEMA = "rpt"

DANGEROUS_KEYWORDS = (
    "DROP", "DELETE", "UPDATE", "INSERT", "TRUNCATE", "ALTER",
    "CREATE", "EXEC", "EXECUTE", "SP_", "XP_",
)
"""Keywords ending in ``_`` are procedure-name prefixes (``sp_who``, ``xp_cmdshell``)."""

SENSITIVE_TABLES = (
    "Assessment", "Patient", "Wound", "Note", "Measurement", "AttributeType", "DimDate",
)


# ── Rules ────────────────────────────────────────────────────────────

@dataclass
class SafetyContext:
    """Mutable state threaded through the rule chain for one statement."""

    sql: str
    warnings: list[str] = field(default_factory=list)
    is_valid: bool = True
    halted: bool = False

    @property
    def masked(self) -> str:
        return mask_sql(self.sql)


class SafetyRule(ABC):
    """One order-sensitive check or rewrite."""

    name: str

    @abstractmethod
    def apply(self, ctx: SafetyContext) -> None:
        ...


class StatementTypeRule(SafetyRule):
    name = "statement_type"

    _PATTERN = re.compile(r"^\s*(?:SELECT|WITH)\b", re.IGNORECASE)

    def apply(self, ctx: SafetyContext) -> None:
        if not self._PATTERN.match(ctx.masked):
            ctx.is_valid = False
            ctx.halted = True
            ctx.warnings.append("Query must start with SELECT or WITH")


class DangerousKeywordRule(SafetyRule):
    name = "dangerous_keywords"

    def __init__(self, keywords: tuple[str, ...] = DANGEROUS_KEYWORDS):
        self._patterns = [
            (kw, re.compile(rf"\b{re.escape(kw)}\w*" if kw.endswith("_") else rf"\b{re.escape(kw)}\b"))
            for kw in keywords
        ]

    def apply(self, ctx: SafetyContext) -> None:
        upper = ctx.masked.upper()
        for keyword, pattern in self._patterns:
            if pattern.search(upper):
                ctx.is_valid = False
                ctx.warnings.append(f"Dangerous SQL keyword detected: {keyword}")


class RowCapRule(SafetyRule):
    """Cap the outer result set.

    Only a TOP on the outer SELECT or an OFFSET outside parentheses counts
    as an existing cap; limits inside subqueries and CTE bodies do not.
    A top-level UNION/EXCEPT/INTERSECT is wrapped in a capped derived table
    so every branch is covered.
    """

    name = "row_cap"

    _TOP = re.compile(r"\bTOP\b", re.IGNORECASE)
    _OFFSET = re.compile(r"\bOFFSET\b", re.IGNORECASE)
    _SET_OPERATOR = re.compile(r"\b(?:UNION|EXCEPT|INTERSECT)\b", re.IGNORECASE)
    _ORDER_BY = re.compile(r"\bORDER\s+BY\b", re.IGNORECASE)
    _DISTINCT = re.compile(r"\s+(?:DISTINCT|ALL)\b", re.IGNORECASE)

    def __init__(self, row_cap: int = DEFAULT_ROW_CAP):
        self._row_cap = row_cap

    def apply(self, ctx: SafetyContext) -> None:
        masked = ctx.masked
        select = top_level_select(masked)
        if select is None:
            return
        if next(top_level_matches(self._OFFSET, masked, select.end()), None):
            return
        set_operators = list(top_level_matches(self._SET_OPERATOR, masked, select.end()))
        if set_operators:
            self._wrap_set_operation(ctx, masked, select, set_operators[-1])
        elif not self._TOP.search(select_modifiers(masked, select)):
            self._insert_top(ctx, masked, select)
        else:
            return
        ctx.warnings.append(f"Added TOP {self._row_cap} clause for safety")

    def _insert_top(self, ctx: SafetyContext, masked: str, select: re.Match) -> None:
        insert_at = select.end()
        distinct = self._DISTINCT.match(masked, insert_at)
        if distinct:
            insert_at = distinct.end()
        ctx.sql = f"{ctx.sql[:insert_at]} TOP {self._row_cap}{ctx.sql[insert_at:]}"

    def _wrap_set_operation(
        self, ctx: SafetyContext, masked: str, select: re.Match, last_operator: re.Match
    ) -> None:
        # A trailing ORDER BY sorts the combined result, so it stays outside the wrapper.
        end = len(masked.rstrip(" \t\r\n;"))
        body_end = end
        for order_by in top_level_matches(self._ORDER_BY, masked, last_operator.end()):
            body_end = order_by.start()
        sql = ctx.sql
        body = sql[select.start():body_end].rstrip()
        order_by_clause = f" {sql[body_end:end]}" if body_end < end else ""
        ctx.sql = (
            f"{sql[:select.start()]}SELECT TOP {self._row_cap} * FROM ({body}) AS capped"
            f"{order_by_clause}{sql[end:]}"
        )


class SchemaPrefixRule(SafetyRule):
    name = "schema_prefix"

    _FROM = re.compile(r"\bFROM\b", re.IGNORECASE)
    _FROM_CLAUSE_END = re.compile(
        r"\b(?:WHERE|GROUP\s+BY|HAVING|ORDER\s+BY|UNION|EXCEPT|INTERSECT|OPTION)\b|;",
        re.IGNORECASE,
    )

    def __init__(self, schema: str = DEFAULT_SCHEMA, tables: tuple[str, ...] = SENSITIVE_TABLES):
        self._schema = schema
        names = "|".join(re.escape(t) for t in tables)
        self._pattern = re.compile(
            rf"\b(?:FROM|JOIN)\s+\[?(?:{names})\]?(?![\w.])",
            re.IGNORECASE,
        )
        self._table_start = re.compile(r"\b(?:FROM|JOIN)\s+", re.IGNORECASE)
        self._listed_table = re.compile(rf"\s*(\[?(?:{names})\]?)(?![\w.])", re.IGNORECASE)

    def _comma_listed_offsets(self, masked: str) -> list[int]:
        """Offsets of sensitive tables that follow a comma in a FROM list."""
        depths = paren_depths(masked)
        offsets: list[int] = []
        for from_kw in self._FROM.finditer(masked):
            depth = depths[from_kw.start()]
            end = next(
                (i for i in range(from_kw.end(), len(masked)) if depths[i] < depth), len(masked)
            )
            clause_end = next(
                (
                    m.start()
                    for m in self._FROM_CLAUSE_END.finditer(masked, from_kw.end(), end)
                    if depths[m.start()] == depth
                ),
                end,
            )
            for i in range(from_kw.end(), clause_end):
                if masked[i] == "," and depths[i] == depth:
                    table = self._listed_table.match(masked, i + 1)
                    if table:
                        offsets.append(table.start(1))
        return offsets

    def apply(self, ctx: SafetyContext) -> None:
        masked = ctx.masked
        offsets = [
            self._table_start.match(masked, m.start()).end()
            for m in self._pattern.finditer(masked)
        ]
        offsets = sorted(set(offsets + self._comma_listed_offsets(masked)))
        if not offsets:
            return
        sql = ctx.sql
        for offset in reversed(offsets):
            sql = f"{sql[:offset]}{self._schema}.{sql[offset:]}"
        ctx.sql = sql
        ctx.warnings.append(f"Applied schema prefixing ({self._schema}.) to table names")


class ColumnCountRule(SafetyRule):
    name = "column_count"

    def __init__(self, max_columns: int = DEFAULT_MAX_COLUMNS):
        self._max_columns = max_columns

    def apply(self, ctx: SafetyContext) -> None:
        masked = ctx.masked
        span = top_level_select_list(masked)
        if span is None:
            return
        columns = len(split_top_level(masked[span[0]:span[1]]))
        if columns > self._max_columns:
            ctx.warnings.append(f"Large number of columns ({columns}) may impact performance")


def default_rules(
    *,
    row_cap: int = DEFAULT_ROW_CAP,
    schema: str = DEFAULT_SCHEMA,
    max_columns: int = DEFAULT_MAX_COLUMNS,
) -> list[SafetyRule]:
    return [
        StatementTypeRule(),
        DangerousKeywordRule(),
        RowCapRule(row_cap),
        SchemaPrefixRule(schema),
        ColumnCountRule(max_columns),
    ]


class SqlSafetyEnforcer:
    """Runs the rule chain; never raises for bad SQL, returns a verdict instead."""

    def __init__(self, rules: list[SafetyRule] | None = None):
        self._rules = rules if rules is not None else default_rules()

    @property
    def rule_names(self) -> list[str]:
        return [rule.name for rule in self._rules]

    def validate(self, sql: str) -> SqlValidationResult:
        ctx = SafetyContext(sql=sql or "")
        for rule in self._rules:
            rule.apply(ctx)
            if ctx.halted:
                logger.warning("SQL rejected by %s rule", rule.name)
                return SqlValidationResult(is_valid=False, modified_sql=None, warnings=ctx.warnings)

        if not ctx.is_valid:
            logger.warning("SQL failed safety validation: %s", "; ".join(ctx.warnings))
        elif ctx.warnings:
            logger.debug("SQL safety rewrites: %s", "; ".join(ctx.warnings))
        return SqlValidationResult(is_valid=ctx.is_valid, modified_sql=ctx.sql, warnings=ctx.warnings)


_default_enforcer = SqlSafetyEnforcer()


def validate_and_enforce_sql_safety(sql: str) -> SqlValidationResult:
    """Apply the default rule chain (TOP 1000, ``rpt.`` schema, 20-column advisory)."""
    return _default_enforcer.validate(sql)


# ── Enrichment fields ────────────────────────────────────────────────

@dataclass(frozen=True)
class EnrichmentField:
    table: str
    column: str
    alias: str


@dataclass(frozen=True)
class EnrichmentEntity:
    join: str
    table_alias: str
    fields: dict[str, EnrichmentField]


def _entity(table: str, table_alias: str, fk: str, entity: str, columns: list[str]) -> EnrichmentEntity:
    return EnrichmentEntity(
        join=f"INNER JOIN {table} AS {table_alias} ON base.{fk} = {table_alias}.id",
        table_alias=table_alias,
        fields={c: EnrichmentField(table, c, f"{entity}_{c}") for c in columns},
    )


ENRICHMENT_WHITELIST: dict[str, EnrichmentEntity] = {
    "patient": _entity("rpt.Patient", "P", "patientFk", "patient", ["firstName", "lastName", "dateOfBirth"]),
    "wound": _entity("rpt.Wound", "W", "woundFk", "wound", ["anatomyLabel", "label", "description"]),
}


def _split_field_token(token: str) -> tuple[str, str] | None:
    if not isinstance(token, str) or token.count(".") != 1:
        return None
    entity, _, name = token.strip().partition(".")
    if not entity or not name:
        return None
    return entity, name


def validate_desired_fields(desired_fields: list[str] | None) -> DesiredFieldResolution:
    """Resolve ``entity.field`` tokens against the whitelist.

    One JOIN line per accepted entity and one select column per accepted
    field, both in first-seen order.
    """
    resolution = DesiredFieldResolution()
    if not desired_fields:
        return resolution

    joins: dict[str, str] = {}
    applied: set[tuple[str, str]] = set()
    for token in desired_fields:
        parts = _split_field_token(token)
        entity = ENRICHMENT_WHITELIST.get(parts[0]) if parts else None
        definition = entity.fields.get(parts[1]) if entity else None
        if definition is None:
            resolution.rejected_fields.append(token)
            continue
        if parts in applied:
            continue
        applied.add(parts)
        resolution.fields_applied.append(token)
        resolution.select_columns.append(f"{entity.table_alias}.{definition.column} AS {definition.alias}")
        joins.setdefault(parts[0], entity.join)

    resolution.join_summary = "\n".join(joins.values())
    if resolution.rejected_fields:
        logger.info("Rejected enrichment fields: %s", resolution.rejected_fields)
    return resolution


_ALIAS = re.compile(r"\bAS\s+([A-Za-z_][A-Za-z0-9_]*)\b", re.IGNORECASE)


def validate_enrichment_fields(sql: str, requested_fields: list[str] | None) -> EnrichmentValidationResult:
    """Flag underscore aliases in ``sql`` that were not explicitly requested."""
    if not requested_fields:
        return EnrichmentValidationResult(is_valid=True)

    expected = set()
    for token in requested_fields:
        parts = _split_field_token(token)
        if parts:
            expected.add(f"{parts[0]}_{parts[1]}")

    extra: list[str] = []
    for match in _ALIAS.finditer(mask_sql(sql or "")):
        alias = match.group(1)
        if "_" in alias and alias not in expected and alias not in extra:
            extra.append(alias)

    result = EnrichmentValidationResult(is_valid=not extra, extra_fields=extra)
    if extra:
        result.warnings.append(
            f"Extra enrichment fields detected: {', '.join(extra)}. "
            "Only requested fields should be included."
        )
    return result
