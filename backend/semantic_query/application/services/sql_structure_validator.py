"""GROUP BY / ORDER BY / aggregate correctness checks for generated SQL.

Only the outer statement (after any CTEs) is analysed. The checks are
heuristic: they target the mistakes LLM-generated T-SQL makes most often
(ordering a grouped query by an ungrouped column, nesting aggregates) and
tolerate SQL Server syntax such as TOP, bracketed identifiers and CTEs.
"""

import logging
import re
from dataclasses import dataclass, field

from semantic_query.application.services.sql_text import (
    mask_sql,
    paren_depths,
    split_top_level,
    top_level_select,
    top_level_select_list,
)
from semantic_query.domain.entities import (
    StructureError,
    StructureErrorType,
    StructureValidationResult,
)

logger = logging.getLogger(__name__)

AGGREGATE_FUNCTIONS = (
    "COUNT", "SUM", "AVG", "MIN", "MAX", "STRING_AGG",
    "PERCENTILE_CONT", "PERCENTILE_DISC", "VAR", "VARP", "STDEV", "STDDEV",
)

_KEYWORDS = frozenset({
    "select", "from", "where", "group", "by", "having", "order", "with", "case",
    "when", "then", "else", "end", "join", "inner", "left", "right", "full",
    "outer", "on", "and", "or", "not", "asc", "desc", "nulls", "first", "last",
    "distinct", "top", "limit", "offset", "fetch", "rows", "row", "partition",
    "over", "into", "union", "all", "as", "cast", "convert", "like", "in",
    "exists", "between", "is", "null", "coalesce", "datediff", "dateadd", "year",
    *(fn.lower() for fn in AGGREGATE_FUNCTIONS),
})

_AGGREGATE_CALL = re.compile(
    r"\b(" + "|".join(AGGREGATE_FUNCTIONS) + r")\s*\(", re.IGNORECASE
)
_IDENTIFIER = re.compile(r"\b[a-zA-Z_]\w*\b(?:\s*\.\s*\b[a-zA-Z_]\w*\b)?")
_SIMPLE_IDENTIFIER = re.compile(r"^[a-zA-Z_]\w*(\.[a-zA-Z_]\w*)?$")
_ALIAS_SUFFIX = re.compile(r"\s+(?:AS\s+)?([a-zA-Z_]\w*|\[[^\]]+\]|\"[^\"]+\")\s*$", re.IGNORECASE)
_DIRECTION_SUFFIX = re.compile(r"\s+(ASC|DESC)\s*$", re.IGNORECASE)
_GROUP_BY = re.compile(r"\bGROUP\s+BY\b", re.IGNORECASE)
_HAVING = re.compile(r"\bHAVING\b", re.IGNORECASE)
_ORDER_BY = re.compile(r"\bORDER\s+BY\b", re.IGNORECASE)
_ORDER_TAIL = re.compile(r"\b(?:OFFSET|FETCH|FOR|OPTION)\b", re.IGNORECASE)


def _strip_quotes(value: str) -> str:
    return re.sub(r"[\[\]`\"]", "", value)


def _normalize_identifier(identifier: str) -> str:
    return re.sub(r"\s+", "", _strip_quotes(identifier)).lower()


def _column_only(identifier: str) -> str:
    return _strip_quotes(identifier).split(".")[-1].strip().lower()


def _normalize_expression(expression: str) -> str:
    normalized = re.sub(r"\s+", " ", _strip_quotes(expression)).strip()
    while normalized.startswith("(") and normalized.endswith(")"):
        normalized = normalized[1:-1].strip()
    return normalized.lower()


def _is_simple(expression: str) -> bool:
    return bool(_SIMPLE_IDENTIFIER.match(_strip_quotes(expression).strip()))


def _identifiers(expression: str) -> list[str]:
    return [
        m.group(0).strip()
        for m in _IDENTIFIER.finditer(_strip_quotes(expression))
        if m.group(0).strip().lower() not in _KEYWORDS
    ]


def _suggestion(expression: str) -> str:
    return (
        f'Either add "{expression}" to the GROUP BY clause or wrap it with an aggregate '
        f'such as MIN("{expression}") based on how you want the rows sorted.'
    )


@dataclass
class _SelectItem:
    raw: str
    expression: str
    alias: str | None
    is_aggregate: bool


@dataclass
class _ParsedQuery:
    select_items: list[_SelectItem] = field(default_factory=list)
    group_by: list[str] = field(default_factory=list)
    order_by: list[str] = field(default_factory=list)


class SqlStructureValidator:
    """Flags nested aggregates and ORDER BY items a grouped query cannot sort by."""

    def validate(self, sql: str | None) -> StructureValidationResult:
        result = StructureValidationResult()
        if not sql or not sql.strip():
            return result

        masked = mask_sql(sql)
        select = top_level_select(masked)
        if select is None:
            return result
        main = masked[select.start():]

        parsed = self._parse(main)
        result.grouped_expressions = list(parsed.group_by)
        result.order_by_expressions = list(parsed.order_by)

        for message in self._nested_aggregates(main):
            result.errors.append(StructureError(
                type=StructureErrorType.AGGREGATE_VIOLATION,
                message=message,
                suggestion=(
                    "Avoid nesting aggregate functions. Replace inner aggregate with raw "
                    "columns or move logic into a subquery."
                ),
            ))
        if result.errors:
            result.is_valid = False
            return result

        if parsed.group_by:
            result.errors.extend(self._order_by_errors(parsed))
        result.is_valid = not result.errors
        if result.errors:
            logger.info("SQL structure validation found %d error(s)", len(result.errors))
        return result

    # ── Parsing ──────────────────────────────────────────────────────

    def _parse(self, main: str) -> _ParsedQuery:
        span = top_level_select_list(main)
        parsed = _ParsedQuery()
        if span is None:
            return parsed
        parsed.select_items = [self._select_item(part) for part in split_top_level(main[span[0]:span[1]])]

        depths = paren_depths(main)

        def first_top_level(pattern: re.Pattern, start: int) -> re.Match | None:
            return next((m for m in pattern.finditer(main, start) if depths[m.start()] == 0), None)

        group = first_top_level(_GROUP_BY, span[1])
        order = first_top_level(_ORDER_BY, span[1])
        if group is not None:
            having = first_top_level(_HAVING, group.end())
            end = having.start() if having else (order.start() if order else len(main))
            parsed.group_by = split_top_level(main[group.end():end])
        if order is not None:
            tail = first_top_level(_ORDER_TAIL, order.end())
            clause = main[order.end():tail.start() if tail else len(main)].strip().rstrip(";")
            parsed.order_by = split_top_level(clause)
        return parsed

    @staticmethod
    def _select_item(part: str) -> _SelectItem:
        expression, alias = part, None
        match = _ALIAS_SUFFIX.search(part)
        if match and match.start() > 0:
            candidate = part[:match.start()].strip()
            # a trailing keyword (CASE ... END) is not an alias
            if candidate and _strip_quotes(match.group(1)).lower() not in _KEYWORDS:
                expression, alias = candidate, _strip_quotes(match.group(1))
        return _SelectItem(
            raw=part,
            expression=expression,
            alias=alias,
            is_aggregate=bool(_AGGREGATE_CALL.search(expression)),
        )

    # ── Checks ───────────────────────────────────────────────────────

    @staticmethod
    def _nested_aggregates(main: str) -> list[str]:
        errors: list[str] = []
        stack: list[tuple[str, int]] = []
        depth = 0
        calls = {m.end() - 1: m.group(1).upper() for m in _AGGREGATE_CALL.finditer(main)}
        for i, ch in enumerate(main):
            if ch == "(":
                depth += 1
                name = calls.get(i)
                if name:
                    if stack:
                        errors.append(f"Nested aggregate detected: {stack[-1][0]}(... {name}(...))")
                    stack.append((name, depth))
            elif ch == ")" and depth > 0:
                if stack and stack[-1][1] == depth:
                    stack.pop()
                depth -= 1
        return errors

    def _order_by_errors(self, parsed: _ParsedQuery) -> list[StructureError]:
        grouped = {_normalize_expression(g) for g in parsed.group_by}
        simple_grouped = {_normalize_identifier(g) for g in parsed.group_by if _is_simple(g)}
        simple_grouped_columns = {_column_only(g) for g in parsed.group_by if _is_simple(g)}

        def is_grouped(expression: str) -> bool:
            normalized = _normalize_expression(expression)
            if normalized in grouped or normalized in simple_grouped:
                return True
            return _is_simple(expression) and "." in expression and _column_only(expression) in simple_grouped_columns

        aliases = {item.alias.lower(): item for item in parsed.select_items if item.alias}
        errors: list[StructureError] = []
        for raw in parsed.order_by:
            expression = _DIRECTION_SUFFIX.sub("", raw).strip()
            if expression.isdigit():
                continue

            item = aliases.get(_normalize_identifier(expression))
            if item is not None:
                if item.is_aggregate or is_grouped(item.expression):
                    continue
                errors.append(StructureError(
                    type=StructureErrorType.ORDER_BY_VIOLATION,
                    expression=raw,
                    message=(
                        f'ORDER BY "{item.alias}" references a column/expression that is '
                        "not part of the GROUP BY clause."
                    ),
                    suggestion=_suggestion(item.alias),
                ))
                continue

            if _AGGREGATE_CALL.search(expression):
                continue

            if _is_simple(expression):
                if is_grouped(expression):
                    continue
                errors.append(StructureError(
                    type=StructureErrorType.GROUP_BY_VIOLATION,
                    expression=raw,
                    message=f'ORDER BY "{expression}" is not grouped or aggregated.',
                    suggestion=_suggestion(expression),
                ))
                continue

            if is_grouped(expression):
                continue
            missing = [
                ident for ident in _identifiers(expression)
                if _column_only(ident) not in simple_grouped_columns
                and _normalize_identifier(ident) not in simple_grouped
            ]
            if missing:
                errors.append(StructureError(
                    type=StructureErrorType.GROUP_BY_VIOLATION,
                    expression=raw,
                    message=f"ORDER BY expression references ungrouped column(s): {', '.join(missing)}",
                    suggestion=_suggestion(expression),
                ))
        return errors
