"""Lexical helpers shared by the SQL safety enforcer, structure validator and composer.

``mask_sql`` blanks out comments and the contents of string literals while
keeping every character offset, so regex matches found on the masked text
can be spliced straight back into the original statement.
"""

import re
from collections.abc import Iterator

import sqlparse
from sqlparse import tokens as T


def mask_sql(sql: str) -> str:
    """Same-length copy of ``sql`` with comments and literal contents blanked."""
    parts: list[str] = []
    for statement in sqlparse.parse(sql):
        for token in statement.flatten():
            value = token.value
            if token.ttype in T.Comment:
                parts.append(re.sub(r"[^\n]", " ", value))
            elif token.ttype in T.String.Single and len(value) >= 2:
                parts.append(value[0] + " " * (len(value) - 2) + value[-1])
            else:
                parts.append(value)
    masked = "".join(parts)
    # sqlparse is lossless; guard anyway so offsets never drift.
    return masked if len(masked) == len(sql) else sql


def paren_depths(text: str) -> list[int]:
    """Parenthesis nesting depth at every offset of ``text``."""
    depths: list[int] = []
    depth = 0
    for ch in text:
        if ch == "(":
            depths.append(depth)
            depth += 1
        elif ch == ")":
            depth = max(depth - 1, 0)
            depths.append(depth)
        else:
            depths.append(depth)
    return depths


def top_level_matches(pattern: re.Pattern, masked: str, start: int = 0) -> Iterator[re.Match]:
    """Matches of ``pattern`` that begin outside any parentheses."""
    depths = paren_depths(masked)
    for match in pattern.finditer(masked, start):
        if depths[match.start()] == 0:
            yield match


def split_top_level(text: str, separator: str = ",") -> list[str]:
    """Split on ``separator`` only where it is not nested in parentheses."""
    parts: list[str] = []
    depth = 0
    current: list[str] = []
    for ch in text:
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth = max(depth - 1, 0)
        if ch == separator and depth == 0:
            parts.append("".join(current))
            current = []
        else:
            current.append(ch)
    parts.append("".join(current))
    return [p.strip() for p in parts if p.strip()]


_SELECT = re.compile(r"\bSELECT\b", re.IGNORECASE)
_FROM = re.compile(r"\bFROM\b", re.IGNORECASE)
_SELECT_MODIFIERS = re.compile(
    r"\s*(?:DISTINCT\b|ALL\b)?\s*(?:TOP\s*(?:\(\s*\d+\s*\)|\d+)(?:\s+PERCENT)?(?:\s+WITH\s+TIES)?)?",
    re.IGNORECASE,
)


def top_level_select(masked: str) -> re.Match | None:
    """The outermost SELECT keyword (the main query after any CTEs)."""
    return next(top_level_matches(_SELECT, masked), None)


def select_modifiers(masked: str, select: re.Match) -> str:
    """The DISTINCT/ALL/TOP text directly after ``select`` (may be blank)."""
    return _SELECT_MODIFIERS.match(masked, select.end()).group()


def top_level_select_list(masked: str) -> tuple[int, int] | None:
    """(start, end) offsets of the outer SELECT list, after DISTINCT/TOP."""
    select = top_level_select(masked)
    if select is None:
        return None
    start = select.end() + len(select_modifiers(masked, select))
    end = next((m.start() for m in top_level_matches(_FROM, masked, start)), len(masked))
    return start, end
