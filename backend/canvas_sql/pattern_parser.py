"""
Fallback SQL parser based on regular expressions.

Used when the grammar parser rejects the input. Recognizes only the shape
the canvas itself generates for tables, joins and selected columns:

    SELECT a.col [AS x], ... FROM cat.schema.table [AS] a
    [INNER|LEFT|RIGHT|FULL [OUTER]] JOIN cat.schema.table [AS] b ON a.col = b.col ...

Anything it cannot account for fails the parse instead of guessing.
"""

import logging
import re
import time
from typing import List, Optional, Tuple

from .builder import IdAllocator, build_query_model
from .errors import UnsupportedSQLError
from .model_types import (
    ParsedJoinRef,
    ParsedSelectRef,
    ParsedSQL,
    ParsedTableRef,
    ParseResult,
)

logger = logging.getLogger(__name__)

RESERVED_WORDS = (
    'SELECT', 'FROM', 'WHERE', 'GROUP', 'ORDER', 'LIMIT', 'HAVING', 'JOIN', 'ON',
    'INNER', 'LEFT', 'RIGHT', 'FULL', 'OUTER', 'CROSS', 'AS', 'UNION', 'INTERSECT', 'EXCEPT',
)

IDENT = r'[A-Za-z_][A-Za-z0-9_]*'
ALIAS = r'(?!(?:' + '|'.join(RESERVED_WORDS) + r')\b)' + IDENT
QUALIFIED_NAME = rf'{IDENT}(?:\.{IDENT}){{0,2}}'

SELECT_RE = re.compile(r'^SELECT\s+(?P<columns>.+?)\s+FROM\s+(?P<rest>.+)$', re.IGNORECASE | re.DOTALL)
FROM_TABLE_RE = re.compile(
    rf'^(?P<table>{QUALIFIED_NAME})(?:\s+(?:AS\s+)?(?P<alias>{ALIAS}))?(?=\s|$)',
    re.IGNORECASE,
)
JOIN_RE = re.compile(
    rf'^\s*(?:(?P<join_type>INNER|LEFT|RIGHT|FULL)\s+(?:OUTER\s+)?)?JOIN\s+'
    rf'(?P<table>{QUALIFIED_NAME})(?:\s+(?:AS\s+)?(?P<alias>{ALIAS}))?\s+'
    rf'ON\s+(?P<left_alias>{IDENT})\.(?P<left_column>{IDENT})\s*=\s*'
    rf'(?P<right_alias>{IDENT})\.(?P<right_column>{IDENT})(?=\s|$)',
    re.IGNORECASE,
)
SELECT_ITEM_RE = re.compile(
    rf'^(?P<alias>{IDENT})\.(?P<column>{IDENT}|\*)(?:\s+(?:AS\s+)?(?P<as>{ALIAS}))?$',
    re.IGNORECASE,
)
TRAILING_CLAUSE_RE = re.compile(r'^(WHERE|GROUP\s+BY|ORDER\s+BY|HAVING|LIMIT)\b', re.IGNORECASE)
SET_OPERATION_RE = re.compile(r'\b(UNION|INTERSECT|EXCEPT)\b', re.IGNORECASE)

LINE_COMMENT_RE = re.compile(r'--[^\n]*')
BLOCK_COMMENT_RE = re.compile(r'/\*.*?\*/', re.DOTALL)
STRING_LITERAL_RE = re.compile(r"'(?:[^']|'')*'")


def normalize_sql(sql: str) -> str:
    """Strip comments, collapse whitespace and drop a trailing semicolon."""
    sql = BLOCK_COMMENT_RE.sub(' ', sql)
    sql = LINE_COMMENT_RE.sub(' ', sql)
    sql = ' '.join(sql.split())
    return sql.rstrip(';').strip()


def split_table_name(qualified: str) -> Tuple[str, str, str]:
    """'cat.schema.table' -> (catalog, schema, name); missing parts are empty."""
    parts = qualified.split('.')
    while len(parts) < 3:
        parts.insert(0, '')
    return parts[0], parts[1], parts[2]


def _table_ref(match: re.Match) -> ParsedTableRef:
    catalog, schema, name = split_table_name(match.group('table'))
    return ParsedTableRef(catalog=catalog, schema=schema, name=name, alias=match.group('alias') or name)


class PatternParser:
    """Fallback parse strategy: a single regular-expression shape."""

    name = "pattern"

    def __init__(self, debug_mode: bool = False):
        self.debug_mode = debug_mode

    def parse(self, sql: str) -> ParseResult:
        started = time.perf_counter()
        try:
            result = self._parse(sql)
        except UnsupportedSQLError as e:
            result = ParseResult(success=False, errors=[e.describe()])
        except Exception as e:
            logger.warning(f"[PatternParser] Unexpected error while parsing: {e}")
            result = ParseResult(success=False, errors=[f"Pattern parsing failed: {e}"])

        result.strategy = self.name
        if self.debug_mode:
            result.debug_info = {
                "duration_ms": round((time.perf_counter() - started) * 1000, 3),
                "tables": len(result.model.tables),
                "joins": len(result.model.joins),
            }
        return result

    def _parse(self, sql: str) -> ParseResult:
        text = normalize_sql(sql or '')
        if not text:
            return ParseResult(success=False, errors=["SQL text is empty"])

        if re.match(r'^WITH\b', text, re.IGNORECASE):
            raise UnsupportedSQLError("WITH clauses (CTEs) are not supported", ["CTE"],
                                      hint="inline the CTE as a joined table")
        if SET_OPERATION_RE.search(STRING_LITERAL_RE.sub("''", text)):
            raise UnsupportedSQLError("Set operations (UNION/INTERSECT/EXCEPT) are not supported", ["SET_OPERATION"],
                                      hint="build each SELECT on its own canvas")

        match = SELECT_RE.match(text)
        if not match:
            return ParseResult(success=False, errors=["SQL does not match SELECT ... FROM ..."])

        warnings: List[str] = []
        selects = parse_select_list(match.group('columns'), warnings)
        tables, joins, rest = parse_from_clause(match.group('rest'))

        if rest:
            if not TRAILING_CLAUSE_RE.match(rest):
                return ParseResult(success=False, errors=[f"Unrecognized SQL after FROM: {_excerpt(rest)}"])
            warnings.append(f"Ignored trailing clause: {_excerpt(rest)}")

        aliases = [t.alias for t in tables]
        duplicates = sorted({a for a in aliases if aliases.count(a) > 1})
        if duplicates:
            return ParseResult(success=False, errors=[f"Duplicate table alias '{duplicates[0]}'"])

        model, build_warnings = build_query_model(
            ParsedSQL(tables=tables, joins=joins, selects=selects), IdAllocator()
        )
        warnings.extend(build_warnings)
        return ParseResult(success=True, model=model, warnings=warnings)


def parse_select_list(columns: str, warnings: List[str]) -> List[ParsedSelectRef]:
    """Qualified `alias.col [AS name]` items; everything else is skipped with a warning."""
    selects = []
    for item in columns.split(','):
        item = item.strip()
        match = SELECT_ITEM_RE.match(item)
        if not match:
            warnings.append(f"SELECT item {item} skipped: only qualified columns (alias.column) are recognized")
            continue
        selects.append(ParsedSelectRef(alias=match.group('alias'), column=match.group('column'), as_=match.group('as')))
    return selects


def parse_from_clause(rest: str) -> Tuple[List[ParsedTableRef], List[ParsedJoinRef], str]:
    """First table, then JOINs, returning whatever text is left over."""
    match = FROM_TABLE_RE.match(rest)
    if not match:
        raise UnsupportedSQLError(f"Could not recognize FROM table in: {_excerpt(rest)}", ["COMPLEX_FROM"])

    tables = [_table_ref(match)]
    joins = []
    rest = rest[match.end():]

    while True:
        match = JOIN_RE.match(rest)
        if not match:
            break
        ref = _table_ref(match)
        tables.append(ref)
        joins.append(ParsedJoinRef(
            join_type=(match.group('join_type') or 'INNER').upper(),
            left_alias=match.group('left_alias'),
            left_column=match.group('left_column'),
            right_alias=match.group('right_alias'),
            right_column=match.group('right_column'),
            joined_alias=ref.alias,
        ))
        rest = rest[match.end():]

    return tables, joins, rest.strip()


def _excerpt(text: str, limit: int = 60) -> str:
    return text if len(text) <= limit else text[:limit] + '...'
