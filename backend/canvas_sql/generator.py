"""
SQL Generator - Converts a Query Model back to SQL.

Three strategies share the same rendering rules:

- SQLGenerator builds a SelectStatement clause tree, renders it and
  checks the result parses.
- OrchestratedSQLGenerator adds model validation and reports problems as
  warnings instead of failing.
- LegacySQLGenerator assembles the string directly, with no clause tree.

Output is deterministic: every collection is rendered in insertion order.
"""

import logging
import time
import sqlglot
from pydantic import BaseModel
from sqlglot.errors import SqlglotError
from typing import List, Optional, Set, Tuple

from .model_types import (
    Aggregation,
    Filter,
    GenerationResult,
    Join,
    QueryModel,
    SelectedColumn,
    TableReference,
)
from .validator import join_skip_reason, unknown_alias_findings, validate_query_model

logger = logging.getLogger(__name__)

GENERATION_FAILED_SQL = "-- SQL generation failed: All methods exhausted"

COMPARISON_OPERATORS = {
    'equals': '=',
    'not_equals': '!=',
    'greater_than': '>',
    'less_than': '<',
}

FLIPPED_JOIN_TYPES = {'LEFT': 'RIGHT', 'RIGHT': 'LEFT'}


# Rendering helpers shared by every strategy

def format_value(value) -> str:
    """Single-quoted SQL literal; embedded single quotes are doubled."""
    escaped = str(value).replace("'", "''")
    return f"'{escaped}'"


def format_table_reference(table: TableReference) -> str:
    """catalog.schema.name AS alias (empty name parts omitted)."""
    return f"{table.qualified_name} AS {table.id}"


def render_selected_column(column: SelectedColumn) -> str:
    result = f"{column.table}.{column.column}"
    if column.alias:
        result += f" AS {column.alias}"
    return result


def render_aggregation(aggregation: Aggregation) -> str:
    if aggregation.column == '*':
        col_ref = '*'
    else:
        col_ref = f"{aggregation.table}.{aggregation.column}"

    if aggregation.function == 'COUNT_DISTINCT':
        result = f"COUNT(DISTINCT {col_ref})"
    else:
        result = f"{aggregation.function}({col_ref})"

    if aggregation.alias:
        result += f" AS {aggregation.alias}"
    return result


def render_filter(filter_: Filter) -> str:
    """Render one predicate of the WHERE clause."""
    column = f"{filter_.table}.{filter_.column}"
    operator = filter_.operator

    if operator == 'is_null':
        return f"{column} IS NULL"
    if operator == 'is_not_null':
        return f"{column} IS NOT NULL"
    if operator == 'like':
        return f"{column} LIKE {format_value(f'%{filter_.value}%')}"
    if operator == 'in':
        values = filter_.value if isinstance(filter_.value, list) else [filter_.value]
        return f"{column} IN ({', '.join(format_value(v) for v in values)})"
    return f"{column} {COMPARISON_OPERATORS[operator]} {format_value(filter_.value)}"


def orient_join(join: Join, rendered: Set[str]) -> Tuple[str, str]:
    """
    Alias a JOIN line brings in, with the join type as read from the query so far.

    Normally that is the join target. A join whose target is already in the
    query (the FROM table, say) but whose source is not brings in its source
    instead, with LEFT and RIGHT swapped so the same rows are kept.
    """
    if join.target_table in rendered and join.source_table not in rendered:
        return join.source_table, FLIPPED_JOIN_TYPES.get(join.join_type, join.join_type)
    return join.target_table, join.join_type


def render_join_keyword(join_type: str) -> str:
    return f"{join_type} JOIN"


def render_select_list(model: QueryModel) -> str:
    items = [render_selected_column(c) for c in model.selected_columns]
    items.extend(render_aggregation(a) for a in model.aggregations)
    if not items:
        return f"{model.tables[0].id}.*"
    return ", ".join(items)


def render_order_by(model: QueryModel) -> List[str]:
    return [f"{item.column} {item.direction}" for item in model.order_by_columns]


# Clause tree

class JoinClause(BaseModel):
    """One JOIN line, or the comment emitted in its place when it is skipped."""
    join_type: str = 'INNER'
    table: str = ''
    condition: str = ''
    skipped: Optional[str] = None

    def render(self) -> str:
        if self.skipped:
            return self.skipped
        return f"{self.join_type} JOIN {self.table}\n  ON {self.condition}"


class SelectStatement(BaseModel):
    """SELECT statement broken into clauses, rendered one clause per line."""
    select: str
    from_table: str
    joins: List[JoinClause] = []
    where: List[str] = []
    group_by: List[str] = []
    order_by: List[str] = []
    limit: Optional[int] = None

    def render(self) -> str:
        parts = [f"SELECT {self.select}", f"FROM {self.from_table}"]
        parts.extend(join.render() for join in self.joins)
        if self.where:
            parts.append("WHERE " + " AND ".join(self.where))
        if self.group_by:
            parts.append("GROUP BY " + ", ".join(self.group_by))
        if self.order_by:
            parts.append("ORDER BY " + ", ".join(self.order_by))
        if self.limit is not None and self.limit > 0:
            parts.append(f"LIMIT {self.limit}")
        return "\n".join(parts)


def build_join_clauses(model: QueryModel) -> List[JoinClause]:
    clauses = []
    rendered = {model.tables[0].id}
    for join in model.joins:
        reason = join_skip_reason(model, join)
        if reason:
            clauses.append(JoinClause(skipped=reason))
            continue
        alias, join_type = orient_join(join, rendered)
        rendered.add(alias)
        clauses.append(JoinClause(
            join_type=join_type,
            table=format_table_reference(model.get_table(alias)),
            condition=f"{join.source_table}.{join.source_column} = {join.target_table}.{join.target_column}",
        ))
    return clauses


def build_statement(model: QueryModel) -> Tuple[Optional[SelectStatement], List[str]]:
    """Clause tree for a model (None for an empty model) plus warnings for skipped joins and unknown aliases."""
    if model.is_empty():
        return None, []

    joins = build_join_clauses(model)
    warnings = [j.skipped[3:] for j in joins if j.skipped]
    warnings.extend(unknown_alias_findings(model))

    statement = SelectStatement(
        select=render_select_list(model),
        from_table=format_table_reference(model.tables[0]),
        joins=joins,
        where=[render_filter(f) for f in model.filters],
        group_by=list(model.group_by_columns),
        order_by=render_order_by(model),
        limit=model.limit,
    )
    return statement, warnings


def check_syntax(sql: str, dialect: str) -> Optional[str]:
    """Error message if sqlglot cannot parse the generated SQL."""
    try:
        sqlglot.parse_one(sql, read=dialect)
    except SqlglotError as e:
        lines = str(e).strip().splitlines()
        return f"Generated SQL failed syntax check: {lines[0] if lines else type(e).__name__}"
    return None


# Strategies

class BaseSQLGenerator:
    """Timing, debug info and exception capture around one generation strategy."""

    name = "base"

    def __init__(self, dialect: str = "databricks", debug_mode: bool = False):
        self.dialect = dialect
        self.debug_mode = debug_mode

    def generate(self, model: QueryModel) -> GenerationResult:
        started = time.perf_counter()
        try:
            result = self._generate(model)
        except Exception as e:
            logger.warning(f"[{type(self).__name__}] Generation failed: {e}")
            result = GenerationResult(success=False, errors=[f"{self.name} generation failed: {e}"])

        result.strategy = self.name
        if self.debug_mode:
            result.debug_info = {
                "duration_ms": round((time.perf_counter() - started) * 1000, 3),
                "tables": len(model.tables),
                "joins": len(model.joins),
                "filters": len(model.filters),
            }
        return result

    def _generate(self, model: QueryModel) -> GenerationResult:
        raise NotImplementedError


class SQLGenerator(BaseSQLGenerator):
    """Primary strategy: clause tree plus a strict syntax check."""

    name = "ast"

    def _generate(self, model: QueryModel) -> GenerationResult:
        statement, warnings = build_statement(model)
        if statement is None:
            return GenerationResult(success=True, sql="")

        sql = statement.render()
        error = check_syntax(sql, self.dialect)
        if error:
            return GenerationResult(success=False, sql=sql, errors=[error], warnings=warnings)
        return GenerationResult(success=True, sql=sql, warnings=warnings)


class OrchestratedSQLGenerator(BaseSQLGenerator):
    """Secondary strategy: validates the model first and never fails on findings."""

    name = "orchestrated"

    def _generate(self, model: QueryModel) -> GenerationResult:
        warnings = validate_query_model(model)
        statement, skip_warnings = build_statement(model)
        if statement is None:
            return GenerationResult(success=True, sql="", warnings=warnings)

        for warning in skip_warnings:
            if warning not in warnings:
                warnings.append(warning)

        sql = statement.render()
        error = check_syntax(sql, self.dialect)
        if error:
            warnings.append(error)
        return GenerationResult(success=True, sql=sql, warnings=warnings)


def generate_sql_legacy(model: QueryModel) -> str:
    """Plain string assembly of the same SQL the clause tree renders."""
    if not model.tables:
        return ""

    sql = "SELECT " + render_select_list(model)
    sql += "\nFROM " + format_table_reference(model.tables[0])

    rendered = {model.tables[0].id}
    for join in model.joins:
        reason = join_skip_reason(model, join)
        if reason:
            sql += "\n" + reason
            continue
        alias, join_type = orient_join(join, rendered)
        rendered.add(alias)
        sql += f"\n{render_join_keyword(join_type)} {format_table_reference(model.get_table(alias))}"
        sql += f"\n  ON {join.source_table}.{join.source_column} = {join.target_table}.{join.target_column}"

    if model.filters:
        sql += "\nWHERE " + " AND ".join(render_filter(f) for f in model.filters)
    if model.group_by_columns:
        sql += "\nGROUP BY " + ", ".join(model.group_by_columns)
    if model.order_by_columns:
        sql += "\nORDER BY " + ", ".join(render_order_by(model))
    if model.limit is not None and model.limit > 0:
        sql += f"\nLIMIT {model.limit}"

    return sql


class LegacySQLGenerator(BaseSQLGenerator):
    """Last-resort strategy with no clause tree and no syntax check."""

    name = "legacy"

    def _generate(self, model: QueryModel) -> GenerationResult:
        sql = generate_sql_legacy(model)
        if not sql:
            return GenerationResult(success=True, sql=sql)
        warnings = [reason[3:] for reason in (join_skip_reason(model, j) for j in model.joins) if reason]
        warnings.extend(unknown_alias_findings(model))
        return GenerationResult(success=True, sql=sql, warnings=warnings)
