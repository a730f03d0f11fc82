"""SQL to Query Model parser using sqlglot."""

import logging
import time
import sqlglot
from sqlglot import exp
from sqlglot.errors import SqlglotError
from typing import List, Optional, Tuple

from .builder import IdAllocator, build_query_model
from .errors import UnsupportedSQLError
from .model_types import (
    Aggregation,
    Filter,
    OrderByItem,
    ParsedJoinRef,
    ParsedSelectRef,
    ParsedSQL,
    ParsedTableRef,
    ParseResult,
    QueryModel,
)
from .validator import describe_unsupported, statement_error, unsupported_constructs

logger = logging.getLogger(__name__)

AGGREGATE_TYPES = (exp.Count, exp.Sum, exp.Avg, exp.Min, exp.Max)

COMPARISON_OPERATORS = {
    exp.EQ: 'equals',
    exp.NEQ: 'not_equals',
    exp.GT: 'greater_than',
    exp.LT: 'less_than',
    exp.Like: 'like',
}

NEGATED_KEYWORDS = {
    exp.Like: 'LIKE',
    exp.ILike: 'ILIKE',
    exp.In: 'IN',
}

JOIN_SIDES = ('LEFT', 'RIGHT', 'FULL')
# LEFT SEMI / LEFT ANTI carry a side too, so the kind is checked first
JOIN_KINDS = ('', 'INNER', 'OUTER')


class SkippedConstruct(Exception):
    """A single SELECT item, predicate or clause that is dropped with a warning."""
    pass


class GrammarParser:
    """
    Primary parse strategy: a full SQL grammar (sqlglot) restricted to the
    subset the canvas can represent.

    Anything outside the subset either fails the parse (non-SELECT
    statements, CTEs, set operations) or is skipped item by item with a
    warning, so a successful result never describes a different query
    than the one written.
    """

    name = "grammar"

    def __init__(self, dialect: str = "databricks", debug_mode: bool = False):
        self.dialect = dialect
        self.debug_mode = debug_mode

    def parse(self, sql: str) -> ParseResult:
        started = time.perf_counter()
        try:
            result = self._parse(sql)
        except UnsupportedSQLError as e:
            result = ParseResult(success=False, errors=[e.describe()])
        except Exception as e:
            logger.warning(f"[GrammarParser] Unexpected error while parsing: {e}")
            result = ParseResult(success=False, errors=[f"Parsing failed: {e}"])

        result.strategy = self.name
        if self.debug_mode:
            result.debug_info = {
                "duration_ms": round((time.perf_counter() - started) * 1000, 3),
                "dialect": self.dialect,
                "tables": len(result.model.tables),
                "joins": len(result.model.joins),
                "warnings": len(result.warnings),
            }
        return result

    def _parse(self, sql: str) -> ParseResult:
        if not sql or not sql.strip():
            return ParseResult(success=False, errors=["SQL text is empty"])

        try:
            statements = [s for s in sqlglot.parse(sql, read=self.dialect) if s is not None]
        except SqlglotError as e:
            return ParseResult(success=False, errors=[f"Invalid SQL syntax: {_first_line(e)}"])

        if not statements:
            return ParseResult(success=False, errors=["No SQL statement found"])
        if len(statements) > 1:
            return ParseResult(
                success=False,
                errors=[f"Expected a single statement, found {len(statements)}. Hint: keep one SELECT per canvas"],
            )

        ast = statements[0]
        error = statement_error(ast)
        if error:
            return ParseResult(success=False, errors=[error])

        return parse_select_statement(ast)


def parse_select_statement(select_node: exp.Select) -> ParseResult:
    """Extract every supported clause of a SELECT into a Query Model."""
    warnings: List[str] = []
    ids = IdAllocator()

    tables = [parse_from(select_node, warnings)]
    joins = parse_joins(select_node, tables, warnings)
    _check_unique_aliases(tables)

    selects, aggregates = parse_select(select_node, warnings)
    filters = parse_where(select_node, warnings)

    if select_node.args.get("distinct"):
        warnings.append("SELECT DISTINCT is not represented on the canvas; DISTINCT was dropped")
    if select_node.args.get("having"):
        warnings.append("HAVING is not represented on the canvas; the HAVING clause was dropped")

    group_by = parse_group_by(select_node, warnings)
    order_by = parse_order_by(select_node, warnings)
    limit = parse_limit(select_node, warnings)

    model, build_warnings = build_query_model(
        ParsedSQL(tables=tables, joins=joins, selects=selects), ids
    )
    warnings.extend(build_warnings)

    _add_aggregations(model, aggregates, ids, warnings)
    _add_filters(model, filters, ids, warnings)
    model.set_group_by(group_by)
    model.set_order_by(order_by)
    model.set_limit(limit)

    return ParseResult(success=True, model=model, warnings=warnings)


def _first_line(error: Exception) -> str:
    lines = str(error).strip().splitlines()
    return lines[0] if lines else type(error).__name__


def _check_unique_aliases(tables: List[ParsedTableRef]) -> None:
    seen = set()
    for ref in tables:
        if ref.alias in seen:
            raise UnsupportedSQLError(
                f"Duplicate table alias '{ref.alias}'",
                ["DUPLICATE_ALIAS"],
                hint="give each table a unique alias",
            )
        seen.add(ref.alias)


# FROM / JOIN

def table_ref(table_expr: exp.Table) -> ParsedTableRef:
    """Staging reference for a table; a table without an alias is aliased by its name."""
    name = table_expr.name
    if not name:
        raise UnsupportedSQLError("Table reference without a name", ["COMPLEX_FROM"])
    return ParsedTableRef(
        catalog=table_expr.catalog or '',
        schema=table_expr.db or '',
        name=name,
        alias=table_expr.alias or name,
    )


def parse_from(select_node: exp.Select, warnings: List[str]) -> ParsedTableRef:
    """Parse FROM clause into the first table reference."""
    from_clause = select_node.args.get("from") or select_node.args.get("from_")
    if not from_clause:
        raise UnsupportedSQLError("No FROM clause found", ["NO_FROM"], hint="select from a table")

    table_expr = from_clause.this
    if isinstance(table_expr, exp.Subquery):
        raise UnsupportedSQLError(
            "Subqueries in FROM are not supported", ["SUBQUERY"],
            hint="select from the underlying table and JOIN instead",
        )
    if not isinstance(table_expr, exp.Table):
        raise UnsupportedSQLError("Complex FROM clause not supported", ["COMPLEX_FROM"])

    # Older sqlglot releases keep comma-separated tables on the FROM node
    for extra in from_clause.expressions or []:
        warnings.append(
            f"Comma join with {extra.sql()} is not supported; "
            f"use JOIN ... ON. Table skipped"
        )

    return table_ref(table_expr)


def join_type_of(join_node: exp.Join) -> Optional[str]:
    """INNER/LEFT/RIGHT/FULL for supported joins, None for CROSS, SEMI, ANTI and friends."""
    side = join_node.side
    kind = join_node.kind
    if kind not in JOIN_KINDS:
        return None
    if side in JOIN_SIDES:
        return side
    return 'INNER'


def parse_joins(select_node: exp.Select, tables: List[ParsedTableRef], warnings: List[str]) -> List[ParsedJoinRef]:
    """
    Parse JOIN clauses. Every joined table is appended to `tables`, even
    when its join condition cannot be represented.
    """
    joins = []

    for join_node in select_node.args.get("joins") or []:
        table_expr = join_node.this
        if not isinstance(table_expr, exp.Table):
            warnings.append(describe_unsupported(f"JOIN {join_node.this.sql()}", {"Subqueries"}))
            continue

        ref = table_ref(table_expr)
        tables.append(ref)

        join_type = join_type_of(join_node)
        if join_type is None:
            label = " ".join(p for p in (join_node.side, join_node.kind) if p) or "Unsupported"
            warnings.append(f"{label} JOIN with {ref.alias} has no canvas equivalent; table added without a join")
            continue

        if join_node.args.get("using"):
            warnings.append(
                f"JOIN {ref.alias} USING (...) is not supported; "
                f"table added without a join. Hint: write ON a.col = b.col"
            )
            continue

        on_clause = join_node.args.get("on")
        if on_clause is None:
            warnings.append(f"JOIN with {ref.alias} has no ON condition; table added without a join")
            continue

        equality, dropped = parse_join_condition(on_clause)
        if equality is None:
            warnings.append(
                f"JOIN {ref.alias} condition {on_clause.sql()} is not a column equality "
                f"between qualified columns; table added without a join"
            )
            continue
        if dropped:
            warnings.append(f"JOIN {ref.alias}: extra conditions dropped: {', '.join(dropped)}")

        left, right = equality
        joins.append(ParsedJoinRef(
            join_type=join_type,
            left_alias=left.table,
            left_column=left.name,
            right_alias=right.table,
            right_column=right.name,
            joined_alias=ref.alias,
        ))

    return joins


def parse_join_condition(on_expr: exp.Expression) -> Tuple[Optional[Tuple[exp.Column, exp.Column]], List[str]]:
    """First `a.x = b.y` equality of an ON clause plus the SQL of every other AND-ed condition."""
    on_expr = on_expr.unnest()
    conditions = list(on_expr.flatten()) if isinstance(on_expr, exp.And) else [on_expr]

    equality = None
    dropped = []
    for condition in conditions:
        condition = condition.unnest()
        if (
            equality is None
            and isinstance(condition, exp.EQ)
            and _is_qualified_column(condition.left)
            and _is_qualified_column(condition.right)
        ):
            equality = (condition.left, condition.right)
        else:
            dropped.append(condition.sql())
    return equality, dropped


def _is_qualified_column(node: exp.Expression) -> bool:
    return isinstance(node, exp.Column) and bool(node.table) and not isinstance(node.this, exp.Star)


# SELECT

def parse_select(select_node: exp.Select, warnings: List[str]) -> Tuple[List[ParsedSelectRef], List[Tuple[str, str, str, Optional[str]]]]:
    """
    Parse SELECT clause into staged column references and aggregate tuples
    (table, column, function, alias). COUNT(*) carries an empty table; it
    is bound to the first table once the model exists.
    """
    selects = []
    aggregates = []

    for projection in select_node.expressions:
        alias = None
        expr = projection
        if isinstance(projection, exp.Alias):
            alias = projection.alias
            expr = projection.this

        text = projection.sql()
        constructs = unsupported_constructs(expr)
        if constructs:
            warnings.append(describe_unsupported(f"SELECT item {text}", constructs))
            continue

        if isinstance(expr, exp.Column):
            if not expr.table:
                warnings.append(f"SELECT item {text} skipped: column is not qualified with a table alias")
                continue
            selects.append(ParsedSelectRef(alias=expr.table, column=expr.name, as_=alias))
        elif isinstance(expr, exp.Star):
            warnings.append("SELECT * skipped: the canvas selects every column of the first table when nothing is selected")
        elif isinstance(expr, AGGREGATE_TYPES):
            try:
                table, column, function = parse_aggregate(expr)
            except SkippedConstruct as e:
                warnings.append(f"SELECT item {text} skipped: {e}")
                continue
            aggregates.append((table, column, function, alias))
        else:
            warnings.append(
                f"SELECT item {text} skipped: only table columns and COUNT/SUM/AVG/MIN/MAX are supported"
            )

    return selects, aggregates


def parse_aggregate(expr: exp.Expression) -> Tuple[str, str, str]:
    """(table, column, function) for an aggregate over one qualified column or COUNT(*)."""
    function = type(expr).__name__.upper()
    argument = expr.this

    if isinstance(expr, exp.Count) and isinstance(argument, exp.Distinct):
        function = 'COUNT_DISTINCT'
        if len(argument.expressions) != 1:
            raise SkippedConstruct("COUNT(DISTINCT ...) over several expressions is not supported")
        argument = argument.expressions[0]

    if isinstance(argument, exp.Star) or argument is None:
        if function != 'COUNT':
            raise SkippedConstruct(f"{function}(*) is not supported")
        return '', '*', function

    if isinstance(argument, exp.Column) and argument.table and not isinstance(argument.this, exp.Star):
        return argument.table, argument.name, function

    if isinstance(argument, exp.Column):
        raise SkippedConstruct("aggregated column is not qualified with a table alias")
    raise SkippedConstruct("aggregates over expressions are not supported")


def _add_aggregations(model: QueryModel, aggregates, ids: IdAllocator, warnings: List[str]) -> None:
    first_alias = model.tables[0].id if model.tables else ''
    for table, column, function, alias in aggregates:
        table = table or first_alias
        if not model.has_table(table):
            warnings.append(f"Aggregation {function}({table}.{column}) skipped: unknown table alias {table}")
            continue
        model.add_aggregation(Aggregation(
            id=ids.allocate(f"{function}_{table}_{column}"),
            table=table,
            column=column,
            function=function,
            alias=alias,
        ))


# WHERE

def parse_where(select_node: exp.Select, warnings: List[str]) -> List[Tuple[str, str, str, object]]:
    """Parse WHERE clause into staged (table, column, operator, value) predicates."""
    where_clause = select_node.args.get("where")
    if not where_clause:
        return []

    condition = where_clause.this.unnest()
    parts = list(condition.flatten()) if isinstance(condition, exp.And) else [condition]

    filters = []
    for part in parts:
        part = part.unnest()
        text = part.sql()
        constructs = unsupported_constructs(part)
        if constructs:
            warnings.append(describe_unsupported(f"WHERE condition {text}", constructs))
            continue
        try:
            filters.append(parse_single_condition(part))
        except SkippedConstruct as e:
            warnings.append(f"WHERE condition {text} skipped: {e}")
    return filters


def parse_single_condition(expr: exp.Expression) -> Tuple[str, str, str, object]:
    """Parse a single filter condition."""
    if isinstance(expr, exp.Or):
        raise SkippedConstruct("OR conditions are not supported; canvas filters are always AND-ed")

    if isinstance(expr, exp.Not):
        inner = expr.this.unnest()
        if isinstance(inner, exp.Is) and isinstance(inner.expression, exp.Null):
            table, column = _qualified_column(inner.this)
            return table, column, 'is_not_null', None
        keyword = NEGATED_KEYWORDS.get(type(inner))
        if keyword:
            raise SkippedConstruct(f"NOT {keyword} is not supported")
        raise SkippedConstruct("NOT conditions are not supported")

    # Newer sqlglot releases mark NOT LIKE / NOT IN on the node itself
    if expr.args.get("negate"):
        if isinstance(expr, exp.Is):
            if not isinstance(expr.expression, exp.Null):
                raise SkippedConstruct("only IS NULL and IS NOT NULL are supported")
            table, column = _qualified_column(expr.this)
            return table, column, 'is_not_null', None
        keyword = NEGATED_KEYWORDS.get(type(expr))
        if keyword:
            raise SkippedConstruct(f"NOT {keyword} is not supported")
        raise SkippedConstruct("NOT conditions are not supported")

    if isinstance(expr, exp.Is):
        if not isinstance(expr.expression, exp.Null):
            raise SkippedConstruct("only IS NULL and IS NOT NULL are supported")
        table, column = _qualified_column(expr.this)
        return table, column, 'is_null', None

    if isinstance(expr, exp.In):
        if expr.args.get("query"):
            raise SkippedConstruct("IN with a subquery is not supported")
        table, column = _qualified_column(expr.this)
        values = [literal_value(v) for v in expr.expressions]
        if not values:
            raise SkippedConstruct("IN needs at least one value")
        return table, column, 'in', values

    operator = COMPARISON_OPERATORS.get(type(expr))
    if operator is None:
        if isinstance(expr, (exp.GTE, exp.LTE)):
            raise SkippedConstruct(">= and <= are not supported; use > or <")
        if isinstance(expr, exp.Between):
            raise SkippedConstruct("BETWEEN is not supported; use a > and a < filter")
        raise SkippedConstruct("unsupported condition")

    if isinstance(expr.right, exp.Column) and not isinstance(expr.left, exp.Column):
        raise SkippedConstruct("the column must be on the left side of the comparison")
    table, column = _qualified_column(expr.left)
    if isinstance(expr.right, exp.Column):
        raise SkippedConstruct("column-to-column comparisons are not supported")

    value = literal_value(expr.right)
    if operator == 'like':
        value = _contains_pattern(value)
    return table, column, operator, value


def _qualified_column(node: exp.Expression) -> Tuple[str, str]:
    node = node.unnest()
    if not isinstance(node, exp.Column):
        raise SkippedConstruct("the left side must be a table column")
    if not node.table:
        raise SkippedConstruct("column is not qualified with a table alias")
    return node.table, node.name


def literal_value(node: exp.Expression):
    """Python value of a literal: strings stay strings, numbers become int or float."""
    node = node.unnest()
    if isinstance(node, exp.Neg) and isinstance(node.this, exp.Literal) and not node.this.is_string:
        return -_number(node.this.this)
    if isinstance(node, exp.Literal):
        if node.is_string:
            return node.this
        return _number(node.this)
    if isinstance(node, exp.Boolean):
        return 'true' if node.this else 'false'
    if isinstance(node, exp.Null):
        raise SkippedConstruct("comparison with NULL; use IS NULL or IS NOT NULL")
    raise SkippedConstruct("the right side must be a literal value")


def _number(text: str):
    try:
        return int(text)
    except ValueError:
        pass
    try:
        return float(text)
    except ValueError:
        raise SkippedConstruct(f"unrecognized numeric literal {text}")


def _contains_pattern(value) -> str:
    """'%text%' -> 'text'. Other patterns cannot be represented as a contains filter."""
    text = str(value)
    inner = text[1:-1]
    if len(text) >= 2 and text.startswith('%') and text.endswith('%') and '%' not in inner and '_' not in inner:
        return inner
    raise SkippedConstruct("only contains-style LIKE patterns ('%text%') are supported")


def _add_filters(model: QueryModel, filters, ids: IdAllocator, warnings: List[str]) -> None:
    for table, column, operator, value in filters:
        if not model.has_table(table):
            warnings.append(f"Filter on {table}.{column} skipped: unknown table alias {table}")
            continue
        model.add_filter(Filter(
            id=ids.allocate(f"{table}_{column}_{operator}"),
            table=table,
            column=column,
            operator=operator,
            value=value,
        ))


# GROUP BY / ORDER BY / LIMIT

def column_reference(expr: exp.Column) -> str:
    """Column reference as written: alias.col or col."""
    return f"{expr.table}.{expr.name}" if expr.table else expr.name


def parse_group_by(select_node: exp.Select, warnings: List[str]) -> List[str]:
    """Parse GROUP BY clause into column reference strings."""
    group_clause = select_node.args.get("group")
    if not group_clause:
        return []

    columns = []
    for expr in group_clause.expressions:
        if isinstance(expr, exp.Column) and not isinstance(expr.this, exp.Star):
            columns.append(column_reference(expr))
        else:
            warnings.append(f"GROUP BY {expr.sql()} skipped: only columns are supported")
    return columns


def parse_order_by(select_node: exp.Select, warnings: List[str]) -> List[OrderByItem]:
    """Parse ORDER BY clause into OrderByItems."""
    order_clause = select_node.args.get("order")
    if not order_clause:
        return []

    order_by = []
    for ordered in order_clause.expressions:
        column_expr = ordered.this if isinstance(ordered, exp.Ordered) else ordered
        if not isinstance(column_expr, exp.Column) or isinstance(column_expr.this, exp.Star):
            warnings.append(f"ORDER BY {ordered.sql()} skipped: only columns are supported")
            continue
        direction = 'DESC' if ordered.args.get('desc') else 'ASC'
        order_by.append(OrderByItem(column=column_reference(column_expr), direction=direction))
    return order_by


def parse_limit(select_node: exp.Select, warnings: List[str]) -> Optional[int]:
    """Parse LIMIT clause; only positive integer literals are kept."""
    if select_node.args.get("offset"):
        warnings.append("OFFSET is not represented on the canvas; OFFSET was dropped")

    limit_clause = select_node.args.get("limit")
    if not limit_clause:
        return None

    limit_expr = limit_clause.expression if isinstance(limit_clause, exp.Limit) else limit_clause
    if isinstance(limit_expr, exp.Literal) and not limit_expr.is_string:
        try:
            value = int(limit_expr.this)
        except ValueError:
            value = None
        if value is not None and value > 0:
            return value

    warnings.append(f"LIMIT {limit_expr.sql() if limit_expr else ''} dropped: only positive integers are supported")
    return None
