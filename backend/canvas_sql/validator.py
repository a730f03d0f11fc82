"""Validation logic for the Query Model and AST feature detection."""

import re
from sqlglot import exp
from typing import List, Optional, Set, Tuple

from .model_types import QueryModel, Join, TableReference

NUMERIC_TYPES = frozenset({
    'tinyint', 'smallint', 'int', 'integer', 'bigint',
    'float', 'double', 'real', 'decimal', 'numeric',
})


def normalize_type(data_type: Optional[str]) -> str:
    """Case-fold a declared type and strip its parametrization: DECIMAL(10,2) -> decimal."""
    if not data_type:
        return ''
    return data_type.strip().lower().split('(')[0].strip()


def types_compatible(left: Optional[str], right: Optional[str]) -> bool:
    """
    Check whether two declared column types can be joined.

    Unknown types are treated as compatible: without metadata we cannot
    prove a join is wrong, and the same rule applies wherever joins are
    checked.
    """
    a = normalize_type(left)
    b = normalize_type(right)
    if not a or not b:
        return True
    if a == b:
        return True
    return a in NUMERIC_TYPES and b in NUMERIC_TYPES


def join_skip_reason(model: QueryModel, join: Join) -> Optional[str]:
    """
    Return the SQL comment to emit instead of a JOIN, or None if the JOIN is valid.

    Never raises: dangling references and type mismatches both become comments.
    """
    target = model.get_table(join.target_table)
    if target is None:
        return f"-- Skipped JOIN: target table not found for {join.target_table}"

    source = model.get_table(join.source_table)
    if source is None:
        return f"-- Skipped JOIN: source table not found for {join.source_table}"

    if join.source_table == join.target_table:
        return f"-- Skipped JOIN: table {join.source_table} cannot be joined to itself under one alias"

    source_col = source.find_column(join.source_column)
    target_col = target.find_column(join.target_column)
    if source_col and target_col and not types_compatible(source_col.data_type, target_col.data_type):
        return (
            f"-- Skipped invalid JOIN: {join.source_table}.{join.source_column} ({source_col.data_type}) "
            f"incompatible with {join.target_table}.{join.target_column} ({target_col.data_type})"
        )

    return None


def unknown_alias_findings(model: QueryModel) -> List[str]:
    """Filters, aggregations and selected columns that name a table the model does not have."""
    aliases = {t.id for t in model.tables}
    findings: List[str] = []
    for kind, items in (
        ("Filter", model.filters),
        ("Aggregation", model.aggregations),
        ("Selected column", model.selected_columns),
    ):
        for item in items:
            if item.table not in aliases:
                findings.append(f"{kind} {item.table}.{item.column} references unknown table '{item.table}'")
    return findings


def validate_query_model(model: QueryModel) -> List[str]:
    """
    Report integrity problems in a Query Model without raising.

    Returns human-readable findings: dangling alias references,
    incompatible joins, tables no join connects, invalid LIMIT.
    """
    findings: List[str] = []
    aliases = {t.id for t in model.tables}

    seen: Set[str] = set()
    for table in model.tables:
        if table.id in seen:
            findings.append(f"Duplicate table alias '{table.id}'")
        seen.add(table.id)
        for part in (table.id, table.catalog, table.schema_, table.name):
            if part and not is_plain_identifier(part):
                findings.append(f"Identifier '{part}' of table '{table.id}' is rendered unquoted and may not parse")

    for join in model.joins:
        for side, alias in (("source", join.source_table), ("target", join.target_table)):
            if alias not in aliases:
                findings.append(f"Join {join.id} references unknown {side} table '{alias}'")
        reason = join_skip_reason(model, join)
        if reason and not reason.startswith("-- Skipped JOIN: "):
            findings.append(reason[3:])

    findings.extend(unknown_alias_findings(model))
    findings.extend(_find_disconnected_tables(model))

    if model.limit is not None and model.limit <= 0:
        findings.append(f"LIMIT must be positive, got {model.limit}")

    return findings


def _find_disconnected_tables(model: QueryModel) -> List[str]:
    """Tables after the first that no join reaches are left out of the FROM clause."""
    if len(model.tables) < 2:
        return []
    connected = {model.tables[0].id}
    for join in model.joins:
        connected.add(join.source_table)
        connected.add(join.target_table)
    return [
        f"Table '{t.id}' is not connected by any join and will not appear in the query"
        for t in model.tables[1:]
        if t.id not in connected
    ]


# Round-trip comparison

def _table_key(table: TableReference) -> Tuple[str, str, str, str]:
    return (table.id, table.catalog, table.schema_, table.name)


def _filter_value_key(value) -> Tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, list):
        return tuple(str(v) for v in value)
    return (str(value),)


def compare_query_models(original: QueryModel, regenerated: QueryModel) -> List[str]:
    """
    Structural differences between two Query Models.

    Ids, canvas positions and column metadata are ignored; everything that
    changes the generated SQL is compared.
    """
    differences: List[str] = []

    tables1 = [_table_key(t) for t in original.tables]
    tables2 = [_table_key(t) for t in regenerated.tables]
    if sorted(tables1) != sorted(tables2):
        missing = sorted(set(tables1) - set(tables2))
        extra = sorted(set(tables2) - set(tables1))
        detail = []
        if missing:
            detail.append("missing " + ", ".join(".".join(p for p in k[1:] if p) + f" AS {k[0]}" for k in missing))
        if extra:
            detail.append("unexpected " + ", ".join(".".join(p for p in k[1:] if p) + f" AS {k[0]}" for k in extra))
        differences.append("Tables differ: " + "; ".join(detail) if detail else "Table order differs")

    joins1 = [(j.join_type, j.source_table, j.source_column, j.target_table, j.target_column) for j in original.joins]
    joins2 = [(j.join_type, j.source_table, j.source_column, j.target_table, j.target_column) for j in regenerated.joins]
    if joins1 != joins2:
        differences.append(f"Joins differ: {len(joins1)} vs {len(joins2)}")

    cols1 = [(c.table, c.column, c.alias) for c in original.selected_columns]
    cols2 = [(c.table, c.column, c.alias) for c in regenerated.selected_columns]
    if cols1 != cols2:
        differences.append(f"Selected columns differ: {len(cols1)} vs {len(cols2)}")

    aggs1 = [(a.function, a.table, a.column, a.alias) for a in original.aggregations]
    aggs2 = [(a.function, a.table, a.column, a.alias) for a in regenerated.aggregations]
    if aggs1 != aggs2:
        differences.append(f"Aggregations differ: {len(aggs1)} vs {len(aggs2)}")

    filters1 = [(f.table, f.column, f.operator, _filter_value_key(f.value)) for f in original.filters]
    filters2 = [(f.table, f.column, f.operator, _filter_value_key(f.value)) for f in regenerated.filters]
    if filters1 != filters2:
        differences.append(f"Filters differ: {len(filters1)} vs {len(filters2)}")

    if original.group_by_columns != regenerated.group_by_columns:
        differences.append("GROUP BY columns differ")

    order1 = [(o.column, o.direction) for o in original.order_by_columns]
    order2 = [(o.column, o.direction) for o in regenerated.order_by_columns]
    if order1 != order2:
        differences.append("ORDER BY columns differ")

    if original.limit != regenerated.limit:
        differences.append(f"LIMIT differs: {original.limit} vs {regenerated.limit}")

    return differences


# AST feature detection

STATEMENT_HINTS = {
    "Insert": "INSERT statements cannot be shown on the canvas; write a SELECT instead",
    "Update": "UPDATE statements cannot be shown on the canvas; write a SELECT instead",
    "Delete": "DELETE statements cannot be shown on the canvas; write a SELECT instead",
    "Merge": "MERGE statements cannot be shown on the canvas; write a SELECT instead",
    "Create": "DDL statements (CREATE) are not supported; query the table with a SELECT",
    "Drop": "DDL statements (DROP) are not supported",
    "Alter": "DDL statements (ALTER) are not supported",
    "Union": "UNION is not supported; build each SELECT on its own canvas",
    "Intersect": "INTERSECT is not supported; use an INNER JOIN on the shared columns",
    "Except": "EXCEPT is not supported; use a LEFT JOIN with an IS NULL filter",
}


def statement_error(ast: exp.Expression) -> Optional[str]:
    """Error message (with hint) when the top-level statement is not a plain SELECT."""
    if isinstance(ast, exp.Select):
        if ast.args.get("with") or ast.args.get("with_") or ast.find(exp.With):
            return "WITH clauses (CTEs) are not supported. Hint: inline the CTE as a joined table"
        return None

    kind = type(ast).__name__
    hint = STATEMENT_HINTS.get(kind)
    if hint is None:
        for base in type(ast).__mro__:
            if base.__name__ in STATEMENT_HINTS:
                hint = STATEMENT_HINTS[base.__name__]
                break
    if hint is None:
        hint = "Only SELECT queries can be shown on the canvas"
    return f"Unsupported statement: {_statement_keyword(ast, kind)}. Hint: {hint}"


def _statement_keyword(ast: exp.Expression, kind: str) -> str:
    key = getattr(ast, "key", None)
    return (key or kind).upper()


def unsupported_constructs(node: exp.Expression) -> Set[str]:
    """Names of constructs inside an expression that the canvas cannot represent."""
    found: Set[str] = set()
    for child in node.walk():
        if isinstance(child, (exp.Subquery, exp.Exists)) or (
            isinstance(child, exp.Select) and child is not node
        ):
            found.add("Subqueries")
        elif isinstance(child, exp.Window):
            found.add("Window functions")
        elif isinstance(child, exp.Case):
            found.add("CASE expressions")
    return found


CONSTRUCT_HINTS = {
    "Subqueries": "use a JOIN instead of a subquery",
    "Window functions": "use an aggregation with GROUP BY",
    "CASE expressions": "filter on the underlying column instead",
}


def describe_unsupported(context: str, constructs: Set[str]) -> str:
    """Warning text for an item skipped because it contains unsupported constructs."""
    names = sorted(constructs)
    hints = "; ".join(CONSTRUCT_HINTS[n] for n in names if n in CONSTRUCT_HINTS)
    message = f"{context} skipped: {', '.join(names)} not supported"
    return f"{message}. Hint: {hints}" if hints else message


_IDENTIFIER = re.compile(r'^[A-Za-z_][A-Za-z0-9_]*$')


def is_plain_identifier(name: str) -> bool:
    return bool(_IDENTIFIER.match(name or ''))
