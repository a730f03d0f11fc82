"""Build a Query Model from the parser staging structure (ParsedSQL)."""

import logging
from typing import Dict, List, Tuple

from .model_types import (
    QueryModel,
    TableReference,
    Position,
    Join,
    SelectedColumn,
    ParsedSQL,
    ParsedJoinRef,
)

logger = logging.getLogger(__name__)

# Imported tables are laid out left to right in order of appearance
CANVAS_ORIGIN_X = 200
CANVAS_ORIGIN_Y = 200
CANVAS_SPACING_X = 320


def canvas_position(index: int) -> Position:
    return Position(x=CANVAS_ORIGIN_X + index * CANVAS_SPACING_X, y=CANVAS_ORIGIN_Y)


class IdAllocator:
    """Deterministic ids for parsed items: base, base#2, base#3, ..."""

    def __init__(self):
        self._counts: Dict[str, int] = {}

    def allocate(self, base: str) -> str:
        count = self._counts.get(base, 0) + 1
        self._counts[base] = count
        return base if count == 1 else f"{base}#{count}"


def orient_join(ref: ParsedJoinRef) -> Tuple[str, str, str, str]:
    """
    Order a parsed ON equality as (source alias, source column, target alias, target column).

    The target is the table the JOIN clause introduces, so the generator
    renders `JOIN <target>` for it.
    """
    if ref.joined_alias and ref.left_alias == ref.joined_alias and ref.right_alias != ref.joined_alias:
        return ref.right_alias, ref.right_column, ref.left_alias, ref.left_column
    return ref.left_alias, ref.left_column, ref.right_alias, ref.right_column


def build_query_model(parsed: ParsedSQL, ids: IdAllocator = None) -> Tuple[QueryModel, List[str]]:
    """
    Turn staged tables/joins/selects into a self-consistent Query Model.

    Joins and selects that reference aliases missing from the table list
    are dropped and reported as warnings. Duplicate table aliases raise
    DuplicateAliasError; callers treat that as a failed parse.
    """
    ids = ids or IdAllocator()
    warnings: List[str] = []
    model = QueryModel()

    for index, ref in enumerate(parsed.tables):
        model.add_table(TableReference(
            id=ref.alias,
            name=ref.name,
            schema=ref.schema_,
            catalog=ref.catalog,
            columns=[],
            position=canvas_position(index),
        ))

    for ref in parsed.joins:
        condition = f"{ref.left_alias}.{ref.left_column} = {ref.right_alias}.{ref.right_column}"
        missing = [a for a in (ref.left_alias, ref.right_alias) if not model.has_table(a)]
        if missing:
            warnings.append(f"Dropped JOIN ON {condition}: unknown table alias {', '.join(sorted(set(missing)))}")
            continue
        if ref.left_alias == ref.right_alias:
            warnings.append(f"Dropped JOIN ON {condition}: both sides reference the same table")
            continue
        if ref.joined_alias and ref.joined_alias not in (ref.left_alias, ref.right_alias):
            warnings.append(f"Dropped JOIN ON {condition}: condition does not reference joined table '{ref.joined_alias}'")
            continue

        source, source_col, target, target_col = orient_join(ref)
        model.add_join(Join(
            id=ids.allocate(f"{source}.{source_col}__{target}.{target_col}"),
            source_table=source,
            source_column=source_col,
            target_table=target,
            target_column=target_col,
            join_type=ref.join_type,
        ))

    for ref in parsed.selects:
        if not model.has_table(ref.alias):
            warnings.append(f"Dropped SELECT column {ref.alias}.{ref.column}: unknown table alias {ref.alias}")
            continue
        model.add_selected_column(SelectedColumn(
            id=ids.allocate(f"{ref.alias}.{ref.column}"),
            table=ref.alias,
            column=ref.column,
            alias=ref.as_,
        ))

    for warning in warnings:
        logger.debug(f"[QueryModelBuilder] {warning}")

    return model, warnings
