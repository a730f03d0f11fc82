"""
Canvas mutations as tagged variants.

Each canvas action (drag a table in, draw a join, add a filter, ...) is a
pydantic model whose `type` tag selects it inside the `Mutation` union.
`apply_mutation` dispatches on that tag.
"""

import logging
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from typing import Annotated, Any, Callable, Dict, List, Literal, Optional, Union

from .model_types import (
    Aggregation,
    Column,
    Filter,
    Join,
    JoinType,
    OrderByItem,
    Position,
    QueryModel,
    SelectedColumn,
    TableReference,
)

logger = logging.getLogger(__name__)


class _MutationBase(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class AddTable(_MutationBase):
    type: Literal['ADD_TABLE'] = 'ADD_TABLE'
    table: TableReference


class RemoveTable(_MutationBase):
    type: Literal['REMOVE_TABLE'] = 'REMOVE_TABLE'
    alias: str


class UpdateTablePosition(_MutationBase):
    type: Literal['UPDATE_TABLE_POSITION'] = 'UPDATE_TABLE_POSITION'
    alias: str
    position: Position


class UpdateTableColumns(_MutationBase):
    type: Literal['UPDATE_TABLE_COLUMNS'] = 'UPDATE_TABLE_COLUMNS'
    alias: str
    columns: List[Column]


class AddJoin(_MutationBase):
    type: Literal['ADD_JOIN'] = 'ADD_JOIN'
    join: Join


class RemoveJoin(_MutationBase):
    type: Literal['REMOVE_JOIN'] = 'REMOVE_JOIN'
    join_id: str = Field(..., alias='joinId')


class UpdateJoinType(_MutationBase):
    type: Literal['UPDATE_JOIN_TYPE'] = 'UPDATE_JOIN_TYPE'
    join_id: str = Field(..., alias='joinId')
    join_type: JoinType = Field(..., alias='joinType')


class UpdateJoinColumns(_MutationBase):
    type: Literal['UPDATE_JOIN_COLUMNS'] = 'UPDATE_JOIN_COLUMNS'
    join_id: str = Field(..., alias='joinId')
    source_column: str = Field(..., alias='sourceColumn')
    target_column: str = Field(..., alias='targetColumn')


class AddFilter(_MutationBase):
    type: Literal['ADD_FILTER'] = 'ADD_FILTER'
    filter: Filter


class UpdateFilter(_MutationBase):
    type: Literal['UPDATE_FILTER'] = 'UPDATE_FILTER'
    filter: Filter


class RemoveFilter(_MutationBase):
    type: Literal['REMOVE_FILTER'] = 'REMOVE_FILTER'
    filter_id: str = Field(..., alias='filterId')


class AddAggregation(_MutationBase):
    type: Literal['ADD_AGGREGATION'] = 'ADD_AGGREGATION'
    aggregation: Aggregation


class UpdateAggregation(_MutationBase):
    type: Literal['UPDATE_AGGREGATION'] = 'UPDATE_AGGREGATION'
    aggregation: Aggregation


class RemoveAggregation(_MutationBase):
    type: Literal['REMOVE_AGGREGATION'] = 'REMOVE_AGGREGATION'
    aggregation_id: str = Field(..., alias='aggregationId')


class AddSelectedColumn(_MutationBase):
    type: Literal['ADD_SELECTED_COLUMN'] = 'ADD_SELECTED_COLUMN'
    column: SelectedColumn


class RemoveSelectedColumn(_MutationBase):
    type: Literal['REMOVE_SELECTED_COLUMN'] = 'REMOVE_SELECTED_COLUMN'
    column_id: str = Field(..., alias='columnId')


class SetGroupBy(_MutationBase):
    type: Literal['SET_GROUP_BY'] = 'SET_GROUP_BY'
    columns: List[str]


class SetOrderBy(_MutationBase):
    type: Literal['SET_ORDER_BY'] = 'SET_ORDER_BY'
    items: List[OrderByItem]


class SetLimit(_MutationBase):
    type: Literal['SET_LIMIT'] = 'SET_LIMIT'
    limit: Optional[int] = None


class ReplaceModel(_MutationBase):
    """Swap in a whole model, e.g. after the SQL editor produced a successful parse."""
    type: Literal['REPLACE_MODEL'] = 'REPLACE_MODEL'
    model: QueryModel


Mutation = Annotated[
    Union[
        AddTable, RemoveTable, UpdateTablePosition, UpdateTableColumns,
        AddJoin, RemoveJoin, UpdateJoinType, UpdateJoinColumns,
        AddFilter, UpdateFilter, RemoveFilter,
        AddAggregation, UpdateAggregation, RemoveAggregation,
        AddSelectedColumn, RemoveSelectedColumn,
        SetGroupBy, SetOrderBy, SetLimit, ReplaceModel,
    ],
    Field(discriminator='type'),
]

_mutation_adapter = TypeAdapter(Mutation)


def parse_mutation(payload: Dict[str, Any]):
    """Validate a raw JSON payload into its Mutation variant (pydantic ValidationError on bad input)."""
    return _mutation_adapter.validate_python(payload)


def _replace(model: QueryModel, m: ReplaceModel) -> None:
    replacement = m.model.model_copy(deep=True)
    replacement.check_integrity()
    for field in type(model).model_fields:
        setattr(model, field, getattr(replacement, field))


MUTATION_HANDLERS: Dict[str, Callable[[QueryModel, Any], None]] = {
    'ADD_TABLE': lambda model, m: model.add_table(m.table),
    'REMOVE_TABLE': lambda model, m: model.remove_table(m.alias),
    'UPDATE_TABLE_POSITION': lambda model, m: model.update_table_position(m.alias, m.position),
    'UPDATE_TABLE_COLUMNS': lambda model, m: model.update_table_columns(m.alias, m.columns),
    'ADD_JOIN': lambda model, m: model.add_join(m.join),
    'REMOVE_JOIN': lambda model, m: model.remove_join(m.join_id),
    'UPDATE_JOIN_TYPE': lambda model, m: model.update_join_type(m.join_id, m.join_type),
    'UPDATE_JOIN_COLUMNS': lambda model, m: model.update_join_columns(m.join_id, m.source_column, m.target_column),
    'ADD_FILTER': lambda model, m: model.add_filter(m.filter),
    'UPDATE_FILTER': lambda model, m: model.update_filter(m.filter),
    'REMOVE_FILTER': lambda model, m: model.remove_filter(m.filter_id),
    'ADD_AGGREGATION': lambda model, m: model.add_aggregation(m.aggregation),
    'UPDATE_AGGREGATION': lambda model, m: model.update_aggregation(m.aggregation),
    'REMOVE_AGGREGATION': lambda model, m: model.remove_aggregation(m.aggregation_id),
    'ADD_SELECTED_COLUMN': lambda model, m: model.add_selected_column(m.column),
    'REMOVE_SELECTED_COLUMN': lambda model, m: model.remove_selected_column(m.column_id),
    'SET_GROUP_BY': lambda model, m: model.set_group_by(m.columns),
    'SET_ORDER_BY': lambda model, m: model.set_order_by(m.items),
    'SET_LIMIT': lambda model, m: model.set_limit(m.limit),
    'REPLACE_MODEL': _replace,
}


def apply_mutation(model: QueryModel, mutation) -> QueryModel:
    """
    Apply one mutation and return the updated model.

    The caller's model is never modified: the mutation runs on a deep copy.
    A rejected mutation raises QueryModelError (or a subclass).
    """
    handler = MUTATION_HANDLERS[mutation.type]
    updated = model.model_copy(deep=True)
    handler(updated, mutation.model_copy(deep=True))
    logger.debug(f"[Mutations] Applied {mutation.type}")
    return updated
