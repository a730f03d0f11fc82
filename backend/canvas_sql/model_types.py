"""Pydantic models for the canvas Query Model and parser staging structures."""

import uuid
from pydantic import BaseModel, Field, ConfigDict, model_validator
from typing import Any, Dict, List, Optional, Literal, Union

from .errors import (
    QueryModelError,
    DuplicateAliasError,
    UnknownTableReferenceError,
    UnknownItemError,
    DuplicateItemError,
)

JoinType = Literal['INNER', 'LEFT', 'RIGHT', 'FULL']
FilterOperator = Literal[
    'equals', 'not_equals', 'greater_than', 'less_than', 'like', 'in', 'is_null', 'is_not_null'
]
AggregateFunction = Literal['COUNT', 'SUM', 'AVG', 'MIN', 'MAX', 'COUNT_DISTINCT']
SortDirection = Literal['ASC', 'DESC']
FilterValue = Union[str, int, float, List[Union[str, int, float]]]

NULL_OPERATORS = ('is_null', 'is_not_null')


def new_item_id() -> str:
    """Id for canvas items created without one (never rendered into SQL)."""
    return uuid.uuid4().hex


class Column(BaseModel):
    """Column metadata supplied by the catalog service."""
    model_config = ConfigDict(populate_by_name=True)

    name: str
    data_type: str = Field('', alias='dataType')
    nullable: bool = True
    comment: Optional[str] = None


class Position(BaseModel):
    """Canvas coordinates (presentation only)."""
    x: float = 0
    y: float = 0


class TableReference(BaseModel):
    """A table placed on the canvas. `id` doubles as the SQL alias."""
    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str
    schema_: str = Field('', alias='schema')
    catalog: str = ''
    columns: List[Column] = []
    position: Position = Field(default_factory=Position)

    @property
    def qualified_name(self) -> str:
        """catalog.schema.name, leaving out the parts that are empty."""
        return ".".join(part for part in (self.catalog, self.schema_, self.name) if part)

    def find_column(self, name: str) -> Optional[Column]:
        for column in self.columns:
            if column.name == name:
                return column
        return None


class Join(BaseModel):
    """Directed join edge between two table aliases."""
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=new_item_id)
    source_table: str = Field(..., alias='sourceTable')
    target_table: str = Field(..., alias='targetTable')
    source_column: str = Field(..., alias='sourceColumn')
    target_column: str = Field(..., alias='targetColumn')
    join_type: JoinType = Field('INNER', alias='joinType')


class Filter(BaseModel):
    """A WHERE predicate bound to one table column."""
    id: str = Field(default_factory=new_item_id)
    table: str
    column: str
    operator: FilterOperator
    value: Optional[FilterValue] = None

    @model_validator(mode='after')
    def check_value(self):
        """Every operator except the null checks needs a value."""
        if self.operator in NULL_OPERATORS:
            return self
        if self.value is None or (isinstance(self.value, list) and not self.value):
            raise ValueError(f"operator '{self.operator}' requires a value")
        return self


class Aggregation(BaseModel):
    """An aggregate projection. column='*' is COUNT(*)."""
    id: str = Field(default_factory=new_item_id)
    table: str
    column: str
    function: AggregateFunction
    alias: Optional[str] = None


class SelectedColumn(BaseModel):
    """An explicit SELECT-list entry."""
    id: str = Field(default_factory=new_item_id)
    table: str
    column: str
    alias: Optional[str] = None


class OrderByItem(BaseModel):
    column: str
    direction: SortDirection = 'ASC'


class QueryModel(BaseModel):
    """
    The canvas query: the aggregate root every parse produces and every
    generation consumes.

    All collections keep insertion order; the generator iterates them as-is.
    Mutating methods validate before touching any collection, so a rejected
    mutation leaves the model unchanged.
    """
    model_config = ConfigDict(populate_by_name=True)

    tables: List[TableReference] = []
    joins: List[Join] = []
    filters: List[Filter] = []
    aggregations: List[Aggregation] = []
    selected_columns: List[SelectedColumn] = Field(default_factory=list, alias='selectedColumns')
    group_by_columns: List[str] = Field(default_factory=list, alias='groupByColumns')
    order_by_columns: List[OrderByItem] = Field(default_factory=list, alias='orderByColumns')
    limit: Optional[int] = Field(None, gt=0)

    @model_validator(mode='after')
    def check_unique_aliases(self):
        """Table aliases are the keys every other item refers to."""
        seen = set()
        for table in self.tables:
            if table.id in seen:
                raise ValueError(f"Table alias '{table.id}' is already in use")
            seen.add(table.id)
        return self

    def check_integrity(self) -> None:
        """
        Raise the error the add_* methods would raise for this model's contents.

        Payload-built models do not go through those methods, so dangling
        aliases and repeated item ids are only caught here.
        """
        rebuilt = QueryModel()
        for table in self.tables:
            rebuilt.add_table(table)
        for join in self.joins:
            rebuilt.add_join(join)
        for filter_ in self.filters:
            rebuilt.add_filter(filter_)
        for aggregation in self.aggregations:
            rebuilt.add_aggregation(aggregation)
        for column in self.selected_columns:
            rebuilt.add_selected_column(column)

    # Lookups

    def get_table(self, alias: str) -> Optional[TableReference]:
        for table in self.tables:
            if table.id == alias:
                return table
        return None

    def has_table(self, alias: str) -> bool:
        return self.get_table(alias) is not None

    def get_join(self, join_id: str) -> Optional[Join]:
        return next((j for j in self.joins if j.id == join_id), None)

    def is_empty(self) -> bool:
        return not self.tables

    def _require_table(self, alias: str, context: str) -> TableReference:
        table = self.get_table(alias)
        if table is None:
            raise UnknownTableReferenceError(alias, context)
        return table

    # Tables

    def add_table(self, table: TableReference) -> None:
        if self.has_table(table.id):
            raise DuplicateAliasError(table.id)
        self.tables.append(table)

    def remove_table(self, alias: str) -> None:
        """Remove a table and everything that references it. Missing aliases are a no-op."""
        if not self.has_table(alias):
            return
        prefix = f"{alias}."
        self.tables = [t for t in self.tables if t.id != alias]
        self.joins = [j for j in self.joins if j.source_table != alias and j.target_table != alias]
        self.filters = [f for f in self.filters if f.table != alias]
        self.aggregations = [a for a in self.aggregations if a.table != alias]
        self.selected_columns = [c for c in self.selected_columns if c.table != alias]
        self.group_by_columns = [c for c in self.group_by_columns if not c.startswith(prefix)]
        self.order_by_columns = [o for o in self.order_by_columns if not o.column.startswith(prefix)]

    def update_table_position(self, alias: str, position: Position) -> None:
        self._require_table(alias, "position update").position = position

    def update_table_columns(self, alias: str, columns: List[Column]) -> None:
        self._require_table(alias, "column update").columns = list(columns)

    # Joins

    def add_join(self, join: Join) -> None:
        self._require_table(join.source_table, "join source")
        self._require_table(join.target_table, "join target")
        if self.get_join(join.id) is not None:
            raise DuplicateItemError("join", join.id)
        self.joins.append(join)

    def remove_join(self, join_id: str) -> None:
        self.joins = [j for j in self.joins if j.id != join_id]

    def update_join_type(self, join_id: str, join_type: JoinType) -> None:
        join = self.get_join(join_id)
        if join is None:
            raise UnknownItemError("join", join_id)
        join.join_type = join_type

    def update_join_columns(self, join_id: str, source_column: str, target_column: str) -> None:
        join = self.get_join(join_id)
        if join is None:
            raise UnknownItemError("join", join_id)
        join.source_column = source_column
        join.target_column = target_column

    # Filters, aggregations, selected columns

    def add_filter(self, filter_: Filter) -> None:
        self._require_table(filter_.table, "filter")
        if any(f.id == filter_.id for f in self.filters):
            raise DuplicateItemError("filter", filter_.id)
        self.filters.append(filter_)

    def update_filter(self, filter_: Filter) -> None:
        index = _index_of(self.filters, filter_.id, "filter")
        self._require_table(filter_.table, "filter")
        self.filters[index] = filter_

    def remove_filter(self, filter_id: str) -> None:
        self.filters = [f for f in self.filters if f.id != filter_id]

    def add_aggregation(self, aggregation: Aggregation) -> None:
        self._require_table(aggregation.table, "aggregation")
        if any(a.id == aggregation.id for a in self.aggregations):
            raise DuplicateItemError("aggregation", aggregation.id)
        self.aggregations.append(aggregation)

    def update_aggregation(self, aggregation: Aggregation) -> None:
        index = _index_of(self.aggregations, aggregation.id, "aggregation")
        self._require_table(aggregation.table, "aggregation")
        self.aggregations[index] = aggregation

    def remove_aggregation(self, aggregation_id: str) -> None:
        self.aggregations = [a for a in self.aggregations if a.id != aggregation_id]

    def add_selected_column(self, column: SelectedColumn) -> None:
        self._require_table(column.table, "selected column")
        if any(c.id == column.id for c in self.selected_columns):
            raise DuplicateItemError("selected column", column.id)
        self.selected_columns.append(column)

    def remove_selected_column(self, column_id: str) -> None:
        self.selected_columns = [c for c in self.selected_columns if c.id != column_id]

    # Grouping, ordering, limit

    def set_group_by(self, columns: List[str]) -> None:
        self.group_by_columns = list(columns)

    def set_order_by(self, items: List[OrderByItem]) -> None:
        self.order_by_columns = list(items)

    def set_limit(self, limit: Optional[int]) -> None:
        if limit is not None and limit <= 0:
            raise QueryModelError(f"LIMIT must be a positive integer, got {limit}")
        self.limit = limit


def _index_of(items: List[Any], item_id: str, kind: str) -> int:
    for index, item in enumerate(items):
        if item.id == item_id:
            return index
    raise UnknownItemError(kind, item_id)


# Parser staging structures (internal, never persisted)

class ParsedTableRef(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    catalog: str = ''
    schema_: str = Field('', alias='schema')
    name: str
    alias: str


class ParsedJoinRef(BaseModel):
    join_type: JoinType = 'INNER'
    left_alias: str
    left_column: str
    right_alias: str
    right_column: str
    # Alias of the table introduced by the JOIN clause, when known
    joined_alias: Optional[str] = None


class ParsedSelectRef(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    alias: str
    column: str
    as_: Optional[str] = Field(None, alias='as')


class ParsedSQL(BaseModel):
    tables: List[ParsedTableRef] = []
    joins: List[ParsedJoinRef] = []
    selects: List[ParsedSelectRef] = []


# Results

class ParseResult(BaseModel):
    """Outcome of one parse attempt (or of the whole parse chain)."""
    success: bool
    model: QueryModel = Field(default_factory=QueryModel)
    errors: List[str] = []
    warnings: List[str] = []
    strategy: Optional[str] = None
    debug_info: Optional[Dict[str, Any]] = None

    @property
    def tables(self) -> List[TableReference]:
        return self.model.tables

    @property
    def joins(self) -> List[Join]:
        return self.model.joins

    @property
    def selected_columns(self) -> List[SelectedColumn]:
        return self.model.selected_columns


class GenerationResult(BaseModel):
    """Outcome of one generation attempt (or of the whole generator chain)."""
    success: bool
    sql: Optional[str] = None
    errors: List[str] = []
    warnings: List[str] = []
    strategy: Optional[str] = None
    debug_info: Optional[Dict[str, Any]] = None
