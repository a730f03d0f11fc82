"""Bidirectional SQL <-> canvas Query Model transpiler."""

from .model_types import (
    Column,
    Position,
    TableReference,
    Join,
    Filter,
    Aggregation,
    SelectedColumn,
    OrderByItem,
    QueryModel,
    ParseResult,
    GenerationResult,
)
from .errors import (
    QueryModelError,
    DuplicateAliasError,
    UnknownTableReferenceError,
    UnknownItemError,
    DuplicateItemError,
    UnsupportedSQLError,
)
from .mutations import Mutation, apply_mutation, parse_mutation
from .parser import GrammarParser
from .pattern_parser import PatternParser
from .generator import (
    GENERATION_FAILED_SQL,
    SQLGenerator,
    OrchestratedSQLGenerator,
    LegacySQLGenerator,
    generate_sql_legacy,
)
from .transpiler import (
    SQLTranspiler,
    TranspilerOptions,
    RoundTripResult,
    create_transpiler,
    parse_sql,
    generate_sql,
    validate_round_trip,
)
from .enrichment import (
    ColumnCatalog,
    HttpColumnCatalog,
    CatalogError,
    EnrichmentResult,
    enrich_query_model,
)

__all__ = [
    "Column",
    "Position",
    "TableReference",
    "Join",
    "Filter",
    "Aggregation",
    "SelectedColumn",
    "OrderByItem",
    "QueryModel",
    "ParseResult",
    "GenerationResult",
    "QueryModelError",
    "DuplicateAliasError",
    "UnknownTableReferenceError",
    "UnknownItemError",
    "DuplicateItemError",
    "UnsupportedSQLError",
    "Mutation",
    "apply_mutation",
    "parse_mutation",
    "GrammarParser",
    "PatternParser",
    "GENERATION_FAILED_SQL",
    "SQLGenerator",
    "OrchestratedSQLGenerator",
    "LegacySQLGenerator",
    "generate_sql_legacy",
    "SQLTranspiler",
    "TranspilerOptions",
    "RoundTripResult",
    "create_transpiler",
    "parse_sql",
    "generate_sql",
    "validate_round_trip",
    "ColumnCatalog",
    "HttpColumnCatalog",
    "CatalogError",
    "EnrichmentResult",
    "enrich_query_model",
]
