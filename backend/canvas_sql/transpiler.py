"""
Transpiler orchestrator: SQL <-> Query Model with layered fallback.

Parse strategies and generation strategies are injected as ordered lists
and tried in turn. No exception escapes `parse`, `generate`,
`generate_sql` or `validate_round_trip`; failures come back as results.
"""

import logging
import time
from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, List, Optional, Sequence, Union

from .generator import (
    GENERATION_FAILED_SQL,
    LegacySQLGenerator,
    OrchestratedSQLGenerator,
    SQLGenerator,
)
from .model_types import GenerationResult, ParseResult, QueryModel
from .parser import GrammarParser
from .pattern_parser import PatternParser
from .validator import compare_query_models

logger = logging.getLogger(__name__)


class TranspilerOptions(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    debug_mode: bool = Field(False, alias='debugMode')
    dialect: str = 'databricks'


class RoundTripResult(BaseModel):
    """Diagnostic outcome of parse -> generate -> parse."""
    model_config = ConfigDict(populate_by_name=True)

    # The pipeline completed; see is_equivalent for the comparison itself
    success: bool
    is_equivalent: bool = Field(False, alias='isEquivalent')
    new_sql: Optional[str] = Field(None, alias='newSql')
    differences: List[str] = []
    errors: List[str] = []
    warnings: List[str] = []


CAPABILITIES = {
    "supported": [
        "SELECT of qualified columns (alias.column [AS name]) and alias.*",
        "FROM catalog.schema.table [AS] alias",
        "INNER, LEFT, RIGHT and FULL [OUTER] JOIN ... ON a.col = b.col",
        "WHERE with AND-ed =, !=, <>, >, <, LIKE '%text%', IN (...), IS [NOT] NULL",
        "COUNT, SUM, AVG, MIN, MAX, COUNT(DISTINCT ...), COUNT(*)",
        "GROUP BY columns",
        "ORDER BY columns ASC/DESC",
        "LIMIT n",
    ],
    "partially_supported": [
        "CROSS and comma joins (table added without a join)",
        "Multi-condition ON clauses (first equality kept)",
        "HAVING, DISTINCT, OFFSET (dropped with a warning)",
        "Subqueries, window functions and CASE inside SELECT or WHERE items (item skipped)",
        "Unqualified columns (skipped)",
    ],
    "unsupported": [
        "INSERT, UPDATE, DELETE, MERGE and DDL statements",
        "UNION, INTERSECT, EXCEPT",
        "WITH clauses (CTEs)",
        "Subqueries in FROM",
        "Multiple statements",
    ],
}


class SQLTranspiler:
    """
    Bidirectional SQL <-> Query Model conversion.

    Holds only configuration and the injected strategies; no parsed results
    or models are retained between calls.
    """

    def __init__(self, parsers: Sequence[Any], generators: Sequence[Any], options: TranspilerOptions = None):
        if not parsers:
            raise ValueError("At least one parse strategy is required")
        if not generators:
            raise ValueError("At least one generation strategy is required")
        self.parsers = list(parsers)
        self.generators = list(generators)
        self.options = options or TranspilerOptions()

    @staticmethod
    def _strategy_name(strategy: Any) -> str:
        return getattr(strategy, "name", type(strategy).__name__)

    def parse(self, sql: str) -> ParseResult:
        """SQL text -> Query Model. The first strategy that succeeds wins."""
        started = time.perf_counter()
        errors: List[str] = []
        attempted: List[str] = []

        for parser in self.parsers:
            name = self._strategy_name(parser)
            attempted.append(name)
            try:
                result = parser.parse(sql)
            except Exception as e:
                logger.warning(f"[SQLTranspiler] Parse strategy '{name}' raised: {e}")
                errors.append(f"{name}: {e}")
                continue

            if result.success:
                if len(attempted) > 1:
                    logger.info(f"[SQLTranspiler] Parsed with fallback strategy '{name}'")
                self._attach_debug(result, started, attempted)
                return result
            errors.extend(f"{name}: {error}" for error in result.errors)

        logger.info(f"[SQLTranspiler] All parse strategies failed ({len(errors)} errors)")
        result = ParseResult(success=False, errors=errors)
        self._attach_debug(result, started, attempted)
        return result

    def generate(self, model: Union[QueryModel, Dict[str, Any]]) -> GenerationResult:
        """Query Model -> SQL. Falls back through the generators; never raises."""
        started = time.perf_counter()
        errors: List[str] = []
        attempted: List[str] = []

        if not isinstance(model, QueryModel):
            try:
                model = QueryModel.model_validate(model)
            except Exception as e:
                logger.warning(f"[SQLTranspiler] Invalid query model: {e}")
                return GenerationResult(success=False, sql=GENERATION_FAILED_SQL, errors=[f"Invalid query model: {e}"])

        for generator in self.generators:
            name = self._strategy_name(generator)
            attempted.append(name)
            try:
                result = generator.generate(model)
            except Exception as e:
                logger.warning(f"[SQLTranspiler] Generation strategy '{name}' raised: {e}")
                errors.append(f"{name}: {e}")
                continue

            if result.success and result.sql is not None:
                if errors:
                    logger.info(f"[SQLTranspiler] Generated with fallback strategy '{name}'")
                    result.warnings = [f"Fell back to '{name}' generation"] + list(result.warnings)
                self._attach_debug(result, started, attempted)
                return result
            errors.extend(f"{name}: {error}" for error in result.errors)

        logger.error(f"[SQLTranspiler] All generation methods failed: {errors}")
        result = GenerationResult(success=False, sql=GENERATION_FAILED_SQL, errors=errors)
        self._attach_debug(result, started, attempted)
        return result

    def generate_sql(self, model: Union[QueryModel, Dict[str, Any]]) -> str:
        """Always a string: '' for an empty model, a SQL comment when every generator failed."""
        return self.generate(model).sql or ""

    def validate_round_trip(self, sql: str) -> RoundTripResult:
        """Parse, regenerate and reparse, then diff the two models."""
        first = self.parse(sql)
        if not first.success:
            return RoundTripResult(success=False, errors=first.errors)

        generated = self.generate(first.model)
        if not generated.success:
            return RoundTripResult(success=False, new_sql=generated.sql, errors=generated.errors)

        second = self.parse(generated.sql)
        if not second.success:
            return RoundTripResult(
                success=False,
                new_sql=generated.sql,
                errors=["Regenerated SQL could not be parsed"] + second.errors,
            )

        differences = compare_query_models(first.model, second.model)
        return RoundTripResult(
            success=True,
            is_equivalent=not differences,
            new_sql=generated.sql,
            differences=differences,
            warnings=first.warnings,
        )

    def capabilities(self) -> Dict[str, Any]:
        return {
            **CAPABILITIES,
            "dialect": self.options.dialect,
            "parse_strategies": [self._strategy_name(p) for p in self.parsers],
            "generation_strategies": [self._strategy_name(g) for g in self.generators],
        }

    def _attach_debug(self, result, started: float, attempted: List[str]) -> None:
        if not self.options.debug_mode:
            return
        info = dict(result.debug_info or {})
        info["total_duration_ms"] = round((time.perf_counter() - started) * 1000, 3)
        info["attempted"] = list(attempted)
        result.debug_info = info


def create_transpiler(options: TranspilerOptions = None) -> SQLTranspiler:
    """Transpiler wired with the default strategy chains."""
    options = options or TranspilerOptions()
    return SQLTranspiler(
        parsers=[
            GrammarParser(dialect=options.dialect, debug_mode=options.debug_mode),
            PatternParser(debug_mode=options.debug_mode),
        ],
        generators=[
            SQLGenerator(dialect=options.dialect, debug_mode=options.debug_mode),
            OrchestratedSQLGenerator(dialect=options.dialect, debug_mode=options.debug_mode),
            LegacySQLGenerator(dialect=options.dialect, debug_mode=options.debug_mode),
        ],
        options=options,
    )


def parse_sql(sql: str, options: TranspilerOptions = None) -> ParseResult:
    return create_transpiler(options).parse(sql)


def generate_sql(model: Union[QueryModel, Dict[str, Any]], options: TranspilerOptions = None) -> str:
    return create_transpiler(options).generate_sql(model)


def validate_round_trip(sql: str, options: TranspilerOptions = None) -> RoundTripResult:
    return create_transpiler(options).validate_round_trip(sql)
