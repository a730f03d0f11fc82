"""Tests for the transpiler orchestrator: fallback chains, round trips and no-throw behaviour."""

import pytest
from canvas_sql import (
    QueryModel,
    TableReference,
    Join,
    ParseResult,
    GenerationResult,
    SQLTranspiler,
    TranspilerOptions,
    GrammarParser,
    PatternParser,
    SQLGenerator,
    LegacySQLGenerator,
    GENERATION_FAILED_SQL,
    create_transpiler,
    parse_sql,
    generate_sql,
    validate_round_trip,
)


RICH_SQL = """
SELECT c.c_first_name, COUNT(*) AS cnt
FROM samples.tpcds_sf1.customer AS c
INNER JOIN samples.tpcds_sf1.orders AS o ON c.c_customer_sk = o.o_custkey
WHERE o.o_status = 'F' AND o.o_total > 100 AND c.c_last_name LIKE '%son%'
GROUP BY c.c_first_name
ORDER BY c.c_first_name DESC
LIMIT 10
"""


class ExplodingParser:
    name = "exploding"

    def parse(self, sql):
        raise RuntimeError("boom")


class FailingParser:
    name = "failing"

    def parse(self, sql):
        return ParseResult(success=False, errors=["nope"])


class ExplodingGenerator:
    name = "exploding"

    def generate(self, model):
        raise RuntimeError("kaboom")


class FailingGenerator:
    name = "failing"

    def generate(self, model):
        return GenerationResult(success=False, errors=["cannot"])


@pytest.fixture
def transpiler():
    return create_transpiler()


class TestParseChain:
    """Test the parse fallback chain."""

    def test_grammar_wins_for_valid_sql(self, transpiler):
        """Valid SQL is handled by the grammar strategy"""
        result = transpiler.parse(RICH_SQL)
        assert result.success
        assert result.strategy == 'grammar'
        assert [t.id for t in result.tables] == ['c', 'o']

    def test_pattern_fallback(self, transpiler):
        """Truncated SQL the grammar rejects still yields tables through the pattern strategy"""
        result = transpiler.parse("SELECT c.a FROM cat.s.t AS c WHERE c.a = ")
        assert result.success
        assert result.strategy == 'pattern'
        assert result.tables[0].name == 't'

    def test_fallback_after_failure(self):
        """A failing strategy hands over to the next one"""
        transpiler = SQLTranspiler(parsers=[FailingParser(), PatternParser()], generators=[SQLGenerator()])
        result = transpiler.parse("SELECT c.a FROM t AS c")
        assert result.success
        assert result.strategy == 'pattern'

    def test_exception_is_absorbed(self):
        """A strategy that raises is treated as a failure"""
        transpiler = SQLTranspiler(parsers=[ExplodingParser(), GrammarParser()], generators=[SQLGenerator()])
        result = transpiler.parse("SELECT c.a FROM t AS c")
        assert result.success
        assert result.strategy == 'grammar'

    def test_all_strategies_fail(self, transpiler):
        """Errors from every strategy are collected and prefixed with its name"""
        result = transpiler.parse("SELECT FROM WHERE")
        assert not result.success
        assert result.tables == []
        assert any(e.startswith('grammar:') for e in result.errors)
        assert any(e.startswith('pattern:') for e in result.errors)

    def test_only_exploding_strategies(self):
        """Even when every strategy raises, parse returns a result"""
        transpiler = SQLTranspiler(parsers=[ExplodingParser()], generators=[SQLGenerator()])
        result = transpiler.parse("SELECT 1")
        assert not result.success
        assert result.errors == ["exploding: boom"]

    def test_strategies_required(self):
        """A transpiler needs at least one strategy of each kind"""
        with pytest.raises(ValueError):
            SQLTranspiler(parsers=[], generators=[SQLGenerator()])
        with pytest.raises(ValueError):
            SQLTranspiler(parsers=[GrammarParser()], generators=[])


class TestGenerateChain:
    """Test the generation fallback chain."""

    def test_primary_strategy(self, transpiler):
        """Well-formed models are generated by the primary strategy without fallback warnings"""
        result = transpiler.generate(transpiler.parse(RICH_SQL).model)
        assert result.success
        assert result.strategy == 'ast'
        assert not any('Fell back' in w for w in result.warnings)

    def test_fallback_to_legacy(self):
        """Failing strategies fall through to the legacy generator with a warning"""
        transpiler = SQLTranspiler(
            parsers=[GrammarParser()],
            generators=[ExplodingGenerator(), FailingGenerator(), LegacySQLGenerator()],
        )
        model = QueryModel(tables=[TableReference(id='t', name='things')])
        result = transpiler.generate(model)
        assert result.success
        assert result.strategy == 'legacy'
        assert result.sql == "SELECT t.*\nFROM things AS t"
        assert result.warnings[0] == "Fell back to 'legacy' generation"

    def test_all_generators_fail(self):
        """When every strategy fails the sentinel comment is returned"""
        transpiler = SQLTranspiler(parsers=[GrammarParser()], generators=[ExplodingGenerator(), FailingGenerator()])
        result = transpiler.generate(QueryModel(tables=[TableReference(id='t', name='things')]))
        assert not result.success
        assert result.sql == GENERATION_FAILED_SQL
        assert result.errors == ["exploding: kaboom", "failing: cannot"]
        assert transpiler.generate_sql(QueryModel()) == GENERATION_FAILED_SQL

    def test_invalid_dict_model(self, transpiler):
        """A payload that is not a Query Model yields the sentinel instead of raising"""
        result = transpiler.generate({"tables": [{"id": "t"}]})
        assert not result.success
        assert result.sql == GENERATION_FAILED_SQL
        assert result.errors[0].startswith("Invalid query model")

    def test_camel_case_dict_model(self, transpiler):
        """A camelCase payload is accepted"""
        sql = transpiler.generate_sql({
            "tables": [{"id": "t", "name": "things", "schema": "s"}],
            "selectedColumns": [{"table": "t", "column": "a"}],
        })
        assert sql == "SELECT t.a\nFROM s.things AS t"

    def test_empty_model(self, transpiler):
        """An empty model generates an empty string"""
        assert transpiler.generate_sql(QueryModel()) == ""

    def test_dangling_references_do_not_raise(self, transpiler):
        """Joins to missing tables become comments"""
        model = QueryModel(
            tables=[TableReference(id='c', name='customer')],
            joins=[Join(source_table='c', source_column='a', target_table='gone', target_column='b')],
        )
        sql = transpiler.generate_sql(model)
        assert sql.startswith("SELECT c.*\nFROM customer AS c")
        assert "-- Skipped JOIN: target table not found for gone" in sql


class TestRoundTrip:
    """Test parse -> generate -> parse."""

    def test_rich_query_is_equivalent(self, transpiler):
        """Every supported construct survives a round trip"""
        result = transpiler.validate_round_trip(RICH_SQL)
        assert result.success
        assert result.is_equivalent
        assert result.differences == []
        assert "LIMIT 10" in result.new_sql

    def test_unparseable_sql(self, transpiler):
        """A round trip that cannot parse reports failure"""
        result = transpiler.validate_round_trip("SELECT FROM WHERE")
        assert not result.success
        assert not result.is_equivalent
        assert result.errors

    def test_camel_case_dump(self, transpiler):
        """Round-trip results serialize with camelCase keys"""
        data = transpiler.validate_round_trip(RICH_SQL).model_dump(by_alias=True)
        assert data['isEquivalent'] is True
        assert 'newSql' in data

    @pytest.mark.parametrize("sql", [
        "SELECT c.c_first_name FROM samples.tpcds_sf1.customer AS c",
        "SELECT c.a, o.b FROM s.customer AS c LEFT JOIN s.orders AS o ON c.id = o.cid",
        "SELECT t.status FROM s.tickets AS t WHERE t.status IN ('A', 'B')",
        "SELECT t.a FROM s.t AS t WHERE t.b IS NULL AND t.c IS NOT NULL AND t.d != 'x'",
        "SELECT SUM(t.amount) AS total, t.region FROM s.sales AS t GROUP BY t.region ORDER BY t.region LIMIT 5",
        "SELECT t.name FROM s.people AS t WHERE t.name = 'O''Brien'",
    ])
    def test_idempotent(self, transpiler, sql):
        """generate(parse(generate(parse(s)))) equals generate(parse(s))"""
        first = transpiler.generate_sql(transpiler.parse(sql).model)
        second = transpiler.generate_sql(transpiler.parse(first).model)
        assert first == second
        assert transpiler.validate_round_trip(sql).is_equivalent


class TestNoThrow:
    """Test that nothing escapes the public operations."""

    @pytest.mark.parametrize("sql", [
        "",
        "   ",
        ";;;",
        "SELECT",
        "SELECT * FROM",
        "DROP TABLE customer",
        "SELECT a.x FROM t AS a; SELECT b.y FROM u AS b",
        "WITH x AS (SELECT 1) SELECT * FROM x",
        "SELECT 'unterminated FROM t",
        "SELECT c.a FROM t AS c JOIN u AS c ON c.id = c.id",
        "\x00\x01 garbage",
    ])
    def test_adversarial_input(self, transpiler, sql):
        """Parse and round trip always return results"""
        result = transpiler.parse(sql)
        assert isinstance(result, ParseResult)
        if not result.success:
            assert result.errors
            assert result.tables == []
        assert transpiler.validate_round_trip(sql) is not None


class TestOptions:
    """Test configuration, capabilities and debug info."""

    def test_debug_info(self):
        """Debug mode records the attempted strategies and total time"""
        transpiler = create_transpiler(TranspilerOptions(debug_mode=True))
        result = transpiler.parse("SELECT c.a FROM cat.s.t AS c WHERE c.a = ")
        assert result.debug_info['attempted'] == ['grammar', 'pattern']
        assert 'total_duration_ms' in result.debug_info

    def test_debug_option_alias(self):
        """Options accept the camelCase debugMode key"""
        assert TranspilerOptions.model_validate({"debugMode": True}).debug_mode

    def test_no_debug_info_by_default(self, transpiler):
        """Debug info is absent unless requested"""
        assert transpiler.parse(RICH_SQL).debug_info is None

    def test_capabilities(self, transpiler):
        """Capabilities list the strategy chains and construct support"""
        caps = transpiler.capabilities()
        assert caps['parse_strategies'] == ['grammar', 'pattern']
        assert caps['generation_strategies'] == ['ast', 'orchestrated', 'legacy']
        assert caps['dialect'] == 'databricks'
        assert caps['supported'] and caps['unsupported']

    def test_independent_instances(self):
        """Transpilers share no state"""
        a = create_transpiler(TranspilerOptions(debug_mode=True))
        b = create_transpiler()
        assert a.parsers[0] is not b.parsers[0]
        assert b.parse(RICH_SQL).debug_info is None

    def test_module_functions(self):
        """Module-level helpers build a fresh transpiler per call"""
        assert parse_sql(RICH_SQL).success
        assert generate_sql({"tables": [{"id": "t", "name": "x"}]}) == "SELECT t.*\nFROM x AS t"
        assert validate_round_trip(RICH_SQL).is_equivalent
