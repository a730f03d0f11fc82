"""Unit tests for Query Model -> SQL generation."""

import pytest
from canvas_sql import (
    QueryModel,
    TableReference,
    Join,
    Filter,
    Aggregation,
    SelectedColumn,
    OrderByItem,
    Column,
    SQLGenerator,
    OrchestratedSQLGenerator,
    LegacySQLGenerator,
    generate_sql_legacy,
)
from canvas_sql.generator import format_value, render_filter, render_aggregation
from canvas_sql.validator import types_compatible


def table(alias, name, columns=None, catalog='samples', schema='tpcds_sf1'):
    return TableReference(
        id=alias, name=name, catalog=catalog, schema=schema,
        columns=[Column(name=n, data_type=t) for n, t in (columns or [])],
    )


def customer_orders(customer_key_type=None, order_key_type=None) -> QueryModel:
    customer_cols = [('c_customer_sk', customer_key_type)] if customer_key_type else []
    order_cols = [('o_custkey', order_key_type)] if order_key_type else []
    model = QueryModel()
    model.add_table(table('c', 'customer', customer_cols))
    model.add_table(table('o', 'orders', order_cols))
    model.add_join(Join(id='j1', source_table='c', source_column='c_customer_sk',
                        target_table='o', target_column='o_custkey', join_type='INNER'))
    return model


def rich_model() -> QueryModel:
    model = customer_orders('bigint', 'int')
    model.add_selected_column(SelectedColumn(id='s1', table='c', column='c_first_name', alias='first_name'))
    model.add_aggregation(Aggregation(id='a1', table='o', column='*', function='COUNT', alias='cnt'))
    model.add_aggregation(Aggregation(id='a2', table='o', column='o_total', function='SUM'))
    model.add_filter(Filter(id='f1', table='o', column='o_status', operator='in', value=['A', 'B']))
    model.add_filter(Filter(id='f2', table='c', column='c_name', operator='like', value='smi'))
    model.set_group_by(['c.c_first_name'])
    model.set_order_by([OrderByItem(column='c.c_first_name', direction='DESC')])
    model.set_limit(10)
    return model


ALL_GENERATORS = [SQLGenerator, OrchestratedSQLGenerator, LegacySQLGenerator]


class TestExampleScenarios:
    """Test the reference generation scenarios."""

    def test_inner_join_default_select(self):
        """Two tables joined INNER with nothing selected render SELECT <first>.*"""
        result = SQLGenerator().generate(customer_orders())
        assert result.success
        assert result.strategy == 'ast'
        assert result.sql == (
            "SELECT c.*\n"
            "FROM samples.tpcds_sf1.customer AS c\n"
            "INNER JOIN samples.tpcds_sf1.orders AS o\n"
            "  ON c.c_customer_sk = o.o_custkey"
        )

    def test_incompatible_join_is_skipped(self):
        """A string/int join becomes a comment; other joins still render"""
        model = customer_orders('string', 'int')
        model.update_table_columns('c', [Column(name='c_customer_sk', data_type='string'),
                                         Column(name='c_nationkey', data_type='int')])
        model.add_table(table('n', 'nation', [('n_nationkey', 'bigint')]))
        model.add_join(Join(id='j2', source_table='c', source_column='c_nationkey',
                            target_table='n', target_column='n_nationkey'))

        result = SQLGenerator().generate(model)
        assert result.success
        assert "-- Skipped invalid JOIN: c.c_customer_sk (string) incompatible with o.o_custkey (int)" in result.sql
        assert "JOIN samples.tpcds_sf1.orders" not in result.sql
        assert "FROM samples.tpcds_sf1.customer AS c" in result.sql
        assert "INNER JOIN samples.tpcds_sf1.nation AS n\n  ON c.c_nationkey = n.n_nationkey" in result.sql
        assert any('incompatible' in w for w in result.warnings)

    @pytest.mark.parametrize("generator_class", ALL_GENERATORS)
    def test_empty_model(self, generator_class):
        """An empty model renders as an empty string"""
        result = generator_class().generate(QueryModel())
        assert result.success
        assert result.sql == ""

    def test_in_filter(self):
        """IN renders a quoted value list"""
        f = Filter(table='t', column='status', operator='in', value=['A', 'B'])
        assert render_filter(f) == "t.status IN ('A', 'B')"

        model = QueryModel()
        model.add_table(table('t', 'tickets'))
        model.add_filter(f)
        assert "WHERE t.status IN ('A', 'B')" in SQLGenerator().generate(model).sql


class TestRendering:
    """Test clause rendering rules."""

    @pytest.mark.parametrize("operator,value,expected", [
        ('equals', 'x', "t.c = 'x'"),
        ('not_equals', 'x', "t.c != 'x'"),
        ('greater_than', 100, "t.c > '100'"),
        ('less_than', 1.5, "t.c < '1.5'"),
        ('like', 'smith', "t.c LIKE '%smith%'"),
        ('in', 'A', "t.c IN ('A')"),
        ('is_null', None, "t.c IS NULL"),
        ('is_not_null', None, "t.c IS NOT NULL"),
    ])
    def test_filter_operators(self, operator, value, expected):
        """Each operator renders its SQL predicate"""
        assert render_filter(Filter(table='t', column='c', operator=operator, value=value)) == expected

    def test_quotes_are_doubled(self):
        """Embedded single quotes are escaped by doubling"""
        assert format_value("O'Brien") == "'O''Brien'"
        f = Filter(table='t', column='name', operator='equals', value="O'Brien")
        assert render_filter(f) == "t.name = 'O''Brien'"

    @pytest.mark.parametrize("function,column,alias,expected", [
        ('COUNT', '*', None, "COUNT(*)"),
        ('COUNT', '*', 'cnt', "COUNT(*) AS cnt"),
        ('SUM', 'amount', None, "SUM(t.amount)"),
        ('COUNT_DISTINCT', 'id', 'ids', "COUNT(DISTINCT t.id) AS ids"),
        ('MAX', 'amount', None, "MAX(t.amount)"),
    ])
    def test_aggregations(self, function, column, alias, expected):
        """Aggregations render FUNC(t.col) with optional alias"""
        assert render_aggregation(Aggregation(table='t', column=column, function=function, alias=alias)) == expected

    def test_full_statement(self):
        """Clauses render in order, one per line"""
        sql = SQLGenerator().generate(rich_model()).sql
        assert sql == (
            "SELECT c.c_first_name AS first_name, COUNT(*) AS cnt, SUM(o.o_total)\n"
            "FROM samples.tpcds_sf1.customer AS c\n"
            "INNER JOIN samples.tpcds_sf1.orders AS o\n"
            "  ON c.c_customer_sk = o.o_custkey\n"
            "WHERE o.o_status IN ('A', 'B') AND c.c_name LIKE '%smi%'\n"
            "GROUP BY c.c_first_name\n"
            "ORDER BY c.c_first_name DESC\n"
            "LIMIT 10"
        )

    def test_missing_name_parts_omitted(self):
        """Tables without catalog or schema render just the name"""
        model = QueryModel()
        model.add_table(table('t', 'things', catalog='', schema=''))
        assert SQLGenerator().generate(model).sql == "SELECT t.*\nFROM things AS t"

    def test_full_join_spelling(self):
        """FULL joins render as FULL JOIN"""
        model = customer_orders()
        model.update_join_type('j1', 'FULL')
        assert "FULL JOIN samples.tpcds_sf1.orders AS o" in SQLGenerator().generate(model).sql

    def test_dangling_join_target(self):
        """A join whose target is missing becomes a comment instead of an error"""
        model = QueryModel(
            tables=[table('c', 'customer')],
            joins=[Join(source_table='c', source_column='a', target_table='x', target_column='b')],
        )
        sql = SQLGenerator().generate(model).sql
        assert "-- Skipped JOIN: target table not found for x" in sql
        assert "JOIN x" not in sql

    def test_dangling_join_source(self):
        """A join whose source is missing becomes a comment as well"""
        model = QueryModel(
            tables=[table('c', 'customer')],
            joins=[Join(source_table='x', source_column='a', target_table='c', target_column='b')],
        )
        assert "-- Skipped JOIN: source table not found for x" in generate_sql_legacy(model)

    def test_join_to_itself_skipped(self):
        """A join whose two ends share an alias would repeat that alias, so it becomes a comment"""
        model = QueryModel(
            tables=[table('c', 'customer')],
            joins=[Join(source_table='c', source_column='a', target_table='c', target_column='b')],
        )
        for generator_class in ALL_GENERATORS:
            sql = generator_class().generate(model).sql
            assert sql.count("customer AS c") == 1
            assert "-- Skipped JOIN: table c cannot be joined to itself under one alias" in sql

    @pytest.mark.parametrize("join_type,rendered_type", [
        ('INNER', 'INNER'),
        ('LEFT', 'RIGHT'),
        ('RIGHT', 'LEFT'),
        ('FULL', 'FULL'),
    ])
    def test_join_into_from_table_brings_in_source(self, join_type, rendered_type):
        """A join drawn towards the FROM table joins its source instead of repeating FROM"""
        model = QueryModel()
        model.add_table(table('c', 'customer'))
        model.add_table(table('o', 'orders'))
        model.add_join(Join(id='j1', source_table='o', source_column='o_custkey',
                            target_table='c', target_column='c_customer_sk', join_type=join_type))

        for generator_class in ALL_GENERATORS:
            assert generator_class().generate(model).sql == (
                "SELECT c.*\n"
                "FROM samples.tpcds_sf1.customer AS c\n"
                f"{rendered_type} JOIN samples.tpcds_sf1.orders AS o\n"
                "  ON o.o_custkey = c.c_customer_sk"
            )

    def test_join_into_joined_table_brings_in_source(self):
        """The same holds for a target brought in by an earlier join"""
        model = customer_orders()
        model.add_table(table('l', 'lineitem'))
        model.add_join(Join(id='j2', source_table='l', source_column='l_orderkey',
                            target_table='o', target_column='o_orderkey', join_type='LEFT'))

        sql = SQLGenerator().generate(model).sql
        assert sql.count("orders AS o") == 1
        assert sql.endswith("RIGHT JOIN samples.tpcds_sf1.lineitem AS l\n  ON l.l_orderkey = o.o_orderkey")
        assert generate_sql_legacy(model) == sql

    @pytest.mark.parametrize("generator_class", ALL_GENERATORS)
    def test_unknown_aliases_are_warned(self, generator_class):
        """Filters and selected columns on a missing alias are rendered but reported"""
        model = QueryModel(
            tables=[table('c', 'customer')],
            filters=[Filter(table='zz', column='a', operator='equals', value='1')],
            selected_columns=[SelectedColumn(table='qq', column='b')],
        )
        result = generator_class().generate(model)
        assert result.success
        assert "Filter zz.a references unknown table 'zz'" in result.warnings
        assert "Selected column qq.b references unknown table 'qq'" in result.warnings


class TestJoinCompatibility:
    """Test type compatibility used before each JOIN."""

    @pytest.mark.parametrize("left,right,expected", [
        ('int', 'bigint', True),
        ('DECIMAL(10,2)', 'int', True),
        ('STRING', 'string', True),
        ('string', 'int', False),
        ('date', 'string', False),
        ('', 'int', True),
        (None, 'string', True),
    ])
    def test_types_compatible(self, left, right, expected):
        """Identical or both-numeric types are compatible; unknown types are too"""
        assert types_compatible(left, right) is expected

    @pytest.mark.parametrize("left,right,emitted", [
        ('int', 'bigint', True),
        ('decimal(10,2)', 'double', True),
        ('varchar', 'varchar', True),
        ('string', 'int', False),
        ('timestamp', 'date', False),
    ])
    def test_join_emitted_only_when_compatible(self, left, right, emitted):
        """A join is always emitted for compatible types and never for incompatible ones"""
        sql = SQLGenerator().generate(customer_orders(left, right)).sql
        assert ("INNER JOIN samples.tpcds_sf1.orders AS o" in sql) is emitted
        assert ("-- Skipped invalid JOIN" in sql) is (not emitted)

    def test_unknown_column_is_compatible(self):
        """A join column missing from metadata does not block the join"""
        model = customer_orders()
        model.update_table_columns('c', [Column(name='other', data_type='string')])
        model.update_table_columns('o', [Column(name='o_custkey', data_type='int')])
        assert "INNER JOIN" in SQLGenerator().generate(model).sql


class TestStrategies:
    """Test the three generation strategies."""

    def test_deterministic(self):
        """The same model always renders byte-identical SQL"""
        model = rich_model()
        outputs = {SQLGenerator().generate(model).sql for _ in range(5)}
        assert len(outputs) == 1

    def test_strategies_agree(self):
        """All strategies implement the same rules"""
        model = rich_model()
        outputs = [cls().generate(model).sql for cls in ALL_GENERATORS]
        assert outputs[0] == outputs[1] == outputs[2]

    def test_strategies_agree_on_skipped_joins(self):
        """Skip comments are identical across strategies"""
        model = customer_orders('string', 'int')
        outputs = [cls().generate(model).sql for cls in ALL_GENERATORS]
        assert outputs[0] == outputs[1] == outputs[2]

    def test_orchestrated_reports_disconnected_tables(self):
        """Tables no join reaches are reported as warnings"""
        model = QueryModel()
        model.add_table(table('a', 'alpha'))
        model.add_table(table('b', 'beta'))
        result = OrchestratedSQLGenerator().generate(model)
        assert result.success
        assert result.sql == "SELECT a.*\nFROM samples.tpcds_sf1.alpha AS a"
        assert any("'b' is not connected" in w for w in result.warnings)

    def test_syntax_check_failure(self):
        """The primary strategy fails when its output does not parse; the orchestrated one warns"""
        model = QueryModel()
        model.add_table(table('t', 'things'))
        model.add_selected_column(SelectedColumn(table='t', column="x'y"))

        primary = SQLGenerator().generate(model)
        assert not primary.success
        assert 'syntax check' in primary.errors[0]

        orchestrated = OrchestratedSQLGenerator().generate(model)
        assert orchestrated.success
        assert orchestrated.sql == primary.sql
        assert any('syntax check' in w for w in orchestrated.warnings)

    def test_debug_info(self):
        """Debug mode reports timing and counts"""
        result = LegacySQLGenerator(debug_mode=True).generate(rich_model())
        assert result.debug_info['joins'] == 1
        assert 'duration_ms' in result.debug_info
