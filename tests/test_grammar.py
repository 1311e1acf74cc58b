import pytest

from schema_bridge.core.defaults import INT2_RANGE, INT8_RANGE
from schema_bridge.core.grammar import (
    build_array_string,
    canonicalize_catalog_type,
    default_for_column,
    default_name_for_fk,
    default_to_sql,
    fix_numeric,
    format_geometry_point,
    format_line,
    format_point,
    hash_identifier,
    identity_bounds,
    is_serial_expression,
    parse_check_definition,
    parse_on_type,
    parse_view_definition,
    resolve_sequence_options,
    serialize_literal_default,
    split_expressions,
    split_sql_type,
    trim_default_value_suffix,
    wrap_option_value,
)
from schema_bridge.core.ir import ColumnDefault
from schema_bridge.errors import UnreachableCaseError


def test_split_sql_type():
    assert split_sql_type("timestamp(6) with time zone") == ("timestamp with time zone", "6")
    assert split_sql_type("numeric(4,0)") == ("numeric", "4")
    assert split_sql_type("numeric(10, 2)") == ("numeric", "10,2")
    assert split_sql_type("text") == ("text", None)
    assert split_sql_type("character varying(256)") == ("character varying", "256")
    assert split_sql_type("varchar(20)[]") == ("varchar", "20")
    assert split_sql_type("double precision") == ("double precision", None)


def test_canonicalize_catalog_type():
    assert canonicalize_catalog_type("character varying(255)[]") == ("varchar(255)", 1)
    assert canonicalize_catalog_type("timestamp(3) without time zone") == ("timestamp(3)", 0)
    assert canonicalize_catalog_type("numeric(10,2)") == ("numeric(10,2)", 0)
    assert canonicalize_catalog_type("numeric(10, 2)") == ("numeric(10,2)", 0)


def test_trim_default_value_suffix():
    assert trim_default_value_suffix("'a'::text::character varying") == "'a'"
    assert trim_default_value_suffix("42") == "42"


def test_default_for_column_classification():
    assert default_for_column("text", None) is None
    assert default_for_column("text", "'hello'::text") == ColumnDefault(kind="string", value="hello")
    assert default_for_column("integer", "42") == ColumnDefault(kind="number", value="42")
    assert default_for_column("boolean", "true") == ColumnDefault(kind="boolean", value="true")
    assert default_for_column("numeric", "'10.5'::numeric") == ColumnDefault(kind="number", value="10.5")
    assert default_for_column("timestamp", "now()") == ColumnDefault(kind="function", value="now()")


def test_default_for_column_bigint_outside_safe_range():
    got = default_for_column("bigint", "'9007199254740993'::bigint")
    assert got == ColumnDefault(kind="bigint", value="9007199254740993")


def test_default_for_column_json_is_compacted():
    got = default_for_column("jsonb", "'{\"a\": 1}'::jsonb")
    assert got == ColumnDefault(kind="json", value='{"a":1}')


def test_default_for_column_array_literal():
    got = default_for_column("text", "'{a,b}'::text[]", 1)
    assert got == ColumnDefault(kind="string", value="{a,b}")


def test_quoted_defaults_stay_strings():
    assert default_for_column("text", "'true'::text") == ColumnDefault(kind="string", value="true")
    assert default_for_column("text", "'NULL'::text") == ColumnDefault(kind="string", value="NULL")
    assert default_for_column("character varying(8)", "'42'::character varying") == ColumnDefault(kind="string", value="42")
    assert default_for_column("integer", "'-1'::integer") == ColumnDefault(kind="number", value="-1")
    assert default_for_column("text", "NULL") == ColumnDefault(kind="null", value="NULL")


def test_default_to_sql():
    assert default_to_sql(ColumnDefault(kind="string", value="hi"), "text") == "'hi'"
    assert default_to_sql(ColumnDefault(kind="bigint", value="9007199254740993"), "bigint") == "'9007199254740993'"
    assert default_to_sql(ColumnDefault(kind="json", value='{"a":"it\'s"}'), "jsonb") == "'{\"a\":\"it''s\"}'"
    assert default_to_sql(ColumnDefault(kind="number", value="1"), "integer") == "1"
    assert default_to_sql(None, "text") == ""


def test_default_to_sql_enum_types():
    default = ColumnDefault(kind="string", value="pending")
    assert default_to_sql(default, "order_status", type_schema="public") == "'pending'::\"order_status\""
    assert default_to_sql(default, "order_status", type_schema="app") == "'pending'::\"app\".\"order_status\""


def test_default_to_sql_unknown_kind():
    with pytest.raises(UnreachableCaseError):
        default_to_sql(ColumnDefault.model_construct(kind="weird", value="x"), "text")


def test_default_round_trip():
    for default, sql_type in (
        (ColumnDefault(kind="string", value="hi"), "text"),
        (ColumnDefault(kind="number", value="3"), "integer"),
        (ColumnDefault(kind="boolean", value="false"), "boolean"),
        (ColumnDefault(kind="string", value="true"), "text"),
        (ColumnDefault(kind="string", value="NULL"), "text"),
        (ColumnDefault(kind="string", value="42"), "text"),
        (ColumnDefault(kind="string", value="it''s"), "text"),
        (ColumnDefault(kind="number", value="-1"), "integer"),
        (ColumnDefault(kind="bigint", value="9007199254740993"), "bigint"),
        (ColumnDefault(kind="json", value='{"a":1}'), "jsonb"),
        (ColumnDefault(kind="null", value="NULL"), "text"),
    ):
        assert default_for_column(sql_type, default_to_sql(default, sql_type)) == default


def test_hash_identifier_is_deterministic():
    first = hash_identifier("users_org_id_orgs_id_fkey")
    assert first == hash_identifier("users_org_id_orgs_id_fkey")
    assert len(first) == 12
    assert first.isalnum()
    assert first != hash_identifier("users_org_id_orgs_id_fkey2")


def test_fk_name_fits_limit():
    assert default_name_for_fk("users", ["org_id"], "orgs", ["id"]) == "users_org_id_orgs_id_fkey"

    medium = "a" * 30
    name = default_name_for_fk(medium, ["b" * 20], "c" * 20, ["id"])
    assert name.startswith(medium + "_")
    assert name.endswith("_fkey")
    assert len(name) <= 63

    long = "t" * 50
    name = default_name_for_fk(long, ["col"], "other", ["id"])
    assert not name.startswith(long)
    assert name.endswith("_fkey")
    assert len(name) == 17


def test_fk_name_limit_counts_bytes():
    table = "é" * 20
    desired = f"{table}_{'é' * 10}_t_id_fkey"
    assert len(desired) <= 63 < len(desired.encode())
    name = default_name_for_fk(table, ["é" * 10], "t", ["id"])
    assert name != desired
    assert name.startswith(table + "_")
    assert len(name.encode()) <= 63

    name = default_name_for_fk("é" * 30, ["c"], "t", ["id"])
    assert len(name) == 17


def test_split_expressions():
    text = "lower(name), 'a,b', \"x,y\", coalesce(a, b)"
    assert split_expressions(text) == ["lower(name)", "'a,b'", '"x,y"', "coalesce(a, b)"]
    assert split_expressions("'it''s, fine', b") == ["'it''s, fine'", "b"]
    assert split_expressions("a), b") == ["a)", "b"]
    assert split_expressions("a,,b") == ["a", "b"]
    assert split_expressions(None) == []


def test_identity_bounds():
    assert identity_bounds("bigint") == INT8_RANGE
    assert identity_bounds("numeric") == INT2_RANGE


def test_sequence_options_follow_increment_sign():
    descending = resolve_sequence_options({"increment": -1}, INT2_RANGE)
    assert descending == {
        "increment": "-1",
        "min_value": "-32768",
        "max_value": "-1",
        "start_with": "-1",
        "cache": "1",
    }
    ascending = resolve_sequence_options({}, ("-2147483648", "2147483647"))
    assert ascending["min_value"] == "1"
    assert ascending["max_value"] == "2147483647"
    assert ascending["start_with"] == "1"


def test_parse_on_type():
    assert parse_on_type("c") == "CASCADE"
    assert parse_on_type("a") == "NO ACTION"
    with pytest.raises(UnreachableCaseError):
        parse_on_type("x")


def test_is_serial_expression():
    assert is_serial_expression("nextval('users_id_seq'::regclass)", "public")
    assert is_serial_expression("nextval('app.users_id_seq'::regclass)", "app")
    assert not is_serial_expression("nextval('users_id_seq'::regclass)", "app")
    assert not is_serial_expression("now()", "public")
    assert not is_serial_expression(None, "public")


def test_catalog_text_helpers():
    assert wrap_option_value("true") is True
    assert wrap_option_value("70") == 70
    assert wrap_option_value("0.5") == 0.5
    assert wrap_option_value("abc") == "abc"
    assert parse_view_definition("SELECT  1\n  FROM t;") == "SELECT 1 FROM t"
    assert parse_check_definition("CHECK ((amount >= 0))") == "amount >= 0"


def test_fix_numeric():
    assert fix_numeric("1.5", 2) == "1.50"
    assert fix_numeric("1.555", 2) == "1.55"
    assert fix_numeric("1.5", 0) == "1"
    assert fix_numeric("1", 2) == "1"


def test_literal_serializers():
    assert build_array_string([1, 2, None], "integer") == "{1,2,NULL}"
    assert build_array_string([["a", "b c"]], "text") == '{{a,"b c"}}'
    assert build_array_string([], "text") == "{}"
    assert format_point((1, 2)) == "(1,2)"
    assert format_line((1, 2, 3)) == "{1,2,3}"
    assert format_geometry_point((1.5, 2), 4326) == "SRID=4326;POINT(1.5 2)"


def test_serialize_literal_default():
    assert serialize_literal_default("10.5", "numeric", options="12,2") == ColumnDefault(kind="string", value="10.50")
    assert serialize_literal_default({"a": 1}, "jsonb") == ColumnDefault(kind="json", value='{"a":1}')
    assert serialize_literal_default("it's", "text") == ColumnDefault(kind="string", value="it''s")
    assert serialize_literal_default(True, "boolean") == ColumnDefault(kind="boolean", value="true")
    assert serialize_literal_default(2**60, "bigint") == ColumnDefault(kind="bigint", value=str(2**60))
