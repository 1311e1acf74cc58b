import asyncio
import json

import pytest

from schema_bridge.core.filter import EntitiesParams, EntityFilterParams, RolesFilter, prepare_entity_filter
from schema_bridge.core.registry import IntrospectorRegistry
from schema_bridge.introspect.postgres import PostgresIntrospector


class FakeDatabase:
    """Answers catalog queries by matching a marker in the SQL text."""

    def __init__(self, answers, fail_on=None):
        self.answers = answers
        self.fail_on = fail_on
        self.issued = []

    async def query(self, sql):
        self.issued.append(sql)
        if self.fail_on and self.fail_on in sql:
            raise RuntimeError("catalog is gone")
        for marker, rows in self.answers:
            if marker in sql:
                return [dict(row) for row in rows]
        raise AssertionError(f"unexpected query: {sql}")


def column(table_id, name, ordinality, sql_type, type_id=23, kind="r", not_null=False, dims=0, generated="", identity="", metadata=None):
    return {
        "tableId": table_id,
        "kind": kind,
        "name": name,
        "ordinality": ordinality,
        "notNull": not_null,
        "dimensions": dims,
        "typeId": type_id,
        "generatedType": generated,
        "identityType": identity,
        "type": sql_type,
        "metadata": metadata,
    }


def constraint(name, kind, table_id, ordinals, definition, index_id=0, table_to=0, ordinals_to=None, on_update=" ", on_delete=" "):
    return {
        "oid": hash(name) & 0xFFFF,
        "schemaId": 2200,
        "tableId": table_id,
        "name": name,
        "type": kind,
        "definition": definition,
        "indexId": index_id,
        "columnsOrdinals": ordinals,
        "tableToId": table_to,
        "columnsToOrdinals": ordinals_to,
        "onUpdate": on_update,
        "onDelete": on_delete,
    }


IDENTITY = json.dumps(
    {
        "seqId": 701,
        "generation": "ALWAYS",
        "start": "1",
        "increment": "1",
        "max": "9223372036854775807",
        "min": "1",
        "cycle": "NO",
        "expression": None,
    }
)

CATALOG = [
    ("FROM pg_opclass", [{"oid": 3124, "default": True, "name": "int4_ops"}, {"oid": 3126, "default": False, "name": "text_pattern_ops"}]),
    ("FROM pg_tablespace", [{"oid": 1663, "name": "pg_default"}]),
    (
        "FROM pg_namespace",
        [
            {"oid": 11, "name": "pg_catalog"},
            {"oid": 99, "name": "pg_toast"},
            {"oid": 2200, "name": "public"},
            {"oid": 300, "name": "app"},
        ],
    ),
    (
        "relkind IN ('r', 'v', 'm')",
        [
            {"oid": 1000, "schemaId": 2200, "name": "users", "kind": "r", "accessMethod": 2, "options": None, "tablespaceId": 0, "rlsEnabled": True, "definition": None},
            {"oid": 1001, "schemaId": 2200, "name": "orders", "kind": "r", "accessMethod": 2, "options": None, "tablespaceId": 0, "rlsEnabled": False, "definition": None},
            {
                "oid": 1002,
                "schemaId": 2200,
                "name": "active_users",
                "kind": "v",
                "accessMethod": 0,
                "options": ["security_barrier=true", "check_option=local", "custom_opt=5"],
                "tablespaceId": 0,
                "rlsEnabled": False,
                "definition": " SELECT users.id\n   FROM users;",
            },
        ],
    ),
    (
        "FROM pg_depend",
        [
            {"oid": 700, "tableId": 1000, "ordinality": 1, "deptype": "a"},
            {"oid": 701, "tableId": 1001, "ordinality": 1, "deptype": "i"},
        ],
    ),
    (
        "FROM pg_type JOIN pg_enum",
        [
            {"oid": 500, "name": "status", "schemaId": 2200, "arrayTypeId": 501, "ordinality": 1, "value": "active"},
            {"oid": 500, "name": "status", "schemaId": 2200, "arrayTypeId": 501, "ordinality": 2, "value": "disabled"},
        ],
    ),
    (
        "FROM pg_attrdef",
        [
            {"tableId": 1000, "ordinality": 1, "expression": "nextval('users_id_seq'::regclass)"},
            {"tableId": 1000, "ordinality": 3, "expression": "'active'::status"},
        ],
    ),
    (
        "FROM pg_sequence",
        [
            {"schemaId": 2200, "name": "users_id_seq", "oid": 700, "startWith": 1, "minValue": 1, "maxValue": 2147483647, "incrementBy": 1, "cycle": False, "cacheSize": 1},
            {"schemaId": 2200, "name": "orders_id_seq", "oid": 701, "startWith": 1, "minValue": 1, "maxValue": 9223372036854775807, "incrementBy": 1, "cycle": False, "cacheSize": 1},
            {"schemaId": 2200, "name": "invoice_seq", "oid": 702, "startWith": 100, "minValue": 1, "maxValue": 1000, "incrementBy": 5, "cycle": True, "cacheSize": 10},
        ],
    ),
    (
        "FROM pg_policies",
        [
            {"schema": "public", "table": "users", "name": "users_self", "as": "PERMISSIVE", "to": "{app,admin}", "for": "SELECT", "using": "(id = 1)", "withCheck": None},
        ],
    ),
    (
        "FROM pg_roles",
        [
            {"rolname": "app", "rolsuper": False, "rolinherit": True, "rolcreatedb": True, "rolcreaterole": False, "rolcanlogin": True, "rolreplication": False, "rolbypassrls": False, "rolconnlimit": -1, "rolvaliduntil": None},
            {"rolname": "postgres", "rolsuper": True, "rolinherit": True, "rolcreatedb": True, "rolcreaterole": True, "rolcanlogin": True, "rolreplication": True, "rolbypassrls": True, "rolconnlimit": -1, "rolvaliduntil": None},
        ],
    ),
    (
        "FROM pg_constraint",
        [
            constraint("orders_total_check", "c", 1001, [3], "CHECK ((total >= 0))"),
            constraint("orders_user_id_fkey", "f", 1001, [2], "FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE", table_to=1000, ordinals_to=[1], on_update="a", on_delete="c"),
            constraint("orders_pkey", "p", 1001, [1], "PRIMARY KEY (id)", index_id=2002),
            constraint("users_pkey", "p", 1000, [1], "PRIMARY KEY (id)", index_id=2000),
            constraint("users_email_key", "u", 1000, [2], "UNIQUE NULLS NOT DISTINCT (email)", index_id=2001),
        ],
    ),
    (
        "FROM pg_attribute",
        [
            column(1000, "id", 1, "integer", not_null=True),
            column(1000, "email", 2, "text", type_id=25, not_null=True),
            column(1000, "status", 3, "status", type_id=500, not_null=True),
            column(1000, "tags", 4, "text[]", type_id=1009, dims=1),
            column(1001, "id", 1, "bigint", type_id=20, not_null=True, identity="a", metadata=IDENTITY),
            column(1001, "user_id", 2, "integer", not_null=True),
            column(1001, "total", 3, "integer", generated="s", metadata={"expression": "(user_id * 2)"}),
            column(1002, "id", 1, "integer", kind="v"),
        ],
    ),
    (
        "FROM pg_index",
        [
            {
                "oid": 2000,
                "schemaId": 2200,
                "name": "users_pkey",
                "accessMethod": "btree",
                "with": None,
                "metadata": {"expression": None, "where": None, "tableId": 1000, "columnOrdinals": [1], "opclassIds": [3124], "options": [0], "isUnique": True, "isPrimary": True},
            },
            {
                "oid": 2003,
                "schemaId": 2200,
                "name": "users_lower_email_idx",
                "accessMethod": "btree",
                "with": ["fillfactor=70"],
                "metadata": json.dumps(
                    {
                        "expression": "lower(email)",
                        "where": "(status = 'active'::status)",
                        "tableId": 1000,
                        "columnOrdinals": [0, 1],
                        "opclassIds": [3126, 3124],
                        "options": [0, 3],
                        "isUnique": False,
                        "isPrimary": False,
                    }
                ),
            },
        ],
    ),
    ("FROM pg_am", [{"oid": 2, "name": "heap"}]),
]


def introspect(params=None, db=None, **kwargs):
    db = db or FakeDatabase(CATALOG)
    flt = prepare_entity_filter("postgresql", params or EntityFilterParams())
    return asyncio.run(PostgresIntrospector().from_database(db, None, flt, **kwargs)), db


def test_schemas_tables_and_columns():
    schema, _ = introspect()
    assert [s.name for s in schema.schemas] == ["public", "app"]
    assert [(t.name, t.is_row_security_enabled) for t in schema.tables] == [("users", True), ("orders", False)]

    cols = {(c.table, c.name): c for c in schema.columns}
    assert len(cols) == 7

    user_id = cols[("users", "id")]
    assert user_id.sql_type == "serial"
    assert user_id.default is None
    assert user_id.is_primary_key
    assert user_id.primary_key_constraint_name == "users_pkey"

    email = cols[("users", "email")]
    assert email.is_unique
    assert email.unique_constraint_name == "users_email_key"
    assert email.unique_nulls_are_distinct is False

    status = cols[("users", "status")]
    assert (status.sql_type, status.type_schema) == ("status", "public")
    assert status.default.kind == "string"
    assert status.default.value == "active"

    tags = cols[("users", "tags")]
    assert (tags.sql_type, tags.array_dimensions) == ("text", 1)


def test_identity_and_generated_columns():
    schema, _ = introspect()
    cols = {(c.table, c.name): c for c in schema.columns}
    identity = cols[("orders", "id")].identity
    assert identity.kind == "always"
    assert identity.sequence_name == "orders_id_seq"
    assert (identity.start_with, identity.increment, identity.min_value) == ("1", "1", "1")
    assert identity.max_value == "9223372036854775807"
    assert identity.cache_size == "1"
    assert identity.cycles is False

    total = cols[("orders", "total")]
    assert total.generated.expression == "(user_id * 2)"
    assert total.default is None


def test_enums_and_free_standing_sequences():
    schema, _ = introspect()
    assert [(e.name, e.values) for e in schema.enums] == [("status", ["active", "disabled"])]
    # sequences owned by serial and identity columns are not reported
    assert [s.name for s in schema.sequences] == ["invoice_seq"]
    seq = schema.sequences[0]
    assert (seq.increment_by, seq.start_with, seq.max_value, seq.cache_size, seq.cycles) == ("5", "100", "1000", "10", True)


def test_constraints():
    schema, _ = introspect()
    assert {(pk.table, pk.name, tuple(pk.columns)) for pk in schema.primary_keys} == {
        ("users", "users_pkey", ("id",)),
        ("orders", "orders_pkey", ("id",)),
    }
    fk = schema.foreign_keys[0]
    assert (fk.table, fk.columns, fk.target_table, fk.target_columns) == ("orders", ["user_id"], "users", ["id"])
    assert (fk.on_update, fk.on_delete) == ("NO ACTION", "CASCADE")
    assert schema.unique_constraints[0].nulls_are_distinct is False
    assert [(c.name, c.expression) for c in schema.check_constraints] == [("orders_total_check", "total >= 0")]


def test_indexes_correlate_columns_and_expressions():
    schema, _ = introspect()
    indexes = {i.name: i for i in schema.indexes}
    # users_pkey backs the primary key and is reported through it
    assert list(indexes) == ["users_lower_email_idx"]

    idx = indexes["users_lower_email_idx"]
    first, second = idx.columns
    assert (first.value, first.is_expression, first.ascending, first.nulls_first) == ("lower(email)", True, True, False)
    assert first.operator_class == "text_pattern_ops"
    assert (second.value, second.is_expression, second.ascending, second.nulls_first) == ("id", False, False, True)
    assert second.operator_class is None
    assert idx.where_clause == "(status = 'active'::status)"
    assert idx.with_options == "fillfactor=70"


def test_views_and_view_columns():
    schema, _ = introspect()
    view = schema.views[0]
    assert view.name == "active_users"
    assert view.definition == "SELECT users.id FROM users"
    assert view.with_options == {"securityBarrier": True, "checkOption": "local", "customOpt": 5}
    assert view.tablespace is None and view.using_access_method is None
    assert [(c.view, c.name, c.sql_type) for c in schema.view_columns] == [("active_users", "id", "integer")]


def test_policies_and_roles():
    schema, _ = introspect()
    assert schema.roles == []
    policy = schema.policies[0]
    assert (policy.name, policy.applies_to, policy.roles) == ("users_self", "SELECT", ["admin", "app"])

    params = EntityFilterParams(entities=EntitiesParams(roles=RolesFilter(include=["app"])))
    schema, _ = introspect(params)
    role = schema.roles[0]
    assert [r.name for r in schema.roles] == ["app"]
    assert (role.create_db, role.create_role, role.inherit) == (True, False, True)


def test_table_filter_drops_tables_and_their_entities():
    schema, _ = introspect(EntityFilterParams(tables=["!users"]))
    assert [t.name for t in schema.tables] == ["orders"]
    assert {c.table for c in schema.columns} == {"orders"}
    assert schema.policies == []
    assert all(i.table != "users" for i in schema.indexes)


def with_constraints(*extra):
    return [
        (marker, rows + list(extra)) if marker == "FROM pg_constraint" else (marker, rows)
        for marker, rows in CATALOG
    ]


def test_foreign_keys_to_unknown_relations_are_skipped(caplog):
    dangling = constraint("orders_ghost_fkey", "f", 1001, [2], "FOREIGN KEY (user_id) REFERENCES ghost(id)", table_to=9999, ordinals_to=[1])
    schema, _ = introspect(db=FakeDatabase(with_constraints(dangling)))
    assert [fk.name for fk in schema.foreign_keys] == ["orders_user_id_fkey"]
    assert "orders_ghost_fkey" in caplog.text


def test_foreign_keys_to_filtered_out_tables_are_skipped():
    schema, _ = introspect(EntityFilterParams(tables=["!users"]))
    assert [c.table for c in schema.columns if c.name == "user_id"] == ["orders"]
    assert schema.foreign_keys == []


def test_no_matching_schema_short_circuits():
    schema, db = introspect(EntityFilterParams(schemas=["nothing"]))
    assert schema.is_empty()
    assert len(db.issued) == 4
    assert not any("relkind IN" in sql for sql in db.issued)


def test_callbacks_report_every_query_and_stage():
    progress = []
    queries = []
    introspect(
        progress_callback=lambda stage, count, status: progress.append((stage, count, status)),
        query_callback=lambda query_id, rows, error: queries.append((query_id, len(rows), error)),
    )
    assert {q[0] for q in queries} == {
        "ops",
        "access_methods",
        "tablespaces",
        "namespaces",
        "tables",
        "depend",
        "enums",
        "defaults",
        "sequences",
        "policies",
        "roles",
        "constraints",
        "columns",
        "indexes",
    }
    assert all(error is None for _, _, error in queries)
    assert ("tables", 2, "done") in progress
    assert ("views", 1, "done") in progress
    assert ("enums", 1, "done") in progress


def test_fetching_is_reported_before_the_catalog_queries_run():
    events = []
    introspect(
        progress_callback=lambda stage, count, status: events.append((stage, status)),
        query_callback=lambda query_id, rows, error: events.append((query_id, "query")),
    )
    assert events.index(("tables", "query")) < events.index(("tables", "done"))
    for stage in ("columns", "indexes"):
        assert events.index((stage, "fetching")) < events.index((stage, "query")) < events.index((stage, "done"))
    assert events.index(("checks", "fetching")) < events.index(("constraints", "query"))


def test_query_failures_reach_the_callback_and_propagate():
    failures = []
    db = FakeDatabase(CATALOG, fail_on="FROM pg_constraint")
    with pytest.raises(RuntimeError):
        introspect(
            db=db,
            query_callback=lambda query_id, rows, error: failures.append((query_id, error)) if error else None,
        )
    assert [query_id for query_id, _ in failures] == ["constraints"]
    assert isinstance(failures[0][1], RuntimeError)


def test_registry_builds_postgres_introspector():
    assert isinstance(IntrospectorRegistry.get("postgres"), PostgresIntrospector)
    assert IntrospectorRegistry.get("oracle") is None
