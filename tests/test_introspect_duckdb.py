import asyncio

from schema_bridge.core.filter import EntityFilterParams, prepare_entity_filter
from schema_bridge.core.registry import IntrospectorRegistry
from schema_bridge.introspect.duckdb import DuckDBIntrospector


class FakeDatabase:
    def __init__(self, answers):
        self.answers = answers
        self.issued = []

    async def query(self, sql):
        self.issued.append(sql)
        for marker, rows in self.answers:
            if marker in sql:
                return [dict(row) for row in rows]
        raise AssertionError(f"unexpected query: {sql}")


def col(table_id, name, ordinality, sql_type, not_null=False, default=None):
    return {
        "tableId": table_id,
        "name": name,
        "ordinality": ordinality,
        "notNull": not_null,
        "typeId": 0,
        "type": sql_type,
        "default": default,
    }


CATALOG = [
    (
        "duckdb_schemas()",
        [
            {"oid": 3, "name": "pg_catalog"},
            {"oid": 2, "name": "information_schema"},
            {"oid": 4, "name": "analytics"},
            {"oid": 1, "name": "main"},
        ],
    ),
    (
        "duckdb_tables()",
        [
            {"oid": 11, "schema": '"analytics"', "name": "events", "definition": None, "type": "table"},
            {"oid": 10, "schema": "main", "name": "users", "definition": None, "type": "table"},
            {
                "oid": 12,
                "schema": "main",
                "name": "user_names",
                "definition": "CREATE VIEW user_names AS SELECT name\n  FROM users;",
                "type": "view",
            },
        ],
    ),
    (
        "duckdb_constraints()",
        [
            {
                "schemaId": 1,
                "tableId": 10,
                "name": "users_name_check",
                "type": "CHECK",
                "definition": "CHECK((length(name) > 0))",
                "tableToName": None,
                "columnsNames": ["name"],
                "columnsToNames": None,
            },
            {
                "schemaId": 4,
                "tableId": 11,
                "name": "events_user_id_fkey",
                "type": "FOREIGN KEY",
                "definition": "FOREIGN KEY (user_id) REFERENCES users(id)",
                "tableToName": "users",
                "columnsNames": ["user_id"],
                "columnsToNames": ["id"],
            },
            {
                "schemaId": 1,
                "tableId": 10,
                "name": "users_id_pkey",
                "type": "PRIMARY KEY",
                "definition": "PRIMARY KEY(id)",
                "tableToName": None,
                "columnsNames": ["id"],
                "columnsToNames": None,
            },
            {
                "schemaId": 1,
                "tableId": 10,
                "name": "users_email_key",
                "type": "UNIQUE",
                "definition": "UNIQUE(email)",
                "tableToName": None,
                "columnsNames": ["email"],
                "columnsToNames": None,
            },
        ],
    ),
    (
        "duckdb_columns()",
        [
            col(10, "id", 0, "integer", not_null=True, default="nextval('users_id_seq')"),
            col(10, "email", 1, "varchar", not_null=True),
            col(10, "name", 2, "varchar", default="'anon'"),
            col(10, "tags", 3, "integer[]"),
            col(11, "user_id", 0, "integer"),
            col(12, "name", 0, "varchar"),
        ],
    ),
]


def introspect(params=None, database_name=None, **kwargs):
    db = FakeDatabase(CATALOG)
    flt = prepare_entity_filter("duckdb", params or EntityFilterParams())
    return asyncio.run(DuckDBIntrospector().from_database(db, database_name, flt, **kwargs)), db


def test_schemas_skip_system_namespaces():
    schema, _ = introspect()
    assert [s.name for s in schema.schemas] == ["analytics", "main"]


def test_tables_unquote_schema_names():
    schema, _ = introspect()
    assert {(t.schema_name, t.name) for t in schema.tables} == {("analytics", "events"), ("main", "users")}
    assert not any(t.is_row_security_enabled for t in schema.tables)


def test_columns():
    schema, _ = introspect()
    cols = {(c.table, c.name): c for c in schema.columns}
    assert len(cols) == 5

    user_id = cols[("users", "id")]
    assert user_id.sql_type == "serial"
    assert user_id.default is None
    assert user_id.is_primary_key and user_id.primary_key_constraint_name == "users_id_pkey"

    email = cols[("users", "email")]
    assert email.is_unique and email.unique_constraint_name == "users_email_key"
    assert email.unique_nulls_are_distinct
    assert email.is_not_null

    name = cols[("users", "name")]
    assert (name.default.kind, name.default.value) == ("string", "anon")

    tags = cols[("users", "tags")]
    assert (tags.sql_type, tags.array_dimensions) == ("integer", 1)


def test_constraints():
    schema, _ = introspect()
    assert [(pk.name, pk.columns) for pk in schema.primary_keys] == [("users_id_pkey", ["id"])]
    assert [(u.name, u.columns) for u in schema.unique_constraints] == [("users_email_key", ["email"])]
    assert [(c.name, c.expression) for c in schema.check_constraints] == [
        ("users_name_check", "CHECK((length(name) > 0))")
    ]
    fk = schema.foreign_keys[0]
    assert (fk.schema_name, fk.table, fk.columns) == ("analytics", "events", ["user_id"])
    # referenced tables are looked up in the constraint's own schema
    assert (fk.target_schema, fk.target_table, fk.target_columns) == ("analytics", "users", ["id"])
    assert (fk.on_update, fk.on_delete) == ("NO ACTION", "NO ACTION")


def test_views_and_view_columns():
    schema, _ = introspect()
    view = schema.views[0]
    assert (view.schema_name, view.name) == ("main", "user_names")
    assert view.definition == "CREATE VIEW user_names AS SELECT name FROM users"
    assert not view.is_materialized
    assert [(c.view, c.name, c.sql_type) for c in schema.view_columns] == [("user_names", "name", "varchar")]


def test_database_name_is_quoted_or_defaults_to_current():
    _, db = introspect(database_name="memory")
    assert all("'memory'" in sql for sql in db.issued)

    _, db = introspect()
    assert all("current_database()" in sql for sql in db.issued)


def test_table_filter():
    schema, _ = introspect(EntityFilterParams(tables=["!events"]))
    assert [t.name for t in schema.tables] == ["users"]
    assert {c.table for c in schema.columns} == {"users"}
    assert schema.foreign_keys == []


def test_no_matching_schema_short_circuits():
    schema, db = introspect(EntityFilterParams(schemas=["nothing"]))
    assert schema.is_empty()
    assert len(db.issued) == 1


def test_progress_and_query_callbacks():
    progress = []
    queries = []
    introspect(
        progress_callback=lambda stage, count, status: progress.append((stage, count, status)),
        query_callback=lambda query_id, rows, error: queries.append(query_id),
    )
    assert queries[:2] == ["namespaces", "tables"]
    assert set(queries) == {"namespaces", "tables", "constraints", "columns"}
    assert ("tables", 2, "done") in progress
    assert ("columns", 5, "done") in progress
    assert ("fks", 1, "done") in progress
    assert ("views", 1, "done") in progress


def test_fetching_is_reported_before_the_queries_run():
    events = []
    introspect(
        progress_callback=lambda stage, count, status: events.append((stage, status)),
        query_callback=lambda query_id, rows, error: events.append((query_id, "query")),
    )
    assert events.index(("columns", "fetching")) < events.index(("columns", "query"))
    assert events.index(("checks", "fetching")) < events.index(("constraints", "query"))
    assert events.index(("columns", "query")) < events.index(("columns", "done"))


def test_registry_builds_duckdb_introspector():
    assert isinstance(IntrospectorRegistry.get("duckdb"), DuckDBIntrospector)
