from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Optional, Tuple

from schema_bridge.core.filter import EntityFilter
from schema_bridge.core.grammar import (
    canonicalize_catalog_type,
    default_for_column,
    escape_single_quotes,
    is_serial_expression,
    is_system_namespace,
    parse_view_definition,
    trim_char,
)
from schema_bridge.core.ir import (
    CheckConstraint,
    Column,
    ForeignKey,
    InterimSchema,
    PrimaryKey,
    Schema,
    Table,
    UniqueConstraint,
    View,
    ViewColumn,
)
from schema_bridge.introspect.base import (
    Database,
    Introspector,
    ProgressCallback,
    QueryCallback,
    QueryRunner,
    Row,
    id_predicate,
    noop_progress,
)

logger = logging.getLogger(__name__)

SERIALS = {"smallint": "smallserial", "integer": "serial", "bigint": "bigserial"}
DEFAULT_SCHEMA = "main"


def _database_literal(name: Optional[str]) -> str:
    if name is None:
        return "current_database()"
    return f"'{escape_single_quotes(name)}'"


class DuckDBIntrospector(Introspector):
    """Reads a DuckDB catalog through the ``duckdb_*()`` table functions.

    DuckDB reports no enums, sequences, roles, policies or index metadata in a usable form, so only
    schemas, tables, columns, constraints and views are produced.
    """

    dialect = "duckdb"

    async def from_database(
        self,
        db: Database,
        database_name: Optional[str],
        entity_filter: EntityFilter,
        progress_callback: Optional[ProgressCallback] = None,
        query_callback: Optional[QueryCallback] = None,
    ) -> InterimSchema:
        progress = progress_callback or noop_progress
        runner = QueryRunner(db, query_callback)
        database = _database_literal(database_name)
        result = InterimSchema(dialect=self.dialect)

        namespaces = await runner.run(
            "namespaces",
            f"SELECT oid, schema_name AS name FROM duckdb_schemas() "
            f"WHERE database_name = {database} ORDER BY lower(schema_name)",
        )
        other = [ns for ns in namespaces if not is_system_namespace(ns["name"])]
        filtered = [ns for ns in other if entity_filter.schema(ns["name"])]
        if not filtered:
            logger.debug("duckdb introspection: no schema passed the filter")
            return result

        namespace_ids = ", ".join(str(ns["oid"]) for ns in filtered)
        result.schemas.extend(Schema(name=ns["name"]) for ns in filtered)

        tables_list = await runner.run(
            "tables",
            f"""
            SELECT table_oid AS "oid", schema_name AS "schema", table_name AS "name",
                NULL AS "definition", 'table' AS "type"
            FROM duckdb_tables()
            WHERE database_name = {database} AND schema_oid IN ({namespace_ids})
            UNION ALL
            SELECT view_oid AS "oid", schema_name AS "schema", view_name AS "name",
                sql AS "definition", 'view' AS "type"
            FROM duckdb_views()
            WHERE database_name = {database} AND schema_oid IN ({namespace_ids})
            ORDER BY lower("schema"), lower("name")
            """,
        )
        views_list = [row for row in tables_list if row["type"] == "view"]
        tables: Dict[int, Row] = {}
        for row in tables_list:
            if row["type"] != "table":
                continue
            # camelCase schema names come back wrapped in double quotes
            schema_name = trim_char(row["schema"], '"')
            if entity_filter.table(schema_name, row["name"]):
                tables[row["oid"]] = dict(row, schema=schema_name)
        views = {row["oid"]: row for row in views_list}

        table_ids = list(tables)
        for row in tables.values():
            result.tables.append(Table(schema_name=row["schema"], name=row["name"], is_row_security_enabled=False))
        progress("tables", len(result.tables), "done")
        progress("columns", 0, "fetching")
        progress("checks", 0, "fetching")
        progress("indexes", 0, "fetching")

        constraints, columns = await asyncio.gather(
            runner.run(
                "constraints",
                f"""
                SELECT schema_oid AS "schemaId", table_oid AS "tableId", constraint_name AS "name",
                    constraint_type AS "type", constraint_text AS "definition",
                    referenced_table AS "tableToName", constraint_column_names AS "columnsNames",
                    referenced_column_names AS "columnsToNames"
                FROM duckdb_constraints()
                WHERE database_name = {database} AND {id_predicate("table_oid", table_ids)}
                ORDER BY constraint_type, lower(constraint_name)
                """,
            ),
            runner.run(
                "columns",
                f"""
                SELECT table_oid AS "tableId", column_name AS "name", column_index AS "ordinality",
                    is_nullable = false AS "notNull", data_type_id AS "typeId",
                    lower(data_type) AS "type", column_default AS "default"
                FROM duckdb_columns()
                WHERE {id_predicate("table_oid", table_ids + list(views))} AND database_name = {database}
                ORDER BY column_index
                """,
            ),
        )

        namespace_names = {ns["oid"]: ns["name"] for ns in namespaces}
        single: Dict[Tuple[str, int, str], Row] = {}
        for c in constraints:
            names = list(c["columnsNames"] or [])
            if c["type"] in ("PRIMARY KEY", "UNIQUE") and len(names) == 1:
                single.setdefault((c["type"], c["tableId"], names[0]), c)

        for column in columns:
            table = tables.get(column["tableId"])
            if table is None:
                continue
            result.columns.append(self._column(table, column, single))

        self._constraints(result, constraints, tables, tables_list, namespace_names)

        for column in columns:
            view = views.get(column["tableId"])
            if view is None:
                continue
            sql_type, dims = canonicalize_catalog_type(column["type"])
            result.view_columns.append(
                ViewColumn(
                    schema_name=view["schema"],
                    view=view["name"],
                    name=column["name"],
                    sql_type=sql_type,
                    array_dimensions=dims,
                    is_not_null=bool(column["notNull"]),
                )
            )

        for view in views_list:
            if not entity_filter.table(view["schema"], view["name"]):
                continue
            result.views.append(
                View(
                    schema_name=view["schema"],
                    name=view["name"],
                    definition=parse_view_definition(view["definition"]),
                    is_materialized=False,
                )
            )

        progress("columns", len(result.columns), "done")
        progress("indexes", 0, "done")
        progress("fks", len(result.foreign_keys), "done")
        progress("checks", len(result.check_constraints), "done")
        progress("views", len(result.views), "done")
        logger.debug(
            "duckdb introspection: %d tables, %d columns, %d views",
            len(result.tables),
            len(result.columns),
            len(result.views),
        )
        return result

    def _column(self, table: Row, column: Row, single: Dict[Tuple[str, int, str], Row]) -> Column:
        sql_type, dims = canonicalize_catalog_type(column["type"])
        raw_default = column["default"]
        if sql_type in SERIALS and is_serial_expression(raw_default, table["schema"], DEFAULT_SCHEMA):
            sql_type = SERIALS[sql_type]
            raw_default = None

        unique = single.get(("UNIQUE", column["tableId"], column["name"]))
        pk = single.get(("PRIMARY KEY", column["tableId"], column["name"]))
        return Column(
            schema_name=table["schema"],
            table=table["name"],
            name=column["name"],
            sql_type=sql_type,
            array_dimensions=dims,
            default=default_for_column(sql_type, raw_default, 0),
            is_unique=unique is not None,
            unique_constraint_name=unique["name"] if unique else None,
            unique_nulls_are_distinct="NULLS NOT DISTINCT" not in (unique["definition"] or "") if unique else True,
            is_not_null=bool(column["notNull"]),
            is_primary_key=pk is not None,
            primary_key_constraint_name=pk["name"] if pk else None,
        )

    def _constraints(
        self,
        result: InterimSchema,
        constraints: List[Row],
        tables: Dict[int, Row],
        tables_list: List[Row],
        namespace_names: Dict[int, str],
    ) -> None:
        for c in constraints:
            table = tables.get(c["tableId"])
            if table is None:
                continue
            schema_name = namespace_names.get(c["schemaId"], table["schema"])
            columns = list(c["columnsNames"] or [])
            if c["type"] == "UNIQUE":
                result.unique_constraints.append(
                    UniqueConstraint(
                        schema_name=schema_name,
                        table=table["name"],
                        name=c["name"],
                        name_was_explicit=True,
                        columns=columns,
                        nulls_are_distinct="NULLS NOT DISTINCT" not in (c["definition"] or ""),
                    )
                )
            elif c["type"] == "PRIMARY KEY":
                result.primary_keys.append(
                    PrimaryKey(
                        schema_name=schema_name,
                        table=table["name"],
                        name=c["name"],
                        columns=columns,
                        name_was_explicit=True,
                    )
                )
            elif c["type"] == "FOREIGN KEY":
                target = next(
                    (t for t in tables_list if t["schema"] == schema_name and t["name"] == c["tableToName"]),
                    None,
                )
                result.foreign_keys.append(
                    ForeignKey(
                        schema_name=schema_name,
                        table=table["name"],
                        name=c["name"],
                        name_was_explicit=True,
                        columns=columns,
                        target_schema=schema_name,
                        target_table=target["name"] if target else c["tableToName"],
                        target_columns=list(c["columnsToNames"] or []),
                        on_update="NO ACTION",
                        on_delete="NO ACTION",
                    )
                )
            elif c["type"] == "CHECK":
                result.check_constraints.append(
                    CheckConstraint(
                        schema_name=schema_name,
                        table=table["name"],
                        name=c["name"],
                        expression=c["definition"],
                    )
                )
