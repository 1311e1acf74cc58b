from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional, Tuple

from schema_bridge.core.casing import to_camel_case
from schema_bridge.core.defaults import Defaults
from schema_bridge.core.filter import EntityFilter
from schema_bridge.core.grammar import (
    OptionsRecord,
    canonicalize_catalog_type,
    default_for_column,
    is_serial_expression,
    is_system_namespace,
    option_text,
    parse_check_definition,
    parse_on_type,
    parse_view_definition,
    split_expressions,
    trim_char,
    wrap_option_value,
)
from schema_bridge.core.ir import (
    CheckConstraint,
    Column,
    Enum,
    ForeignKey,
    Generated,
    Identity,
    Index,
    IndexColumn,
    InterimSchema,
    Policy,
    PrimaryKey,
    Role,
    Schema,
    Sequence,
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

VIEW_BOOL_OPTIONS = (
    "securityBarrier",
    "securityInvoker",
    "autovacuumEnabled",
    "vacuumTruncate",
    "userCatalogTable",
)
VIEW_NUM_OPTIONS = (
    "fillfactor",
    "toastTupleTarget",
    "parallelWorkers",
    "autovacuumVacuumThreshold",
    "autovacuumVacuumScaleFactor",
    "autovacuumVacuumCostDelay",
    "autovacuumVacuumCostLimit",
    "autovacuumFreezeMinAge",
    "autovacuumFreezeMaxAge",
    "autovacuumFreezeTableAge",
    "autovacuumMultixactFreezeMinAge",
    "autovacuumMultixactFreezeMaxAge",
    "autovacuumMultixactFreezeTableAge",
    "logAutovacuumMinDuration",
)
VIEW_LITERAL_OPTIONS = {
    "checkOption": ("checkOption", ("local", "cascaded")),
    "vacuumIndexCleanup": ("vacuumIndexCleanup", ("auto", "on", "off")),
}

COLUMNS_SQL = """
SELECT
    attrelid AS "tableId",
    relkind AS "kind",
    attname AS "name",
    attnum AS "ordinality",
    attnotnull AS "notNull",
    attndims AS "dimensions",
    atttypid AS "typeId",
    attgenerated AS "generatedType",
    attidentity AS "identityType",
    format_type(atttypid, atttypmod) AS "type",
    CASE
        WHEN attidentity IN ('a', 'd') OR attgenerated = 's' THEN (
            SELECT row_to_json(c.*) FROM (
                SELECT
                    pg_get_serial_sequence("table_schema" || '.' || "table_name", "attname")::regclass::oid AS "seqId",
                    "identity_generation" AS generation,
                    "identity_start" AS "start",
                    "identity_increment" AS "increment",
                    "identity_maximum" AS "max",
                    "identity_minimum" AS "min",
                    "identity_cycle" AS "cycle",
                    "generation_expression" AS "expression"
                FROM information_schema.columns c
                WHERE c.column_name = attname
                    AND c.table_schema = cls.relnamespace::regnamespace::text
                    AND c.table_name = attrelid::regclass::text
            ) c
        )
        ELSE NULL
    END AS "metadata"
FROM pg_attribute attr
LEFT JOIN pg_class cls ON cls.oid = attr.attrelid
WHERE {predicate} AND attnum > 0 AND attisdropped = FALSE
ORDER BY attnum
"""

INDEXES_SQL = """
SELECT
    pg_class.oid,
    relnamespace AS "schemaId",
    relname AS "name",
    am.amname AS "accessMethod",
    reloptions AS "with",
    row_to_json(metadata.*) AS "metadata"
FROM pg_class
JOIN pg_am am ON am.oid = pg_class.relam
LEFT JOIN LATERAL (
    SELECT
        pg_get_expr(indexprs, indrelid) AS "expression",
        pg_get_expr(indpred, indrelid) AS "where",
        indrelid::int AS "tableId",
        indkey::int[] AS "columnOrdinals",
        indclass::int[] AS "opclassIds",
        indoption::int[] AS "options",
        indisunique AS "isUnique",
        indisprimary AS "isPrimary"
    FROM pg_index
    WHERE pg_index.indexrelid = pg_class.oid
) metadata ON TRUE
WHERE relkind = 'i' AND {predicate}
ORDER BY relnamespace, lower(relname)
"""


def _json(value: Any) -> Any:
    # asyncpg hands json columns back as text
    if isinstance(value, str):
        return json.loads(value)
    return value


def _pg_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        inner = value[1:-1] if value.startswith("{") else value
        return [item for item in inner.split(",") if item]
    return list(value)


class PostgresIntrospector(Introspector):
    """Reads ``pg_catalog`` into an InterimSchema."""

    dialect = "postgresql"

    def __init__(self, defaults: Optional[Defaults] = None):
        self.defaults = defaults or Defaults.for_dialect(self.dialect)

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
        result = InterimSchema(dialect=self.dialect)

        ops, access_methods, tablespaces, namespaces = await asyncio.gather(
            runner.run(
                "ops",
                'SELECT pg_opclass.oid AS "oid", opcdefault AS "default", opcname AS "name" '
                "FROM pg_opclass",
            ),
            runner.run("access_methods", 'SELECT oid, amname AS "name" FROM pg_am'),
            runner.run("tablespaces", 'SELECT oid, spcname AS "name" FROM pg_tablespace'),
            runner.run("namespaces", "SELECT oid, nspname AS name FROM pg_namespace"),
        )
        namespace_names = {ns["oid"]: ns["name"] for ns in namespaces}
        filtered = [
            ns for ns in namespaces if not is_system_namespace(ns["name"]) and entity_filter.schema(ns["name"])
        ]
        if not filtered:
            logger.debug("postgres introspection: no schema passed the filter")
            return result
        result.schemas.extend(Schema(name=ns["name"]) for ns in filtered)
        namespace_ids = [ns["oid"] for ns in filtered]

        tables_list = await runner.run(
            "tables",
            f"""
            SELECT
                oid,
                relnamespace AS "schemaId",
                relname AS "name",
                relkind AS "kind",
                relam AS "accessMethod",
                reloptions::text[] AS "options",
                reltablespace AS "tablespaceId",
                relrowsecurity AS "rlsEnabled",
                CASE WHEN relkind = 'v' OR relkind = 'm' THEN pg_get_viewdef(oid, true) ELSE NULL END AS "definition"
            FROM pg_class
            WHERE relkind IN ('r', 'v', 'm') AND {id_predicate("relnamespace", namespace_ids)}
            ORDER BY relnamespace, lower(relname)
            """,
        )
        tables: Dict[int, Row] = {}
        views: Dict[int, Row] = {}
        for row in tables_list:
            schema_name = trim_char(namespace_names[row["schemaId"]], '"')
            row = dict(row, schema=schema_name)
            if row["kind"] == "r":
                if entity_filter.table(schema_name, row["name"]):
                    tables[row["oid"]] = row
            else:
                views[row["oid"]] = row
        for row in tables.values():
            result.tables.append(
                Table(schema_name=row["schema"], name=row["name"], is_row_security_enabled=bool(row["rlsEnabled"]))
            )

        progress("tables", len(result.tables), "done")
        progress("columns", 0, "fetching")
        progress("checks", 0, "fetching")
        progress("indexes", 0, "fetching")

        table_ids = list(tables)
        table_pred = id_predicate("refobjid", table_ids)
        (
            depends,
            enums_list,
            attr_defaults,
            sequences_list,
            policies_list,
            roles_list,
            constraints,
            columns,
            indexes,
        ) = await asyncio.gather(
            runner.run(
                "depend",
                f'SELECT objid AS oid, refobjid AS "tableId", refobjsubid AS "ordinality", deptype '
                f"FROM pg_depend WHERE {table_pred}",
            ),
            runner.run(
                "enums",
                f"""
                SELECT pg_type.oid AS "oid", typname AS "name", typnamespace AS "schemaId",
                    pg_type.typarray AS "arrayTypeId", pg_enum.enumsortorder AS "ordinality",
                    pg_enum.enumlabel AS "value"
                FROM pg_type JOIN pg_enum ON pg_enum.enumtypid = pg_type.oid
                WHERE pg_type.typtype = 'e' AND {id_predicate("typnamespace", namespace_ids)}
                ORDER BY pg_type.oid, pg_enum.enumsortorder
                """,
            ),
            runner.run(
                "defaults",
                f'SELECT adrelid AS "tableId", adnum AS "ordinality", pg_get_expr(adbin, adrelid) AS "expression" '
                f'FROM pg_attrdef WHERE {id_predicate("adrelid", table_ids)}',
            ),
            runner.run(
                "sequences",
                f"""
                SELECT relnamespace AS "schemaId", relname AS "name", seqrelid AS "oid",
                    seqstart AS "startWith", seqmin AS "minValue", seqmax AS "maxValue",
                    seqincrement AS "incrementBy", seqcycle AS "cycle", seqcache AS "cacheSize"
                FROM pg_sequence LEFT JOIN pg_class ON pg_sequence.seqrelid = pg_class.oid
                WHERE {id_predicate("relnamespace", namespace_ids)}
                ORDER BY relnamespace, lower(relname)
                """,
            ),
            runner.run(
                "policies",
                'SELECT schemaname AS "schema", tablename AS "table", policyname AS "name", '
                'permissive AS "as", roles AS "to", cmd AS "for", qual AS "using", '
                'with_check AS "withCheck" FROM pg_policies ORDER BY schemaname, tablename, policyname',
            ),
            runner.run(
                "roles",
                "SELECT rolname, rolsuper, rolinherit, rolcreatedb, rolcreaterole, rolcanlogin, "
                "rolreplication, rolbypassrls, rolconnlimit, rolvaliduntil FROM pg_roles ORDER BY rolname",
            ),
            runner.run(
                "constraints",
                f"""
                SELECT oid, connamespace AS "schemaId", conrelid AS "tableId", conname AS "name",
                    contype AS "type", pg_get_constraintdef(oid) AS "definition", conindid AS "indexId",
                    conkey AS "columnsOrdinals", confrelid AS "tableToId", confkey AS "columnsToOrdinals",
                    confupdtype AS "onUpdate", confdeltype AS "onDelete"
                FROM pg_constraint
                WHERE {id_predicate("conrelid", table_ids)}
                ORDER BY contype, lower(conname)
                """,
            ),
            runner.run(
                "columns", COLUMNS_SQL.format(predicate=id_predicate("attrelid", table_ids + list(views)))
            ),
            runner.run(
                "indexes", INDEXES_SQL.format(predicate=id_predicate('metadata."tableId"', table_ids))
            ),
        )

        enum_by_type = self._enums(result, enums_list, namespace_names)
        progress("enums", len(result.enums), "done")

        sequences_by_oid = {seq["oid"]: seq for seq in sequences_list}
        owned = {d["oid"] for d in depends if d["deptype"] in ("a", "i")}
        for seq in sequences_list:
            # identity and serial sequences belong to their column
            if seq["oid"] in owned:
                continue
            result.sequences.append(
                Sequence(
                    schema_name=namespace_names[seq["schemaId"]],
                    name=seq["name"],
                    increment_by=option_text(seq["incrementBy"]),
                    start_with=option_text(seq["startWith"]),
                    min_value=option_text(seq["minValue"]),
                    max_value=option_text(seq["maxValue"]),
                    cache_size=option_text(seq["cacheSize"]) or self.defaults.identity_cache,
                    cycles=bool(seq["cycle"]),
                )
            )

        for role in roles_list:
            if not entity_filter.role(role["rolname"]):
                continue
            valid_until = role.get("rolvaliduntil")
            result.roles.append(
                Role(
                    name=role["rolname"],
                    superuser=role.get("rolsuper"),
                    create_db=role["rolcreatedb"],
                    create_role=role["rolcreaterole"],
                    inherit=role["rolinherit"],
                    can_login=role.get("rolcanlogin"),
                    replication=role.get("rolreplication"),
                    bypass_row_security=role.get("rolbypassrls"),
                    connection_limit=role.get("rolconnlimit"),
                    valid_until=str(valid_until) if valid_until is not None else None,
                )
            )

        for policy in policies_list:
            if not entity_filter.table(policy["schema"], policy["table"]):
                continue
            result.policies.append(
                Policy(
                    schema_name=policy["schema"],
                    table=policy["table"],
                    name=policy["name"],
                    permissiveness=policy["as"].upper(),
                    applies_to=policy["for"].upper(),
                    roles=sorted(_pg_list(policy["to"])),
                    using_expression=policy["using"],
                    with_check_expression=policy["withCheck"],
                )
            )
        progress("policies", len(result.policies), "done")

        defaults_by_attr = {(d["tableId"], d["ordinality"]): d["expression"] for d in attr_defaults}
        by_ordinal = {(c["tableId"], c["ordinality"]): c["name"] for c in columns}
        single: Dict[Tuple[str, int, int], Row] = {}
        for c in constraints:
            ordinals = list(c["columnsOrdinals"] or [])
            if c["type"] in ("p", "u") and len(ordinals) == 1:
                single.setdefault((c["type"], c["tableId"], ordinals[0]), c)

        for column in columns:
            table = tables.get(column["tableId"])
            if table is None or column["kind"] != "r":
                continue
            result.columns.append(
                self._column(table, column, enum_by_type, defaults_by_attr, single, sequences_by_oid)
            )

        self._constraints(result, constraints, tables, tables_list, namespace_names, by_ordinal)
        self._indexes(result, indexes, constraints, tables, namespace_names, by_ordinal, ops)

        for column in columns:
            view = views.get(column["tableId"])
            if view is None:
                continue
            enum = enum_by_type.get(column["typeId"])
            sql_type, dims = canonicalize_catalog_type(enum.name if enum else column["type"])
            result.view_columns.append(
                ViewColumn(
                    schema_name=view["schema"],
                    view=view["name"],
                    name=column["name"],
                    sql_type=sql_type,
                    type_schema=enum.schema_name if enum else None,
                    array_dimensions=column["dimensions"] or dims,
                    is_not_null=bool(column["notNull"]),
                )
            )

        access_by_oid = {am["oid"]: am["name"] for am in access_methods}
        tablespace_by_oid = {ts["oid"]: ts["name"] for ts in tablespaces}
        for view in views.values():
            if not entity_filter.table(view["schema"], view["name"]):
                continue
            tablespace = tablespace_by_oid.get(view["tablespaceId"])
            using = access_by_oid.get(view["accessMethod"])
            result.views.append(
                View(
                    schema_name=view["schema"],
                    name=view["name"],
                    definition=parse_view_definition(view["definition"]),
                    with_options=self._view_options(view["options"]),
                    is_materialized=view["kind"] == "m",
                    tablespace=None if tablespace in (None, self.defaults.default_tablespace) else tablespace,
                    using_access_method=None if using in (None, self.defaults.default_access_method) else using,
                )
            )

        progress("columns", len(result.columns), "done")
        progress("indexes", len(result.indexes), "done")
        progress("fks", len(result.foreign_keys), "done")
        progress("checks", len(result.check_constraints), "done")
        progress("views", len(result.views), "done")
        logger.debug(
            "postgres introspection: %d tables, %d columns, %d indexes, %d views",
            len(result.tables),
            len(result.columns),
            len(result.indexes),
            len(result.views),
        )
        return result

    def _enums(self, result: InterimSchema, rows: List[Row], namespace_names: Dict[int, str]) -> Dict[int, Enum]:
        by_type: Dict[int, Enum] = {}
        for row in rows:
            enum = by_type.get(row["oid"])
            if enum is None:
                enum = Enum(schema_name=namespace_names[row["schemaId"]], name=row["name"], values=[])
                by_type[row["oid"]] = enum
                # array columns of the enum point at typarray
                by_type[row["arrayTypeId"]] = enum
                result.enums.append(enum)
            enum.values.append(row["value"])
        return by_type

    def _column(
        self,
        table: Row,
        column: Row,
        enum_by_type: Dict[int, Enum],
        defaults_by_attr: Dict[Tuple[int, int], str],
        single: Dict[Tuple[str, int, int], Row],
        sequences_by_oid: Dict[int, Row],
    ) -> Column:
        key = (column["tableId"], column["ordinality"])
        enum = enum_by_type.get(column["typeId"])
        raw_type = column["type"].replace("[]", "")
        sql_type, _ = canonicalize_catalog_type(enum.name if enum else raw_type)
        dimensions = column["dimensions"] or 0
        raw_default = defaults_by_attr.get(key)

        if sql_type in SERIALS and is_serial_expression(raw_default, table["schema"]):
            sql_type = SERIALS[sql_type]
            raw_default = None

        metadata = _json(column["metadata"])
        generated = None
        if column["generatedType"] == "s":
            if not metadata or not metadata.get("expression"):
                raise ValueError(f"Generated {table['schema']}.{table['name']}.{column['name']} is missing its expression")
            generated = Generated(expression=metadata["expression"], persistence="stored")

        identity = None
        if column["identityType"]:
            if not metadata:
                raise ValueError(f"Identity {table['schema']}.{table['name']}.{column['name']} is missing its metadata")
            sequence = sequences_by_oid.get(int(metadata["seqId"])) if metadata.get("seqId") else None
            identity = Identity(
                kind="always" if column["identityType"] == "a" else "by default",
                sequence_name=sequence["name"] if sequence else None,
                increment=option_text(metadata.get("increment")),
                min_value=option_text(metadata.get("min")),
                max_value=option_text(metadata.get("max")),
                start_with=option_text(metadata.get("start")),
                cache_size=option_text(sequence["cacheSize"]) if sequence else self.defaults.identity_cache,
                cycles=metadata.get("cycle") == "YES",
            )

        unique = single.get(("u", column["tableId"], column["ordinality"]))
        pk = single.get(("p", column["tableId"], column["ordinality"]))
        return Column(
            schema_name=table["schema"],
            table=table["name"],
            name=column["name"],
            sql_type=sql_type,
            type_schema=enum.schema_name if enum else None,
            array_dimensions=dimensions,
            default=None if generated else default_for_column(sql_type, raw_default, dimensions),
            generated=generated,
            identity=identity,
            is_unique=unique is not None,
            unique_constraint_name=unique["name"] if unique else None,
            unique_nulls_are_distinct="NULLS NOT DISTINCT" not in unique["definition"] if unique else True,
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
        by_ordinal: Dict[Tuple[int, int], str],
    ) -> None:
        all_tables = {row["oid"]: row for row in tables_list}
        for c in constraints:
            table = tables.get(c["tableId"])
            if table is None:
                continue
            schema_name = namespace_names[c["schemaId"]]
            columns = [by_ordinal[(c["tableId"], o)] for o in c["columnsOrdinals"] or []]
            kind = c["type"]
            if kind == "u":
                result.unique_constraints.append(
                    UniqueConstraint(
                        schema_name=schema_name,
                        table=table["name"],
                        name=c["name"],
                        name_was_explicit=True,
                        columns=columns,
                        nulls_are_distinct="NULLS NOT DISTINCT" not in c["definition"],
                    )
                )
            elif kind == "p":
                result.primary_keys.append(
                    PrimaryKey(
                        schema_name=schema_name,
                        table=table["name"],
                        name=c["name"],
                        columns=columns,
                        name_was_explicit=True,
                    )
                )
            elif kind == "f":
                target = all_tables.get(c["tableToId"])
                target_ordinals = list(c["columnsToOrdinals"] or [])
                if target is None or any((c["tableToId"], o) not in by_ordinal for o in target_ordinals):
                    # referenced table lies outside the introspected set
                    logger.warning(
                        "skipping foreign key %s: target relation %s was not introspected",
                        c["name"],
                        c["tableToId"],
                    )
                    continue
                target_name = target["name"]
                target_schema = namespace_names[target["schemaId"]]
                target_columns = [by_ordinal[(c["tableToId"], o)] for o in target_ordinals]
                result.foreign_keys.append(
                    ForeignKey(
                        schema_name=schema_name,
                        table=table["name"],
                        name=c["name"],
                        name_was_explicit=True,
                        columns=columns,
                        target_schema=target_schema,
                        target_table=target_name,
                        target_columns=target_columns,
                        on_update=parse_on_type(c["onUpdate"]),
                        on_delete=parse_on_type(c["onDelete"]),
                    )
                )
            elif kind == "c":
                result.check_constraints.append(
                    CheckConstraint(
                        schema_name=schema_name,
                        table=table["name"],
                        name=c["name"],
                        expression=parse_check_definition(c["definition"]),
                    )
                )

    def _indexes(
        self,
        result: InterimSchema,
        indexes: List[Row],
        constraints: List[Row],
        tables: Dict[int, Row],
        namespace_names: Dict[int, str],
        by_ordinal: Dict[Tuple[int, int], str],
        ops: List[Row],
    ) -> None:
        ops_by_oid = {op["oid"]: op for op in ops}
        unique_index_ids = {c["indexId"] for c in constraints if c["type"] == "u"}
        pk_index_ids = {c["indexId"] for c in constraints if c["type"] == "p"}

        for idx in indexes:
            metadata = _json(idx["metadata"])
            table = tables.get(metadata["tableId"])
            if table is None:
                continue
            for_primary_key = bool(metadata["isPrimary"]) and idx["oid"] in pk_index_ids
            for_unique = bool(metadata["isUnique"]) and idx["oid"] in unique_index_ids
            # indexes backing a primary key or unique constraint are described by the constraint
            if for_primary_key or for_unique:
                continue
            ordinals = list(metadata["columnOrdinals"])
            expressions = split_expressions(metadata["expression"])
            if len(expressions) != ordinals.count(0):
                raise ValueError(
                    f"expression split doesn't match non-columns count: {ordinals} "
                    f"'{metadata['expression']}':{len(expressions)}:{ordinals.count(0)}"
                )
            options = list(metadata["options"])
            opclass_ids = list(metadata["opclassIds"])
            columns: List[IndexColumn] = []
            remaining = iter(expressions)
            for i, ordinal in enumerate(ordinals):
                # INCLUDE columns carry no sort options
                if i >= len(options):
                    break
                op = ops_by_oid.get(opclass_ids[i]) if i < len(opclass_ids) else None
                is_expression = ordinal == 0
                columns.append(
                    IndexColumn(
                        value=next(remaining) if is_expression else by_ordinal[(metadata["tableId"], ordinal)],
                        is_expression=is_expression,
                        ascending=not options[i] & 1,
                        nulls_first=bool(options[i] & 2),
                        operator_class=op["name"] if op and not op["default"] else None,
                    )
                )
            result.indexes.append(
                Index(
                    schema_name=namespace_names[idx["schemaId"]],
                    table=table["name"],
                    name=idx["name"],
                    name_was_explicit=True,
                    columns=columns,
                    is_unique=bool(metadata["isUnique"]),
                    where_clause=metadata["where"],
                    is_concurrent=False,
                    method=idx["accessMethod"],
                    with_options=", ".join(_pg_list(idx["with"])),
                    for_primary_key=for_primary_key,
                    for_unique=for_unique,
                )
            )

    def _view_options(self, options: Any) -> Optional[Dict[str, Any]]:
        raw: Dict[str, str] = {}
        for item in _pg_list(options):
            key, sep, value = item.partition("=")
            if not sep:
                raise ValueError(f"Unexpected view option: {item}")
            raw[to_camel_case(key.strip())] = value.strip()
        record = OptionsRecord(raw)

        parsed: Dict[str, Any] = {}
        for key in VIEW_BOOL_OPTIONS:
            parsed[key] = record.bool(key)
        for key in VIEW_NUM_OPTIONS:
            parsed[key] = record.num(key)
        for key, (source, allowed) in VIEW_LITERAL_OPTIONS.items():
            parsed[key] = record.literal(source, allowed)
        known = set(VIEW_BOOL_OPTIONS) | set(VIEW_NUM_OPTIONS) | {source for source, _ in VIEW_LITERAL_OPTIONS.values()}
        for key, value in raw.items():
            if key not in known:
                parsed[key] = wrap_option_value(value)

        kept = {k: v for k, v in parsed.items() if v is not None}
        return kept or None
