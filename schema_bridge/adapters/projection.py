from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence

from schema_bridge.adapters.base import AdapterResult, DialectAdapter
from schema_bridge.adapters.declared import (
    DeclaredColumn,
    DeclaredForeignKey,
    DeclaredGenerated,
    DeclaredIdentity,
    DeclaredIndex,
    DeclaredPolicy,
    DeclaredRole,
    DeclaredSchema,
    DeclaredTable,
    GeneratedRef,
    IndexedColumn,
    LiteralValue,
    PolicyTarget,
    SqlExpr,
    render_expr,
)
from schema_bridge.core.casing import get_column_casing, normalize_casing
from schema_bridge.core.defaults import Defaults
from schema_bridge.core.diagnostics import (
    Diagnostics,
    IndexNoName,
    PgVectorIndexNoop,
    PolicyNotLinked,
    Projected,
    describe,
)
from schema_bridge.core.filter import EntityFilter, prepare_entity_filter
from schema_bridge.core.grammar import (
    canonicalize_declared_type,
    classify_expression_default,
    default_name_for_fk,
    default_name_for_identity_sequence,
    default_name_for_pk,
    default_name_for_unique,
    identity_bounds,
    index_name,
    parse_fk_action,
    resolve_sequence_options,
    serialize_literal_default,
    split_sql_type,
    unwrap_array_type,
)
from schema_bridge.core.ir import (
    CheckConstraint,
    Column,
    ColumnDefault,
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
    Sequence as SequenceEntity,
    Table,
    UniqueConstraint,
    View,
)
from schema_bridge.errors import assert_unreachable

logger = logging.getLogger(__name__)

SERIAL_TYPES = ("smallserial", "serial", "bigserial")


class ProjectingAdapter(DialectAdapter):
    """Walks a DeclaredSchema and emits interim entities.

    Dialects differ only in the capability flags and hooks below; the walk order is fixed:
    schemas, tables, per-table columns/constraints/indexes/checks/policies, standalone policies,
    views, sequences, enums, roles.
    """

    dialect = "postgresql"
    supports_schemas = True
    supports_identity = True
    supports_policies = True
    supports_enums = True
    supports_sequences = True
    supports_foreign_keys = True
    supports_roles = True
    supports_views = True
    supports_concurrent_index = True
    drops_serial_default = True
    warns_on_vector_index = False

    def __init__(self, defaults: Optional[Defaults] = None):
        self.defaults = defaults or Defaults.for_dialect(self.dialect)

    # --- hooks -------------------------------------------------------------

    def schema_of(self, schema: Optional[str]) -> str:
        if not self.supports_schemas:
            return self.defaults.placeholder_schema
        return schema or self.defaults.default_schema or self.defaults.placeholder_schema

    def same_column(self, a: DeclaredColumn, b: DeclaredColumn) -> bool:
        return a is b or (a.name or a.key) == (b.name or b.key)

    def is_not_null(self, column: DeclaredColumn, is_pk: bool) -> bool:
        return column.not_null or is_pk

    def project_generated(self, generated: Optional[DeclaredGenerated]) -> Optional[Generated]:
        if generated is None:
            return None
        return Generated(expression=render_expr(generated.expression, "generated"), persistence="stored")

    def project_identity(
        self, table: str, column: str, identity: Optional[DeclaredIdentity], base_type: str
    ) -> Optional[Identity]:
        if identity is None or not self.supports_identity:
            return None
        opts = resolve_sequence_options(
            {
                "increment": identity.increment,
                "min_value": identity.min_value,
                "max_value": identity.max_value,
                "start_with": identity.start_with,
                "cache": identity.cache,
            },
            identity_bounds(base_type, self.defaults),
            self.defaults.identity_increment,
            self.defaults.identity_cache,
        )
        return Identity(
            kind=identity.kind,
            sequence_name=identity.sequence_name or default_name_for_identity_sequence(table, column),
            increment=opts["increment"],
            start_with=opts["start_with"],
            min_value=opts["min_value"],
            max_value=opts["max_value"],
            cache_size=opts["cache"],
            cycles=identity.cycle,
        )

    def fk_name(self, table: str, columns: Sequence[str], table_to: str, columns_to: Sequence[str]) -> str:
        return default_name_for_fk(table, columns, table_to, columns_to, self.defaults.max_identifier_length)

    # --- entry point -------------------------------------------------------

    def from_declared_schema(
        self,
        declared: DeclaredSchema,
        casing: Optional[str] = None,
        entity_filter: Optional[EntityFilter] = None,
    ) -> AdapterResult:
        flt = entity_filter or prepare_entity_filter(self.dialect)
        casing = normalize_casing(casing)

        schemas = self.project_schemas(declared, flt)
        retained = [
            t for t in declared.tables if not t.existing and flt.table(self.schema_of(t.schema), t.name)
        ]
        tables = self.project_tables(retained, declared.policies)

        per_table: Dict[str, Projected] = {}
        for kind in ("columns", "primary_keys", "uniques", "foreign_keys", "indexes", "checks", "policies"):
            per_table[kind] = Projected.concat(
                [getattr(self, f"project_{kind}")(table, casing) for table in retained]
            )
        standalone = self.project_standalone_policies(declared.policies, flt)
        views = self.project_views(declared, flt)
        sequences = self.project_sequences(declared, flt)
        enums = self.project_enums(declared, flt)
        roles = self.project_roles(declared.roles, flt)

        diagnostics = Diagnostics()
        for part in (schemas, tables, *per_table.values(), standalone, views, sequences, enums, roles):
            diagnostics = diagnostics + part.diagnostics

        schema = InterimSchema(
            dialect=self.dialect,
            schemas=schemas.value,
            tables=tables.value,
            columns=per_table["columns"].value,
            indexes=per_table["indexes"].value,
            primary_keys=per_table["primary_keys"].value,
            foreign_keys=per_table["foreign_keys"].value,
            unique_constraints=per_table["uniques"].value,
            check_constraints=per_table["checks"].value,
            sequences=sequences.value,
            roles=roles.value,
            policies=per_table["policies"].value + standalone.value,
            views=views.value,
            enums=enums.value,
        )
        logger.debug(
            "%s adapter: %d schemas, %d tables, %d columns, %d indexes",
            self.dialect,
            len(schema.schemas),
            len(schema.tables),
            len(schema.columns),
            len(schema.indexes),
        )
        for err in diagnostics.errors:
            logger.warning("schema error: %s", describe(err))
        for warn in diagnostics.warnings:
            logger.warning("schema warning: %s", describe(warn))
        return AdapterResult(schema=schema, errors=list(diagnostics.errors), warnings=list(diagnostics.warnings))

    # --- schemas / tables --------------------------------------------------

    def project_schemas(self, declared: DeclaredSchema, flt: EntityFilter) -> Projected[Schema]:
        if not self.supports_schemas:
            return Projected([])
        out = [
            Schema(name=ns.name)
            for ns in declared.namespaces
            if ns.name != self.defaults.default_schema and not ns.existing and flt.schema(ns.name)
        ]
        return Projected(out)

    def project_tables(
        self, tables: List[DeclaredTable], standalone: List[DeclaredPolicy]
    ) -> Projected[Table]:
        out = []
        for table in tables:
            rls = False
            if self.supports_policies:
                rls = (
                    table.enable_rls
                    or bool(table.policies)
                    or any(p.linked_table is table for p in standalone)
                )
            out.append(Table(schema_name=self.schema_of(table.schema), name=table.name, is_row_security_enabled=rls))
        return Projected(out)

    # --- columns -----------------------------------------------------------

    def column_name(self, column: DeclaredColumn, casing: str) -> str:
        return get_column_casing(column.key, column.name, casing)

    def project_columns(self, table: DeclaredTable, casing: str) -> Projected[Column]:
        schema_name = self.schema_of(table.schema)
        pk_columns = [c for pk in table.primary_keys for c in pk.columns]
        out = []
        for column in table.columns:
            name = self.column_name(column, casing)
            base_type, dims_from_type = unwrap_array_type(canonicalize_declared_type(column.sql_type))
            dimensions = column.dimensions or dims_from_type
            is_pk = column.primary or any(self.same_column(c, column) for c in pk_columns)

            type_schema = None
            if column.enum is not None and self.supports_enums:
                type_schema = self.schema_of(column.enum.schema)

            out.append(
                Column(
                    schema_name=schema_name,
                    table=table.name,
                    name=name,
                    sql_type=base_type,
                    type_schema=type_schema,
                    array_dimensions=dimensions,
                    is_primary_key=is_pk,
                    is_not_null=self.is_not_null(column, is_pk),
                    default=self.project_default(column, base_type, dimensions),
                    generated=self.project_generated(column.generated),
                    is_unique=column.unique,
                    unique_constraint_name=column.unique_name,
                    unique_nulls_are_distinct=not column.unique_nulls_not_distinct,
                    identity=self.project_identity(table.name, name, column.identity, base_type),
                )
            )
        return Projected(out)

    def project_default(self, column: DeclaredColumn, base_type: str, dimensions: int) -> Optional[ColumnDefault]:
        expr = column.default
        if expr is None:
            return None
        if self.drops_serial_default and base_type.lower() in SERIAL_TYPES:
            return None
        if isinstance(expr, (SqlExpr, GeneratedRef)):
            return classify_expression_default(render_expr(expr, "default"))
        if isinstance(expr, LiteralValue):
            _, options = split_sql_type(base_type)
            return serialize_literal_default(expr.value, base_type, dimensions, options, column.srid)
        assert_unreachable(expr, "column default")

    # --- constraints -------------------------------------------------------

    def _rename_cased(self, name: str, originals: List[str], cased: List[str], casing: str) -> str:
        if casing == "none":
            return name
        for original, new in zip(originals, cased):
            name = name.replace(original, new)
        return name

    def project_primary_keys(self, table: DeclaredTable, casing: str) -> Projected[PrimaryKey]:
        out = []
        for pk in table.primary_keys:
            columns = [self.column_name(c, casing) for c in pk.columns]
            if pk.name:
                name = self._rename_cased(pk.name, [c.name or c.key for c in pk.columns], columns, casing)
            else:
                name = default_name_for_pk(table.name)
            out.append(
                PrimaryKey(
                    schema_name=self.schema_of(table.schema),
                    table=table.name,
                    name=name,
                    columns=columns,
                    name_was_explicit=bool(pk.name),
                )
            )
        return Projected(out)

    def project_uniques(self, table: DeclaredTable, casing: str) -> Projected[UniqueConstraint]:
        out = []
        for unique in table.uniques:
            columns = [self.column_name(c, casing) for c in unique.columns]
            out.append(
                UniqueConstraint(
                    schema_name=self.schema_of(table.schema),
                    table=table.name,
                    name=unique.name or default_name_for_unique(table.name, *columns),
                    columns=columns,
                    name_was_explicit=bool(unique.name),
                    nulls_are_distinct=not unique.nulls_not_distinct,
                )
            )
        return Projected(out)

    def project_foreign_keys(self, table: DeclaredTable, casing: str) -> Projected[ForeignKey]:
        if not self.supports_foreign_keys:
            return Projected([])
        return Projected([self.project_foreign_key(table, fk, casing) for fk in table.foreign_keys])

    def project_foreign_key(self, table: DeclaredTable, fk: DeclaredForeignKey, casing: str) -> ForeignKey:
        columns = [self.column_name(c, casing) for c in fk.columns]
        target_columns = [self.column_name(c, casing) for c in fk.target_columns]
        if fk.name:
            originals = [c.name or c.key for c in fk.columns] + [c.name or c.key for c in fk.target_columns]
            name = self._rename_cased(fk.name, originals, columns + target_columns, casing)
        else:
            name = self.fk_name(table.name, columns, fk.target_table, target_columns)
        return ForeignKey(
            schema_name=self.schema_of(table.schema),
            table=table.name,
            name=name,
            name_was_explicit=bool(fk.name),
            columns=columns,
            target_schema=self.schema_of(fk.target_schema),
            target_table=fk.target_table,
            target_columns=target_columns,
            on_delete=parse_fk_action(fk.on_delete),
            on_update=parse_fk_action(fk.on_update),
        )

    def project_checks(self, table: DeclaredTable, casing: str) -> Projected[CheckConstraint]:
        out = [
            CheckConstraint(
                schema_name=self.schema_of(table.schema),
                table=table.name,
                name=check.name,
                expression=render_expr(check.expression),
            )
            for check in table.checks
        ]
        return Projected(out)

    # --- indexes -----------------------------------------------------------

    def _index_diagnostics(self, table: DeclaredTable, index: DeclaredIndex, casing: str) -> Diagnostics:
        diagnostics = Diagnostics()
        for col in index.columns:
            if isinstance(col, SqlExpr):
                if not index.name:
                    diagnostics = diagnostics + Diagnostics.error(
                        IndexNoName(schema_name=self.schema_of(table.schema), table=table.name, sql=col.render())
                    )
            elif isinstance(col, IndexedColumn):
                if self.warns_on_vector_index and col.column.is_vector and not col.opclass:
                    diagnostics = diagnostics + Diagnostics.warning(
                        PgVectorIndexNoop(
                            table=table.name,
                            column=self.column_name(col.column, casing),
                            index_name=index.name,
                            method=index.method,
                        )
                    )
            else:
                assert_unreachable(col, "index column")
        return diagnostics

    def _index_column(self, col, casing: str) -> IndexColumn:
        if isinstance(col, SqlExpr):
            return IndexColumn(value=col.render("index"), is_expression=True, ascending=True, nulls_first=False)
        ascending = col.order != "desc"
        # desc sorts nulls first unless told otherwise, asc sorts them last
        nulls_first = col.nulls == "first" if col.nulls else not ascending
        return IndexColumn(
            value=self.column_name(col.column, casing),
            is_expression=False,
            ascending=ascending,
            nulls_first=nulls_first,
            operator_class=col.opclass,
        )

    def project_indexes(self, table: DeclaredTable, casing: str) -> Projected[Index]:
        out = []
        diagnostics = Diagnostics()
        for index in table.indexes:
            found = self._index_diagnostics(table, index, casing)
            diagnostics = diagnostics + found
            if found.errors:
                continue
            columns = [self._index_column(col, casing) for col in index.columns]
            name = index.name or index_name(table.name, [c.value for c in columns])
            out.append(
                Index(
                    schema_name=self.schema_of(table.schema),
                    table=table.name,
                    name=name,
                    name_was_explicit=bool(index.name),
                    columns=columns,
                    is_unique=index.unique,
                    where_clause=index.where.render() if index.where is not None else None,
                    is_concurrent=bool(index.concurrently) and self.supports_concurrent_index,
                    method=index.method or self.defaults.index_method,
                    with_options=", ".join(f"{k}={v}" for k, v in index.with_options.items()),
                )
            )
        return Projected(out, diagnostics)

    # --- policies ----------------------------------------------------------

    def _policy_roles(self, target: PolicyTarget) -> List[str]:
        if target is None:
            return list(self.defaults.policy_roles)
        if isinstance(target, str):
            return [target]
        if isinstance(target, DeclaredRole):
            return [target.name]
        roles = []
        for item in target:
            if isinstance(item, str):
                roles.append(item)
            elif isinstance(item, DeclaredRole):
                roles.append(item.name)
            else:
                assert_unreachable(item, "policy role")
        return roles

    def project_policy(self, policy: DeclaredPolicy, schema_name: str, table: str) -> Policy:
        return Policy(
            schema_name=schema_name,
            table=table,
            name=policy.name,
            permissiveness=(policy.as_ or "permissive").upper(),
            applies_to=(policy.for_ or "all").upper(),
            roles=sorted(self._policy_roles(policy.to)),
            using_expression=policy.using.render() if policy.using is not None else None,
            with_check_expression=policy.with_check.render() if policy.with_check is not None else None,
        )

    def project_policies(self, table: DeclaredTable, casing: str) -> Projected[Policy]:
        if not self.supports_policies:
            return Projected([])
        schema_name = self.schema_of(table.schema)
        return Projected([self.project_policy(p, schema_name, table.name) for p in table.policies])

    def project_standalone_policies(self, policies: List[DeclaredPolicy], flt: EntityFilter) -> Projected[Policy]:
        if not self.supports_policies:
            return Projected([])
        out = []
        diagnostics = Diagnostics()
        for policy in policies:
            linked = policy.linked_table
            if linked is None:
                diagnostics = diagnostics + Diagnostics.warning(PolicyNotLinked(policy=policy.name))
                continue
            schema_name = self.schema_of(linked.schema)
            if linked.existing or not flt.table(schema_name, linked.name):
                continue
            out.append(self.project_policy(policy, schema_name, linked.name))
        return Projected(out, diagnostics)

    # --- views / sequences / enums / roles --------------------------------

    def project_views(self, declared: DeclaredSchema, flt: EntityFilter) -> Projected[View]:
        if not self.supports_views:
            return Projected([])
        out = []
        for view in declared.views:
            schema_name = self.schema_of(view.schema)
            if view.existing or not flt.table(schema_name, view.name):
                continue
            options = {k: v for k, v in view.with_options.items() if v is not None}
            out.append(
                View(
                    schema_name=schema_name,
                    name=view.name,
                    definition=render_expr(view.query) if view.query is not None else None,
                    with_options=options or None,
                    with_no_data=view.with_no_data if view.materialized else None,
                    is_materialized=view.materialized,
                    tablespace=view.tablespace,
                    using_access_method=view.using,
                )
            )
        return Projected(out)

    def project_sequences(self, declared: DeclaredSchema, flt: EntityFilter) -> Projected[SequenceEntity]:
        if not self.supports_sequences:
            return Projected([])
        out = []
        for seq in declared.sequences:
            schema_name = self.schema_of(seq.schema)
            if not flt.schema(schema_name):
                continue
            opts = resolve_sequence_options(
                {
                    "increment": seq.increment,
                    "min_value": seq.min_value,
                    "max_value": seq.max_value,
                    "start_with": seq.start_with,
                    "cache": seq.cache,
                },
                self.defaults.sequence_range,
                self.defaults.identity_increment,
                self.defaults.identity_cache,
            )
            out.append(
                SequenceEntity(
                    schema_name=schema_name,
                    name=seq.name,
                    increment_by=opts["increment"],
                    start_with=opts["start_with"],
                    min_value=opts["min_value"],
                    max_value=opts["max_value"],
                    cache_size=opts["cache"],
                    cycles=seq.cycle,
                )
            )
        return Projected(out)

    def project_enums(self, declared: DeclaredSchema, flt: EntityFilter) -> Projected[Enum]:
        if not self.supports_enums:
            return Projected([])
        out = []
        for enum in declared.enums:
            schema_name = self.schema_of(enum.schema)
            if flt.schema(schema_name):
                out.append(Enum(schema_name=schema_name, name=enum.name, values=list(enum.values)))
        return Projected(out)

    def project_roles(self, roles: List[DeclaredRole], flt: EntityFilter) -> Projected[Role]:
        if not self.supports_roles:
            return Projected([])
        out = []
        for role in roles:
            if role.existing or not flt.role(role.name):
                continue
            out.append(
                Role(
                    name=role.name,
                    superuser=role.superuser,
                    create_db=bool(role.create_db),
                    create_role=bool(role.create_role),
                    inherit=True if role.inherit is None else role.inherit,
                    can_login=role.can_login,
                    replication=role.replication,
                    bypass_row_security=role.bypass_rls,
                    connection_limit=role.connection_limit,
                    password=role.password,
                    valid_until=role.valid_until,
                )
            )
        return Projected(out)

