from __future__ import annotations

import importlib
import logging
import os
import sys
from dataclasses import dataclass
from types import ModuleType
from typing import Any, Dict, List, Optional, Tuple, Union

from sqlalchemy import (
    ARRAY,
    CheckConstraint as SACheckConstraint,
    Column as SAColumn,
    Enum as SAEnum,
    ForeignKeyConstraint as SAForeignKeyConstraint,
    Index as SAIndex,
    MetaData,
    PrimaryKeyConstraint as SAPrimaryKeyConstraint,
    Sequence as SASequence,
    Table as SATable,
    UniqueConstraint as SAUniqueConstraint,
)
from sqlalchemy.dialects import postgresql as pg
from sqlalchemy.sql import operators
from sqlalchemy.sql.elements import ClauseElement, TextClause, UnaryExpression

from schema_bridge.adapters.base import SchemaSource
from schema_bridge.adapters.declared import (
    ColumnExpr,
    DeclaredCheck,
    DeclaredColumn,
    DeclaredEnum,
    DeclaredForeignKey,
    DeclaredGenerated,
    DeclaredIdentity,
    DeclaredIndex,
    DeclaredNamespace,
    DeclaredPolicy,
    DeclaredPrimaryKey,
    DeclaredRole,
    DeclaredSchema,
    DeclaredSequence,
    DeclaredTable,
    DeclaredUnique,
    DeclaredView,
    IndexedColumn,
    LiteralValue,
    SqlExpr,
)

logger = logging.getLogger(__name__)


def _compile_type(sa_type) -> str:
    compiled = sa_type.compile(dialect=pg.dialect()).lower()
    return compiled.replace(" without time zone", "")


def _compile_sql(clause: ClauseElement) -> str:
    if isinstance(clause, TextClause):
        return str(clause.text)
    return str(clause.compile(dialect=pg.dialect(), compile_kwargs={"literal_binds": True}))


def _column_type(col: SAColumn) -> Tuple[str, int]:
    sa_type = col.type
    if isinstance(sa_type, ARRAY):
        return _compile_type(sa_type.item_type), sa_type.dimensions or 1
    return _compile_type(sa_type), 0


def _column_default(col: SAColumn) -> Optional[ColumnExpr]:
    server_default = col.server_default
    if server_default is not None and hasattr(server_default, "arg"):
        arg = server_default.arg
        # a plain string server_default is a quoted literal in DDL
        if isinstance(arg, str):
            return LiteralValue(arg)
        return SqlExpr(_compile_sql(arg))
    default = col.default
    if default is not None and getattr(default, "is_scalar", False):
        return LiteralValue(default.arg)
    return None


def _column_identity(col: SAColumn) -> Optional[DeclaredIdentity]:
    identity = getattr(col, "identity", None)
    if identity is None:
        return None
    return DeclaredIdentity(
        kind="always" if identity.always else "by default",
        increment=identity.increment,
        start_with=identity.start,
        min_value=identity.minvalue,
        max_value=identity.maxvalue,
        cache=identity.cache,
        cycle=bool(identity.cycle),
    )


def _column_generated(col: SAColumn) -> Optional[DeclaredGenerated]:
    computed = getattr(col, "computed", None)
    if computed is None:
        return None
    if computed.persisted is None:
        mode = None
    else:
        mode = "persisted" if computed.persisted else "virtual"
    return DeclaredGenerated(expression=SqlExpr(_compile_sql(computed.sqltext)), mode=mode)


def _enum_of(col: SAColumn, enums: Dict[Tuple[Optional[str], str], DeclaredEnum]) -> Optional[DeclaredEnum]:
    sa_type = col.type.item_type if isinstance(col.type, ARRAY) else col.type
    if not isinstance(sa_type, SAEnum) or not sa_type.name:
        return None
    key = (sa_type.schema, sa_type.name)
    if key not in enums:
        enums[key] = DeclaredEnum(name=sa_type.name, values=list(sa_type.enums), schema=sa_type.schema)
    return enums[key]


def _explicit_name(name: Any) -> Optional[str]:
    # unnamed constraints carry a non-str sentinel until DDL time
    return name if isinstance(name, str) else None


def _pg_option(item, key: str, default=None):
    return item.dialect_options["postgresql"].get(key) or default


def _ordered(items) -> list:
    # Table.constraints and Table.indexes are sets
    return sorted(items, key=lambda item: (_explicit_name(item.name) or "", [str(c) for c in _members(item)]))


def _members(item) -> list:
    if isinstance(item, SAIndex):
        return list(item.expressions)
    return list(item.columns)


@dataclass
class LoadedModule:
    module: ModuleType
    sys_path_added: bool


def _purge_package_cache(module_hint: str) -> None:
    root_pkg = module_hint.split(".")[0]
    for key in list(sys.modules.keys()):
        if key == root_pkg or key.startswith(root_pkg + "."):
            sys.modules.pop(key, None)


def _import_models(repo_path: str, module_hint: Optional[str]) -> LoadedModule:
    if not module_hint:
        raise RuntimeError("module_hint is required for the SQLAlchemy source")
    abs_repo = os.path.abspath(repo_path) if repo_path else None
    sys_path_added = False
    if abs_repo and abs_repo not in sys.path:
        sys.path.insert(0, abs_repo)
        sys_path_added = True
    # fresh import space so two model trees with the same package name do not collide
    _purge_package_cache(module_hint)
    module = importlib.import_module(module_hint)
    return LoadedModule(module=module, sys_path_added=sys_path_added)


def _metadata_of(module: ModuleType) -> MetaData:
    base = getattr(module, "Base", None)
    if base is not None:
        return base.metadata
    metadata = getattr(module, "metadata", None)
    if isinstance(metadata, MetaData):
        return metadata
    raise RuntimeError(f"{module.__name__} defines neither Base nor metadata")


class SQLAlchemySource(SchemaSource):
    """Reads SQLAlchemy models into the declared-schema surface.

    Row level security is declared through ``Table.info``: ``info["rls"] = True`` and
    ``info["policies"] = [{"name": ..., "as": ..., "for": ..., "to": [...], "using": ..., "with_check": ...}]``.
    Roles, views and extra schemas come from ``MetaData.info`` under ``roles``, ``views`` and ``schemas``.
    """

    def load(self, repo_path: str, module_hint: str | None = None) -> DeclaredSchema:
        loaded = _import_models(repo_path, module_hint)
        try:
            metadata = _metadata_of(loaded.module)
        finally:
            # cleanup: purge package and sys.path insertion to avoid cross-tree bleed
            _purge_package_cache(module_hint)
            if loaded.sys_path_added and sys.path and sys.path[0] == os.path.abspath(repo_path):
                sys.path.pop(0)
        return declared_from_metadata(metadata)


def declared_from_metadata(metadata: MetaData) -> DeclaredSchema:
    enums: Dict[Tuple[Optional[str], str], DeclaredEnum] = {}
    sequences: Dict[Tuple[Optional[str], str], DeclaredSequence] = {}
    tables: List[DeclaredTable] = []
    by_key: Dict[Tuple[Optional[str], str], DeclaredTable] = {}

    for satable in metadata.tables.values():
        table = _declared_table(satable, enums, sequences)
        tables.append(table)
        by_key[(satable.schema, satable.name)] = table

    # foreign keys need every target table's declared columns
    for satable in metadata.tables.values():
        table = by_key[(satable.schema, satable.name)]
        for constraint in _ordered(satable.constraints):
            if isinstance(constraint, SAForeignKeyConstraint):
                table.foreign_keys.append(_declared_fk(constraint, table, by_key))

    namespace_names: List[str] = []
    for name in [t.schema for t in tables] + [e.schema for e in enums.values()] + list(
        metadata.info.get("schemas", [])
    ):
        if name and name not in namespace_names:
            namespace_names.append(name)

    roles = [_declared_role(item) for item in metadata.info.get("roles", [])]
    views = [_declared_view(item) for item in metadata.info.get("views", [])]

    logger.debug("declared %d tables, %d enums from %s", len(tables), len(enums), metadata)
    return DeclaredSchema(
        namespaces=[DeclaredNamespace(name=n) for n in namespace_names],
        tables=tables,
        enums=list(enums.values()),
        sequences=list(sequences.values()),
        roles=roles,
        views=views,
    )


def _declared_table(
    satable: SATable,
    enums: Dict[Tuple[Optional[str], str], DeclaredEnum],
    sequences: Dict[Tuple[Optional[str], str], DeclaredSequence],
) -> DeclaredTable:
    pk_cols = list(satable.primary_key.columns)
    single_pk = len(pk_cols) == 1

    columns: Dict[str, DeclaredColumn] = {}
    for col in satable.columns:
        sql_type, dimensions = _column_type(col)
        enum = _enum_of(col, enums)
        if enum is not None:
            sql_type = enum.name
        if isinstance(col.default, SASequence):
            seq = col.default
            sequences.setdefault(
                (seq.schema, seq.name),
                DeclaredSequence(
                    name=seq.name,
                    schema=seq.schema,
                    increment=seq.increment,
                    start_with=seq.start,
                    min_value=seq.minvalue,
                    max_value=seq.maxvalue,
                    cache=seq.cache,
                    cycle=bool(seq.cycle),
                ),
            )
        columns[col.name] = DeclaredColumn(
            key=col.key,
            # key and name only differ when the model renames the column explicitly
            name=col.name if col.name != col.key else None,
            sql_type=sql_type,
            dimensions=dimensions,
            not_null=not col.nullable,
            primary=single_pk and col.primary_key,
            unique=bool(col.unique),
            default=_column_default(col),
            generated=_column_generated(col),
            identity=_column_identity(col),
            enum=enum,
        )

    table = DeclaredTable(
        name=satable.name,
        schema=satable.schema,
        columns=list(columns.values()),
        enable_rls=bool(satable.info.get("rls", False)),
        existing=bool(satable.info.get("existing", False)),
    )

    for constraint in _ordered(satable.constraints):
        if isinstance(constraint, SAPrimaryKeyConstraint):
            if len(constraint.columns) > 1 or _explicit_name(constraint.name):
                table.primary_keys.append(
                    DeclaredPrimaryKey(
                        columns=[columns[c.name] for c in constraint.columns],
                        name=_explicit_name(constraint.name),
                    )
                )
        elif isinstance(constraint, SAUniqueConstraint):
            members = [columns[c.name] for c in constraint.columns]
            name = _explicit_name(constraint.name)
            # Column(unique=True) also shows up here as an unnamed single-column constraint
            if len(members) == 1 and members[0].unique and name is None:
                continue
            table.uniques.append(
                DeclaredUnique(
                    columns=members,
                    name=name,
                    nulls_not_distinct=bool(_pg_option(constraint, "nulls_not_distinct", False)),
                )
            )
        elif isinstance(constraint, SACheckConstraint):
            name = _explicit_name(constraint.name) or f"{satable.name}_check{len(table.checks) + 1}"
            table.checks.append(DeclaredCheck(name=name, expression=SqlExpr(_compile_sql(constraint.sqltext))))

    for idx in _ordered(satable.indexes):
        table.indexes.append(_declared_index(idx, columns))

    for policy in satable.info.get("policies", []):
        table.policies.append(_declared_policy(policy))
    return table


def _declared_index(idx: SAIndex, columns: Dict[str, DeclaredColumn]) -> DeclaredIndex:
    opclasses = _pg_option(idx, "ops", {})
    members: List[Union[IndexedColumn, SqlExpr]] = []
    for expr in idx.expressions:
        order = None
        nulls = None
        while isinstance(expr, UnaryExpression) and expr.modifier is not None:
            if expr.modifier is operators.desc_op:
                order = "desc"
            elif expr.modifier is operators.asc_op:
                order = "asc"
            elif expr.modifier is operators.nulls_first_op:
                nulls = "first"
            elif expr.modifier is operators.nulls_last_op:
                nulls = "last"
            else:
                break
            expr = expr.element
        if isinstance(expr, SAColumn) and expr.name in columns:
            members.append(
                IndexedColumn(
                    column=columns[expr.name],
                    order=order,
                    nulls=nulls,
                    opclass=opclasses.get(expr.name),
                )
            )
        else:
            members.append(SqlExpr(_compile_sql(expr)))

    where = _pg_option(idx, "where")
    return DeclaredIndex(
        columns=members,
        name=_explicit_name(idx.name),
        unique=bool(idx.unique),
        where=SqlExpr(_compile_sql(where)) if where is not None else None,
        concurrently=bool(_pg_option(idx, "concurrently", False)),
        method=_pg_option(idx, "using"),
        with_options=dict(_pg_option(idx, "with", {})),
    )


def _declared_fk(
    constraint: SAForeignKeyConstraint,
    table: DeclaredTable,
    tables: Dict[Tuple[Optional[str], str], DeclaredTable],
) -> DeclaredForeignKey:
    referred = constraint.referred_table
    target = tables.get((referred.schema, referred.name))
    local = [table.column(element.parent.name) for element in constraint.elements]
    if target is not None:
        remote = [target.column(element.column.name) for element in constraint.elements]
    else:
        remote = [
            DeclaredColumn(key=element.column.key, name=element.column.name, sql_type=_compile_type(element.column.type))
            for element in constraint.elements
        ]
    return DeclaredForeignKey(
        columns=local,
        target_table=referred.name,
        target_columns=remote,
        target_schema=referred.schema,
        name=_explicit_name(constraint.name),
        on_delete=constraint.ondelete,
        on_update=constraint.onupdate,
    )


def _sql_or_none(value: Optional[str]) -> Optional[SqlExpr]:
    return SqlExpr(value) if value is not None else None


def _declared_policy(item: Dict[str, Any]) -> DeclaredPolicy:
    return DeclaredPolicy(
        name=item["name"],
        as_=item.get("as"),
        for_=item.get("for"),
        to=item.get("to"),
        using=_sql_or_none(item.get("using")),
        with_check=_sql_or_none(item.get("with_check")),
    )


def _declared_role(item: Union[str, Dict[str, Any]]) -> DeclaredRole:
    if isinstance(item, str):
        return DeclaredRole(name=item)
    return DeclaredRole(**item)


def _declared_view(item: Dict[str, Any]) -> DeclaredView:
    fields = dict(item)
    query = fields.pop("query", None)
    return DeclaredView(query=_sql_or_none(query), **fields)
