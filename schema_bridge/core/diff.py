from __future__ import annotations

from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from pydantic import BaseModel

from schema_bridge.core.ir import Column, InterimSchema, Table


class OpKind(str, Enum):
    CREATE_SCHEMA = "create_schema"
    DROP_SCHEMA = "drop_schema"
    CREATE_ENUM = "create_enum"
    DROP_ENUM = "drop_enum"
    ALTER_ENUM_VALUES = "alter_enum_values"
    CREATE_TABLE = "create_table"
    DROP_TABLE = "drop_table"
    RENAME_TABLE = "rename_table"
    ADD_COLUMN = "add_column"
    DROP_COLUMN = "drop_column"
    RENAME_COLUMN = "rename_column"
    ALTER_COLUMN_TYPE = "alter_column_type"
    ALTER_NULLABLE = "alter_nullable"
    ALTER_DEFAULT = "alter_default"
    ALTER_IDENTITY = "alter_identity"
    ALTER_GENERATED = "alter_generated"
    ADD_INDEX = "add_index"
    DROP_INDEX = "drop_index"
    ADD_PK = "add_pk"
    DROP_PK = "drop_pk"
    ADD_FK = "add_fk"
    DROP_FK = "drop_fk"
    ADD_UNIQUE = "add_unique"
    DROP_UNIQUE = "drop_unique"
    ADD_CHECK = "add_check"
    DROP_CHECK = "drop_check"
    ADD_POLICY = "add_policy"
    DROP_POLICY = "drop_policy"
    CREATE_VIEW = "create_view"
    DROP_VIEW = "drop_view"
    CREATE_SEQUENCE = "create_sequence"
    DROP_SEQUENCE = "drop_sequence"
    CREATE_ROLE = "create_role"
    DROP_ROLE = "drop_role"


class Op(BaseModel):
    kind: OpKind
    schema_name: Optional[str] = None
    table: Optional[str] = None
    payload: dict


TableKey = Tuple[str, str]


class RenameHints:
    """Parses ``renames`` hints.

    ``schema.table: schema.table`` renames a table when both sides name tables; ``schema.table.col``
    and the short ``table.col`` form rename columns.
    """

    def __init__(self, renames: Dict[str, str], base: InterimSchema, head: InterimSchema, default_schema: str):
        base_tables = {(t.schema_name, t.name) for t in base.tables}
        head_tables = {(t.schema_name, t.name) for t in head.tables}
        self.tables: Dict[TableKey, TableKey] = {}
        self.columns: Dict[Tuple[str, str, str], Tuple[str, str, str]] = {}
        for left, right in (renames or {}).items():
            lparts, rparts = left.split("."), right.split(".")
            if len(lparts) == 2 and len(rparts) == 2:
                lkey, rkey = (lparts[0], lparts[1]), (rparts[0], rparts[1])
                if lkey in base_tables and rkey in head_tables:
                    self.tables[lkey] = rkey
                    continue
                lparts, rparts = [default_schema] + lparts, [default_schema] + rparts
            if len(lparts) == 3 and len(rparts) == 3:
                self.columns[(lparts[0], lparts[1], lparts[2])] = (rparts[0], rparts[1], rparts[2])

    def column_target(self, table: TableKey, column: str) -> Optional[str]:
        target = self.columns.get((table[0], table[1], column))
        return target[2] if target else None


def _by_key(items: Iterable[Any], key: Callable[[Any], Any]) -> Dict[Any, Any]:
    return {key(item): item for item in items}


def diff_interim(base: InterimSchema, head: InterimSchema, hints: Optional[Dict] = None) -> List[Op]:
    hints = hints or {}
    default_schema = hints.get("default_schema", "public")
    renames = RenameHints(hints.get("renames", {}) or {}, base, head, default_schema)
    ops: List[Op] = []

    base_schemas = {s.name for s in base.schemas}
    head_schemas = {s.name for s in head.schemas}
    for name in sorted(head_schemas - base_schemas):
        ops.append(Op(kind=OpKind.CREATE_SCHEMA, schema_name=name, payload={}))

    ops.extend(_diff_enums(base, head))
    ops.extend(
        _diff_named(
            base.sequences,
            head.sequences,
            lambda s: (s.schema_name, s.name),
            OpKind.CREATE_SEQUENCE,
            OpKind.DROP_SEQUENCE,
            "sequence",
        )
    )
    ops.extend(_diff_named(base.roles, head.roles, lambda r: r.name, OpKind.CREATE_ROLE, OpKind.DROP_ROLE, "role"))
    ops.extend(_diff_tables(base, head, renames))
    ops.extend(
        _diff_named(
            base.views, head.views, lambda v: (v.schema_name, v.name), OpKind.CREATE_VIEW, OpKind.DROP_VIEW, "view"
        )
    )

    for name in sorted(base_schemas - head_schemas):
        ops.append(Op(kind=OpKind.DROP_SCHEMA, schema_name=name, payload={}))
    return ops


def _diff_named(base_items, head_items, key, add_kind: OpKind, drop_kind: OpKind, label: str) -> List[Op]:
    ops: List[Op] = []
    base_map = _by_key(base_items, key)
    head_map = _by_key(head_items, key)
    for k in sorted(set(head_map) - set(base_map), key=str):
        item = head_map[k]
        ops.append(
            Op(
                kind=add_kind,
                schema_name=getattr(item, "schema_name", None),
                table=getattr(item, "table", None),
                payload={label: item.model_dump()},
            )
        )
    for k in sorted(set(base_map) - set(head_map), key=str):
        item = base_map[k]
        ops.append(
            Op(
                kind=drop_kind,
                schema_name=getattr(item, "schema_name", None),
                table=getattr(item, "table", None),
                payload={"name": item.name},
            )
        )
    return ops


def _diff_enums(base: InterimSchema, head: InterimSchema) -> List[Op]:
    ops = _diff_named(
        base.enums, head.enums, lambda e: (e.schema_name, e.name), OpKind.CREATE_ENUM, OpKind.DROP_ENUM, "enum"
    )
    base_map = _by_key(base.enums, lambda e: (e.schema_name, e.name))
    for key, enum in sorted(_by_key(head.enums, lambda e: (e.schema_name, e.name)).items()):
        before = base_map.get(key)
        if before is not None and before.values != enum.values:
            ops.append(
                Op(
                    kind=OpKind.ALTER_ENUM_VALUES,
                    schema_name=enum.schema_name,
                    payload={"name": enum.name, "from": before.values, "to": enum.values},
                )
            )
    return ops


def _diff_tables(base: InterimSchema, head: InterimSchema, renames: RenameHints) -> List[Op]:
    ops: List[Op] = []
    base_tables = _by_key(base.tables, lambda t: (t.schema_name, t.name))
    head_tables = _by_key(head.tables, lambda t: (t.schema_name, t.name))

    pairs: List[Tuple[TableKey, TableKey]] = [(k, k) for k in sorted(set(base_tables) & set(head_tables))]
    renamed_from = set()
    renamed_to = set()
    for old, new in sorted(renames.tables.items()):
        if old in base_tables and new in head_tables and new not in base_tables:
            ops.append(
                Op(
                    kind=OpKind.RENAME_TABLE,
                    schema_name=old[0],
                    table=old[1],
                    payload={"from": f"{old[0]}.{old[1]}", "to": f"{new[0]}.{new[1]}"},
                )
            )
            pairs.append((old, new))
            renamed_from.add(old)
            renamed_to.add(new)

    for key in sorted(set(head_tables) - set(base_tables) - renamed_to):
        ops.append(
            Op(
                kind=OpKind.CREATE_TABLE,
                schema_name=key[0],
                table=key[1],
                payload={
                    "table": head_tables[key].model_dump(),
                    "columns": [c.model_dump() for c in head.columns if (c.schema_name, c.table) == key],
                },
            )
        )

    for old, new in pairs:
        ops.extend(_diff_table(base, head, base_tables[old], head_tables[new], renames))

    for key in sorted(set(base_tables) - set(head_tables) - renamed_from):
        ops.append(Op(kind=OpKind.DROP_TABLE, schema_name=key[0], table=key[1], payload={}))
    return ops


def _of_table(items, table: Table) -> list:
    return [i for i in items if i.schema_name == table.schema_name and i.table == table.name]


def _diff_table(
    base_schema: InterimSchema, head_schema: InterimSchema, base: Table, head: Table, hints: RenameHints
) -> List[Op]:
    ops: List[Op] = []
    scope = {"schema_name": head.schema_name, "table": head.name}

    base_columns = _by_key(_of_table(base_schema.columns, base), lambda c: c.name)
    head_columns = _by_key(_of_table(head_schema.columns, head), lambda c: c.name)
    base_cols = set(base_columns)
    head_cols = set(head_columns)

    removed = sorted(base_cols - head_cols)
    added = sorted(head_cols - base_cols)

    # Try rename inference (hints first, then compatible types)
    renames: List[Tuple[str, str]] = []
    used_added: set[str] = set()
    for rc in removed:
        target = hints.column_target((base.schema_name, base.name), rc)
        if target and target in added:
            renames.append((rc, target))
            used_added.add(target)
            continue
        bcol = base_columns[rc]
        for ac in added:
            if ac in used_added:
                continue
            if _is_type_compatible(bcol, head_columns[ac]):
                renames.append((rc, ac))
                used_added.add(ac)
                break

    for old_c, new_c in renames:
        ops.append(Op(kind=OpKind.RENAME_COLUMN, **scope, payload={"from": old_c, "to": new_c}))

    removed = [c for c in removed if c not in {r for r, _ in renames}]
    added = [c for c in added if c not in used_added]

    for c in added:
        ops.append(Op(kind=OpKind.ADD_COLUMN, **scope, payload={"column": head_columns[c].model_dump()}))
    for c in removed:
        ops.append(Op(kind=OpKind.DROP_COLUMN, **scope, payload={"name": c}))

    for src_name, dst_name in [(c, c) for c in sorted(base_cols & head_cols)] + renames:
        ops.extend(_diff_column(base_columns[src_name], head_columns[dst_name], scope))

    for label, field, add_kind, drop_kind in (
        ("index", "indexes", OpKind.ADD_INDEX, OpKind.DROP_INDEX),
        ("pk", "primary_keys", OpKind.ADD_PK, OpKind.DROP_PK),
        ("fk", "foreign_keys", OpKind.ADD_FK, OpKind.DROP_FK),
        ("unique", "unique_constraints", OpKind.ADD_UNIQUE, OpKind.DROP_UNIQUE),
        ("check", "check_constraints", OpKind.ADD_CHECK, OpKind.DROP_CHECK),
        ("policy", "policies", OpKind.ADD_POLICY, OpKind.DROP_POLICY),
    ):
        before = _by_key(_of_table(getattr(base_schema, field), base), lambda i: i.name)
        after = _by_key(_of_table(getattr(head_schema, field), head), lambda i: i.name)
        for name in sorted(set(after) - set(before)):
            ops.append(Op(kind=add_kind, **scope, payload={label: after[name].model_dump()}))
        for name in sorted(set(before) - set(after)):
            ops.append(Op(kind=drop_kind, **scope, payload={"name": name}))
        # same name, different definition: drop and re-add
        for name in sorted(set(before) & set(after)):
            if _definition(before[name]) != _definition(after[name]):
                ops.append(Op(kind=drop_kind, **scope, payload={"name": name}))
                ops.append(Op(kind=add_kind, **scope, payload={label: after[name].model_dump()}))
    return ops


def _definition(item: BaseModel) -> dict:
    return item.model_dump(exclude={"schema_name", "table", "name_was_explicit"})


def _diff_column(bcol: Column, hcol: Column, scope: Dict[str, str]) -> List[Op]:
    ops: List[Op] = []
    name = hcol.name
    if (bcol.sql_type, bcol.array_dimensions, bcol.type_schema) != (
        hcol.sql_type,
        hcol.array_dimensions,
        hcol.type_schema,
    ):
        ops.append(
            Op(
                kind=OpKind.ALTER_COLUMN_TYPE,
                **scope,
                payload={
                    "name": name,
                    "from": bcol.sql_type + "[]" * bcol.array_dimensions,
                    "to": hcol.sql_type + "[]" * hcol.array_dimensions,
                },
            )
        )
    if bcol.is_not_null != hcol.is_not_null:
        ops.append(Op(kind=OpKind.ALTER_NULLABLE, **scope, payload={"name": name, "nullable": not hcol.is_not_null}))
    # defaults compare by rendered value; the kind is a classification detail
    before = bcol.default.value if bcol.default else None
    after = hcol.default.value if hcol.default else None
    if before != after:
        ops.append(
            Op(
                kind=OpKind.ALTER_DEFAULT,
                **scope,
                payload={"name": name, "default": hcol.default.model_dump() if hcol.default else None},
            )
        )
    if bcol.identity != hcol.identity:
        ops.append(
            Op(
                kind=OpKind.ALTER_IDENTITY,
                **scope,
                payload={"name": name, "identity": hcol.identity.model_dump() if hcol.identity else None},
            )
        )
    if bcol.generated != hcol.generated:
        ops.append(
            Op(
                kind=OpKind.ALTER_GENERATED,
                **scope,
                payload={"name": name, "generated": hcol.generated.model_dump() if hcol.generated else None},
            )
        )
    return ops


def _is_type_compatible(bcol: Column, hcol: Column) -> bool:
    if bcol.array_dimensions != hcol.array_dimensions:
        return False
    t1, t2 = bcol.sql_type, hcol.sql_type
    if t1 == t2:
        return True

    def norm(x: str) -> str:
        return x.split("(")[0].strip().lower()

    n1, n2 = norm(t1), norm(t2)
    if {n1, n2} <= {"int", "integer", "bigint", "smallint", "int2", "int4", "int8"}:
        return True
    return n1 == n2
