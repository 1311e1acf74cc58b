from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, Hashable, List, Optional, Tuple, TypeVar

from schema_bridge.core.diagnostics import Duplicate, DuplicateKind
from schema_bridge.core.grammar import default_name_for_pk, default_name_for_unique
from schema_bridge.core.ir import Column, InterimSchema, PrimaryKey, UniqueConstraint

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class SnapshotResult:
    snapshot: InterimSchema
    errors: List[Duplicate] = field(default_factory=list)


def _dedupe(
    items: List[T],
    key: Callable[[T], Hashable],
    kind: DuplicateKind,
    errors: List[Duplicate],
    describe: Callable[[T], Dict[str, Optional[str]]],
) -> List[T]:
    seen = set()
    kept: List[T] = []
    for item in items:
        k = key(item)
        if k in seen:
            errors.append(Duplicate(type=kind, **describe(item)))
            continue
        seen.add(k)
        kept.append(item)
    return kept


def _table_scoped(item) -> Dict[str, Optional[str]]:
    return {"name": item.name, "schema_name": item.schema_name, "table": item.table}


def _schema_scoped(item) -> Dict[str, Optional[str]]:
    return {"name": item.name, "schema_name": item.schema_name}


def _fold_column_constraints(
    columns: List[Column], pks: List[PrimaryKey], uniques: List[UniqueConstraint]
) -> Tuple[List[PrimaryKey], List[UniqueConstraint]]:
    pks = list(pks)
    uniques = list(uniques)
    tables_with_pk = {(pk.schema_name, pk.table) for pk in pks}

    pk_columns: Dict[Tuple[str, str], List[Column]] = {}
    for column in columns:
        if column.is_primary_key and (column.schema_name, column.table) not in tables_with_pk:
            pk_columns.setdefault((column.schema_name, column.table), []).append(column)
    for (schema_name, table), members in pk_columns.items():
        pks.append(
            PrimaryKey(
                schema_name=schema_name,
                table=table,
                name=members[0].primary_key_constraint_name or default_name_for_pk(table),
                columns=[c.name for c in members],
                name_was_explicit=members[0].primary_key_constraint_name is not None,
            )
        )

    covered = {(u.schema_name, u.table, tuple(u.columns)) for u in uniques}
    for column in columns:
        if not column.is_unique or (column.schema_name, column.table, (column.name,)) in covered:
            continue
        uniques.append(
            UniqueConstraint(
                schema_name=column.schema_name,
                table=column.table,
                name=column.unique_constraint_name or default_name_for_unique(column.table, column.name),
                columns=[column.name],
                name_was_explicit=column.unique_constraint_name is not None,
                nulls_are_distinct=column.unique_nulls_are_distinct,
            )
        )
    return pks, uniques


def validate_interim(schema: InterimSchema) -> SnapshotResult:
    """Fold column-level keys into constraints and drop colliding entities, reporting each collision."""
    errors: List[Duplicate] = []

    schemas = _dedupe(schema.schemas, lambda s: s.name, "schema_name_duplicate", errors, lambda s: {"name": s.name})
    enums = _dedupe(
        schema.enums, lambda e: (e.schema_name, e.name), "enum_name_duplicate", errors, _schema_scoped
    )
    for enum in enums:
        if len(set(enum.values)) != len(enum.values):
            errors.append(Duplicate(type="enum_values_duplicate", name=enum.name, schema_name=enum.schema_name))

    tables = _dedupe(
        schema.tables, lambda t: (t.schema_name, t.name), "table_name_duplicate", errors, _schema_scoped
    )
    columns = _dedupe(
        schema.columns,
        lambda c: (c.schema_name, c.table, c.name),
        "column_name_duplicate",
        errors,
        _table_scoped,
    )
    # index names live in the schema namespace, not the table's
    indexes = _dedupe(schema.indexes, lambda i: (i.schema_name, i.name), "index_duplicate", errors, _table_scoped)

    pks, uniques = _fold_column_constraints(columns, schema.primary_keys, schema.unique_constraints)
    constraint_seen = set()
    kept_constraints: Dict[str, list] = {"pk": [], "fk": [], "unique": [], "check": []}
    for bucket, items in (
        ("pk", pks),
        ("fk", schema.foreign_keys),
        ("unique", uniques),
        ("check", schema.check_constraints),
    ):
        for item in items:
            key = (item.schema_name, item.table, item.name)
            if key in constraint_seen:
                errors.append(Duplicate(type="constraint_name_duplicate", **_table_scoped(item)))
                continue
            constraint_seen.add(key)
            kept_constraints[bucket].append(item)

    sequences = _dedupe(
        schema.sequences, lambda s: (s.schema_name, s.name), "sequence_name_duplicate", errors, _schema_scoped
    )
    roles = _dedupe(schema.roles, lambda r: r.name, "role_duplicate", errors, lambda r: {"name": r.name})
    privileges = _dedupe(
        schema.privileges, lambda p: p.name, "privilege_duplicate", errors, lambda p: {"name": p.name}
    )
    policies = _dedupe(
        schema.policies, lambda p: (p.schema_name, p.table, p.name), "policy_duplicate", errors, _table_scoped
    )

    table_keys = {(t.schema_name, t.name) for t in tables}
    views = []
    view_keys = set()
    for view in schema.views:
        key = (view.schema_name, view.name)
        # views share the relation namespace with tables
        if key in view_keys or key in table_keys:
            errors.append(Duplicate(type="view_name_duplicate", **_schema_scoped(view)))
            continue
        view_keys.add(key)
        views.append(view)

    for err in errors:
        logger.warning("snapshot %s: %s", err.type, err.name)

    snapshot = schema.model_copy(
        update={
            "schemas": schemas,
            "enums": enums,
            "tables": tables,
            "columns": columns,
            "indexes": indexes,
            "primary_keys": kept_constraints["pk"],
            "foreign_keys": kept_constraints["fk"],
            "unique_constraints": kept_constraints["unique"],
            "check_constraints": kept_constraints["check"],
            "sequences": sequences,
            "roles": roles,
            "privileges": privileges,
            "policies": policies,
            "views": views,
        }
    )
    return SnapshotResult(snapshot=snapshot, errors=errors)
