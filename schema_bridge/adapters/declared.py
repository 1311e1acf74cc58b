"""
Declared-schema surface consumed by the dialect adapters.

Sources (SQLAlchemy models, hand-built fixtures) describe their tables with these objects; the
adapters never look at the source's own classes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Literal, Optional, Sequence, Tuple, Union

from schema_bridge.errors import UnrenderableExpressionError, assert_unreachable


@dataclass(frozen=True)
class LiteralValue:
    value: Any


@dataclass(frozen=True)
class SqlExpr:
    text: str
    params: Tuple[Any, ...] = ()

    def render(self, position: str = "expression") -> str:
        if self.params and position == "default":
            raise UnrenderableExpressionError(self.text, position)
        return self.text


@dataclass(frozen=True)
class GeneratedRef:
    """Deferred expression, resolved when the adapter needs its text."""

    factory: Callable[[], Union["SqlExpr", str]]


ColumnExpr = Union[LiteralValue, SqlExpr, GeneratedRef]


def render_expr(expr: Union[ColumnExpr, str], position: str = "expression") -> str:
    if isinstance(expr, str):
        return expr
    if isinstance(expr, SqlExpr):
        return expr.render(position)
    if isinstance(expr, GeneratedRef):
        return render_expr(expr.factory(), position)
    if isinstance(expr, LiteralValue):
        return str(expr.value)
    assert_unreachable(expr, "column expression")


@dataclass
class DeclaredNamespace:
    name: str
    existing: bool = False


@dataclass
class DeclaredEnum:
    name: str
    values: List[str]
    schema: Optional[str] = None


@dataclass
class DeclaredIdentity:
    kind: Literal["always", "by default"] = "by default"
    sequence_name: Optional[str] = None
    increment: Optional[Union[int, str]] = None
    start_with: Optional[Union[int, str]] = None
    min_value: Optional[Union[int, str]] = None
    max_value: Optional[Union[int, str]] = None
    cache: Optional[Union[int, str]] = None
    cycle: bool = False


@dataclass
class DeclaredGenerated:
    expression: Union[SqlExpr, GeneratedRef, str]
    mode: Optional[Literal["stored", "virtual", "persisted"]] = None


@dataclass
class DeclaredColumn:
    key: str
    sql_type: str
    name: Optional[str] = None
    dimensions: int = 0
    not_null: bool = False
    primary: bool = False
    unique: bool = False
    unique_name: Optional[str] = None
    unique_nulls_not_distinct: bool = False
    default: Optional[ColumnExpr] = None
    generated: Optional[DeclaredGenerated] = None
    identity: Optional[DeclaredIdentity] = None
    enum: Optional[DeclaredEnum] = None
    srid: Optional[int] = None

    @property
    def is_vector(self) -> bool:
        return self.sql_type.lower().startswith(("vector", "halfvec", "sparsevec"))


@dataclass
class IndexedColumn:
    column: DeclaredColumn
    order: Optional[Literal["asc", "desc"]] = None
    nulls: Optional[Literal["first", "last"]] = None
    opclass: Optional[str] = None


@dataclass
class DeclaredIndex:
    columns: Sequence[Union[IndexedColumn, SqlExpr]]
    name: Optional[str] = None
    unique: bool = False
    where: Optional[SqlExpr] = None
    concurrently: bool = False
    method: Optional[str] = None
    with_options: Dict[str, Any] = field(default_factory=dict)


@dataclass
class DeclaredPrimaryKey:
    columns: List[DeclaredColumn]
    name: Optional[str] = None


@dataclass
class DeclaredUnique:
    columns: List[DeclaredColumn]
    name: Optional[str] = None
    nulls_not_distinct: bool = False


@dataclass
class DeclaredForeignKey:
    columns: List[DeclaredColumn]
    target_table: str
    target_columns: List[DeclaredColumn]
    target_schema: Optional[str] = None
    name: Optional[str] = None
    on_delete: Optional[str] = None
    on_update: Optional[str] = None


@dataclass
class DeclaredCheck:
    name: str
    expression: Union[SqlExpr, str]


@dataclass
class DeclaredRole:
    name: str
    existing: bool = False
    superuser: Optional[bool] = None
    create_db: Optional[bool] = None
    create_role: Optional[bool] = None
    inherit: Optional[bool] = None
    can_login: Optional[bool] = None
    replication: Optional[bool] = None
    bypass_rls: Optional[bool] = None
    connection_limit: Optional[int] = None
    password: Optional[str] = None
    valid_until: Optional[str] = None


PolicyTarget = Union[None, str, DeclaredRole, Sequence[Union[str, DeclaredRole]]]


@dataclass
class DeclaredPolicy:
    name: str
    as_: Optional[str] = None
    for_: Optional[str] = None
    to: PolicyTarget = None
    using: Optional[SqlExpr] = None
    with_check: Optional[SqlExpr] = None
    # set for standalone policies attached to a table after declaration
    linked_table: Optional["DeclaredTable"] = None


@dataclass
class DeclaredTable:
    name: str
    columns: List[DeclaredColumn] = field(default_factory=list)
    schema: Optional[str] = None
    indexes: List[DeclaredIndex] = field(default_factory=list)
    foreign_keys: List[DeclaredForeignKey] = field(default_factory=list)
    primary_keys: List[DeclaredPrimaryKey] = field(default_factory=list)
    uniques: List[DeclaredUnique] = field(default_factory=list)
    checks: List[DeclaredCheck] = field(default_factory=list)
    policies: List[DeclaredPolicy] = field(default_factory=list)
    enable_rls: bool = False
    existing: bool = False

    def column(self, key: str) -> DeclaredColumn:
        for col in self.columns:
            if col.key == key or col.name == key:
                return col
        raise KeyError(f"{self.name} has no column {key!r}")


@dataclass
class DeclaredSequence:
    name: str
    schema: Optional[str] = None
    increment: Optional[Union[int, str]] = None
    start_with: Optional[Union[int, str]] = None
    min_value: Optional[Union[int, str]] = None
    max_value: Optional[Union[int, str]] = None
    cache: Optional[Union[int, str]] = None
    cycle: bool = False


@dataclass
class DeclaredView:
    name: str
    query: Optional[Union[SqlExpr, str]] = None
    schema: Optional[str] = None
    existing: bool = False
    materialized: bool = False
    with_options: Dict[str, Any] = field(default_factory=dict)
    tablespace: Optional[str] = None
    using: Optional[str] = None
    with_no_data: Optional[bool] = None


@dataclass
class DeclaredSchema:
    namespaces: List[DeclaredNamespace] = field(default_factory=list)
    tables: List[DeclaredTable] = field(default_factory=list)
    enums: List[DeclaredEnum] = field(default_factory=list)
    sequences: List[DeclaredSequence] = field(default_factory=list)
    roles: List[DeclaredRole] = field(default_factory=list)
    policies: List[DeclaredPolicy] = field(default_factory=list)
    views: List[DeclaredView] = field(default_factory=list)
