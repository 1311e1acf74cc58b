from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, List, Literal, Optional, Tuple, TypeVar, Union

from pydantic import BaseModel

T = TypeVar("T")


class IndexNoName(BaseModel):
    type: Literal["index_no_name"] = "index_no_name"
    schema_name: str
    table: str
    sql: str


class PgVectorIndexNoop(BaseModel):
    type: Literal["pgvector_index_noop"] = "pgvector_index_noop"
    table: str
    column: str
    index_name: Optional[str] = None
    method: Optional[str] = None


class PolicyNotLinked(BaseModel):
    type: Literal["policy_not_linked"] = "policy_not_linked"
    policy: str


DuplicateKind = Literal[
    "schema_name_duplicate",
    "enum_name_duplicate",
    "enum_values_duplicate",
    "table_name_duplicate",
    "column_name_duplicate",
    "index_duplicate",
    "constraint_name_duplicate",
    "sequence_name_duplicate",
    "view_name_duplicate",
    "role_duplicate",
    "privilege_duplicate",
    "policy_duplicate",
]


class Duplicate(BaseModel):
    type: DuplicateKind
    name: str
    schema_name: Optional[str] = None
    table: Optional[str] = None


SchemaError = Union[IndexNoName, Duplicate]
SchemaWarning = Union[PgVectorIndexNoop, PolicyNotLinked]


@dataclass(frozen=True)
class Diagnostics:
    errors: Tuple[SchemaError, ...] = ()
    warnings: Tuple[SchemaWarning, ...] = ()

    def __add__(self, other: "Diagnostics") -> "Diagnostics":
        return Diagnostics(self.errors + other.errors, self.warnings + other.warnings)

    @classmethod
    def error(cls, err: SchemaError) -> "Diagnostics":
        return cls(errors=(err,))

    @classmethod
    def warning(cls, warn: SchemaWarning) -> "Diagnostics":
        return cls(warnings=(warn,))

    def __bool__(self) -> bool:
        return bool(self.errors or self.warnings)


@dataclass(frozen=True)
class Projected(Generic[T]):
    """A projection step's entities together with the diagnostics it produced."""

    value: List[T]
    diagnostics: Diagnostics = Diagnostics()

    @classmethod
    def concat(cls, parts: List["Projected[T]"]) -> "Projected[T]":
        value: List[T] = []
        diagnostics = Diagnostics()
        for part in parts:
            value.extend(part.value)
            diagnostics = diagnostics + part.diagnostics
        return cls(value, diagnostics)


def describe(item: Union[SchemaError, SchemaWarning]) -> str:
    if isinstance(item, IndexNoName):
        return f'Index on "{item.schema_name}"."{item.table}" uses expression {item.sql!r} and needs an explicit name'
    if isinstance(item, PgVectorIndexNoop):
        return (
            f'Vector column "{item.column}" of "{item.table}" is indexed with {item.method or "the default method"} '
            f"and no operator class; the index will not be used"
        )
    if isinstance(item, PolicyNotLinked):
        return f'Policy "{item.policy}" is not linked to any table and was skipped'
    where = ".".join(part for part in (item.schema_name, item.table) if part)
    return f"{item.type}: {where + '.' if where else ''}{item.name}"
