from __future__ import annotations

from typing import Any, Dict, List, Optional, Literal

from pydantic import BaseModel, Field, model_validator

DefaultKind = Literal["string", "number", "bigint", "boolean", "null", "json", "function", "unknown"]
FkAction = Literal["NO ACTION", "CASCADE", "RESTRICT", "SET DEFAULT", "SET NULL"]
IdentityKind = Literal["always", "by default"]
Permissiveness = Literal["PERMISSIVE", "RESTRICTIVE"]
PolicyCommand = Literal["ALL", "SELECT", "INSERT", "UPDATE", "DELETE"]
PrivilegeType = Literal["ALL", "SELECT", "INSERT", "UPDATE", "DELETE", "TRUNCATE", "REFERENCES", "TRIGGER"]


class Schema(BaseModel):
    name: str


class Table(BaseModel):
    schema_name: str
    name: str
    is_row_security_enabled: bool = False


class ColumnDefault(BaseModel):
    kind: DefaultKind
    value: str


class Generated(BaseModel):
    expression: str
    persistence: Literal["stored", "virtual"] = "stored"


class Identity(BaseModel):
    kind: IdentityKind
    sequence_name: Optional[str] = None
    increment: Optional[str] = None
    start_with: Optional[str] = None
    min_value: Optional[str] = None
    max_value: Optional[str] = None
    cache_size: Optional[str] = None
    cycles: bool = False


class Column(BaseModel):
    schema_name: str
    table: str
    name: str
    sql_type: str
    type_schema: Optional[str] = None
    array_dimensions: int = 0
    is_primary_key: bool = False
    primary_key_constraint_name: Optional[str] = None
    is_not_null: bool = False
    default: Optional[ColumnDefault] = None
    generated: Optional[Generated] = None
    is_unique: bool = False
    unique_constraint_name: Optional[str] = None
    unique_nulls_are_distinct: bool = True
    identity: Optional[Identity] = None


class PrimaryKey(BaseModel):
    schema_name: str
    table: str
    name: str
    columns: List[str] = Field(min_length=1)
    name_was_explicit: bool = False


class UniqueConstraint(BaseModel):
    schema_name: str
    table: str
    name: str
    columns: List[str]
    name_was_explicit: bool = False
    nulls_are_distinct: bool = True


class ForeignKey(BaseModel):
    schema_name: str
    table: str
    name: str
    name_was_explicit: bool = False
    columns: List[str]
    target_schema: str
    target_table: str
    target_columns: List[str]
    on_delete: FkAction = "NO ACTION"
    on_update: FkAction = "NO ACTION"

    @model_validator(mode="after")
    def _columns_match_targets(self) -> "ForeignKey":
        if len(self.columns) != len(self.target_columns):
            raise ValueError(
                f"foreign key {self.name}: {len(self.columns)} columns reference {len(self.target_columns)} target columns"
            )
        return self


class IndexColumn(BaseModel):
    value: str
    is_expression: bool = False
    ascending: bool = True
    nulls_first: bool = False
    operator_class: Optional[str] = None


class Index(BaseModel):
    schema_name: str
    table: str
    name: str
    name_was_explicit: bool = False
    columns: List[IndexColumn]
    is_unique: bool = False
    where_clause: Optional[str] = None
    is_concurrent: bool = False
    method: str = "btree"
    with_options: str = ""
    for_primary_key: bool = False
    for_unique: bool = False


class CheckConstraint(BaseModel):
    schema_name: str
    table: str
    name: str
    expression: str


class Sequence(BaseModel):
    schema_name: str
    name: str
    increment_by: Optional[str] = None
    start_with: Optional[str] = None
    min_value: Optional[str] = None
    max_value: Optional[str] = None
    cache_size: Optional[str] = None
    cycles: bool = False


class Role(BaseModel):
    name: str
    superuser: Optional[bool] = None
    create_db: Optional[bool] = None
    create_role: Optional[bool] = None
    inherit: Optional[bool] = None
    can_login: Optional[bool] = None
    replication: Optional[bool] = None
    bypass_row_security: Optional[bool] = None
    connection_limit: Optional[int] = None
    password: Optional[str] = None
    valid_until: Optional[str] = None


class Privilege(BaseModel):
    grantor: str
    grantee: str
    schema_name: str
    table: str
    type: PrivilegeType
    is_grantable: bool = False

    @property
    def name(self) -> str:
        return f"{self.grantor}_{self.grantee}_{self.schema_name}_{self.table}_{self.type}"


class Policy(BaseModel):
    schema_name: str
    table: str
    name: str
    permissiveness: Permissiveness = "PERMISSIVE"
    applies_to: PolicyCommand = "ALL"
    roles: List[str] = Field(default_factory=lambda: ["public"])
    using_expression: Optional[str] = None
    with_check_expression: Optional[str] = None


class View(BaseModel):
    schema_name: str
    name: str
    definition: Optional[str] = None
    with_options: Optional[Dict[str, Any]] = None
    with_no_data: Optional[bool] = None
    is_materialized: bool = False
    tablespace: Optional[str] = None
    using_access_method: Optional[str] = None


class ViewColumn(BaseModel):
    schema_name: str
    view: str
    name: str
    sql_type: str
    type_schema: Optional[str] = None
    array_dimensions: int = 0
    is_not_null: bool = False


class Enum(BaseModel):
    schema_name: str
    name: str
    values: List[str] = Field(default_factory=list)


class InterimSchema(BaseModel):
    dialect: str = "postgresql"
    schemas: List[Schema] = Field(default_factory=list)
    tables: List[Table] = Field(default_factory=list)
    columns: List[Column] = Field(default_factory=list)
    indexes: List[Index] = Field(default_factory=list)
    primary_keys: List[PrimaryKey] = Field(default_factory=list)
    foreign_keys: List[ForeignKey] = Field(default_factory=list)
    unique_constraints: List[UniqueConstraint] = Field(default_factory=list)
    check_constraints: List[CheckConstraint] = Field(default_factory=list)
    sequences: List[Sequence] = Field(default_factory=list)
    roles: List[Role] = Field(default_factory=list)
    privileges: List[Privilege] = Field(default_factory=list)
    policies: List[Policy] = Field(default_factory=list)
    views: List[View] = Field(default_factory=list)
    view_columns: List[ViewColumn] = Field(default_factory=list)
    enums: List[Enum] = Field(default_factory=list)

    def is_empty(self) -> bool:
        return not any(
            getattr(self, field) for field in type(self).model_fields if field != "dialect"
        )
