from __future__ import annotations

import logging
from fnmatch import fnmatchcase
from typing import Callable, Iterable, List, Literal, Optional, Set, Tuple, Union

from pydantic import BaseModel, Field

from schema_bridge.errors import assert_unreachable

logger = logging.getLogger(__name__)

POSTGRES_FAMILY = ("postgresql", "cockroach", "gel", "dsql", "duckdb")
SCHEMALESS = ("mysql", "singlestore", "sqlite", "turso")

EXTENSION_EXCLUDES = {
    "postgis": ["!geography_columns", "!geometry_columns", "!spatial_ref_sys"],
}

PROVIDER_ROLES = {
    "supabase": [
        "anon",
        "authenticator",
        "authenticated",
        "service_role",
        "supabase_auth_admin",
        "supabase_storage_admin",
        "dashboard_user",
        "supabase_admin",
    ],
    "neon": ["authenticated", "anonymous"],
}


class RolesFilter(BaseModel):
    include: List[str] = Field(default_factory=list)
    exclude: List[str] = Field(default_factory=list)
    provider: Optional[Literal["supabase", "neon"]] = None


class EntitiesParams(BaseModel):
    roles: Union[bool, RolesFilter] = False


class EntityFilterParams(BaseModel):
    schemas: Union[None, str, List[str]] = None
    tables: Union[None, str, List[str]] = None
    entities: EntitiesParams = Field(default_factory=EntitiesParams)
    extensions: List[str] = Field(default_factory=list)


class FilterEntity(BaseModel):
    type: Literal["schema", "table", "role"]
    name: str
    schema_name: Optional[str] = None


class ExistingEntity(BaseModel):
    type: Literal["schema", "table", "role"]
    name: str
    schema_name: Optional[str] = None


def default_schema_for(dialect: str) -> Optional[str]:
    if dialect in POSTGRES_FAMILY:
        return "public"
    if dialect == "mssql":
        return "dbo"
    if dialect in SCHEMALESS:
        return None
    assert_unreachable(dialect, "dialect")


def _patterns(value: Union[None, str, List[str]]) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    return list(value)


def build_glob_matcher(patterns: Iterable[str]) -> Callable[[str], bool]:
    """Match a name against include globs and ``!``-prefixed exclude globs.

    Positive patterns vote only when they match. Negated patterns always vote: ``True`` if the
    name escapes them, ``False`` if it is caught. No votes means excluded; no patterns at all
    means included.
    """
    compiled: List[Tuple[bool, str]] = []
    for pattern in patterns:
        if pattern.startswith("!"):
            compiled.append((True, pattern[1:]))
        else:
            compiled.append((False, pattern))

    def match(name: str) -> bool:
        if not compiled:
            return True
        verdicts: List[bool] = []
        for negated, glob in compiled:
            hit = fnmatchcase(name, glob)
            if negated:
                verdicts.append(not hit)
            elif hit:
                verdicts.append(True)
        return bool(verdicts) and all(verdicts)

    return match


class EntityFilter:
    """Predicate deciding whether a schema, table or role takes part in a run."""

    def __init__(
        self,
        dialect: str,
        schema_match: Callable[[str], bool],
        table_match: Callable[[str], bool],
        role_match: Callable[[str], bool],
        existing: Iterable[ExistingEntity] = (),
    ):
        self.dialect = dialect
        self.default_schema = default_schema_for(dialect)
        self._schema_match = schema_match
        self._table_match = table_match
        self._role_match = role_match
        self._existing_schemas: Set[str] = set()
        self._existing_tables: Set[Tuple[str, str]] = set()
        self._existing_roles: Set[str] = set()
        for item in existing:
            if item.type == "schema":
                self._existing_schemas.add(item.name)
            elif item.type == "table":
                self._existing_tables.add(
                    ((item.schema_name or self.default_schema or "") if self.uses_schemas else "", item.name)
                )
            else:
                self._existing_roles.add(item.name)

    def __call__(self, entity: FilterEntity) -> bool:
        if entity.type == "schema":
            return self.schema(entity.name)
        if entity.type == "table":
            return self.table(entity.schema_name, entity.name)
        if entity.type == "role":
            return self.role(entity.name)
        assert_unreachable(entity.type, "filter entity")

    @property
    def uses_schemas(self) -> bool:
        return self.dialect not in SCHEMALESS

    def schema(self, name: str) -> bool:
        if not self.uses_schemas:
            return True
        if name in self._existing_schemas:
            return False
        return self._schema_match(name)

    def table(self, schema_name: Optional[str], name: str) -> bool:
        if not self.uses_schemas:
            schema_name = ""
        else:
            schema_name = schema_name or self.default_schema or ""
            if not self.schema(schema_name):
                return False
        if (schema_name, name) in self._existing_tables:
            return False
        return self._table_match(name)

    def role(self, name: str) -> bool:
        if name in self._existing_roles:
            return False
        return self._role_match(name)


def _role_matcher(roles: Union[bool, RolesFilter]) -> Callable[[str], bool]:
    if not roles:
        return lambda _name: False
    if roles is True:
        return lambda _name: True

    exclude = list(roles.exclude)
    if roles.provider:
        exclude.extend(PROVIDER_ROLES[roles.provider])
    include = set(roles.include)
    excluded = set(exclude)
    if not include and not excluded:
        return lambda _name: True
    return lambda name: name not in excluded and (not include or name in include)


def prepare_entity_filter(
    dialect: str,
    params: Optional[EntityFilterParams] = None,
    existing_entities: Iterable[ExistingEntity] = (),
) -> EntityFilter:
    params = params or EntityFilterParams()
    # fail fast on unknown dialects
    default_schema_for(dialect)

    table_patterns = _patterns(params.tables)
    for extension in params.extensions:
        if extension not in EXTENSION_EXCLUDES:
            assert_unreachable(extension, "extension")
        table_patterns.extend(EXTENSION_EXCLUDES[extension])

    schema_patterns = _patterns(params.schemas)
    logger.debug(
        "entity filter for %s: schemas=%s tables=%s roles=%s",
        dialect,
        schema_patterns,
        table_patterns,
        params.entities.roles,
    )
    return EntityFilter(
        dialect,
        schema_match=build_glob_matcher(schema_patterns),
        table_match=build_glob_matcher(table_patterns),
        role_match=_role_matcher(params.entities.roles),
        existing=existing_entities,
    )
