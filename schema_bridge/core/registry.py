from __future__ import annotations

from typing import Callable, Dict, Optional, Tuple

from schema_bridge.adapters.base import DialectAdapter, SchemaSource
from schema_bridge.core.defaults import Defaults
from schema_bridge.introspect.base import Introspector

# Sources load a declared schema from a repo path + module hint
SourceFactory = Callable[[], SchemaSource]
# Dialect adapters and introspectors are built per run with that dialect's Defaults
AdapterFactory = Callable[[Defaults], DialectAdapter]
IntrospectorFactory = Callable[[Defaults], Introspector]


class AdapterRegistry:
    _registry: Dict[str, SourceFactory] = {}

    @classmethod
    def register(cls, name: str, factory: SourceFactory) -> None:
        cls._registry[name] = factory

    @classmethod
    def get(cls, name: str) -> Optional[SourceFactory]:
        return cls._registry.get(name)

    @classmethod
    def names(cls) -> Tuple[str, ...]:
        return tuple(sorted(cls._registry.keys()))


class DialectRegistry:
    _adapters: Dict[str, AdapterFactory] = {}

    @classmethod
    def register_adapter(cls, dialect: str, factory: AdapterFactory) -> None:
        cls._adapters[dialect] = factory

    @classmethod
    def get_adapter(cls, dialect: str, defaults: Optional[Defaults] = None) -> Optional[DialectAdapter]:
        factory = cls._adapters.get(dialect)
        if factory is None:
            return None
        return factory(defaults or Defaults.for_dialect(dialect))

    @classmethod
    def supported_dialects(cls) -> Tuple[str, ...]:
        return tuple(sorted(cls._adapters.keys()))


class IntrospectorRegistry:
    _introspectors: Dict[str, IntrospectorFactory] = {}

    @classmethod
    def register(cls, driver: str, factory: IntrospectorFactory) -> None:
        cls._introspectors[driver] = factory

    @classmethod
    def get(cls, driver: str, defaults: Optional[Defaults] = None) -> Optional[Introspector]:
        factory = cls._introspectors.get(driver)
        if factory is None:
            return None
        return factory(defaults or Defaults())

    @classmethod
    def drivers(cls) -> Tuple[str, ...]:
        return tuple(sorted(cls._introspectors.keys()))


# Bootstrap built-ins so existing behavior works out-of-the-box
def _bootstrap_defaults() -> None:
    from schema_bridge.adapters.sqlalchemy.adapter import SQLAlchemySource

    AdapterRegistry.register("sqlalchemy", SQLAlchemySource)

    from schema_bridge.adapters.cockroach import CockroachAdapter
    from schema_bridge.adapters.dsql import DsqlAdapter
    from schema_bridge.adapters.gel import GelAdapter
    from schema_bridge.adapters.mssql import MssqlAdapter
    from schema_bridge.adapters.mysql import MySqlAdapter
    from schema_bridge.adapters.postgres import PostgresAdapter
    from schema_bridge.adapters.sqlite import SqliteAdapter

    for adapter in (
        PostgresAdapter,
        CockroachAdapter,
        GelAdapter,
        DsqlAdapter,
        MssqlAdapter,
        MySqlAdapter,
        SqliteAdapter,
    ):
        DialectRegistry.register_adapter(adapter.dialect, adapter)

    from schema_bridge.introspect.duckdb import DuckDBIntrospector
    from schema_bridge.introspect.postgres import PostgresIntrospector

    IntrospectorRegistry.register("postgres", PostgresIntrospector)
    IntrospectorRegistry.register("duckdb", lambda _defaults: DuckDBIntrospector())


_bootstrap_defaults()
