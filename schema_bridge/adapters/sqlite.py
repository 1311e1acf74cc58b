from __future__ import annotations

from schema_bridge.adapters.projection import ProjectingAdapter


class SqliteAdapter(ProjectingAdapter):
    dialect = "sqlite"
    supports_schemas = False
    supports_identity = False
    supports_policies = False
    supports_enums = False
    supports_sequences = False
    supports_roles = False
    supports_concurrent_index = False
    drops_serial_default = False
