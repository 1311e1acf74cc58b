from __future__ import annotations

from schema_bridge.adapters.projection import ProjectingAdapter


class MySqlAdapter(ProjectingAdapter):
    """MySQL has no namespaces; enums live inline in the column type."""

    dialect = "mysql"
    supports_schemas = False
    supports_identity = False
    supports_policies = False
    supports_enums = False
    supports_sequences = False
    supports_roles = False
    supports_concurrent_index = False
    drops_serial_default = False
