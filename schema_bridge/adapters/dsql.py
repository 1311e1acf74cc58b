from __future__ import annotations

from schema_bridge.adapters.projection import ProjectingAdapter


class DsqlAdapter(ProjectingAdapter):
    dialect = "dsql"
    supports_identity = False
    supports_policies = False
    supports_enums = False
    supports_sequences = False
    supports_foreign_keys = False
