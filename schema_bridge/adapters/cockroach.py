from __future__ import annotations

from schema_bridge.adapters.projection import ProjectingAdapter


class CockroachAdapter(ProjectingAdapter):
    dialect = "cockroach"
    # cockroach keeps unique_rowid()-style defaults on serial columns
    drops_serial_default = False
    supports_concurrent_index = False
