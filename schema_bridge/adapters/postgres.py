from __future__ import annotations

from schema_bridge.adapters.projection import ProjectingAdapter


class PostgresAdapter(ProjectingAdapter):
    """Reference projection; every other dialect is a tweak of this one."""

    dialect = "postgresql"
    warns_on_vector_index = True
