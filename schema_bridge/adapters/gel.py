from __future__ import annotations

from schema_bridge.adapters.declared import DeclaredColumn
from schema_bridge.adapters.projection import ProjectingAdapter


class GelAdapter(ProjectingAdapter):
    dialect = "gel"

    def same_column(self, a: DeclaredColumn, b: DeclaredColumn) -> bool:
        return a is b or a.key == b.key

    def is_not_null(self, column: DeclaredColumn, is_pk: bool) -> bool:
        # gel implies NOT NULL for keys, generated and identity columns
        return (
            column.not_null
            and not is_pk
            and column.generated is None
            and column.identity is None
        )
