from __future__ import annotations

from typing import Optional

from schema_bridge.adapters.declared import DeclaredGenerated, DeclaredIdentity, render_expr
from schema_bridge.adapters.projection import ProjectingAdapter
from schema_bridge.core.grammar import option_text
from schema_bridge.core.ir import Generated, Identity


class MssqlAdapter(ProjectingAdapter):
    dialect = "mssql"
    supports_policies = False
    supports_enums = False
    supports_sequences = False
    supports_roles = False
    supports_views = True
    supports_concurrent_index = False

    def project_generated(self, generated: Optional[DeclaredGenerated]) -> Optional[Generated]:
        if generated is None:
            return None
        # computed columns are virtual unless declared persisted
        persistence = "stored" if generated.mode in ("persisted", "stored") else "virtual"
        return Generated(expression=render_expr(generated.expression, "generated"), persistence=persistence)

    def project_identity(
        self, table: str, column: str, identity: Optional[DeclaredIdentity], base_type: str
    ) -> Optional[Identity]:
        if identity is None:
            return None
        return Identity(
            kind="always",
            start_with=option_text(identity.start_with) or "1",
            increment=option_text(identity.increment) or self.defaults.identity_increment,
        )
