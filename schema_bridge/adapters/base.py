from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional

from schema_bridge.adapters.declared import DeclaredSchema
from schema_bridge.core.diagnostics import SchemaError, SchemaWarning
from schema_bridge.core.filter import EntityFilter
from schema_bridge.core.ir import InterimSchema


@dataclass
class AdapterResult:
    schema: InterimSchema
    errors: List[SchemaError] = field(default_factory=list)
    warnings: List[SchemaWarning] = field(default_factory=list)


class DialectAdapter(ABC):
    dialect: str

    @abstractmethod
    def from_declared_schema(
        self,
        declared: DeclaredSchema,
        casing: Optional[str] = None,
        entity_filter: Optional[EntityFilter] = None,
    ) -> AdapterResult:  # pragma: no cover - interface
        """Project a declared schema into an InterimSchema plus collected diagnostics."""


class SchemaSource(ABC):
    @abstractmethod
    def load(self, repo_path: str, module_hint: str | None = None) -> DeclaredSchema:  # pragma: no cover - interface
        """Return the declared schema found by loading models inside repo_path."""
