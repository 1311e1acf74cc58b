from .core.diff import diff_interim
from .core.filter import EntityFilterParams, prepare_entity_filter
from .core.ir import InterimSchema
from .core.registry import AdapterRegistry, DialectRegistry, IntrospectorRegistry
from .core.snapshot import validate_interim

__all__ = [
    "__version__",
    "AdapterRegistry",
    "DialectRegistry",
    "EntityFilterParams",
    "InterimSchema",
    "IntrospectorRegistry",
    "diff_interim",
    "prepare_entity_filter",
    "validate_interim",
]

__version__ = "0.1.0"
