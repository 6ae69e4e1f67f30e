from creative_export.core.mapping.context import MappingContext
from creative_export.core.mapping.engine import MappingEngine, render

__all__ = ["MappingContext", "MappingEngine", "render"]
