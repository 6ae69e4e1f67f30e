from .base import PartnerAdapter as PartnerAdapter
from .compass import CompassAdapter
from .configured import ConfiguredIntegrationAdapter as ConfiguredIntegrationAdapter

# Built-in partner adapters by key
ADAPTER_REGISTRY = {
    "compass": CompassAdapter,
}


def builtin_adapters() -> list[PartnerAdapter]:
    """One instance of every built-in adapter."""
    return [adapter_class() for adapter_class in ADAPTER_REGISTRY.values()]


def get_adapter_class(key: str):
    """Get the built-in adapter class for a key or alias."""
    normalized = key.strip().lower()
    adapter_class = ADAPTER_REGISTRY.get(normalized)
    if adapter_class is None:
        adapter_class = next((cls for cls in ADAPTER_REGISTRY.values() if normalized in cls.aliases), None)
    if adapter_class is None:
        raise ValueError(f"Unknown adapter type: {key}")
    return adapter_class
