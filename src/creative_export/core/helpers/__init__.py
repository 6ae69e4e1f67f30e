"""Field and asset resolution helpers shared by the mapping engines and adapters."""

from creative_export.core.helpers.asset_resolver import (
    AssetUrlValidation,
    normalize_aspect_ratio,
    resolve_asset_url,
    select_asset,
    validate_asset_url,
)
from creative_export.core.helpers.field_resolver import FieldResolver, ResolutionContext, normalize_field_value

__all__ = [
    "AssetUrlValidation",
    "FieldResolver",
    "ResolutionContext",
    "normalize_aspect_ratio",
    "normalize_field_value",
    "resolve_asset_url",
    "select_asset",
    "validate_asset_url",
]
