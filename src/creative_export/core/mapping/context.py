"""Mapping context assembly.

A ``MappingContext`` bundles everything a template may reference for one
export attempt. It is frozen and hands out deep copies, so a render can never
mutate state visible to the next one.
"""

import copy
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from creative_export.core.helpers.asset_resolver import (
    asset_aspect_ratio,
    asset_url,
    validate_asset_url,
)
from creative_export.core.helpers.values import MISSING, coerce_value, get_key, get_path, to_display_string

RECIPE_FIELD_CONTAINERS: tuple[str, ...] = ("recipeFields", "recipe_fields", "recipe.fields")
RECIPE_NUMBER_KEYS: tuple[str, ...] = ("Recipe Number", "recipe_no", "recipeNo", "recipeNumber", "recipeCode")
RECIPE_IDENTIFIER_FIELDS: tuple[str, ...] = ("recipeCode", "recipeNo", "recipeNumber", "recipeId", "recipe_id")

# Recipe field labels surfaced as camelCase keys on each standard ad
STANDARD_COPY_FIELDS: dict[str, tuple[str, ...]] = {
    "headline": ("Headline", "headline"),
    "primaryCopy": ("Primary Text", "Primary Copy", "primary_text", "primaryText", "primaryCopy"),
    "description": ("Description", "description"),
    "persona": ("Persona", "persona"),
    "angle": ("Angle", "angle"),
    "funnel": ("Funnel", "funnel"),
    "product": ("Product", "product"),
    "productUrl": ("Product URL", "product_url", "productUrl"),
    "goLiveDate": ("Go Live Date", "go_live_date", "goLiveDate"),
    "moment": ("Moment", "moment"),
}


def _recipe_containers(ad: Mapping[str, Any]) -> list[Mapping[str, Any]]:
    containers = []
    for path in RECIPE_FIELD_CONTAINERS:
        container = get_path(ad, path)
        if isinstance(container, Mapping):
            containers.append(container)
    return containers


def collect_recipe_field_values(ad: Mapping[str, Any], keys: Iterable[str]) -> dict[str, Any]:
    """Values for ``keys`` found in any of the ad's recipe-field containers."""
    containers = _recipe_containers(ad)
    values: dict[str, Any] = {}
    for key in keys:
        for container in containers:
            value = coerce_value(get_key(container, key))
            if value is not None:
                values[key] = value
                break
    return values


def recipe_field_keys(ads: Iterable[Mapping[str, Any]], recipe_type: Mapping[str, Any] | None = None) -> list[str]:
    """Recipe field names declared by the recipe type, else seen on the ads."""
    keys: list[str] = []
    declared = get_key(recipe_type, "fields") if isinstance(recipe_type, Mapping) else MISSING
    if isinstance(declared, list):
        for entry in declared:
            name = entry if isinstance(entry, str) else coerce_value(entry)
            if isinstance(name, str) and name not in keys:
                keys.append(name)
        if keys:
            return keys
    for ad in ads:
        for container in _recipe_containers(ad):
            for key in container:
                if isinstance(key, str) and key not in keys:
                    keys.append(key)
    return keys


def recipe_identifier(ad: Mapping[str, Any]) -> str | None:
    values = collect_recipe_field_values(ad, RECIPE_NUMBER_KEYS)
    for key in RECIPE_NUMBER_KEYS:
        if key in values:
            return to_display_string(values[key])
    for key in RECIPE_IDENTIFIER_FIELDS:
        value = to_display_string(get_key(ad, key))
        if value:
            return value
    return None


def group_ads_by_recipe_identifier(ads: Iterable[Mapping[str, Any]]) -> list[tuple[str, list[Mapping[str, Any]]]]:
    """Group ads sharing a recipe number; ads without one stand alone. Order-preserving."""
    groups: dict[str, list[Mapping[str, Any]]] = {}
    for position, ad in enumerate(ads):
        identifier = recipe_identifier(ad)
        key = f"recipe:{identifier}" if identifier else f"ad:{get_key(ad, 'id') if 'id' in ad else position}"
        groups.setdefault(key, []).append(ad)
    return [(key.split(":", 1)[1], members) for key, members in groups.items()]


def _ad_assets(ad: Mapping[str, Any]) -> list[Mapping[str, Any]]:
    assets = get_key(ad, "assets")
    candidates = [asset for asset in assets if isinstance(asset, Mapping)] if isinstance(assets, list) else []
    candidates.append(ad)
    return candidates


def merge_aspect_assets(ads: Iterable[Mapping[str, Any]]) -> dict[str, str]:
    """First valid URL per normalized aspect ratio across a group of ads."""
    merged: dict[str, str] = {}
    for ad in ads:
        for asset in _ad_assets(ad):
            aspect = asset_aspect_ratio(asset)
            if not aspect or aspect in merged:
                continue
            url = asset_url(asset)
            if validate_asset_url(url).valid:
                merged[aspect] = url
    return merged


def build_standard_ad_exports(
    groups: list[tuple[str, list[Mapping[str, Any]]]],
    *,
    review_id: str,
    integration: Mapping[str, Any],
    generated_at: str,
    dry_run: bool,
) -> list[dict[str, Any]]:
    exports = []
    for identifier, members in groups:
        primary = members[0]
        assets = merge_aspect_assets(members)
        entry: dict[str, Any] = {
            "id": str(get_key(primary, "id")) if "id" in primary else identifier,
            "adIds": [str(get_key(ad, "id")) for ad in members if "id" in ad],
            "recipeNumber": recipe_identifier(primary),
            "reviewId": review_id,
            "generatedAt": generated_at,
            "integrationId": integration.get("id"),
            "integrationName": integration.get("name"),
            "integrationSlug": integration.get("slug"),
            "dryRun": dry_run,
            "assets": assets,
            "asset1x1Url": assets.get("1x1"),
            "asset9x16Url": assets.get("9x16"),
        }
        for target, keys in STANDARD_COPY_FIELDS.items():
            for ad in members:
                values = collect_recipe_field_values(ad, keys)
                found = next((values[key] for key in keys if key in values), None)
                if found is None:
                    found = coerce_value(get_key(ad, target)) if target in ad else None
                if found is not None:
                    entry[target] = to_display_string(found)
                    break
        exports.append(entry)
    return exports


@dataclass(frozen=True)
class MappingContext:
    """Everything a mapping render may reference for one export attempt."""

    integration: Mapping[str, Any]
    review_id: str
    review: Mapping[str, Any] = field(default_factory=dict)
    ads: tuple[Mapping[str, Any], ...] = ()
    client: Mapping[str, Any] | None = None
    recipe_type: Mapping[str, Any] | None = None
    payload: Mapping[str, Any] = field(default_factory=dict)
    dry_run: bool = False
    generated_at: str | None = None

    def standard_ads(self) -> list[dict[str, Any]]:
        return build_standard_ad_exports(
            group_ads_by_recipe_identifier(self.ads),
            review_id=self.review_id,
            integration=self.integration,
            generated_at=self.generated_at or "",
            dry_run=self.dry_run,
        )

    def as_dict(self) -> dict[str, Any]:
        """Template-visible data. A fresh deep copy on every call."""
        standard_ads = self.standard_ads()
        summary = {
            "reviewId": self.review_id,
            "reviewName": coerce_value(get_key(self.review, "name")) if "name" in self.review else None,
            "adCount": len(self.ads),
            "standardAdCount": len(standard_ads),
        }
        default_export = {
            "reviewId": self.review_id,
            "generatedAt": self.generated_at,
            "integrationId": self.integration.get("id"),
            "integrationName": self.integration.get("name"),
            "integrationSlug": self.integration.get("slug"),
            "dryRun": self.dry_run,
            "ads": standard_ads,
        }
        data = {
            "integration": self.integration,
            "reviewId": self.review_id,
            "review": self.review,
            "ads": list(self.ads),
            "client": self.client,
            "recipeType": self.recipe_type,
            "recipeFieldKeys": recipe_field_keys(self.ads, self.recipe_type),
            "payload": self.payload,
            "dryRun": self.dry_run,
            "generatedAt": self.generated_at,
            "standardAds": standard_ads,
            "summary": summary,
            "defaultExport": default_export,
        }
        data["data"] = {"standardAds": standard_ads, "summary": summary, "defaultExport": default_export}
        return copy.deepcopy(data)
