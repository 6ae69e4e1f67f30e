"""Logical field resolution across ad, job and override records.

A logical field such as ``recipe_no`` may live on the ad itself, in one of
its nested containers, on the job, or in a per-ad override map on the job.
The search order is data (``AD_CONTAINER_PATHS`` / ``JOB_CONTAINER_PATHS``)
so it can be inspected and extended without touching control flow.
"""

import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

from creative_export.core.helpers.asset_resolver import (
    parse_asset_slot,
    resolve_asset_slot,
    resolve_override_asset,
    validate_asset_url,
)
from creative_export.core.helpers.values import MISSING, coerce_value, format_date, get_key, get_path, parse_date

logger = logging.getLogger(__name__)

# "{partner}" expands to the active integration's namespace block, e.g. ad["compass"]
AD_CONTAINER_PATHS: tuple[str, ...] = (
    "",
    "partnerFields",
    "{partner}",
    "recipeFields",
    "recipe_fields",
    "recipe.fields",
    "recipe",
    "metadata",
    "fields",
)
JOB_CONTAINER_PATHS: tuple[str, ...] = ("", "partnerFields", "{partner}", "metadata", "fields")

FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "recipe_no": ("recipeNo", "recipe_number", "recipeNumber", "Recipe Number", "Recipe #", "recipeCode"),
    "go_live_date": ("goLiveDate", "Go Live Date", "live_date", "liveDate", "launchDate", "launch_date"),
    "angle": ("Angle", "angle_no", "angleNumber", "angle_number"),
    "shop": ("store", "shopName", "brandCode", "brand_code"),
    "group_desc": ("groupDesc", "groupName", "adGroupName", "group_description"),
    "product": ("productName", "product_name"),
    "product_url": ("productUrl", "Product URL", "landingPageUrl", "landing_page_url"),
    "funnel": ("funnelStage", "funnel_stage"),
    "persona": ("audience",),
    "primary_text": ("primaryText", "primaryCopy", "primary_copy", "Primary Text", "bodyCopy"),
    "headline": ("Headline", "headlineText"),
    "description": ("Description", "linkDescription"),
    "moment": ("Moment",),
    "status": ("Status",),
}

MAX_ANGLE = 32


def _fold(name: str) -> str:
    return re.sub(r"[^a-z0-9]", "", name.lower())


_ALIAS_INDEX: dict[str, str] = {}
for _canonical, _aliases in FIELD_ALIASES.items():
    for _alias in (_canonical, *_aliases):
        _ALIAS_INDEX.setdefault(_fold(_alias), _canonical)


def canonical_field_name(name: str) -> str | None:
    """Canonical logical field for ``name`` or any of its aliases."""
    return _ALIAS_INDEX.get(_fold(name))


def parse_recipe_number(value: Any) -> int | None:
    """Non-zero integer recipe number, or ``None`` when it does not parse."""
    value = coerce_value(value)
    if isinstance(value, int | float) and not isinstance(value, bool):
        number = int(value) if float(value).is_integer() else 0
    elif isinstance(value, str):
        match = re.fullmatch(r"#?\s*(-?\d+)(?:\.0+)?", value.strip())
        number = int(match.group(1)) if match else 0
    else:
        number = 0
    return number or None


def parse_angle(value: Any) -> int | None:
    value = coerce_value(value)
    if isinstance(value, int | float) and not isinstance(value, bool):
        number = int(value) if float(value).is_integer() else None
    elif isinstance(value, str):
        match = re.fullmatch(r"(?:angle\s*)?#?\s*(\d+)(?:\.0+)?", value.strip(), re.IGNORECASE)
        number = int(match.group(1)) if match else None
    else:
        number = None
    if number is None or not 1 <= number <= MAX_ANGLE:
        return None
    return number


def normalize_go_live_date(value: Any, format: str | None = None) -> str | None:
    """``YYYY-MM-DD`` by default, or the caller's ``format`` when given."""
    parsed = parse_date(coerce_value(value))
    if parsed is None:
        return None
    if format:
        return format_date(parsed, format)
    return parsed.strftime("%Y-%m-%d")


def to_payload_value(value: Any, format: str | None = None) -> Any:
    """Apply ``format`` to date-like values and make dates JSON-safe."""
    if value is None:
        return None
    if format:
        parsed = parse_date(value)
        if parsed is not None:
            return format_date(parsed, format)
    if isinstance(value, datetime | date):
        return value.isoformat()
    return value


def normalize_field_value(field_name: str, value: Any, format: str | None = None) -> Any:
    """Field-specific normalization keyed by partner-field name or alias."""
    canonical = canonical_field_name(field_name)
    if canonical == "recipe_no":
        return parse_recipe_number(value)
    if canonical == "go_live_date":
        return normalize_go_live_date(value, format)
    if canonical == "angle":
        return parse_angle(value)
    if parse_asset_slot(field_name) is not None or _fold(field_name) == "asseturl":
        validation = validate_asset_url(coerce_value(value))
        return validation.url if validation.valid else None
    return to_payload_value(coerce_value(value), format)


@dataclass(frozen=True)
class ResolutionContext:
    """The records one ad's fields are resolved against."""

    ad: Mapping[str, Any]
    job: Mapping[str, Any] = field(default_factory=dict)
    ad_id: str | None = None
    partner_key: str | None = None

    def _override_map(self, name: str) -> Mapping[str, Any] | None:
        if not self.ad_id:
            return None
        overrides = get_key(self.job, name)
        if not isinstance(overrides, Mapping):
            return None
        entry = get_key(overrides, self.ad_id)
        return entry if isinstance(entry, Mapping) else None

    @property
    def field_overrides(self) -> Mapping[str, Any] | None:
        return self._override_map("fieldOverrides")

    @property
    def asset_overrides(self) -> Mapping[str, Any] | None:
        return self._override_map("assetOverrides")


class FieldResolver:
    """Resolves logical fields with aliasing, dotted paths and coercion."""

    def __init__(
        self,
        ad_containers: tuple[str, ...] = AD_CONTAINER_PATHS,
        job_containers: tuple[str, ...] = JOB_CONTAINER_PATHS,
    ):
        self.ad_containers = ad_containers
        self.job_containers = job_containers

    def candidate_names(self, logical_key: str) -> list[str]:
        names = [logical_key]
        canonical = canonical_field_name(logical_key)
        if canonical:
            for alias in (canonical, *FIELD_ALIASES[canonical]):
                if alias not in names:
                    names.append(alias)
        return names

    def _containers(self, record: Mapping[str, Any], paths: tuple[str, ...], partner_key: str | None):
        for path in paths:
            if path == "":
                yield record
                continue
            if "{partner}" in path:
                if not partner_key:
                    continue
                path = path.replace("{partner}", partner_key)
            container = get_path(record, path)
            if isinstance(container, Mapping):
                yield container

    def sources(self, ctx: ResolutionContext) -> list[Mapping[str, Any]]:
        """Every container searched, highest priority first."""
        found: list[Mapping[str, Any]] = []
        for overrides in (ctx.field_overrides, ctx.asset_overrides):
            if overrides:
                found.append(overrides)
        found.extend(self._containers(ctx.ad, self.ad_containers, ctx.partner_key))
        if ctx.job:
            found.extend(self._containers(ctx.job, self.job_containers, ctx.partner_key))
        return found

    @staticmethod
    def _lookup_in(container: Mapping[str, Any], name: str) -> Any:
        if "." in name:
            value = get_path(container, name)
            if value is not MISSING:
                return value
        return get_key(container, name)

    def lookup(self, logical_key: str, ctx: ResolutionContext) -> Any:
        """First non-empty coerced value for ``logical_key``, without field normalization."""
        names = self.candidate_names(logical_key)
        for container in self.sources(ctx):
            for name in names:
                raw = self._lookup_in(container, name)
                if raw is MISSING:
                    continue
                value = coerce_value(raw)
                if value is not None:
                    return value
        return None

    def resolve_asset(self, field_name: str, ctx: ResolutionContext) -> str | None:
        slot = parse_asset_slot(field_name)
        if slot is None:
            return None
        for overrides in (ctx.asset_overrides, ctx.field_overrides):
            url = resolve_override_asset(slot, overrides)
            if url:
                return url
        return resolve_asset_slot(slot, ctx.ad)

    def resolve(self, logical_key: str, ctx: ResolutionContext, format: str | None = None) -> Any:
        """Resolve and normalize one logical field; ``None`` means missing."""
        if parse_asset_slot(logical_key) is not None:
            return self.resolve_asset(logical_key, ctx)

        value = self.lookup(logical_key, ctx)
        canonical = canonical_field_name(logical_key)
        if canonical == "recipe_no":
            return parse_recipe_number(value)
        if canonical == "go_live_date":
            return normalize_go_live_date(value, format)
        if canonical == "angle":
            return parse_angle(value)
        return to_payload_value(value, format)
