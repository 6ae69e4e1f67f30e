"""Row-oriented transform preview engine.

A transform spec describes one output row per recipe:

    {"rows": {"source": "recipes", "fields": {
        "brandCode": "brand.brandCode",
        "goLiveDate": {"path": "recipe.goLive", "format": "date"},
        "portraitUrl": {"image": {"aspectRatio": "9x16"}}
    }}}

Paths are rooted at ``recipe`` (default), ``brand`` or ``adGroup``. Image
fields pick the newest approved ad for the recipe in the requested aspect.
"""

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal

from creative_export.core.errors import TransformSpecError
from creative_export.core.helpers.asset_resolver import normalize_aspect_ratio
from creative_export.core.helpers.values import parse_date

DEFAULT_ROW_SOURCE = "recipes"
PATH_ROOTS = ("recipe", "brand", "adGroup")
RECIPE_CODE_KEYS = ("recipeCode", "recipeNo", "recipeNumber", "recipeId", "recipe_id", "code", "slug")
AD_URL_KEYS = ("firebaseUrl", "downloadUrl", "url", "href", "assetUrl", "source", "path")
AD_ASPECT_KEYS = ("aspectRatio", "ratio", "format")
AD_TIMESTAMP_KEYS = ("uploadedAt", "updatedAt", "createdAt")


@dataclass(frozen=True)
class FieldSpec:
    kind: Literal["path", "date", "image"]
    path: str = ""
    aspect_ratio: str = ""


@dataclass(frozen=True)
class TransformSpec:
    fields: dict[str, FieldSpec]
    row_source: str = DEFAULT_ROW_SOURCE


@dataclass
class TransformInput:
    brand: Mapping[str, Any] | None = None
    ad_group: Mapping[str, Any] | None = None
    recipes: list[Mapping[str, Any]] = field(default_factory=list)
    ads: list[Mapping[str, Any]] = field(default_factory=list)


def _records(value: Any) -> list[Mapping[str, Any]]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, Mapping)]


def _record(value: Any) -> Mapping[str, Any] | None:
    return value if isinstance(value, Mapping) else None


def _parse_json(source: str) -> Any:
    text = source.strip()
    if not text:
        raise TransformSpecError("Transform spec cannot be empty.")
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise TransformSpecError(
            f"Transform spec is not valid JSON: {exc.msg}", line=exc.lineno, column=exc.colno
        ) from exc


def parse_field_spec(name: str, value: Any) -> FieldSpec:
    if isinstance(value, str):
        path = value.strip()
        if not path:
            raise TransformSpecError(f"Field '{name}' requires a non-empty path.")
        return FieldSpec(kind="path", path=path)

    if not isinstance(value, Mapping):
        raise TransformSpecError(f"Field '{name}' must be a string path or an object describing the field.")

    if "image" in value:
        aspect = value["image"]
        if isinstance(aspect, Mapping):
            aspect = aspect.get("aspectRatio")
        if not isinstance(aspect, str) or not aspect.strip():
            raise TransformSpecError(f"Field '{name}' image helper requires an aspectRatio (e.g. '9x16').")
        return FieldSpec(kind="image", aspect_ratio=aspect.strip())

    path = value["path"].strip() if isinstance(value.get("path"), str) else None
    date_source = value.get("date")
    if isinstance(date_source, str):
        path = date_source.strip()
    format_hint = value["format"].strip().lower() if isinstance(value.get("format"), str) else None
    type_hint = value["type"].strip().lower() if isinstance(value.get("type"), str) else None

    if not path:
        raise TransformSpecError(f"Field '{name}' requires a path.")

    wants_date = format_hint == "date" or type_hint == "date" or date_source is True or isinstance(date_source, str)
    return FieldSpec(kind="date" if wants_date else "path", path=path)


def parse_transform_spec(spec: Any) -> TransformSpec:
    value = _parse_json(spec) if isinstance(spec, str) else spec
    if not isinstance(value, Mapping):
        raise TransformSpecError("Transform spec must be an object.")

    rows = _record(value.get("rows"))
    fields_source = rows.get("fields") if rows and isinstance(rows.get("fields"), Mapping) else value.get("fields")
    if not isinstance(fields_source, Mapping):
        raise TransformSpecError("Transform spec must include a 'fields' object (rows.fields or top-level).")

    raw_source = rows.get("source") if rows and "source" in rows else value.get("rowSource")
    source = raw_source.strip().lower() if isinstance(raw_source, str) and raw_source.strip() else DEFAULT_ROW_SOURCE
    if source != DEFAULT_ROW_SOURCE:
        raise TransformSpecError(f"Unsupported row source '{raw_source}'. Only 'recipes' is supported.")

    fields: dict[str, FieldSpec] = {}
    for key, spec_value in fields_source.items():
        name = str(key).strip()
        if not name:
            raise TransformSpecError("Transform field keys cannot be empty.")
        fields[name] = parse_field_spec(name, spec_value)
    return TransformSpec(fields=fields)


def is_transform_spec_candidate(value: Any) -> bool:
    if not isinstance(value, Mapping):
        return False
    rows = _record(value.get("rows"))
    for fields in (value.get("fields"), rows.get("fields") if rows else None):
        if isinstance(fields, Mapping) and fields:
            return True
    return False


def _resolve_path(roots: Mapping[str, Mapping[str, Any] | None], path: str) -> Any:
    segments = [segment.strip() for segment in path.split(".") if segment.strip()]
    if not segments:
        return None
    if segments[0] in roots:
        current: Any = roots[segments[0]]
        segments = segments[1:]
    else:
        current = roots["recipe"]

    for segment in segments:
        if current is None:
            return None
        if isinstance(current, list):
            if not segment.isdigit() or int(segment) >= len(current):
                return None
            current = current[int(segment)]
        elif isinstance(current, Mapping):
            current = current.get(segment)
        else:
            return None
    return current


def _normalize_date(value: Any) -> str | None:
    parsed = parse_date(value) if value else None
    if parsed is None:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(UTC)
    return parsed.strftime("%Y-%m-%d")


def _codes(record: Mapping[str, Any]) -> set[str]:
    codes = set()
    for key in RECIPE_CODE_KEYS:
        value = record.get(key)
        if isinstance(value, str) and value.strip():
            codes.add(value.strip().lower())
        elif isinstance(value, int | float) and not isinstance(value, bool):
            codes.add(str(value))
    return codes


def _first_string(record: Mapping[str, Any], keys: tuple[str, ...]) -> str | None:
    for key in keys:
        value = record.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def _timestamp(record: Mapping[str, Any]) -> float:
    for key in AD_TIMESTAMP_KEYS:
        if record.get(key):
            parsed = parse_date(record[key])
            if parsed is None:
                return 0.0
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=UTC)
            return parsed.timestamp()
    return 0.0


def select_image_url(ads: list[Mapping[str, Any]], recipe: Mapping[str, Any], aspect_ratio: str) -> str | None:
    """Newest approved ad for ``recipe`` whose aspect normalizes to ``aspect_ratio``."""
    target = normalize_aspect_ratio(aspect_ratio)
    recipe_codes = _codes(recipe)
    if not target or not recipe_codes:
        return None

    candidates: list[tuple[float, str]] = []
    for ad in ads:
        status = ad.get("status")
        if not isinstance(status, str) or status.strip().lower() != "approved":
            continue
        aspect = next((ad[key] for key in AD_ASPECT_KEYS if ad.get(key)), None)
        if normalize_aspect_ratio(aspect) != target:
            continue
        if not _codes(ad) & recipe_codes:
            continue
        url = _first_string(ad, AD_URL_KEYS)
        if url:
            candidates.append((_timestamp(ad), url))

    if not candidates:
        return None
    # Stable sort keeps input order among equal timestamps
    candidates.sort(key=lambda candidate: candidate[0], reverse=True)
    return candidates[0][1]


def build_rows(spec: TransformSpec, data: TransformInput) -> list[dict[str, Any]]:
    rows = []
    for recipe in data.recipes:
        roots = {"recipe": recipe, "brand": data.brand, "adGroup": data.ad_group}
        row: dict[str, Any] = {}
        for name, descriptor in spec.fields.items():
            if descriptor.kind == "image":
                row[name] = select_image_url(data.ads, recipe, descriptor.aspect_ratio)
            elif descriptor.kind == "date":
                row[name] = _normalize_date(_resolve_path(roots, descriptor.path))
            else:
                value = _resolve_path(roots, descriptor.path)
                row[name] = value if not isinstance(value, datetime) else value.isoformat()
        rows.append(row)
    return rows


def transform_review(spec: Any, data: TransformInput) -> list[dict[str, Any]]:
    return build_rows(parse_transform_spec(spec), data)


def _extract_recipes(value: Any) -> list[Mapping[str, Any]]:
    if isinstance(value, list):
        return _records(value)
    if isinstance(value, Mapping) and isinstance(value.get("items"), list):
        return _records(value["items"])
    return []


def _pick_object(sources: list[Mapping[str, Any]], keys: tuple[str, ...]) -> Mapping[str, Any] | None:
    for source in sources:
        for key in keys:
            if key in source and isinstance(source[key], Mapping):
                return source[key]
    return None


def build_transform_input(context: Mapping[str, Any]) -> TransformInput:
    """Build preview input from a review context, probing snapshot shapes."""
    review = _record(context.get("review"))
    sources: list[Mapping[str, Any]] = []
    if review:
        sources.append(review)
        for snapshot_key in ("snapshot", "reviewSnapshot"):
            snapshot = _record(review.get(snapshot_key))
            if snapshot:
                sources.append(snapshot)
                sources.extend(child for child in (_record(snapshot.get("review")), _record(snapshot.get("data"))) if child)

    brand = _record(context.get("brand"))
    ad_group = _record(context.get("adGroup"))
    sources.extend(record for record in (brand, ad_group) if record)

    recipes = _extract_recipes(context.get("recipes"))
    if not recipes:
        for source in sources:
            for key in ("recipes", "recipeList", "recipeSnapshots", "items", "values"):
                if key in source:
                    recipes = _extract_recipes(source[key])
                    if recipes:
                        break
            if recipes:
                break

    return TransformInput(
        brand=brand or _pick_object(sources, ("brand", "brandSnapshot", "brandData", "brandInfo")),
        ad_group=ad_group
        or _pick_object(sources, ("adGroup", "group", "adgroup", "adGroupSnapshot", "groupSnapshot")),
        recipes=recipes,
        ads=_records(context.get("ads")),
    )
