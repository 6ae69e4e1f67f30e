"""Creative asset classification and selection.

Assets are classified by aspect ratio (explicit field, ``WxH`` dimensions, or
filename/label/tag keywords) and picked per slot, carousel position included.
Only URLs that point at a downloadable file are ever returned.
"""

import logging
import math
import re
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any
from urllib.parse import parse_qs, urlparse

from creative_export.core.helpers.values import MISSING, coerce_value, get_key

logger = logging.getLogger(__name__)

ASPECT_KEYWORDS: dict[str, str] = {
    "square": "1x1",
    "feed": "1x1",
    "vertical": "9x16",
    "portrait": "9x16",
    "story": "9x16",
    "stories": "9x16",
    "reel": "9x16",
    "reels": "9x16",
    "landscape": "16x9",
    "horizontal": "16x9",
}

ASPECT_FIELDS = ("aspectRatio", "aspect_ratio", "aspect", "ratio")
ORDER_FIELDS = ("order", "position", "index", "carouselIndex", "slot")
ASSET_URL_FIELDS = ("url", "downloadUrl", "assetUrl", "firebaseUrl", "cdnUrl", "exportUrl", "href", "src")
HINT_FIELDS = ("filename", "fileName", "name", "label", "title")

# Legacy single-URL lookup order on an ad record
AD_URL_FIELDS = ("exportUrl", "assetUrl", "firebaseUrl", "adUrl", "url", "sourceUrl")
NESTED_ASSET_URL_FIELDS = ("url", "downloadUrl", "assetUrl")

DOWNLOAD_QUERY_PARAMS = frozenset({"alt", "token", "download", "media", "id"})

_RATIO_TOLERANCE = 0.05
_DIMENSIONS = re.compile(r"(\d+(?:\.\d+)?)\s*x\s*(\d+(?:\.\d+)?)")
_FILENAME_SEGMENT = re.compile(r"\.[A-Za-z0-9]{2,5}$")
_ASSET_SLOT = re.compile(
    r"^(?:image|asset|creative|media)_?(?P<ratio>\d+x\d+)(?:_(?P<index>\d+))?(?:_?url)?$", re.IGNORECASE
)


def _canonical_text(value: str) -> str:
    return value.strip().lower().replace("×", "x").replace(":", "x").replace("/", "x")


def _ratio_from_dimensions(width: float, height: float) -> str | None:
    if width <= 0 or height <= 0:
        return None
    ratio = width / height
    if abs(ratio - 1.0) <= _RATIO_TOLERANCE:
        return "1x1"
    if abs(ratio - 9 / 16) <= (9 / 16) * _RATIO_TOLERANCE:
        return "9x16"
    if abs(ratio - 16 / 9) <= (16 / 9) * _RATIO_TOLERANCE:
        return "16x9"
    if width.is_integer() and height.is_integer():
        divisor = math.gcd(int(width), int(height))
        return f"{int(width) // divisor}x{int(height) // divisor}"
    return f"{width:g}x{height:g}"


def normalize_aspect_ratio(value: Any) -> str | None:
    """Canonical ``WxH`` aspect string for a ratio, dimension or keyword."""
    if value is None or isinstance(value, bool):
        return None
    if not isinstance(value, str):
        value = coerce_value(value)
        if not isinstance(value, str):
            return None
    text = _canonical_text(value).replace(" ", "")
    if not text:
        return None
    if text in ASPECT_KEYWORDS:
        return ASPECT_KEYWORDS[text]
    match = _DIMENSIONS.fullmatch(text)
    if match:
        return _ratio_from_dimensions(float(match.group(1)), float(match.group(2)))
    return None


def _hint_aspect(text: str) -> str | None:
    canonical = _canonical_text(text)
    match = _DIMENSIONS.search(canonical)
    if match:
        found = _ratio_from_dimensions(float(match.group(1)), float(match.group(2)))
        if found:
            return found
    for token in re.split(r"[^a-z0-9]+", canonical):
        if token in ASPECT_KEYWORDS:
            return ASPECT_KEYWORDS[token]
    return None


def asset_aspect_ratio(asset: Mapping[str, Any]) -> str | None:
    """Aspect of an asset: explicit field, then dimensions, then name/tag hints."""
    for field in ASPECT_FIELDS:
        explicit = get_key(asset, field)
        if explicit is not MISSING:
            normalized = normalize_aspect_ratio(explicit)
            if normalized:
                return normalized

    width = get_key(asset, "width")
    height = get_key(asset, "height")
    if isinstance(width, int | float) and isinstance(height, int | float):
        found = _ratio_from_dimensions(float(width), float(height))
        if found:
            return found

    hints: list[str] = []
    for field in HINT_FIELDS:
        hint = get_key(asset, field)
        if isinstance(hint, str):
            hints.append(hint)
    tags = get_key(asset, "tags")
    if isinstance(tags, list | tuple):
        hints.extend(str(tag) for tag in tags if isinstance(tag, str))
    for hint in hints:
        found = _hint_aspect(hint)
        if found:
            return found
    return None


def asset_url(asset: Any) -> str | None:
    """First non-empty URL-like field of an asset, or the asset itself if a string."""
    if isinstance(asset, str):
        return asset.strip() or None
    if not isinstance(asset, Mapping):
        return None
    for field in ASSET_URL_FIELDS:
        value = get_key(asset, field)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


@dataclass(frozen=True)
class AssetUrlValidation:
    valid: bool
    reason: str | None = None
    url: str | None = None


def validate_asset_url(url: Any) -> AssetUrlValidation:
    """Check that ``url`` points at a downloadable file, never raising."""
    if not isinstance(url, str) or not url.strip():
        return AssetUrlValidation(False, "Missing asset URL")
    url = url.strip()
    try:
        parsed = urlparse(url)
    except ValueError:
        return AssetUrlValidation(False, "Asset URL is not a valid URL", url)
    if parsed.scheme.lower() not in ("http", "https") or not parsed.netloc:
        return AssetUrlValidation(False, "Asset URL must be an http(s) URL", url)

    host = parsed.hostname or ""
    path = parsed.path or ""
    query = parse_qs(parsed.query)

    if host.endswith(("drive.google.com", "docs.google.com")):
        if "/folders/" in path or path.rstrip("/").endswith("/folders"):
            return AssetUrlValidation(False, "Google Drive folder links are not direct file links", url)
        if "folderview" in path or "folderview" in parsed.query:
            return AssetUrlValidation(False, "Google Drive folderview links are not direct file links", url)
        if "/file/d/" in path:
            if "download" in [value.lower() for value in query.get("export", [])]:
                return AssetUrlValidation(True, None, url)
            return AssetUrlValidation(False, "Google Drive file links must include export=download", url)

    last_segment = path.rstrip("/").rsplit("/", 1)[-1] if path.strip("/") else ""
    if _FILENAME_SEGMENT.search(last_segment):
        return AssetUrlValidation(True, None, url)
    if DOWNLOAD_QUERY_PARAMS.intersection(key.lower() for key in query):
        return AssetUrlValidation(True, None, url)
    return AssetUrlValidation(False, "Asset URL looks like a folder, not a file", url)


def _explicit_order(asset: Mapping[str, Any]) -> float | None:
    for field in ORDER_FIELDS:
        value = get_key(asset, field)
        if isinstance(value, int | float) and not isinstance(value, bool):
            return float(value)
        if isinstance(value, str) and value.strip().lstrip("-").isdigit():
            return float(value.strip())
    return None


def select_candidates(assets: Iterable[Any] | None, aspect_targets: Iterable[Any]) -> list[str]:
    """Valid URLs of assets matching any target aspect, in carousel order."""
    targets = {normalize_aspect_ratio(target) for target in aspect_targets} - {None}
    if not assets or not targets:
        return []

    ranked: list[tuple[int, float, int, str]] = []
    for position, asset in enumerate(assets):
        if not isinstance(asset, Mapping):
            continue
        if asset_aspect_ratio(asset) not in targets:
            continue
        url = asset_url(asset)
        validation = validate_asset_url(url)
        if not validation.valid:
            logger.debug(f"Skipping asset {position}: {validation.reason}")
            continue
        order = _explicit_order(asset)
        # Explicitly ordered assets lead, then array order
        ranked.append((0 if order is not None else 1, order if order is not None else position, position, url))

    ranked.sort(key=lambda entry: entry[:3])
    return [entry[3] for entry in ranked]


def select_asset(assets: Iterable[Any] | None, aspect_targets: Iterable[Any], slot_index: int = 0) -> str | None:
    """URL of the ``slot_index``-th (0-based) matching asset, clamped to the last one."""
    candidates = select_candidates(assets, aspect_targets)
    if not candidates:
        return None
    return candidates[min(max(slot_index, 0), len(candidates) - 1)]


@dataclass(frozen=True)
class AssetSlot:
    """A named creative requirement such as ``image_9x16_2``."""

    field_name: str
    aspect: str
    index: int = 1
    base_name: str = ""


def parse_asset_slot(field_name: str) -> AssetSlot | None:
    field_name = field_name.strip()
    match = _ASSET_SLOT.match(field_name)
    if not match:
        return None
    aspect = normalize_aspect_ratio(match.group("ratio"))
    if aspect is None:
        return None
    if match.group("index"):
        index = max(int(match.group("index")), 1)
        base_name = field_name[: match.start("index") - 1]
    else:
        index = 1
        base_name = field_name
    return AssetSlot(field_name=field_name, aspect=aspect, index=index, base_name=base_name)


def override_key_candidates(slot: AssetSlot) -> list[str]:
    """Flat override keys tried for a slot, in precedence order."""
    base = slot.base_name or slot.field_name
    keys = [slot.field_name, f"{base}_{slot.index}", f"{base}{slot.index}"]
    if slot.index == 1:
        keys.append(base)
    keys.append("assetUrl")
    ordered: list[str] = []
    for key in keys:
        if key not in ordered:
            ordered.append(key)
    return ordered


def _single_asset_url(value: Any, slot: AssetSlot) -> str | None:
    if isinstance(value, Mapping):
        aspect = asset_aspect_ratio(value)
        if aspect is not None and aspect != slot.aspect:
            return None
    url = asset_url(value)
    return url if validate_asset_url(url).valid else None


def resolve_override_asset(slot: AssetSlot, overrides: Mapping[str, Any] | None) -> str | None:
    """Resolve a slot from a per-ad override map.

    Precedence: exact field, base name with 1-based suffix, base name, then
    ``assetUrl``, ``assetUrls[index-1]``, nested ``assets[]``, and finally the
    single ``asset``/``creative``/``image`` objects.
    """
    if not overrides:
        return None

    for key in override_key_candidates(slot):
        value = get_key(overrides, key)
        if value is MISSING:
            continue
        url = _single_asset_url(value, slot)
        if url:
            return url

    urls = get_key(overrides, "assetUrls")
    if isinstance(urls, Sequence) and not isinstance(urls, str) and len(urls) >= slot.index:
        url = _single_asset_url(urls[slot.index - 1], slot)
        if url:
            return url

    nested = get_key(overrides, "assets")
    if isinstance(nested, list | tuple):
        url = select_asset(nested, [slot.aspect], slot.index - 1)
        if url:
            return url

    for key in ("asset", "creative", "image"):
        value = get_key(overrides, key)
        if value is MISSING:
            continue
        url = _single_asset_url(value, slot)
        if url:
            return url
    return None


def resolve_asset_slot(
    slot: AssetSlot, ad: Mapping[str, Any], overrides: Mapping[str, Any] | None = None
) -> str | None:
    """Overrides first, then the ad's own ``assets[]``, then the ad itself as an asset."""
    url = resolve_override_asset(slot, overrides)
    if url:
        return url
    assets = get_key(ad, "assets")
    if isinstance(assets, list | tuple):
        url = select_asset(assets, [slot.aspect], slot.index - 1)
        if url:
            return url
    return select_asset([ad], [slot.aspect], 0)


def resolve_asset_url(ad: Mapping[str, Any] | None) -> str | None:
    """Single export URL of an ad record using the legacy field order."""
    if not ad:
        return None
    for field in AD_URL_FIELDS:
        value = get_key(ad, field)
        if isinstance(value, str) and value.strip():
            return value.strip()
    assets = get_key(ad, "assets")
    if isinstance(assets, list | tuple):
        for asset in assets:
            if not isinstance(asset, Mapping):
                continue
            for field in NESTED_ASSET_URL_FIELDS:
                value = get_key(asset, field)
                if isinstance(value, str) and value.strip():
                    return value.strip()
    return None
