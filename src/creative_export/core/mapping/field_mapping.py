"""Declarative ``partner field <- source field`` mapping.

The build is all-or-nothing: if any partner field resolves empty after
normalization the whole payload fails with one error naming every missing
field.
"""

import logging
from typing import Any

from creative_export.core.errors import MappingError
from creative_export.core.helpers.field_resolver import FieldResolver, ResolutionContext, normalize_field_value
from creative_export.core.helpers.values import is_empty
from creative_export.core.schemas import FieldMapping

logger = logging.getLogger(__name__)


def render_field_mapping(
    mapping: FieldMapping, ctx: ResolutionContext, resolver: FieldResolver | None = None
) -> dict[str, Any]:
    resolver = resolver or FieldResolver()
    try:
        entries = mapping.entries()
    except ValueError as exc:
        raise MappingError(str(exc), code="mapping/invalid_config") from exc

    payload: dict[str, Any] = {}
    missing: list[str] = []
    for entry in entries:
        resolved = resolver.resolve(entry.source, ctx)
        value = normalize_field_value(entry.partner_field, resolved, entry.format)
        if is_empty(value):
            missing.append(entry.partner_field)
            continue
        payload[entry.partner_field] = value

    if missing:
        logger.info(f"Field mapping for ad {ctx.ad_id} is missing {len(missing)} field(s): {missing}")
        raise MappingError(
            f"Missing {', '.join(missing)}",
            code="mapping/missing_fields",
            details={"missing": missing, "adId": ctx.ad_id},
        )
    return payload
