"""Single render entry point for every mapping engine.

Engines are a tagged union on ``type``; adding one means adding a model to
``MappingConfig`` and one case below.
"""

import logging
from collections.abc import Mapping
from typing import Any

from creative_export.core.errors import MappingError
from creative_export.core.helpers.field_resolver import FieldResolver, ResolutionContext
from creative_export.core.mapping.context import MappingContext
from creative_export.core.mapping.field_mapping import render_field_mapping
from creative_export.core.mapping.handlebars_engine import HandlebarsRenderer
from creative_export.core.mapping.jsonata_engine import render_jsonata
from creative_export.core.mapping.literal import render_literal
from creative_export.core.schemas import (
    FieldMapping,
    HandlebarsMapping,
    Integration,
    JsonataMapping,
    LiteralMapping,
)

logger = logging.getLogger(__name__)


def _resolution_context(context: Any) -> ResolutionContext:
    if isinstance(context, ResolutionContext):
        return context
    data = context.as_dict() if isinstance(context, MappingContext) else dict(context)
    ad = data.get("ad")
    if not isinstance(ad, Mapping):
        ads = data.get("ads") or []
        ad = ads[0] if ads and isinstance(ads[0], Mapping) else {}
    job = data.get("job") if isinstance(data.get("job"), Mapping) else data.get("payload") or {}
    integration = data.get("integration") or {}
    return ResolutionContext(
        ad=ad,
        job=job,
        ad_id=str(ad["id"]) if "id" in ad else None,
        partner_key=integration.get("partnerKey") if isinstance(integration, Mapping) else None,
    )


class MappingEngine:
    """Renders an integration's mapping against a context."""

    def __init__(self, resolver: FieldResolver | None = None, handlebars: HandlebarsRenderer | None = None):
        self.resolver = resolver or FieldResolver()
        self.handlebars = handlebars or HandlebarsRenderer()

    def render(self, target: Integration | Any, context: MappingContext | ResolutionContext | Mapping[str, Any]):
        mapping = target.mapping if isinstance(target, Integration) else target
        if mapping is None:
            raise MappingError(
                "Integration has no mapping configured",
                code="mapping/unsupported_engine",
                details={"integrationId": getattr(target, "id", None)},
            )

        match mapping:
            case FieldMapping():
                return render_field_mapping(mapping, _resolution_context(context), self.resolver)
            case LiteralMapping():
                return render_literal(mapping, self._template_data(context))
            case HandlebarsMapping():
                return self.handlebars.render(mapping, self._template_data(context))
            case JsonataMapping():
                return render_jsonata(mapping, self._template_data(context))
            case _:
                raise MappingError(
                    f"Unsupported mapping engine: {getattr(mapping, 'type', type(mapping).__name__)}",
                    code="mapping/unsupported_engine",
                )

    @staticmethod
    def _template_data(context: Any) -> dict[str, Any]:
        if isinstance(context, MappingContext):
            return context.as_dict()
        if isinstance(context, ResolutionContext):
            return {"ad": dict(context.ad), "job": dict(context.job), "adId": context.ad_id}
        return dict(context)


_default_engine = MappingEngine()


def render(target: Integration | Any, context: MappingContext | ResolutionContext | Mapping[str, Any]) -> dict[str, Any]:
    """Render with a default engine instance."""
    return _default_engine.render(target, context)
