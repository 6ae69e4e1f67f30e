"""Adapter for integrations defined entirely by a stored config document."""

import logging
from collections.abc import Mapping
from typing import Any

from creative_export.adapters.base import ExportItem, PartnerAdapter
from creative_export.core.helpers.values import to_display_string
from creative_export.core.mapping.engine import MappingEngine
from creative_export.core.schema_validation import SchemaValidator
from creative_export.core.schemas import Integration

logger = logging.getLogger(__name__)


class ConfiguredIntegrationAdapter(PartnerAdapter):
    """Payloads come from the integration's mapping; the endpoint is ``baseUrl + endpointPath``."""

    def __init__(
        self,
        integration: Integration,
        mapping_engine: MappingEngine | None = None,
        schema_validator: SchemaValidator | None = None,
    ):
        super().__init__(integration)
        self.key = (integration.partner_key or integration.id).strip().lower()
        self.label = integration.label
        self.aliases = tuple(
            alias
            for alias in dict.fromkeys((integration.id.strip().lower(), (integration.slug or "").strip().lower()))
            if alias and alias != self.key
        )
        self.required_fields = tuple(integration.required_fields)
        self.mapping_engine = mapping_engine or MappingEngine()
        self.schema_validator = schema_validator or SchemaValidator()

    def get_endpoint(self, job: Mapping[str, Any]) -> str | None:
        return self.integration.url or None

    def required_field_value(self, field_name: str, item: ExportItem) -> str:
        value = self.mapping_engine.resolver.resolve(field_name, item.resolution)
        return to_display_string(value) or ""

    def render_context(self, item: ExportItem) -> dict[str, Any]:
        return {
            "integration": self.integration.to_document(),
            "ad": dict(item.ad),
            "job": dict(item.job),
            "adId": item.ad_id,
            "jobId": item.job_id,
            "assetUrl": item.asset_url,
        }

    def build_payload(self, item: ExportItem) -> dict[str, Any]:
        payload = self.mapping_engine.render(self.integration, self.render_context(item))
        self.schema_validator.validate(self.integration.schema_ref, payload)
        logger.debug(f"Built {self.integration.id} payload for ad {item.ad_id} with {len(payload)} field(s)")
        return payload
