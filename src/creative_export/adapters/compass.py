"""Compass AdLog export adapter."""

import logging
from collections.abc import Mapping
from typing import Any
from urllib.parse import urlparse

from creative_export.adapters.base import (
    AdValidation,
    ExportItem,
    PartnerAdapter,
    ResponseOutcome,
    normalize_string,
    partner_message,
)
from creative_export.core.config import get_config
from creative_export.core.helpers.asset_resolver import resolve_asset_url
from creative_export.core.http_dispatch import DispatchResponse

logger = logging.getLogger(__name__)

PROD_TARGETS = ("prod", "production")
STAGING_TARGETS = ("staging", "stage")


class CompassAdapter(PartnerAdapter):
    key = "compass"
    label = "Compass AdLog"
    aliases = ("adlog",)
    required_fields = ("assetUrl", "brandCode")

    def get_endpoint(self, job: Mapping[str, Any]) -> str | None:
        override = normalize_string(job.get("endpointOverride"))
        if override:
            return override

        settings = get_config().compass
        target_env = normalize_string(job.get("targetEnv")).lower()
        if target_env in PROD_TARGETS and settings.export_endpoint_prod.strip():
            return settings.export_endpoint_prod.strip()
        if target_env in STAGING_TARGETS and settings.export_endpoint_staging.strip():
            return settings.export_endpoint_staging.strip()
        return settings.export_endpoint.strip() or None

    def validate_ad(self, item: ExportItem) -> AdValidation:
        errors = []
        if not (normalize_string(item.ad.get("brandCode")) or normalize_string(item.job.get("brandCode"))):
            errors.append("Missing brandCode")

        url = normalize_string(item.asset_url) or resolve_asset_url(item.ad) or ""
        if not url:
            errors.append("Missing assetUrl")
        else:
            parsed = urlparse(url)
            if not parsed.scheme or not parsed.netloc:
                errors.append("Invalid assetUrl")
        return AdValidation(errors=errors, asset_url=url or None)

    def build_payload(self, item: ExportItem) -> dict[str, Any]:
        ad, job = item.ad, item.job
        group_desc = normalize_string(job.get("groupDesc") or job.get("adGroupName"))
        tags = ad.get("tags")
        return {
            "job": {
                "id": item.job_id,
                "integrationKey": self.key,
                "label": self.label,
                "partnerJobId": normalize_string(job.get("partnerJobId")),
                "triggeredBy": normalize_string(job.get("triggeredBy") or job.get("createdBy")),
                "brandCode": normalize_string(job.get("brandCode")),
                "groupDesc": group_desc,
                "targetEnv": normalize_string(job.get("targetEnv")),
                "metadata": job.get("metadata") or {},
                "requestedAt": job.get("requestedAt") or job.get("createdAt"),
            },
            "ad": {
                "id": item.ad_id,
                "adGroupId": ad.get("adGroupId"),
                "brandCode": normalize_string(ad.get("brandCode") or job.get("brandCode")),
                "name": normalize_string(ad.get("name") or ad.get("title")),
                "type": normalize_string(ad.get("type") or ad.get("assetType") or ad.get("kind")),
                "status": normalize_string(ad.get("status")),
                "groupDesc": group_desc,
                "assetUrl": item.asset_url,
                "tags": tags if isinstance(tags, list) else [],
                "metadata": ad.get("metadata") or {},
            },
        }

    def handle_response(self, response: DispatchResponse, item: ExportItem) -> ResponseOutcome:
        message = partner_message(response)
        status = response.status
        if status == 202:
            return ResponseOutcome("sent", message or "Accepted by partner")
        if status in (200, 201, 204):
            return ResponseOutcome("received", message or "Delivered to partner")
        if status in (208, 409):
            return ResponseOutcome("duplicate", message or "Duplicate export")
        return ResponseOutcome("error", message or f"Unexpected status {status}")
