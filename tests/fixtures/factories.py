"""
Factory classes for generating test documents.

Documents are plain camelCase dicts, shaped the way they are stored.
"""

import uuid
from typing import Any


class IntegrationFactory:
    """Factory for stored integration documents."""

    @staticmethod
    def create(
        partner_key: str = "acme",
        name: str = "Acme Ads",
        mapping: dict[str, Any] | None = None,
        **kwargs,
    ) -> dict[str, Any]:
        document = {
            "name": name,
            "partnerKey": partner_key,
            "baseUrl": "https://api.acme.example",
            "endpointPath": "/v1/ads",
            "method": "POST",
            "auth": {"strategy": "none"},
            "mapping": mapping or {"type": "fields", "fields": {"image_1x1": {"source": "image_1x1"}}},
            "retryPolicy": {"maxAttempts": 3, "initialIntervalMs": 100, "maxIntervalMs": 1000},
        }
        document.update(kwargs)
        return document


class AdFactory:
    """Factory for ad asset documents."""

    @staticmethod
    def create(aspect_ratio: str = "1x1", url: str | None = None, **kwargs) -> dict[str, Any]:
        url = url or f"https://cdn.example.com/creatives/{uuid.uuid4().hex[:8]}.png"
        document = {
            "name": "Spring launch",
            "status": "approved",
            "assets": [{"url": url, "aspectRatio": aspect_ratio}],
        }
        document.update(kwargs)
        return document


class JobFactory:
    """Factory for export job documents."""

    @staticmethod
    def create(integration_key: str = "acme", approved_ad_ids: list[str] | None = None, **kwargs) -> dict[str, Any]:
        document = {
            "integrationKey": integration_key,
            "approvedAdIds": approved_ad_ids if approved_ad_ids is not None else ["a1"],
            "status": "pending",
            "triggeredBy": "tests@example.com",
        }
        document.update(kwargs)
        return document


class ReviewFactory:
    """Factory for review documents and their ads."""

    @staticmethod
    def create(name: str = "Spring review", **kwargs) -> dict[str, Any]:
        document = {"name": name, "status": "approved"}
        document.update(kwargs)
        return document

    @staticmethod
    def create_ad(ad_id: str, recipe_number: str = "12", aspect_ratio: str = "1x1", **kwargs) -> dict[str, Any]:
        document = {
            "id": ad_id,
            "recipeFields": {"Recipe Number": recipe_number, "Headline": "Fresh for spring"},
            "assets": [{"url": f"https://cdn.example.com/{ad_id}.png", "aspectRatio": aspect_ratio}],
        }
        document.update(kwargs)
        return document
