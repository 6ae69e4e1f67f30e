"""
Review-level export runtime.

Loads a review and its ads into a ``MappingContext``, renders the
integration's mapping, validates the result against its schema and sends it.
Live failures leave a dead-letter document in ``integration_failures`` so the
export can be inspected and replayed.
"""

import logging
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from pydantic import ValidationError

from creative_export.core.database.document_store import (
    BRANDS,
    INTEGRATION_FAILURES,
    REVIEWS,
    DocumentStore,
    review_ads_path,
)
from creative_export.core.errors import DataError, IntegrationError
from creative_export.core.http_dispatch import HttpDispatcher, build_outbound_request
from creative_export.core.mapping.context import MappingContext
from creative_export.core.mapping.engine import MappingEngine
from creative_export.core.schema_validation import SchemaValidator
from creative_export.core.schemas import Integration
from creative_export.services.integration_registry import IntegrationRegistry

logger = logging.getLogger(__name__)

CLIENT_KEYS = ("client", "brand")
CLIENT_ID_KEYS = ("brandId", "clientId", "brandCode")


def _now() -> str:
    return datetime.now(UTC).isoformat()


def failure_doc_id(review_id: str, integration_id: str) -> str:
    return f"{review_id}-{integration_id}"


def parse_integration(document: Mapping[str, Any], default_id: str = "preview") -> Integration:
    """Validate an integration document supplied by a caller."""
    try:
        return Integration.model_validate({**document, "id": document.get("id") or default_id})
    except ValidationError as e:
        raise DataError(
            "Integration configuration is invalid",
            code="data/invalid_integration",
            details={"errors": e.errors(include_url=False, include_context=False)},
        ) from e


class IntegrationRuntime:
    def __init__(
        self,
        store: DocumentStore,
        registry: IntegrationRegistry,
        mapping_engine: MappingEngine,
        schema_validator: SchemaValidator,
        dispatcher: HttpDispatcher,
    ):
        self.store = store
        self.registry = registry
        self.mapping_engine = mapping_engine
        self.schema_validator = schema_validator
        self.dispatcher = dispatcher

    def resolve_integration(self, integration: Integration | Mapping[str, Any] | str | None) -> Integration:
        if isinstance(integration, Integration):
            return integration
        if isinstance(integration, Mapping):
            return parse_integration(integration)
        if isinstance(integration, str) and integration.strip():
            resolved = self.registry.get_integration(integration)
            if resolved is None:
                raise DataError(
                    f"Integration {integration} not found",
                    code="data/integration_not_found",
                    details={"integrationId": integration},
                )
            return resolved
        raise DataError("Integration or integrationId is required", code="data/invalid_request")

    def _load_ads(self, review_id: str, review: Mapping[str, Any]) -> list[dict[str, Any]]:
        ads = self.store.list(review_ads_path(review_id))
        if ads:
            return ads
        embedded = review.get("ads")
        if isinstance(embedded, list):
            return [dict(ad) for ad in embedded if isinstance(ad, Mapping)]
        return []

    def _load_client(self, review: Mapping[str, Any]) -> dict[str, Any] | None:
        for key in CLIENT_KEYS:
            value = review.get(key)
            if isinstance(value, Mapping):
                return dict(value)
        for key in CLIENT_ID_KEYS:
            value = review.get(key)
            if isinstance(value, str) and value.strip():
                brand = self.store.get(BRANDS, value.strip())
                if brand is not None:
                    return {"id": value.strip(), **brand}
        return None

    def build_context(
        self,
        integration: Integration,
        review_id: str,
        payload: Mapping[str, Any] | None = None,
        dry_run: bool = False,
        generated_at: str | None = None,
    ) -> MappingContext:
        """Everything the mapping may reference for ``review_id``.

        Raises:
            DataError: ``mapping/review_not_found`` when the review does not exist
        """
        review = self.store.get(REVIEWS, review_id)
        if review is None:
            raise DataError(
                f"Review {review_id} not found",
                code="mapping/review_not_found",
                details={"reviewId": review_id},
            )
        recipe_type = review.get("recipeType")
        return MappingContext(
            integration=integration.to_document(),
            review_id=review_id,
            review={"id": review_id, **review},
            ads=tuple(self._load_ads(review_id, review)),
            client=self._load_client(review),
            recipe_type=recipe_type if isinstance(recipe_type, Mapping) else None,
            payload=dict(payload or {}),
            dry_run=dry_run,
            generated_at=generated_at or _now(),
        )

    def sample_context(
        self, integration: Integration | Mapping[str, Any] | str, review_id: str, payload=None
    ) -> dict[str, Any]:
        resolved = self.resolve_integration(integration)
        data = self.build_context(resolved, review_id, payload, dry_run=True).as_dict()
        keys = (
            "review",
            "ads",
            "client",
            "recipeType",
            "recipeFieldKeys",
            "standardAds",
            "summary",
            "defaultExport",
            "generatedAt",
            "data",
        )
        return {"reviewId": review_id, "context": {key: data[key] for key in keys}}

    def _write_dead_letter(
        self,
        integration: Integration,
        review_id: str,
        attempt: int,
        error: dict[str, Any],
        request: dict[str, Any] | None,
        history: list[Any],
    ) -> None:
        doc_id = failure_doc_id(review_id, integration.id)
        self.store.set(
            INTEGRATION_FAILURES,
            doc_id,
            {
                "reviewId": review_id,
                "integrationId": integration.id,
                "integrationVersion": integration.version,
                "attempt": attempt,
                "error": error,
                "request": request,
                "history": history,
                "failedAt": _now(),
            },
            merge=False,
        )
        logger.warning(f"Wrote dead letter {INTEGRATION_FAILURES}/{doc_id}: {error.get('code')}")

    async def export_review(
        self,
        integration: Integration | Mapping[str, Any] | str,
        review_id: str,
        payload: Mapping[str, Any] | None = None,
        dry_run: bool = False,
        attempt: int = 1,
        history: list[Any] | None = None,
        extra_headers: Mapping[str, str] | None = None,
    ) -> dict[str, Any]:
        """Render and deliver one review; returns the worker response document."""
        resolved = self.resolve_integration(integration)
        history = list(history or [])
        request = None
        try:
            context = self.build_context(resolved, review_id, payload, dry_run)
            mapped = self.mapping_engine.render(resolved, context)
            self.schema_validator.validate(resolved.schema_ref, mapped)

            idempotency_key = f"{resolved.idempotency_key_prefix}{review_id}" if resolved.idempotency_key_prefix else None
            request = build_outbound_request(resolved, mapped, headers=extra_headers, idempotency_key=idempotency_key)
            response = await self.dispatcher.dispatch(request, resolved, dry_run=dry_run)
        except IntegrationError as e:
            if not dry_run:
                self._write_dead_letter(
                    resolved, review_id, attempt, e.to_dict(), request.to_dict() if request else None, history
                )
            raise

        if not dry_run and not response.ok:
            self._write_dead_letter(
                resolved,
                review_id,
                attempt,
                {
                    "error": f"Partner responded with HTTP {response.status}",
                    "code": "dispatch/http_error",
                    "details": {"status": response.status, "body": response.body},
                },
                request.to_dict(),
                history,
            )

        logger.info(f"Exported review {review_id} via {resolved.id} (dry_run={dry_run}, status={response.status})")
        return {
            "reviewId": review_id,
            "integrationId": resolved.id,
            "attempt": attempt,
            "dryRun": dry_run,
            "history": history,
            "mapping": {"payload": mapped, "warnings": []},
            "dispatch": response.to_dict(),
            "request": request.to_dict(),
        }

    async def test_integration(
        self,
        integration: Integration | Mapping[str, Any] | str,
        review_id: str,
        payload: Mapping[str, Any] | None = None,
        mode: str = "dry-run",
    ) -> dict[str, Any]:
        """Exercise an integration against a real review; dry run unless ``mode="live"``."""
        resolved = self.resolve_integration(integration)
        dry_run = mode != "live"
        result = await self.export_review(
            resolved,
            review_id,
            payload,
            dry_run=dry_run,
            extra_headers={"X-Test": "true"} if dry_run else None,
        )
        context = self.build_context(resolved, review_id, payload, dry_run).as_dict()
        result["mode"] = "dry-run" if dry_run else "live"
        result["context"] = {
            key: context[key] for key in ("review", "ads", "client", "recipeType", "recipeFieldKeys")
        }
        return result


