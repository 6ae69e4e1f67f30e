"""Integration lookup by partner key.

Stored integration documents take precedence over built-in adapters, so an
admin can override a built-in partner by saving a document with its key.
Resolved integrations are cached for ``CACHE_INTEGRATION_TTL_SECONDS``.
"""

import logging
from collections.abc import Callable, Iterable
from typing import Any

from pydantic import ValidationError

from creative_export.adapters import ConfiguredIntegrationAdapter, PartnerAdapter, builtin_adapters
from creative_export.core.cache import TTLCache
from creative_export.core.config import get_config
from creative_export.core.database.document_store import INTEGRATIONS, DocumentStore, integration_versions_path
from creative_export.core.errors import DataError
from creative_export.core.schemas import Integration

logger = logging.getLogger(__name__)

VERSION_POINTER_KEYS = ("activeVersion", "publishedVersion")


def normalize_key(key: Any) -> str:
    return key.strip().lower() if isinstance(key, str) else ""


class IntegrationRegistry:
    def __init__(
        self,
        store: DocumentStore,
        cache: TTLCache | None = None,
        adapters: Iterable[PartnerAdapter] | None = None,
        adapter_factory: Callable[[Integration], PartnerAdapter] | None = None,
    ):
        self.store = store
        self.cache = cache if cache is not None else TTLCache(get_config().cache.integration_ttl_seconds)
        self.adapters = list(adapters) if adapters is not None else builtin_adapters()
        self.adapter_factory = adapter_factory or ConfiguredIntegrationAdapter

    def _parse(self, doc_id: str, document: dict[str, Any]) -> Integration:
        try:
            return Integration.model_validate({**document, "id": doc_id})
        except ValidationError as e:
            logger.warning(f"Integration {doc_id} failed validation: {e.error_count()} error(s)")
            raise DataError(
                f"Integration {doc_id} is misconfigured",
                code="data/invalid_integration",
                details={"integrationId": doc_id, "errors": e.errors(include_url=False, include_context=False)},
            ) from e

    def _with_version(self, doc_id: str, document: dict[str, Any], version: str | None) -> dict[str, Any]:
        version = version or next((str(document[k]) for k in VERSION_POINTER_KEYS if document.get(k)), None)
        if not version:
            return document
        versioned = self.store.get(integration_versions_path(doc_id), version)
        if versioned is None:
            raise DataError(
                f"Integration {doc_id} version {version} not found",
                code="data/integration_not_found",
                details={"integrationId": doc_id, "version": version},
            )
        return {**versioned, "version": versioned.get("version", version)}

    def _find_document(self, key: str) -> tuple[str, dict[str, Any]] | None:
        document = self.store.get(INTEGRATIONS, key)
        if document is not None:
            return key, document
        for candidate in self.store.list(INTEGRATIONS):
            if key in (normalize_key(candidate.get("partnerKey")), normalize_key(candidate.get("slug"))):
                doc_id = candidate.pop("id")
                return doc_id, candidate
        return None

    def get_integration(self, key: str, version: str | None = None) -> Integration | None:
        """Stored integration config by id, partner key or slug; ``None`` if absent or disabled."""
        normalized = normalize_key(key)
        if not normalized:
            return None
        cache_key = f"integration:{normalized}:{version or ''}"
        cached = self.cache.get(cache_key)
        if cached is not None:
            return cached

        found = self._find_document(key.strip()) or (
            self._find_document(normalized) if normalized != key.strip() else None
        )
        if found is None:
            return None
        doc_id, document = found
        integration = self._parse(doc_id, self._with_version(doc_id, document, version))
        if not integration.enabled:
            logger.info(f"Integration {doc_id} is disabled")
            return None
        self.cache.set(cache_key, integration)
        return integration

    def get(self, key: str) -> PartnerAdapter | None:
        """Adapter for ``key``: stored config first, then built-in adapters and aliases."""
        normalized = normalize_key(key)
        if not normalized:
            return None
        integration = self.get_integration(key)
        if integration is not None:
            return self.adapter_factory(integration)
        for adapter in self.adapters:
            if adapter.matches(normalized):
                return adapter
        return None

    def list(self) -> list[dict[str, str]]:
        entries: dict[str, str] = {}
        for document in self.store.list(INTEGRATIONS):
            if document.get("enabled", document.get("active", True)) is False:
                continue
            key = normalize_key(document.get("partnerKey")) or document["id"]
            entries.setdefault(key, document.get("name") or key)
        for adapter in self.adapters:
            entries.setdefault(adapter.key, adapter.label)
        return [{"key": key, "label": label} for key, label in entries.items()]

    def invalidate(self, key: str | None = None) -> None:
        if key is None:
            self.cache.clear()
            return
        normalized = normalize_key(key)
        for cache_key in [k for k in self.cache.keys() if k.startswith(f"integration:{normalized}:")]:
            self.cache.delete(cache_key)
