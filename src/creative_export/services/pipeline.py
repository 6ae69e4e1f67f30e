"""Process wiring: every cache is built once here and injected downward."""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from typing import Any

import httpx

from creative_export.adapters import ConfiguredIntegrationAdapter, PartnerAdapter
from creative_export.core.cache import TTLCache
from creative_export.core.config import AppConfig, get_config
from creative_export.core.database.database_session import init_db
from creative_export.core.database.document_store import DocumentStore, InMemoryDocumentStore, SqlDocumentStore
from creative_export.core.http_dispatch import HttpDispatcher
from creative_export.core.integration_auth import AuthStrategyResolver
from creative_export.core.mapping.engine import MappingEngine
from creative_export.core.schema_validation import SchemaValidator
from creative_export.core.secrets import EnvSecretStore, SecretStore
from creative_export.services.export_jobs import ExportJobOrchestrator
from creative_export.services.integration_registry import IntegrationRegistry
from creative_export.services.integration_runtime import IntegrationRuntime
from creative_export.services.mapping_preview import MappingPreviewService

logger = logging.getLogger(__name__)


@dataclass
class Pipeline:
    config: AppConfig
    store: DocumentStore
    secret_store: SecretStore
    registry: IntegrationRegistry
    auth_resolver: AuthStrategyResolver
    dispatcher: HttpDispatcher
    schema_validator: SchemaValidator
    mapping_engine: MappingEngine
    orchestrator: ExportJobOrchestrator
    runtime: IntegrationRuntime
    preview: MappingPreviewService


def default_store(config: AppConfig) -> DocumentStore:
    if config.database.url:
        init_db()
        return SqlDocumentStore()
    logger.warning("DATABASE_URL not set; using an in-memory document store")
    return InMemoryDocumentStore()


def build_pipeline(
    store: DocumentStore | None = None,
    secret_store: SecretStore | None = None,
    config: AppConfig | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
    clock: Callable[[], float] | None = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    adapters: Iterable[PartnerAdapter] | None = None,
) -> Pipeline:
    config = config or get_config()
    clock = clock or time.monotonic
    store = store if store is not None else default_store(config)
    secret_store = secret_store if secret_store is not None else EnvSecretStore()

    integration_cache = TTLCache(config.cache.integration_ttl_seconds, clock=clock)
    token_cache = TTLCache(clock=clock)
    schema_cache = TTLCache(default_ttl_seconds=None, clock=clock)

    schema_validator = SchemaValidator(store, schema_cache)
    mapping_engine = MappingEngine()
    registry = IntegrationRegistry(
        store,
        integration_cache,
        adapters=adapters,
        adapter_factory=lambda integration: ConfiguredIntegrationAdapter(integration, mapping_engine, schema_validator),
    )
    auth_resolver = AuthStrategyResolver(
        secret_store,
        token_cache,
        transport=transport,
        expiry_skew_seconds=config.cache.oauth_expiry_skew_seconds,
        timeout_seconds=config.dispatch.timeout_ms / 1000,
    )
    dispatcher = HttpDispatcher(auth_resolver, config.dispatch, transport=transport, sleep=sleep)

    return Pipeline(
        config=config,
        store=store,
        secret_store=secret_store,
        registry=registry,
        auth_resolver=auth_resolver,
        dispatcher=dispatcher,
        schema_validator=schema_validator,
        mapping_engine=mapping_engine,
        orchestrator=ExportJobOrchestrator(store, registry, dispatcher),
        runtime=IntegrationRuntime(store, registry, mapping_engine, schema_validator, dispatcher),
        preview=MappingPreviewService(mapping_engine, schema_validator),
    )
