"""
Global pytest configuration and fixtures for all tests.

This file provides fixtures available to all test modules.
"""

import os

import pytest

from creative_export.core.config import reset_config
from creative_export.core.database.document_store import InMemoryDocumentStore
from creative_export.core.secrets import StaticSecretStore
from creative_export.services.pipeline import build_pipeline
from tests.fixtures import PartnerTransport, RecordingSleep

# Environment variables read by the pipeline configuration
ISOLATED_ENV_PREFIXES = (
    "DISPATCH_",
    "CACHE_",
    "COMPASS_",
    "ADLOG_",
    "SECRETS_",
    "INTEGRATION_SECRET_",
    "DATABASE_",
)
ISOLATED_ENV_NAMES = (
    "EXPORT_WORKER_SECRET",
    "RUN_EXPORT_JOB_SECRET",
    "ENCRYPTION_KEY",
    "GCP_SECRET_MANAGER_PROJECT",
    "ENVIRONMENT",
    "PRODUCTION",
    "DEBUG",
)


@pytest.fixture(autouse=True)
def test_environment(monkeypatch):
    """Strip pipeline settings from the environment and rebuild config per test."""
    for name in list(os.environ):
        if name.startswith(ISOLATED_ENV_PREFIXES) or name in ISOLATED_ENV_NAMES:
            monkeypatch.delenv(name, raising=False)
    reset_config()
    yield
    reset_config()


@pytest.fixture
def store():
    """Provide an empty in-memory document store."""
    return InMemoryDocumentStore()


@pytest.fixture
def partner():
    """Partner endpoint answering 200 to every request."""
    return PartnerTransport()


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def secret_store():
    return StaticSecretStore(
        {
            "partner-api-key": "s3cret",
            "partner-oauth-client": '{"clientId": "client-1", "clientSecret": "shh"}',
            "webhook-signing-key": "whsec_test",
        }
    )


@pytest.fixture
def make_pipeline(store, secret_store, sleep):
    """Build a pipeline wired to the test store and a partner transport."""

    def _make(transport: PartnerTransport | None = None, **kwargs):
        return build_pipeline(
            store=store,
            secret_store=secret_store,
            transport=(transport or PartnerTransport()).transport,
            sleep=sleep,
            **kwargs,
        )

    return _make
