"""
Integration test specific fixtures.

These fixtures exercise the SQL document store and the Flask API end to end.
"""

import pytest

from creative_export.admin.app import create_app
from creative_export.core.config import reset_config
from creative_export.core.database.database_session import init_db, reset_engine
from creative_export.core.database.document_store import SqlDocumentStore
from tests.fixtures import PartnerTransport


@pytest.fixture
def sql_store(tmp_path, monkeypatch):
    """Provide a SQL document store backed by a throwaway SQLite file."""
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'documents.db'}")
    reset_config()
    reset_engine()
    init_db()
    yield SqlDocumentStore()
    reset_engine()


@pytest.fixture
def api_partner():
    return PartnerTransport()


@pytest.fixture
def app(make_pipeline, api_partner):
    """Flask app wired to the in-memory store and a scripted partner."""
    return create_app(pipeline=make_pipeline(api_partner), config={"TESTING": True})


@pytest.fixture
def client(app):
    return app.test_client()
