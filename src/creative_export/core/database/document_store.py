"""Document store access.

The pipeline treats its record store as opaque nested JSON addressed by
``collection/id``. ``set`` merges by default so concurrent readers never
observe a document with fields dropped by a partial write.
"""

from __future__ import annotations

import copy
import logging
import threading
from collections.abc import Mapping
from typing import Any, Protocol

from sqlalchemy import select

from creative_export.core.database.database_session import get_db_session
from creative_export.core.database.models import StoredDocument

logger = logging.getLogger(__name__)

INTEGRATIONS = "integrations"
SCHEMAS = "schemas"
EXPORT_JOBS = "exportJobs"
AD_ASSETS = "adAssets"
REVIEWS = "reviews"
BRANDS = "brands"
INTEGRATION_FAILURES = "integration_failures"


def integration_versions_path(integration_id: str) -> str:
    return f"{INTEGRATIONS}/{integration_id}/versions"


def review_ads_path(review_id: str) -> str:
    return f"{REVIEWS}/{review_id}/ads"


def deep_merge(base: Mapping[str, Any], update: Mapping[str, Any]) -> dict[str, Any]:
    """Recursively merge ``update`` into a copy of ``base``; non-dict values replace."""
    merged = copy.deepcopy(dict(base))
    for key, value in update.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), Mapping):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


class DocumentStore(Protocol):
    def get(self, collection: str, doc_id: str) -> dict[str, Any] | None: ...

    def set(self, collection: str, doc_id: str, data: Mapping[str, Any], merge: bool = True) -> None: ...

    def list(self, collection: str) -> list[dict[str, Any]]: ...

    def list_subcollection(self, collection: str, doc_id: str, sub: str) -> list[dict[str, Any]]: ...


class InMemoryDocumentStore:
    """Dict-backed store for tests and local runs."""

    def __init__(self, initial: Mapping[str, Mapping[str, Mapping[str, Any]]] | None = None):
        self._collections: dict[str, dict[str, dict[str, Any]]] = {}
        self._lock = threading.Lock()
        for collection, documents in (initial or {}).items():
            for doc_id, data in documents.items():
                self.set(collection, doc_id, data, merge=False)

    def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        with self._lock:
            document = self._collections.get(collection, {}).get(doc_id)
            return copy.deepcopy(document) if document is not None else None

    def set(self, collection: str, doc_id: str, data: Mapping[str, Any], merge: bool = True) -> None:
        with self._lock:
            documents = self._collections.setdefault(collection, {})
            existing = documents.get(doc_id)
            if merge and existing is not None:
                documents[doc_id] = deep_merge(existing, data)
            else:
                documents[doc_id] = copy.deepcopy(dict(data))

    def list(self, collection: str) -> list[dict[str, Any]]:
        with self._lock:
            documents = self._collections.get(collection, {})
            return [{"id": doc_id, **copy.deepcopy(data)} for doc_id, data in documents.items()]

    def list_subcollection(self, collection: str, doc_id: str, sub: str) -> list[dict[str, Any]]:
        return self.list(f"{collection}/{doc_id}/{sub}")


class SqlDocumentStore:
    """Document store persisted through SQLAlchemy."""

    def __init__(self, session_factory=get_db_session):
        self._session_factory = session_factory

    def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        with self._session_factory() as session:
            row = session.get(StoredDocument, (collection, doc_id))
            return copy.deepcopy(row.data) if row is not None else None

    def set(self, collection: str, doc_id: str, data: Mapping[str, Any], merge: bool = True) -> None:
        with self._session_factory() as session:
            row = session.get(StoredDocument, (collection, doc_id))
            if row is None:
                session.add(StoredDocument(collection=collection, doc_id=doc_id, data=copy.deepcopy(dict(data))))
            elif merge:
                # Assign a new object so the JSON column is flagged dirty
                row.data = deep_merge(row.data or {}, data)
            else:
                row.data = copy.deepcopy(dict(data))
            session.commit()
        logger.debug(f"Stored {collection}/{doc_id} (merge={merge})")

    def list(self, collection: str) -> list[dict[str, Any]]:
        with self._session_factory() as session:
            stmt = select(StoredDocument).filter_by(collection=collection).order_by(StoredDocument.doc_id)
            return [{"id": row.doc_id, **copy.deepcopy(row.data)} for row in session.scalars(stmt)]

    def list_subcollection(self, collection: str, doc_id: str, sub: str) -> list[dict[str, Any]]:
        return self.list(f"{collection}/{doc_id}/{sub}")
