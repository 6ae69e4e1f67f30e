"""SQLAlchemy models for the SQL-backed document store."""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Index, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql import func


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models using SQLAlchemy 2.0 declarative style."""

    pass


class StoredDocument(Base):
    """One JSON document addressed by ``(collection, doc_id)``.

    Subcollections are flattened into the collection path, e.g.
    ``reviews/r1/ads``.
    """

    __tablename__ = "stored_documents"

    collection: Mapped[str] = mapped_column(String(500), primary_key=True)
    doc_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    data: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (Index("idx_stored_documents_collection", "collection"),)

    def __repr__(self) -> str:
        return f"<StoredDocument {self.collection}/{self.doc_id}>"
