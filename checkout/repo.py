"""SQLAlchemy-backed document store.

This module persists the checkout documents (orders, cart items, the
paid-product ledger) in a single ``documents`` table keyed by
``(collection, doc_id)`` with the document body in a JSON column. It gives
the core the key-value contract it needs from a managed document database
while running on PostgreSQL in production and SQLite locally or in tests.

The database URL is read from ``DATABASE_URL`` (see ``settings``).
"""

import uuid
from contextlib import contextmanager
from typing import List, Optional, Tuple

from sqlalchemy import JSON, String, create_engine, delete, select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, mapped_column
from sqlalchemy.pool import StaticPool

from .domain import DocumentNotFound, DocumentStore
from .settings import get_settings


class Base(DeclarativeBase):
    pass


class Document(Base):
    """SQLAlchemy model representing one stored document.

    Attributes:
        collection: Slash-separated collection path (e.g. ``users/u1/cart``).
        doc_id: Document id, unique within its collection.
        data: JSON body of the document.
    """

    __tablename__ = "documents"

    collection = mapped_column(String(255), primary_key=True)
    doc_id = mapped_column(String(255), primary_key=True)
    data = mapped_column(JSON, nullable=False, default=dict)


def make_engine(url: str) -> Engine:
    """Create an engine; in-memory SQLite gets a single shared connection."""
    if url == "sqlite://" or (url.startswith("sqlite") and ":memory:" in url):
        return create_engine(url, connect_args={"check_same_thread": False}, poolclass=StaticPool)
    if url.startswith("sqlite"):
        return create_engine(url, connect_args={"check_same_thread": False})
    return create_engine(url, pool_pre_ping=True)


class SqlDocumentStore(DocumentStore):
    """Document store persisting into the ``documents`` table."""

    def __init__(self, url: str | None = None, engine: Engine | None = None):
        if engine is None:
            if url is None:
                url = get_settings().database_url
            engine = make_engine(url)
        self.engine = engine
        Base.metadata.create_all(self.engine)

    @contextmanager
    def session(self):
        """Yield a SQLAlchemy session bound to the store's engine.

        Yields:
            Session: Active SQLAlchemy session, closed on context exit.
        """
        with Session(self.engine) as s:
            yield s

    def _locked(self, s: Session, collection: str, doc_id: str) -> Optional[Document]:
        return (
            s.execute(
                select(Document)
                .where(Document.collection == collection, Document.doc_id == doc_id)
                .with_for_update()
            )
            .scalars()
            .first()
        )

    def get(self, collection: str, doc_id: str) -> Optional[dict]:
        with self.session() as s:
            obj = s.get(Document, (collection, doc_id))
            return dict(obj.data) if obj else None

    def set(self, collection: str, doc_id: str, data: dict, merge: bool = False) -> None:
        """Create or replace a document.

        With ``merge`` the given top-level fields are written over the
        existing body under a row lock; other fields are preserved.
        """
        with self.session() as s:
            obj = self._locked(s, collection, doc_id)
            if obj is None:
                s.add(Document(collection=collection, doc_id=doc_id, data=dict(data)))
            elif merge:
                obj.data = {**obj.data, **data}
            else:
                obj.data = dict(data)
            s.commit()

    def update(self, collection: str, doc_id: str, fields: dict) -> None:
        with self.session() as s:
            obj = self._locked(s, collection, doc_id)
            if obj is None:
                raise DocumentNotFound(f"{collection}/{doc_id}")
            obj.data = {**obj.data, **fields}
            s.commit()

    def delete(self, collection: str, doc_id: str) -> None:
        with self.session() as s:
            s.execute(delete(Document).where(Document.collection == collection, Document.doc_id == doc_id))
            s.commit()

    def list(self, collection: str) -> List[Tuple[str, dict]]:
        with self.session() as s:
            rows = s.execute(
                select(Document).where(Document.collection == collection).order_by(Document.doc_id)
            ).scalars()
            return [(r.doc_id, dict(r.data)) for r in rows]

    def add(self, collection: str, data: dict) -> str:
        doc_id = uuid.uuid4().hex
        self.set(collection, doc_id, data)
        return doc_id
