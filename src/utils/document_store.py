"""Document store access.

This module defines the document-store contract the core depends on and a
SQLAlchemy implementation that keeps every document as a JSON payload in a
single ``documents`` table, addressed by collection path and document id.
"""

import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Iterator, List, Optional

import pytz
from sqlalchemy import text
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from core.database import SessionLocal, connection_lock, run_blocking
from core.exceptions import StoreError, StoreUnavailableError
from models.document import DocumentModel

logger = logging.getLogger(__name__)


@dataclass
class DocumentSnapshot:
    """A document as read from the store."""

    collection: str
    doc_id: str
    data: Dict[str, Any] = field(default_factory=dict)

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)


class DocumentStore(ABC):
    """Contract of the remote document database.

    A missing document is reported as ``None``. Any failure raises
    ``StoreError``; failures to reach the store raise ``StoreUnavailableError``.
    """

    @abstractmethod
    async def get_document(self, collection: str, doc_id: str) -> Optional[DocumentSnapshot]:
        """Fetch one document by its internal id."""

    @abstractmethod
    async def query_documents(
        self, collection: str, field_name: str, value: Any
    ) -> List[DocumentSnapshot]:
        """Fetch every document whose ``field_name`` equals ``value``."""

    @abstractmethod
    async def list_documents(self, collection: str) -> List[DocumentSnapshot]:
        """Fetch every document of a collection."""

    @abstractmethod
    async def set_document(
        self, collection: str, doc_id: str, fields: Dict[str, Any], merge: bool = False
    ) -> None:
        """Create or overwrite a document, or merge fields into it."""

    @abstractmethod
    async def update_field(self, collection: str, doc_id: str, field_name: str, value: Any) -> None:
        """Set one field of an existing document."""

    @abstractmethod
    async def check_connection(self) -> None:
        """Raise ``StoreUnavailableError`` if the store cannot be reached."""


class SqlDocumentStore(DocumentStore):
    """Document store backed by a SQLAlchemy database."""

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal):
        """Initialize SqlDocumentStore.

        Args:
            session_factory: Factory returning new SQLAlchemy sessions.
        """
        self._session_factory = session_factory
        self._lock = connection_lock(session_factory)

    @contextmanager
    def _session(self) -> Iterator[Session]:
        with self._lock:
            db = self._session_factory()
            try:
                yield db
            except OperationalError as e:
                db.rollback()
                raise StoreUnavailableError(f"Document store unreachable: {e}") from e
            except SQLAlchemyError as e:
                db.rollback()
                raise StoreError(f"Document store error: {e}") from e
            finally:
                db.close()

    @staticmethod
    def _snapshot(model: DocumentModel) -> DocumentSnapshot:
        return DocumentSnapshot(
            collection=model.collection,
            doc_id=model.doc_id,
            data=dict(model.data or {}),
        )

    @staticmethod
    def _find(db: Session, collection: str, doc_id: str) -> Optional[DocumentModel]:
        return (
            db.query(DocumentModel)
            .filter(
                DocumentModel.collection == collection,
                DocumentModel.doc_id == doc_id,
            )
            .first()
        )

    def _get_document(self, collection: str, doc_id: str) -> Optional[DocumentSnapshot]:
        with self._session() as db:
            model = self._find(db, collection, doc_id)
            return self._snapshot(model) if model else None

    def _query_documents(self, collection: str, field_name: str, value: Any) -> List[DocumentSnapshot]:
        with self._session() as db:
            query = db.query(DocumentModel).filter(DocumentModel.collection == collection)
            column = DocumentModel.data[field_name]
            if isinstance(value, bool):
                query = query.filter(column.as_boolean() == value)
            elif isinstance(value, str):
                query = query.filter(column.as_string() == value)
            elif isinstance(value, int):
                query = query.filter(column.as_integer() == value)
            elif isinstance(value, float):
                query = query.filter(column.as_float() == value)
            else:
                models = query.order_by(DocumentModel.doc_id).all()
                return [
                    self._snapshot(m) for m in models if (m.data or {}).get(field_name) == value
                ]
            return [self._snapshot(m) for m in query.order_by(DocumentModel.doc_id).all()]

    def _list_documents(self, collection: str) -> List[DocumentSnapshot]:
        with self._session() as db:
            models = (
                db.query(DocumentModel)
                .filter(DocumentModel.collection == collection)
                .order_by(DocumentModel.doc_id)
                .all()
            )
            return [self._snapshot(m) for m in models]

    def _set_document(self, collection: str, doc_id: str, fields: Dict[str, Any], merge: bool) -> None:
        now = datetime.now(pytz.utc).isoformat()
        with self._session() as db:
            model = self._find(db, collection, doc_id)
            if model is None:
                model = DocumentModel(
                    collection=collection,
                    doc_id=doc_id,
                    data=dict(fields),
                    created_at=now,
                    updated_at=now,
                )
                db.add(model)
            else:
                # Assign a new dict so the JSON column is flagged as modified
                model.data = {**(model.data or {}), **fields} if merge else dict(fields)
                model.updated_at = now
            db.commit()
        logger.debug("Wrote %s/%s (merge=%s)", collection, doc_id, merge)

    def _update_field(self, collection: str, doc_id: str, field_name: str, value: Any) -> None:
        with self._session() as db:
            model = self._find(db, collection, doc_id)
            if model is None:
                raise StoreError(f"Document {collection}/{doc_id} does not exist")
            model.data = {**(model.data or {}), field_name: value}
            model.updated_at = datetime.now(pytz.utc).isoformat()
            db.commit()
        logger.debug("Updated %s/%s.%s", collection, doc_id, field_name)

    def _check_connection(self) -> None:
        with self._session() as db:
            db.execute(text("SELECT 1"))

    async def get_document(self, collection: str, doc_id: str) -> Optional[DocumentSnapshot]:
        return await run_blocking(self._get_document, collection, doc_id)

    async def query_documents(
        self, collection: str, field_name: str, value: Any
    ) -> List[DocumentSnapshot]:
        return await run_blocking(self._query_documents, collection, field_name, value)

    async def list_documents(self, collection: str) -> List[DocumentSnapshot]:
        return await run_blocking(self._list_documents, collection)

    async def set_document(
        self, collection: str, doc_id: str, fields: Dict[str, Any], merge: bool = False
    ) -> None:
        await run_blocking(self._set_document, collection, doc_id, dict(fields), merge)

    async def update_field(self, collection: str, doc_id: str, field_name: str, value: Any) -> None:
        await run_blocking(self._update_field, collection, doc_id, field_name, value)

    async def check_connection(self) -> None:
        await run_blocking(self._check_connection)
