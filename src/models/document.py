from sqlalchemy import Column, Integer, String, JSON, UniqueConstraint

from .base import Base


class DocumentModel(Base):
    """A schemaless document addressed by collection path and document id."""

    __tablename__ = "documents"
    __table_args__ = (
        UniqueConstraint("collection", "doc_id", name="uq_documents_collection_doc_id"),
    )

    id = Column(Integer, primary_key=True, index=True)
    collection = Column(String, nullable=False, index=True)  # e.g. "users" or "users/<uid>/LogsAR"
    doc_id = Column(String, nullable=False, index=True)
    data = Column(JSON, nullable=False, default=dict)
    created_at = Column(String, nullable=False)  # ISO format string
    updated_at = Column(String, nullable=False)  # ISO format string
