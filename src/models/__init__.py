"""SQLAlchemy models backing the identity service and the document store."""

from .account import AccountModel
from .document import DocumentModel
from .verification_email import VerificationEmailModel

__all__ = ["AccountModel", "DocumentModel", "VerificationEmailModel"]
