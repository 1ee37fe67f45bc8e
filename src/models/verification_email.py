from sqlalchemy import Column, String, ForeignKey
from sqlalchemy.orm import relationship

from .base import Base


class VerificationEmailModel(Base):
    """Outbox row for every verification message sent to an account."""

    __tablename__ = "verification_emails"

    token = Column(String, primary_key=True, index=True)
    user_id = Column(String, ForeignKey("accounts.user_id", ondelete="CASCADE"), index=True)
    email = Column(String, nullable=False)
    sent_at = Column(String, nullable=False)
    confirmed_at = Column(String, nullable=True)

    account = relationship("AccountModel", backref="verification_emails")
