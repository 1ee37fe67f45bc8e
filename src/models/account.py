"""Account database model.

This module defines the identity-side Account model: credentials and
verification state, kept apart from the user's profile document.
"""

from sqlalchemy import Boolean, Column, String

from .base import Base


class AccountModel(Base):
    """Account database model."""

    __tablename__ = "accounts"

    user_id = Column(String, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)  # lower-cased
    password_hash = Column(String, nullable=False)
    email_verified = Column(Boolean, nullable=False, default=False)
    disabled = Column(Boolean, nullable=False, default=False)
    display_name = Column(String, nullable=True)
    created_at = Column(String, nullable=False)  # ISO format string
