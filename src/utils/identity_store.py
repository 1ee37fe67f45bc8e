"""Identity service access.

This module defines the authentication contract the core depends on and a
SQLAlchemy implementation providing password storage, account state, and a
verification e-mail outbox.
"""

import logging
import re
import secrets
import uuid
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterator, List, Optional

import bcrypt
import pytz
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from config import BCRYPT_ROUNDS, MIN_PASSWORD_LENGTH
from core.database import SessionLocal, connection_lock, run_blocking
from core.exceptions import IdentityErrorCode, IdentityServiceError
from models.account import AccountModel
from models.verification_email import VerificationEmailModel

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[A-Za-z0-9._%+\-]+@[A-Za-z0-9\-]+(\.[A-Za-z0-9\-]+)*\.[A-Za-z]{2,}$")

# bcrypt only looks at the first 72 bytes of a password
_BCRYPT_MAX_BYTES = 72


def is_valid_email(email: str) -> bool:
    return bool(email) and EMAIL_PATTERN.match(email) is not None


@dataclass
class IdentityPrincipal:
    """The identity service's view of an account."""

    user_id: str
    email: str
    email_verified: bool
    display_name: Optional[str] = None
    disabled: bool = False


class IdentityService(ABC):
    """Contract of the remote authentication service.

    Every failure raises ``IdentityServiceError`` with a classified code.
    """

    @abstractmethod
    async def sign_in(self, email: str, password: str) -> IdentityPrincipal:
        """Verify credentials and return the account."""

    @abstractmethod
    async def create_account(self, email: str, password: str) -> IdentityPrincipal:
        """Create a new, unverified account."""

    @abstractmethod
    async def send_verification_email(self, user_id: str) -> None:
        """Send a verification message to the account's address."""

    @abstractmethod
    async def get_principal(self, user_id: str) -> Optional[IdentityPrincipal]:
        """Return the current state of an account, or None."""

    @abstractmethod
    async def check_connection(self) -> None:
        """Raise ``IdentityServiceError`` if the service cannot be reached."""


class SqlIdentityStore(IdentityService):
    """Identity service backed by a SQLAlchemy database."""

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        bcrypt_rounds: int = BCRYPT_ROUNDS,
        min_password_length: int = MIN_PASSWORD_LENGTH,
    ):
        """Initialize SqlIdentityStore.

        Args:
            session_factory: Factory returning new SQLAlchemy sessions.
            bcrypt_rounds: Cost factor for password hashing.
            min_password_length: Shortest password accepted for new accounts.
        """
        self._session_factory = session_factory
        self._bcrypt_rounds = bcrypt_rounds
        self._min_password_length = min_password_length
        self._lock = connection_lock(session_factory)

    @contextmanager
    def _session(self) -> Iterator[Session]:
        with self._lock:
            db = self._session_factory()
            try:
                yield db
            except OperationalError as e:
                db.rollback()
                raise IdentityServiceError(IdentityErrorCode.NETWORK, str(e)) from e
            except IntegrityError:
                db.rollback()
                raise
            except SQLAlchemyError as e:
                db.rollback()
                raise IdentityServiceError(IdentityErrorCode.UNKNOWN, str(e)) from e
            finally:
                db.close()

    @staticmethod
    def _principal(model: AccountModel) -> IdentityPrincipal:
        return IdentityPrincipal(
            user_id=model.user_id,
            email=model.email,
            email_verified=bool(model.email_verified),
            display_name=model.display_name,
            disabled=bool(model.disabled),
        )

    @staticmethod
    def _password_bytes(password: str) -> bytes:
        return password.encode("utf-8")[:_BCRYPT_MAX_BYTES]

    def hash_password(self, password: str) -> str:
        """Hash a password using bcrypt.

        Args:
            password: Plain text password.

        Returns:
            Hashed password (bcrypt hash string).
        """
        salt = bcrypt.gensalt(rounds=self._bcrypt_rounds)
        return bcrypt.hashpw(self._password_bytes(password), salt).decode("utf-8")

    def verify_password(self, plain_password: str, hashed_password: str) -> bool:
        """Verify a password against a bcrypt hash.

        Args:
            plain_password: Plain text password to verify.
            hashed_password: Bcrypt hash string to verify against.

        Returns:
            True if password matches, False otherwise.
        """
        try:
            return bcrypt.checkpw(
                self._password_bytes(plain_password), hashed_password.encode("utf-8")
            )
        except ValueError as e:
            logger.error("Stored password hash is malformed: %s", e)
            return False

    def _find_by_email(self, email: str) -> Optional[AccountModel]:
        with self._session() as db:
            return db.query(AccountModel).filter(AccountModel.email == email).first()

    def _sign_in(self, email: str, password: str) -> IdentityPrincipal:
        model = self._find_by_email(email.strip().lower())
        if model is None or not self.verify_password(password, model.password_hash):
            raise IdentityServiceError(IdentityErrorCode.INVALID_CREDENTIALS)
        if model.disabled:
            raise IdentityServiceError(IdentityErrorCode.USER_DISABLED)
        return self._principal(model)

    def _create_account(self, email: str, password: str) -> IdentityPrincipal:
        if self._find_by_email(email) is not None:
            raise IdentityServiceError(IdentityErrorCode.EMAIL_ALREADY_IN_USE)
        password_hash = self.hash_password(password)

        with self._session() as db:
            model = AccountModel(
                user_id=uuid.uuid4().hex,
                email=email,
                password_hash=password_hash,
                email_verified=False,
                disabled=False,
                created_at=datetime.now(pytz.utc).isoformat(),
            )
            # A concurrent sign-up with the same address trips the unique constraint
            try:
                db.add(model)
                db.commit()
                db.refresh(model)
            except IntegrityError as e:
                db.rollback()
                raise IdentityServiceError(IdentityErrorCode.EMAIL_ALREADY_IN_USE) from e
            logger.info("Created account %s", model.user_id)
            return self._principal(model)

    def _send_verification_email(self, user_id: str) -> None:
        with self._session() as db:
            model = db.query(AccountModel).filter(AccountModel.user_id == user_id).first()
            if model is None:
                raise IdentityServiceError(
                    IdentityErrorCode.UNKNOWN, f"No account for user '{user_id}'"
                )
            outbox = VerificationEmailModel(
                token=secrets.token_urlsafe(32),
                user_id=user_id,
                email=model.email,
                sent_at=datetime.now(pytz.utc).isoformat(),
            )
            db.add(outbox)
            db.commit()
            logger.info("Queued verification email for %s", user_id)

    def _confirm_email(self, token: str) -> IdentityPrincipal:
        with self._session() as db:
            outbox = (
                db.query(VerificationEmailModel)
                .filter(VerificationEmailModel.token == token)
                .first()
            )
            if outbox is None:
                raise IdentityServiceError(
                    IdentityErrorCode.INVALID_CREDENTIALS, "Invalid verification token"
                )
            model = db.query(AccountModel).filter(AccountModel.user_id == outbox.user_id).first()
            model.email_verified = True
            if outbox.confirmed_at is None:
                outbox.confirmed_at = datetime.now(pytz.utc).isoformat()
            db.commit()
            db.refresh(model)
            logger.info("Email verified for %s", model.user_id)
            return self._principal(model)

    def _get_principal(self, user_id: str) -> Optional[IdentityPrincipal]:
        with self._session() as db:
            model = db.query(AccountModel).filter(AccountModel.user_id == user_id).first()
            return self._principal(model) if model else None

    def _set_disabled(self, user_id: str, disabled: bool) -> None:
        with self._session() as db:
            model = db.query(AccountModel).filter(AccountModel.user_id == user_id).first()
            if model is None:
                raise IdentityServiceError(
                    IdentityErrorCode.UNKNOWN, f"No account for user '{user_id}'"
                )
            model.disabled = disabled
            db.commit()
            logger.info("Account %s disabled=%s", user_id, disabled)

    def _check_connection(self) -> None:
        with self._session() as db:
            db.execute(text("SELECT 1"))

    async def sign_in(self, email: str, password: str) -> IdentityPrincipal:
        return await run_blocking(self._sign_in, email, password)

    async def create_account(self, email: str, password: str) -> IdentityPrincipal:
        email = email.strip().lower()
        if not is_valid_email(email):
            raise IdentityServiceError(IdentityErrorCode.INVALID_EMAIL)
        if len(password) < self._min_password_length:
            raise IdentityServiceError(IdentityErrorCode.WEAK_PASSWORD)
        return await run_blocking(self._create_account, email, password)

    async def send_verification_email(self, user_id: str) -> None:
        await run_blocking(self._send_verification_email, user_id)

    async def confirm_email(self, token: str) -> IdentityPrincipal:
        """Mark the account owning a verification token as verified.

        Args:
            token: Token from the verification message.

        Returns:
            The verified account.

        Raises:
            IdentityServiceError: If the token is unknown.
        """
        return await run_blocking(self._confirm_email, token)

    def list_verification_tokens(self, user_id: str) -> List[str]:
        """Tokens sent to a user, oldest first."""
        with self._session() as db:
            rows = (
                db.query(VerificationEmailModel)
                .filter(VerificationEmailModel.user_id == user_id)
                .order_by(VerificationEmailModel.sent_at)
                .all()
            )
            return [row.token for row in rows]

    async def get_principal(self, user_id: str) -> Optional[IdentityPrincipal]:
        return await run_blocking(self._get_principal, user_id)

    async def set_disabled(self, user_id: str, disabled: bool) -> None:
        await run_blocking(self._set_disabled, user_id, disabled)

    async def check_connection(self) -> None:
        await run_blocking(self._check_connection)
