"""Session gatekeeping.

This module decides whether a caller may sign in and proceed: it validates
credentials against the identity service, enforces a brute-force lockout,
requires a verified e-mail address, and establishes connectivity to the
backing services at startup.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Awaitable, Callable, Dict, Optional

import pytz

from config import (
    INIT_BACKOFF_SECONDS,
    INIT_MAX_ATTEMPTS,
    LOCKOUT_DURATION_SECONDS,
    LOCKOUT_THRESHOLD,
    MIN_PASSWORD_LENGTH,
    USERS_COLLECTION,
)
from core.exceptions import (
    AccountDisabledError,
    AuthFailure,
    EmailNotVerifiedError,
    IdentityErrorCode,
    IdentityServiceError,
    InvalidCredentialsError,
    NetworkError,
    RateLimitedError,
    RegistrationError,
    ServiceUnavailableError,
    StoreError,
    ValidationError,
)
from schemas.user import UserAccount, default_user_document
from utils.document_store import DocumentStore
from utils.identity_store import IdentityPrincipal, IdentityService, is_valid_email
from utils.keyed_locks import KeyedLocks

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(pytz.utc)


class LockoutState(str, Enum):
    OPEN = "open"  # attempts allowed
    LOCKED = "locked"  # attempts rejected


@dataclass
class LockoutEntry:
    state: LockoutState = LockoutState.OPEN
    failures: int = 0
    last_failure_at: Optional[datetime] = None
    locked_at: Optional[datetime] = None


class BruteForceGuard:
    """Per-address failed-login counter with a timed lockout.

    Open -> Locked once ``threshold`` consecutive failures are recorded.
    Locked -> Open (counter reset) once ``lockout_duration`` has elapsed.
    A successful login resets the counter.

    Only addresses with a failure on record hold an entry; an entry is
    dropped on success and when its lockout expires.
    """

    def __init__(
        self,
        threshold: int = LOCKOUT_THRESHOLD,
        lockout_duration: float = LOCKOUT_DURATION_SECONDS,
        clock: Clock = utcnow,
    ):
        if threshold < 1:
            raise ValueError("threshold must be at least 1")
        self.threshold = threshold
        self.lockout_duration = lockout_duration
        self._clock = clock
        self._entries: Dict[str, LockoutEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def _expired(self, entry: LockoutEntry) -> bool:
        return (
            entry.state == LockoutState.LOCKED
            and (self._clock() - entry.locked_at).total_seconds() >= self.lockout_duration
        )

    def _entry(self, key: str) -> Optional[LockoutEntry]:
        entry = self._entries.get(key)
        if entry is not None and self._expired(entry):
            logger.info("Lockout expired for %s", key)
            del self._entries[key]
            return None
        return entry

    def prune(self) -> None:
        """Drop every entry whose lockout has expired."""
        for key in [k for k, entry in self._entries.items() if self._expired(entry)]:
            del self._entries[key]

    def state(self, key: str) -> LockoutState:
        entry = self._entry(key)
        return entry.state if entry else LockoutState.OPEN

    def failures(self, key: str) -> int:
        entry = self._entry(key)
        return entry.failures if entry else 0

    def check(self, key: str) -> None:
        """Raise RateLimitedError while ``key`` is locked out."""
        entry = self._entry(key)
        if entry is not None and entry.state == LockoutState.LOCKED:
            elapsed = (self._clock() - entry.locked_at).total_seconds()
            raise RateLimitedError(retry_after=max(self.lockout_duration - elapsed, 0.0))

    def record_failure(self, key: str) -> LockoutState:
        self.prune()
        entry = self._entries.setdefault(key, LockoutEntry())
        now = self._clock()
        entry.failures += 1
        entry.last_failure_at = now
        if entry.state == LockoutState.OPEN and entry.failures >= self.threshold:
            entry.state = LockoutState.LOCKED
            entry.locked_at = now
            logger.warning(
                "Locked out %s after %d failed attempts", key, entry.failures
            )
        return entry.state

    def record_success(self, key: str) -> None:
        self._entries.pop(key, None)


@dataclass
class SessionState:
    """Outcome of the startup connectivity check."""

    ready: bool
    attempts: int
    connected_at: Optional[datetime] = None


# User-facing messages for sign-up failures
_REGISTRATION_MESSAGES = {
    IdentityErrorCode.WEAK_PASSWORD: "Password is too weak",
    IdentityErrorCode.INVALID_EMAIL: "Invalid email address",
    IdentityErrorCode.EMAIL_ALREADY_IN_USE: "This email is already in use",
}


class SessionGatekeeper:
    """Authenticates users and guards access behind e-mail verification."""

    def __init__(
        self,
        identity: IdentityService,
        store: DocumentStore,
        guard: Optional[BruteForceGuard] = None,
        clock: Clock = utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        on_auth_failed: Optional[Callable[[AuthFailure], None]] = None,
        min_password_length: int = MIN_PASSWORD_LENGTH,
    ):
        """Initialize SessionGatekeeper.

        Args:
            identity: Identity service used to check credentials.
            store: Document store holding ``users`` documents.
            guard: Lockout guard; a default one is created when omitted.
            clock: Returns the current UTC time.
            sleep: Awaitable sleep used between startup attempts.
            on_auth_failed: Called with every authentication failure.
            min_password_length: Shortest password accepted at sign-up.
        """
        self.identity = identity
        self.store = store
        self.guard = guard or BruteForceGuard(clock=clock)
        self._clock = clock
        self._sleep = sleep
        self._on_auth_failed = on_auth_failed
        self._min_password_length = min_password_length
        self._verification_tasks: Dict[str, asyncio.Task] = {}
        self._attempts = KeyedLocks()

    # --- Classification ---

    @staticmethod
    def classify(error: IdentityServiceError) -> AuthFailure:
        """Map an identity service error onto the authentication taxonomy."""
        if error.code == IdentityErrorCode.INVALID_CREDENTIALS:
            return InvalidCredentialsError()
        if error.code == IdentityErrorCode.USER_DISABLED:
            return AccountDisabledError()
        if error.code == IdentityErrorCode.NETWORK:
            return NetworkError()
        if error.code == IdentityErrorCode.UNAVAILABLE:
            return ServiceUnavailableError()
        return InvalidCredentialsError("Wrong pass code or an unknown error occurred")

    def _fail(self, failure: AuthFailure) -> AuthFailure:
        if self._on_auth_failed is not None:
            try:
                self._on_auth_failed(failure)
            except Exception:
                logger.exception("on_auth_failed callback raised")
        return failure

    # --- Authentication ---

    @staticmethod
    def _lockout_key(email: str) -> str:
        return email.strip().lower()

    async def authenticate(self, email: str, password: str) -> UserAccount:
        """Check credentials and return the signed-in account.

        Args:
            email: Address entered by the user.
            password: Password entered by the user.

        Returns:
            The authenticated UserAccount.

        Raises:
            ValidationError: If the email is malformed or the password empty.
            RateLimitedError: While the address is locked out.
            InvalidCredentialsError, AccountDisabledError, NetworkError,
                ServiceUnavailableError: If the identity service rejects the call.
        """
        email = (email or "").strip()
        if not is_valid_email(email):
            raise ValidationError("Invalid email address")
        if not password:
            raise ValidationError("Password cannot be empty")

        key = self._lockout_key(email)
        # One attempt per address at a time, so each sees the previous outcome
        async with self._attempts.hold(key):
            try:
                self.guard.check(key)
            except RateLimitedError as e:
                logger.warning("Rejected login for %s: locked out", key)
                raise self._fail(e)

            try:
                principal = await self.identity.sign_in(email, password)
            except IdentityServiceError as e:
                failure = self.classify(e)
                if isinstance(failure, (InvalidCredentialsError, AccountDisabledError)):
                    self.guard.record_failure(key)
                logger.info("Login failed for %s: %s", key, e.code.value)
                raise self._fail(failure) from e

            self.guard.record_success(key)
        logger.info("User signed in: %s", principal.user_id)
        return await self._load_account(principal)

    async def _load_account(self, principal: IdentityPrincipal) -> UserAccount:
        try:
            snapshot = await self.store.get_document(USERS_COLLECTION, principal.user_id)
        except StoreError as e:
            raise self._fail(NetworkError()) from e
        data = dict(snapshot.data) if snapshot else {}
        data.setdefault("email", principal.email)
        if principal.display_name and not data.get("displayName"):
            data["displayName"] = principal.display_name
        return UserAccount.from_document(
            principal.user_id, data, email_verified=principal.email_verified
        )

    async def load_account(self, user_id: str) -> Optional[UserAccount]:
        """Reload an account by id with a fresh verification flag."""
        try:
            principal = await self.identity.get_principal(user_id)
        except IdentityServiceError as e:
            raise self.classify(e) from e
        if principal is None or principal.disabled:
            return None
        return await self._load_account(principal)

    async def ensure_verified(self, account: UserAccount) -> None:
        """Require a verified e-mail address.

        An unverified account triggers a background re-send of the
        verification message; the re-send never blocks or fails the caller.

        Raises:
            EmailNotVerifiedError: If the address is not verified.
        """
        if account.email_verified:
            return
        self.request_verification_email(account.user_id)
        raise self._fail(EmailNotVerifiedError())

    def request_verification_email(self, user_id: str) -> Optional[asyncio.Task]:
        """Send a verification message in the background.

        At most one send per user is in flight; extra requests are dropped.

        Returns:
            The in-flight task, or None if one was already running.
        """
        pending = self._verification_tasks.get(user_id)
        if pending is not None and not pending.done():
            logger.debug("Verification email for %s already in flight", user_id)
            return None

        task = asyncio.create_task(self.identity.send_verification_email(user_id))
        self._verification_tasks[user_id] = task

        def _done(finished: asyncio.Task) -> None:
            if self._verification_tasks.get(user_id) is finished:
                del self._verification_tasks[user_id]
            if finished.cancelled():
                return
            error = finished.exception()
            if error is not None:
                logger.warning("Verification email for %s failed: %s", user_id, error)

        task.add_done_callback(_done)
        return task

    async def wait_for_verification_emails(self) -> None:
        """Wait for every in-flight verification send to finish."""
        tasks = list(self._verification_tasks.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def record_login(self, account: UserAccount) -> UserAccount:
        """Refresh login-time metadata on the user's document.

        A failed write is logged; the login itself still stands.
        """
        now = self._clock().isoformat()
        fields = {
            "displayName": account.display_name or "Guest",
            "email": account.email,
            "userType": "Registered",
            "lastLogin": now,
        }
        try:
            await self.store.set_document(USERS_COLLECTION, account.user_id, fields, merge=True)
        except StoreError as e:
            logger.warning("Could not record login for %s: %s", account.user_id, e)
            return account
        return account.model_copy(update={"last_login": now})

    async def login(self, email: str, password: str) -> UserAccount:
        """Authenticate, require verification, and record the login."""
        account = await self.authenticate(email, password)
        await self.ensure_verified(account)
        return await self.record_login(account)

    # --- Registration ---

    async def sign_up(
        self,
        email: str,
        password: str,
        confirm_password: str,
        display_name: Optional[str] = None,
    ) -> UserAccount:
        """Create an account and its user document.

        Args:
            email: Address for the new account.
            password: Chosen password.
            confirm_password: Must equal ``password``.
            display_name: Optional display name.

        Returns:
            The new, usually unverified, UserAccount.

        Raises:
            ValidationError: If the input is rejected locally.
            RegistrationError: If the identity service rejects the account.
            NetworkError, ServiceUnavailableError: If a service is unreachable.
        """
        email = (email or "").strip()
        if not is_valid_email(email):
            raise ValidationError("Invalid email address")
        if len(password or "") < self._min_password_length:
            raise ValidationError(
                f"Password must be at least {self._min_password_length} characters long"
            )
        if password != confirm_password:
            raise ValidationError("Passwords do not match")

        try:
            principal = await self.identity.create_account(email, password)
        except IdentityServiceError as e:
            if e.code in _REGISTRATION_MESSAGES:
                raise RegistrationError(_REGISTRATION_MESSAGES[e.code]) from e
            if e.code in (IdentityErrorCode.NETWORK, IdentityErrorCode.UNAVAILABLE):
                raise self.classify(e) from e
            raise RegistrationError("An unknown error occurred") from e

        document = default_user_document(principal.email, display_name)
        try:
            await self.store.set_document(
                USERS_COLLECTION, principal.user_id, document, merge=True
            )
        except StoreError as e:
            raise NetworkError() from e

        if not principal.email_verified:
            self.request_verification_email(principal.user_id)
        return UserAccount.from_document(
            principal.user_id, document, email_verified=principal.email_verified
        )

    # --- Startup ---

    async def initialize_with_retry(
        self,
        max_attempts: int = INIT_MAX_ATTEMPTS,
        backoff_seconds: float = INIT_BACKOFF_SECONDS,
    ) -> SessionState:
        """Establish connectivity to the identity service and document store.

        Attempts are separated by a constant delay.

        Args:
            max_attempts: Total number of attempts.
            backoff_seconds: Delay between attempts.

        Returns:
            SessionState describing the successful attempt.

        Raises:
            ServiceUnavailableError: If every attempt failed.
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        last_error: Optional[Exception] = None
        for attempt in range(1, max_attempts + 1):
            try:
                await self.identity.check_connection()
                await self.store.check_connection()
            except (IdentityServiceError, StoreError) as e:
                last_error = e
                logger.warning(
                    "Connectivity check %d/%d failed: %s", attempt, max_attempts, e
                )
                if attempt < max_attempts:
                    await self._sleep(backoff_seconds)
                continue
            logger.info("Connected to identity service and document store (attempt %d)", attempt)
            return SessionState(ready=True, attempts=attempt, connected_at=self._clock())

        logger.error("Backing services unavailable after %d attempts", max_attempts)
        raise ServiceUnavailableError() from last_error
