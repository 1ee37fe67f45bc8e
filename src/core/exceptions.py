"""Custom exception classes for the Forensic AR course-access service.

This module defines application-specific exceptions following Google Python
Style Guide. Every exception carries a ``presentation`` hint telling the
client how to surface it: a timed notification banner, a persistent blocking
error screen, or a silent lock of the course buttons.
"""

from enum import Enum
from typing import Optional


class Presentation(str, Enum):
    """How a failure is shown to the user."""

    BANNER = "banner"
    BLOCKING = "blocking"
    SILENT_LOCK = "silent_lock"


class ForensicAccessError(Exception):
    """Base exception for all course-access service errors."""

    presentation: Presentation = Presentation.BANNER


class ValidationError(ForensicAccessError):
    """Raised when request data validation fails."""

    pass


class ConfigurationError(ForensicAccessError):
    """Raised when there is a configuration error."""

    pass


class StaleSessionError(ForensicAccessError):
    """Raised when a result arrives for a session that is no longer current."""

    presentation = Presentation.SILENT_LOCK

    def __init__(self, session_id: str):
        """Initialize the exception.

        Args:
            session_id: The session the discarded result was issued for.
        """
        self.session_id = session_id
        super().__init__(f"Session '{session_id}' is no longer active")


# --- Store errors ---


class StoreError(ForensicAccessError):
    """Raised when the document store fails to serve a request."""

    pass


class StoreUnavailableError(StoreError):
    """Raised when the document store cannot be reached."""

    pass


class IdentityErrorCode(str, Enum):
    """Failure codes reported by the identity service."""

    INVALID_CREDENTIALS = "invalid_credentials"
    USER_DISABLED = "user_disabled"
    EMAIL_ALREADY_IN_USE = "email_already_in_use"
    WEAK_PASSWORD = "weak_password"
    INVALID_EMAIL = "invalid_email"
    NETWORK = "network"
    UNAVAILABLE = "unavailable"
    UNKNOWN = "unknown"


class IdentityServiceError(ForensicAccessError):
    """Raised by the identity service for any failed call."""

    def __init__(self, code: IdentityErrorCode, message: Optional[str] = None):
        """Initialize the exception.

        Args:
            code: Classified failure code.
            message: Optional human readable message.
        """
        self.code = code
        super().__init__(message or code.value)


# --- Authentication failures ---


class AuthFailure(ForensicAccessError):
    """Base class for authentication and verification failures."""

    pass


class InvalidCredentialsError(AuthFailure):
    """Raised when the email or password is wrong."""

    def __init__(self, message: str = "Invalid email or password"):
        super().__init__(message)


class EmailNotVerifiedError(AuthFailure):
    """Raised when a privileged operation needs a verified email."""

    def __init__(self, message: str = "Please verify your email!"):
        super().__init__(message)


class AccountDisabledError(AuthFailure):
    """Raised when the account has been disabled."""

    def __init__(self, message: str = "This account has been disabled"):
        super().__init__(message)


class RateLimitedError(AuthFailure):
    """Raised while login attempts are locked out."""

    def __init__(self, retry_after: float):
        """Initialize the exception.

        Args:
            retry_after: Seconds until attempts are accepted again.
        """
        self.retry_after = retry_after
        super().__init__(
            f"Too many failed attempts. Try again in {int(retry_after + 0.999)} seconds"
        )


class NetworkError(AuthFailure):
    """Raised when the identity service could not be reached."""

    def __init__(self, message: str = "Network error, please check your connection"):
        super().__init__(message)


class ServiceUnavailableError(AuthFailure):
    """Raised when the backing services are unavailable."""

    presentation = Presentation.BLOCKING

    def __init__(self, message: str = "Service is unavailable, please try again later"):
        super().__init__(message)


class RegistrationError(AuthFailure):
    """Raised when a new account cannot be created."""

    pass


# --- Enrollment failures ---


class EnrollFailure(ForensicAccessError):
    """Base class for class enrollment failures."""

    pass


class ClassNotFoundError(EnrollFailure):
    """Raised when no class matches the given join code."""

    def __init__(self, class_code: str):
        self.class_code = class_code
        super().__init__(f"Class '{class_code}' not found")


class ClassExpiredError(EnrollFailure):
    """Raised when the class due date has passed."""

    def __init__(self, class_code: str):
        self.class_code = class_code
        super().__init__(f"Class '{class_code}' has expired")


class ClassFullError(EnrollFailure):
    """Raised when the class has reached its capacity."""

    def __init__(self, class_code: str):
        self.class_code = class_code
        super().__init__(f"Class '{class_code}' is full")


class ClassInactiveError(EnrollFailure):
    """Raised when the class is not accepting students."""

    def __init__(self, class_code: str):
        self.class_code = class_code
        super().__init__(f"Class '{class_code}' is not active")


class DuplicateClassCodeError(EnrollFailure):
    """Raised when an active class already uses the join code."""

    def __init__(self, class_code: str):
        self.class_code = class_code
        super().__init__(f"An active class already uses code '{class_code}'")


class EnrollmentStoreError(EnrollFailure):
    """Raised when an enrollment write or lookup fails in the store."""

    pass


# --- Resolution failures ---


class ResolveFailure(ForensicAccessError):
    """Base class for unlocked-course resolution failures."""

    presentation = Presentation.SILENT_LOCK


class NoUserError(ResolveFailure):
    """Raised when the user document does not exist."""

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(f"User '{user_id}' not found")


class ResolveStoreError(ResolveFailure):
    """Raised when the user's enrolled classes cannot be fetched."""

    pass
