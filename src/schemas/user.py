"""User schema definitions.

This module defines the UserAccount data model decoded from ``users``
documents, and the request/response models of the authentication routes.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

import pytz
from pydantic import BaseModel, ConfigDict, Field, field_validator


class UserAccount(BaseModel):
    """An authenticated principal and its profile document."""

    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(description="Stable identifier issued by the identity service.")
    email: Optional[str] = Field(default=None)
    email_verified: bool = Field(
        default=False,
        description="Gates every privileged operation.",
    )
    enrolled_classes: List[str] = Field(
        default_factory=list,
        alias="enrolledClasses",
        description="Join codes of the classes the user is enrolled in.",
    )
    display_name: str = Field(default="Guest", alias="displayName")
    role: str = Field(default="student")
    company: Optional[str] = Field(default=None)
    user_type: str = Field(default="Registered", alias="userType")
    created_at: Optional[str] = Field(default=None, alias="createdAt")
    last_login: Optional[str] = Field(default=None, alias="lastLogin")

    @field_validator("enrolled_classes", mode="before")
    @classmethod
    def _coerce_codes(cls, value: Any) -> List[str]:
        if value is None:
            return []
        if not isinstance(value, (list, tuple)):
            raise ValueError("enrolledClasses must be a list")
        return [str(code) for code in value]

    @field_validator("display_name", mode="before")
    @classmethod
    def _default_display_name(cls, value: Any) -> str:
        return value or "Guest"

    @classmethod
    def from_document(
        cls,
        user_id: str,
        data: Optional[Dict[str, Any]],
        email_verified: bool = False,
    ) -> "UserAccount":
        """Decode a ``users`` document.

        Args:
            user_id: Document id (the user id).
            data: Raw document fields, or None for a missing document.
            email_verified: Verification flag reported by the identity service.

        Returns:
            Decoded UserAccount.
        """
        fields = dict(data or {})
        fields.pop("user_id", None)
        fields.pop("email_verified", None)
        return cls(user_id=user_id, email_verified=email_verified, **fields)

    def distinct_classes(self) -> List[str]:
        """Enrolled class codes with duplicates removed, first occurrence kept."""
        seen = set()
        result = []
        for code in self.enrolled_classes:
            if code not in seen:
                seen.add(code)
                result.append(code)
        return result


def default_user_document(email: str, display_name: Optional[str] = None) -> Dict[str, Any]:
    """Build the fields written to ``users/<uid>`` at sign-up."""
    return {
        "displayName": display_name or "Guest",
        "email": email,
        "userType": "Registered",
        "role": "student",
        "enrolledClasses": [],
        "createdAt": datetime.now(pytz.utc).isoformat(),
    }


class RegisterRequest(BaseModel):
    email: str
    password: str
    confirm_password: str
    display_name: Optional[str] = None


class LoginRequest(BaseModel):
    email: str
    password: str


class ConfirmEmailRequest(BaseModel):
    token: str


class UserInfo(BaseModel):
    """Public view of a user returned by the API."""

    user_id: str
    email: Optional[str] = None
    email_verified: bool
    display_name: str
    role: str
    company: Optional[str] = None
    enrolled_classes: List[str]
    last_login: Optional[str] = None

    @classmethod
    def from_account(cls, account: UserAccount) -> "UserInfo":
        return cls(
            user_id=account.user_id,
            email=account.email,
            email_verified=account.email_verified,
            display_name=account.display_name,
            role=account.role,
            company=account.company,
            enrolled_classes=account.distinct_classes(),
            last_login=account.last_login,
        )


class LoginResponse(BaseModel):
    user: UserInfo
    token: str


class CurrentUserResponse(BaseModel):
    user: UserInfo
