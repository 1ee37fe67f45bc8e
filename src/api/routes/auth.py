"""Authentication routes.

This module handles HTTP endpoints for sign-up, login, logout and e-mail
verification.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

import pytz
from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from config import ACCESS_TOKEN_EXPIRE_MINUTES, JWT_ALGORITHM, JWT_SECRET_KEY
from core.dependencies import (
    AccessServiceDep,
    GatekeeperDep,
    IdentityStoreDep,
    SessionRegistryDep,
)
from core.exceptions import IdentityErrorCode, IdentityServiceError, ValidationError
from core.session_context import SessionContext
from schemas.user import (
    ConfirmEmailRequest,
    CurrentUserResponse,
    LoginRequest,
    LoginResponse,
    RegisterRequest,
    UserAccount,
    UserInfo,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["Auth"])

# HTTP Bearer token security
security = HTTPBearer()


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create a JWT access token.

    Args:
        data: Data to encode in the token.
        expires_delta: Optional expiration time delta.

    Returns:
        Encoded JWT token string.
    """
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.now(pytz.utc) + expires_delta
    else:
        expire = datetime.now(pytz.utc) + timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, JWT_SECRET_KEY, algorithm=JWT_ALGORITHM)


def verify_token(credentials: HTTPAuthorizationCredentials = Depends(security)) -> dict:
    """Verify JWT token from Authorization header.

    Args:
        credentials: HTTP Bearer token credentials.

    Returns:
        Decoded token payload.

    Raises:
        HTTPException: If token is invalid or expired.
    """
    token = credentials.credentials
    try:
        payload = jwt.decode(token, JWT_SECRET_KEY, algorithms=[JWT_ALGORITHM])
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials",
        )
    if payload.get("sub") is None or payload.get("sid") is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials",
        )
    return payload


def get_current_session(
    registry: SessionRegistryDep,
    token_payload: dict = Depends(verify_token),
) -> SessionContext:
    """Resolve the session a token was issued for.

    Raises:
        HTTPException: If the session was closed or belongs to another user.
    """
    context = registry.get(token_payload["sid"])
    if context is None or context.user_id != token_payload["sub"]:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Session expired, please log in again",
        )
    return context


async def get_current_account(
    gatekeeper: GatekeeperDep,
    context: SessionContext = Depends(get_current_session),
) -> UserAccount:
    """Get the signed-in account with a fresh verification flag."""
    account = await gatekeeper.load_account(context.user_id)
    if account is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
        )
    return account


async def get_verified_account(
    gatekeeper: GatekeeperDep,
    account: UserAccount = Depends(get_current_account),
) -> UserAccount:
    """Get the signed-in account, requiring a verified e-mail address."""
    await gatekeeper.ensure_verified(account)
    return account


@router.post("/register", summary="用户注册")
async def register(req: RegisterRequest, gatekeeper: GatekeeperDep) -> dict:
    """Register a new account.

    A verification e-mail is sent; the account cannot log in until the
    address is confirmed.

    Args:
        req: Registration request with email, password and confirmation.
        gatekeeper: Injected SessionGatekeeper instance.

    Returns:
        Dictionary with success message and user_id.
    """
    account = await gatekeeper.sign_up(
        req.email, req.password, req.confirm_password, req.display_name
    )
    return {
        "success": True,
        "message": "Registration successful. Please verify your email before logging in.",
        "user_id": account.user_id,
    }


@router.post("/login", response_model=LoginResponse, summary="用户登录")
async def login(
    req: LoginRequest,
    gatekeeper: GatekeeperDep,
    registry: SessionRegistryDep,
) -> LoginResponse:
    """Login with email and password.

    Args:
        req: Login request with email and password.
        gatekeeper: Injected SessionGatekeeper instance.
        registry: Injected SessionRegistry instance.

    Returns:
        LoginResponse with user information and JWT token.
    """
    account = await gatekeeper.login(req.email, req.password)
    context = registry.open(account.user_id)
    token = create_access_token(
        data={"sub": account.user_id, "sid": context.session_id},
        expires_delta=timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES),
    )
    return LoginResponse(user=UserInfo.from_account(account), token=token)


@router.post("/logout", summary="用户登出")
def logout(
    registry: SessionRegistryDep,
    access_service: AccessServiceDep,
    context: SessionContext = Depends(get_current_session),
) -> dict:
    """Logout and close the session.

    Access resolutions still in flight for this session are discarded when
    they complete.

    Returns:
        Dictionary with success message.
    """
    registry.close(context.session_id)
    access_service.discard(context.session_id)
    return {"success": True, "message": "Logged out successfully"}


@router.get("/me", response_model=CurrentUserResponse, summary="获取当前用户信息")
def get_current_user_info(
    account: UserAccount = Depends(get_current_account),
) -> CurrentUserResponse:
    return CurrentUserResponse(user=UserInfo.from_account(account))


@router.post("/verification/resend", summary="重新发送验证邮件")
async def resend_verification(
    gatekeeper: GatekeeperDep,
    account: UserAccount = Depends(get_current_account),
) -> dict:
    if account.email_verified:
        return {"success": True, "message": "Email already verified"}
    gatekeeper.request_verification_email(account.user_id)
    return {"success": True, "message": "Verification email sent"}


@router.post("/verification/confirm", summary="确认邮箱")
async def confirm_verification(
    req: ConfirmEmailRequest,
    identity: IdentityStoreDep,
) -> dict:
    """Confirm an e-mail address with the token from the verification message.

    Raises:
        ValidationError: If the token is unknown.
    """
    try:
        principal = await identity.confirm_email(req.token.strip())
    except IdentityServiceError as e:
        if e.code == IdentityErrorCode.INVALID_CREDENTIALS:
            raise ValidationError("Invalid verification token") from e
        raise
    return {"success": True, "message": "Email verified", "user_id": principal.user_id}
