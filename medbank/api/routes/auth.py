"""Authentication routes: registration, e-mail verification, sessions, onboarding."""

import re
from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ...auth.rbac import get_user_permissions
from ...config import MedbankConfig
from ...dependencies import SESSION_COOKIE, get_app_config, get_current_user, get_db, get_email_sender
from ...models.base import utcnow
from ...models.user import User
from ...models.user_activity import UserActivity
from ...utils.logging import get_logger
from ...utils.rate_limiter import RateLimiter
from ...utils.security import (
    create_access_token,
    generate_verification_code,
    hash_password,
    validate_password_strength,
    verify_password,
)

logger = get_logger("api.auth")

router = APIRouter(prefix="/auth", tags=["auth"])

# 5 login attempts per 5-minute window per IP
_login_limiter = RateLimiter(max_attempts=5, window_seconds=300)
# 3 verification e-mails per 10 minutes per address
_resend_limiter = RateLimiter(max_attempts=3, window_seconds=600)

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _get_client_ip(request: Request) -> str:
    """Extract client IP from request."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def _normalize_email(email: str) -> str:
    email = (email or "").strip().lower()
    if not _EMAIL_RE.match(email):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="A valid e-mail address is required",
        )
    return email


def _check_password(password: str, config: MedbankConfig) -> None:
    try:
        validate_password_strength(password, min_length=config.min_password_length)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))


def _issue_token(user: User, config: MedbankConfig, response: Response) -> str:
    token = create_access_token(
        data={"sub": str(user.id), "email": user.email, "role": user.role},
        secret_key=config.secret_key,
        algorithm=config.jwt_algorithm,
        expires_minutes=config.jwt_expiry_minutes,
    )
    response.set_cookie(
        key=SESSION_COOKIE,
        value=token,
        httponly=True,
        samesite="lax",
        secure=not config.debug,
        max_age=config.jwt_expiry_minutes * 60,
        path="/",
    )
    return token


async def _send_code(user: User, config: MedbankConfig) -> None:
    user.verification_code = generate_verification_code()
    user.verification_expires_at = utcnow() + timedelta(minutes=config.verification_code_ttl_minutes)
    sender = get_email_sender()
    await sender.send_verification_code(
        user.email, user.verification_code, config.verification_code_ttl_minutes
    )


# --- Request bodies ---

class RegisterRequest(BaseModel):
    email: str
    password: str
    name: Optional[str] = None


class VerifyCodeRequest(BaseModel):
    email: str
    code: str


class ResendRequest(BaseModel):
    email: str


class LoginRequest(BaseModel):
    email: str
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str


class OnboardingRequest(BaseModel):
    name: str
    niveau: Optional[str] = None


# --- Endpoints ---

@router.post("/register", status_code=201)
async def register(
    body: RegisterRequest,
    db: AsyncSession = Depends(get_db),
    config: MedbankConfig = Depends(get_app_config),
):
    """Create an unverified account and e-mail a verification code."""
    email = _normalize_email(body.email)
    _check_password(body.password, config)

    result = await db.execute(select(User).where(User.email == email))
    if result.scalar_one_or_none():
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="An account with this e-mail already exists",
        )

    user = User(
        email=email,
        name=(body.name or "").strip() or None,
        password_hash=hash_password(body.password),
        role=config.default_role,
        is_verified=False,
    )
    db.add(user)
    await _send_code(user, config)
    await db.commit()
    await db.refresh(user)

    logger.info("user_registered", user_id=user.id)
    return {
        "message": "Account created, check your e-mail for the verification code",
        "user": user.summary(),
        "requires_verification": True,
    }


@router.post("/verify-code")
async def verify_code(
    body: VerifyCodeRequest,
    response: Response,
    db: AsyncSession = Depends(get_db),
    config: MedbankConfig = Depends(get_app_config),
):
    """Check the e-mailed code, mark the account verified and sign the user in."""
    email = _normalize_email(body.email)
    user = (await db.execute(select(User).where(User.email == email))).scalar_one_or_none()
    if not user or user.is_verified:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid request")

    if not user.verification_code or user.verification_code != body.code.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid code")
    if user.verification_expires_at and utcnow() > user.verification_expires_at:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Code expired")

    user.is_verified = True
    user.verification_code = None
    user.verification_expires_at = None
    await db.commit()

    token = _issue_token(user, config, response)
    logger.info("user_verified", user_id=user.id)
    return {"message": "Verification successful", "user": user.summary(), "access_token": token}


@router.post("/resend-verification")
async def resend_verification(
    body: ResendRequest,
    db: AsyncSession = Depends(get_db),
    config: MedbankConfig = Depends(get_app_config),
):
    """Send a fresh verification code."""
    email = _normalize_email(body.email)
    if _resend_limiter.is_rate_limited(email):
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many verification e-mails. Please try again later.",
        )

    user = (await db.execute(select(User).where(User.email == email))).scalar_one_or_none()
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    if user.is_verified:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Account already verified")

    _resend_limiter.record_attempt(email)
    await _send_code(user, config)
    await db.commit()
    return {"message": "Verification code sent"}


@router.post("/login", response_model=TokenResponse)
async def login(
    body: LoginRequest,
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db),
    config: MedbankConfig = Depends(get_app_config),
):
    """Authenticate and return a JWT (also set as httpOnly cookie)."""
    client_ip = _get_client_ip(request)
    if _login_limiter.is_rate_limited(client_ip):
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many login attempts. Please try again later.",
        )

    email = (body.email or "").strip().lower()
    user = (await db.execute(select(User).where(User.email == email))).scalar_one_or_none()

    if not user or not verify_password(body.password, user.password_hash):
        _login_limiter.record_attempt(client_ip)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials",
        )
    if not user.is_verified:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="E-mail address not verified",
        )

    _login_limiter.reset(client_ip)

    user.last_login = utcnow()
    db.add(UserActivity(user_id=user.id, type="login"))
    await db.commit()

    token = _issue_token(user, config, response)
    logger.info("user_logged_in", user_id=user.id)
    return {"access_token": token, "token_type": "bearer"}


@router.post("/logout")
async def logout(response: Response):
    response.delete_cookie(SESSION_COOKIE, path="/")
    return {"message": "Logged out"}


@router.get("/me")
async def me(
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_user),
):
    """Current user, with impersonation context when acting on behalf of someone."""
    user = (await db.execute(select(User).where(User.id == current_user["id"]))).scalar_one()
    return {
        **user.summary(),
        "is_verified": user.is_verified,
        "niveau": user.niveau,
        "profile_completed": user.profile_completed,
        "has_active_subscription": user.has_active_subscription,
        "permissions": get_user_permissions(current_user),
        "is_impersonation": bool(current_user.get("is_impersonation")),
        "impersonated_by": current_user.get("impersonated_by"),
    }


@router.post("/change-password")
async def change_password(
    body: ChangePasswordRequest,
    db: AsyncSession = Depends(get_db),
    config: MedbankConfig = Depends(get_app_config),
    current_user: dict = Depends(get_current_user),
):
    user = (await db.execute(select(User).where(User.id == current_user["id"]))).scalar_one()
    if not verify_password(body.current_password, user.password_hash):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Current password is incorrect")
    _check_password(body.new_password, config)

    user.password_hash = hash_password(body.new_password)
    await db.commit()
    logger.info("password_changed", user_id=user.id)
    return {"message": "Password updated"}


@router.post("/onboarding")
async def complete_onboarding(
    body: OnboardingRequest,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_user),
):
    """Store the profile details asked right after sign-up."""
    name = body.name.strip()
    if not name:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="name is required")

    user = (await db.execute(select(User).where(User.id == current_user["id"]))).scalar_one()
    user.name = name
    user.niveau = body.niveau
    user.profile_completed = True
    await db.commit()
    return {**user.summary(), "niveau": user.niveau, "profile_completed": True}
