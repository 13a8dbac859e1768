"""FastAPI dependency injection providers."""

from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select

from .config import MedbankConfig, get_config
from .database import get_session, get_session_factory
from .utils.logging import get_logger
from .utils.security import decode_access_token

_dep_logger = get_logger("dependencies")

security_scheme = HTTPBearer(auto_error=False)

SESSION_COOKIE = "medbank_session"

_config_instance: MedbankConfig | None = None
_email_sender = None


def get_app_config() -> MedbankConfig:
    """Get the application config singleton."""
    global _config_instance
    if _config_instance is None:
        _config_instance = get_config()
    return _config_instance


async def get_db(config: MedbankConfig = Depends(get_app_config)):
    """Get an async database session."""
    async for session in get_session(config):
        yield session


def _extract_token(request: Request, credentials: Optional[HTTPAuthorizationCredentials]) -> Optional[str]:
    """Bearer header first, then the session cookie."""
    if credentials and credentials.credentials:
        return credentials.credentials
    return request.cookies.get(SESSION_COOKIE)


async def _resolve_user(raw_token: str, config: MedbankConfig) -> dict:
    payload = decode_access_token(raw_token, config.secret_key, config.jwt_algorithm)
    if payload is None or "sub" not in payload:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    from .models.user import User

    try:
        user_id = int(payload["sub"])
    except (TypeError, ValueError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    factory = get_session_factory(config)
    async with factory() as db:
        result = await db.execute(select(User).where(User.id == user_id))
        user = result.scalar_one_or_none()

    if user is None:
        _dep_logger.info("token_user_missing", user_id=user_id)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User no longer exists",
            headers={"WWW-Authenticate": "Bearer"},
        )

    # Role is read from the database so that role changes apply immediately
    return {
        **payload,
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "role": user.role,
    }


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security_scheme),
    config: MedbankConfig = Depends(get_app_config),
) -> dict:
    """Validate the JWT and return the current user."""
    raw_token = _extract_token(request, credentials)
    if not raw_token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return await _resolve_user(raw_token, config)


async def get_optional_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security_scheme),
    config: MedbankConfig = Depends(get_app_config),
) -> Optional[dict]:
    """Like get_current_user, but anonymous callers get None instead of a 401."""
    raw_token = _extract_token(request, credentials)
    if not raw_token:
        return None
    return await _resolve_user(raw_token, config)


def get_email_sender():
    """Get the e-mail sender singleton."""
    global _email_sender
    if _email_sender is None:
        from .notifications.email import EmailSender
        config = get_app_config()
        _email_sender = EmailSender(config.smtp_config, app_name=config.app_name)
    return _email_sender
