"""Admin user management — listing, profiles, roles, deletion, impersonation."""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from ...auth.rbac import PERM_IMPERSONATE, PERM_MANAGE_USERS, ROLES, require_permission
from ...config import MedbankConfig
from ...dependencies import get_app_config, get_current_user, get_db
from ...models.comment import QuestionComment
from ...models.user import User
from ...models.user_activity import UserActivity
from ...utils.logging import get_logger
from ...utils.security import create_access_token

logger = get_logger("api.admin_users")

router = APIRouter(prefix="/admin/users", tags=["admin-users"])


# --- Request bodies ---

class UpdateRoleRequest(BaseModel):
    role: str


# --- Helpers ---

async def _get_user_or_404(user_id: int, db: AsyncSession) -> User:
    """Fetch user by ID or raise 404."""
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


def _user_to_dict(u: User) -> dict:
    return {
        "id": u.id,
        "email": u.email,
        "name": u.name,
        "role": u.role,
        "is_verified": u.is_verified,
        "niveau": u.niveau,
        "profile_completed": u.profile_completed,
        "has_active_subscription": u.has_active_subscription,
        "created_at": u.created_at.isoformat(),
        "last_login": u.last_login.isoformat() if u.last_login else None,
    }


# --- Endpoints ---

@router.get("")
async def list_users(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=200),
    search: str = Query(""),
    role: Optional[list[str]] = Query(None),
    verified: Optional[bool] = Query(None),
    has_active_subscription: Optional[bool] = Query(None),
    profile_completed: Optional[bool] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(require_permission(PERM_MANAGE_USERS)),
):
    """Paginated user list with search (email/name) and filters."""
    conditions = []
    if search:
        pattern = f"%{search.lower()}%"
        conditions.append(or_(
            func.lower(User.email).like(pattern),
            func.lower(User.name).like(pattern),
        ))
    if role:
        conditions.append(User.role.in_(role))
    if verified is not None:
        conditions.append(User.is_verified == verified)
    if has_active_subscription is not None:
        conditions.append(User.has_active_subscription == has_active_subscription)
    if profile_completed is not None:
        conditions.append(User.profile_completed == profile_completed)

    total = (await db.execute(
        select(func.count(User.id)).where(*conditions)
    )).scalar() or 0
    rows = (await db.execute(
        select(User)
        .where(*conditions)
        .order_by(User.created_at.desc(), User.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )).scalars().all()

    return {
        "users": [_user_to_dict(u) for u in rows],
        "total": total,
        "page": page,
        "limit": limit,
        "total_pages": (total + limit - 1) // limit,
    }


@router.get("/{user_id}")
async def get_user_profile(
    user_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(require_permission(PERM_MANAGE_USERS)),
):
    """User profile with discussion and activity counters."""
    user = await _get_user_or_404(user_id, db)

    comment_count = (await db.execute(
        select(func.count(QuestionComment.id)).where(QuestionComment.user_id == user_id)
    )).scalar() or 0
    activity_count, last_activity = (await db.execute(
        select(func.count(UserActivity.id), func.max(UserActivity.created_at))
        .where(UserActivity.user_id == user_id)
    )).one()

    return {
        **_user_to_dict(user),
        "comment_count": comment_count,
        "activity_count": activity_count or 0,
        "last_activity": last_activity.isoformat() if last_activity else None,
    }


@router.patch("/{user_id}/role")
async def update_user_role(
    user_id: int,
    body: UpdateRoleRequest,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(require_permission(PERM_MANAGE_USERS)),
):
    """Change a user's role."""
    if body.role not in ROLES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"role must be one of: {', '.join(ROLES)}",
        )
    user = await _get_user_or_404(user_id, db)
    previous = user.role
    user.role = body.role
    await db.commit()

    logger.info("user_role_updated", user_id=user_id, old=previous, new=body.role, by=current_user["id"])
    return _user_to_dict(user)


@router.delete("/{user_id}")
async def delete_user(
    user_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(require_permission(PERM_MANAGE_USERS)),
):
    """Delete a user together with their comments and activity."""
    if user_id == current_user["id"]:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="You cannot delete your own account",
        )
    user = await _get_user_or_404(user_id, db)
    await db.delete(user)
    await db.commit()

    logger.info("user_deleted", user_id=user_id, by=current_user["id"])
    return {"deleted": user_id}


@router.post("/{user_id}/impersonate")
async def start_impersonation(
    user_id: int,
    db: AsyncSession = Depends(get_db),
    config: MedbankConfig = Depends(get_app_config),
    current_user: dict = Depends(require_permission(PERM_IMPERSONATE)),
):
    """Issue a short-lived token acting as ``user_id``. Admins cannot be impersonated."""
    target = await _get_user_or_404(user_id, db)
    if target.role == "admin":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Cannot impersonate another administrator",
        )

    token = create_access_token(
        data={
            "sub": str(target.id),
            "email": target.email,
            "role": target.role,
            "impersonated_by": current_user["id"],
            "is_impersonation": True,
        },
        secret_key=config.secret_key,
        algorithm=config.jwt_algorithm,
        expires_minutes=config.impersonation_expiry_minutes,
    )

    db.add(UserActivity(user_id=target.id, type="admin_impersonation"))
    await db.commit()

    logger.warning("impersonation_started", target_id=target.id, admin_id=current_user["id"])
    return {
        "message": "Impersonation token issued",
        "impersonation_token": token,
        "token_type": "bearer",
        "target_user": target.summary(),
        "expires_in_minutes": config.impersonation_expiry_minutes,
    }


@router.delete("/{user_id}/impersonate")
async def end_impersonation(
    user_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_user),
):
    """End an impersonation session; must be called with the impersonation token."""
    if not current_user.get("is_impersonation"):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="This request requires an impersonation token",
        )
    if current_user["id"] != user_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Impersonation token does not match this user",
        )

    db.add(UserActivity(user_id=user_id, type="admin_impersonation_end"))
    await db.commit()

    logger.info("impersonation_ended", target_id=user_id, admin_id=current_user.get("impersonated_by"))
    return {
        "message": "Impersonation ended",
        "admin_user_id": current_user.get("impersonated_by"),
    }
