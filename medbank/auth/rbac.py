"""Role-Based Access Control system."""

from fastapi import Depends, HTTPException, status

from ..dependencies import get_current_user
from ..utils.logging import get_logger

logger = get_logger("auth.rbac")

# Permission constants
PERM_VIEW_QUESTIONS = "view_questions"
PERM_ADD_COMMENTS = "add_comments"
PERM_MODERATE_COMMENTS = "moderate_comments"
PERM_MANAGE_QUESTIONS = "manage_questions"
PERM_VIEW_ANALYTICS = "view_analytics"
PERM_MANAGE_USERS = "manage_users"
PERM_IMPERSONATE = "impersonate"

ALL_PERMISSIONS = [
    PERM_VIEW_QUESTIONS, PERM_ADD_COMMENTS, PERM_MODERATE_COMMENTS,
    PERM_MANAGE_QUESTIONS, PERM_VIEW_ANALYTICS, PERM_MANAGE_USERS,
    PERM_IMPERSONATE,
]

ROLES = ("student", "maintainer", "admin")

DEFAULT_ROLES = {
    "admin": {
        "description": "Full platform access",
        "permissions": ALL_PERMISSIONS,
    },
    "maintainer": {
        "description": "Content maintainer: writes and curates questions",
        "permissions": [
            PERM_VIEW_QUESTIONS, PERM_ADD_COMMENTS, PERM_MANAGE_QUESTIONS,
        ],
    },
    "student": {
        "description": "Practices questions and joins discussions",
        "permissions": [PERM_VIEW_QUESTIONS, PERM_ADD_COMMENTS],
    },
}


def get_user_permissions(user: dict) -> list[str]:
    """Permissions granted by the user's role; unknown roles fall back to student."""
    role_def = DEFAULT_ROLES.get(user.get("role", "student"), DEFAULT_ROLES["student"])
    return list(role_def["permissions"])


def is_admin(user: dict | None) -> bool:
    return bool(user) and user.get("role") == "admin"


def require_permission(*required_perms: str):
    """FastAPI dependency factory that checks user has required permissions."""
    async def _check(current_user: dict = Depends(get_current_user)) -> dict:
        user_perms = get_user_permissions(current_user)

        for perm in required_perms:
            if perm not in user_perms:
                logger.info("permission_denied", user_id=current_user.get("id"), permission=perm)
                raise HTTPException(
                    status_code=status.HTTP_403_FORBIDDEN,
                    detail=f"Permission required: {perm}",
                )

        current_user["permissions"] = user_perms
        return current_user

    return _check


def require_admin():
    """Admin-only dependency."""
    async def _check(current_user: dict = Depends(get_current_user)) -> dict:
        if not is_admin(current_user):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Admin access required",
            )
        current_user["permissions"] = get_user_permissions(current_user)
        return current_user

    return _check
