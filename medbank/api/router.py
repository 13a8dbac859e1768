"""Master API router — includes all sub-routers."""

from fastapi import APIRouter

from .routes.admin_users import router as admin_users_router
from .routes.analytics import router as analytics_router
from .routes.auth import router as auth_router
from .routes.question_comments import router as question_comments_router
from .routes.questions import router as questions_router
from .routes.user_question_state import router as user_question_state_router

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(auth_router)
api_router.include_router(questions_router)
api_router.include_router(question_comments_router)
api_router.include_router(user_question_state_router)
api_router.include_router(analytics_router)
api_router.include_router(admin_users_router)
