"""SQLAlchemy models package."""

from .base import Base
from .user import User
from .question import Question
from .comment import QuestionComment
from .question_user_data import QuestionUserData
from .user_activity import UserActivity

__all__ = [
    "Base",
    "User",
    "Question",
    "QuestionComment",
    "QuestionUserData",
    "UserActivity",
]
