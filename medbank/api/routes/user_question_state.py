"""Per-user question state: private notes, highlights, attempt counter and last score."""

from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ...auth.rbac import PERM_VIEW_QUESTIONS, is_admin, require_permission
from ...dependencies import get_db
from ...models.question import Question
from ...models.question_user_data import QuestionUserData
from ...models.user import User
from ...utils.logging import get_logger

logger = get_logger("api.user_question_state")

router = APIRouter(prefix="/user-question-state", tags=["user-question-state"])


class SaveQuestionStateRequest(BaseModel):
    user_id: Optional[int] = None
    question_id: Optional[int] = None
    notes: Optional[str] = None
    highlights: Optional[Any] = None
    attempts: Optional[int] = None
    last_score: Optional[float] = None
    increment_attempts: bool = False


def _state_to_dict(s: QuestionUserData) -> dict:
    return {
        "id": s.id,
        "user_id": s.user_id,
        "question_id": s.question_id,
        "notes": s.notes,
        "highlights": s.highlights,
        "attempts": s.attempts,
        "last_score": s.last_score,
        "created_at": s.created_at.isoformat(),
        "updated_at": s.updated_at.isoformat() if s.updated_at else None,
    }


def _check_ids(user_id: Optional[int], question_id: Optional[int], current_user: dict) -> None:
    if user_id is None or question_id is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="user_id and question_id are required",
        )
    if user_id != current_user["id"] and not is_admin(current_user):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You can only access your own question state",
        )


async def _find_state(user_id: int, question_id: int, db: AsyncSession) -> Optional[QuestionUserData]:
    result = await db.execute(
        select(QuestionUserData).where(
            QuestionUserData.user_id == user_id,
            QuestionUserData.question_id == question_id,
        )
    )
    return result.scalar_one_or_none()


@router.get("")
async def get_question_state(
    user_id: Optional[int] = Query(None),
    question_id: Optional[int] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(require_permission(PERM_VIEW_QUESTIONS)),
):
    """Stored state for (user, question), or ``null`` when nothing was saved yet."""
    _check_ids(user_id, question_id, current_user)
    state = await _find_state(user_id, question_id, db)
    return _state_to_dict(state) if state else None


@router.post("")
async def save_question_state(
    body: SaveQuestionStateRequest,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(require_permission(PERM_VIEW_QUESTIONS)),
):
    """Create or update the (user, question) state.

    Only the fields present in the body are written on update; an explicit
    ``null`` clears a field. ``increment_attempts`` bumps the stored counter
    by one and takes precedence over ``attempts``.
    """
    _check_ids(body.user_id, body.question_id, current_user)

    question = (await db.execute(
        select(Question.id).where(Question.id == body.question_id)
    )).scalar_one_or_none()
    if question is None:
        raise HTTPException(status_code=404, detail="Question not found")
    user = (await db.execute(select(User.id).where(User.id == body.user_id))).scalar_one_or_none()
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")

    state = await _find_state(body.user_id, body.question_id, db)
    provided = body.model_fields_set

    attempts = body.attempts
    if body.increment_attempts:
        attempts = (state.attempts if state else 0) + 1

    if state is None:
        state = QuestionUserData(
            user_id=body.user_id,
            question_id=body.question_id,
            notes=body.notes,
            highlights=body.highlights,
            attempts=attempts or 0,
            last_score=body.last_score,
        )
        db.add(state)
        created = True
    else:
        for name in ("notes", "highlights", "last_score"):
            if name in provided:
                setattr(state, name, getattr(body, name))
        if attempts is not None:
            state.attempts = attempts
        created = False

    await db.commit()
    await db.refresh(state)

    logger.info(
        "question_state_saved",
        user_id=state.user_id,
        question_id=state.question_id,
        attempts=state.attempts,
        created=created,
    )
    return _state_to_dict(state)
