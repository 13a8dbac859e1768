"""Question routes: the minimal surface comments hang off."""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ...auth.rbac import PERM_MANAGE_QUESTIONS, require_permission
from ...dependencies import get_db
from ...models.comment import QuestionComment
from ...models.question import Question

router = APIRouter(prefix="/questions", tags=["questions"])


class CreateQuestionRequest(BaseModel):
    text: str
    specialty: Optional[str] = None


def _question_to_dict(q: Question, comment_count: int = 0) -> dict:
    return {
        "id": q.id,
        "text": q.text,
        "specialty": q.specialty,
        "created_by": q.created_by,
        "created_at": q.created_at.isoformat(),
        "comment_count": comment_count,
    }


@router.post("", status_code=201)
async def create_question(
    body: CreateQuestionRequest,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(require_permission(PERM_MANAGE_QUESTIONS)),
):
    text = body.text.strip()
    if not text:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="text is required")

    question = Question(text=text, specialty=body.specialty, created_by=current_user["id"])
    db.add(question)
    await db.commit()
    await db.refresh(question)
    return _question_to_dict(question)


@router.get("/{question_id}")
async def get_question(question_id: int, db: AsyncSession = Depends(get_db)):
    question = (await db.execute(select(Question).where(Question.id == question_id))).scalar_one_or_none()
    if not question:
        raise HTTPException(status_code=404, detail="Question not found")

    count = (await db.execute(
        select(func.count(QuestionComment.id)).where(QuestionComment.question_id == question_id)
    )).scalar() or 0
    return _question_to_dict(question, count)
