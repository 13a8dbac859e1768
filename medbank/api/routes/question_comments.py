"""Question comment routes — threaded discussion under each question."""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from ...auth.rbac import PERM_ADD_COMMENTS, PERM_MODERATE_COMMENTS, is_admin, require_permission
from ...config import MedbankConfig
from ...dependencies import get_app_config, get_db, get_optional_user
from ...engine.comment_tree import CommentNode, build_comment_tree, present_comment, subtree_ids
from ...models.base import utcnow
from ...models.comment import QuestionComment
from ...models.question import Question
from ...models.user import User
from ...models.user_activity import UserActivity
from ...utils.logging import get_logger

logger = get_logger("api.question_comments")

router = APIRouter(prefix="/question-comments", tags=["question-comments"])


# --- Request bodies ---

class CreateCommentRequest(BaseModel):
    question_id: Optional[int] = None
    user_id: Optional[int] = None
    content: Optional[str] = None
    is_anonymous: bool = False
    parent_comment_id: Optional[int] = None


class UpdateCommentRequest(BaseModel):
    content: str


# --- Helpers ---

async def _get_comment_or_404(comment_id: int, db: AsyncSession) -> QuestionComment:
    result = await db.execute(select(QuestionComment).where(QuestionComment.id == comment_id))
    comment = result.scalar_one_or_none()
    if not comment:
        raise HTTPException(status_code=404, detail="Comment not found")
    return comment


async def _ensure_question(question_id: int, db: AsyncSession) -> None:
    result = await db.execute(select(Question.id).where(Question.id == question_id))
    if result.scalar_one_or_none() is None:
        raise HTTPException(status_code=404, detail="Question not found")


# --- Endpoints ---

@router.get("")
async def get_comments(
    question_id: Optional[int] = Query(None),
    db: AsyncSession = Depends(get_db),
    viewer: Optional[dict] = Depends(get_optional_user),
    config: MedbankConfig = Depends(get_app_config),
):
    """Comment forest of a question: newest threads first, replies oldest first."""
    if question_id is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Question ID is required")
    await _ensure_question(question_id, db)

    result = await db.execute(
        select(QuestionComment)
        .where(QuestionComment.question_id == question_id)
        .order_by(QuestionComment.created_at.asc(), QuestionComment.id.asc())
    )
    rows = result.scalars().unique().all()

    forest = build_comment_tree(rows, promote_orphans=config.comments_promote_orphans)
    return [present_comment(node, viewer, config.comments_anonymous_label) for node in forest]


@router.post("", status_code=201)
async def add_comment(
    body: CreateCommentRequest,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(require_permission(PERM_ADD_COMMENTS)),
    config: MedbankConfig = Depends(get_app_config),
):
    """Post a root comment or a reply."""
    content = (body.content or "").strip()
    if body.question_id is None or body.user_id is None or not content:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="question_id, user_id and content are required",
        )

    if body.user_id != current_user["id"] and not is_admin(current_user):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You can only comment as yourself",
        )

    await _ensure_question(body.question_id, db)
    author = (await db.execute(select(User).where(User.id == body.user_id))).scalar_one_or_none()
    if not author:
        raise HTTPException(status_code=404, detail="User not found")

    if body.parent_comment_id is not None:
        parent = (await db.execute(
            select(QuestionComment.id, QuestionComment.question_id)
            .where(QuestionComment.id == body.parent_comment_id)
        )).one_or_none()
        if parent is None or parent.question_id != body.question_id:
            raise HTTPException(status_code=404, detail="Invalid parent comment")

    comment = QuestionComment(
        question_id=body.question_id,
        user_id=author.id,
        content=content,
        is_anonymous=body.is_anonymous,
        parent_comment_id=body.parent_comment_id,
    )
    db.add(comment)
    db.add(UserActivity(user_id=author.id, type="comment"))
    await db.commit()
    await db.refresh(comment)

    logger.info(
        "comment_created",
        comment_id=comment.id,
        question_id=comment.question_id,
        reply=comment.parent_comment_id is not None,
    )
    node = CommentNode.from_record(comment, user=author.summary())
    return present_comment(node, current_user, config.comments_anonymous_label)


@router.put("/{comment_id}")
async def update_comment(
    comment_id: int,
    body: UpdateCommentRequest,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(require_permission(PERM_ADD_COMMENTS)),
    config: MedbankConfig = Depends(get_app_config),
):
    """Edit own comment (content only)."""
    comment = await _get_comment_or_404(comment_id, db)

    if comment.user_id != current_user["id"]:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You can only edit your own comments",
        )

    content = body.content.strip()
    if not content:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="content is required")

    comment.content = content
    comment.updated_at = utcnow()
    await db.commit()

    logger.info("comment_updated", comment_id=comment.id)
    return present_comment(CommentNode.from_record(comment), current_user, config.comments_anonymous_label)


@router.delete("/{comment_id}")
async def delete_comment(
    comment_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(require_permission(PERM_ADD_COMMENTS)),
):
    """Delete a comment and every reply below it. Author or a comment moderator."""
    comment = await _get_comment_or_404(comment_id, db)

    moderator = PERM_MODERATE_COMMENTS in current_user["permissions"]
    if comment.user_id != current_user["id"] and not moderator:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You can only delete your own comments",
        )

    thread = (await db.execute(
        select(QuestionComment.id, QuestionComment.parent_comment_id)
        .where(QuestionComment.question_id == comment.question_id)
    )).all()
    ids = subtree_ids(thread, comment.id)

    await db.execute(delete(QuestionComment).where(QuestionComment.id.in_(ids)))
    await db.commit()

    logger.info("comment_deleted", comment_id=comment_id, removed=len(ids), by=current_user["id"])
    return {"deleted": comment_id, "deleted_ids": ids}
