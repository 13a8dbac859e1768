"""Comment tree: rebuilds threaded discussions from flat comment rows.

Comments are stored flat, each optionally pointing at a parent comment of the
same question. For display they are turned into a forest: roots newest first,
replies under each node oldest first. The helpers below also edit such a
forest in place of a re-fetch (insert, update, remove), always returning a new
forest and leaving the input untouched.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Iterable, Iterator, Optional

from ..utils.logging import get_logger

logger = get_logger("engine.comment_tree")

ANONYMOUS_LABEL = "Anonymous"
PRIVILEGED_ROLES = {"admin"}


@dataclass
class CommentNode:
    """A comment plus its nested replies."""
    id: int
    question_id: int
    user_id: int
    content: str
    created_at: datetime
    updated_at: Optional[datetime] = None
    is_anonymous: bool = False
    parent_comment_id: Optional[int] = None
    user: dict = field(default_factory=dict)  # id, name, email, role
    replies: list["CommentNode"] = field(default_factory=list)
    orphaned: bool = False

    @classmethod
    def from_record(cls, record, user: Optional[dict] = None) -> "CommentNode":
        """Build a node from a QuestionComment row (or any object with the same attributes)."""
        author = user if user is not None else getattr(record, "user", None)
        if author is not None and not isinstance(author, dict):
            author = {
                "id": author.id,
                "name": author.name,
                "email": author.email,
                "role": author.role,
            }
        return cls(
            id=record.id,
            question_id=record.question_id,
            user_id=record.user_id,
            content=record.content,
            created_at=record.created_at,
            updated_at=getattr(record, "updated_at", None),
            is_anonymous=bool(getattr(record, "is_anonymous", False)),
            parent_comment_id=getattr(record, "parent_comment_id", None),
            user=author or {"id": record.user_id},
        )


def _sort_key(node: CommentNode) -> tuple:
    return (node.created_at, node.id)


def build_comment_tree(
    records: Iterable, promote_orphans: bool = False
) -> list[CommentNode]:
    """Turn flat comments (ascending by creation time) into a forest.

    A comment whose parent cannot be found is dropped, or promoted to a root
    marked ``orphaned`` when ``promote_orphans`` is set.
    """
    nodes = [
        replace(r, replies=[]) if isinstance(r, CommentNode) else CommentNode.from_record(r)
        for r in records
    ]
    by_id = {n.id: n for n in nodes}

    roots: list[CommentNode] = []
    dropped = 0
    for node in nodes:
        if node.parent_comment_id is None:
            roots.append(node)
            continue
        parent = by_id.get(node.parent_comment_id)
        if parent is not None and parent is not node:
            parent.replies.append(node)
        elif promote_orphans:
            node.orphaned = True
            roots.append(node)
        else:
            dropped += 1

    if dropped:
        logger.warning("orphaned_comments_dropped", count=dropped)

    roots.sort(key=_sort_key, reverse=True)
    return roots


def normalize(forest: list[CommentNode]) -> list[CommentNode]:
    """Roots newest first, replies oldest first at every depth."""
    def _sorted_replies(node: CommentNode) -> CommentNode:
        replies = sorted((_sorted_replies(r) for r in node.replies), key=_sort_key)
        return replace(node, replies=replies)

    return sorted((_sorted_replies(n) for n in forest), key=_sort_key, reverse=True)


def insert_reply(
    forest: list[CommentNode], parent_id: Optional[int], new_node: CommentNode
) -> list[CommentNode]:
    """Prepend ``new_node`` to the replies of ``parent_id``, searched at every depth.

    With no parent the node becomes the newest root.
    """
    if parent_id is None:
        return [new_node, *forest]

    result = []
    for node in forest:
        if node.id == parent_id:
            result.append(replace(node, replies=[new_node, *node.replies]))
        elif node.replies:
            result.append(replace(node, replies=insert_reply(node.replies, parent_id, new_node)))
        else:
            result.append(node)
    return result


def update_node(
    forest: list[CommentNode],
    node_id: int,
    content: str,
    updated_at: Optional[datetime] = None,
) -> list[CommentNode]:
    """Replace a node's content and timestamp, keeping its replies."""
    result = []
    for node in forest:
        if node.id == node_id:
            result.append(replace(node, content=content, updated_at=updated_at or node.updated_at))
        elif node.replies:
            result.append(replace(node, replies=update_node(node.replies, node_id, content, updated_at)))
        else:
            result.append(node)
    return result


def remove_node(forest: list[CommentNode], node_id: int) -> list[CommentNode]:
    """Drop a node and its whole subtree."""
    return [
        replace(node, replies=remove_node(node.replies, node_id)) if node.replies else node
        for node in forest
        if node.id != node_id
    ]


def walk(forest: list[CommentNode]) -> Iterator[CommentNode]:
    """Depth-first iteration over every node of the forest."""
    for node in forest:
        yield node
        yield from walk(node.replies)


def find_node(forest: list[CommentNode], node_id: int) -> Optional[CommentNode]:
    for node in walk(forest):
        if node.id == node_id:
            return node
    return None


def subtree_ids(records: Iterable, root_id: int) -> list[int]:
    """Ids of ``root_id`` and all of its descendants among flat records."""
    children: dict[int, list[int]] = {}
    for r in records:
        if r.parent_comment_id is not None:
            children.setdefault(r.parent_comment_id, []).append(r.id)

    ids = []
    stack = [root_id]
    seen = set()
    while stack:
        current = stack.pop()
        if current in seen:
            continue
        seen.add(current)
        ids.append(current)
        stack.extend(children.get(current, []))
    return ids


def can_see_author(node: CommentNode, viewer: Optional[dict]) -> bool:
    """Author or admin sees through the anonymity flag."""
    if not viewer:
        return False
    if viewer.get("role") in PRIVILEGED_ROLES:
        return True
    return viewer.get("id") is not None and viewer.get("id") == node.user_id


def present_comment(
    node: CommentNode,
    viewer: Optional[dict] = None,
    anonymous_label: str = ANONYMOUS_LABEL,
) -> dict:
    """Serialize a node (and its replies) for ``viewer``.

    Anonymous comments show ``anonymous_label`` and hide the author summary
    unless the viewer is the author or an admin, in which case the real name
    is kept and ``anonymous_badge`` is set.
    """
    privileged = can_see_author(node, viewer)
    if node.is_anonymous and not privileged:
        user = None
        display_name = anonymous_label
    else:
        user = dict(node.user)
        display_name = user.get("name") or user.get("email") or "User"

    data = {
        "id": node.id,
        "question_id": node.question_id,
        "content": node.content,
        "is_anonymous": node.is_anonymous,
        "anonymous_badge": node.is_anonymous and privileged,
        "parent_comment_id": node.parent_comment_id,
        "created_at": node.created_at.isoformat(),
        "updated_at": node.updated_at.isoformat() if node.updated_at else None,
        "user": user,
        "display_name": display_name,
        "can_edit": bool(viewer) and viewer.get("id") == node.user_id,
        "can_delete": privileged,
        "replies": [
            present_comment(r, viewer, anonymous_label)
            for r in sorted(node.replies, key=_sort_key)
        ],
    }
    if node.orphaned:
        data["orphaned"] = True
    return data
