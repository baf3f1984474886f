"""
Comment threads - top-level comments with one level of replies
"""
from typing import Any, Dict, Iterable, List, Optional
import logging

from .backend_client import BackendClient, fetch_profiles
from .counters import CountCache
from .schemas import Comment, Profile

logger = logging.getLogger(__name__)

COMMENT_COLUMNS = "id,post_id,user_id,content,created_at,parent_id,likes_count"


def build_threads(
    rows: Iterable[Dict[str, Any]],
    profiles: Optional[Dict[str, Dict[str, Any]]] = None,
) -> List[Comment]:
    """
    Arrange flat comment rows into threads.

    Replies of replies are attached to their top-level ancestor. Replies whose
    ancestor chain is broken are dropped. Everything is ordered oldest first.
    """
    profiles = profiles or {}
    comments: List[Comment] = []
    for row in rows:
        comment = Comment.model_validate(row)
        author = profiles.get(comment.user_id)
        if author:
            comment.author = Profile.model_validate({**author, "id": comment.user_id})
        comments.append(comment)
    comments.sort(key=lambda c: c.created_at)

    by_id = {comment.id: comment for comment in comments}

    def root_of(comment: Comment) -> Optional[Comment]:
        seen = set()
        current = comment
        while current.parent_id:
            if current.id in seen:
                return None
            seen.add(current.id)
            parent = by_id.get(current.parent_id)
            if parent is None:
                return None
            current = parent
        return current

    threads = [comment for comment in comments if not comment.parent_id]
    for comment in comments:
        if not comment.parent_id:
            continue
        root = root_of(comment)
        if root is None:
            logger.debug(f"Dropping orphan comment {comment.id}")
            continue
        root.replies.append(comment)
    return threads


async def load_threads(client: BackendClient, post_id: str) -> List[Comment]:
    rows = await (
        client.table("post_comments")
        .select(COMMENT_COLUMNS)
        .eq("post_id", post_id)
        .order("created_at")
        .execute()
    ) or []
    profiles = await fetch_profiles(client, [row["user_id"] for row in rows])
    return build_threads(rows, profiles)


async def add_comment(
    client: BackendClient,
    post_id: str,
    user_id: str,
    content: str,
    parent_id: Optional[str] = None,
    counts: Optional[CountCache] = None,
) -> Optional[Comment]:
    """Insert a comment or reply; blank content is ignored"""
    text = (content or "").strip()
    if not text:
        return None

    rows = await (
        client.table("post_comments")
        .insert({
            "post_id": post_id,
            "user_id": user_id,
            "content": text,
            "parent_id": parent_id,
        })
        .execute()
    )
    if counts is not None:
        counts.apply(post_id, comments=1)

    row = rows[0] if isinstance(rows, list) and rows else rows
    if not row:
        return None
    logger.info(f"User {user_id} commented on post {post_id}")
    return Comment.model_validate(row)


async def delete_comment(
    client: BackendClient,
    comment_id: str,
    post_id: str,
    counts: Optional[CountCache] = None,
):
    await (
        client.table("post_comments")
        .delete()
        .eq("id", comment_id)
        .execute()
    )
    if counts is not None:
        counts.apply(post_id, comments=-1)
