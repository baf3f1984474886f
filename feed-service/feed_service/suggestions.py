"""
Suggestion ranking from likes and the follow graph
"""
from typing import Iterable, List, Optional, Set
import logging

from .backend_client import BackendClient, fetch_profiles
from .config import settings
from .ranking import top_counts
from .schemas import Profile, Suggestions

logger = logging.getLogger(__name__)


async def following_ids(
    client: BackendClient,
    user_id: str,
    limit: Optional[int] = None
) -> Set[str]:
    """Ids of users ``user_id`` follows"""
    query = (
        client.table("follows")
        .select("following_id")
        .eq("follower_id", user_id)
    )
    if limit:
        query.limit(limit)
    rows = await query.execute()
    return {row["following_id"] for row in rows or []}


def rank_suggestions(
    liked_posts: Iterable[dict],
    followed: Set[str],
    user_id: Optional[str] = None,
    top_n: Optional[int] = None,
) -> Suggestions:
    """
    Frequency ranking over liked posts.

    Tags: top ``top_n`` hashtags, blank tags ignored. Authors: top ``top_n``
    authors not already followed (and not the user). Ties keep the order in
    which entries were first seen.
    """
    top_n = top_n or settings.SUGGESTION_TOP_N
    posts = list(liked_posts)

    tags = (
        tag.strip()
        for post in posts
        for tag in (post.get("hashtags") or [])
        if tag and tag.strip()
    )
    authors = (
        post["user_id"]
        for post in posts
        if post.get("user_id")
        and post["user_id"] not in followed
        and post["user_id"] != user_id
    )

    return Suggestions(
        tags=[tag for tag, _ in top_counts(tags, top_n)],
        authors=[author for author, _ in top_counts(authors, top_n)],
    )


async def suggest_from_likes(client: BackendClient, user_id: str) -> Suggestions:
    """Suggested tags and authors from the user's most recent likes"""
    likes = await (
        client.table("post_likes")
        .select("post_id")
        .eq("user_id", user_id)
        .order("created_at", desc=True)
        .limit(settings.SUGGESTION_LIKES_LIMIT)
        .execute()
    )
    post_ids = list(dict.fromkeys(row["post_id"] for row in likes or []))
    if not post_ids:
        return Suggestions()

    rows = await (
        client.table("posts")
        .select("id,user_id,hashtags")
        .in_("id", post_ids)
        .execute()
    )
    # Keep like recency order so ties resolve towards recent likes
    by_id = {row["id"]: row for row in rows or []}
    liked_posts = [by_id[post_id] for post_id in post_ids if post_id in by_id]

    followed = await following_ids(client, user_id)
    suggestions = rank_suggestions(liked_posts, followed, user_id)
    logger.info(
        f"Suggestions for user {user_id}: {len(suggestions.tags)} tags, "
        f"{len(suggestions.authors)} authors from {len(liked_posts)} liked posts"
    )
    return suggestions


def rank_second_hop(edges: Iterable[dict], user_id: str, followed: Set[str], top_n: int) -> List[str]:
    """Accounts followed by the people ``user_id`` follows, most shared first"""
    candidates = (
        edge["following_id"]
        for edge in edges
        if edge.get("following_id")
        and edge["following_id"] != user_id
        and edge["following_id"] not in followed
    )
    return [candidate for candidate, _ in top_counts(candidates, top_n)]


async def suggest_profiles(client: BackendClient, user_id: str) -> List[Profile]:
    """Profiles to follow, found two hops away in the follow graph"""
    followed = await following_ids(client, user_id, limit=settings.FOLLOW_SCAN_LIMIT)
    if not followed:
        return []

    edges = await (
        client.table("follows")
        .select("following_id,follower_id")
        .in_("follower_id", sorted(followed))
        .limit(settings.SECOND_HOP_SCAN_LIMIT)
        .execute()
    )
    top = rank_second_hop(edges or [], user_id, followed, settings.SUGGESTED_PROFILES_LIMIT)
    if not top:
        return []

    profiles = await fetch_profiles(client, top)
    return [Profile.model_validate(profiles[pid]) for pid in top if pid in profiles]
