"""
Engagement statistics over a user's own posts
"""
from collections import Counter
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional

from .backend_client import BackendClient
from .ranking import top_counts
from .schemas import FeedAnalytics, HashtagCount


def _parse(value: Any) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def compute_feed_analytics(
    posts: Iterable[Dict[str, Any]],
    now: Optional[datetime] = None
) -> FeedAnalytics:
    posts = list(posts)
    now = now or datetime.now(timezone.utc)
    start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)

    total_posts = len(posts)
    total_likes = sum(post.get("likes_count") or 0 for post in posts)
    total_comments = sum(post.get("comments_count") or 0 for post in posts)

    created = [_parse(post["created_at"]) for post in posts if post.get("created_at")]
    posts_today = sum(1 for ts in created if ts >= start_of_day)

    tags = (tag for post in posts for tag in (post.get("hashtags") or []) if tag)
    hours = Counter(ts.hour for ts in created)

    return FeedAnalytics(
        total_posts=total_posts,
        total_likes=total_likes,
        total_comments=total_comments,
        top_hashtags=[HashtagCount(tag=tag, count=count) for tag, count in top_counts(tags, 5)],
        posts_today=posts_today,
        engagement_rate=round((total_likes + total_comments) / total_posts, 1) if total_posts else 0.0,
        most_active_hour=hours.most_common(1)[0][0] if hours else 0,
    )


async def load_feed_analytics(client: BackendClient, user_id: str) -> FeedAnalytics:
    rows = await (
        client.table("posts")
        .select("id,created_at,likes_count,comments_count,hashtags")
        .eq("user_id", user_id)
        .is_("hidden_at", None)
        .execute()
    )
    return compute_feed_analytics(rows or [])
