"""
Sort projections and hashtag trends over fetched posts
"""
from collections import Counter
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Iterable, List, Optional, Tuple, TYPE_CHECKING
import logging

from .config import settings
from .schemas import Post, TrendingTag

if TYPE_CHECKING:
    from .backend_client import BackendClient

logger = logging.getLogger(__name__)

# Epoch milliseconds scaled down: a day of age weighs about 86 likes
RECENCY_DIVISOR = 1_000_000


class SortMode(str, Enum):
    """Client-side orderings of the loaded window"""
    NEWEST = "newest"
    TRENDING = "trending"


def created_at_ms(post: Post) -> float:
    created_at = post.created_at
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    return created_at.timestamp() * 1000


def trending_score(post: Post) -> float:
    """Engagement plus a small recency nudge"""
    return post.likes_count + post.comments_count + created_at_ms(post) / RECENCY_DIVISOR


def sort_posts(posts: Iterable[Post], mode: SortMode = SortMode.NEWEST) -> List[Post]:
    """Return a new list ordered by ``mode``; the input is left untouched"""
    if mode == SortMode.TRENDING:
        return sorted(posts, key=trending_score, reverse=True)
    return sorted(posts, key=created_at_ms, reverse=True)


def top_counts(items: Iterable[str], n: int) -> List[Tuple[str, int]]:
    """Most frequent items; ties keep first-seen order"""
    return Counter(items).most_common(n)


def normalize_tag(tag: str) -> str:
    tag = tag.strip().lower()
    return tag if tag.startswith("#") else f"#{tag}"


def count_trending(rows: Iterable[dict], top_n: Optional[int] = None) -> List[TrendingTag]:
    """Rank hashtags across raw post rows"""
    tags = (
        normalize_tag(tag)
        for row in rows
        for tag in (row.get("hashtags") or [])
        if tag and tag.strip().lstrip("#")
    )
    return [
        TrendingTag(tag=tag, uses=uses)
        for tag, uses in top_counts(tags, top_n or settings.TRENDING_TOP_N)
    ]


async def trending_hashtags(
    client: "BackendClient",
    now: Optional[datetime] = None
) -> List[TrendingTag]:
    """Hashtags used most often within the trending window"""
    now = now or datetime.now(timezone.utc)
    since = now - timedelta(hours=settings.TRENDING_WINDOW_HOURS)

    rows = await (
        client.table("posts")
        .select("hashtags")
        .gte("created_at", since)
        .limit(settings.TRENDING_SCAN_LIMIT)
        .execute()
    )
    trending = count_trending(rows or [])
    logger.info(f"Computed {len(trending)} trending hashtags from {len(rows or [])} posts")
    return trending
