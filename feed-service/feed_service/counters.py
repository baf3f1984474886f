"""
Optimistic like/comment counters with periodic resync
"""
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional
import asyncio
import logging

from .backend_client import BackendClient
from .config import settings
from .errors import BackendError, Notifier
from .schemas import Like, Post, RainbowColor

logger = logging.getLogger(__name__)

RAINBOW_COLORS: List[RainbowColor] = list(RainbowColor)


@dataclass
class PostCounts:
    likes: int = 0
    comments: int = 0


class CountCache:
    """
    Local engagement counts.

    Local actions adjust counts immediately; ``resync()`` replaces them with
    the denormalized counts stored on the posts. ``start()`` runs the resync
    periodically.
    """

    def __init__(self):
        self.counts: Dict[str, PostCounts] = {}
        self.task: Optional[asyncio.Task] = None

    def track(self, posts: Iterable[Post]):
        for post in posts:
            self.counts[post.id] = PostCounts(post.likes_count, post.comments_count)

    def get(self, post_id: str) -> PostCounts:
        return self.counts.get(post_id, PostCounts())

    def apply(self, post_id: str, likes: int = 0, comments: int = 0) -> PostCounts:
        current = self.counts.setdefault(post_id, PostCounts())
        current.likes = max(0, current.likes + likes)
        current.comments = max(0, current.comments + comments)
        return current

    def project(self, post: Post) -> Post:
        """Copy of ``post`` carrying the local counts"""
        if post.id not in self.counts:
            return post
        counts = self.counts[post.id]
        return post.model_copy(update={"likes_count": counts.likes, "comments_count": counts.comments})

    async def resync(self, client: BackendClient) -> int:
        """Overwrite tracked counts with the authoritative ones"""
        post_ids = list(self.counts)
        if not post_ids:
            return 0

        rows = await (
            client.table("posts")
            .select("id,likes_count,comments_count")
            .in_("id", post_ids)
            .execute()
        )
        for row in rows or []:
            self.counts[row["id"]] = PostCounts(row.get("likes_count") or 0, row.get("comments_count") or 0)
        logger.debug(f"Resynced counts for {len(rows or [])} of {len(post_ids)} posts")
        return len(rows or [])

    def start(self, client: BackendClient, interval: Optional[float] = None):
        if self.task:
            return
        self.task = asyncio.create_task(self._run(client, interval or settings.COUNT_RESYNC_INTERVAL))

    async def _run(self, client: BackendClient, interval: float):
        while True:
            await asyncio.sleep(interval)
            try:
                await self.resync(client)
            except BackendError as e:
                logger.warning(f"Count resync failed: {e.message}")

    async def stop(self):
        if self.task:
            self.task.cancel()
            try:
                await self.task
            except asyncio.CancelledError:
                pass
            self.task = None


class LikeController:
    """Likes of one user, applied optimistically to a CountCache"""

    def __init__(
        self,
        client: BackendClient,
        user_id: str,
        counts: CountCache,
        notifier: Optional[Notifier] = None,
    ):
        self.client = client
        self.user_id = user_id
        self.counts = counts
        self.notifier = notifier or Notifier()
        self.liked: Dict[str, RainbowColor] = {}
        self._auto_index = 0

    def next_color(self) -> RainbowColor:
        """Rotate through the rainbow when no color was picked"""
        color = RAINBOW_COLORS[self._auto_index % len(RAINBOW_COLORS)]
        self._auto_index = (self._auto_index + 1) % len(RAINBOW_COLORS)
        return color

    def is_liked(self, post_id: str) -> bool:
        return post_id in self.liked

    async def load_state(self, post_ids: List[str]):
        """Which of ``post_ids`` the user already likes"""
        if not post_ids:
            return
        rows = await (
            self.client.table("post_likes")
            .select("post_id,rainbow_color")
            .eq("user_id", self.user_id)
            .in_("post_id", post_ids)
            .execute()
        )
        for row in rows or []:
            like = Like.model_validate({"user_id": self.user_id, **row})
            self.liked[like.post_id] = like.rainbow_color or RainbowColor.RED

    async def like(self, post_id: str, color: Optional[RainbowColor] = None) -> bool:
        if post_id in self.liked:
            return True

        chosen = RainbowColor(color) if color else self.next_color()
        self.liked[post_id] = chosen
        self.counts.apply(post_id, likes=1)

        try:
            await (
                self.client.table("post_likes")
                .upsert(
                    {"post_id": post_id, "user_id": self.user_id, "rainbow_color": chosen.value},
                    on_conflict="post_id,user_id",
                )
                .execute()
            )
        except BackendError as e:
            logger.error(f"Failed to like post {post_id}: {e.message}")
            self.notifier.report(e, "Failed to like post")
            return False
        return True

    async def unlike(self, post_id: str) -> bool:
        if post_id not in self.liked:
            return True

        del self.liked[post_id]
        self.counts.apply(post_id, likes=-1)

        try:
            await (
                self.client.table("post_likes")
                .delete()
                .eq("post_id", post_id)
                .eq("user_id", self.user_id)
                .execute()
            )
        except BackendError as e:
            logger.error(f"Failed to unlike post {post_id}: {e.message}")
            self.notifier.report(e, "Failed to remove like")
            return False
        return True

    async def toggle(self, post_id: str, color: Optional[RainbowColor] = None) -> bool:
        if self.is_liked(post_id):
            return await self.unlike(post_id)
        return await self.like(post_id, color)
