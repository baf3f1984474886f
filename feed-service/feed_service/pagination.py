"""
Feed pagination - keyset paging over (created_at, id)
"""
from enum import Enum
from typing import List, Optional
import logging

from .backend_client import BackendClient
from .config import settings
from .cursor import cursor_for
from .errors import BackendError, Notifier
from .query import Query, in_list
from .ranking import SortMode, sort_posts
from .schemas import Cursor, Post

logger = logging.getLogger(__name__)

POST_COLUMNS = (
    "id,user_id,content,visibility,created_at,media_urls,hashtags,"
    "community_id,likes_count,comments_count"
)


class FeedState(str, Enum):
    """Lifecycle of a feed window"""
    IDLE = "idle"
    LOADING = "loading"
    LOADING_MORE = "loading_more"
    ERROR = "error"


class FeedPager:
    """
    Locally held window of posts fetched page by page.

    The window is ordered newest first. ``load()`` replaces it with the first
    page, ``load_more()`` appends strictly older posts. While any load is in
    flight further ``load_more()`` calls return immediately, so bursts of
    scroll events collapse into a single request.

    Outside a community page, posts from communities are only visible to
    members: the viewer's membership ids are fetched once and reused for the
    lifetime of the pager.
    """

    def __init__(
        self,
        client: BackendClient,
        user_id: Optional[str] = None,
        hashtag: Optional[str] = None,
        community_id: Optional[str] = None,
        page_size: Optional[int] = None,
        notifier: Optional[Notifier] = None,
        cursor: Optional[Cursor] = None,
    ):
        self.client = client
        self.user_id = user_id
        self.hashtag = hashtag
        self.community_id = community_id
        self.page_size = page_size or settings.FEED_PAGE_SIZE
        self.notifier = notifier or Notifier()

        self.posts: List[Post] = []
        self.cursor: Optional[Cursor] = cursor
        self.has_more = True
        self.state = FeedState.IDLE
        self.error: Optional[BackendError] = None
        self._membership_ids: Optional[List[str]] = None

    @property
    def in_flight(self) -> bool:
        return self.state in (FeedState.LOADING, FeedState.LOADING_MORE)

    async def membership_ids(self) -> List[str]:
        """Communities the viewer belongs to (cached)"""
        if self._membership_ids is None:
            if not self.user_id:
                self._membership_ids = []
            else:
                rows = await (
                    self.client.table("community_memberships")
                    .select("community_id")
                    .eq("user_id", self.user_id)
                    .execute()
                )
                self._membership_ids = [row["community_id"] for row in rows or []]
                logger.debug(f"User {self.user_id} is a member of {len(self._membership_ids)} communities")
        return self._membership_ids

    def invalidate_memberships(self):
        self._membership_ids = None

    async def build_query(self, before: Optional[Cursor] = None) -> Query:
        """Query for one page, strictly older than ``before`` when given"""
        query = (
            self.client.table("posts")
            .select(POST_COLUMNS)
            .is_("hidden_at", None)
        )

        if self.hashtag:
            query.contains("hashtags", [self.hashtag])

        if self.community_id:
            query.eq("community_id", self.community_id)
        else:
            member_ids = await self.membership_ids()
            if member_ids:
                query.or_(f"community_id.is.null,community_id.in.{in_list(member_ids)}")
            else:
                # Not a member anywhere: only posts outside communities
                query.is_("community_id", None)

        if before:
            query.lt("created_at", before.created_at)

        return (
            query.order("created_at", desc=True)
            .order("id", desc=True)
            .limit(self.page_size)
        )

    async def _fetch(self, before: Optional[Cursor]) -> List[Post]:
        query = await self.build_query(before)
        rows = await query.execute()
        return [Post.model_validate(row) for row in rows or []]

    def _apply_page(self, page: List[Post]):
        self.has_more = len(page) == self.page_size
        self.cursor = cursor_for(page[-1]) if page else None

    def _fail(self, error: BackendError, message: str):
        self.state = FeedState.ERROR
        self.error = error
        logger.error(f"{message}: {error.message}")
        self.notifier.report(error, message)

    async def load(self) -> List[Post]:
        """Fetch the first page, replacing the window"""
        if self.in_flight:
            return []

        self.state = FeedState.LOADING
        self.error = None
        try:
            page = await self._fetch(None)
        except BackendError as e:
            self._fail(e, "Failed to load posts")
            return []

        self.posts = page
        self._apply_page(page)
        self.state = FeedState.IDLE
        logger.info(f"Loaded {len(page)} posts (has_more={self.has_more})")
        return page

    async def load_more(self) -> List[Post]:
        """Fetch and append the page after the cursor"""
        if self.in_flight or not self.has_more or self.cursor is None:
            return []

        self.state = FeedState.LOADING_MORE
        self.error = None
        try:
            page = await self._fetch(self.cursor)
        except BackendError as e:
            self._fail(e, "Failed to load more posts")
            return []

        known = {post.id for post in self.posts}
        appended = [post for post in page if post.id not in known]
        self.posts.extend(appended)
        self._apply_page(page)
        self.state = FeedState.IDLE
        logger.info(f"Loaded {len(page)} more posts (has_more={self.has_more})")
        return appended

    def remove(self, post_id: str) -> bool:
        """Drop a post from the window"""
        before = len(self.posts)
        self.posts = [post for post in self.posts if post.id != post_id]
        return len(self.posts) != before

    def view(self, mode: SortMode = SortMode.NEWEST) -> List[Post]:
        """The window projected by ``mode``"""
        return sort_posts(self.posts, mode)
