"""Tests for keyset feed pagination."""

import asyncio

import pytest

from data_builder import post_row, posts_timeline
from feed_service.errors import Notifier
from feed_service.pagination import FeedPager, FeedState
from feed_service.ranking import SortMode
from feed_service.schemas import Cursor


@pytest.mark.asyncio
async def test_first_page_is_newest_first(fake, backend):
    fake.seed("posts", *posts_timeline(5))

    pager = FeedPager(backend, page_size=3)
    page = await pager.load()

    assert [p.id for p in page] == ["p0", "p1", "p2"]
    assert pager.has_more is True
    assert pager.cursor.id == "p2"
    assert pager.state == FeedState.IDLE

    request = fake.calls("posts")[-1]
    assert request.param("order") == "created_at.desc,id.desc"
    assert request.param("limit") == "3"
    assert request.param("hidden_at") == "is.null"


@pytest.mark.asyncio
async def test_load_more_appends_strictly_older_posts(fake, backend):
    fake.seed("posts", *posts_timeline(7))

    pager = FeedPager(backend, page_size=3)
    await pager.load()

    seen_cursor = pager.cursor
    while pager.has_more:
        previous = pager.cursor
        page = await pager.load_more()
        for post in page:
            assert post.created_at < previous.created_at
        if not page:
            break

    assert [p.id for p in pager.posts] == [f"p{i}" for i in range(7)]
    assert fake.calls("posts")[1].param("created_at") == f"lt.{seen_cursor.created_at.isoformat()}"
    timestamps = [p.created_at for p in pager.posts]
    assert timestamps == sorted(timestamps, reverse=True)


@pytest.mark.asyncio
async def test_short_page_ends_pagination(fake, backend):
    fake.seed("posts", *posts_timeline(4))

    pager = FeedPager(backend, page_size=3)
    await pager.load()
    page = await pager.load_more()

    assert [p.id for p in page] == ["p3"]
    assert pager.has_more is False

    requests_before = len(fake.calls("posts"))
    assert await pager.load_more() == []
    assert len(fake.calls("posts")) == requests_before


@pytest.mark.asyncio
async def test_full_last_page_needs_one_empty_round_trip(fake, backend):
    fake.seed("posts", *posts_timeline(4))

    pager = FeedPager(backend, page_size=2)
    await pager.load()
    await pager.load_more()
    assert pager.has_more is True

    assert await pager.load_more() == []
    assert pager.has_more is False
    assert pager.cursor is None


@pytest.mark.asyncio
async def test_empty_feed(fake, backend):
    pager = FeedPager(backend, page_size=5)
    assert await pager.load() == []
    assert pager.has_more is False
    assert pager.cursor is None


@pytest.mark.asyncio
async def test_hidden_posts_are_excluded(fake, backend):
    fake.seed("posts", post_row("visible", 1), post_row("hidden", 0, hidden=True))

    pager = FeedPager(backend)
    page = await pager.load()

    assert [p.id for p in page] == ["visible"]


@pytest.mark.asyncio
async def test_non_member_sees_no_community_posts(fake, backend):
    fake.seed(
        "posts",
        post_row("public", 2),
        post_row("community", 1, community_id="c1"),
    )

    pager = FeedPager(backend, user_id="user-1")
    page = await pager.load()

    assert [p.id for p in page] == ["public"]
    request = fake.calls("posts")[-1]
    assert request.param("community_id") == "is.null"
    assert request.param("or") is None


@pytest.mark.asyncio
async def test_anonymous_viewer_sees_no_community_posts(fake, backend):
    fake.seed("posts", post_row("public", 2), post_row("community", 1, community_id="c1"))

    pager = FeedPager(backend)
    page = await pager.load()

    assert [p.id for p in page] == ["public"]
    assert fake.calls("community_memberships") == []


@pytest.mark.asyncio
async def test_member_sees_own_communities_only(fake, backend):
    fake.seed(
        "posts",
        post_row("public", 3),
        post_row("mine", 2, community_id="c1"),
        post_row("other", 1, community_id="c2"),
    )
    fake.seed("community_memberships", {"community_id": "c1", "user_id": "user-1", "role": "member"})

    pager = FeedPager(backend, user_id="user-1")
    page = await pager.load()

    assert [p.id for p in page] == ["mine", "public"]
    assert fake.calls("posts")[-1].param("or") == "(community_id.is.null,community_id.in.(c1))"


@pytest.mark.asyncio
async def test_memberships_are_fetched_once(fake, backend):
    fake.seed("posts", *posts_timeline(4))
    fake.seed("community_memberships", {"community_id": "c1", "user_id": "user-1", "role": "member"})

    pager = FeedPager(backend, user_id="user-1", page_size=2)
    await pager.load()
    await pager.load_more()
    await pager.load()

    assert len(fake.calls("community_memberships")) == 1

    pager.invalidate_memberships()
    await pager.load()
    assert len(fake.calls("community_memberships")) == 2


@pytest.mark.asyncio
async def test_hashtag_filter(fake, backend):
    fake.seed(
        "posts",
        post_row("tagged", 1, hashtags=["travel", "food"]),
        post_row("untagged", 0, hashtags=["food"]),
    )

    pager = FeedPager(backend, hashtag="travel")
    page = await pager.load()

    assert [p.id for p in page] == ["tagged"]
    assert fake.calls("posts")[-1].param("hashtags") == "cs.{travel}"


@pytest.mark.asyncio
async def test_community_page(fake, backend):
    fake.seed(
        "posts",
        post_row("in-community", 1, community_id="c1"),
        post_row("elsewhere", 0, community_id="c2"),
        post_row("public", 0),
    )

    pager = FeedPager(backend, user_id="user-1", community_id="c1")
    page = await pager.load()

    assert [p.id for p in page] == ["in-community"]
    assert fake.calls("posts")[-1].param("community_id") == "eq.c1"
    assert fake.calls("community_memberships") == []


@pytest.mark.asyncio
async def test_concurrent_load_more_issues_one_request(fake, backend):
    fake.seed("posts", *posts_timeline(6))

    pager = FeedPager(backend, page_size=2)
    await pager.load()

    fake.delay = 0.01
    first, second = await asyncio.gather(pager.load_more(), pager.load_more())

    assert [p.id for p in first] == ["p2", "p3"]
    assert second == []
    assert len(fake.calls("posts")) == 2
    assert [p.id for p in pager.posts] == ["p0", "p1", "p2", "p3"]


@pytest.mark.asyncio
async def test_load_more_is_ignored_while_loading(fake, backend):
    pager = FeedPager(backend, cursor=Cursor(created_at="2024-05-01T12:00:00+00:00", id="p0"))
    pager.state = FeedState.LOADING

    assert await pager.load_more() == []
    assert await pager.load() == []
    assert fake.calls("posts") == []


@pytest.mark.asyncio
async def test_failed_load_enters_error_state(fake, backend):
    fake.fail("GET", "posts", status=500, body={"message": "database unavailable"})
    notifier = Notifier()

    pager = FeedPager(backend, notifier=notifier)
    page = await pager.load()

    assert page == []
    assert pager.state == FeedState.ERROR
    assert pager.error.status == 500
    assert notifier.drain() == [("error", "database unavailable")]

    fake.clear_failures()
    fake.seed("posts", post_row("p0"))
    assert [p.id for p in await pager.load()] == ["p0"]
    assert pager.state == FeedState.IDLE
    assert pager.error is None


@pytest.mark.asyncio
async def test_failed_load_more_keeps_window(fake, backend):
    fake.seed("posts", *posts_timeline(4))

    pager = FeedPager(backend, page_size=2)
    await pager.load()
    cursor = pager.cursor

    fake.fail("GET", "posts")
    assert await pager.load_more() == []

    assert pager.state == FeedState.ERROR
    assert [p.id for p in pager.posts] == ["p0", "p1"]
    assert pager.cursor == cursor


@pytest.mark.asyncio
async def test_view_does_not_reorder_window(fake, backend):
    fake.seed("posts", post_row("old", 5, likes=10), post_row("new", 0))

    pager = FeedPager(backend)
    await pager.load()

    assert [p.id for p in pager.view(SortMode.TRENDING)] == ["old", "new"]
    assert [p.id for p in pager.posts] == ["new", "old"]


@pytest.mark.asyncio
async def test_remove_drops_post(fake, backend):
    fake.seed("posts", *posts_timeline(3))

    pager = FeedPager(backend)
    await pager.load()

    assert pager.remove("p1") is True
    assert pager.remove("missing") is False
    assert [p.id for p in pager.posts] == ["p0", "p2"]
