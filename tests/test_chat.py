"""Tests for community chat."""

import pytest

from data_builder import ts
from feed_service.chat import CommunityChat, membership_role, message_from_row
from feed_service.schemas import ChangeEvent, ChangeType


@pytest.fixture
def seeded(fake):
    fake.seed(
        "profiles",
        {"id": "u1", "username": "ada", "display_name": "Ada", "avatar_url": None},
        {"id": "u2", "username": "grace", "display_name": "Grace", "avatar_url": None},
    )
    fake.seed(
        "community_messages",
        {"id": "m2", "community_id": "c1", "user_id": "u2", "content": "second", "created_at": ts(1)},
        {"id": "m1", "community_id": "c1", "user_id": "u1", "content": "first", "created_at": ts(2)},
        {"id": "x1", "community_id": "c2", "user_id": "u1", "content": "elsewhere", "created_at": ts(0)},
    )
    fake.seed(
        "community_memberships",
        {"community_id": "c1", "user_id": "u1", "role": "owner"},
        {"community_id": "c1", "user_id": "u2", "role": "member"},
    )
    return fake


def test_message_from_row_accepts_embedded_list():
    row = {
        "id": "m1", "user_id": "u1", "content": "hi", "created_at": ts(0),
        "profiles": [{"username": "ada", "display_name": "Ada", "avatar_url": None}],
    }

    message = message_from_row(row)

    assert message.profile.id == "u1"
    assert message.profile.username == "ada"


def test_message_from_row_without_profile():
    message = message_from_row({"id": "m1", "user_id": "u1", "content": "hi", "created_at": ts(0), "profiles": None})
    assert message.profile is None


@pytest.mark.asyncio
async def test_history_is_oldest_first_with_profiles(seeded, backend, hub):
    chat = CommunityChat(backend, hub, "c1")

    history = await chat.load_history()

    assert [m.id for m in history] == ["m1", "m2"]
    assert history[0].profile.display_name == "Ada"
    assert seeded.calls("community_messages")[-1].param("limit") == "100"


@pytest.mark.asyncio
async def test_history_keeps_the_latest_window(fake, backend, hub):
    fake.seed(
        "community_messages",
        *[
            {"id": f"m{i:03d}", "community_id": "c1", "user_id": "u1", "content": str(i), "created_at": ts(150 - i)}
            for i in range(150)
        ],
    )
    chat = CommunityChat(backend, hub, "c1")

    history = await chat.load_history()

    assert len(history) == 100
    assert (history[0].id, history[-1].id) == ("m050", "m149")
    assert fake.calls("community_messages")[-1].param("order") == "created_at.desc"


@pytest.mark.asyncio
async def test_history_failure_reports_toast(seeded, backend, hub):
    seeded.fail("GET", "community_messages", status=500, body={"message": "down"})
    chat = CommunityChat(backend, hub, "c1")

    assert await chat.load_history() == []
    assert chat.notifier.drain() == [("error", "down")]


@pytest.mark.asyncio
async def test_live_insert_appends_with_profile(seeded, backend, hub):
    appended = []

    async def on_append(message):
        appended.append(message)

    chat = CommunityChat(backend, hub, "c1", on_append=on_append)
    await chat.load_history()
    chat.subscribe()

    await hub.publish(ChangeEvent(
        type=ChangeType.INSERT,
        table="community_messages",
        record={"id": "m3", "community_id": "c1", "user_id": "u2", "content": "live", "created_at": ts(0)},
    ))
    await hub.publish(ChangeEvent(
        type=ChangeType.INSERT,
        table="community_messages",
        record={"id": "x2", "community_id": "c2", "user_id": "u2", "content": "other", "created_at": ts(0)},
    ))

    assert [m.id for m in chat.messages] == ["m1", "m2", "m3"]
    assert appended[0].profile.username == "grace"


@pytest.mark.asyncio
async def test_live_insert_without_profile(seeded, backend, hub):
    chat = CommunityChat(backend, hub, "c1")
    chat.subscribe()

    await hub.publish(ChangeEvent(
        type=ChangeType.INSERT,
        table="community_messages",
        record={"id": "m9", "community_id": "c1", "user_id": "ghost", "content": "boo", "created_at": ts(0)},
    ))

    assert chat.messages[-1].id == "m9"
    assert chat.messages[-1].profile is None


@pytest.mark.asyncio
async def test_live_delete_removes_message(seeded, backend, hub):
    removed = []

    async def on_remove(message_id):
        removed.append(message_id)

    chat = CommunityChat(backend, hub, "c1", on_remove=on_remove)
    await chat.load_history()
    chat.subscribe()

    await hub.publish(ChangeEvent(
        type=ChangeType.DELETE,
        table="community_messages",
        old_record={"id": "m1", "community_id": "c1"},
    ))

    assert [m.id for m in chat.messages] == ["m2"]
    assert removed == ["m1"]


@pytest.mark.asyncio
async def test_subscribe_is_idempotent_and_close_unsubscribes(backend, hub):
    chat = CommunityChat(backend, hub, "c1")

    channel = chat.subscribe()
    assert chat.subscribe() is channel
    assert channel.name == "community_chat_c1"
    assert hub.channel_count() == 1

    chat.close()
    assert hub.channel_count() == 0


@pytest.mark.asyncio
async def test_send_trims_and_inserts(seeded, backend, hub):
    chat = CommunityChat(backend, hub, "c1")

    assert await chat.send("u1", "  hello  ") is True
    assert await chat.send("u1", "   ") is False
    assert await chat.send(None, "hello") is False

    sent = [row for row in seeded.rows("community_messages") if row["content"] == "hello"]
    assert len(sent) == 1
    assert sent[0]["community_id"] == "c1"
    assert sent[0]["user_id"] == "u1"


@pytest.mark.asyncio
async def test_send_failure_reports_toast(seeded, backend, hub):
    seeded.fail("POST", "community_messages", status=403, body={"message": "denied", "code": "42501"})
    chat = CommunityChat(backend, hub, "c1")

    assert await chat.send("u1", "hello") is False
    assert chat.notifier.drain() == [("error", "You do not have permission to perform this operation.")]


@pytest.mark.asyncio
async def test_only_moderators_delete(seeded, backend, hub):
    chat = CommunityChat(backend, hub, "c1")

    assert await chat.delete("m1", "member") is False
    assert await chat.delete("m1", None) is False
    assert any(row["id"] == "m1" for row in seeded.rows("community_messages"))

    assert await chat.delete("m1", "owner") is True
    assert not any(row["id"] == "m1" for row in seeded.rows("community_messages"))
    assert await chat.delete("m2", "moderator") is True


@pytest.mark.asyncio
async def test_membership_role(seeded, backend):
    assert await membership_role(backend, "c1", "u1") == "owner"
    assert await membership_role(backend, "c1", "u2") == "member"
    assert await membership_role(backend, "c1", "stranger") is None
