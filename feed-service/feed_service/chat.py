"""
Community chat - history plus live appends from the realtime channel
"""
from typing import Any, Awaitable, Callable, Dict, List, Optional
import logging

from .backend_client import BackendClient
from .config import settings
from .errors import BackendError, Notifier, with_timeout
from .realtime import Channel, ChannelState, RealtimeHub
from .schemas import ChangeEvent, ChangeType, ChatMessage, Profile

logger = logging.getLogger(__name__)

MESSAGE_COLUMNS = (
    "id,community_id,content,created_at,user_id,"
    "profiles!community_messages_user_id_fkey(username,display_name,avatar_url)"
)
MODERATOR_ROLES = {"owner", "moderator"}

AppendHook = Callable[[ChatMessage], Awaitable[None]]
RemoveHook = Callable[[str], Awaitable[None]]


def message_from_row(row: Dict[str, Any], profile: Optional[Dict[str, Any]] = None) -> ChatMessage:
    """Build a message from a row whose embedded profile may be a list, a dict or absent"""
    data = dict(row)
    embedded = data.pop("profiles", None)
    if isinstance(embedded, list):
        embedded = embedded[0] if embedded else None
    profile = profile or embedded
    if profile:
        data["profile"] = Profile(id=data["user_id"], **{k: v for k, v in profile.items() if k != "id"})
    return ChatMessage.model_validate(data)


async def membership_role(client: BackendClient, community_id: str, user_id: str) -> Optional[str]:
    """Role of ``user_id`` in the community, None when not a member"""
    rows = await (
        client.table("community_memberships")
        .select("role")
        .eq("community_id", community_id)
        .eq("user_id", user_id)
        .limit(1)
        .execute()
    )
    return rows[0].get("role") if rows else None


class CommunityChat:
    """
    Chat of one community.

    Subscribed -> receiving inserts -> unsubscribed on ``close()``. Each insert
    triggers a profile lookup before the message is appended, so appends land
    in event order but are not reconciled with ``load_history()`` calls that
    run concurrently.
    """

    def __init__(
        self,
        client: BackendClient,
        hub: RealtimeHub,
        community_id: str,
        on_append: Optional[AppendHook] = None,
        on_remove: Optional[RemoveHook] = None,
        notifier: Optional[Notifier] = None,
    ):
        self.client = client
        self.hub = hub
        self.community_id = community_id
        self.on_append = on_append
        self.on_remove = on_remove
        self.notifier = notifier or Notifier()
        self.messages: List[ChatMessage] = []
        self.channel: Optional[Channel] = None

    @property
    def channel_name(self) -> str:
        return f"community_chat_{self.community_id}"

    async def load_history(self) -> List[ChatMessage]:
        """Latest messages, oldest first"""
        try:
            rows = await with_timeout(
                self.client.table("community_messages")
                .select(MESSAGE_COLUMNS)
                .eq("community_id", self.community_id)
                .order("created_at", desc=True)
                .limit(settings.CHAT_HISTORY_LIMIT)
                .execute()
            )
        except BackendError as e:
            logger.error(f"Failed to load messages for community {self.community_id}: {e.message}")
            self.notifier.report(e, "Failed to load messages")
            return []

        # Newest window comes back descending
        self.messages = [message_from_row(row) for row in reversed(rows or [])]
        return self.messages

    def subscribe(self) -> Channel:
        if self.channel and self.channel.state == ChannelState.SUBSCRIBED:
            return self.channel

        self.channel = (
            self.hub.channel(
                self.channel_name,
                "community_messages",
                filter_column="community_id",
                filter_value=self.community_id,
            )
            .on(ChangeType.INSERT, self._on_insert)
            .on(ChangeType.DELETE, self._on_delete)
        )
        return self.channel

    async def _fetch_profile(self, user_id: str) -> Optional[Dict[str, Any]]:
        try:
            return await (
                self.client.table("profiles")
                .select("username,display_name,avatar_url")
                .eq("id", user_id)
                .single()
                .execute()
            )
        except BackendError as e:
            logger.warning(f"Profile lookup failed for {user_id}: {e.message}")
            return None

    async def _on_insert(self, event: ChangeEvent):
        record = event.record or {}
        if not record.get("id"):
            return

        profile = await self._fetch_profile(record.get("user_id", ""))
        message = message_from_row(record, profile)
        self.messages.append(message)

        if self.on_append:
            await self.on_append(message)

    async def _on_delete(self, event: ChangeEvent):
        old = event.old_record or event.record or {}
        message_id = old.get("id")
        if not message_id:
            return

        self.messages = [m for m in self.messages if m.id != message_id]
        if self.on_remove:
            await self.on_remove(message_id)

    async def send(self, user_id: Optional[str], content: str) -> bool:
        """Post a message; the realtime insert appends it"""
        text = (content or "").strip()
        if not user_id or not text:
            return False

        try:
            await with_timeout(
                self.client.table("community_messages")
                .insert({
                    "community_id": self.community_id,
                    "user_id": user_id,
                    "content": text,
                })
                .execute()
            )
        except BackendError as e:
            logger.error(f"Failed to send message: {e.message}")
            self.notifier.report(e, "Failed to send message")
            return False
        return True

    async def delete(self, message_id: str, role: Optional[str]) -> bool:
        """Delete a message; only owners and moderators may"""
        if role not in MODERATOR_ROLES:
            return False

        try:
            await (
                self.client.table("community_messages")
                .delete()
                .eq("id", message_id)
                .execute()
            )
        except BackendError as e:
            logger.error(f"Failed to delete message {message_id}: {e.message}")
            self.notifier.report(e, "Failed to delete message")
            return False
        return True

    def close(self):
        if self.channel:
            self.channel.unsubscribe()
            self.channel = None
