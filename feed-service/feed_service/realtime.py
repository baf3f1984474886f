"""
Realtime change channels fed by the Kafka change-event stream
"""
from aiokafka import AIOKafkaConsumer
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional
import json
import asyncio
import logging

from pydantic import ValidationError

from .config import settings
from .schemas import ChangeEvent, ChangeType

logger = logging.getLogger(__name__)

Handler = Callable[[ChangeEvent], Awaitable[None]]


class ChannelState(str, Enum):
    SUBSCRIBED = "subscribed"
    CLOSED = "closed"


class Channel:
    """
    Subscription to change events of one table, optionally narrowed to rows
    whose ``filter_column`` equals ``filter_value`` (e.g. a community id).
    """

    def __init__(
        self,
        hub: "RealtimeHub",
        name: str,
        table: str,
        filter_column: Optional[str] = None,
        filter_value: Any = None,
    ):
        self.hub = hub
        self.name = name
        self.table = table
        self.filter_column = filter_column
        self.filter_value = filter_value
        self.handlers: Dict[ChangeType, List[Handler]] = {}
        self.state = ChannelState.SUBSCRIBED

    def on(self, event: ChangeType, handler: Handler) -> "Channel":
        self.handlers.setdefault(ChangeType(event), []).append(handler)
        return self

    def matches(self, event: ChangeEvent) -> bool:
        if event.table != self.table:
            return False
        if not self.filter_column:
            return True
        # Deletes only carry the old row
        row = event.old_record if event.type == ChangeType.DELETE else event.record
        row = row or event.record or {}
        return str(row.get(self.filter_column)) == str(self.filter_value)

    async def dispatch(self, event: ChangeEvent):
        if self.state != ChannelState.SUBSCRIBED or not self.matches(event):
            return

        for handler in list(self.handlers.get(event.type, [])):
            try:
                await handler(event)
            except Exception as e:
                logger.error(f"[{self.name}] handler failed for {event.type.value}: {e}")

    def unsubscribe(self):
        if self.state == ChannelState.CLOSED:
            return
        self.state = ChannelState.CLOSED
        self.hub.remove(self)
        logger.info(f"Channel {self.name} unsubscribed")


class RealtimeHub:
    """Consume change events and fan them out to subscribed channels"""

    def __init__(self):
        self.channels: Dict[str, List[Channel]] = {}
        self.consumer: Optional[AIOKafkaConsumer] = None
        self.running = False
        self.task: Optional[asyncio.Task] = None

    def topic_for(self, table: str) -> str:
        return f"{settings.REALTIME_TOPIC_PREFIX}.{table}"

    def channel(
        self,
        name: str,
        table: str,
        filter_column: Optional[str] = None,
        filter_value: Any = None,
    ) -> Channel:
        """Open a subscribed channel"""
        channel = Channel(self, name, table, filter_column, filter_value)
        self.channels.setdefault(table, []).append(channel)
        logger.info(f"Channel {name} subscribed to {table}")
        return channel

    def remove(self, channel: Channel):
        subscribed = self.channels.get(channel.table, [])
        if channel in subscribed:
            subscribed.remove(channel)
        if not subscribed:
            self.channels.pop(channel.table, None)

    def channel_count(self) -> int:
        return sum(len(channels) for channels in self.channels.values())

    async def publish(self, event: ChangeEvent):
        """Deliver an event to every matching channel"""
        for channel in list(self.channels.get(event.table, [])):
            await channel.dispatch(event)

    async def start(self):
        """Start Kafka consumer"""
        if not settings.KAFKA_ENABLED:
            logger.warning("Kafka is disabled")
            return

        try:
            self.consumer = AIOKafkaConsumer(
                *[self.topic_for(table) for table in settings.REALTIME_TABLES],
                bootstrap_servers=settings.KAFKA_BOOTSTRAP_SERVERS,
                group_id=settings.KAFKA_CONSUMER_GROUP,
                value_deserializer=lambda m: json.loads(m.decode('utf-8')),
                auto_offset_reset='latest',  # Only live changes
                enable_auto_commit=True,
            )
            await self.consumer.start()
            logger.info(f"Kafka consumer started with group '{settings.KAFKA_CONSUMER_GROUP}'")

            self.running = True
            self.task = asyncio.create_task(self._consume_messages())

        except Exception as e:
            logger.error(f"Failed to start Kafka consumer: {e}")
            self.consumer = None

    async def stop(self):
        """Stop Kafka consumer"""
        self.running = False

        if self.task:
            self.task.cancel()
            try:
                await self.task
            except asyncio.CancelledError:
                pass
            self.task = None

        if self.consumer:
            await self.consumer.stop()
            self.consumer = None
            logger.info("Kafka consumer stopped")

    async def _consume_messages(self):
        """Consume and dispatch change events"""
        logger.info("Started consuming change events")

        try:
            async for message in self.consumer:
                if not self.running:
                    break

                try:
                    await self.process_message(message.topic, message.value)
                except Exception as e:
                    logger.error(f"Error processing message: {e}")

        except asyncio.CancelledError:
            logger.info("Kafka consumer task cancelled")
        except Exception as e:
            logger.error(f"Error in message consumption loop: {e}")

    async def process_message(self, topic: str, value: Dict[str, Any]):
        """Parse one change event and publish it"""
        if "table" not in value and topic.startswith(f"{settings.REALTIME_TOPIC_PREFIX}."):
            value = {**value, "table": topic[len(settings.REALTIME_TOPIC_PREFIX) + 1:]}

        try:
            event = ChangeEvent.model_validate(value)
        except ValidationError as e:
            logger.error(f"Invalid change event on '{topic}': {e}")
            return

        logger.debug(f"Change event {event.type.value} on {event.table}")
        await self.publish(event)


# Global realtime hub instance
realtime_hub = RealtimeHub()


async def get_realtime_hub() -> RealtimeHub:
    """Dependency for getting realtime hub instance"""
    return realtime_hub
