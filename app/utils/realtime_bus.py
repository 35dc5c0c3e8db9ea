import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

import redis.asyncio as redis

from app.core.config import get_settings
from app.core.errors import RemoteOperationFailed, remote_operation
from app.schemas.feed import ChangeEvent


logger = logging.getLogger(__name__)

EventHandler = Callable[[ChangeEvent], Awaitable[None]]


class Subscription:
    """One table subscription with an event-type and a single-column equality filter."""

    def __init__(
        self,
        bus: "InMemoryBus",
        table: str,
        on_event: EventHandler,
        event: str = "*",
        column: Optional[str] = None,
        value: Any = None,
    ) -> None:
        self._bus = bus
        self.table = table
        self.event = event
        self.column = column
        self.value = value
        self._on_event = on_event
        self.active = True

    def matches(self, change: ChangeEvent) -> bool:
        if not self.active or change.table != self.table:
            return False
        if self.event != "*" and change.type != self.event:
            return False
        if self.column is None:
            return True
        return change.row.get(self.column) == self.value

    async def deliver(self, change: ChangeEvent) -> None:
        try:
            await self._on_event(change)
        except Exception:
            logger.exception("Change feed subscriber failed on %s %s", change.table, change.type)

    async def cancel(self) -> None:
        await self._bus.unsubscribe(self)

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.cancel()


class InMemoryBus:
    """Single-process change feed: publish fans out to local subscribers in order."""

    distributed = False

    def __init__(self) -> None:
        self._subscriptions: Dict[str, List[Subscription]] = {}

    async def publish(self, change: ChangeEvent) -> None:
        await self._dispatch(change)

    async def _dispatch(self, change: ChangeEvent) -> None:
        for sub in list(self._subscriptions.get(change.table, [])):
            if sub.matches(change):
                await sub.deliver(change)

    async def subscribe(
        self,
        table: str,
        on_event: EventHandler,
        event: str = "*",
        column: Optional[str] = None,
        value: Any = None,
    ) -> Subscription:
        sub = Subscription(self, table, on_event, event=event, column=column, value=value)
        self._subscriptions.setdefault(table, []).append(sub)
        logger.debug("Subscribed to %s (%s, %s=%s)", table, event, column, value)
        return sub

    async def unsubscribe(self, sub: Subscription) -> None:
        sub.active = False
        subs = self._subscriptions.get(sub.table)
        if not subs:
            return
        try:
            subs.remove(sub)
        except ValueError:
            pass
        if not subs:
            del self._subscriptions[sub.table]

    def subscriber_count(self, table: Optional[str] = None) -> int:
        if table is not None:
            return len(self._subscriptions.get(table, []))
        return sum(len(subs) for subs in self._subscriptions.values())

    async def start(self) -> None:
        return

    async def close(self) -> None:
        self._subscriptions.clear()


class RedisBus(InMemoryBus):
    """Change feed shared across processes through Redis pub/sub.

    Publishing goes to Redis only; every process (this one included) receives
    the event back from its pattern subscription and fans it out locally, so
    all processes observe the same commit order per channel.
    """

    distributed = True
    channel_prefix = "feed:"

    def __init__(self, url: str) -> None:
        super().__init__()
        self._redis = redis.from_url(url)
        self._pubsub = None
        self._task: Optional[asyncio.Task] = None
        self._running = False

    async def publish(self, change: ChangeEvent) -> None:
        with remote_operation("publish change event"):
            await self._redis.publish(f"{self.channel_prefix}{change.table}", change.model_dump_json())

    async def start(self) -> None:
        if self._task is not None:
            return
        self._pubsub = self._redis.pubsub()
        with remote_operation("subscribe to change feed"):
            await self._pubsub.psubscribe(f"{self.channel_prefix}*")
        self._running = True
        self._task = asyncio.create_task(self._listen())

    async def _listen(self) -> None:
        while self._running:
            try:
                msg = await self._pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Change feed listener failed")
                await asyncio.sleep(0.5)
                continue
            if not msg or msg.get("type") != "pmessage":
                continue
            data = msg.get("data")
            if isinstance(data, bytes):
                data = data.decode("utf-8")
            try:
                change = ChangeEvent.model_validate_json(data)
            except ValueError:
                logger.warning("Dropping malformed change event")
                continue
            await self._dispatch(change)

    async def close(self) -> None:
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if self._pubsub is not None:
            try:
                await self._pubsub.punsubscribe()
                await self._pubsub.aclose()
            except Exception:
                logger.warning("Failed to close change feed subscription", exc_info=True)
            self._pubsub = None
        await self._redis.aclose()
        await super().close()


_bus: Optional[InMemoryBus] = None


async def get_bus() -> InMemoryBus:
    global _bus
    if _bus is not None:
        return _bus
    url = get_settings().redis_url
    if url:
        _bus = RedisBus(url)
        await _bus.start()
        logger.info("Change feed using Redis")
    else:
        _bus = InMemoryBus()
        logger.info("Change feed using in-process fan-out")
    return _bus


async def close_bus() -> None:
    global _bus
    if _bus is not None:
        await _bus.close()
        _bus = None


async def publish_committed(bus: Optional[InMemoryBus], change: ChangeEvent) -> None:
    """Publish the change of a write that has already committed.

    The row is stored whatever happens here, so a feed failure is logged and
    the mutation still succeeds.
    """
    if bus is None:
        return
    try:
        await bus.publish(change)
    except RemoteOperationFailed as exc:
        logger.error(
            "Change event not delivered: %s",
            exc.message,
            extra={"extra_data": {"table": change.table, "type": change.type}},
        )
