"""
Live views: server-side state of one open screen, kept current by the change feed.

Feed events and asynchronous side results are queued on a per-view channel and
applied one at a time by a single consumer task, so ``apply`` is the only code
that writes view state and never runs concurrently with itself.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, List, Optional, Set

from app.core.errors import NotAuthenticatedError
from app.services.session_service import UserSession
from app.utils.realtime_bus import InMemoryBus, Subscription


logger = logging.getLogger(__name__)

ChangeCallback = Callable[["LiveView"], Awaitable[None]]


class LiveView(ABC):

    def __init__(self, session: UserSession, bus: InMemoryBus, on_change: Optional[ChangeCallback] = None) -> None:
        self.session = session
        self._bus = bus
        self._on_change = on_change
        self._queue: "asyncio.Queue[Any]" = asyncio.Queue()
        self._subscriptions: List[Subscription] = []
        self._pending: Set[asyncio.Task] = set()
        self._consumer: Optional[asyncio.Task] = None
        self.loading = True
        self.closed = False
        self._closed_event = asyncio.Event()

    @property
    def self_id(self) -> str:
        return self.session.user_id

    @abstractmethod
    async def subscribe(self) -> None:
        """Register the change feed subscriptions of this view."""

    @abstractmethod
    async def load(self) -> None:
        """Fetch the initial state."""

    @abstractmethod
    async def apply(self, item: Any) -> None:
        """Fold one queued feed event or side result into the view state."""

    @abstractmethod
    def snapshot(self) -> dict:
        """JSON-ready state pushed to the client."""

    async def _listen(self, table: str, event: str = "*", column: Optional[str] = None, value: Any = None) -> None:
        sub = await self._bus.subscribe(table, self.post, event=event, column=column, value=value)
        self._subscriptions.append(sub)

    async def post(self, item: Any) -> None:
        """Queue a feed event or side result for the reducer."""
        if self.closed:
            return
        self._queue.put_nowait(item)

    def spawn(self, coro: Awaitable[Any], description: str) -> None:
        """Run a fire-and-forget side effect; failures are logged and dropped."""
        if self.closed:
            if asyncio.iscoroutine(coro):
                coro.close()
            return
        task = asyncio.ensure_future(coro)
        self._pending.add(task)

        def _done(t: asyncio.Task) -> None:
            self._pending.discard(t)
            if t.cancelled():
                return
            exc = t.exception()
            if exc is not None:
                logger.error("%s failed: %s", description, exc, exc_info=exc)

        task.add_done_callback(_done)

    async def open(self) -> "LiveView":
        self.session.attach(self)
        try:
            # subscribe first so nothing committed during the load is missed
            await self.subscribe()
            await self.load()
            if self.closed:
                raise NotAuthenticatedError("View was closed while loading")
        except BaseException:
            await self.close()
            raise
        self.loading = False
        self._consumer = asyncio.create_task(self._run())
        return self

    async def _run(self) -> None:
        while True:
            item = await self._queue.get()
            try:
                if not self.closed:
                    await self.apply(item)
                    if self._on_change is not None:
                        await self._on_change(self)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("%s failed to apply %r", type(self).__name__, item)
            finally:
                self._queue.task_done()

    async def settle(self) -> None:
        """Wait until every queued item and pending side effect has been handled."""
        while True:
            if self._consumer is not None and not self.closed:
                await self._queue.join()
            if not self._pending:
                return
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        for sub in self._subscriptions:
            try:
                await sub.cancel()
            except Exception:
                logger.exception("Failed to release subscription on %s", sub.table)
        self._subscriptions.clear()
        if self._consumer is not None:
            self._consumer.cancel()
            try:
                await self._consumer
            except asyncio.CancelledError:
                pass
            self._consumer = None
        for task in list(self._pending):
            task.cancel()
        self.session.detach(self)
        self._closed_event.set()

    async def wait_closed(self) -> None:
        await self._closed_event.wait()

    async def __aenter__(self):
        return await self.open()

    async def __aexit__(self, *exc_info) -> None:
        await self.close()
