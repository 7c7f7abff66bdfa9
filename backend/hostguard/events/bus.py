"""EventBus for pushing engine events to UI subscribers.

Producers (alert manager, health monitor, rate limiter, audit engine) call
publish() synchronously from the event loop or from request handlers. It
never blocks: when the queue is full the event is dropped and counted per
event type. Delivery is at-most-once; a subscriber that misses an event
recovers state through the query routes.

Usage:
    bus = EventBus(queue_size=1000)
    bus.subscribe(event_ws_manager.broadcast)
    bus.subscribe(on_block, event_types={EventType.CLIENT_BLOCKED})
    await bus.start()

    bus.publish(EngineEvent(event_type=EventType.ALERT_RAISED, payload=alert.to_dict()))
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass

from hostguard.events.models import EngineEvent, EventType

logger = logging.getLogger(__name__)

EventHandler = Callable[[EngineEvent], Awaitable[None]]


@dataclass(frozen=True)
class _Subscription:
    handler: EventHandler
    # None delivers every event type
    event_types: frozenset[EventType] | None = None

    def accepts(self, event: EngineEvent) -> bool:
        return self.event_types is None or event.event_type in self.event_types


class EventBus:
    """Bounded publish-subscribe channel for EngineEvent instances.

    A single dispatch task drains the queue in publish order and awaits each
    matching subscriber in registration order. A failing subscriber is
    logged and skipped.

    Attributes:
        drop_count: Events dropped because the queue was full
        pending_count: Events waiting for dispatch
        delivered_count: Events taken off the queue and dispatched
        subscriber_count: Registered subscriptions
        is_running: Whether the dispatch task is running
    """

    def __init__(self, queue_size: int = 1000) -> None:
        if queue_size <= 0:
            raise ValueError("queue_size must be positive")

        self._queue: asyncio.Queue[EngineEvent] = asyncio.Queue(maxsize=queue_size)
        self._subscriptions: list[_Subscription] = []
        self._drops: Counter[str] = Counter()
        self._delivered = 0
        self._task: asyncio.Task[None] | None = None

    @property
    def drop_count(self) -> int:
        return sum(self._drops.values())

    @property
    def pending_count(self) -> int:
        return self._queue.qsize()

    @property
    def delivered_count(self) -> int:
        return self._delivered

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def drops_by_type(self) -> dict[str, int]:
        """Dropped event counts keyed by event type value."""
        return dict(self._drops)

    def publish(self, event: EngineEvent) -> bool:
        """Queue an event without blocking.

        Returns:
            True if queued, False if dropped
        """
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self._drops[event.event_type.value] += 1
            logger.warning(
                f"Event dropped, queue full: {event.event_type.value} "
                f"(total dropped {self.drop_count})"
            )
            return False
        return True

    def subscribe(
        self, handler: EventHandler, event_types: Iterable[EventType] | None = None
    ) -> None:
        """Register an async handler, optionally for a subset of event types."""
        types = frozenset(event_types) if event_types is not None else None
        self._subscriptions.append(_Subscription(handler=handler, event_types=types))

    def unsubscribe(self, handler: EventHandler) -> None:
        """Remove every subscription of a handler. Unknown handlers are ignored."""
        self._subscriptions = [s for s in self._subscriptions if s.handler != handler]

    async def start(self) -> None:
        """Start dispatching. No-op if already running."""
        if self.is_running:
            return
        self._task = asyncio.create_task(self._run(), name="event-bus-dispatch")
        logger.info(f"EventBus started with {self.subscriber_count} subscribers")

    async def stop(self) -> None:
        """Stop dispatching. Undelivered events stay queued. No-op if not running."""
        task, self._task = self._task, None
        if task is None:
            return

        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info(f"EventBus stopped ({self.pending_count} events pending)")

    async def _run(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self._dispatch(event)
            finally:
                self._delivered += 1
                self._queue.task_done()

    async def _dispatch(self, event: EngineEvent) -> None:
        # Snapshot so handlers may unsubscribe while being notified
        for subscription in list(self._subscriptions):
            if not subscription.accepts(event):
                continue
            try:
                await subscription.handler(event)
            except Exception as e:
                name = getattr(subscription.handler, "__qualname__", subscription.handler)
                logger.exception(f"Subscriber {name} failed on {event.event_type.value}: {e}")
