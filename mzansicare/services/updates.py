"""Live ticket updates for watchers.

Writers publish a ticket snapshot after each committed change; watchers
receive them through an asyncio queue bound to their own event loop, so
publishing works from request threads and from the loop alike. Snapshots
are mirrored to Redis (``mzansicare:tickets:<id>``) for other workers.
"""
import asyncio
import json
import logging
import threading
from typing import AsyncIterator, Callable, Dict, Optional, Set

logger = logging.getLogger(__name__)

TERMINAL = {"served", "cancelled"}
CHANNEL_PREFIX = "mzansicare:tickets:"


class Subscription:
    def __init__(self, ticket_id: str, loop: asyncio.AbstractEventLoop):
        self.ticket_id = ticket_id
        self.loop = loop
        self.queue: asyncio.Queue = asyncio.Queue()


class TicketUpdateBroker:
    def __init__(self, redis_client=None):
        self.redis = redis_client
        self._subscribers: Dict[str, Set[Subscription]] = {}
        self._lock = threading.Lock()

    def subscribe(self, ticket_id: str) -> Subscription:
        subscription = Subscription(ticket_id, asyncio.get_running_loop())
        with self._lock:
            self._subscribers.setdefault(ticket_id, set()).add(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            watchers = self._subscribers.get(subscription.ticket_id)
            if watchers is None:
                return
            watchers.discard(subscription)
            if not watchers:
                del self._subscribers[subscription.ticket_id]

    def subscriber_count(self, ticket_id: str) -> int:
        with self._lock:
            return len(self._subscribers.get(ticket_id, ()))

    def publish(self, snapshot: dict) -> None:
        ticket_id = snapshot["id"]
        with self._lock:
            watchers = list(self._subscribers.get(ticket_id, ()))

        for subscription in watchers:
            try:
                subscription.loop.call_soon_threadsafe(subscription.queue.put_nowait, snapshot)
            except RuntimeError:
                # The watcher's loop has shut down
                self.unsubscribe(subscription)

        if self.redis is not None:
            try:
                self.redis.publish(f"{CHANNEL_PREFIX}{ticket_id}", json.dumps(snapshot, default=str))
            except Exception as e:
                logger.warning(f"Failed to mirror ticket update to Redis: {e}")

    async def watch(
        self,
        ticket_id: str,
        load_snapshot: Callable[[], dict],
        heartbeat: Optional[float] = None,
    ) -> AsyncIterator[Optional[dict]]:
        """Yield the ticket's current snapshot, then every update until it ends.

        ``None`` is yielded as a heartbeat when ``heartbeat`` seconds pass
        without an update. Closing the iterator only unsubscribes.
        """
        subscription = self.subscribe(ticket_id)
        try:
            # Subscribed before reading so no update between the two is lost
            snapshot = load_snapshot()
            yield snapshot
            while snapshot["status"] not in TERMINAL:
                try:
                    snapshot = await asyncio.wait_for(subscription.queue.get(), timeout=heartbeat)
                except asyncio.TimeoutError:
                    yield None
                    continue
                yield snapshot
        finally:
            self.unsubscribe(subscription)
