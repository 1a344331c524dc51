"""
Fan-out of committed state changes to sessions subscribed to a group channel.

Delivery is "send to whoever is connected right now": nothing is persisted or
replayed, and a subscriber that cannot keep up is dropped rather than allowed
to stall the operation that triggered the event.
"""

import asyncio
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

MESSAGE_CREATED = "message-created"
MESSAGE_DELETED = "message-deleted"
MEMBER_JOINED = "member-joined"
MEMBER_LEFT = "member-left"
MEMBER_KICKED = "member-kicked"
GROUP_DISSOLVED = "group-dissolved"

EVENT_KINDS = frozenset({
    MESSAGE_CREATED,
    MESSAGE_DELETED,
    MEMBER_JOINED,
    MEMBER_LEFT,
    MEMBER_KICKED,
    GROUP_DISSOLVED,
})

# pushed to a subscriber's queue to end its stream
CLOSE = object()


@dataclass(eq=False)
class Subscription:
    group_id: int
    user_id: int
    queue: asyncio.Queue = field(repr=False)


class FanoutDispatcher(ABC):
    @abstractmethod
    def init(self, loop: asyncio.AbstractEventLoop) -> None:
        """Bind to the transport's event loop; the dispatcher is ready afterwards."""

    @property
    @abstractmethod
    def ready(self) -> bool: ...

    @abstractmethod
    def subscribe(self, group_id: int, user_id: int) -> Subscription: ...

    @abstractmethod
    def unsubscribe(self, subscription: Subscription) -> None: ...

    @abstractmethod
    def publish(self, group_id: int, kind: str, payload: dict[str, Any]) -> None: ...

    @abstractmethod
    def revoke(self, group_id: int, user_id: int | None = None) -> None:
        """Close the streams of one user (or everyone) on a group channel."""


class SseDispatcher(FanoutDispatcher):
    def __init__(self, queue_size: int = 100):
        self._queue_size = queue_size
        self._loop: asyncio.AbstractEventLoop | None = None
        self._channels: dict[int, set[Subscription]] = {}
        self._guard = threading.Lock()

    def init(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop
        logger.info("Fan-out dispatcher ready")

    @property
    def ready(self) -> bool:
        return self._loop is not None and not self._loop.is_closed()

    def subscribe(self, group_id: int, user_id: int) -> Subscription:
        sub = Subscription(group_id, user_id, asyncio.Queue(maxsize=self._queue_size))
        with self._guard:
            self._channels.setdefault(group_id, set()).add(sub)
        logger.debug("User %s subscribed to group %s", user_id, group_id)
        return sub

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._guard:
            channel = self._channels.get(subscription.group_id)
            if channel is None:
                return
            channel.discard(subscription)
            if not channel:
                del self._channels[subscription.group_id]

    def subscriber_count(self, group_id: int) -> int:
        with self._guard:
            return len(self._channels.get(group_id, ()))

    def publish(self, group_id: int, kind: str, payload: dict[str, Any]) -> None:
        if kind not in EVENT_KINDS:
            raise ValueError(f"unknown event kind: {kind}")
        self._schedule(self._deliver, group_id, {"event": kind, "data": payload})

    def revoke(self, group_id: int, user_id: int | None = None) -> None:
        self._schedule(self._close, group_id, user_id)

    def _schedule(self, fn, *args) -> None:
        if not self.ready:
            logger.warning("Dispatcher not ready, dropping %s for group %s", fn.__name__, args[0])
            return
        try:
            self._loop.call_soon_threadsafe(fn, *args)
        except RuntimeError:
            logger.warning("Event loop gone, dropping %s for group %s", fn.__name__, args[0])

    def _targets(self, group_id: int) -> list[Subscription]:
        with self._guard:
            return list(self._channels.get(group_id, ()))

    def _deliver(self, group_id: int, event: dict[str, Any]) -> None:
        dead = []
        for sub in self._targets(group_id):
            try:
                sub.queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning(
                    "Subscriber %s on group %s is not keeping up, dropping it",
                    sub.user_id,
                    group_id,
                )
                dead.append(sub)

        for sub in dead:
            self.unsubscribe(sub)
            self._force_close(sub)

    def _close(self, group_id: int, user_id: int | None) -> None:
        for sub in self._targets(group_id):
            if user_id is None or sub.user_id == user_id:
                self.unsubscribe(sub)
                self._force_close(sub)

    @staticmethod
    def _force_close(sub: Subscription) -> None:
        # make room for the sentinel if the queue is full
        while True:
            try:
                sub.queue.put_nowait(CLOSE)
                return
            except asyncio.QueueFull:
                sub.queue.get_nowait()
