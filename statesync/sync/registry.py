"""Registry of push subscribers and best-effort fan-out."""

import asyncio
import logging
import uuid
from typing import Protocol

from ..exceptions import SubscriberDeliveryFailure, SubscriberLimitReached
from ..store import StateDocument

logger = logging.getLogger(__name__)


class Channel(Protocol):
    """Output sink for one connected listener."""

    def send(self, doc: StateDocument) -> None:
        """Hand a document to the listener without blocking."""
        ...


class QueueChannel:
    """Channel backed by an asyncio queue, drained by the event stream."""

    def __init__(self, maxsize: int = 0):
        self._queue: asyncio.Queue[StateDocument] = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def send(self, doc: StateDocument) -> None:
        if self._closed:
            raise SubscriberDeliveryFailure("Channel is closed")
        try:
            self._queue.put_nowait(doc)
        except asyncio.QueueFull as e:
            raise SubscriberDeliveryFailure(
                f"Channel queue full ({self._queue.maxsize} pending)"
            ) from e

    async def get(self) -> StateDocument:
        """Wait for the next document."""
        return await self._queue.get()

    def close(self) -> None:
        self._closed = True


class SubscriberRegistry:
    """Tracks live subscribers and delivers documents to them.

    Mutation and broadcast both run on the event loop. Broadcast walks a
    snapshot of the subscriber map, so register/unregister during a broadcast
    never breaks iteration.
    """

    def __init__(self, max_subscribers: int = 0):
        """Initialize the registry.

        Args:
            max_subscribers: Upper bound on concurrent subscribers, 0 for none.
        """
        self.max_subscribers = max_subscribers
        self._subscribers: dict[str, Channel] = {}

    def __len__(self) -> int:
        return len(self._subscribers)

    @property
    def subscriber_ids(self) -> list[str]:
        return list(self._subscribers)

    def register(self, channel: Channel) -> str:
        """Admit a subscriber.

        Returns:
            Id to pass to ``unregister``.

        Raises:
            SubscriberLimitReached: If a bound is configured and reached.
        """
        if self.max_subscribers and len(self._subscribers) >= self.max_subscribers:
            raise SubscriberLimitReached(
                f"Subscriber limit reached ({self.max_subscribers})"
            )

        subscriber_id = str(uuid.uuid4())
        self._subscribers[subscriber_id] = channel
        logger.debug(
            f"Subscriber {subscriber_id} registered ({len(self._subscribers)} active)"
        )
        return subscriber_id

    def unregister(self, subscriber_id: str) -> None:
        """Remove a subscriber. Unknown ids are ignored."""
        if self._subscribers.pop(subscriber_id, None) is not None:
            logger.debug(
                f"Subscriber {subscriber_id} unregistered "
                f"({len(self._subscribers)} active)"
            )

    def deliver(self, subscriber_id: str, doc: StateDocument) -> bool:
        """Send a document to one subscriber, dropping it on failure.

        Returns:
            True if the channel accepted the document.
        """
        channel = self._subscribers.get(subscriber_id)
        if channel is None:
            return False

        try:
            channel.send(doc)
        except Exception as e:
            logger.warning(f"Delivery to subscriber {subscriber_id} failed: {e}")
            self.unregister(subscriber_id)
            return False
        return True

    def broadcast(self, doc: StateDocument) -> int:
        """Deliver a document to every registered subscriber.

        Per-subscriber failures are swallowed; the failing subscriber is
        removed and delivery to the others continues.

        Returns:
            Number of subscribers that accepted the document.
        """
        delivered = 0
        for subscriber_id in list(self._subscribers):
            if self.deliver(subscriber_id, doc):
                delivered += 1

        logger.debug(f"Broadcast sig={doc.sig} to {delivered} subscribers")
        return delivered
