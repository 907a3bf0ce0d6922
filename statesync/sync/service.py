"""Synchronization service: conditional reads, writes and push fan-out."""

import asyncio
import logging
from typing import Any

from ..exceptions import InvalidPayload
from ..store import DocumentStore
from .registry import Channel, SubscriberRegistry

logger = logging.getLogger(__name__)


class SyncService:
    """Coordinates the document store and the subscriber registry.

    Conflict policy is last-writer-wins. A writer may report the signature
    its edit was based on, but that hint is advisory only: stale writes are
    logged and accepted, never rejected.
    """

    def __init__(self, store: DocumentStore, registry: SubscriberRegistry):
        self.store = store
        self.registry = registry
        self._write_lock = asyncio.Lock()

    async def read(self, sig_hint: str | None = None) -> dict[str, Any]:
        """Return the current document, or only its signature if unchanged.

        Args:
            sig_hint: Signature the reader last saw.

        Returns:
            ``{"sig": ...}`` when ``sig_hint`` matches the current signature,
            otherwise the full document.
        """
        doc = await self.store.load()
        if sig_hint and sig_hint == doc.sig:
            return {"sig": doc.sig}
        return doc.to_dict()

    async def write(
        self,
        clients: Any,
        bookings: Any,
        prev_sig: str | None = None,
    ) -> dict[str, Any]:
        """Replace the document and push it to all subscribers.

        Args:
            clients: Full list of client records.
            bookings: Full list of booking records.
            prev_sig: Signature the writer's view was based on (advisory).

        Returns:
            ``{"sig": ...}`` of the newly stored document.

        Raises:
            InvalidPayload: If either collection is not a list.
            StorageUnavailable: If the document could not be persisted.
        """
        if not isinstance(clients, list) or not isinstance(bookings, list):
            raise InvalidPayload("clients and bookings must both be lists")

        async with self._write_lock:
            current = self.store.current
            if prev_sig and current is not None and prev_sig != current.sig:
                logger.info(
                    f"Accepting write based on stale sig {prev_sig} "
                    f"(current {current.sig})"
                )

            doc = await self.store.replace(clients, bookings)
            self.registry.broadcast(doc)

        return {"sig": doc.sig}

    async def subscribe(self, channel: Channel) -> str:
        """Register a channel and send it the current document first.

        Returns:
            Subscriber id for ``unsubscribe``.
        """
        doc = await self.store.load()
        subscriber_id = self.registry.register(channel)
        self.registry.deliver(subscriber_id, doc)
        return subscriber_id

    def unsubscribe(self, subscriber_id: str) -> None:
        self.registry.unregister(subscriber_id)
