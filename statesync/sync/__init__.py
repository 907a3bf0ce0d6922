"""State synchronization between the shared document and its readers.

Provides conditional reads keyed by signature, last-writer-wins writes,
and push fan-out to long-lived subscribers.
"""

from .client import FetchResult, SyncClient
from .registry import Channel, QueueChannel, SubscriberRegistry
from .service import SyncService

__all__ = [
    "Channel",
    "FetchResult",
    "QueueChannel",
    "SubscriberRegistry",
    "SyncClient",
    "SyncService",
]
