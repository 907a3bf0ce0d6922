"""Exception hierarchy for statesync."""


class StateSyncError(Exception):
    """Base exception for all statesync errors."""


class InvalidPayload(StateSyncError):
    """A write body did not carry list-valued clients and bookings."""


class StorageUnavailable(StateSyncError):
    """The state file could not be read or written."""

    def __init__(self, message: str, *, operation: str = "read", path: str = ""):
        self.operation = operation
        self.path = path
        super().__init__(message)


class SubscriberDeliveryFailure(StateSyncError):
    """A document could not be handed to one subscriber's channel."""


class SubscriberLimitReached(StateSyncError):
    """The configured maximum number of stream subscribers is registered."""


class SyncClientError(StateSyncError):
    """HTTP-level failure talking to a statesync server."""

    def __init__(self, message: str, *, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)
