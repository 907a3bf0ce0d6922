"""HTTP client for a statesync server.

Polls with the last-seen signature so unchanged state costs one tiny
response, pushes full documents, and follows the server's event stream.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable

import httpx

from ..exceptions import InvalidPayload, SyncClientError
from ..store import StateDocument

logger = logging.getLogger(__name__)


@dataclass
class FetchResult:
    """Result of a conditional fetch."""

    changed: bool
    sig: str
    document: StateDocument | None = None


ChangeCallback = Callable[[StateDocument], Awaitable[None] | None]


class SyncClient:
    """Client for reading, writing and watching the shared state.

    Retries connection errors, timeouts and 5xx responses with exponential
    backoff. 4xx responses are returned to the caller immediately.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        max_retries: int = 3,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the client.

        Args:
            base_url: Server root, e.g. "http://localhost:5000".
            timeout: Request timeout in seconds.
            max_retries: Attempts per request before giving up.
            transport: Optional httpx transport (used by tests).
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max_retries
        self._transport = transport
        self._last_sig: str | None = None

    @property
    def last_sig(self) -> str | None:
        """Signature of the most recent document seen by this client."""
        return self._last_sig

    def _client(self, timeout: float | None = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout if timeout is None else timeout,
            transport=self._transport,
        )

    async def _request_with_retry(
        self,
        method: str,
        path: str,
        params: dict[str, str] | None = None,
        json_data: Any = None,
    ) -> httpx.Response:
        """Make an HTTP request, retrying transient failures.

        Returns:
            The first response with a status below 500.

        Raises:
            SyncClientError: When every attempt failed.
        """
        backoff = 0.5
        last_error = ""

        async with self._client() as client:
            for attempt in range(self.max_retries):
                try:
                    response = await client.request(
                        method, path, params=params, json=json_data
                    )
                    if response.status_code < 500:
                        return response

                    last_error = f"HTTP {response.status_code}: {response.text}"
                    logger.warning(
                        f"Server error {response.status_code}, "
                        f"attempt {attempt + 1}/{self.max_retries}"
                    )
                except httpx.ConnectError as e:
                    last_error = f"Connection failed: {e}"
                    logger.warning(
                        f"Connection failed, attempt {attempt + 1}/{self.max_retries}"
                    )
                except httpx.TimeoutException as e:
                    last_error = f"Request timeout: {e}"
                    logger.warning(
                        f"Request timeout, attempt {attempt + 1}/{self.max_retries}"
                    )

                if attempt < self.max_retries - 1:
                    await asyncio.sleep(backoff)
                    backoff *= 2

        raise SyncClientError(
            f"{method} {path} failed after {self.max_retries} attempts: {last_error}"
        )

    async def fetch(self) -> FetchResult:
        """Fetch the state, sending the last-seen signature.

        Returns:
            FetchResult with ``changed=False`` and no document when the
            server reports the signature is still current.
        """
        params = {"sig": self._last_sig} if self._last_sig else None
        response = await self._request_with_retry("GET", "/api/state", params=params)
        if response.status_code != 200:
            raise SyncClientError(
                f"HTTP {response.status_code}: {response.text}",
                status_code=response.status_code,
            )

        data = response.json()
        if "clients" not in data and data.get("sig") == self._last_sig:
            return FetchResult(changed=False, sig=data["sig"])

        try:
            document = StateDocument.from_dict(data)
        except ValueError as e:
            raise SyncClientError(f"Malformed state from server: {e}") from e
        self._last_sig = document.sig
        return FetchResult(changed=True, sig=document.sig, document=document)

    async def push(self, clients: list[Any], bookings: list[Any]) -> str:
        """Replace the shared state.

        The last-seen signature travels as ``prevSig``; the server treats it
        as a hint and does not reject stale writes.

        Returns:
            Signature of the stored document.

        Raises:
            InvalidPayload: If the server rejected the body.
            SyncClientError: On any other failure.
        """
        body: dict[str, Any] = {"clients": clients, "bookings": bookings}
        if self._last_sig:
            body["prevSig"] = self._last_sig

        response = await self._request_with_retry("PUT", "/api/state", json_data=body)
        if response.status_code == 400:
            raise InvalidPayload(response.json().get("error", "Invalid payload"))
        if response.status_code != 200:
            raise SyncClientError(
                f"HTTP {response.status_code}: {response.text}",
                status_code=response.status_code,
            )

        sig = response.json()["sig"]
        self._last_sig = sig
        return sig

    async def health(self) -> dict[str, Any]:
        """Get the server's health report."""
        response = await self._request_with_retry("GET", "/api/health")
        if response.status_code != 200:
            raise SyncClientError(
                f"HTTP {response.status_code}: {response.text}",
                status_code=response.status_code,
            )
        return response.json()

    async def stream(self) -> AsyncIterator[StateDocument]:
        """Yield documents from the server's event stream.

        The first document is the state at connect time; each later one
        follows a write. Ends when the server closes the connection.
        """
        async with self._client(timeout=None) as client:
            async with client.stream("GET", "/api/state/stream") as response:
                if response.status_code != 200:
                    await response.aread()
                    raise SyncClientError(
                        f"HTTP {response.status_code}: {response.text}",
                        status_code=response.status_code,
                    )

                async for line in response.aiter_lines():
                    if not line.startswith("data:"):
                        continue
                    try:
                        data = json.loads(line[5:].strip())
                        document = StateDocument.from_dict(data)
                    except (json.JSONDecodeError, ValueError) as e:
                        logger.error(f"Invalid event in stream: {e}")
                        continue

                    self._last_sig = document.sig
                    yield document

    async def poll_loop(
        self,
        on_change: ChangeCallback,
        interval_seconds: float = 5.0,
        stop_event: asyncio.Event | None = None,
    ) -> None:
        """Poll until stopped, calling ``on_change`` for each new version.

        Args:
            on_change: Called with every document whose signature differs
                from the last one seen. May be sync or async.
            interval_seconds: Delay between polls.
            stop_event: Event to signal the loop should stop.
        """
        logger.info(f"Starting poll loop with {interval_seconds}s interval")

        while not (stop_event and stop_event.is_set()):
            try:
                result = await self.fetch()
                if result.changed and result.document is not None:
                    outcome = on_change(result.document)
                    if asyncio.iscoroutine(outcome):
                        await outcome
            except SyncClientError as e:
                logger.error(f"Poll failed: {e}")

            if stop_event:
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=interval_seconds)
                except asyncio.TimeoutError:
                    pass
            else:
                await asyncio.sleep(interval_seconds)

        logger.info("Poll loop stopped")
