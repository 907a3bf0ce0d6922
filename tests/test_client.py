"""Tests for the sync client."""

import asyncio
import json
import pytest
from unittest.mock import AsyncMock, patch

import httpx

from statesync.config import Config, StorageConfig
from statesync.exceptions import InvalidPayload, SyncClientError
from statesync.server import create_app
from statesync.sync import SyncClient


@pytest.fixture
def app(tmp_path):
    """Create a server app backed by a temp directory."""
    config = Config(storage=StorageConfig(data_dir=str(tmp_path / "data")))
    return create_app(config)


@pytest.fixture
def client(app):
    """Create a sync client talking to the app in-process."""
    return SyncClient(
        "http://statesync.test",
        max_retries=2,
        transport=httpx.ASGITransport(app=app),
    )


def mock_client(handler, max_retries: int = 3) -> SyncClient:
    """Create a sync client backed by a request handler function."""
    return SyncClient(
        "http://statesync.test",
        max_retries=max_retries,
        transport=httpx.MockTransport(handler),
    )


class TestFetch:
    """Tests for conditional fetches."""

    @pytest.mark.asyncio
    async def test_first_fetch_is_full(self, client):
        """Test the first fetch returns a document."""
        result = await client.fetch()

        assert result.changed is True
        assert result.document is not None
        assert result.document.clients == ()
        assert client.last_sig == result.sig

    @pytest.mark.asyncio
    async def test_second_fetch_unchanged(self, client):
        """Test polling again without writes reports no change."""
        first = await client.fetch()

        second = await client.fetch()

        assert second.changed is False
        assert second.document is None
        assert second.sig == first.sig

    @pytest.mark.asyncio
    async def test_fetch_sends_sig(self):
        """Test the last-seen signature travels as a query parameter."""
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.url.params.get("sig"))
            return httpx.Response(200, json={"clients": [], "bookings": [], "sig": "T5"})

        client = mock_client(handler)
        await client.fetch()
        await client.fetch()

        assert seen == [None, "T5"]


class TestPush:
    """Tests for pushing state."""

    @pytest.mark.asyncio
    async def test_push_then_other_client_sees_it(self, app, client):
        """Test one client's write reaches another client's poll."""
        other = SyncClient(
            "http://statesync.test", transport=httpx.ASGITransport(app=app)
        )
        await other.fetch()

        sig = await client.push([{"id": 1, "name": "Rex"}], [])
        result = await other.fetch()

        assert result.changed is True
        assert result.sig == sig
        assert result.document.clients == ({"id": 1, "name": "Rex"},)

    @pytest.mark.asyncio
    async def test_push_sends_prev_sig(self):
        """Test the last-seen signature is sent as prevSig."""
        bodies = []

        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "GET":
                return httpx.Response(200, json={"clients": [], "bookings": [], "sig": "T0"})
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json={"ok": True, "sig": "T1"})

        client = mock_client(handler)
        await client.fetch()
        sig = await client.push([], [])

        assert sig == "T1"
        assert bodies == [{"clients": [], "bookings": [], "prevSig": "T0"}]
        assert client.last_sig == "T1"

    @pytest.mark.asyncio
    async def test_push_invalid(self, client):
        """Test a 400 response raises InvalidPayload."""
        with pytest.raises(InvalidPayload):
            await client.push("not-a-list", [])


class TestRetries:
    """Tests for retry behaviour."""

    @pytest.mark.asyncio
    async def test_retries_server_errors(self):
        """Test 5xx responses are retried until success."""
        responses = [
            httpx.Response(500, json={"error": "Failed to read state."}),
            httpx.Response(200, json={"clients": [], "bookings": [], "sig": "T1"}),
        ]

        def handler(request: httpx.Request) -> httpx.Response:
            return responses.pop(0)

        client = mock_client(handler)
        with patch("statesync.sync.client.asyncio.sleep", new=AsyncMock()):
            result = await client.fetch()

        assert result.sig == "T1"

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self):
        """Test persistent connection failures raise SyncClientError."""
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            raise httpx.ConnectError("connection refused", request=request)

        client = mock_client(handler, max_retries=3)
        with patch("statesync.sync.client.asyncio.sleep", new=AsyncMock()):
            with pytest.raises(SyncClientError):
                await client.fetch()

        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_client_errors_not_retried(self):
        """Test 4xx responses are returned immediately."""
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(404, text="Not Found")

        client = mock_client(handler)
        with pytest.raises(SyncClientError) as exc_info:
            await client.health()

        assert exc_info.value.status_code == 404
        assert len(calls) == 1


class TestStream:
    """Tests for consuming the event stream."""

    @pytest.mark.asyncio
    async def test_stream_parses_frames(self):
        """Test data frames become documents and comments are skipped."""
        body = (
            "\n"
            'data: {"clients": [], "bookings": [], "sig": "T0"}\n\n'
            ": keepalive\n\n"
            'data: {"clients": [{"id": 1}], "bookings": [], "sig": "T1"}\n\n'
        )

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/api/state/stream"
            return httpx.Response(
                200, text=body, headers={"content-type": "text/event-stream"}
            )

        client = mock_client(handler)
        docs = [doc async for doc in client.stream()]

        assert [doc.sig for doc in docs] == ["T0", "T1"]
        assert docs[1].clients == ({"id": 1},)
        assert client.last_sig == "T1"

    @pytest.mark.asyncio
    async def test_stream_error_status(self):
        """Test a refused stream raises SyncClientError."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503, json={"error": "Subscriber limit reached (1)"})

        client = mock_client(handler)
        with pytest.raises(SyncClientError) as exc_info:
            async for _ in client.stream():
                pass

        assert exc_info.value.status_code == 503


class TestPollLoop:
    """Tests for the poll loop."""

    @pytest.mark.asyncio
    async def test_poll_loop_reports_changes_once(self, app, client):
        """Test on_change fires for new versions only."""
        stop = asyncio.Event()
        seen = []

        async def on_change(doc):
            seen.append(doc.sig)
            if len(seen) == 1:
                writer = SyncClient(
                    "http://statesync.test", transport=httpx.ASGITransport(app=app)
                )
                await writer.push([{"id": 1}], [])
            else:
                stop.set()

        await asyncio.wait_for(
            client.poll_loop(on_change, interval_seconds=0.01, stop_event=stop),
            timeout=5.0,
        )

        assert len(seen) == 2
        assert seen[0] != seen[1]
