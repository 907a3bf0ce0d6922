"""FastAPI application exposing the synchronization service."""

import asyncio
import json
import logging
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, AsyncIterator, Awaitable, Callable

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse, PlainTextResponse, StreamingResponse

from ..config import Config
from ..exceptions import InvalidPayload, StorageUnavailable, SubscriberLimitReached
from ..store import DocumentStore, StateDocument
from ..sync import QueueChannel, SubscriberRegistry, SyncService

logger = logging.getLogger(__name__)

STATIC_MAX_AGE = 7 * 24 * 60 * 60


def format_event(doc: StateDocument) -> str:
    """Render a document as one server-sent event frame."""
    return f"data: {json.dumps(doc.to_dict())}\n\n"


async def event_stream(
    service: SyncService,
    channel: QueueChannel,
    subscriber_id: str,
    is_disconnected: Callable[[], Awaitable[bool]],
    keepalive_seconds: float = 15.0,
) -> AsyncIterator[str]:
    """Yield event frames for one subscriber until the client goes away.

    A comment line is sent whenever no document arrives within
    ``keepalive_seconds``, which also bounds how long a silently dropped
    connection stays registered.
    """
    try:
        yield "\n"
        while not await is_disconnected():
            try:
                doc = await asyncio.wait_for(channel.get(), timeout=keepalive_seconds)
            except asyncio.TimeoutError:
                yield ": keepalive\n\n"
                continue
            yield format_event(doc)
    finally:
        channel.close()
        service.unsubscribe(subscriber_id)
        logger.info(f"Stream subscriber {subscriber_id} disconnected")


def _static_response(file_path: Path) -> FileResponse:
    if file_path.suffix == ".html":
        cache_control = "no-cache"
    else:
        cache_control = f"public, max-age={STATIC_MAX_AGE}"
    return FileResponse(file_path, headers={"Cache-Control": cache_control})


def create_app(config: Config, service: SyncService | None = None) -> FastAPI:
    """Create the statesync FastAPI application.

    Args:
        config: Application configuration.
        service: Optional pre-built SyncService. Built from ``config`` if None.

    Returns:
        Configured FastAPI application.
    """
    if service is None:
        service = SyncService(
            DocumentStore(config.storage.state_path),
            SubscriberRegistry(max_subscribers=config.stream.max_subscribers),
        )

    public_dir = Path(config.storage.public_dir).expanduser().resolve()

    app = FastAPI(
        title="statesync",
        description="Shared client and booking state with live updates",
        version="0.1.0",
    )

    app.state.config = config
    app.state.service = service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.server.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - start) * 1000
        logger.info(
            f"{request.method} {request.url.path} {response.status_code} "
            f"{elapsed_ms:.1f} ms"
        )
        return response

    # ==================== Error handlers ====================

    @app.exception_handler(InvalidPayload)
    async def invalid_payload_handler(request: Request, exc: InvalidPayload):
        logger.warning(f"Rejected write: {exc}")
        return JSONResponse(status_code=400, content={"error": "Invalid payload"})

    @app.exception_handler(StorageUnavailable)
    async def storage_handler(request: Request, exc: StorageUnavailable):
        logger.error(f"Storage failure: {exc}", exc_info=exc)
        return JSONResponse(
            status_code=500,
            content={"error": f"Failed to {exc.operation} state."},
        )

    @app.exception_handler(SubscriberLimitReached)
    async def subscriber_limit_handler(request: Request, exc: SubscriberLimitReached):
        logger.warning(str(exc))
        return JSONResponse(status_code=503, content={"error": str(exc)})

    # ==================== API Routes ====================

    @app.get("/api/state")
    async def get_state(sig: str | None = None) -> dict[str, Any]:
        """Current state, or only its signature if ``sig`` is still current."""
        return await service.read(sig)

    @app.put("/api/state")
    async def put_state(request: Request):
        """Replace the whole state and notify stream subscribers."""
        content_length = request.headers.get("content-length")
        if content_length and int(content_length) > config.server.max_body_bytes:
            return JSONResponse(status_code=413, content={"error": "Payload too large"})

        raw = await request.body()
        if len(raw) > config.server.max_body_bytes:
            return JSONResponse(status_code=413, content={"error": "Payload too large"})

        try:
            body = json.loads(raw) if raw else {}
        except ValueError as e:
            raise InvalidPayload(f"Body is not JSON: {e}") from e
        if not isinstance(body, dict):
            raise InvalidPayload("Body must be a JSON object")

        result = await service.write(
            body.get("clients"),
            body.get("bookings"),
            prev_sig=body.get("prevSig"),
        )
        return {"ok": True, "sig": result["sig"]}

    @app.get("/api/state/stream")
    async def stream_state(request: Request):
        """Push the current state now and after every write."""
        channel = QueueChannel(maxsize=config.stream.queue_size)
        subscriber_id = await service.subscribe(channel)
        logger.info(
            f"Stream subscriber {subscriber_id} connected "
            f"({len(service.registry)} active)"
        )

        return StreamingResponse(
            event_stream(
                service,
                channel,
                subscriber_id,
                request.is_disconnected,
                keepalive_seconds=config.stream.keepalive_seconds,
            ),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
                "X-Accel-Buffering": "no",
            },
        )

    @app.get("/api/health")
    async def api_health() -> dict[str, Any]:
        """Liveness check. Always 200 while the process is serving."""
        current = service.store.current
        return {
            "status": "ok",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "environment": config.server.environment,
            "dataDir": str(service.store.path.parent),
            "publicDir": str(public_dir),
            "subscribers": len(service.registry),
            "sig": current.sig if current else None,
        }

    # ==================== Static files ====================

    @app.get("/{full_path:path}")
    async def static_files(full_path: str):
        """Serve a file from the public directory, falling back to index.html."""
        if full_path.startswith("api/"):
            return PlainTextResponse("Not Found", status_code=404)

        if full_path:
            candidate = (public_dir / full_path).resolve()
            if candidate.is_relative_to(public_dir) and candidate.is_file():
                return _static_response(candidate)

        index_file = public_dir / "index.html"
        if index_file.is_file():
            return _static_response(index_file)
        return PlainTextResponse("Not Found", status_code=404)

    return app
