from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager, suppress
from datetime import datetime, timezone
from typing import Optional

import httpx
from fastapi import (
    Body,
    Depends,
    FastAPI,
    Query,
    Request,
    WebSocket,
    status,
)
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel

from .auth import extract_token
from .broadcast import LogBroadcaster
from .config import reload_settings, settings
from .dispatcher import DispatchEngine, build_fanout
from .errors import (
    AuthorizationFailed,
    HookRelayError,
    InvalidInput,
    NotFound,
    StoreUnavailable,
)
from .logging_setup import RequestLogMiddleware, init_logging
from .metrics import LAT, REQS, router as metrics_router
from .ratelimit import allow
from .store import DocumentStore, build_store
from .subscriptions import SubscriptionManager

logger = logging.getLogger(__name__)


class Health(BaseModel):
    status: str
    time: str


class SubscribeRequest(BaseModel):
    url: Optional[str] = None


class EventRequest(BaseModel):
    message: Optional[str] = None


def _http_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=settings.DELIVERY_TIMEOUT_SECONDS)


@asynccontextmanager
async def lifespan(app: FastAPI):
    reload_settings()
    store = build_store(settings.DB_PATH)
    # no traffic without a usable store
    await store.open()
    client = _http_client()
    broadcaster = LogBroadcaster(
        store,
        settings.SOCKET_SECRET,
        snapshot_size=settings.LOG_SNAPSHOT_SIZE,
        queue_size=settings.OBSERVER_QUEUE_SIZE,
    )
    app.state.store = store
    app.state.broadcaster = broadcaster
    app.state.subscriptions = SubscriptionManager(
        store, client, verify_timeout=settings.VERIFY_TIMEOUT_SECONDS
    )
    app.state.dispatcher = DispatchEngine(
        store,
        client,
        settings.WEBHOOK_SECRET,
        broadcaster=broadcaster,
        fanout=build_fanout(settings.FANOUT_MODE, settings.FANOUT_CONCURRENCY),
        max_attempts=settings.DELIVERY_MAX_ATTEMPTS,
        timeout=settings.DELIVERY_TIMEOUT_SECONDS,
        backoff=settings.DELIVERY_BACKOFF_SECONDS,
        default_message=settings.DEFAULT_EVENT_MESSAGE,
    )
    logger.info("HookRelay ready (store=%s)", settings.DB_PATH)
    try:
        yield
    finally:
        await client.aclose()
        await store.close()


init_logging(settings.LOG_LEVEL)

app = FastAPI(title="HookRelay", version="0.1.0", lifespan=lifespan)
app.add_middleware(RequestLogMiddleware)
app.include_router(metrics_router())

origins = [o.strip() for o in settings.CORS_ALLOW_ORIGINS.split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins or ["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

_STATUS_BY_ERROR: dict[type[HookRelayError], int] = {
    InvalidInput: 400,
    NotFound: 404,
    StoreUnavailable: 503,
}


@app.exception_handler(HookRelayError)
async def _hookrelay_error(request: Request, exc: HookRelayError):
    status_code = _STATUS_BY_ERROR.get(type(exc), 500)
    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(exc.to_dict(), status_code=status_code)


@app.middleware("http")
async def _metrics_and_rate(request: Request, call_next):
    method = request.method
    path = request.url.path
    start = time.time()
    status_code = 500
    try:
        if settings.RATE_LIMIT_ENABLED:
            client_host = request.client.host if request.client else "unknown"
            if not allow(client_host, settings.RATE_LIMIT_RPS, settings.RATE_LIMIT_BURST):
                response = JSONResponse({"error": "rate limit"}, status_code=429)
                status_code = response.status_code
                return response
        response = await call_next(request)
        status_code = response.status_code
        return response
    finally:
        duration = time.time() - start
        REQS.labels(method, path, str(status_code)).inc()
        LAT.labels(method, path).observe(duration)


def get_store(request: Request) -> DocumentStore:
    return request.app.state.store


def get_subscriptions(request: Request) -> SubscriptionManager:
    return request.app.state.subscriptions


def get_dispatcher(request: Request) -> DispatchEngine:
    return request.app.state.dispatcher


@app.get("/", response_class=PlainTextResponse)
def root():
    return "Webhook relay operational"


@app.get("/health", response_model=Health)
def health():
    return Health(status="ok", time=datetime.now(timezone.utc).isoformat())


@app.post("/subscribe")
async def subscribe(
    payload: Optional[SubscribeRequest] = Body(default=None),
    manager: SubscriptionManager = Depends(get_subscriptions),
):
    subscriber = await manager.register(payload.url if payload else None)
    return {"success": True, "subscriber": subscriber.to_wire()}


@app.get("/subscribers")
async def list_subscribers(manager: SubscriptionManager = Depends(get_subscriptions)):
    subscribers = await manager.list()
    return {"subscribers": [s.to_wire() for s in subscribers]}


@app.delete("/subscribers/{subscriber_id}")
async def delete_subscriber(
    subscriber_id: str,
    manager: SubscriptionManager = Depends(get_subscriptions),
):
    await manager.remove(subscriber_id)
    return {"success": True}


@app.post("/event")
async def trigger_event(
    payload: Optional[EventRequest] = Body(default=None),
    dispatcher: DispatchEngine = Depends(get_dispatcher),
):
    sent = await dispatcher.trigger(payload.message if payload else None)
    return {"sent": sent}


@app.get("/logs")
async def get_logs(
    limit: Optional[int] = Query(None, ge=1, description="newest entries only"),
    store: DocumentStore = Depends(get_store),
):
    state = await store.read()
    logs = state.logs[::-1]
    if limit is not None:
        logs = logs[:limit]
    return {"logs": [log.to_wire() for log in logs]}


@app.websocket("/ws")
async def live_logs(websocket: WebSocket, token: Optional[str] = Query(None)):
    broadcaster: LogBroadcaster = websocket.app.state.broadcaster
    try:
        broadcaster.authorize(
            extract_token(websocket.headers.get("authorization"), token)
        )
    except AuthorizationFailed as exc:
        logger.warning("rejected live observer: %s", exc.message)
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=exc.message)
        return

    await websocket.accept()
    # register before the snapshot so nothing published in between is lost
    observer = broadcaster.connect()

    async def pump() -> None:
        while True:
            await websocket.send_json(await observer.next_message())

    pump_task: asyncio.Task[None] | None = None
    try:
        await websocket.send_json({"event": "logs", "data": await broadcaster.snapshot()})
        pump_task = asyncio.create_task(pump())
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
    finally:
        if pump_task is not None:
            pump_task.cancel()
            with suppress(asyncio.CancelledError, Exception):
                await pump_task
        broadcaster.disconnect(observer)
