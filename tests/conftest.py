from __future__ import annotations

import json
from typing import Callable

import httpx
import pytest
from fastapi.testclient import TestClient

from hookrelay import main, ratelimit
from hookrelay.config import settings

Handler = Callable[[httpx.Request], httpx.Response]


class FakeEndpoints:
    """Stands in for subscriber hosts; unknown hosts are unreachable."""

    def __init__(self) -> None:
        self.handlers: dict[str, Handler] = {}
        self.requests: list[httpx.Request] = []

    def route(self, host: str, handler: Handler) -> None:
        self.handlers[host] = handler

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self.handlers.get(request.url.host)
        if handler is None:
            raise httpx.ConnectError("connection refused", request=request)
        return handler(request)

    def hits(self, url: str) -> list[httpx.Request]:
        target = httpx.URL(url)
        return [
            r
            for r in self.requests
            if r.url.host == target.host and r.url.path == target.path
        ]

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


def echo_subscriber(request: httpx.Request) -> httpx.Response:
    """Cooperative endpoint: echoes challenges and accepts deliveries."""

    body = json.loads(request.content or b"{}")
    if request.url.path.endswith("/verify"):
        return httpx.Response(200, json={"challenge": body.get("challenge")})
    return httpx.Response(200, json={"received": True})


@pytest.fixture
def endpoints() -> FakeEndpoints:
    return FakeEndpoints()


@pytest.fixture
def relay(endpoints: FakeEndpoints, monkeypatch):
    monkeypatch.setattr(settings, "DB_PATH", ":memory:")
    monkeypatch.setattr(settings, "DELIVERY_BACKOFF_SECONDS", 0.0)
    monkeypatch.setattr(settings, "RATE_LIMIT_ENABLED", False)
    monkeypatch.setattr(main, "_http_client", endpoints.client)
    ratelimit.reset()
    with TestClient(main.app) as client:
        yield client
