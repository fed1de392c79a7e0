from __future__ import annotations

from fastapi.testclient import TestClient

from conftest import FakeEndpoints, echo_subscriber
from hookrelay import main
from hookrelay.config import settings
from hookrelay.dispatcher import ConcurrentFanOut
from hookrelay.errors import StoreUnavailable


def test_root_and_health(relay):
    assert relay.get("/").text == "Webhook relay operational"
    response = relay.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_subscribe_requires_url(relay):
    for body in ({}, {"url": ""}):
        response = relay.post("/subscribe", json=body)
        assert response.status_code == 400
        assert response.json()["error"] == "url is required"
    assert relay.post("/subscribe").status_code == 400
    assert relay.get("/subscribers").json() == {"subscribers": []}


def test_unreachable_subscriber_stays_pending_and_gets_nothing(relay, endpoints):
    response = relay.post("/subscribe", json={"url": "http://a.test"})
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["subscriber"]["status"] == "pending"
    assert set(body["subscriber"]) == {"id", "url", "status", "challenge", "createdAt"}

    sent = relay.post("/event", json={"message": "hi"}).json()

    assert sent == {"sent": []}
    assert relay.get("/logs").json() == {"logs": []}
    assert endpoints.hits("http://a.test/") == []


def test_verified_subscriber_receives_event(relay, endpoints: FakeEndpoints):
    endpoints.route("b.test", echo_subscriber)
    subscriber = relay.post("/subscribe", json={"url": "http://b.test"}).json()["subscriber"]
    assert subscriber["status"] == "verified"

    sent = relay.post("/event", json={"message": "hi"}).json()["sent"]

    assert sent == [
        {
            "url": "http://b.test",
            "result": {"success": True, "status": 200, "data": {"received": True}},
        }
    ]
    logs = relay.get("/logs").json()["logs"]
    assert len(logs) == 1
    assert logs[0]["subscriberId"] == subscriber["id"]
    assert logs[0]["payload"]["message"] == "hi"
    assert logs[0]["result"]["success"] is True


def test_register_twice_returns_same_subscriber(relay, endpoints: FakeEndpoints):
    endpoints.route("b.test", echo_subscriber)
    first = relay.post("/subscribe", json={"url": "http://b.test"}).json()["subscriber"]
    second = relay.post("/subscribe", json={"url": "http://b.test"}).json()["subscriber"]
    assert first == second
    assert len(relay.get("/subscribers").json()["subscribers"]) == 1


def test_deleted_subscriber_gets_nothing_and_logs_survive(relay, endpoints: FakeEndpoints):
    endpoints.route("b.test", echo_subscriber)
    subscriber = relay.post("/subscribe", json={"url": "http://b.test"}).json()["subscriber"]
    relay.post("/event", json={"message": "before"})
    before = relay.get("/logs").json()["logs"]

    assert relay.delete(f"/subscribers/{subscriber['id']}").json() == {"success": True}
    deliveries = len(endpoints.hits("http://b.test"))
    sent = relay.post("/event", json={"message": "after"}).json()

    assert sent == {"sent": []}
    assert len(endpoints.hits("http://b.test")) == deliveries
    assert relay.get("/logs").json()["logs"] == before


def test_delete_unknown_subscriber(relay):
    response = relay.delete("/subscribers/nope")
    assert response.status_code == 404
    assert response.json()["code"] == "not_found"


def test_event_without_body_uses_default_message(relay, endpoints: FakeEndpoints):
    endpoints.route("b.test", echo_subscriber)
    relay.post("/subscribe", json={"url": "http://b.test"})
    assert relay.post("/event").status_code == 200
    assert relay.get("/logs").json()["logs"][0]["payload"]["message"] == "hello from backend"


def test_listing_orders(relay, endpoints: FakeEndpoints):
    for host in ("z", "y", "x"):
        endpoints.route(f"{host}.test", echo_subscriber)
        relay.post("/subscribe", json={"url": f"http://{host}.test"})
    for n in range(3):
        relay.post("/event", json={"message": f"m{n}"})

    urls = [s["url"] for s in relay.get("/subscribers").json()["subscribers"]]
    assert urls == ["http://z.test", "http://y.test", "http://x.test"]

    logs = relay.get("/logs").json()["logs"]
    assert len(logs) == 9
    assert [log["payload"]["message"] for log in logs[:3]] == ["m2"] * 3
    assert [log["url"] for log in logs[:3]] == ["http://x.test", "http://y.test", "http://z.test"]
    assert len(relay.get("/logs", params={"limit": 2}).json()["logs"]) == 2


def test_failed_delivery_is_recorded_not_raised(relay, endpoints: FakeEndpoints):
    endpoints.route("b.test", echo_subscriber)
    relay.post("/subscribe", json={"url": "http://b.test"})
    del endpoints.handlers["b.test"]

    response = relay.post("/event", json={"message": "hi"})

    assert response.status_code == 200
    result = response.json()["sent"][0]["result"]
    assert result == {"success": False, "error": "connection refused"}
    assert len(endpoints.hits("http://b.test")) == 3


def test_store_failure_is_surfaced(relay, monkeypatch):
    async def broken_read():
        raise StoreUnavailable("disk gone")

    monkeypatch.setattr(relay.app.state.store, "read", broken_read)

    response = relay.get("/subscribers")
    assert response.status_code == 503
    assert response.json()["error"] == "disk gone"
    assert relay.post("/event", json={"message": "hi"}).status_code == 503


def test_delivery_settings_reach_the_engine(endpoints: FakeEndpoints, monkeypatch):
    monkeypatch.setattr(settings, "DB_PATH", ":memory:")
    monkeypatch.setattr(settings, "DELIVERY_BACKOFF_SECONDS", 0.0)
    monkeypatch.setattr(settings, "RATE_LIMIT_ENABLED", False)
    monkeypatch.setattr(settings, "DELIVERY_MAX_ATTEMPTS", 2)
    monkeypatch.setattr(settings, "FANOUT_MODE", "concurrent")
    monkeypatch.setattr(main, "_http_client", endpoints.client)
    endpoints.route("b.test", echo_subscriber)

    with TestClient(main.app) as client:
        assert isinstance(client.app.state.dispatcher._fanout, ConcurrentFanOut)
        subscribed = client.post("/subscribe", json={"url": "http://b.test"}).json()
        assert subscribed["subscriber"]["status"] == "verified"
        del endpoints.handlers["b.test"]

        sent = client.post("/event", json={"message": "hi"}).json()["sent"]
        listed = client.get("/subscribers").json()["subscribers"]

    assert sent[0]["result"]["success"] is False
    assert len(endpoints.hits("http://b.test/")) == 2
    assert [s["status"] for s in listed] == ["verified"]
