"""Event dispatch: signing, delivery with bounded retry, and log recording.

Success means the HTTP round trip completed. Any status code the subscriber
answers with counts as delivered; only transport failures (timeouts,
connection and DNS errors) are retried, with a linear backoff of
``attempt * backoff`` seconds between tries.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional, Protocol, Sequence

import httpx

from .errors import DeliveryFailed
from .metrics import ATTEMPTS, DELIVERIES
from .models import DeliveryLog, Event, Subscriber, failure_result, success_result
from .signer import SIGNATURE_HEADER, canonical_json, sign
from .store import DocumentStore

if TYPE_CHECKING:
    from .broadcast import LogBroadcaster

logger = logging.getLogger(__name__)

Outcome = dict[str, Any]
Deliver = Callable[[Subscriber], Awaitable[Outcome]]


class FanOut(Protocol):
    async def run(
        self, subscribers: Sequence[Subscriber], deliver: Deliver
    ) -> list[Outcome]: ...


class SequentialFanOut:
    """One subscriber at a time; logs follow subscriber list order."""

    async def run(
        self, subscribers: Sequence[Subscriber], deliver: Deliver
    ) -> list[Outcome]:
        results: list[Outcome] = []
        for subscriber in subscribers:
            results.append(await deliver(subscriber))
        return results


class ConcurrentFanOut:
    """Bounded parallel delivery; logs and results follow completion order."""

    def __init__(self, limit: int = 4) -> None:
        self.limit = max(1, limit)

    async def run(
        self, subscribers: Sequence[Subscriber], deliver: Deliver
    ) -> list[Outcome]:
        sem = asyncio.Semaphore(self.limit)
        results: list[Outcome] = []

        async def _one(subscriber: Subscriber) -> None:
            async with sem:
                results.append(await deliver(subscriber))

        tasks = [asyncio.create_task(_one(s)) for s in subscribers]
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            # siblings must not keep writing logs after the trigger fails
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise
        return results


def build_fanout(mode: str, concurrency: int) -> FanOut:
    if mode == "concurrent":
        return ConcurrentFanOut(concurrency)
    return SequentialFanOut()


def _response_data(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


class DispatchEngine:
    def __init__(
        self,
        store: DocumentStore,
        client: httpx.AsyncClient,
        secret: str,
        broadcaster: Optional[LogBroadcaster] = None,
        fanout: Optional[FanOut] = None,
        max_attempts: int = 3,
        timeout: float = 5.0,
        backoff: float = 0.5,
        default_message: str = "hello from backend",
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._store = store
        self._client = client
        self._secret = secret
        self._broadcaster = broadcaster
        self._fanout = fanout or SequentialFanOut()
        self._max_attempts = max_attempts
        self._timeout = timeout
        self._backoff = backoff
        self._default_message = default_message
        self._sleep = sleep

    async def trigger(self, message: Optional[str] = None) -> list[Outcome]:
        """Deliver one new event to every verified subscriber.

        Returns ``[{"url", "result"}, ...]`` once every subscriber has been
        attempted. Store errors propagate; delivery errors are recorded.
        """

        event = Event(message=message or self._default_message)
        payload = event.to_wire()
        state = await self._store.read()
        targets = [s for s in state.subscribers if s.verified]
        if not targets:
            logger.info("event at %s has no verified subscribers", event.timestamp)
            return []

        async def _deliver(subscriber: Subscriber) -> Outcome:
            return await self._deliver(subscriber, payload)

        return await self._fanout.run(targets, _deliver)

    async def _deliver(self, subscriber: Subscriber, payload: dict[str, Any]) -> Outcome:
        result = await self.post_with_retry(subscriber.url, payload)
        log = DeliveryLog(
            subscriber_id=subscriber.id,
            url=subscriber.url,
            payload=payload,
            result=result,
        )
        async with self._store.mutate() as state:
            state.logs.append(log)
        DELIVERIES.labels("success" if result["success"] else "failed").inc()
        if self._broadcaster is not None:
            self._broadcaster.publish(log)
        return {"url": subscriber.url, "result": result}

    async def post_with_retry(self, url: str, payload: dict[str, Any]) -> dict[str, Any]:
        body = canonical_json(payload)
        headers = {
            "Content-Type": "application/json",
            SIGNATURE_HEADER: sign(payload, self._secret),
        }
        last_error = "unknown"
        for attempt in range(1, self._max_attempts + 1):
            ATTEMPTS.inc()
            try:
                response = await self._client.post(
                    url, content=body, headers=headers, timeout=self._timeout
                )
            except (httpx.HTTPError, httpx.InvalidURL) as exc:
                failure = DeliveryFailed(str(exc) or type(exc).__name__)
                last_error = failure.message
                logger.warning(
                    "delivery to %s failed (attempt %d/%d): %s",
                    url,
                    attempt,
                    self._max_attempts,
                    last_error,
                )
                if attempt < self._max_attempts:
                    await self._sleep(self._backoff * attempt)
                continue
            logger.info("delivered event to %s (status %d)", url, response.status_code)
            return success_result(response.status_code, _response_data(response))
        return failure_result(last_error)
