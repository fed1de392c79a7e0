from __future__ import annotations

import logging
from typing import Optional

import httpx

from .errors import InvalidInput, NotFound, VerificationFailed
from .metrics import VERIFICATIONS
from .models import Subscriber
from .store import DocumentStore

logger = logging.getLogger(__name__)


def verify_url(url: str) -> str:
    return url + "verify" if url.endswith("/") else url + "/verify"


class SubscriptionManager:
    """Owns subscriber registration, verification, listing and removal."""

    def __init__(
        self,
        store: DocumentStore,
        client: httpx.AsyncClient,
        verify_timeout: float = 5.0,
    ) -> None:
        self._store = store
        self._client = client
        self._verify_timeout = verify_timeout

    async def register(self, url: Optional[str]) -> Subscriber:
        """Register ``url`` and try the challenge handshake once.

        An existing ``url`` is returned untouched. A failed handshake leaves
        the new subscriber pending; it does not fail the registration.
        """

        if not url or not url.strip():
            raise InvalidInput("url is required")

        async with self._store.mutate() as state:
            for existing in state.subscribers:
                if existing.url == url:
                    return existing
            subscriber = Subscriber(url=url)
            state.subscribers.append(subscriber)
        logger.info("registered subscriber %s for %s", subscriber.id, url)

        try:
            await self._handshake(subscriber)
        except VerificationFailed as exc:
            VERIFICATIONS.labels("failed").inc()
            logger.warning("challenge not confirmed for %s -> %s", url, exc.message)
            return subscriber

        VERIFICATIONS.labels("verified").inc()
        subscriber.status = "verified"
        async with self._store.mutate() as state:
            for stored in state.subscribers:
                if stored.id == subscriber.id:
                    stored.status = "verified"
                    break
            else:
                logger.info("subscriber %s removed during verification", subscriber.id)
        logger.info("subscriber %s verified", subscriber.id)
        return subscriber

    async def _handshake(self, subscriber: Subscriber) -> None:
        try:
            response = await self._client.post(
                verify_url(subscriber.url),
                json={"challenge": subscriber.challenge},
                timeout=self._verify_timeout,
            )
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            raise VerificationFailed(str(exc) or type(exc).__name__) from exc
        if not response.is_success:
            raise VerificationFailed(f"verify returned status {response.status_code}")
        try:
            body = response.json()
        except ValueError as exc:
            raise VerificationFailed("verify response is not JSON") from exc
        echoed = body.get("challenge") if isinstance(body, dict) else None
        if echoed != subscriber.challenge:
            raise VerificationFailed(
                f"challenge mismatch (status {response.status_code})"
            )

    async def list(self) -> list[Subscriber]:
        state = await self._store.read()
        return state.subscribers

    async def remove(self, subscriber_id: str) -> None:
        async with self._store.mutate() as state:
            for idx, subscriber in enumerate(state.subscribers):
                if subscriber.id == subscriber_id:
                    del state.subscribers[idx]
                    break
            else:
                raise NotFound("subscriber", subscriber_id)
        logger.info("removed subscriber %s", subscriber_id)
