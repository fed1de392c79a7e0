"""Live fan-out of delivery logs to connected observers.

Each observer gets its own bounded queue. Publishing never waits on an
observer: a full queue drops the message for that observer only. Observers
connecting later receive a snapshot of recent logs, not a backlog.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from typing import Any

from .auth import require_token
from .metrics import OBSERVERS
from .models import DeliveryLog
from .store import DocumentStore

logger = logging.getLogger(__name__)

_observer_ids = itertools.count(1)


class Observer:
    __slots__ = ("id", "queue")

    def __init__(self, queue_size: int) -> None:
        self.id = next(_observer_ids)
        self.queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=queue_size)

    async def next_message(self) -> dict[str, Any]:
        return await self.queue.get()


class LogBroadcaster:
    def __init__(
        self,
        store: DocumentStore,
        secret: str,
        snapshot_size: int = 50,
        queue_size: int = 100,
    ) -> None:
        self._store = store
        self._secret = secret
        self._snapshot_size = snapshot_size
        self._queue_size = queue_size
        self._observers: dict[int, Observer] = {}

    @property
    def observer_count(self) -> int:
        return len(self._observers)

    def authorize(self, token: str | None) -> None:
        """Raise ``AuthorizationFailed`` unless ``token`` matches the shared secret."""

        require_token(token, self._secret)

    def connect(self) -> Observer:
        observer = Observer(self._queue_size)
        self._observers[observer.id] = observer
        OBSERVERS.set(len(self._observers))
        logger.info("observer %d connected", observer.id)
        return observer

    def disconnect(self, observer: Observer) -> None:
        if self._observers.pop(observer.id, None) is not None:
            OBSERVERS.set(len(self._observers))
            logger.info("observer %d disconnected", observer.id)

    async def snapshot(self) -> list[dict[str, Any]]:
        """Most recent logs, newest first."""

        state = await self._store.read()
        recent = state.logs[::-1][: self._snapshot_size]
        return [log.to_wire() for log in recent]

    def publish(self, log: DeliveryLog) -> None:
        message = {"event": "log", "data": log.to_wire()}
        for observer in list(self._observers.values()):
            try:
                observer.queue.put_nowait(message)
            except asyncio.QueueFull:
                logger.warning("observer %d queue full, dropping log %s", observer.id, log.id)
