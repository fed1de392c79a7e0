"""Sample subscriber endpoint.

Echoes verification challenges and checks the signature of delivered events.
Run it next to the relay for local testing::

    uvicorn hookrelay.receiver:app --port 4000
"""

from __future__ import annotations

import logging
import os
from typing import Any

from fastapi import Body, FastAPI, Header

from .signer import SIGNATURE_HEADER, verify

logger = logging.getLogger(__name__)


def create_receiver(secret: str | None = None) -> FastAPI:
    key = secret if secret is not None else os.getenv("WEBHOOK_SECRET", "supersecret")
    receiver = FastAPI(title="HookRelay sample receiver")
    receiver.state.received = []

    @receiver.post("/verify")
    @receiver.post("/webhook/verify")
    def echo_challenge(payload: dict[str, Any] = Body(...)):
        challenge = payload.get("challenge")
        logger.info("received challenge %s", challenge)
        return {"challenge": challenge}

    @receiver.post("/")
    @receiver.post("/webhook")
    def receive(
        payload: dict[str, Any] = Body(...),
        signature: str | None = Header(default=None, alias=SIGNATURE_HEADER),
    ):
        ok = verify(payload, signature, key)
        receiver.state.received.append({"payload": payload, "valid": ok})
        logger.info("received webhook %s signature valid? %s", payload, ok)
        return {"received": True, "validSignature": ok}

    return receiver


app = create_receiver()
