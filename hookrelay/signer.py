"""HMAC-SHA256 signatures over canonical JSON payloads."""

from __future__ import annotations

import hashlib
import hmac
import json
from typing import Any

SIGNATURE_HEADER = "x-webhook-signature"


def canonical_json(payload: Any) -> bytes:
    """Serialize ``payload`` with sorted keys and compact separators.

    The output is what gets signed and also what goes on the wire, so the
    receiver can check either the raw body or its own canonical rendering.
    """

    return json.dumps(
        payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False
    ).encode("utf-8")


def sign(payload: Any, secret: str) -> str:
    """Return the hex HMAC-SHA256 digest of ``payload`` keyed by ``secret``."""

    return hmac.new(
        key=secret.encode("utf-8"),
        msg=canonical_json(payload),
        digestmod=hashlib.sha256,
    ).hexdigest()


def verify(payload: Any, signature: str | None, secret: str) -> bool:
    if not signature:
        return False
    return hmac.compare_digest(sign(payload, secret), signature)
