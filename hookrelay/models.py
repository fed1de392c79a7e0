from __future__ import annotations

import secrets
import uuid
from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

SubscriberStatus = Literal["pending", "verified"]


def new_id() -> str:
    return str(uuid.uuid4())


def new_challenge() -> str:
    return secrets.token_hex(8)


def utcnow_iso() -> str:
    """UTC timestamp with millisecond precision and a ``Z`` suffix."""

    now = datetime.now(timezone.utc)
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")


class WireModel(BaseModel):
    """Snake_case attributes in Python, camelCase keys on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class Subscriber(WireModel):
    id: str = Field(default_factory=new_id)
    url: str
    status: SubscriberStatus = "pending"
    challenge: str = Field(default_factory=new_challenge)
    created_at: str = Field(default_factory=utcnow_iso)

    @property
    def verified(self) -> bool:
        return self.status == "verified"


class DeliveryLog(WireModel):
    id: str = Field(default_factory=new_id)
    subscriber_id: str
    url: str
    payload: dict[str, Any]
    result: dict[str, Any]
    time: str = Field(default_factory=utcnow_iso)


class Event(WireModel):
    message: str
    timestamp: str = Field(default_factory=utcnow_iso)


class State(WireModel):
    subscribers: list[Subscriber] = Field(default_factory=list)
    logs: list[DeliveryLog] = Field(default_factory=list)


def success_result(status: int, data: Any) -> dict[str, Any]:
    return {"success": True, "status": status, "data": data}


def failure_result(error: str) -> dict[str, Any]:
    return {"success": False, "error": error}
