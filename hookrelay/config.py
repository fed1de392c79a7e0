from __future__ import annotations

import os
from typing import Any, Literal

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError

load_dotenv()


class Settings(BaseModel):
    PORT: int = Field(default=3000)
    WEBHOOK_SECRET: str = Field(default="supersecret", description="HMAC key for payloads")
    SOCKET_SECRET: str = Field(default="socksecret", description="live channel token")
    DB_PATH: str = Field(default="data/hookrelay.db")
    LOG_LEVEL: str = Field(default="INFO")
    CORS_ALLOW_ORIGINS: str = Field(default="*")
    VERIFY_TIMEOUT_SECONDS: float = Field(default=5.0, gt=0)
    DELIVERY_TIMEOUT_SECONDS: float = Field(default=5.0, gt=0)
    DELIVERY_MAX_ATTEMPTS: int = Field(default=3, ge=1)
    DELIVERY_BACKOFF_SECONDS: float = Field(default=0.5, ge=0)
    FANOUT_MODE: Literal["sequential", "concurrent"] = Field(default="sequential")
    FANOUT_CONCURRENCY: int = Field(default=4, ge=1)
    LOG_SNAPSHOT_SIZE: int = Field(default=50, ge=0)
    OBSERVER_QUEUE_SIZE: int = Field(default=100, ge=1)
    DEFAULT_EVENT_MESSAGE: str = Field(default="hello from backend")
    RATE_LIMIT_ENABLED: bool = Field(default=False)
    RATE_LIMIT_RPS: float = Field(default=5.0)
    RATE_LIMIT_BURST: int = Field(default=20)


def _load_settings(existing: Settings | None = None) -> Settings:
    values: dict[str, Any] = {}
    for name, field in Settings.model_fields.items():
        env_value = os.getenv(name)
        if env_value is None:
            if existing is not None and hasattr(existing, name):
                values[name] = getattr(existing, name)
                continue
            values[name] = field.get_default(call_default_factory=True)
        else:
            values[name] = env_value

    try:
        return Settings(**values)
    except ValidationError as exc:
        invalid = sorted(
            {str(error["loc"][0]) for error in exc.errors() if error.get("loc")}
        )
        if invalid:
            raise RuntimeError(
                f"Invalid environment variables: {', '.join(invalid)}"
            ) from exc
        raise


settings = _load_settings()


def reload_settings() -> Settings:
    global settings
    fresh = _load_settings(settings)
    settings.__dict__.update(fresh.__dict__)
    return settings
