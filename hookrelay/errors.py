"""HookRelay exception hierarchy.

Input and identity errors are turned into 4xx responses at the HTTP boundary.
Verification and delivery failures are absorbed by the core and only logged
or recorded. Store failures always propagate to the caller.
"""

from __future__ import annotations


class HookRelayError(Exception):
    """Base exception for all HookRelay errors."""

    code: str = "hookrelay_error"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict[str, object]:
        return {"error": self.message, "code": self.code}


class InvalidInput(HookRelayError):
    """Malformed caller request, e.g. a registration without a url."""

    code = "invalid_input"


class NotFound(HookRelayError):
    """The operation targets an entity that does not exist."""

    code = "not_found"

    def __init__(self, resource_type: str, resource_id: str) -> None:
        self.resource_type = resource_type
        self.resource_id = resource_id
        super().__init__(f"{resource_type} not found: {resource_id}")


class VerificationFailed(HookRelayError):
    """Challenge handshake did not complete or the echo did not match."""

    code = "verification_failed"


class DeliveryFailed(HookRelayError):
    """Transport-level failure delivering an event to a subscriber."""

    code = "delivery_failed"


class StoreUnavailable(HookRelayError):
    """Persistent store could not be opened, read or written."""

    code = "store_unavailable"


class AuthorizationFailed(HookRelayError):
    """Live channel connection without a valid token."""

    code = "unauthorized"
