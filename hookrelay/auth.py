import hmac

from .errors import AuthorizationFailed


def extract_token(
    authorization: str | None = None,
    query_token: str | None = None,
) -> str | None:
    if authorization and authorization.startswith("Bearer "):
        token = authorization.split(" ", 1)[1].strip()
        if token:
            return token
    if query_token:
        return query_token.strip() or None
    return None


def require_token(token: str | None, secret: str) -> None:
    configured = (secret or "").strip()
    if not token:
        raise AuthorizationFailed("missing token")
    if not configured or not hmac.compare_digest(token.encode("utf-8"), configured.encode("utf-8")):
        raise AuthorizationFailed("bad token")
