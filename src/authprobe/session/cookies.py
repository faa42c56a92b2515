"""HMAC-signed session id cookies with TTL.

Cookie format: ``{session_id}:{expires_unix}:{hex_hmac}``

Only the id travels to the browser; the credentials stay in the
:class:`~authprobe.session.store.CredentialStore`. Rotating the session secret
invalidates every outstanding cookie.
"""

import hashlib
import hmac
import secrets
import time

__all__ = ["COOKIE_NAME", "new_session_id", "create_session_cookie", "verify_session_cookie"]

COOKIE_NAME = "authprobe_session"


def new_session_id() -> str:
    return secrets.token_urlsafe(24)


def create_session_cookie(secret: str, session_id: str, ttl_hours: int = 24) -> str:
    """Sign *session_id* so that it expires after *ttl_hours*."""
    expires = int(time.time()) + ttl_hours * 3600
    payload = f"{session_id}:{expires}"
    return f"{payload}:{_sign(secret, payload)}"


def verify_session_cookie(value: str, secret: str) -> str | None:
    """Return the session id if *value* is authentic and not expired, else None."""
    parts = value.rsplit(":", 2)
    if len(parts) != 3:
        return None

    session_id, expires_str, sig = parts
    if not session_id:
        return None
    try:
        expires = int(expires_str)
    except ValueError:
        return None

    if time.time() > expires:
        return None

    expected = _sign(secret, f"{session_id}:{expires_str}")
    if not hmac.compare_digest(sig, expected):
        return None
    return session_id


def _sign(key: str, message: str) -> str:
    return hmac.new(key.encode(), message.encode(), hashlib.sha256).hexdigest()
