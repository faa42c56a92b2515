# Shared fixtures: history log, fake identity provider, RSA signing keys.
# Created: 2026-10-18

from __future__ import annotations

import base64
import json
import time
from collections.abc import Callable
from urllib.parse import parse_qs

import httpx
import jwt
import pytest
from cryptography.hazmat.primitives.asymmetric import rsa

from authprobe.history.store import HistoryLog
from authprobe.oauth.models import OAuthConfig

BASE_URL = "https://idp.test"


def b64url_uint(value: int) -> str:
    raw = value.to_bytes((value.bit_length() + 7) // 8, "big")
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


class SigningKey:
    """RSA key pair with its public half as a JWK."""

    def __init__(self, kid: str):
        self.kid = kid
        self.private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        numbers = self.private_key.public_key().public_numbers()
        self.jwk = {
            "kty": "RSA",
            "use": "sig",
            "kid": kid,
            "alg": "RS256",
            "n": b64url_uint(numbers.n),
            "e": b64url_uint(numbers.e),
        }

    def sign(self, claims: dict | None = None, **header) -> str:
        payload = {
            "iss": BASE_URL,
            "sub": "user-1",
            "iat": int(time.time()),
            "exp": int(time.time()) + 600,
        }
        payload.update(claims or {})
        return jwt.encode(payload, self.private_key, algorithm="RS256", headers={"kid": self.kid, **header})


class FakeProvider:
    """Routes requests by path to canned handlers and keeps every request.

    Each route is ``(status, body)`` where body is a dict (JSON) or str, or a
    callable taking the request and returning an ``httpx.Response``.
    """

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.routes: dict[str, tuple[int, dict | str] | Callable[[httpx.Request], httpx.Response]] = {}

    def route(self, path: str, status: int = 200, body: dict | str | None = None) -> None:
        self.routes[path] = (status, body if body is not None else {})

    def form(self, index: int = -1) -> dict[str, str]:
        """Decode the form body of a recorded request."""
        parsed = parse_qs(self.requests[index].content.decode())
        return {k: v[0] for k, v in parsed.items()}

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get(request.url.path)
        if route is None:
            return httpx.Response(404, json={"error": "not_found"})
        if callable(route):
            return route(request)
        status, body = route
        if isinstance(body, str):
            return httpx.Response(status, text=body)
        return httpx.Response(status, content=json.dumps(body).encode(),
                              headers={"Content-Type": "application/json"})

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def history(tmp_path):
    log = HistoryLog(tmp_path / "history.db")
    yield log
    log.close()


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def config():
    return OAuthConfig(
        client_id="abc",
        client_secret="s3cr3t",
        redirect_uri="https://app/cb",
        scopes=["openid", "email"],
        base_url=BASE_URL,
    )


@pytest.fixture(scope="session")
def signing_key():
    return SigningKey("key-1")


@pytest.fixture(scope="session")
def other_signing_key():
    return SigningKey("key-2")
