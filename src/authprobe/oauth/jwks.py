# JWKS Validator - fetch-on-demand key set and RSA JWT signature verification.
# Created: 2026-10-18

from __future__ import annotations

import base64
import binascii
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

import httpx
import jwt
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPublicKey, RSAPublicNumbers

from authprobe.errors import DecodeError, ProviderError, TransportError, ValidationError
from authprobe.history.store import HistoryLog
from authprobe.history.transport import DEFAULT_TIMEOUT, recording_client
from authprobe.oauth.models import JWKS_PATH

logger = logging.getLogger(__name__)

# Only RSA PKCS#1 v1.5 signatures are accepted. HMAC and "none" never are,
# whatever the key set contains.
RSA_ALGORITHMS = frozenset({"RS256", "RS384", "RS512"})


@dataclass(frozen=True)
class JWK:
    """One RSA key from the provider's key set."""

    kid: str
    n: str
    e: str
    kty: str = "RSA"
    use: str = ""
    alg: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> JWK:
        return cls(
            kid=str(data.get("kid", "")),
            n=str(data.get("n", "")),
            e=str(data.get("e", "")),
            kty=str(data.get("kty", "")),
            use=str(data.get("use", "")),
            alg=str(data.get("alg", "")),
        )

    def to_dict(self) -> dict[str, str]:
        return {"kty": self.kty, "use": self.use, "kid": self.kid, "n": self.n, "e": self.e, "alg": self.alg}


@dataclass(frozen=True)
class JWKSet:
    keys: tuple[JWK, ...] = ()

    def find(self, kid: str) -> JWK | None:
        """Return the key whose ``kid`` matches exactly."""
        for key in self.keys:
            if key.kid == kid:
                return key
        return None

    def to_dict(self) -> dict[str, Any]:
        return {"keys": [k.to_dict() for k in self.keys]}


@dataclass(frozen=True)
class ClaimSet:
    """Decoded JWT header and payload.

    ``verified`` is False only for :func:`decode_unverified`; such claims are
    for display and must not drive any authorization decision.
    """

    header: dict[str, Any]
    claims: dict[str, Any] = field(default_factory=dict)
    verified: bool = False

    @property
    def subject(self) -> str | None:
        return self.claims.get("sub")

    @property
    def issuer(self) -> str | None:
        return self.claims.get("iss")

    @property
    def expires_at(self) -> datetime | None:
        exp = self.claims.get("exp")
        if isinstance(exp, int | float):
            return datetime.fromtimestamp(exp, tz=UTC)
        return None

    def to_dict(self) -> dict[str, Any]:
        return {"header": self.header, "claims": self.claims, "verified": self.verified}


def _b64url_uint(value: str) -> int:
    """Decode an unpadded base64url big-endian unsigned integer."""
    padded = value + "=" * (-len(value) % 4)
    raw = base64.urlsafe_b64decode(padded.encode("ascii"))
    if not raw:
        raise ValueError("empty value")
    return int.from_bytes(raw, "big")


def jwk_to_public_key(key: JWK) -> RSAPublicKey:
    """Rebuild an RSA public key from the JWK modulus and exponent."""
    try:
        n = _b64url_uint(key.n)
    except (ValueError, binascii.Error) as e:
        raise ValidationError("invalid_key", f"Failed to decode modulus for kid {key.kid}: {e}") from e
    try:
        e_ = _b64url_uint(key.e)
    except (ValueError, binascii.Error) as e:
        raise ValidationError("invalid_key", f"Failed to decode exponent for kid {key.kid}: {e}") from e
    try:
        return RSAPublicNumbers(e_, n).public_key()
    except ValueError as e:
        raise ValidationError("invalid_key", f"Invalid RSA key material for kid {key.kid}: {e}") from e


def decode_unverified(token: str) -> ClaimSet:
    """Decode header and payload WITHOUT checking the signature.

    Inspection only.
    """
    try:
        header = jwt.get_unverified_header(token)
        claims = jwt.decode(token, options={"verify_signature": False})
    except jwt.InvalidTokenError as e:
        raise DecodeError(f"Invalid token format: {e}") from e
    return ClaimSet(header=header, claims=claims, verified=False)


class JWKSValidator:
    """Validates RS256/384/512 tokens against the provider's JWKS.

    The key set is fetched on every validation; there is no cache.
    """

    def __init__(
        self,
        base_url: str,
        history: HistoryLog,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.jwks_url = base_url.rstrip("/") + JWKS_PATH
        self.history = history
        self._transport = transport
        self.timeout = timeout

    async def fetch_key_set(self) -> JWKSet:
        async with recording_client(self.history, "jwks", self._transport, self.timeout) as client:
            try:
                response = await client.get(self.jwks_url, headers={"Accept": "application/json"})
            except httpx.TransportError as e:
                logger.warning("JWKS request to %s failed: %s", self.jwks_url, e)
                raise TransportError(
                    f"JWKS request failed: {str(e) or e.__class__.__name__}",
                    endpoint="jwks",
                    url=self.jwks_url,
                ) from e

        if response.status_code != 200:
            raise ProviderError(
                f"JWKS request failed with status {response.status_code}: {response.text}",
                status_code=response.status_code,
                body=response.text,
                endpoint="jwks",
            )

        try:
            data = response.json()
        except ValueError as e:
            raise DecodeError(f"Failed to decode JWKS response: {e}", body=response.text) from e
        if not isinstance(data, dict) or not isinstance(data.get("keys"), list):
            raise DecodeError("JWKS response has no 'keys' array", body=response.text)

        keys = tuple(JWK.from_dict(k) for k in data["keys"] if isinstance(k, dict))
        logger.debug("Fetched %d keys from %s", len(keys), self.jwks_url)
        return JWKSet(keys=keys)

    async def validate_and_extract_claims(self, token: str, audience: str | None = None) -> ClaimSet:
        """Verify ``token`` and return its claims.

        Raises:
            ValidationError: with ``reason`` naming the failed check.
            ProviderError / DecodeError / TransportError: the key set fetch failed.
        """
        try:
            header = jwt.get_unverified_header(token)
        except jwt.InvalidTokenError as e:
            raise ValidationError("malformed_token", f"Invalid token format: {e}") from e

        alg = header.get("alg")
        if alg is not None and not isinstance(alg, str):
            raise ValidationError("malformed_token", f"Invalid alg header: {alg!r}")
        if alg not in RSA_ALGORITHMS:
            raise ValidationError("unsupported_algorithm", f"Unexpected signing method: {alg}")

        kid = header.get("kid")
        if not isinstance(kid, str) or not kid:
            raise ValidationError("missing_kid", "kid not found in token header")

        key_set = await self.fetch_key_set()
        jwk = key_set.find(kid)
        if jwk is None:
            raise ValidationError("no_matching_key", f"No matching key found for kid: {kid}")

        public_key = jwk_to_public_key(jwk)
        try:
            claims = jwt.decode(
                token,
                key=public_key,
                algorithms=[alg],
                audience=audience,
                options={"verify_aud": audience is not None},
            )
        except jwt.InvalidSignatureError as e:
            raise ValidationError("bad_signature", f"Token signature is invalid: {e}") from e
        except jwt.ExpiredSignatureError as e:
            raise ValidationError("expired", f"Token has expired: {e}") from e
        except jwt.DecodeError as e:
            raise ValidationError("malformed_token", f"Invalid token format: {e}") from e
        except jwt.InvalidTokenError as e:
            raise ValidationError("invalid_claims", f"Token claims are invalid: {e}") from e

        logger.debug("Token verified with kid %s (sub=%s)", kid, claims.get("sub"))
        return ClaimSet(header=header, claims=claims, verified=True)
