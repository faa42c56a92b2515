# OAuth2 / OIDC client-side data models.
# Created: 2026-10-18

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from datetime import UTC, datetime, timedelta
from typing import Any

from authprobe.errors import ConfigurationError

# Endpoint paths relative to the provider base URL
AUTHORIZE_PATH = "/oauth2/authorize"
TOKEN_PATH = "/oauth2/token"
REVOKE_PATH = "/oauth2/revoke"
USERINFO_PATH = "/oauth2/userinfo"
JWKS_PATH = "/oauth2/jwks"
DISCOVERY_PATH = "/.well-known/openid-configuration"


@dataclass
class OAuthConfig:
    """Client registration used for one flow."""

    client_id: str
    client_secret: str
    redirect_uri: str
    scopes: list[str] = field(default_factory=lambda: ["openid"])
    base_url: str = ""

    @classmethod
    def from_scope_string(
        cls,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        scope: str,
        base_url: str,
    ) -> OAuthConfig:
        return cls(
            client_id=client_id,
            client_secret=client_secret,
            redirect_uri=redirect_uri,
            scopes=[s for s in scope.split() if s],
            base_url=base_url,
        )

    def validate(self) -> None:
        """Raise ConfigurationError for the first invalid field."""
        if not self.client_id:
            raise ConfigurationError("client_id", "Client ID is required")
        if not self.client_secret:
            raise ConfigurationError("client_secret", "Client Secret is required")
        if not self.redirect_uri:
            raise ConfigurationError("redirect_uri", "Redirect URI is required")
        if not self.scopes:
            raise ConfigurationError("scopes", "At least one scope is required")
        if "openid" not in self.scopes:
            raise ConfigurationError("scopes", "openid scope is required")
        if not self.base_url:
            raise ConfigurationError("base_url", "Provider base URL is required")

    @property
    def scope(self) -> str:
        return " ".join(self.scopes)

    def endpoint(self, path: str) -> str:
        return self.base_url.rstrip("/") + path

    def to_dict(self, include_secret: bool = False) -> dict[str, Any]:
        data = asdict(self)
        if not include_secret:
            data["client_secret"] = "***" if self.client_secret else ""
        return data


@dataclass(frozen=True)
class AuthorizationState:
    """CSRF state + PKCE verifier pending for one login attempt. Single-use."""

    state: str
    code_verifier: str


@dataclass(frozen=True)
class AuthorizationRequest:
    """Result of building a PKCE-protected authorization URL."""

    url: str
    state: str
    code_verifier: str
    code_challenge: str
    code_challenge_method: str = "S256"

    @property
    def authorization_state(self) -> AuthorizationState:
        return AuthorizationState(state=self.state, code_verifier=self.code_verifier)


@dataclass
class TokenMaterial:
    """Tokens returned by the code exchange or a refresh."""

    access_token: str
    token_type: str = "Bearer"
    refresh_token: str | None = None
    id_token: str | None = None
    expiry: datetime | None = None
    scope: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    _KNOWN_KEYS = ("access_token", "token_type", "refresh_token", "id_token", "expires_in", "scope")

    @classmethod
    def from_token_response(cls, data: dict[str, Any], now: datetime | None = None) -> TokenMaterial:
        """Build from a token endpoint JSON body. ``access_token`` must be present."""
        now = now or datetime.now(tz=UTC)
        expiry = None
        expires_in = data.get("expires_in")
        if expires_in not in (None, ""):
            expiry = now + timedelta(seconds=int(float(expires_in)))
        return cls(
            access_token=data["access_token"],
            token_type=data.get("token_type") or "Bearer",
            refresh_token=data.get("refresh_token") or None,
            id_token=data.get("id_token") or None,
            expiry=expiry,
            scope=data.get("scope"),
            extra={k: v for k, v in data.items() if k not in cls._KNOWN_KEYS},
        )

    def is_expired(self, leeway: timedelta = timedelta(seconds=0)) -> bool:
        if self.expiry is None:
            return False
        return datetime.now(tz=UTC) + leeway >= self.expiry

    @property
    def expires_in(self) -> int | None:
        if self.expiry is None:
            return None
        return max(0, int((self.expiry - datetime.now(tz=UTC)).total_seconds()))

    def to_dict(self) -> dict[str, Any]:
        return {
            "access_token": self.access_token,
            "token_type": self.token_type,
            "refresh_token": self.refresh_token,
            "id_token": self.id_token,
            "expiry": self.expiry.isoformat() if self.expiry else None,
            "expires_in": self.expires_in,
            "scope": self.scope,
            "extra": self.extra,
        }


@dataclass(frozen=True)
class UserInfo:
    """Snapshot of the /oauth2/userinfo response taken at login."""

    sub: str
    name: str = ""
    national_id: str = ""
    email: str | None = None
    email_verified: bool | None = None
    phone_number: str | None = None
    phone_number_verified: bool | None = None
    address: Any = None
    union_unit: Any = None
    membership_status: str | None = None
    employment_status: str | None = None
    membership_type: str | None = None
    permissions: tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> UserInfo:
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        # The provider calls the national identifier "cpf"
        if "cpf" in data:
            values["national_id"] = data["cpf"] or ""
        values["sub"] = str(data.get("sub", ""))
        permissions = data.get("permissions")
        # Only a list is kept; other shapes are dropped
        if isinstance(permissions, list):
            values["permissions"] = tuple(str(p) for p in permissions)
        else:
            values["permissions"] = ()
        return cls(**values)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["cpf"] = data.pop("national_id")
        data["permissions"] = list(self.permissions)
        return {k: v for k, v in data.items() if v not in (None, "", [])} | {"sub": self.sub}


@dataclass(frozen=True)
class DiscoveryDocument:
    """OpenID provider metadata, kept as the provider returned it."""

    raw: dict[str, Any]

    def get(self, key: str, default: Any = None) -> Any:
        return self.raw.get(key, default)

    @property
    def issuer(self) -> str | None:
        return self.raw.get("issuer")

    @property
    def authorization_endpoint(self) -> str | None:
        return self.raw.get("authorization_endpoint")

    @property
    def token_endpoint(self) -> str | None:
        return self.raw.get("token_endpoint")

    @property
    def userinfo_endpoint(self) -> str | None:
        return self.raw.get("userinfo_endpoint")

    @property
    def jwks_uri(self) -> str | None:
        return self.raw.get("jwks_uri")

    @property
    def revocation_endpoint(self) -> str | None:
        return self.raw.get("revocation_endpoint")
