"""OAuth2 / OIDC client: PKCE flow engine and JWKS validator."""

from authprobe.oauth.flow import OAuthFlow, s256_challenge
from authprobe.oauth.jwks import ClaimSet, JWK, JWKSet, JWKSValidator, decode_unverified
from authprobe.oauth.models import (
    AuthorizationRequest,
    AuthorizationState,
    DiscoveryDocument,
    OAuthConfig,
    TokenMaterial,
    UserInfo,
)

__all__ = [
    "AuthorizationRequest",
    "AuthorizationState",
    "ClaimSet",
    "DiscoveryDocument",
    "JWK",
    "JWKSValidator",
    "JWKSet",
    "OAuthConfig",
    "OAuthFlow",
    "TokenMaterial",
    "UserInfo",
    "decode_unverified",
    "s256_challenge",
]
