# Tests for the PKCE authorization code flow client.
# Created: 2026-10-18

import base64
import hashlib
from dataclasses import replace
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from authprobe.errors import (
    AuthorizationCallbackError,
    CallbackValidationError,
    ConfigurationError,
    CSRFError,
    DecodeError,
    ProviderError,
    TransportError,
)
from authprobe.oauth.flow import OAuthFlow, s256_challenge
from authprobe.oauth.models import OAuthConfig, TokenMaterial, UserInfo


@pytest.fixture
def flow(config, history, provider):
    return OAuthFlow(config, history, transport=provider.transport)


def _b64url_len(value: str) -> int:
    return len(base64.urlsafe_b64decode(value + "=" * (-len(value) % 4)))


class TestConfigValidation:
    @pytest.mark.parametrize(
        "field,overrides",
        [
            ("client_id", {"client_id": ""}),
            ("client_secret", {"client_secret": ""}),
            ("redirect_uri", {"redirect_uri": ""}),
            ("scopes", {"scopes": []}),
            ("scopes", {"scopes": ["email"]}),
            ("base_url", {"base_url": ""}),
        ],
    )
    def test_rejects_invalid(self, config, history, field, overrides):
        bad = replace(config, **overrides)
        with pytest.raises(ConfigurationError) as exc:
            OAuthFlow(bad, history)
        assert exc.value.field == field

    def test_openid_message(self, config):
        config.scopes = ["email", "profile"]
        with pytest.raises(ConfigurationError, match="openid scope is required"):
            config.validate()

    def test_secret_masked(self, config):
        assert config.to_dict()["client_secret"] == "***"
        assert config.to_dict(include_secret=True)["client_secret"] == "s3cr3t"

    def test_from_scope_string(self):
        config = OAuthConfig.from_scope_string("a", "b", "https://app/cb", "openid  email", "https://x")
        assert config.scopes == ["openid", "email"]


class TestAuthorizationRequest:
    def test_url_parameters(self, flow):
        req = flow.generate_authorization_request()
        parsed = urlparse(req.url)
        params = {k: v[0] for k, v in parse_qs(parsed.query).items()}

        assert f"{parsed.scheme}://{parsed.netloc}{parsed.path}" == "https://idp.test/oauth2/authorize"
        assert params == {
            "client_id": "abc",
            "redirect_uri": "https://app/cb",
            "response_type": "code",
            "scope": "openid email",
            "state": req.state,
            "access_type": "offline",
            "code_challenge": req.code_challenge,
            "code_challenge_method": "S256",
        }

    def test_challenge_is_s256_of_verifier(self, flow):
        req = flow.generate_authorization_request()
        digest = hashlib.sha256(req.code_verifier.encode()).digest()
        expected = base64.urlsafe_b64encode(digest).rstrip(b"=").decode()
        assert req.code_challenge == expected
        assert "=" not in req.code_challenge

    def test_known_vector(self):
        # RFC 7636 appendix B
        verifier = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"
        assert s256_challenge(verifier) == "E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw-cM"

    def test_state_and_verifier_entropy(self, flow):
        req = flow.generate_authorization_request()
        assert _b64url_len(req.state) >= 32
        assert _b64url_len(req.code_verifier) >= 32
        assert 43 <= len(req.code_verifier) <= 128

    def test_fresh_values_each_time(self, flow):
        a = flow.generate_authorization_request()
        b = flow.generate_authorization_request()
        assert a.state != b.state
        assert a.code_verifier != b.code_verifier


class TestHandleCallback:
    async def test_state_mismatch(self, flow, provider):
        with pytest.raises(CSRFError, match="CSRF"):
            await flow.handle_callback({"code": "c", "state": "other"}, "expected", "v")
        assert provider.requests == []

    async def test_empty_state_never_matches(self, flow, provider):
        with pytest.raises(CSRFError):
            await flow.handle_callback({"code": "c", "state": ""}, "", "v")
        with pytest.raises(CSRFError):
            await flow.handle_callback({"code": "c"}, None, "v")
        assert provider.requests == []

    async def test_provider_error_param(self, flow, provider):
        with pytest.raises(AuthorizationCallbackError) as exc:
            await flow.handle_callback(
                {"error": "access_denied", "error_description": "user said no", "state": "s"}, "s", "v"
            )
        assert exc.value.error == "access_denied"
        assert "user said no" in str(exc.value)
        assert provider.requests == []

    async def test_missing_code(self, flow):
        with pytest.raises(CallbackValidationError, match="Authorization code not found"):
            await flow.handle_callback({"state": "s"}, "s", "v")

    async def test_missing_verifier(self, flow):
        with pytest.raises(CallbackValidationError):
            await flow.handle_callback({"state": "s", "code": "c"}, "s", None)


# ---------------------------------------------------------------------------
# Token endpoint
# ---------------------------------------------------------------------------


async def test_login_then_refresh_retains_refresh_token(flow, provider, history):
    req = flow.generate_authorization_request()
    provider.route(
        "/oauth2/token",
        body={"access_token": "AT1", "refresh_token": "RT1", "token_type": "Bearer", "expires_in": 3600},
    )

    tokens = await flow.handle_callback({"code": "code123", "state": req.state}, req.state, req.code_verifier)

    assert tokens.access_token == "AT1"
    assert tokens.refresh_token == "RT1"
    assert tokens.expiry is not None
    assert provider.form() == {
        "grant_type": "authorization_code",
        "code": "code123",
        "redirect_uri": "https://app/cb",
        "client_id": "abc",
        "client_secret": "s3cr3t",
        "code_verifier": req.code_verifier,
    }

    provider.route("/oauth2/token", body={"access_token": "AT2", "token_type": "Bearer"})
    refreshed = await flow.refresh_token(tokens.refresh_token)

    assert refreshed.access_token == "AT2"
    assert refreshed.refresh_token == "RT1"
    assert provider.form()["grant_type"] == "refresh_token"
    assert provider.form()["refresh_token"] == "RT1"

    assert [e.endpoint_type for e in history.list()] == ["refresh", "token"]


async def test_refresh_rotates(flow, provider):
    provider.route("/oauth2/token", body={"access_token": "AT2", "refresh_token": "RT2"})
    refreshed = await flow.refresh_token("RT1")
    assert refreshed.refresh_token == "RT2"


@pytest.mark.parametrize("empty", ["", None])
async def test_refresh_with_empty_token_clears(flow, provider, empty):
    provider.route("/oauth2/token", body={"access_token": "AT2", "refresh_token": empty})
    refreshed = await flow.refresh_token("RT1")
    assert refreshed.refresh_token is None


async def test_token_endpoint_error(flow, provider):
    provider.route(
        "/oauth2/token", 400, {"error": "invalid_grant", "error_description": "code expired"}
    )
    with pytest.raises(ProviderError) as exc:
        await flow.exchange_code("code123", "verifier")

    assert exc.value.status_code == 400
    assert exc.value.error == "invalid_grant"
    assert exc.value.error_description == "code expired"
    assert "invalid_grant" in exc.value.body


async def test_token_response_not_json(flow, provider):
    provider.route("/oauth2/token", body="<html>oops</html>")
    with pytest.raises(DecodeError) as exc:
        await flow.exchange_code("code123", "verifier")
    assert exc.value.body == "<html>oops</html>"


async def test_token_response_without_access_token(flow, provider):
    provider.route("/oauth2/token", body={"token_type": "Bearer"})
    with pytest.raises(DecodeError, match="access_token"):
        await flow.exchange_code("code123", "verifier")


@pytest.mark.parametrize("expires_in", ["soon", [3600], 1e20])
async def test_token_response_with_bad_expires_in(flow, provider, expires_in):
    provider.route("/oauth2/token", body={"access_token": "AT", "expires_in": expires_in})
    with pytest.raises(DecodeError) as exc:
        await flow.refresh_token("RT")
    assert "expires_in" in exc.value.body


async def test_token_response_with_fractional_expires_in(flow, provider):
    provider.route("/oauth2/token", body={"access_token": "AT", "expires_in": "3600.5"})
    tokens = await flow.exchange_code("code123", "verifier")
    assert 3590 <= tokens.expires_in <= 3600


async def test_connection_failure(flow, history):
    def refuse(request):
        raise httpx.ConnectError("refused", request=request)

    flow._transport = httpx.MockTransport(refuse)
    with pytest.raises(TransportError) as exc:
        await flow.exchange_code("code123", "verifier")

    assert exc.value.endpoint == "token"
    assert isinstance(exc.value.__cause__, httpx.ConnectError)
    [entry] = history.list()
    assert entry.response_status == 0


# ---------------------------------------------------------------------------
# Revocation / userinfo / discovery
# ---------------------------------------------------------------------------


class TestRevoke:
    async def test_success(self, flow, provider, history):
        provider.route("/oauth2/revoke", 200, "")
        await flow.revoke_token("AT1", token_type_hint="access_token")

        assert provider.form() == {
            "token": "AT1",
            "client_id": "abc",
            "client_secret": "s3cr3t",
            "token_type_hint": "access_token",
        }
        assert history.list()[0].endpoint_type == "revoke"

    async def test_without_hint(self, flow, provider):
        provider.route("/oauth2/revoke", 200, "")
        await flow.revoke_token("RT1")
        assert "token_type_hint" not in provider.form()

    @pytest.mark.parametrize("status", [204, 400, 503])
    async def test_non_200_fails(self, flow, provider, status):
        provider.route("/oauth2/revoke", status, "")
        with pytest.raises(ProviderError) as exc:
            await flow.revoke_token("AT1")
        assert exc.value.status_code == status


class TestUserInfo:
    async def test_fetch(self, flow, provider):
        provider.route(
            "/oauth2/userinfo",
            body={
                "sub": "u-1",
                "name": "Maria",
                "cpf": "12345678900",
                "email": "maria@example.org",
                "email_verified": True,
                "permissions": ["read", "vote"],
                "membership_status": "active",
            },
        )
        info = await flow.fetch_user_info("AT1")

        assert isinstance(info, UserInfo)
        assert info.sub == "u-1"
        assert info.national_id == "12345678900"
        assert info.permissions == ("read", "vote")
        assert info.to_dict()["cpf"] == "12345678900"
        assert provider.requests[-1].headers["Authorization"] == "Bearer AT1"

    async def test_error_status(self, flow, provider):
        provider.route("/oauth2/userinfo", 401, {"error": "invalid_token"})
        with pytest.raises(ProviderError) as exc:
            await flow.fetch_user_info("AT1")
        assert exc.value.status_code == 401
        assert exc.value.error == "invalid_token"

    async def test_bad_json(self, flow, provider):
        provider.route("/oauth2/userinfo", 200, "not json")
        with pytest.raises(DecodeError):
            await flow.fetch_user_info("AT1")

    @pytest.mark.parametrize("permissions", ["admin", 7, {"role": "admin"}, None])
    async def test_permissions_not_a_list(self, flow, provider, permissions):
        provider.route("/oauth2/userinfo", body={"sub": "u-1", "permissions": permissions})
        info = await flow.fetch_user_info("AT1")
        assert info.permissions == ()


async def test_discovery(flow, provider):
    provider.route(
        "/.well-known/openid-configuration",
        body={
            "issuer": "https://idp.test",
            "jwks_uri": "https://idp.test/oauth2/jwks",
            "token_endpoint": "https://idp.test/oauth2/token",
        },
    )
    document = await flow.fetch_discovery_document()
    assert document.issuer == "https://idp.test"
    assert document.jwks_uri == "https://idp.test/oauth2/jwks"
    assert document.revocation_endpoint is None


def test_token_material_extra_fields():
    tokens = TokenMaterial.from_token_response({"access_token": "a", "session_state": "xyz"})
    assert tokens.extra == {"session_state": "xyz"}
    assert tokens.token_type == "Bearer"
    assert not tokens.is_expired()
