# OAuth Flow - PKCE authorization code flow, refresh, revocation, userinfo, discovery.
# Created: 2026-10-18

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import logging
import secrets
import urllib.parse
from collections.abc import Mapping
from typing import Any

import httpx

from authprobe.errors import (
    AuthorizationCallbackError,
    CallbackValidationError,
    CSRFError,
    DecodeError,
    ProviderError,
    TransportError,
)
from authprobe.history.store import HistoryLog
from authprobe.history.transport import DEFAULT_TIMEOUT, recording_client
from authprobe.oauth.models import (
    AUTHORIZE_PATH,
    DISCOVERY_PATH,
    REVOKE_PATH,
    TOKEN_PATH,
    USERINFO_PATH,
    AuthorizationRequest,
    DiscoveryDocument,
    OAuthConfig,
    TokenMaterial,
    UserInfo,
)

logger = logging.getLogger(__name__)

# Random bytes behind state and code_verifier (43 chars once encoded)
STATE_BYTES = 32
VERIFIER_BYTES = 32

_FORM_HEADERS = {"Content-Type": "application/x-www-form-urlencoded", "Accept": "application/json"}


def generate_code_verifier() -> str:
    """Return a PKCE code_verifier from the OS CSPRNG."""
    return secrets.token_urlsafe(VERIFIER_BYTES)


def generate_state() -> str:
    return secrets.token_urlsafe(STATE_BYTES)


def s256_challenge(verifier: str) -> str:
    """BASE64URL(SHA256(verifier)) without padding (RFC 7636 S256)."""
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def _short(token: str | None) -> str:
    if not token:
        return "<none>"
    return token[:8] + "..."


def _parse_json(response: httpx.Response, what: str) -> Any:
    try:
        return response.json()
    except ValueError as e:
        raise DecodeError(f"Failed to decode {what} response: {e}", body=response.text) from e


def _provider_error(response: httpx.Response, what: str, endpoint: str) -> ProviderError:
    body = response.text
    error = description = None
    try:
        data = json.loads(body)
        if isinstance(data, dict):
            error = data.get("error")
            description = data.get("error_description")
    except ValueError:
        pass
    return ProviderError(
        f"{what} request failed with status {response.status_code}: {body}",
        status_code=response.status_code,
        body=body,
        error=error,
        error_description=description,
        endpoint=endpoint,
    )


class OAuthFlow:
    """Client side of the authorization code flow with PKCE.

    Every network call goes through a recording client tagged with its
    logical endpoint (``token``, ``refresh``, ``revoke``, ``userinfo``,
    ``discovery``). Calls are single-attempt; failures surface immediately.

    Args:
        config: Client registration. Validated on construction.
        history: Log that receives every exchange.
        transport: Optional inner transport (tests pass ``httpx.MockTransport``).
        timeout: Per-call timeout in seconds.
    """

    def __init__(
        self,
        config: OAuthConfig,
        history: HistoryLog,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        config.validate()
        self.config = config
        self.history = history
        self._transport = transport
        self.timeout = timeout

    # ------------------------------------------------------------------
    # Authorization request / callback
    # ------------------------------------------------------------------

    def generate_authorization_request(self) -> AuthorizationRequest:
        """Build the /oauth2/authorize URL with a fresh state and PKCE pair."""
        state = generate_state()
        verifier = generate_code_verifier()
        challenge = s256_challenge(verifier)

        params = {
            "client_id": self.config.client_id,
            "redirect_uri": self.config.redirect_uri,
            "response_type": "code",
            "scope": self.config.scope,
            "state": state,
            "access_type": "offline",
            "code_challenge": challenge,
            "code_challenge_method": "S256",
        }
        url = f"{self.config.endpoint(AUTHORIZE_PATH)}?{urllib.parse.urlencode(params)}"
        return AuthorizationRequest(
            url=url,
            state=state,
            code_verifier=verifier,
            code_challenge=challenge,
        )

    async def handle_callback(
        self,
        query_params: Mapping[str, str],
        expected_state: str | None,
        code_verifier: str | None,
    ) -> TokenMaterial:
        """Validate the redirect and exchange its code.

        The caller must discard ``expected_state`` and ``code_verifier``
        whatever the outcome; they are single-use.
        """
        error = query_params.get("error")
        if error:
            description = query_params.get("error_description", "")
            logger.warning("Provider returned error on callback: %s - %s", error, description)
            raise AuthorizationCallbackError(error, description)

        state = query_params.get("state") or ""
        if not state or not expected_state or not hmac.compare_digest(
            state.encode(), expected_state.encode()
        ):
            logger.warning("State mismatch on callback (CSRF check failed)")
            raise CSRFError("Invalid state parameter (CSRF check failed)")

        code = query_params.get("code")
        if not code:
            raise CallbackValidationError("Authorization code not found")
        if not code_verifier:
            raise CallbackValidationError("Code verifier not found in session")

        return await self.exchange_code(code, code_verifier)

    # ------------------------------------------------------------------
    # Token endpoint
    # ------------------------------------------------------------------

    async def exchange_code(self, code: str, code_verifier: str) -> TokenMaterial:
        _, tokens = await self._token_request(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": self.config.redirect_uri,
                "client_id": self.config.client_id,
                "client_secret": self.config.client_secret,
                "code_verifier": code_verifier,
            },
            endpoint_type="token",
            what="Token exchange",
        )
        logger.info("Token exchange successful (access token %s)", _short(tokens.access_token))
        return tokens

    async def refresh_token(self, refresh_token: str) -> TokenMaterial:
        """Use ``refresh_token`` to get a new access token.

        When the response omits ``refresh_token`` the one passed in is kept.
        When the response carries an empty one, the refresh token is cleared.
        """
        data, tokens = await self._token_request(
            {
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
                "client_id": self.config.client_id,
                "client_secret": self.config.client_secret,
            },
            endpoint_type="refresh",
            what="Token refresh",
        )
        if "refresh_token" not in data:
            tokens.refresh_token = refresh_token
            outcome = "retained"
        elif tokens.refresh_token:
            outcome = "rotated"
        else:
            outcome = "cleared"
        logger.info("Refreshed access token %s (refresh token %s)", _short(tokens.access_token), outcome)
        return tokens

    async def _token_request(
        self, form: dict[str, str], endpoint_type: str, what: str
    ) -> tuple[dict, TokenMaterial]:
        """POST to the token endpoint; return the raw body and the parsed tokens."""
        response = await self._send(
            endpoint_type,
            "POST",
            self.config.endpoint(TOKEN_PATH),
            data=form,
            headers=_FORM_HEADERS,
        )
        if not response.is_success:
            raise _provider_error(response, what, endpoint_type)

        data = _parse_json(response, what)
        if not isinstance(data, dict):
            raise DecodeError(f"{what} response is not a JSON object", body=response.text)
        if not data.get("access_token"):
            raise DecodeError(f"{what} response missing access_token", body=response.text)
        try:
            tokens = TokenMaterial.from_token_response(data)
        except (ValueError, TypeError, OverflowError) as e:
            raise DecodeError(f"{what} response has an invalid field: {e}", body=response.text) from e
        return data, tokens

    # ------------------------------------------------------------------
    # Revocation / userinfo / discovery
    # ------------------------------------------------------------------

    async def revoke_token(self, token: str, token_type_hint: str | None = None) -> None:
        """Revoke ``token`` (RFC 7009).

        The provider answers 200 even for unknown or already-invalid tokens;
        anything else is a failure.
        """
        form = {
            "token": token,
            "client_id": self.config.client_id,
            "client_secret": self.config.client_secret,
        }
        if token_type_hint:
            form["token_type_hint"] = token_type_hint

        response = await self._send(
            "revoke",
            "POST",
            self.config.endpoint(REVOKE_PATH),
            data=form,
            headers=_FORM_HEADERS,
        )
        if response.status_code != 200:
            raise _provider_error(response, "Revoke", "revoke")
        logger.info("Revoked token %s", _short(token))

    async def fetch_user_info(self, access_token: str) -> UserInfo:
        response = await self._send(
            "userinfo",
            "GET",
            self.config.endpoint(USERINFO_PATH),
            headers={"Authorization": f"Bearer {access_token}", "Accept": "application/json"},
        )
        if response.status_code != 200:
            raise _provider_error(response, "Userinfo", "userinfo")

        data = _parse_json(response, "userinfo")
        if not isinstance(data, dict):
            raise DecodeError("Userinfo response is not a JSON object", body=response.text)
        return UserInfo.from_dict(data)

    async def fetch_discovery_document(self) -> DiscoveryDocument:
        response = await self._send(
            "discovery",
            "GET",
            self.config.endpoint(DISCOVERY_PATH),
            headers={"Accept": "application/json"},
        )
        if response.status_code != 200:
            raise _provider_error(response, "Discovery", "discovery")

        data = _parse_json(response, "discovery")
        if not isinstance(data, dict):
            raise DecodeError("Discovery response is not a JSON object", body=response.text)
        return DiscoveryDocument(raw=data)

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _send(self, endpoint_type: str, method: str, url: str, **kwargs: Any) -> httpx.Response:
        async with recording_client(
            self.history, endpoint_type, self._transport, self.timeout
        ) as client:
            try:
                return await client.request(method, url, **kwargs)
            except httpx.TransportError as e:
                logger.warning("%s request to %s failed: %s", endpoint_type, url, e)
                raise TransportError(
                    f"{endpoint_type} request failed: {str(e) or e.__class__.__name__}",
                    endpoint=endpoint_type,
                    url=url,
                ) from e
