# Diagnostics API - drives the OAuth flow per browser session.
# Created: 2026-10-18

from __future__ import annotations

import json
import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import JSONResponse, RedirectResponse

from authprobe.api.schemas import (
    ConfigRequest,
    HistoryEntryResponse,
    HistoryListResponse,
    RevokeRequest,
)
from authprobe.config import Settings
from authprobe.errors import (
    AuthorizationCallbackError,
    CSRFError,
    DecodeError,
    OAuthHarnessError,
)
from authprobe.history.models import HistoryEntry
from authprobe.history.store import HistoryLog, normalize_page
from authprobe.oauth.flow import OAuthFlow
from authprobe.oauth.jwks import JWKSValidator, decode_unverified
from authprobe.oauth.models import OAuthConfig
from authprobe.session.cookies import (
    COOKIE_NAME,
    create_session_cookie,
    new_session_id,
    verify_session_cookie,
)
from authprobe.session.store import CredentialBundle, CredentialStore

logger = logging.getLogger(__name__)

router = APIRouter()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _settings(request: Request) -> Settings:
    return request.app.state.settings


def _history(request: Request) -> HistoryLog:
    return request.app.state.history


def _credentials(request: Request) -> CredentialStore:
    return request.app.state.credentials


def _session_id(request: Request) -> str | None:
    cookie = request.cookies.get(COOKIE_NAME)
    if not cookie:
        return None
    return verify_session_cookie(cookie, _settings(request).session_secret)


def _require_bundle(request: Request) -> tuple[str, CredentialBundle]:
    session_id = _session_id(request)
    if session_id is None:
        raise HTTPException(status_code=401, detail="Not authenticated. Please login first.")
    bundle = _credentials(request).load(session_id)
    if bundle is None:
        raise HTTPException(status_code=401, detail="Session expired. Please login again.")
    return session_id, bundle


def _require_config(bundle: CredentialBundle) -> OAuthConfig:
    if bundle.config is None:
        raise HTTPException(
            status_code=400, detail="OAuth2 configuration not found. Please configure first."
        )
    return bundle.config


def _flow(request: Request, config: OAuthConfig) -> OAuthFlow:
    return OAuthFlow(
        config,
        _history(request),
        transport=request.app.state.transport,
        timeout=_settings(request).http_timeout,
    )


def _validator(request: Request) -> JWKSValidator:
    settings = _settings(request)
    return JWKSValidator(
        settings.base_url,
        _history(request),
        transport=request.app.state.transport,
        timeout=settings.http_timeout,
    )


def _set_session_cookie(response, request: Request, session_id: str) -> None:
    settings = _settings(request)
    response.set_cookie(
        COOKIE_NAME,
        create_session_cookie(settings.session_secret, session_id, settings.session_ttl_hours),
        max_age=settings.session_ttl_hours * 3600,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="lax",
    )


def _pretty_json(text: str) -> Any:
    if not text:
        return None
    try:
        return json.loads(text)
    except ValueError:
        return None


def _entry_response(entry: HistoryEntry) -> HistoryEntryResponse:
    return HistoryEntryResponse(
        id=entry.id,
        request_method=entry.request_method,
        request_url=entry.request_url,
        request_headers=entry.request_headers_dict(),
        request_body=entry.request_body,
        response_status=entry.response_status,
        response_headers=entry.response_headers_dict(),
        response_body=entry.response_body,
        duration_ms=entry.duration_ms,
        endpoint_type=entry.endpoint_type,
        created_at=entry.created_at.isoformat() if entry.created_at else None,
        request_json=_pretty_json(entry.request_body),
        response_json=_pretty_json(entry.response_body),
    )


# ---------------------------------------------------------------------------
# Configuration and login
# ---------------------------------------------------------------------------


@router.get("/health")
async def health():
    return {"status": "ok"}


@router.post("/config")
async def save_config(body: ConfigRequest, request: Request):
    """Store the client registration for this browser session."""
    config = OAuthConfig(
        client_id=body.client_id,
        client_secret=body.client_secret,
        redirect_uri=body.redirect_uri,
        scopes=body.scopes,
        base_url=_settings(request).base_url,
    )
    config.validate()

    session_id = _session_id(request) or new_session_id()
    # A new registration invalidates anything obtained with the previous one
    _credentials(request).save(session_id, CredentialBundle(config=config))
    logger.info("Saved OAuth configuration for client %s", config.client_id)

    response = JSONResponse({"configured": True, "config": config.to_dict()})
    _set_session_cookie(response, request, session_id)
    return response


@router.get("/auth/login")
async def login(request: Request):
    """Start the flow: remember state + verifier, redirect to the provider."""
    session_id, bundle = _require_bundle(request)
    config = _require_config(bundle)

    auth_request = _flow(request, config).generate_authorization_request()
    _credentials(request).update(session_id, authorization=auth_request.authorization_state)

    logger.info("Redirecting to authorization URL: %s", auth_request.url)
    return RedirectResponse(auth_request.url, status_code=302)


@router.get("/auth/callback")
async def callback(request: Request):
    """Provider redirect target. Exchanges the code and loads the user info."""
    params = dict(request.query_params)
    session_id = _session_id(request)
    store = _credentials(request)

    # Consumed whatever happens next
    pending = store.take_authorization_state(session_id) if session_id else None
    bundle = store.load(session_id) if session_id else None

    if bundle is None or bundle.config is None:
        if params.get("error"):
            raise AuthorizationCallbackError(params["error"], params.get("error_description", ""))
        raise CSRFError("No pending authorization request for this session")

    flow = _flow(request, bundle.config)
    tokens = await flow.handle_callback(
        params,
        expected_state=pending.state if pending else None,
        code_verifier=pending.code_verifier if pending else None,
    )

    user_info = None
    try:
        user_info = await flow.fetch_user_info(tokens.access_token)
        logger.info("User info retrieved for subject %s", user_info.sub)
    except OAuthHarnessError as e:
        # Login still succeeds; the failure is visible in the history
        logger.warning("Failed to get user info: %s", e)

    store.update(session_id, tokens=tokens, user_info=user_info)
    return RedirectResponse("/dashboard", status_code=303)


@router.get("/dashboard")
async def dashboard(request: Request):
    _, bundle = _require_bundle(request)
    if bundle.tokens is None:
        raise HTTPException(status_code=401, detail="Not authenticated. Please login first.")

    id_token_claims = None
    id_token_error = None
    if bundle.tokens.id_token:
        try:
            id_token_claims = decode_unverified(bundle.tokens.id_token).to_dict()
        except DecodeError as e:
            id_token_error = str(e)

    return {
        "config": bundle.config.to_dict() if bundle.config else None,
        "tokens": bundle.tokens.to_dict(),
        "user_info": bundle.user_info.to_dict() if bundle.user_info else None,
        "id_token_unverified": id_token_claims,
        "id_token_error": id_token_error,
    }


@router.post("/logout")
async def logout(request: Request):
    session_id = _session_id(request)
    if session_id:
        _credentials(request).clear(session_id)
    response = JSONResponse({"logged_out": True})
    response.delete_cookie(COOKIE_NAME)
    return response


# ---------------------------------------------------------------------------
# Endpoint tests
# ---------------------------------------------------------------------------


@router.post("/test/refresh")
async def run_refresh(request: Request):
    session_id, bundle = _require_bundle(request)
    config = _require_config(bundle)
    if bundle.tokens is None:
        raise HTTPException(status_code=401, detail="Not authenticated. Please login first.")
    if not bundle.tokens.refresh_token:
        raise HTTPException(status_code=400, detail="No refresh token available")

    tokens = await _flow(request, config).refresh_token(bundle.tokens.refresh_token)
    # Keep the original ID token when the refresh response has none
    if tokens.id_token is None:
        tokens.id_token = bundle.tokens.id_token
    _credentials(request).update(session_id, tokens=tokens)
    return {"refreshed": True, "tokens": tokens.to_dict()}


@router.post("/test/revoke")
async def run_revoke(request: Request, body: RevokeRequest | None = None):
    session_id, bundle = _require_bundle(request)
    config = _require_config(bundle)
    token_type = body.token_type if body else "access_token"

    tokens = bundle.tokens
    token = getattr(tokens, token_type, None) if tokens else None
    if not token:
        raise HTTPException(status_code=400, detail=f"No {token_type.replace('_', ' ')} available")

    await _flow(request, config).revoke_token(token, token_type_hint=token_type)
    _credentials(request).update(session_id, tokens=None, user_info=None)
    return {"revoked": True, "token_type": token_type}


@router.get("/test/userinfo")
async def run_userinfo(request: Request):
    session_id, bundle = _require_bundle(request)
    config = _require_config(bundle)
    if bundle.tokens is None:
        raise HTTPException(status_code=401, detail="Not authenticated. Please login first.")

    user_info = await _flow(request, config).fetch_user_info(bundle.tokens.access_token)
    return {"user_info": user_info.to_dict()}


@router.get("/test/jwks")
async def run_jwks(request: Request):
    """Fetch the key set and, when the session holds an ID token, validate it."""
    validator = _validator(request)
    key_set = await validator.fetch_key_set()
    result: dict[str, Any] = {"jwks": key_set.to_dict()}

    session_id = _session_id(request)
    bundle = _credentials(request).load(session_id) if session_id else None
    id_token = bundle.tokens.id_token if bundle and bundle.tokens else None
    if id_token:
        audience = bundle.config.client_id if bundle.config else None
        try:
            claims = await validator.validate_and_extract_claims(id_token, audience=audience)
            result["valid"] = True
            result["claims"] = claims.claims
        except OAuthHarnessError as e:
            logger.warning("JWT validation failed: %s", e)
            result["valid"] = False
            result["validation_error"] = e.to_dict()
    return result


@router.get("/test/id-token")
async def run_id_token(request: Request):
    """Validate the session's ID token; errors are returned as-is."""
    _, bundle = _require_bundle(request)
    if bundle.tokens is None or not bundle.tokens.id_token:
        raise HTTPException(status_code=400, detail="No ID token available")

    audience = bundle.config.client_id if bundle.config else None
    claims = await _validator(request).validate_and_extract_claims(
        bundle.tokens.id_token, audience=audience
    )
    return claims.to_dict()


@router.get("/test/discovery")
async def run_discovery(request: Request):
    _, bundle = _require_bundle(request)
    config = _require_config(bundle)
    document = await _flow(request, config).fetch_discovery_document()
    return {"discovery": document.raw}


# ---------------------------------------------------------------------------
# History
# ---------------------------------------------------------------------------


@router.get("/history", response_model=HistoryListResponse)
async def history_list(
    request: Request,
    limit: int | None = Query(None),
    offset: int | None = Query(None),
    tag: str | None = Query(None),
):
    history = _history(request)
    limit, offset = normalize_page(limit, offset)
    if tag:
        entries = history.list_by_tag(tag, limit, offset)
    else:
        entries = history.list(limit, offset)
    return HistoryListResponse(
        entries=[_entry_response(e) for e in entries],
        limit=limit,
        offset=offset,
        total=history.count(tag or None),
        tag=tag or None,
    )


@router.get("/history/{entry_id}", response_model=HistoryEntryResponse)
async def history_detail(entry_id: int, request: Request):
    entry = _history(request).get(entry_id)
    if entry is None:
        raise HTTPException(status_code=404, detail="History entry not found")
    return _entry_response(entry)
