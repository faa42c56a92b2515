# Request/response schemas for the diagnostics API.
# Created: 2026-10-18

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator


class ConfigRequest(BaseModel):
    """OAuth client registration submitted by the browser session."""

    client_id: str
    client_secret: str
    redirect_uri: str
    scopes: list[str] = Field(default_factory=lambda: ["openid"])

    @field_validator("scopes", mode="before")
    @classmethod
    def _split_scope_string(cls, v: Any) -> Any:
        if isinstance(v, str):
            return [s for s in v.split() if s]
        return v


class RevokeRequest(BaseModel):
    """Which of the session's tokens to revoke."""

    token_type: Literal["access_token", "refresh_token"] = "access_token"


class HistoryEntryResponse(BaseModel):
    id: int
    request_method: str
    request_url: str
    request_headers: dict[str, list[str]]
    request_body: str
    response_status: int
    response_headers: dict[str, list[str]]
    response_body: str
    duration_ms: int
    endpoint_type: str
    created_at: str | None
    request_json: Any = None
    response_json: Any = None


class HistoryListResponse(BaseModel):
    entries: list[HistoryEntryResponse]
    limit: int
    offset: int
    total: int
    tag: str | None = None
