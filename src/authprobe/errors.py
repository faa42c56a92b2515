# Error taxonomy for the OAuth2 harness.
# Created: 2026-10-18
#
# Every failure keeps enough detail (status, provider body, reason) to be
# shown as-is in the diagnostics surface.

from __future__ import annotations

__all__ = [
    "OAuthHarnessError",
    "ConfigurationError",
    "CSRFError",
    "CallbackValidationError",
    "ProviderError",
    "AuthorizationCallbackError",
    "TransportError",
    "DecodeError",
    "ValidationError",
]


class OAuthHarnessError(Exception):
    """Base class for all harness errors."""

    kind = "error"

    def to_dict(self) -> dict:
        return {"error": self.kind, "detail": str(self)}


class ConfigurationError(OAuthHarnessError):
    """Client settings are missing or invalid. Raised before any network call."""

    kind = "configuration_error"

    def __init__(self, field: str, message: str):
        super().__init__(message)
        self.field = field
        self.message = message

    def to_dict(self) -> dict:
        return {**super().to_dict(), "field": self.field}


class CSRFError(OAuthHarnessError):
    """Callback state did not match the pending authorization request."""

    kind = "csrf_error"


class CallbackValidationError(OAuthHarnessError):
    """Callback is missing the code or the pending PKCE verifier."""

    kind = "callback_error"


class ProviderError(OAuthHarnessError):
    """The provider answered with a non-success status."""

    kind = "provider_error"

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        body: str = "",
        error: str | None = None,
        error_description: str | None = None,
        endpoint: str | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.body = body
        self.error = error
        self.error_description = error_description
        self.endpoint = endpoint

    def to_dict(self) -> dict:
        data = super().to_dict()
        data.update(
            status_code=self.status_code,
            body=self.body,
            provider_error=self.error,
            provider_error_description=self.error_description,
            endpoint=self.endpoint,
        )
        return data


class AuthorizationCallbackError(ProviderError):
    """The provider reported an error on the redirect (``?error=...``)."""

    kind = "authorization_error"

    def __init__(self, error: str, error_description: str = ""):
        message = f"Authorization failed: {error}"
        if error_description:
            message += f" - {error_description}"
        super().__init__(message, error=error, error_description=error_description)


class TransportError(OAuthHarnessError):
    """Connection-level failure (DNS, refused, TLS, timeout)."""

    kind = "transport_error"

    def __init__(self, message: str, *, endpoint: str | None = None, url: str | None = None):
        super().__init__(message)
        self.endpoint = endpoint
        self.url = url

    def to_dict(self) -> dict:
        return {**super().to_dict(), "endpoint": self.endpoint, "url": self.url}


class DecodeError(OAuthHarnessError):
    """A provider answer (JSON document or JWT) could not be parsed."""

    kind = "decode_error"

    def __init__(self, message: str, *, body: str = ""):
        super().__init__(message)
        self.body = body

    def to_dict(self) -> dict:
        return {**super().to_dict(), "body": self.body}


class ValidationError(OAuthHarnessError):
    """JWT failed verification.

    ``reason`` is one of ``malformed_token``, ``unsupported_algorithm``,
    ``missing_kid``, ``no_matching_key``, ``invalid_key``, ``bad_signature``,
    ``expired`` or ``invalid_claims``.
    """

    kind = "validation_error"

    def __init__(self, reason: str, message: str):
        super().__init__(message)
        self.reason = reason

    def to_dict(self) -> dict:
        return {**super().to_dict(), "reason": self.reason}
