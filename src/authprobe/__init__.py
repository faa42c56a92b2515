"""authprobe - OAuth2 / OpenID Connect flow diagnostics harness."""

__version__ = "0.1.0"
