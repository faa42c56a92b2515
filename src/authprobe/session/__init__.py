"""Per-session credential holding."""

from authprobe.session.store import CredentialBundle, CredentialStore

__all__ = ["CredentialBundle", "CredentialStore"]
