# Credential Store - server-side, per-session OAuth credentials with expiry sweep.
# Created: 2026-10-18
#
# The browser only holds a signed session id (see cookies.py); everything
# else lives here, keyed by that id.

from __future__ import annotations

import asyncio
import contextlib
import logging
import threading
import time
from collections.abc import Callable, Iterator
from dataclasses import dataclass, replace

from authprobe.oauth.models import AuthorizationState, OAuthConfig, TokenMaterial, UserInfo

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 24 * 3600
DEFAULT_SWEEP_INTERVAL = 3600.0


@dataclass(frozen=True)
class CredentialBundle:
    """Everything one browser session knows about its OAuth flow."""

    config: OAuthConfig | None = None
    authorization: AuthorizationState | None = None
    tokens: TokenMaterial | None = None
    user_info: UserInfo | None = None


@dataclass(frozen=True)
class _Record:
    bundle: CredentialBundle
    expires_at: float


class _ReadWriteLock:
    """Many readers or one writer."""

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False

    @contextlib.contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextlib.contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._readers:
                self._cond.wait()
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class CredentialStore:
    """In-memory credential map keyed by session id.

    Entries expire ``ttl_seconds`` after their last save and read as absent
    from then on. ``start()`` launches a background task that evicts expired
    entries every ``sweep_interval`` seconds; ``stop()`` cancels it.
    Concurrent writes to one session are last-write-wins.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        sweep_interval: float = DEFAULT_SWEEP_INTERVAL,
        clock: Callable[[], float] = time.time,
    ):
        self.ttl_seconds = ttl_seconds
        self.sweep_interval = sweep_interval
        self._clock = clock
        self._records: dict[str, _Record] = {}
        self._lock = _ReadWriteLock()
        self._sweep_task: asyncio.Task | None = None

    # ------------------------------------------------------------------
    # Collaborator interface
    # ------------------------------------------------------------------

    def save(self, session_id: str, bundle: CredentialBundle) -> None:
        with self._lock.write():
            self._records[session_id] = _Record(bundle, self._clock() + self.ttl_seconds)

    def load(self, session_id: str) -> CredentialBundle | None:
        with self._lock.read():
            record = self._records.get(session_id)
        if record is None or self._clock() >= record.expires_at:
            return None
        return record.bundle

    def clear(self, session_id: str) -> None:
        with self._lock.write():
            self._records.pop(session_id, None)

    def update(self, session_id: str, **changes) -> CredentialBundle:
        """Replace some fields of the session's bundle (creating it if absent)."""
        with self._lock.write():
            record = self._records.get(session_id)
            current = record.bundle if record and self._clock() < record.expires_at else CredentialBundle()
            bundle = replace(current, **changes)
            self._records[session_id] = _Record(bundle, self._clock() + self.ttl_seconds)
        return bundle

    def take_authorization_state(self, session_id: str) -> AuthorizationState | None:
        """Remove and return the pending state/verifier pair.

        A second call for the same login attempt returns None.
        """
        with self._lock.write():
            record = self._records.get(session_id)
            if record is None or self._clock() >= record.expires_at:
                return None
            pending = record.bundle.authorization
            if pending is not None:
                self._records[session_id] = replace(
                    record, bundle=replace(record.bundle, authorization=None)
                )
        return pending

    def __len__(self) -> int:
        with self._lock.read():
            return len(self._records)

    # ------------------------------------------------------------------
    # Expiry sweep
    # ------------------------------------------------------------------

    def sweep(self) -> int:
        """Evict expired entries. Returns how many were removed."""
        now = self._clock()
        with self._lock.write():
            expired = [sid for sid, rec in self._records.items() if now >= rec.expires_at]
            for sid in expired:
                del self._records[sid]
        if expired:
            logger.info("Evicted %d expired session credential(s)", len(expired))
        return len(expired)

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            try:
                self.sweep()
            except Exception:
                logger.warning("Credential sweep failed", exc_info=True)

    def start(self) -> None:
        """Start the periodic sweep on the running event loop."""
        if self._sweep_task is not None and not self._sweep_task.done():
            return
        self._sweep_task = asyncio.get_running_loop().create_task(self._sweep_loop())
        logger.debug("Credential sweep started (every %ss)", self.sweep_interval)

    async def stop(self) -> None:
        task, self._sweep_task = self._sweep_task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.debug("Credential sweep stopped")

    @property
    def running(self) -> bool:
        return self._sweep_task is not None and not self._sweep_task.done()
