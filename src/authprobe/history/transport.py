# Recording transport - captures every outbound exchange into the history log.
# Created: 2026-10-18

from __future__ import annotations

import asyncio
import logging
import time

import httpx

from authprobe.history.store import HistoryLog

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


def _decode(body: bytes, encoding: str | None = None) -> str:
    return body.decode(encoding or "utf-8", errors="replace")


class RecordingTransport(httpx.AsyncBaseTransport):
    """Wraps another transport and records each exchange under ``endpoint_type``.

    Request and response bodies are buffered so they can be both recorded and
    delivered unchanged. Connection failures are recorded with status 0 and the
    error text as the body, then re-raised. A failure to write the record is
    logged and never replaces the outcome of the call itself.
    """

    def __init__(
        self,
        history: HistoryLog,
        endpoint_type: str,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.history = history
        self.endpoint_type = endpoint_type
        self._owns_transport = transport is None
        self._transport = transport or httpx.AsyncHTTPTransport()

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        start = time.monotonic()
        request_body = await request.aread()

        try:
            response = await self._transport.handle_async_request(request)
        except httpx.TransportError as exc:
            await asyncio.to_thread(
                self._record,
                request,
                request_body,
                status=0,
                response_headers=[],
                response_body=str(exc) or exc.__class__.__name__,
                start=start,
            )
            raise

        # The client reuses the buffered content instead of reading the stream again
        try:
            await response.aread()
        except httpx.TransportError as exc:
            await asyncio.to_thread(
                self._record,
                request,
                request_body,
                status=response.status_code,
                response_headers=response.headers.multi_items(),
                response_body=str(exc) or exc.__class__.__name__,
                start=start,
            )
            raise

        await asyncio.to_thread(
            self._record,
            request,
            request_body,
            status=response.status_code,
            response_headers=response.headers.multi_items(),
            response_body=response.text,
            start=start,
        )
        return response

    def _record(
        self,
        request: httpx.Request,
        request_body: bytes,
        *,
        status: int,
        response_headers: list[tuple[str, str]],
        response_body: str,
        start: float,
    ) -> None:
        duration_ms = int((time.monotonic() - start) * 1000)
        try:
            self.history.log_exchange(
                method=request.method,
                url=str(request.url),
                request_headers=request.headers.multi_items(),
                request_body=_decode(request_body),
                response_status=status,
                response_headers=response_headers,
                response_body=response_body,
                duration_ms=duration_ms,
                endpoint_type=self.endpoint_type,
            )
        except Exception as e:
            logger.critical(
                "FAILED TO WRITE HTTP HISTORY: %s | %s %s (%s)",
                e,
                request.method,
                request.url,
                self.endpoint_type,
            )

    async def aclose(self) -> None:
        # Injected transports belong to the caller
        if self._owns_transport:
            await self._transport.aclose()


def recording_client(
    history: HistoryLog,
    endpoint_type: str,
    transport: httpx.AsyncBaseTransport | None = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> httpx.AsyncClient:
    """Build an ``httpx.AsyncClient`` whose every call lands in ``history``."""
    return httpx.AsyncClient(
        transport=RecordingTransport(history, endpoint_type, transport),
        timeout=timeout,
    )
