# HTTP history record.
# Created: 2026-10-18

from __future__ import annotations

import json
from collections.abc import Iterable
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any


def serialize_headers(headers: Iterable[tuple[str, str]] | None) -> str:
    """Serialize header pairs to JSON text as ``{name: [values]}``.

    Repeated headers keep every value, in order.
    """
    grouped: dict[str, list[str]] = {}
    for name, value in headers or ():
        grouped.setdefault(name, []).append(value)
    return json.dumps(grouped)


def deserialize_headers(data: str) -> dict[str, list[str]]:
    if not data:
        return {}
    return json.loads(data)


@dataclass
class HistoryEntry:
    """One outbound request/response pair.

    Headers are JSON text, bodies are decoded text. Entries are append-only;
    ``id`` and ``created_at`` are assigned by the log on append.
    """

    request_method: str
    request_url: str
    request_headers: str = "{}"
    request_body: str = ""
    response_status: int = 0
    response_headers: str = "{}"
    response_body: str = ""
    duration_ms: int = 0
    endpoint_type: str = ""
    id: int | None = None
    created_at: datetime | None = None

    def request_headers_dict(self) -> dict[str, list[str]]:
        return deserialize_headers(self.request_headers)

    def response_headers_dict(self) -> dict[str, list[str]]:
        return deserialize_headers(self.response_headers)

    @property
    def is_transport_failure(self) -> bool:
        """Synthetic entries for connection errors carry status 0."""
        return self.response_status == 0

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["created_at"] = self.created_at.isoformat() if self.created_at else None
        return data
