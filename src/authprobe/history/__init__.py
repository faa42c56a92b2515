"""HTTP history: append-only log of outbound exchanges and the transport that feeds it."""

from authprobe.history.models import HistoryEntry
from authprobe.history.store import HistoryLog
from authprobe.history.transport import RecordingTransport, recording_client

__all__ = ["HistoryEntry", "HistoryLog", "RecordingTransport", "recording_client"]
