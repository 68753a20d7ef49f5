"""Storage abstractions for Fanout MCP."""

from .chroma import ChromaEvent, ChromaStore, ChromaUnavailableError
from .models import RunRecord, SessionTrackingRecord, WorktreeRecord

__all__ = [
    "ChromaEvent",
    "ChromaStore",
    "ChromaUnavailableError",
    "RunRecord",
    "SessionTrackingRecord",
    "WorktreeRecord",
]
