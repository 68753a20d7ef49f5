"""Data models for persistent run tracking."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any


@dataclass(slots=True)
class WorktreeRecord:
    run_id: str
    agent_id: str
    path: str
    branch: str | None
    created_at: datetime
    status: str
    metadata: dict[str, Any]


@dataclass(slots=True)
class SessionTrackingRecord:
    session_id: str
    run_id: str
    agent_id: str
    started_at: datetime
    status: str
    metadata: dict[str, Any]


@dataclass(slots=True)
class RunRecord:
    run_id: str
    session_id: str
    status: str
    updated_at: datetime
    metadata: dict[str, Any]


__all__ = ["RunRecord", "SessionTrackingRecord", "WorktreeRecord"]
