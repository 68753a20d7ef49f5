"""Session recorders that receive agent progress as soon as it is known."""

from __future__ import annotations

import asyncio
import json
import logging
import threading
from pathlib import Path
from typing import Any, Protocol

from .storage import ChromaStore

logger = logging.getLogger(__name__)

SESSIONS_FILE = "round1_sessions.json"


class SessionRecorder(Protocol):
    """Receives per-agent milestones; a raised exception fails that agent."""

    async def record_session_start(self, agent_id: str, session_id: str, log_path: str) -> None:
        ...

    async def record_commit(self, agent_id: str, commit_hash: str, branch: str) -> None:
        ...


class JsonSessionRecorder:
    """Keeps ``round1_sessions.json``: one entry per agent, rewritten on every update.

    File writes run in a worker thread so the event loop is never blocked.
    """

    def __init__(self, path: Path) -> None:
        self._path = Path(path)
        self._lock = threading.Lock()
        self._entries: dict[str, dict[str, Any]] = {}

    @classmethod
    def in_state_dir(cls, state_dir: Path) -> "JsonSessionRecorder":
        return cls(Path(state_dir) / SESSIONS_FILE)

    @property
    def path(self) -> Path:
        return self._path

    async def record_session_start(self, agent_id: str, session_id: str, log_path: str) -> None:
        await asyncio.to_thread(self._update, agent_id, {"session_id": session_id, "jsonl_path": log_path})

    async def record_commit(self, agent_id: str, commit_hash: str, branch: str) -> None:
        await asyncio.to_thread(self._update, agent_id, {"commit": commit_hash, "branch": branch})

    def entries(self) -> list[dict[str, Any]]:
        with self._lock:
            return [dict(self._entries[key]) for key in sorted(self._entries)]

    def _update(self, agent_id: str, fields: dict[str, str]) -> None:
        with self._lock:
            entry = self._entries.setdefault(agent_id, {"agent_id": agent_id})
            entry.update(fields)
            self._flush()

    def _flush(self) -> None:
        payload = [self._entries[key] for key in sorted(self._entries)]
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        tmp_path.replace(self._path)
        logger.debug("Wrote session index", extra={"path": str(self._path), "agents": len(payload)})


class ChromaSessionRecorder:
    """Forwards agent milestones of one run into the Chroma event log."""

    def __init__(self, store: ChromaStore, *, run_id: str, parent_session: str) -> None:
        self._store = store
        self._run_id = run_id
        self._parent_session = parent_session

    async def record_session_start(self, agent_id: str, session_id: str, log_path: str) -> None:
        await asyncio.to_thread(
            self._store.record_session_tracking,
            session_id=session_id,
            run_id=self._run_id,
            agent_id=agent_id,
            status="running",
            metadata={"parent_session": self._parent_session, "log_path": log_path},
        )

    async def record_commit(self, agent_id: str, commit_hash: str, branch: str) -> None:
        await asyncio.to_thread(
            self._store.record_event,
            session_id=f"run::{self._run_id}",
            event_type="agent_committed",
            body={"agent_id": agent_id, "commit": commit_hash, "branch": branch},
            metadata={"run_id": self._run_id, "agent_id": agent_id, "status": "committed"},
        )


class CompositeRecorder:
    """Fans each milestone out to several recorders in order."""

    def __init__(self, *recorders: SessionRecorder) -> None:
        self._recorders = list(recorders)

    async def record_session_start(self, agent_id: str, session_id: str, log_path: str) -> None:
        for recorder in self._recorders:
            await recorder.record_session_start(agent_id, session_id, log_path)

    async def record_commit(self, agent_id: str, commit_hash: str, branch: str) -> None:
        for recorder in self._recorders:
            await recorder.record_commit(agent_id, commit_hash, branch)


__all__ = [
    "ChromaSessionRecorder",
    "CompositeRecorder",
    "JsonSessionRecorder",
    "SESSIONS_FILE",
    "SessionRecorder",
]
