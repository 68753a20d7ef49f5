"""Chroma-based persistence layer for run, session and worktree events."""

from __future__ import annotations

import json
import uuid
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterable, Protocol

from .models import RunRecord, SessionTrackingRecord, WorktreeRecord


class ChromaUnavailableError(RuntimeError):
    """Raised when the Chroma client cannot be constructed."""


class CollectionProtocol(Protocol):
    """Protocol for the minimal Chroma collection API used here."""

    def add(
        self,
        *,
        documents: Iterable[str],
        metadatas: Iterable[dict[str, Any]],
        ids: Iterable[str],
    ) -> None:
        ...

    def get(
        self,
        *,
        ids: Iterable[str] | None = None,
        where: dict[str, Any] | None = None,
        limit: int | None = None,
    ) -> dict[str, list[Any]]:
        ...


class ClientProtocol(Protocol):
    def get_or_create_collection(self, name: str) -> CollectionProtocol:
        ...


@dataclass(slots=True)
class ChromaEvent:
    """Represents a stored event in Chroma."""

    id: str
    session_id: str
    event_type: str
    document: str
    metadata: dict[str, Any]
    timestamp: datetime


def _where(filters: dict[str, Any] | None) -> dict[str, Any] | None:
    # Chroma rejects a flat multi-key `where`; combine clauses with $and.
    if not filters:
        return None
    if len(filters) == 1:
        return dict(filters)
    return {"$and": [{key: value} for key, value in filters.items()]}


def _scalar_metadata(metadata: dict[str, Any]) -> dict[str, Any]:
    # Chroma metadata values must be str/int/float/bool.
    cleaned: dict[str, Any] = {}
    for key, value in metadata.items():
        if value is None:
            continue
        if isinstance(value, (str, int, float, bool)):
            cleaned[key] = value
        else:
            cleaned[key] = json.dumps(value)
    return cleaned


class ChromaStore:
    """Manage persistence of run events via ChromaDB."""

    def __init__(
        self,
        path: Path,
        *,
        collection_name: str = "fanout_runs",
        client_factory: Callable[[], ClientProtocol] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._path = Path(path)
        self._collection_name = collection_name
        self._client_factory = client_factory or self._default_client_factory
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._client: ClientProtocol | None = None
        self._collection: CollectionProtocol | None = None
        self._counters: dict[str, int] = defaultdict(int)

    def _default_client_factory(self) -> ClientProtocol:
        try:
            import chromadb
        except ImportError as exc:  # pragma: no cover - depends on environment
            raise ChromaUnavailableError(
                "chromadb package is not installed; install fanout-mcp with the persistence extra"
            ) from exc

        return chromadb.PersistentClient(path=str(self._path))

    def _ensure_collection(self) -> CollectionProtocol:
        if self._collection is None:
            client = self._client or self._client_factory()
            self._client = client
            self._collection = client.get_or_create_collection(self._collection_name)
        return self._collection

    def _convert_result(self, result: dict[str, list[Any]]) -> list[ChromaEvent]:
        events: list[ChromaEvent] = []
        ids = result.get("ids", [])
        documents = result.get("documents", [])
        metadatas = result.get("metadatas", [])
        for event_id, document, metadata in zip(ids, documents, metadatas):
            timestamp_raw = metadata.get("timestamp")
            timestamp = (
                datetime.fromisoformat(timestamp_raw)
                if isinstance(timestamp_raw, str)
                else self._clock()
            )
            events.append(
                ChromaEvent(
                    id=event_id,
                    session_id=metadata.get("session_id", ""),
                    event_type=metadata.get("event_type", ""),
                    document=document,
                    metadata=metadata,
                    timestamp=timestamp,
                )
            )
        events.sort(key=lambda event: (event.timestamp, event.metadata.get("sequence", 0)))
        return events

    def ping(self) -> bool:
        """Verify that the underlying collection can be obtained."""

        self._ensure_collection()
        return True

    def record_event(
        self,
        *,
        session_id: str,
        event_type: str,
        body: Any,
        metadata: dict[str, Any] | None = None,
    ) -> ChromaEvent:
        collection = self._ensure_collection()
        counter = self._counters[session_id] = self._counters[session_id] + 1
        event_id = f"{session_id}:{uuid.uuid4().hex}"
        timestamp = self._clock()

        document = body if isinstance(body, str) else json.dumps(body)
        record_metadata: dict[str, Any] = {}
        if metadata:
            record_metadata.update(_scalar_metadata(metadata))
        record_metadata.update(
            {
                "session_id": session_id,
                "event_type": event_type,
                "timestamp": timestamp.isoformat(),
                "sequence": counter,
            }
        )

        collection.add(
            documents=[document],
            metadatas=[record_metadata],
            ids=[event_id],
        )

        return ChromaEvent(
            id=event_id,
            session_id=session_id,
            event_type=event_type,
            document=document,
            metadata=record_metadata,
            timestamp=timestamp,
        )

    def fetch_session_events(self, session_id: str, *, limit: int | None = None) -> list[ChromaEvent]:
        collection = self._ensure_collection()
        result = collection.get(where={"session_id": session_id}, limit=limit)
        return self._convert_result(result)

    def record_run(
        self,
        *,
        run_id: str,
        session_id: str,
        status: str,
        metadata: dict[str, Any] | None = None,
    ) -> RunRecord:
        payload = {"run_id": run_id, "session_id": session_id, "status": status}
        if metadata:
            payload.update(metadata)

        event = self.record_event(
            session_id=f"run::{run_id}",
            event_type="run_update",
            body=payload,
            metadata={"run_id": run_id, "parent_session": session_id, "status": status},
        )
        return RunRecord(
            run_id=run_id,
            session_id=session_id,
            status=status,
            updated_at=event.timestamp,
            metadata=metadata or {},
        )

    def list_runs(self) -> list[RunRecord]:
        """Latest status per run, oldest run first."""

        latest: dict[str, RunRecord] = {}
        for event in self.search_events(filters={"event_type": "run_update"}):
            doc = json.loads(event.document)
            latest[doc["run_id"]] = RunRecord(
                run_id=doc["run_id"],
                session_id=doc["session_id"],
                status=doc.get("status", "unknown"),
                updated_at=event.timestamp,
                metadata={k: v for k, v in doc.items() if k not in {"run_id", "session_id", "status"}},
            )
        return list(latest.values())

    def record_worktree(
        self,
        *,
        run_id: str,
        agent_id: str,
        path: str,
        branch: str | None,
        status: str,
        metadata: dict[str, Any] | None = None,
    ) -> WorktreeRecord:
        timestamp = self._clock()
        payload = {
            "run_id": run_id,
            "agent_id": agent_id,
            "path": path,
            "branch": branch,
            "status": status,
            "timestamp": timestamp.isoformat(),
        }
        if metadata:
            payload.update(metadata)

        event = self.record_event(
            session_id=f"worktree::{run_id}::{agent_id}",
            event_type="worktree_update",
            body=payload,
            metadata={"run_id": run_id, "agent_id": agent_id, "path": path, "status": status},
        )

        return WorktreeRecord(
            run_id=run_id,
            agent_id=agent_id,
            path=path,
            branch=branch,
            created_at=event.timestamp,
            status=status,
            metadata=metadata or {},
        )

    def list_worktrees(self, run_id: str | None = None) -> list[WorktreeRecord]:
        filters: dict[str, Any] = {"event_type": "worktree_update"}
        if run_id:
            filters["run_id"] = run_id
        worktrees: list[WorktreeRecord] = []
        for event in self.search_events(filters=filters):
            doc = json.loads(event.document)
            worktrees.append(
                WorktreeRecord(
                    run_id=doc["run_id"],
                    agent_id=doc["agent_id"],
                    path=doc["path"],
                    branch=doc.get("branch"),
                    created_at=event.timestamp,
                    status=doc.get("status", "unknown"),
                    metadata={
                        k: v
                        for k, v in doc.items()
                        if k not in {"run_id", "agent_id", "path", "branch", "status", "timestamp"}
                    },
                )
            )
        return worktrees

    def record_session_tracking(
        self,
        *,
        session_id: str,
        run_id: str,
        agent_id: str,
        status: str,
        metadata: dict[str, Any] | None = None,
    ) -> SessionTrackingRecord:
        payload = {
            "session_id": session_id,
            "run_id": run_id,
            "agent_id": agent_id,
            "status": status,
        }
        if metadata:
            payload.update(metadata)

        event = self.record_event(
            session_id=f"session::{session_id}",
            event_type="session_tracking",
            body=payload,
            metadata={
                "agent_session": session_id,
                "run_id": run_id,
                "agent_id": agent_id,
                "status": status,
            },
        )

        return SessionTrackingRecord(
            session_id=session_id,
            run_id=run_id,
            agent_id=agent_id,
            started_at=event.timestamp,
            status=status,
            metadata=metadata or {},
        )

    def list_session_tracking(self, run_id: str | None = None) -> list[SessionTrackingRecord]:
        filters: dict[str, Any] = {"event_type": "session_tracking"}
        if run_id:
            filters["run_id"] = run_id
        sessions: list[SessionTrackingRecord] = []
        for event in self.search_events(filters=filters):
            doc = json.loads(event.document)
            sessions.append(
                SessionTrackingRecord(
                    session_id=doc["session_id"],
                    run_id=doc["run_id"],
                    agent_id=doc["agent_id"],
                    started_at=event.timestamp,
                    status=doc.get("status", "unknown"),
                    metadata={
                        k: v
                        for k, v in doc.items()
                        if k not in {"session_id", "run_id", "agent_id", "status"}
                    },
                )
            )
        return sessions

    def search_events(
        self,
        query: str | None = None,
        *,
        filters: dict[str, Any] | None = None,
        limit: int | None = None,
    ) -> list[ChromaEvent]:
        collection = self._ensure_collection()
        events = self._convert_result(collection.get(where=_where(filters)))
        if query:
            needle = query.lower()
            events = [
                event
                for event in events
                if needle in event.document.lower()
                or any(needle in str(value).lower() for value in event.metadata.values())
            ]
        return events[:limit] if limit else events


__all__ = ["ChromaEvent", "ChromaStore", "ChromaUnavailableError"]
