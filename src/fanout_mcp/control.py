"""Run registry: at most one active fan-out run per session."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass

from .errors import AlreadyRunningError, RunCancelledError

logger = logging.getLogger(__name__)


class CancellationToken:
    """Cooperative cancellation flag shared by every task of a run.

    Signalling never interrupts running work; tasks poll it at safe points.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, agent_id: str) -> None:
        if self._event.is_set():
            raise RunCancelledError(agent_id)


@dataclass(slots=True, frozen=True)
class RunDescriptor:
    session_id: str
    run_id: str


@dataclass(slots=True)
class _RunEntry:
    run_id: str
    token: CancellationToken


class RunGuard:
    """Owning handle for a registered run.

    Use as a context manager; the registry slot is freed on exit whether the
    block returns, raises or is cancelled.
    """

    def __init__(self, registry: "RunRegistry", descriptor: RunDescriptor, token: CancellationToken) -> None:
        self._registry = registry
        self._descriptor = descriptor
        self._token = token
        self._released = False

    @property
    def descriptor(self) -> RunDescriptor:
        return self._descriptor

    def token(self) -> CancellationToken:
        return self._token

    def release(self) -> None:
        if self._released:
            return
        self._released = True
        self._registry._remove(self._descriptor)

    def __enter__(self) -> "RunGuard":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()


class RunRegistry:
    """Table of active runs keyed by parent session id."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._runs: dict[str, _RunEntry] = {}

    def register_run(self, session_id: str, run_id: str) -> RunGuard:
        token = CancellationToken()
        with self._lock:
            if session_id in self._runs:
                raise AlreadyRunningError(session_id)
            self._runs[session_id] = _RunEntry(run_id=run_id, token=token)

        logger.debug("Registered run", extra={"session_id": session_id, "run_id": run_id})
        return RunGuard(self, RunDescriptor(session_id=session_id, run_id=run_id), token)

    def cancel_session(self, session_id: str) -> RunDescriptor | None:
        with self._lock:
            entry = self._runs.get(session_id)
            if entry is None:
                return None
            token = entry.token
            descriptor = RunDescriptor(session_id=session_id, run_id=entry.run_id)

        token.cancel()
        logger.info("Cancelled run", extra={"session_id": session_id, "run_id": descriptor.run_id})
        return descriptor

    def cancel_all(self) -> list[RunDescriptor]:
        with self._lock:
            snapshot = [
                (entry.token, RunDescriptor(session_id=session_id, run_id=entry.run_id))
                for session_id, entry in self._runs.items()
            ]

        for token, _ in snapshot:
            token.cancel()
        if snapshot:
            logger.info("Cancelled all runs", extra={"count": len(snapshot)})
        return [descriptor for _, descriptor in snapshot]

    def active_runs(self) -> list[RunDescriptor]:
        with self._lock:
            return [
                RunDescriptor(session_id=session_id, run_id=entry.run_id)
                for session_id, entry in self._runs.items()
            ]

    def is_running(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._runs

    def _remove(self, descriptor: RunDescriptor) -> None:
        with self._lock:
            entry = self._runs.get(descriptor.session_id)
            # A later run for the same session must not be evicted by a stale guard.
            if entry is not None and entry.run_id == descriptor.run_id:
                del self._runs[descriptor.session_id]
        logger.debug(
            "Released run",
            extra={"session_id": descriptor.session_id, "run_id": descriptor.run_id},
        )


__all__ = ["CancellationToken", "RunDescriptor", "RunGuard", "RunRegistry"]
