"""Fan-out orchestration: plan, isolate, execute agents concurrently, collect results."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from datetime import datetime, timezone
from typing import Callable
from uuid import uuid4

from .codex import CodexRunner
from .config import FanoutSettings
from .control import CancellationToken, RunDescriptor, RunRegistry
from .errors import PlanningFailedError, WorktreeError
from .executor import AgentExecutor
from .models import AgentConfig, AgentFailure, AgentResult, RunResult
from .planner import Planner
from .recorder import ChromaSessionRecorder, CompositeRecorder, JsonSessionRecorder, SessionRecorder
from .storage import ChromaStore
from .worktree import WorktreeManager

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str], None]


def new_run_id() -> str:
    stamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
    return f"{stamp}-{uuid4().hex[:6]}"


def positional_ids(agents: list[AgentConfig]) -> list[AgentConfig]:
    """Re-key agents by array position so paths and branches stay unique."""

    keyed: list[AgentConfig] = []
    for index, agent in enumerate(agents):
        expected = f"{index + 1:02d}"
        if agent.id != expected:
            logger.info("Renumbering agent", extra={"from_id": agent.id, "to_id": expected})
            agent = agent.model_copy(update={"id": expected})
        keyed.append(agent)
    return keyed


class Orchestrator:
    """Drives one fan-out round per call to :meth:`run`."""

    def __init__(
        self,
        settings: FanoutSettings,
        runner: CodexRunner,
        *,
        registry: RunRegistry | None = None,
        recorder: SessionRecorder | None = None,
        chroma_store: ChromaStore | None = None,
        progress: ProgressCallback | None = None,
    ) -> None:
        self._settings = settings
        self._runner = runner
        self._registry = registry or RunRegistry()
        self._recorder = recorder
        self._chroma_store = chroma_store
        self._progress = progress
        self._planner = Planner(runner, settings)

    @property
    def registry(self) -> RunRegistry:
        return self._registry

    def cancel_session(self, session_id: str) -> RunDescriptor | None:
        return self._registry.cancel_session(session_id)

    def cancel_all(self) -> list[RunDescriptor]:
        return self._registry.cancel_all()

    async def run(self, parent_session: str, task_text: str | None = None) -> RunResult:
        run_id = new_run_id()
        with self._registry.register_run(parent_session, run_id) as guard:
            token = guard.token()
            logger.info("Starting fan-out run", extra={"session_id": parent_session, "run_id": run_id})
            self._record_run(run_id, parent_session, "planning")

            try:
                agents = await self._planner.generate_agents(parent_session, task_text)
            except PlanningFailedError as exc:
                self._record_run(run_id, parent_session, "planning_failed", {"reason": exc.reason})
                raise
            agents = positional_ids(agents)
            self._notify(f"Plan ready: {len(agents)} agents ({', '.join(agent.name for agent in agents)})")

            try:
                manager = await WorktreeManager.open(
                    self._settings.repo_path,
                    run_id,
                    state_dir=self._settings.resolved_state_dir,
                )
            except WorktreeError as exc:
                self._record_run(run_id, parent_session, "failed", {"reason": str(exc)})
                raise
            executor = AgentExecutor(parent_session, self._runner, self._settings)
            recorder = self._recorder_for(run_id, parent_session)
            limit = self._settings.max_concurrent_agents
            semaphore = asyncio.Semaphore(limit) if limit else None

            tasks = [
                asyncio.create_task(
                    self._run_agent(config, manager, executor, recorder, run_id, token, semaphore),
                    name=f"agent-{config.id}",
                )
                for config in agents
            ]
            outcomes = await asyncio.gather(*tasks, return_exceptions=True)

            result = RunResult(session_id=parent_session, run_id=run_id)
            for config, outcome in zip(agents, outcomes):
                if isinstance(outcome, AgentResult):
                    result.agents.append(outcome)
                    continue
                logger.error(
                    "Agent failed",
                    extra={"agent_id": config.id, "run_id": run_id, "error": str(outcome)},
                )
                result.failures.append(
                    AgentFailure(agent_id=config.id, error=str(outcome), error_type=type(outcome).__name__)
                )
                self._notify(f"Agent {config.id} ({config.name}) failed: {outcome}")

            self._record_run(
                run_id,
                parent_session,
                "cancelled" if token.cancelled else "completed",
                {"succeeded": len(result.agents), "failed": len(result.failures)},
            )
            logger.info(
                "Fan-out run finished",
                extra={
                    "run_id": run_id,
                    "succeeded": len(result.agents),
                    "failed": len(result.failures),
                },
            )
            return result

    async def _run_agent(
        self,
        config: AgentConfig,
        manager: WorktreeManager,
        executor: AgentExecutor,
        recorder: SessionRecorder,
        run_id: str,
        token: CancellationToken,
        semaphore: asyncio.Semaphore | None,
    ) -> AgentResult:
        token.raise_if_cancelled(config.id)
        worktree = await manager.create(config.id)
        self._notify(f"Worktree created for agent {config.id}: {worktree.path}")
        self._record_worktree(run_id, config, str(worktree.path), worktree.branch, "active")

        async with semaphore if semaphore is not None else contextlib.nullcontext():
            result = await executor.execute(config, worktree, recorder, run_id, token=token)

        # The commit already exists on the branch; bookkeeping failures from here on are logged only.
        try:
            await recorder.record_commit(config.id, result.commit_hash, result.branch)
            self._record_worktree(
                run_id, config, str(worktree.path), worktree.branch, "committed", {"commit": result.commit_hash}
            )
        except Exception as exc:
            logger.warning(
                "Failed to record agent commit",
                extra={
                    "agent_id": config.id,
                    "run_id": run_id,
                    "commit": result.commit_hash,
                    "error": str(exc),
                },
            )
            self._notify(f"Agent {config.id} ({config.name}) committed but recording failed: {exc}")
        self._notify(f"Agent {config.id} ({config.name}) finished: commit {result.commit_hash[:8]}")
        return result

    def _recorder_for(self, run_id: str, parent_session: str) -> SessionRecorder:
        recorders: list[SessionRecorder] = [
            JsonSessionRecorder.in_state_dir(self._settings.resolved_state_dir)
        ]
        if self._chroma_store is not None:
            recorders.append(
                ChromaSessionRecorder(self._chroma_store, run_id=run_id, parent_session=parent_session)
            )
        if self._recorder is not None:
            recorders.append(self._recorder)
        return CompositeRecorder(*recorders)

    def _notify(self, message: str) -> None:
        logger.info(message)
        if self._progress is not None:
            self._progress(message)

    def _record_run(self, run_id: str, session_id: str, status: str, metadata: dict | None = None) -> None:
        if self._chroma_store is None:
            return
        self._chroma_store.record_run(run_id=run_id, session_id=session_id, status=status, metadata=metadata)

    def _record_worktree(
        self,
        run_id: str,
        config: AgentConfig,
        path: str,
        branch: str,
        status: str,
        metadata: dict | None = None,
    ) -> None:
        if self._chroma_store is None:
            return
        self._chroma_store.record_worktree(
            run_id=run_id,
            agent_id=config.id,
            path=path,
            branch=branch,
            status=status,
            metadata={"name": config.name, **(metadata or {})},
        )


__all__ = ["Orchestrator", "ProgressCallback", "new_run_id", "positional_ids"]
