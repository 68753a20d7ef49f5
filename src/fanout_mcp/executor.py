"""Runs one agent: a resume-clone Codex invocation inside its own worktree."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path

from .codex import CodexRunner
from .codex.utils import excerpt
from .config import FanoutSettings
from .control import CancellationToken
from .errors import AgentExecutionError, MissingMetadataError
from .models import AgentConfig, AgentResult
from .recorder import SessionRecorder
from .worktree import AgentWorktree

logger = logging.getLogger(__name__)

AGENT_PROMPT = """\
Your role: {name} - {role}

Building on the user's requirements from the earlier conversation, implement the solution from your specialist point of view.
Start writing code directly; your changes are committed automatically when you finish.
"""


def build_agent_prompt(config: AgentConfig) -> str:
    return AGENT_PROMPT.format(name=config.name, role=config.role)


def side_channel_path(state_dir: Path, run_id: str, agent_id: str) -> Path:
    return Path(state_dir) / f"agent-{run_id}-{agent_id}-session.json"


class AgentExecutor:
    """Executes agents forked from one parent Codex session."""

    def __init__(self, parent_session: str, runner: CodexRunner, settings: FanoutSettings) -> None:
        self._parent_session = parent_session
        self._runner = runner
        self._settings = settings

    @property
    def parent_session(self) -> str:
        return self._parent_session

    async def execute(
        self,
        config: AgentConfig,
        worktree: AgentWorktree,
        recorder: SessionRecorder,
        run_id: str,
        *,
        token: CancellationToken | None = None,
    ) -> AgentResult:
        prompt = build_agent_prompt(config)
        id_output = side_channel_path(self._settings.resolved_state_dir, run_id, config.id).resolve()
        await asyncio.to_thread(id_output.parent.mkdir, parents=True, exist_ok=True)

        if token is not None:
            token.raise_if_cancelled(config.id)

        logger.debug(
            "Launching agent",
            extra={"agent_id": config.id, "cwd": str(worktree.path), "id_output": str(id_output)},
        )
        try:
            result = await self._runner.exec_resume_clone(
                self._parent_session,
                prompt,
                model=self._settings.codex_model,
                sandbox=self._settings.codex_sandbox,
                id_output=id_output,
                cwd=worktree.path,
            )
        except OSError as exc:
            raise AgentExecutionError(config.id, None, f"failed to launch codex: {exc}") from exc

        if not result.ok:
            logger.error(
                "Agent codex execution failed",
                extra={
                    "agent_id": config.id,
                    "returncode": result.returncode,
                    "stderr": excerpt(result.stderr, 500),
                    "stdout": excerpt(result.stdout, 200),
                },
            )
            raise AgentExecutionError(config.id, result.returncode, excerpt(result.stderr, 300))

        session_id, log_path = await self._read_metadata(config.id, id_output)
        logger.debug(
            "Agent session started",
            extra={"agent_id": config.id, "session_id": session_id, "log_path": log_path},
        )

        # Session start is recorded ahead of the commit.
        await recorder.record_session_start(config.id, session_id, log_path)

        try:
            await asyncio.to_thread(id_output.unlink, missing_ok=True)
        except OSError:
            logger.debug("Could not remove side-channel file", extra={"path": str(id_output)})

        commit_hash = await worktree.auto_commit()

        return AgentResult(
            agent_id=config.id,
            session_id=session_id,
            commit_hash=commit_hash,
            branch=worktree.branch,
            log_path=log_path,
        )

    async def _read_metadata(self, agent_id: str, path: Path) -> tuple[str, str]:
        try:
            content = await asyncio.to_thread(path.read_text, encoding="utf-8")
        except OSError as exc:
            raise MissingMetadataError(agent_id, f"failed to read {path}: {exc}") from exc

        try:
            metadata = json.loads(content)
        except json.JSONDecodeError as exc:
            raise MissingMetadataError(agent_id, f"invalid JSON in {path}: {exc}") from exc
        if not isinstance(metadata, dict):
            raise MissingMetadataError(agent_id, f"expected a JSON object in {path}")

        session_id = metadata.get("session_id")
        log_path = metadata.get("rollout_path")
        if not isinstance(session_id, str) or not session_id:
            raise MissingMetadataError(agent_id, "missing session_id")
        if not isinstance(log_path, str) or not log_path:
            raise MissingMetadataError(agent_id, "missing rollout_path")
        return session_id, log_path


__all__ = ["AGENT_PROMPT", "AgentExecutor", "build_agent_prompt", "side_channel_path"]
