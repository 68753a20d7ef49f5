from __future__ import annotations

import asyncio
import json
import shutil
from pathlib import Path

import pytest

from fanout_mcp.codex.runner import CodexExecutionResult, FakeCodexRunner, id_output_from_args
from fanout_mcp.config import FanoutSettings
from fanout_mcp.control import CancellationToken
from fanout_mcp.errors import AgentExecutionError, MissingMetadataError, RunCancelledError
from fanout_mcp.executor import AgentExecutor, build_agent_prompt, side_channel_path
from fanout_mcp.models import AgentConfig
from fanout_mcp.worktree import WorktreeManager

pytestmark = pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")

CONFIG = AgentConfig(id="01", name="Backend Engineer", role="Implement the API")


class RecordingRecorder:
    def __init__(self, fail: bool = False) -> None:
        self.calls: list[tuple] = []
        self._fail = fail

    async def record_session_start(self, agent_id: str, session_id: str, log_path: str) -> None:
        if self._fail:
            raise RuntimeError("recorder unavailable")
        self.calls.append(("start", agent_id, session_id, log_path))

    async def record_commit(self, agent_id: str, commit_hash: str, branch: str) -> None:
        self.calls.append(("commit", agent_id, commit_hash, branch))


def _settings(repo: Path, tmp_path: Path) -> FanoutSettings:
    return FanoutSettings(
        _env_file=None,
        repo_path=repo,
        state_dir=tmp_path / "state",
        codex_model="gpt-test",
        codex_sandbox="workspace-write",
    )


def _worktree(repo: Path, tmp_path: Path):
    async def make():
        manager = await WorktreeManager.open(repo, "run-1", state_dir=tmp_path / "state")
        return manager, await manager.create(CONFIG.id)

    return asyncio.run(make())


def agent_handler(*, metadata: dict | None = None, edit: str | None = None, returncode: int = 0):
    async def handler(args, cwd):
        if returncode:
            return CodexExecutionResult(args=args, returncode=returncode, stdout="partial", stderr="x" * 1000)
        if edit is not None:
            (cwd / "app.py").write_text(edit, encoding="utf-8")
        target = id_output_from_args(args)
        payload = metadata if metadata is not None else {
            "session_id": "sess-01",
            "rollout_path": "/logs/sess-01.jsonl",
        }
        target.write_text(json.dumps(payload), encoding="utf-8")
        return CodexExecutionResult(args=args, returncode=0, stdout="done", stderr="")

    return handler


def test_execute_commits_changes_and_reports_session(git_repo: Path, git, tmp_path: Path) -> None:
    settings = _settings(git_repo, tmp_path)
    manager, worktree = _worktree(git_repo, tmp_path)
    runner = FakeCodexRunner(handler=agent_handler(edit="print('agent')\n"))
    recorder = RecordingRecorder()

    result = asyncio.run(AgentExecutor("abc123", runner, settings).execute(CONFIG, worktree, recorder, "run-1"))

    assert result.agent_id == "01"
    assert result.session_id == "sess-01"
    assert result.log_path == "/logs/sess-01.jsonl"
    assert result.branch == worktree.branch
    assert result.commit_hash != manager.base_commit
    assert git(worktree.path, "rev-parse", "HEAD") == result.commit_hash
    assert recorder.calls == [("start", "01", "sess-01", "/logs/sess-01.jsonl")]

    (args,) = runner.invocations
    assert runner.cwds == [worktree.path]
    assert args[-3:-1] == ("resume-clone", "abc123")
    assert args[-1] == build_agent_prompt(CONFIG)
    assert id_output_from_args(args) == side_channel_path(tmp_path / "state", "run-1", "01").resolve()
    assert not id_output_from_args(args).exists()


def test_execute_without_changes_returns_base_commit(git_repo: Path, tmp_path: Path) -> None:
    settings = _settings(git_repo, tmp_path)
    manager, worktree = _worktree(git_repo, tmp_path)
    runner = FakeCodexRunner(handler=agent_handler())

    result = asyncio.run(
        AgentExecutor("abc123", runner, settings).execute(CONFIG, worktree, RecordingRecorder(), "run-1")
    )

    assert result.commit_hash == manager.base_commit


def test_execute_nonzero_exit_raises_execution_error(git_repo: Path, tmp_path: Path) -> None:
    settings = _settings(git_repo, tmp_path)
    _, worktree = _worktree(git_repo, tmp_path)
    runner = FakeCodexRunner(handler=agent_handler(returncode=4))
    recorder = RecordingRecorder()

    with pytest.raises(AgentExecutionError) as excinfo:
        asyncio.run(AgentExecutor("abc123", runner, settings).execute(CONFIG, worktree, recorder, "run-1"))

    assert excinfo.value.agent_id == "01"
    assert excinfo.value.exit_code == 4
    assert len(excinfo.value.stderr_excerpt) == 300
    assert recorder.calls == []


@pytest.mark.parametrize(
    "metadata",
    [
        {"rollout_path": "/logs/x.jsonl"},
        {"session_id": "sess-01"},
        {"session_id": "", "rollout_path": "/logs/x.jsonl"},
    ],
)
def test_execute_missing_metadata_fields(git_repo: Path, tmp_path: Path, metadata: dict) -> None:
    settings = _settings(git_repo, tmp_path)
    _, worktree = _worktree(git_repo, tmp_path)
    runner = FakeCodexRunner(handler=agent_handler(metadata=metadata))

    with pytest.raises(MissingMetadataError):
        asyncio.run(
            AgentExecutor("abc123", runner, settings).execute(CONFIG, worktree, RecordingRecorder(), "run-1")
        )


def test_execute_without_side_channel_file_fails(git_repo: Path, tmp_path: Path) -> None:
    settings = _settings(git_repo, tmp_path)
    _, worktree = _worktree(git_repo, tmp_path)
    runner = FakeCodexRunner()

    with pytest.raises(MissingMetadataError) as excinfo:
        asyncio.run(
            AgentExecutor("abc123", runner, settings).execute(CONFIG, worktree, RecordingRecorder(), "run-1")
        )

    assert excinfo.value.agent_id == "01"


def test_recorder_failure_fails_agent_before_commit(git_repo: Path, git, tmp_path: Path) -> None:
    settings = _settings(git_repo, tmp_path)
    manager, worktree = _worktree(git_repo, tmp_path)
    runner = FakeCodexRunner(handler=agent_handler(edit="print('agent')\n"))

    with pytest.raises(RuntimeError, match="recorder unavailable"):
        asyncio.run(
            AgentExecutor("abc123", runner, settings).execute(
                CONFIG, worktree, RecordingRecorder(fail=True), "run-1"
            )
        )

    assert git(worktree.path, "rev-parse", "HEAD") == manager.base_commit


def test_cancelled_token_skips_codex(git_repo: Path, tmp_path: Path) -> None:
    settings = _settings(git_repo, tmp_path)
    _, worktree = _worktree(git_repo, tmp_path)
    runner = FakeCodexRunner(handler=agent_handler())
    token = CancellationToken()
    token.cancel()

    with pytest.raises(RunCancelledError):
        asyncio.run(
            AgentExecutor("abc123", runner, settings).execute(
                CONFIG, worktree, RecordingRecorder(), "run-1", token=token
            )
        )

    assert runner.invocations == []
