"""Git worktree management for isolated agent execution."""

from __future__ import annotations

import asyncio
import logging
import shutil
from dataclasses import dataclass
from pathlib import Path

from .codex.utils import excerpt, sanitize_environment
from .errors import CommitFailedError, WorktreeCreationError, WorktreeError

logger = logging.getLogger(__name__)


class GitCommandError(RuntimeError):
    """Raised when a git subprocess exits non-zero."""

    def __init__(self, args: tuple[str, ...], returncode: int | None, stdout: str, stderr: str) -> None:
        detail = stderr.strip() or stdout.strip() or f"git {' '.join(args)} failed"
        super().__init__(detail)
        self.args_ = args
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr


async def run_git(cwd: Path, *args: str) -> str:
    """Run git in ``cwd`` and return stdout, raising GitCommandError on failure."""

    try:
        process = await asyncio.create_subprocess_exec(
            "git",
            *args,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=str(cwd),
            env=sanitize_environment(),
        )
    except FileNotFoundError as exc:
        raise GitCommandError(args, None, "", f"git executable not found: {exc}") from exc

    stdout_bytes, stderr_bytes = await process.communicate()
    stdout = stdout_bytes.decode("utf-8", errors="replace")
    stderr = stderr_bytes.decode("utf-8", errors="replace")
    if process.returncode != 0:
        raise GitCommandError(args, process.returncode, stdout, stderr)
    return stdout


def branch_name(run_id: str, agent_id: str) -> str:
    return f"round1-{run_id}-agent-{agent_id}"


@dataclass(slots=True)
class AgentWorktree:
    """An isolated worktree and branch owned by a single agent."""

    path: Path
    branch: str
    agent_id: str

    async def auto_commit(self) -> str:
        """Commit everything in the worktree and return the resulting HEAD.

        When the staged tree equals HEAD's tree no commit is made and the
        current HEAD hash is returned, so repeated calls are no-ops.
        """

        try:
            await run_git(self.path, "add", "-A")
            tree = (await run_git(self.path, "write-tree")).strip()
            parent = (await run_git(self.path, "rev-parse", "HEAD")).strip()
            parent_tree = (await run_git(self.path, "rev-parse", "HEAD^{tree}")).strip()

            if tree == parent_tree:
                logger.debug("No changes to commit", extra={"agent_id": self.agent_id})
                return parent

            commit = (
                await run_git(
                    self.path,
                    "commit-tree",
                    tree,
                    "-p",
                    parent,
                    "-m",
                    self.commit_message(),
                )
            ).strip()
            await run_git(self.path, "update-ref", "HEAD", commit, parent)
        except GitCommandError as exc:
            raise CommitFailedError(self.agent_id, str(exc)) from exc

        logger.debug("Committed agent work", extra={"agent_id": self.agent_id, "commit": commit})
        return commit

    def commit_message(self) -> str:
        return (
            f"Round 1 - Agent {self.agent_id}\n\n"
            f"Automated commit of agent {self.agent_id} work on {self.branch}."
        )


class WorktreeManager:
    """Creates per-agent worktrees for one run, all rooted at the run's starting HEAD.

    Use :meth:`open` to construct; it validates the repository.
    """

    def __init__(self, repo_root: Path, worktrees_root: Path, run_id: str, base_commit: str) -> None:
        self._repo_root = repo_root
        self._worktrees_root = worktrees_root
        self._run_id = run_id
        self._base_commit = base_commit
        # prune/add touch the shared .git/worktrees admin area
        self._lock = asyncio.Lock()

    @classmethod
    async def open(
        cls,
        repo_path: Path,
        run_id: str,
        *,
        state_dir: Path | None = None,
    ) -> "WorktreeManager":
        repo_path = Path(repo_path)
        if not repo_path.is_dir():
            raise WorktreeError(f"Repository path does not exist: {repo_path}")
        try:
            repo_root = Path((await run_git(repo_path, "rev-parse", "--show-toplevel")).strip())
            base_commit = (await run_git(repo_root, "rev-parse", "HEAD")).strip()
        except GitCommandError as exc:
            raise WorktreeError(f"Failed to open git repository at {repo_path}: {exc}") from exc

        root = Path(state_dir) if state_dir is not None else repo_root / ".tumix"
        worktrees_root = root / "worktrees" / run_id
        try:
            await asyncio.to_thread(worktrees_root.mkdir, parents=True, exist_ok=True)
        except OSError as exc:
            raise WorktreeError(f"Failed to create worktrees directory {worktrees_root}: {exc}") from exc

        return cls(repo_root, worktrees_root, run_id, base_commit)

    @property
    def repo_root(self) -> Path:
        return self._repo_root

    @property
    def worktrees_root(self) -> Path:
        return self._worktrees_root

    @property
    def run_id(self) -> str:
        return self._run_id

    @property
    def base_commit(self) -> str:
        return self._base_commit

    def path_for(self, agent_id: str) -> Path:
        return self._worktrees_root / f"agent-{agent_id}"

    async def create(self, agent_id: str) -> AgentWorktree:
        branch = branch_name(self._run_id, agent_id)
        path = self.path_for(agent_id)

        async with self._lock:
            if path.exists():
                logger.debug("Removing stale worktree", extra={"agent_id": agent_id, "path": str(path)})
                await self._remove_worktree(path, agent_id)

            try:
                # Drops registrations whose directories are gone.
                await run_git(self._repo_root, "worktree", "prune")
                # -B resets a branch left behind by an earlier attempt at the same run/agent.
                await run_git(
                    self._repo_root,
                    "worktree",
                    "add",
                    "-B",
                    branch,
                    str(path),
                    self._base_commit,
                )
            except GitCommandError as exc:
                logger.error(
                    "Git worktree creation failed",
                    extra={
                        "agent_id": agent_id,
                        "returncode": exc.returncode,
                        "stdout": excerpt(exc.stdout, 500),
                        "stderr": excerpt(exc.stderr, 500),
                    },
                )
                raise WorktreeCreationError(agent_id, str(exc)) from exc

        logger.info(
            "Created worktree",
            extra={"agent_id": agent_id, "path": str(path), "branch": branch},
        )
        return AgentWorktree(path=path, branch=branch, agent_id=agent_id)

    async def _remove_worktree(self, path: Path, agent_id: str) -> None:
        try:
            await run_git(self._repo_root, "worktree", "remove", "-f", "-f", str(path))
        except GitCommandError as exc:
            logger.debug(
                "git worktree remove failed; falling back to filesystem removal",
                extra={"agent_id": agent_id, "error": str(exc)},
            )

        if path.exists():
            try:
                await asyncio.to_thread(shutil.rmtree, path)
            except OSError as exc:
                raise WorktreeCreationError(agent_id, f"failed to remove stale worktree: {exc}") from exc


__all__ = ["AgentWorktree", "GitCommandError", "WorktreeManager", "branch_name", "run_git"]
