"""Exception hierarchy for fan-out runs."""

from __future__ import annotations


class FanoutError(RuntimeError):
    """Base class for run orchestration errors."""


class AlreadyRunningError(FanoutError):
    """Raised when a session already has an active run."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Fan-out run already in progress for session {session_id}")
        self.session_id = session_id


class PlanningFailedError(FanoutError):
    """Raised when the planner cannot produce any agent configuration."""

    def __init__(self, reason: str) -> None:
        super().__init__(f"Planning failed: {reason}")
        self.reason = reason


class JsonExtractionError(ValueError):
    """Raised when no JSON array can be located in planner output."""


class AgentError(FanoutError):
    """Failure scoped to a single agent; siblings keep running."""

    def __init__(self, agent_id: str, message: str) -> None:
        super().__init__(message)
        self.agent_id = agent_id


class WorktreeError(FanoutError):
    """Raised when the repository or worktree root cannot be prepared."""


class WorktreeCreationError(AgentError):
    def __init__(self, agent_id: str, detail: str) -> None:
        super().__init__(agent_id, f"Failed to create worktree for agent {agent_id}: {detail}")
        self.detail = detail


class AgentExecutionError(AgentError):
    def __init__(self, agent_id: str, exit_code: int | None, stderr_excerpt: str) -> None:
        super().__init__(
            agent_id,
            f"Agent {agent_id} execution failed with exit code {exit_code}:\n{stderr_excerpt}",
        )
        self.exit_code = exit_code
        self.stderr_excerpt = stderr_excerpt


class MissingMetadataError(AgentError):
    def __init__(self, agent_id: str, detail: str) -> None:
        super().__init__(agent_id, f"Agent {agent_id} session metadata unavailable: {detail}")
        self.detail = detail


class CommitFailedError(AgentError):
    def __init__(self, agent_id: str, detail: str) -> None:
        super().__init__(agent_id, f"Failed to commit work for agent {agent_id}: {detail}")
        self.detail = detail


class RunCancelledError(AgentError):
    def __init__(self, agent_id: str) -> None:
        super().__init__(agent_id, f"Agent {agent_id} skipped: run was cancelled")


__all__ = [
    "AgentError",
    "AgentExecutionError",
    "AlreadyRunningError",
    "CommitFailedError",
    "FanoutError",
    "JsonExtractionError",
    "MissingMetadataError",
    "PlanningFailedError",
    "RunCancelledError",
    "WorktreeCreationError",
    "WorktreeError",
]
