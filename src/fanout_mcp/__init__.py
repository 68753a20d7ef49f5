"""Fan a Codex task out to parallel agents in isolated git worktrees."""

__version__ = "0.1.0"
