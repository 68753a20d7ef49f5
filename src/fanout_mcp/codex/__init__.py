"""Codex CLI orchestration utilities."""

from .runner import (
    CodexExecutionResult,
    CodexNotFoundError,
    CodexRunner,
    CodexRunnerError,
    FakeCodexRunner,
    build_resume_clone_args,
)

__all__ = [
    "CodexRunner",
    "CodexExecutionResult",
    "CodexRunnerError",
    "CodexNotFoundError",
    "FakeCodexRunner",
    "build_resume_clone_args",
]
