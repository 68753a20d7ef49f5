"""Async runner for the Codex CLI."""

from __future__ import annotations

import asyncio
import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, Sequence

from .utils import sanitize_environment


class CodexRunnerError(RuntimeError):
    """Base class for Codex runner errors."""


class CodexNotFoundError(CodexRunnerError):
    """Raised when the Codex CLI executable cannot be located."""


@dataclass(slots=True)
class CodexExecutionResult:
    """Holds the outcome of a Codex CLI invocation."""

    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


def build_resume_clone_args(
    parent_session: str,
    prompt: str,
    *,
    model: str,
    sandbox: str,
    id_output: Path | None = None,
) -> list[str]:
    """Arguments for `codex exec ... resume-clone <parent> <prompt>`."""

    args = ["exec", "--print-rollout-path", "--skip-git-repo-check"]
    if id_output is not None:
        args.append(f"--id-output={id_output}")
    args.extend(["--sandbox", sandbox, "--model", model, "resume-clone", parent_session, prompt])
    return args


class CodexRunner:
    """Execute Codex CLI commands asynchronously."""

    def __init__(self, executable: Path | None = None) -> None:
        self._executable_path = self._resolve_executable(executable)

    @staticmethod
    def _resolve_executable(explicit: Path | None) -> Path:
        if explicit is not None:
            candidate = Path(explicit)
            if candidate.exists() and candidate.is_file():
                return candidate
            raise CodexNotFoundError(f"Codex executable not found at {candidate}")

        from_env = os.environ.get("CODEX_BIN")
        if from_env:
            candidate = Path(from_env).expanduser()
            if candidate.is_file():
                return candidate
            raise CodexNotFoundError(f"CODEX_BIN points to a missing file: {candidate}")

        binary = shutil.which("codex")
        if binary is not None:
            return Path(binary)

        npm_global = Path.home() / ".npm-global" / "bin" / "codex"
        if npm_global.is_file():
            return npm_global
        raise CodexNotFoundError("Codex CLI executable not found on PATH")

    @property
    def executable(self) -> Path:
        return self._executable_path

    async def version(self) -> CodexExecutionResult:
        return await self._invoke("--version")

    async def exec_resume_clone(
        self,
        parent_session: str,
        prompt: str,
        *,
        model: str,
        sandbox: str,
        id_output: Path | None = None,
        cwd: Path | None = None,
    ) -> CodexExecutionResult:
        """Fork `parent_session` into a new conversation and run `prompt` in it."""

        args = build_resume_clone_args(
            parent_session, prompt, model=model, sandbox=sandbox, id_output=id_output
        )
        return await self._invoke(*args, cwd=cwd)

    async def _invoke(self, *args: str, cwd: Path | None = None) -> CodexExecutionResult:
        cmd = [str(self._executable_path), *args]
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=str(cwd) if cwd is not None else None,
            env=sanitize_environment(),
        )
        stdout_bytes, stderr_bytes = await process.communicate()
        stdout = stdout_bytes.decode("utf-8", errors="replace")
        stderr = stderr_bytes.decode("utf-8", errors="replace")
        return CodexExecutionResult(args=tuple(cmd), returncode=process.returncode, stdout=stdout, stderr=stderr)


FakeHandler = Callable[[tuple[str, ...], Path | None], Awaitable[CodexExecutionResult]]


class FakeCodexRunner(CodexRunner):
    """Test double that simulates Codex CLI responses.

    Responses come from ``handler`` when given, otherwise from the queued
    ``responses`` in order, otherwise an empty successful result.
    """

    def __init__(  # type: ignore[override]
        self,
        responses: Sequence[CodexExecutionResult] | None = None,
        *,
        handler: FakeHandler | None = None,
    ) -> None:
        self._responses = list(responses or [])
        self._handler = handler
        self._invocations: list[tuple[str, ...]] = []
        self._cwds: list[Path | None] = []
        self._executable_path = Path("/tmp/fake-codex")

    async def _invoke(self, *args: str, cwd: Path | None = None) -> CodexExecutionResult:  # type: ignore[override]
        self._invocations.append(tuple(args))
        self._cwds.append(cwd)
        if self._handler is not None:
            return await self._handler(tuple(args), cwd)
        if self._responses:
            return self._responses.pop(0)
        return CodexExecutionResult(args=tuple(args), returncode=0, stdout="", stderr="")

    @property
    def invocations(self) -> list[tuple[str, ...]]:
        return self._invocations

    @property
    def cwds(self) -> list[Path | None]:
        return self._cwds


def id_output_from_args(args: Sequence[str]) -> Path | None:
    """Return the ``--id-output`` path from a Codex argument list, if any.

    Fake handlers use it to tell agent invocations from planner ones and to
    write the session metadata file an agent run is expected to leave behind.
    """

    for arg in args:
        if arg.startswith("--id-output="):
            return Path(arg.split("=", 1)[1])
    return None
