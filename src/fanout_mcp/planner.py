"""Planner that asks Codex to design the set of specialist agents for a task."""

from __future__ import annotations

import asyncio
import logging
import shlex
from datetime import datetime
from pathlib import Path
from typing import Sequence

from pydantic import TypeAdapter, ValidationError

from .codex import CodexExecutionResult, CodexRunner, build_resume_clone_args
from .codex.utils import excerpt
from .config import FanoutSettings
from .errors import JsonExtractionError, PlanningFailedError
from .models import AgentConfig

logger = logging.getLogger(__name__)

_AGENT_LIST = TypeAdapter(list[AgentConfig])

PLANNER_PROMPT = """\
{task}Based on the user's requirements in the conversation so far, assess how complex the task is and design a suitable number of specialist roles to deliver it together.

Choose the number of agents from the task's complexity:
- Simple task: 2-3 agents (e.g. a single feature)
- Medium task: 4-6 agents (e.g. a small system)
- Complex task: 7-10 agents (e.g. a complete project)
- Very large task: 10-15 agents (e.g. an enterprise system)

Output the agent configurations as a JSON array, for example:
[
  {{
    "id": "01",
    "name": "System Architect",
    "role": "Design the overall architecture and module boundaries"
  }},
  {{
    "id": "02",
    "name": "Backend Engineer",
    "role": "Implement the core business logic"
  }},
  {{
    "id": "03",
    "name": "Frontend Engineer",
    "role": "Implement the user interface"
  }}
]

Requirements:
- Pick the agent count (2-15) from the task's complexity
- Number ids consecutively starting at "01" (01, 02, 03...)
- Give every role a clear, non-overlapping specialty
- Split roles the way a real project team would
- Output only the JSON array, nothing else
"""

COMMAND_ARTIFACT = "planner_command.sh"
STDOUT_ARTIFACT = "planner_stdout.txt"
STDERR_ARTIFACT = "planner_stderr.txt"


def build_planner_prompt(task_text: str | None = None) -> str:
    task = f"User task: {task_text.strip()}\n\n" if task_text and task_text.strip() else ""
    return PLANNER_PROMPT.format(task=task)


def extract_json(text: str) -> str:
    """Locate the JSON array in free-form planner output.

    Tried in order: a ```json fence, any ``` fence (skipping a language tag on
    its first line), then the span from the first ``[`` to the last ``]``.
    """

    start = text.find("```json")
    if start != -1:
        body_start = start + len("```json")
        end = text.find("```", body_start)
        if end != -1:
            return text[body_start:end].strip()

    start = text.find("```")
    if start != -1:
        after_marker = start + 3
        newline = text.find("\n", after_marker)
        content_start = newline + 1 if newline != -1 else after_marker
        end = text.find("```", content_start)
        if end != -1:
            return text[content_start:end].strip()

    start = text.find("[")
    end = text.rfind("]")
    if start != -1 and end > start:
        candidate = text[start : end + 1].strip()
        if candidate.startswith("[") and candidate.endswith("]"):
            return candidate

    raise JsonExtractionError("Could not find JSON array in output")


def parse_agent_configs(json_text: str) -> list[AgentConfig]:
    try:
        return _AGENT_LIST.validate_json(json_text)
    except ValidationError as exc:
        raise PlanningFailedError(
            f"failed to parse agent configurations: {exc}\nJSON: {excerpt(json_text, 500)}"
        ) from exc


def check_sequential_ids(agents: Sequence[AgentConfig]) -> list[str]:
    """Return a warning per agent whose id differs from its 1-based position.

    Advisory only: array order, not the id, drives naming downstream.
    """

    warnings: list[str] = []
    for index, agent in enumerate(agents):
        expected = f"{index + 1:02d}"
        if agent.id != expected:
            message = f"Agent {index} has unexpected ID '{agent.id}', expected '{expected}'"
            logger.warning(message)
            warnings.append(message)
    return warnings


class Planner:
    """Single Codex round-trip that turns a task into agent roles."""

    def __init__(self, runner: CodexRunner, settings: FanoutSettings) -> None:
        self._runner = runner
        self._settings = settings

    @property
    def artifacts_dir(self) -> Path:
        return self._settings.resolved_state_dir

    async def generate_agents(
        self,
        parent_session: str,
        task_text: str | None = None,
    ) -> list[AgentConfig]:
        prompt = build_planner_prompt(task_text)
        logger.info(
            "Planning agents",
            extra={"parent_session": parent_session, "task": task_text, "codex": str(self._runner.executable)},
        )

        await self._write_artifact(COMMAND_ARTIFACT, self._command_script(parent_session, prompt))

        try:
            result = await self._runner.exec_resume_clone(
                parent_session,
                prompt,
                model=self._settings.codex_model,
                sandbox=self._settings.codex_sandbox,
            )
        except OSError as exc:
            raise PlanningFailedError(f"failed to launch codex: {exc}") from exc

        await self._write_artifact(STDOUT_ARTIFACT, result.stdout)
        await self._write_artifact(STDERR_ARTIFACT, result.stderr)
        logger.info("Planner finished", extra={"returncode": result.returncode})
        logger.debug("Planner stdout: %s", result.stdout)

        return self._agents_from_result(result)

    def _agents_from_result(self, result: CodexExecutionResult) -> list[AgentConfig]:
        stdout = result.stdout
        if not stdout.strip():
            # A non-zero exit is tolerated only when there is output to salvage.
            if not result.ok:
                logger.error(
                    "Planner execution failed",
                    extra={"returncode": result.returncode, "stderr": excerpt(result.stderr, 500)},
                )
                raise PlanningFailedError(
                    f"codex exited with code {result.returncode}: {excerpt(result.stderr, 500)}"
                )
            raise PlanningFailedError(
                f"planner produced no output (exit code {result.returncode}); "
                f"stderr: {excerpt(result.stderr, 500)}"
            )
        if not result.ok:
            logger.warning(
                "Planner exited non-zero; attempting to recover plan from stdout",
                extra={"returncode": result.returncode},
            )

        try:
            json_text = extract_json(stdout)
        except JsonExtractionError as exc:
            raise PlanningFailedError(
                f"{exc}; output saved to {self.artifacts_dir / STDOUT_ARTIFACT}. "
                f"First 500 chars: {excerpt(stdout, 500)}"
            ) from exc

        agents = parse_agent_configs(json_text)
        if not agents:
            raise PlanningFailedError(
                f"planner returned 0 agents; check {self.artifacts_dir / STDOUT_ARTIFACT} for the full output"
            )

        check_sequential_ids(agents)
        logger.info(
            "Planner returned agents",
            extra={"count": len(agents), "names": [agent.name for agent in agents]},
        )
        return agents

    def _command_script(self, parent_session: str, prompt: str) -> str:
        args = build_resume_clone_args(
            parent_session,
            prompt,
            model=self._settings.codex_model,
            sandbox=self._settings.codex_sandbox,
        )
        quoted = " \\\n  ".join(shlex.quote(arg) for arg in args)
        timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        return (
            "#!/bin/bash\n"
            f"# Planner command executed at {timestamp}\n\n"
            f"{shlex.quote(str(self._runner.executable))} \\\n  {quoted}\n"
        )

    async def _write_artifact(self, name: str, content: str) -> None:
        path = self.artifacts_dir / name

        def _write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content, encoding="utf-8")

        try:
            await asyncio.to_thread(_write)
        except OSError as exc:
            logger.warning("Failed to write planner artifact", extra={"path": str(path), "error": str(exc)})


__all__ = [
    "Planner",
    "build_planner_prompt",
    "check_sequential_ids",
    "extract_json",
    "parse_agent_configs",
]
