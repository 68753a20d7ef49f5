"""Agent configuration and result models."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, Field, field_validator


class AgentConfig(BaseModel):
    """One specialist role proposed by the planner."""

    id: str = Field(..., description="Zero-padded two-digit sequential identifier.")
    name: str = Field(..., description="Display name of the role.")
    role: str = Field(..., description="What this agent is responsible for.")

    @field_validator("id", mode="before")
    @classmethod
    def _normalize_id(cls, value: Any) -> str:
        # Planners occasionally emit bare integers for ids.
        if isinstance(value, int) and not isinstance(value, bool):
            return f"{value:02d}"
        if not isinstance(value, str):
            raise ValueError("Agent id must be a string or an integer")
        normalized = value.strip()
        if not normalized:
            raise ValueError("Agent id must not be empty")
        return normalized

    @field_validator("name", "role")
    @classmethod
    def _strip(cls, value: str) -> str:
        return value.strip()


@dataclass(slots=True, frozen=True)
class AgentResult:
    """Terminal record of one agent: its forked session and its commit."""

    agent_id: str
    session_id: str
    commit_hash: str
    branch: str
    log_path: str


@dataclass(slots=True, frozen=True)
class AgentFailure:
    agent_id: str
    error: str
    error_type: str


@dataclass(slots=True)
class RunResult:
    """Aggregate outcome of one fan-out round."""

    session_id: str
    run_id: str
    agents: list[AgentResult] = field(default_factory=list)
    failures: list[AgentFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures

    def sorted_agents(self) -> list[AgentResult]:
        """Results ordered by agent id; completion order is otherwise arbitrary."""

        return sorted(self.agents, key=lambda result: result.agent_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "run_id": self.run_id,
            "agents": [
                {
                    "agent_id": result.agent_id,
                    "session_id": result.session_id,
                    "commit_hash": result.commit_hash,
                    "branch": result.branch,
                    "log_path": result.log_path,
                }
                for result in self.sorted_agents()
            ],
            "failures": [
                {"agent_id": failure.agent_id, "error": failure.error, "error_type": failure.error_type}
                for failure in sorted(self.failures, key=lambda item: item.agent_id)
            ],
        }


__all__ = ["AgentConfig", "AgentFailure", "AgentResult", "RunResult"]
