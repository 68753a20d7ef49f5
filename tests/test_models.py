from __future__ import annotations

import pytest
from pydantic import ValidationError

from fanout_mcp.models import AgentConfig, AgentFailure, AgentResult, RunResult


def test_agent_config_rejects_blank_id() -> None:
    with pytest.raises(ValidationError):
        AgentConfig(id="  ", name="A", role="B")


def test_agent_config_rejects_non_string_id() -> None:
    with pytest.raises(ValidationError):
        AgentConfig(id=["01"], name="A", role="B")


def test_run_result_orders_agents_and_reports_failures() -> None:
    result = RunResult(session_id="abc", run_id="r1")
    for agent_id in ("03", "01"):
        result.agents.append(
            AgentResult(
                agent_id=agent_id,
                session_id=f"s{agent_id}",
                commit_hash="c",
                branch=f"round1-r1-agent-{agent_id}",
                log_path="/l",
            )
        )
    assert result.ok

    result.failures.append(AgentFailure(agent_id="02", error="boom", error_type="CommitFailedError"))

    assert not result.ok
    assert [agent.agent_id for agent in result.sorted_agents()] == ["01", "03"]
    payload = result.to_dict()
    assert payload["failures"] == [{"agent_id": "02", "error": "boom", "error_type": "CommitFailedError"}]
    assert payload["agents"][0]["branch"] == "round1-r1-agent-01"


def test_agent_config_rejects_null_id() -> None:
    with pytest.raises(ValidationError):
        AgentConfig(id=None, name="A", role="B")
