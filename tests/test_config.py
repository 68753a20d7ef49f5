from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from fanout_mcp.config import FanoutSettings


def test_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("CODEX_BIN", "CODEX_PATH", "FANOUT_CODEX_MODEL", "FANOUT_CODEX_SANDBOX", "FANOUT_STATE_DIR"):
        monkeypatch.delenv(name, raising=False)

    settings = FanoutSettings(_env_file=None)

    assert settings.codex_path is None
    assert settings.codex_model == "gpt-5-codex-high"
    assert settings.codex_sandbox == "danger-full-access"
    assert settings.resolved_state_dir == settings.repo_path / ".tumix"


def test_environment_overrides(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("CODEX_BIN", "/opt/codex")
    monkeypatch.setenv("FANOUT_CODEX_SANDBOX", " Workspace-Write ")
    monkeypatch.setenv("FANOUT_STATE_DIR", str(tmp_path / "state"))
    monkeypatch.setenv("FANOUT_MAX_CONCURRENT_AGENTS", "3")
    monkeypatch.setenv("FANOUT_LOG_LEVEL", "debug")

    settings = FanoutSettings(_env_file=None)

    assert settings.codex_path == "/opt/codex"
    assert settings.codex_sandbox == "workspace-write"
    assert settings.resolved_state_dir == tmp_path / "state"
    assert settings.max_concurrent_agents == 3
    assert settings.log_level == "DEBUG"


def test_empty_concurrency_cap_means_unbounded(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("FANOUT_MAX_CONCURRENT_AGENTS", "")

    assert FanoutSettings(_env_file=None).max_concurrent_agents is None


@pytest.mark.parametrize(
    "name, value",
    [
        ("FANOUT_CODEX_SANDBOX", "yolo"),
        ("FANOUT_LOG_LEVEL", "chatty"),
        ("FANOUT_MAX_CONCURRENT_AGENTS", "0"),
    ],
)
def test_invalid_values_rejected(monkeypatch: pytest.MonkeyPatch, name: str, value: str) -> None:
    monkeypatch.setenv(name, value)

    with pytest.raises(ValidationError):
        FanoutSettings(_env_file=None)
