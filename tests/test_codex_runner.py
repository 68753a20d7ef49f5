from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from fanout_mcp.codex.runner import (
    CodexExecutionResult,
    CodexNotFoundError,
    CodexRunner,
    FakeCodexRunner,
    build_resume_clone_args,
    id_output_from_args,
)
from fanout_mcp.codex.utils import excerpt, sanitize_environment


def _script(tmp_path: Path, body: str) -> Path:
    script = tmp_path / "codex"
    script.write_text(f"#!/bin/sh\n{body}\n", encoding="utf-8")
    script.chmod(0o755)
    return script


def test_codex_runner_executes_script(tmp_path: Path) -> None:
    runner = CodexRunner(_script(tmp_path, "echo 'Codex CLI 0.0.1'"))
    result = asyncio.run(runner.version())

    assert result.ok
    assert "Codex CLI 0.0.1" in result.stdout


def test_resume_clone_passes_flags_and_cwd(tmp_path: Path) -> None:
    runner = CodexRunner(_script(tmp_path, 'pwd; echo "$@"'))
    workdir = tmp_path / "work"
    workdir.mkdir()

    result = asyncio.run(
        runner.exec_resume_clone(
            "abc123",
            "do it",
            model="gpt-test",
            sandbox="read-only",
            id_output=tmp_path / "meta.json",
            cwd=workdir,
        )
    )

    assert result.ok
    cwd_line, args_line = result.stdout.strip().splitlines()
    assert Path(cwd_line).resolve() == workdir.resolve()
    assert args_line.startswith("exec --print-rollout-path --skip-git-repo-check")
    assert f"--id-output={tmp_path / 'meta.json'}" in args_line
    assert args_line.endswith("--sandbox read-only --model gpt-test resume-clone abc123 do it")


def test_resume_clone_reports_nonzero_exit(tmp_path: Path) -> None:
    runner = CodexRunner(_script(tmp_path, "echo boom >&2; exit 3"))
    result = asyncio.run(runner.exec_resume_clone("abc", "p", model="m", sandbox="read-only"))

    assert not result.ok
    assert result.returncode == 3
    assert result.stderr.strip() == "boom"


def test_build_resume_clone_args_without_id_output() -> None:
    args = build_resume_clone_args("parent", "prompt", model="m", sandbox="workspace-write")

    assert args == [
        "exec",
        "--print-rollout-path",
        "--skip-git-repo-check",
        "--sandbox",
        "workspace-write",
        "--model",
        "m",
        "resume-clone",
        "parent",
        "prompt",
    ]
    assert id_output_from_args(args) is None


def test_id_output_from_args_roundtrip(tmp_path: Path) -> None:
    target = tmp_path / "agent-01.json"
    args = build_resume_clone_args("parent", "prompt", model="m", sandbox="read-only", id_output=target)

    assert id_output_from_args(args) == target


def test_codex_not_found(tmp_path: Path) -> None:
    with pytest.raises(CodexNotFoundError):
        CodexRunner(tmp_path / "missing")


def test_codex_bin_environment_variable(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    script = _script(tmp_path, "echo env")
    monkeypatch.setenv("CODEX_BIN", str(script))

    assert CodexRunner().executable == script


def test_codex_bin_pointing_nowhere_fails(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CODEX_BIN", str(tmp_path / "nope"))

    with pytest.raises(CodexNotFoundError):
        CodexRunner()


def test_fake_codex_runner_records_invocations() -> None:
    fake = FakeCodexRunner(
        [
            CodexExecutionResult(args=("exec",), returncode=0, stdout="ok", stderr=""),
        ]
    )

    first = asyncio.run(fake._invoke("exec"))
    second = asyncio.run(fake._invoke("exec", cwd=Path("/tmp")))

    assert first.stdout == "ok"
    assert second.stdout == ""
    assert fake.invocations == [("exec",), ("exec",)]
    assert fake.cwds == [None, Path("/tmp")]


def test_fake_codex_runner_handler_takes_precedence() -> None:
    async def handler(args, cwd):
        return CodexExecutionResult(args=args, returncode=7, stdout="", stderr="handled")

    fake = FakeCodexRunner(
        [CodexExecutionResult(args=(), returncode=0, stdout="queued", stderr="")],
        handler=handler,
    )
    result = asyncio.run(fake.exec_resume_clone("p", "x", model="m", sandbox="read-only"))

    assert result.returncode == 7
    assert result.stderr == "handled"


def test_sanitize_environment_strips_virtualenv_and_git(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PYTHONPATH", "value")
    monkeypatch.setenv("GIT_DIR", "/elsewhere/.git")
    env = sanitize_environment({"EXTRA": "1"})

    assert "PYTHONPATH" not in env
    assert "GIT_DIR" not in env
    assert env["EXTRA"] == "1"


def test_excerpt_truncates_stripped_text() -> None:
    assert excerpt("  abcdef  ", 3) == "abc"
