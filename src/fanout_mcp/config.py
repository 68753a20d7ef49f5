"""Configuration management for Fanout MCP."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

SANDBOX_MODES = frozenset({"read-only", "workspace-write", "danger-full-access"})


class FanoutSettings(BaseSettings):
    """Runtime configuration sourced from environment variables and optional .env file."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore", populate_by_name=True
    )

    codex_path: str | None = Field(
        default=None, validation_alias=AliasChoices("CODEX_BIN", "CODEX_PATH")
    )
    codex_model: str = Field(default="gpt-5-codex-high", validation_alias="FANOUT_CODEX_MODEL")
    codex_sandbox: str = Field(
        default="danger-full-access", validation_alias="FANOUT_CODEX_SANDBOX"
    )
    repo_path: Path = Field(default=Path("."), validation_alias="FANOUT_REPO_PATH")
    state_dir: Path | None = Field(default=None, validation_alias="FANOUT_STATE_DIR")
    max_concurrent_agents: int | None = Field(
        default=None, validation_alias="FANOUT_MAX_CONCURRENT_AGENTS"
    )
    chroma_persist_path: Path = Field(
        default=Path("./storage/chroma"), validation_alias="CHROMA_PERSIST_PATH"
    )
    log_level: str = Field(default="INFO", validation_alias="FANOUT_LOG_LEVEL")

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(
                "FANOUT_LOG_LEVEL must be one of CRITICAL, ERROR, WARNING, INFO, DEBUG"
            )
        return normalized

    @field_validator("codex_sandbox")
    @classmethod
    def _validate_sandbox(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in SANDBOX_MODES:
            raise ValueError(
                f"FANOUT_CODEX_SANDBOX must be one of {', '.join(sorted(SANDBOX_MODES))}"
            )
        return normalized

    @field_validator("max_concurrent_agents", mode="before")
    @classmethod
    def _parse_concurrency_cap(cls, value):
        if value is None or value == "":
            return None
        return value

    @field_validator("max_concurrent_agents")
    @classmethod
    def _validate_concurrency_cap(cls, value: int | None) -> int | None:
        if value is not None and value < 1:
            raise ValueError("FANOUT_MAX_CONCURRENT_AGENTS must be >= 1")
        return value

    @property
    def resolved_state_dir(self) -> Path:
        """Directory holding worktrees, side-channel files and planner artifacts."""

        if self.state_dir is not None:
            return self.state_dir
        return self.repo_path / ".tumix"


@lru_cache(maxsize=1)
def get_settings() -> FanoutSettings:
    """Return cached settings instance."""

    settings = FanoutSettings()
    settings.repo_path = settings.repo_path.expanduser().resolve()
    if settings.state_dir is not None:
        settings.state_dir = settings.state_dir.expanduser().resolve()
    settings.chroma_persist_path = settings.chroma_persist_path.expanduser().resolve()
    return settings


__all__ = ["FanoutSettings", "SANDBOX_MODES", "get_settings"]
