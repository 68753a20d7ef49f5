"""FastMCP server bootstrap for Fanout."""

import asyncio
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from fastmcp import Context, FastMCP

from . import __version__
from .codex import CodexNotFoundError, CodexRunner
from .config import FanoutSettings, get_settings
from .control import RunRegistry
from .orchestrator import Orchestrator
from .storage import ChromaStore, ChromaUnavailableError
from .tools import register_tools

PROGRESS_HISTORY = 50


def configure_logging(level: str) -> None:
    """Configure root logging for the Fanout server."""

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
    )


def _run_sync(coro):
    """Execute an async coroutine on a dedicated event loop."""

    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def create_server(
    settings: Optional[FanoutSettings] = None,
    codex_runner: CodexRunner | None = None,
    *,
    registry: RunRegistry | None = None,
    chroma_store: ChromaStore | None = None,
) -> FastMCP:
    """Instantiate the FastMCP server with its orchestrator and tools."""

    settings = settings or get_settings()
    registry = registry or RunRegistry()

    codex_metadata: dict[str, Any] = {
        "available": False,
        "version": None,
        "error": None,
    }

    if codex_runner is None:
        try:
            codex_runner = CodexRunner(Path(settings.codex_path) if settings.codex_path else None)
        except CodexNotFoundError as exc:
            codex_metadata["error"] = str(exc)
            codex_runner = None

    if codex_runner is not None:
        codex_metadata["available"] = True
        try:
            version_result = _run_sync(codex_runner.version())
        except OSError as exc:
            codex_metadata["error"] = str(exc)
        else:
            if version_result.ok:
                codex_metadata["version"] = version_result.stdout.strip()
            else:
                codex_metadata["error"] = (
                    version_result.stderr.strip()
                    or f"Codex version command failed with exit code {version_result.returncode}"
                )

    chroma_metadata: dict[str, Any] = {
        "available": False,
        "path": str(settings.chroma_persist_path),
        "collection": "fanout_runs",
        "error": None,
    }

    if chroma_store is None:
        try:
            chroma_store = ChromaStore(settings.chroma_persist_path)
            chroma_store.ping()
        except ChromaUnavailableError as exc:
            chroma_metadata["error"] = str(exc)
            chroma_store = None
    if chroma_store is not None:
        chroma_metadata["available"] = True

    progress_log: list[dict[str, Any]] = []

    def _on_progress(message: str) -> None:
        progress_log.append({"timestamp": datetime.now(timezone.utc).isoformat(), "message": message})
        del progress_log[:-PROGRESS_HISTORY]

    orchestrator = (
        Orchestrator(
            settings,
            codex_runner,
            registry=registry,
            chroma_store=chroma_store,
            progress=_on_progress,
        )
        if codex_runner is not None
        else None
    )

    server = FastMCP(
        name="Fanout MCP",
        version=__version__,
        instructions=(
            "Fanout forks a Codex conversation into a planner-sized team of specialist "
            "agents that work concurrently in isolated git worktrees. Use the provided "
            "tools to start, cancel and inspect runs."
        ),
    )

    handles = register_tools(
        server,
        registry=registry,
        orchestrator=orchestrator,
        chroma_store=chroma_store,
    )

    @server.resource(
        "resource://fanout/status",
        name="fanout_status",
        title="Fanout MCP Status",
        description="Provides the current runtime status for the Fanout MCP server.",
        mime_type="application/json",
        tags={"status", "health"},
    )
    def status_resource(context: Context) -> str:
        """Return a JSON string summarizing basic runtime state."""

        recent_runs: list[dict[str, Any]] = []
        storage_error = None
        if chroma_store is not None:
            try:
                recent_runs = [
                    {"run_id": record.run_id, "session_id": record.session_id, "status": record.status}
                    for record in chroma_store.list_runs()[-5:]
                ]
            except ChromaUnavailableError as exc:
                storage_error = str(exc)

        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "server_version": __version__,
            "log_level": settings.log_level,
            "repository": {
                "path": str(settings.repo_path),
                "state_dir": str(settings.resolved_state_dir),
            },
            "codex": {
                "path": settings.codex_path,
                "model": settings.codex_model,
                "sandbox": settings.codex_sandbox,
                **codex_metadata,
            },
            "storage": {
                "chroma": chroma_metadata,
                "recent_runs": recent_runs,
                "error": storage_error,
            },
            "runs": {
                "active": [
                    {"session_id": run.session_id, "run_id": run.run_id}
                    for run in registry.active_runs()
                ],
                "max_concurrent_agents": settings.max_concurrent_agents,
                "progress": progress_log[-10:],
            },
            "request_id": getattr(context, "request_id", None),
        }
        return json.dumps(payload)

    setattr(server, "codex_runner", codex_runner)
    setattr(server, "codex_metadata", codex_metadata)
    setattr(server, "chroma_store", chroma_store)
    setattr(server, "chroma_metadata", chroma_metadata)
    setattr(server, "registry", registry)
    setattr(server, "orchestrator", orchestrator)
    setattr(server, "progress_log", progress_log)
    setattr(server, "tool_handles", handles)
    setattr(server, "status_resource", status_resource)
    return server


def main() -> None:
    """Entry point for running the Fanout MCP server via CLI."""

    settings = get_settings()
    configure_logging(settings.log_level)

    server = create_server(settings)
    logging.getLogger(__name__).info(
        "Launching Fanout MCP server",
        extra={
            "version": __version__,
            "log_level": settings.log_level,
            "repo_path": str(settings.repo_path),
            "codex_available": getattr(server, "codex_metadata", {}).get("available"),
            "chroma_available": getattr(server, "chroma_metadata", {}).get("available"),
        },
    )
    try:
        server.run()
    finally:
        cancelled = getattr(server, "registry").cancel_all()
        if cancelled:
            logging.getLogger(__name__).warning(
                "Signalled cancellation of active runs on shutdown",
                extra={"count": len(cancelled)},
            )


if __name__ == "__main__":
    main()
