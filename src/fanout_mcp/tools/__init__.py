"""Tool registration for Fanout MCP."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from fastmcp import Context, FastMCP

from ..control import RunDescriptor, RunRegistry
from ..orchestrator import Orchestrator
from ..storage import ChromaStore

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ToolHandles:
    start_fanout_run: Any
    cancel_fanout_run: Any
    cancel_all_runs: Any
    list_active_runs: Any
    run_history: Any


def _describe(descriptor: RunDescriptor) -> dict[str, str]:
    return {"session_id": descriptor.session_id, "run_id": descriptor.run_id}


def register_tools(
    server: FastMCP,
    *,
    registry: RunRegistry,
    orchestrator: Orchestrator | None,
    chroma_store: ChromaStore | None,
) -> ToolHandles:
    """Register the fan-out tools on the server."""

    def _require_orchestrator() -> Orchestrator:
        if orchestrator is None:
            raise RuntimeError("Codex runner is unavailable; cannot start a fan-out run")
        return orchestrator

    async def _start_fanout_run(
        parent_session: str,
        task: str | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Fork `parent_session` into planner-designed agents and run them in parallel worktrees."""

        active = _require_orchestrator()
        _emit_log(
            context,
            "info",
            "Starting fan-out run",
            extra={"parent_session": parent_session, "task": task},
        )
        result = await active.run(parent_session, task)
        payload = result.to_dict()
        _emit_log(
            context,
            "info" if result.ok else "warning",
            "Fan-out run finished",
            extra={
                "run_id": result.run_id,
                "succeeded": len(result.agents),
                "failed": len(result.failures),
            },
        )
        return payload

    def _cancel_fanout_run(session_id: str, context: Context | None = None) -> dict[str, Any]:
        """Signal cooperative cancellation of the active run for a session."""

        descriptor = registry.cancel_session(session_id)
        _emit_log(
            context,
            "warning" if descriptor else "debug",
            "Cancellation requested",
            extra={"session_id": session_id, "found": descriptor is not None},
        )
        return {
            "session_id": session_id,
            "cancelled": descriptor is not None,
            "run_id": descriptor.run_id if descriptor else None,
        }

    def _cancel_all_runs(context: Context | None = None) -> dict[str, Any]:
        """Signal cancellation of every active run."""

        descriptors = registry.cancel_all()
        _emit_log(context, "warning", "Cancelled all runs", extra={"count": len(descriptors)})
        return {"cancelled": [_describe(descriptor) for descriptor in descriptors]}

    def _list_active_runs(context: Context | None = None) -> list[dict[str, str]]:
        """List sessions with a fan-out run in progress."""

        runs = [_describe(descriptor) for descriptor in registry.active_runs()]
        _emit_log(context, "debug", "Listing active runs", extra={"count": len(runs)})
        return runs

    def _run_history(limit: int = 20, context: Context | None = None) -> list[dict[str, Any]]:
        """Latest persisted status of recent runs."""

        if limit < 1:
            raise ValueError("limit must be at least 1")
        if chroma_store is None:
            raise RuntimeError("Chroma store is unavailable; enable persistence before using this tool")
        records = chroma_store.list_runs()[-limit:]
        return [
            {
                "run_id": record.run_id,
                "session_id": record.session_id,
                "status": record.status,
                "updated_at": record.updated_at.isoformat(),
                "metadata": record.metadata,
            }
            for record in records
        ]

    tool_start = server.tool(
        name="start_fanout_run",
        description=(
            "Fan a Codex session out to specialist agents. A planner sizes the team to the "
            "task, each agent works in its own git worktree and branch, and every agent's "
            "changes are committed. Returns per-agent sessions, branches and commits."
        ),
        annotations={
            "safety": {
                "level": "caution",
                "notes": "Agents run with the configured Codex sandbox mode inside the repository",
            }
        },
    )(_start_fanout_run)

    tool_cancel = server.tool(
        name="cancel_fanout_run",
        description="Request cooperative cancellation of a session's active fan-out run.",
    )(_cancel_fanout_run)

    tool_cancel_all = server.tool(
        name="cancel_all_runs",
        description="Request cooperative cancellation of every active fan-out run.",
    )(_cancel_all_runs)

    tool_list = server.tool(
        name="list_active_runs",
        description="List sessions that currently have a fan-out run in progress.",
    )(_list_active_runs)

    tool_history = server.tool(
        name="run_history",
        description="Show the latest persisted status of recent fan-out runs.",
    )(_run_history)

    return ToolHandles(
        start_fanout_run=tool_start,
        cancel_fanout_run=tool_cancel,
        cancel_all_runs=tool_cancel_all,
        list_active_runs=tool_list,
        run_history=tool_history,
    )


def _emit_log(
    context: Context | None,
    level: str,
    message: str,
    *,
    extra: dict[str, Any] | None = None,
) -> None:
    """Log through the MCP context logger when one is attached, else the module logger."""

    payload = extra or {}

    if context is not None:
        ctx_logger = getattr(context, "logger", None)
        if ctx_logger is not None:
            log_method = getattr(ctx_logger, level, None)
            if callable(log_method):
                log_method(message, extra=payload)
                return

    fallback = getattr(logger, level, logger.info)
    fallback(message, extra=payload)


__all__ = ["register_tools", "ToolHandles"]
