"""Helpers shared by the Codex runner and the git subprocess wrappers."""

from __future__ import annotations

import os
from typing import Mapping

# Interpreter and git repository overrides must not reach worker processes.
_SANITIZED_VARS = {
    "PYTHONHOME",
    "PYTHONPATH",
    "VIRTUAL_ENV",
    "PIP_RESPECT_VIRTUALENV",
    "GIT_DIR",
    "GIT_WORK_TREE",
    "GIT_INDEX_FILE",
    "GIT_OBJECT_DIRECTORY",
}


def sanitize_environment(additional: Mapping[str, str] | None = None) -> dict[str, str]:
    """Return a sanitized environment suitable for subprocess execution."""

    env = dict(os.environ)
    for key in _SANITIZED_VARS:
        env.pop(key, None)
    if additional:
        env.update(additional)
    return env


def excerpt(text: str, limit: int) -> str:
    """Leading ``limit`` characters of ``text``, stripped."""

    return text.strip()[:limit]
