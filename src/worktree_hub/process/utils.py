"""Utility helpers for the process runner."""

from __future__ import annotations

import os
from typing import Mapping

_SANITIZED_VARS = {
    "PYTHONHOME",
    "PYTHONPATH",
    "VIRTUAL_ENV",
    "PIP_RESPECT_VIRTUALENV",
}

# git must fail instead of waiting on a credential prompt nobody can answer.
_NON_INTERACTIVE = {
    "GIT_TERMINAL_PROMPT": "0",
}


def sanitize_environment(additional: Mapping[str, str] | None = None) -> dict[str, str]:
    """Return a sanitized environment suitable for subprocess execution."""

    env = dict(os.environ)
    for key in _SANITIZED_VARS:
        env.pop(key, None)
    env.update(_NON_INTERACTIVE)
    if additional:
        env.update(additional)
    return env


def shell_quote_preview(args: tuple[str, ...], limit: int = 200) -> str:
    """Render a command line for log messages."""

    rendered = " ".join(args)
    if len(rendered) > limit:
        return rendered[: limit - 3] + "..."
    return rendered
