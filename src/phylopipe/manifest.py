"""Run manifests: what ran, where, with which tools."""

from __future__ import annotations

import os
import platform
import shutil
import subprocess
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from . import __version__
from .config import Settings

MANIFEST_SCHEMA_VERSION = 1
FIXED_TIMESTAMP_ENV = "PHYLOPIPE_FIXED_TIMESTAMP_UTC"


def timestamp_utc() -> str:
    # A fixed value makes manifests comparable between test runs.
    return os.environ.get(FIXED_TIMESTAMP_ENV) or datetime.now(tz=timezone.utc).isoformat()


def git_commit(cwd: str | Path) -> str | None:
    try:
        proc = subprocess.run(
            ["git", "-C", str(cwd), "rev-parse", "HEAD"],
            capture_output=True,
            text=True,
            check=False,
        )
    except OSError:
        return None
    commit = proc.stdout.strip()
    return commit if proc.returncode == 0 and commit else None


def resolved_tools(settings: Settings) -> dict[str, dict[str, str | None]]:
    tools: dict[str, dict[str, str | None]] = {}
    for name in sorted(settings.tools):
        argv = settings.command(name)
        tools[name] = {"command": " ".join(argv), "executable": shutil.which(argv[0])}
    return tools


def build_manifest(
    command: str,
    argv: list[str],
    settings: Settings,
    *,
    seed: int | None = None,
    cwd: str | Path | None = None,
) -> dict[str, Any]:
    return {
        "schema_version": MANIFEST_SCHEMA_VERSION,
        "command": command,
        "command_line": "phylopipe " + " ".join(argv),
        "tool_version": __version__,
        "created_utc": timestamp_utc(),
        "host": {
            "platform": platform.platform(),
            "python_version": platform.python_version(),
            "cpu_count": os.cpu_count(),
        },
        "git_commit": git_commit(cwd or Path.cwd()),
        "seed": seed,
        "settings": settings.to_dict(),
        "tools": resolved_tools(settings),
    }
