"""Git queries used by the phase criteria."""

from __future__ import annotations

import subprocess
from pathlib import Path


def _git(*args: str, cwd: Path | None = None) -> subprocess.CompletedProcess[str]:
    """Run a git command, suppressing stderr noise."""
    return subprocess.run(
        ["git", *args],
        capture_output=True,
        text=True,
        cwd=cwd,
    )


def changed_files(base: str, cwd: Path | None = None) -> list[str]:
    """Files that differ between *base* and the working tree; empty outside a repo."""
    try:
        r = _git("diff", "--name-only", base, cwd=cwd)
    except FileNotFoundError:
        return []
    if r.returncode != 0 or not r.stdout.strip():
        return []
    return [f.strip() for f in r.stdout.strip().splitlines() if f.strip()]
