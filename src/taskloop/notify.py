"""Desktop notification at the end of a loop run, best-effort."""

from __future__ import annotations

import subprocess
import sys
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from taskloop.runner import LoopSummary

TITLE = "taskloop"

_SOUNDS = {
    "darwin": {True: "/System/Library/Sounds/Glass.aiff", False: "/System/Library/Sounds/Basso.aiff"},
    "linux": {
        True: "/usr/share/sounds/freedesktop/stereo/complete.oga",
        False: "/usr/share/sounds/freedesktop/stereo/dialog-error.oga",
    },
}


def _run_quiet(*cmd: str) -> None:
    """Fire-and-forget subprocess, ignore failures."""
    try:
        subprocess.Popen(
            cmd,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
        )
    except OSError:
        pass


def describe(summary: LoopSummary) -> tuple[bool, str]:
    """``(success, message)`` for a finished run."""
    if summary.drained:
        return True, f"All tasks complete: {summary.completed} done in {summary.iterations} iterations"
    if summary.interrupted:
        return False, f"Interrupted with {summary.remaining} task(s) remaining"
    return False, f"Stopped with {summary.remaining} task(s) remaining, {summary.failed} failed attempt(s)"


def commands(ok: bool, message: str, platform: str | None = None) -> list[tuple[str, ...]]:
    """Sound and toast commands for *platform* (default: the running one)."""
    platform = platform or sys.platform
    title = TITLE if ok else f"{TITLE} - Error"
    if platform == "darwin":
        return [
            ("afplay", _SOUNDS["darwin"][ok]),
            ("osascript", "-e", f'display notification "{message}" with title "{title}"'),
        ]
    if platform.startswith("linux"):
        toast = ("notify-send", title, message) if ok else ("notify-send", "-u", "critical", title, message)
        return [toast, ("paplay", _SOUNDS["linux"][ok])]
    if platform == "win32":
        sound = "Asterisk" if ok else "Hand"
        return [("powershell.exe", "-Command", f"[System.Media.SystemSounds]::{sound}.Play()")]
    return []


def notify_loop_end(summary: LoopSummary) -> None:
    ok, message = describe(summary)
    for cmd in commands(ok, message):
        _run_quiet(*cmd)
