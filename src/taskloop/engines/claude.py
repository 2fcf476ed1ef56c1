"""Claude Code engine adapter.

The CLI runs headless with ``-p`` and reports progress as ``stream-json``:
one JSON event per line, ending with a ``result`` event that carries the
final message, token usage and timing for the task.
"""

from __future__ import annotations

import json
import shutil
from pathlib import Path
from typing import Any, Iterator

from taskloop.engines.base import EngineBase, EngineResult


def _events(raw: str) -> Iterator[dict[str, Any]]:
    for line in raw.splitlines():
        line = line.strip()
        if not line.startswith("{"):
            continue
        try:
            obj = json.loads(line)
        except json.JSONDecodeError:
            continue
        if isinstance(obj, dict):
            yield obj


def _as_int(value: object) -> int:
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return 0


def _message_text(message: object) -> str:
    if not isinstance(message, dict):
        return ""
    blocks = message.get("content") or []
    if not isinstance(blocks, list):
        return ""
    return "".join(
        str(b.get("text", "")) for b in blocks if isinstance(b, dict) and b.get("type") == "text"
    )


class ClaudeEngine(EngineBase):
    name = "claude"

    def __init__(self, binary: str = "", model: str = "") -> None:
        super().__init__(binary)
        self.model = model

    def build_cmd(self, prompt: str, context_files: list[Path] | None = None) -> list[str]:
        # The CLI has no attachment flag; @-references make it read the files.
        if context_files:
            refs = "\n".join(f"@{path}" for path in context_files)
            prompt = f"{prompt}\n\nContext files:\n{refs}"
        cmd = [self.resolved_binary(), "--dangerously-skip-permissions", "--verbose"]
        if self.model:
            cmd += ["--model", self.model]
        cmd += ["-p", prompt, "--output-format", "stream-json"]
        return cmd

    def parse_output(self, raw: str) -> EngineResult:
        """Summarise a task run from its event stream.

        The ``result`` event wins; without one, the last assistant message
        stands in for the task's outcome. ``is_error`` results become errors
        so the loop leaves the task in progress.
        """
        result = EngineResult()
        last_message = ""
        for event in _events(raw):
            match event.get("type"):
                case "assistant":
                    last_message = _message_text(event.get("message")) or last_message
                case "result":
                    result.text = str(event.get("result") or "")
                    usage = event.get("usage") or {}
                    if isinstance(usage, dict):
                        result.input_tokens = _as_int(usage.get("input_tokens"))
                        result.output_tokens = _as_int(usage.get("output_tokens"))
                    result.duration_ms = _as_int(event.get("duration_ms"))
                    if event.get("is_error"):
                        result.error = result.text or str(event.get("subtype") or "error result")
        if not result.text:
            result.text = last_message
        return result

    def check_available(self) -> str | None:
        if not shutil.which(self.binary):
            return f"Claude Code CLI not found ({self.binary}). Install from https://github.com/anthropics/claude-code"
        return None
