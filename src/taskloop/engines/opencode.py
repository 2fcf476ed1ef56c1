"""OpenCode engine adapter."""

from __future__ import annotations

import json
import os
import shutil
from pathlib import Path

from taskloop.engines.base import EngineBase, EngineResult


class OpenCodeEngine(EngineBase):
    name = "opencode"

    def __init__(self, binary: str = "", model: str = "") -> None:
        super().__init__(binary)
        self.model = model

    def build_cmd(self, prompt: str, context_files: list[Path] | None = None) -> list[str]:
        cmd = [self.resolved_binary(), "run", "--format", "json"]
        if self.model:
            cmd += ["--model", self.model]
        for path in context_files or []:
            cmd += ["--file", str(path)]
        # Separate the prompt so a leading "-" or "#" is never read as an option.
        cmd += ["--", prompt]
        return cmd

    def build_env(self) -> dict[str, str]:
        env = os.environ.copy()
        env["OPENCODE_PERMISSION"] = '{"*":"allow"}'
        return env

    def parse_output(self, raw: str) -> EngineResult:
        result = EngineResult()
        parts: list[str] = []
        for line in raw.splitlines():
            if '"type":"step_finish"' in line:
                try:
                    obj = json.loads(line)
                    tokens = obj.get("part", {}).get("tokens", {})
                    result.input_tokens += int(tokens.get("input", 0))
                    result.output_tokens += int(tokens.get("output", 0))
                except (json.JSONDecodeError, ValueError, TypeError, AttributeError):
                    pass
            elif '"type":"text"' in line:
                try:
                    text = json.loads(line).get("part", {}).get("text", "")
                except (json.JSONDecodeError, ValueError, TypeError, AttributeError):
                    continue
                if text:
                    parts.append(text)

        result.text = "".join(parts) if parts else "Task completed"
        return result

    def check_available(self) -> str | None:
        if not shutil.which(self.binary):
            return f"OpenCode CLI not found ({self.binary}). Install from https://opencode.ai/docs/"
        return None
