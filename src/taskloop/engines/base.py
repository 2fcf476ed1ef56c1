"""Base class for AI engine adapters."""

from __future__ import annotations

import json
import shutil
import subprocess
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path

from taskloop.errors import looks_like_policy_block, looks_like_rate_limit
from taskloop.io_utils import open_text


@dataclass
class EngineResult:
    """Uniform result from any engine invocation."""

    text: str = ""
    input_tokens: int = 0
    output_tokens: int = 0
    duration_ms: int = 0
    error: str = ""
    return_code: int = 0

    @property
    def ok(self) -> bool:
        return self.return_code == 0 and not self.error


class EngineBase(ABC):
    """Abstract engine adapter.  Subclasses implement ``build_cmd`` and ``parse_output``."""

    name: str = "base"

    def __init__(self, binary: str = "") -> None:
        self.binary = binary or self.name

    @abstractmethod
    def build_cmd(self, prompt: str, context_files: list[Path] | None = None) -> list[str]:
        """Return the CLI command list for the given prompt and context files."""
        ...

    @abstractmethod
    def parse_output(self, raw: str) -> EngineResult:
        """Parse raw stdout into an :class:`EngineResult`."""
        ...

    def build_env(self) -> dict[str, str] | None:
        """Environment for the child process; ``None`` inherits ours."""
        return None

    def resolved_binary(self) -> str:
        # Use resolved path so subprocess gets an absolute path; on some platforms
        # (e.g. Windows with pipx) the child process resolves PATH differently.
        return shutil.which(self.binary) or self.binary

    def check_available(self) -> str | None:
        """Return an error message if the engine CLI is not available, else None."""
        if not shutil.which(self.binary):
            return f"{self.binary} not found in PATH"
        return None

    def run_sync(
        self,
        prompt: str,
        *,
        context_files: list[Path] | None = None,
        cwd: Path | None = None,
        log_file: Path | None = None,
    ) -> EngineResult:
        """Execute the engine synchronously and return parsed result.

        With *log_file*, the raw stdout and stderr are appended to it.
        """
        cmd = self.build_cmd(prompt, context_files)
        start = time.monotonic()

        try:
            proc = subprocess.Popen(
                cmd,
                stdin=None,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
                cwd=cwd,
                env=self.build_env(),
            )
        except FileNotFoundError:
            return EngineResult(error=f"{cmd[0]} not found", return_code=-1)
        except OSError as e:
            return EngineResult(error=f"could not start {cmd[0]}: {e}", return_code=-1)

        try:
            proc_stdout, proc_stderr = proc.communicate()
        except KeyboardInterrupt:
            self._terminate_process(proc)
            raise

        elapsed_ms = int((time.monotonic() - start) * 1000)

        if log_file:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            with open_text(log_file, "a") as f:
                if proc_stdout:
                    f.write(proc_stdout)
                if proc_stderr:
                    f.write(proc_stderr)

        result = self.parse_output(proc_stdout or "")
        result.return_code = proc.returncode
        if not result.duration_ms:
            result.duration_ms = elapsed_ms

        # Check for common errors in output
        error = self._check_errors(proc_stdout or "")
        if error and not result.error:
            result.error = error

        # Surface stderr when the CLI failed without a structured error.
        if proc.returncode != 0 and not result.error:
            stderr = (proc_stderr or "").strip()
            if stderr:
                result.error = stderr.splitlines()[0]
            else:
                result.error = f"exit code {proc.returncode}"

        return result

    @staticmethod
    def _terminate_process(proc: subprocess.Popen[str]) -> None:
        """Terminate a subprocess promptly (best effort)."""
        try:
            if proc.poll() is None:
                proc.terminate()
            proc.wait(timeout=2)
            return
        except (OSError, subprocess.TimeoutExpired):
            pass

        try:
            if proc.poll() is None:
                proc.kill()
            proc.wait(timeout=2)
        except (OSError, subprocess.TimeoutExpired):
            pass

    @staticmethod
    def _check_errors(raw: str) -> str:
        """Detect error events in the engine's JSON output stream."""
        if not raw:
            return ""

        for line in raw.splitlines():
            stripped = line.strip()
            if not stripped:
                continue
            try:
                obj = json.loads(stripped)
            except json.JSONDecodeError:
                continue

            if not isinstance(obj, dict):
                continue

            err = obj.get("error")
            if isinstance(err, dict):
                msg = str(err.get("message", "")).strip()
                code = str(err.get("type", "") or err.get("code", "")).strip().lower()
                if looks_like_rate_limit(code):
                    return msg or "Rate limit exceeded"
                if msg:
                    return msg

            if isinstance(err, str):
                if looks_like_policy_block(err):
                    return "Blocked by policy"
                if looks_like_rate_limit(err):
                    return "Rate limit exceeded"
                if err.strip():
                    return err.strip()

            if str(obj.get("type", "")).lower() == "error":
                msg = ""
                if isinstance(obj.get("message"), str):
                    msg = obj["message"].strip()
                elif isinstance(obj.get("text"), str):
                    msg = obj["text"].strip()

                if not msg:
                    return "Unknown error"
                if looks_like_policy_block(msg):
                    return "Blocked by policy"
                if looks_like_rate_limit(msg):
                    return "Rate limit exceeded"
                return msg

        return ""
