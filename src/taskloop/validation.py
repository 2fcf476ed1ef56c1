"""Validation gate: run typecheck, lint and tests for the host project."""

from __future__ import annotations

import subprocess
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from rich.markup import escape

from taskloop import log
from taskloop.config import Config
from taskloop.detectors.base import CheckKind, DetectedCommand, Detector, Source
from taskloop.detectors.registry import detect_commands

CHECK_ORDER: tuple[CheckKind, ...] = (CheckKind.TYPECHECK, CheckKind.LINT, CheckKind.TEST)

_SKIP_ENV = {
    CheckKind.TYPECHECK: "SKIP_TYPES",
    CheckKind.LINT: "SKIP_LINT",
    CheckKind.TEST: "SKIP_TESTS",
}


class CheckStatus(str, Enum):
    PASS = "pass"
    FAIL = "fail"
    SKIPPED = "skipped"


@dataclass
class CheckResult:
    kind: CheckKind
    status: CheckStatus
    command: str = ""
    reason: str = ""
    return_code: int | None = None
    duration_ms: int = 0

    def describe(self) -> str:
        if self.status == CheckStatus.SKIPPED:
            return f"{self.kind.display} ({self.reason})"
        verb = "passed" if self.status == CheckStatus.PASS else "failed"
        return f"{self.kind.display} {verb}"


@dataclass
class ValidationReport:
    checks: list[CheckResult] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return all(c.status != CheckStatus.FAIL for c in self.checks)

    def get(self, kind: CheckKind) -> CheckResult | None:
        for c in self.checks:
            if c.kind == kind:
                return c
        return None


class ValidationRunner:
    """Resolve one command per check and run them all, without short-circuit."""

    def __init__(
        self,
        cfg: Config,
        root: Path | None = None,
        detectors: list[Detector] | None = None,
    ) -> None:
        self.cfg = cfg
        self.root = root or cfg.root
        self.detectors = detectors

    def resolve(self) -> dict[CheckKind, DetectedCommand]:
        """Explicit overrides first, then whatever the detectors find."""
        resolved = detect_commands(self.root, self.detectors)
        overrides = {
            CheckKind.TYPECHECK: self.cfg.typecheck_cmd,
            CheckKind.LINT: self.cfg.lint_cmd,
            CheckKind.TEST: self.cfg.test_cmd,
        }
        for kind, command in overrides.items():
            if command:
                resolved[kind] = DetectedCommand(kind, command, Source.OVERRIDE, detector="override")
        return resolved

    def _disabled(self, kind: CheckKind) -> bool:
        return {
            CheckKind.TYPECHECK: self.cfg.skip_types,
            CheckKind.LINT: self.cfg.skip_lint,
            CheckKind.TEST: self.cfg.skip_tests,
        }[kind]

    def run(self, quick: bool | None = None, kinds: tuple[CheckKind, ...] = CHECK_ORDER) -> ValidationReport:
        quick = self.cfg.quick if quick is None else quick
        commands = self.resolve()
        report = ValidationReport()

        log.rule("Running Validation (Backpressure Gate)")

        for kind in kinds:
            if kind == CheckKind.TEST and quick:
                result = CheckResult(kind, CheckStatus.SKIPPED, reason="--quick mode")
            elif kind not in commands:
                result = CheckResult(kind, CheckStatus.SKIPPED, reason="no command detected")
            elif self._disabled(kind):
                result = _disabled_result(kind, commands[kind].command)
            else:
                result = self._run_check(kind, commands[kind].command)

            _print_result(result)
            report.checks.append(result)

        log.console.print(log.RULE, markup=False)
        if report.passed:
            log.console.print("[green]Validation PASSED[/green]")
        else:
            log.console.print("[red]Validation FAILED[/red]")
            log.console.print("Fix the issues above before proceeding.")
        return report

    def check(self, kind: CheckKind) -> CheckResult:
        """Run a single check with its output captured instead of echoed. Honours the SKIP_* flags."""
        commands = self.resolve()
        if kind not in commands:
            return CheckResult(kind, CheckStatus.SKIPPED, reason="no command detected")
        if self._disabled(kind):
            return _disabled_result(kind, commands[kind].command)
        return self._run_check(kind, commands[kind].command, quiet=True)

    def _run_check(self, kind: CheckKind, command: str, quiet: bool = False) -> CheckResult:
        if not quiet:
            log.console.print(f"\\[RUN] {kind.display}: {escape(command)}")
        start = time.monotonic()
        try:
            # Commands are operator-provided shell strings (e.g. "npm run test").
            proc = subprocess.run(command, shell=True, cwd=self.root, capture_output=quiet, text=True)
            rc = proc.returncode
            if quiet and rc != 0:
                log.debug(f"{command} exited with {rc}:\n{proc.stdout}{proc.stderr}")
        except OSError as e:
            log.error(f"Could not start '{command}': {e}")
            rc = -1
        elapsed_ms = int((time.monotonic() - start) * 1000)
        status = CheckStatus.PASS if rc == 0 else CheckStatus.FAIL
        return CheckResult(kind, status, command=command, return_code=rc, duration_ms=elapsed_ms)


def _disabled_result(kind: CheckKind, command: str) -> CheckResult:
    return CheckResult(kind, CheckStatus.SKIPPED, command=command, reason=f"disabled ({_SKIP_ENV[kind]}=1)")


def _print_result(result: CheckResult) -> None:
    match result.status:
        case CheckStatus.PASS:
            log.console.print(f"[green]\\[PASS][/green] {result.describe()}")
        case CheckStatus.FAIL:
            log.console.print(f"[red]\\[FAIL][/red] {result.describe()}")
        case CheckStatus.SKIPPED:
            log.console.print(f"[yellow]\\[SKIP][/yellow] {result.describe()}")
