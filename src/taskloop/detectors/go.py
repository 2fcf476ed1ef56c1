"""Go detector."""

from __future__ import annotations

from pathlib import Path

from taskloop.detectors.base import CheckKind, DetectedCommand, Detector


class GoDetector(Detector):
    name = "go"

    def applies(self, root: Path) -> bool:
        return (root / "go.mod").is_file()

    def detect(self, root: Path) -> list[DetectedCommand]:
        found = [self._cmd(CheckKind.TEST, "go test ./...")]
        if self.has_binary("golangci-lint"):
            found.append(self._cmd(CheckKind.LINT, "golangci-lint run"))
        found.append(self._cmd(CheckKind.TYPECHECK, "go build ./..."))
        return found
