"""Rust detector."""

from __future__ import annotations

from pathlib import Path

from taskloop.detectors.base import CheckKind, DetectedCommand, Detector


class RustDetector(Detector):
    name = "rust"

    def applies(self, root: Path) -> bool:
        return (root / "Cargo.toml").is_file()

    def detect(self, root: Path) -> list[DetectedCommand]:
        return [
            self._cmd(CheckKind.TEST, "cargo test"),
            self._cmd(CheckKind.LINT, "cargo clippy -- -D warnings"),
            self._cmd(CheckKind.TYPECHECK, "cargo check"),
        ]
