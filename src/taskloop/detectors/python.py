"""Python detector: pytest, ruff/flake8 and mypy/pyright when installed."""

from __future__ import annotations

from pathlib import Path

from taskloop.detectors.base import CheckKind, DetectedCommand, Detector
from taskloop.io_utils import read_text

_MARKERS = ("pyproject.toml", "setup.py", "requirements.txt")


class PythonDetector(Detector):
    name = "python"

    def applies(self, root: Path) -> bool:
        return any((root / marker).is_file() for marker in _MARKERS)

    def detect(self, root: Path) -> list[DetectedCommand]:
        found: list[DetectedCommand] = []

        if self.has_binary("pytest"):
            found.append(self._cmd(CheckKind.TEST, "pytest"))
        elif self._pyproject_mentions(root, "pytest"):
            found.append(self._cmd(CheckKind.TEST, "python -m pytest"))

        if self.has_binary("ruff"):
            found.append(self._cmd(CheckKind.LINT, "ruff check ."))
        elif self.has_binary("flake8"):
            found.append(self._cmd(CheckKind.LINT, "flake8"))

        if self.has_binary("mypy"):
            found.append(self._cmd(CheckKind.TYPECHECK, "mypy ."))
        elif self.has_binary("pyright"):
            found.append(self._cmd(CheckKind.TYPECHECK, "pyright"))

        return found

    @staticmethod
    def _pyproject_mentions(root: Path, needle: str) -> bool:
        pyproject = root / "pyproject.toml"
        if not pyproject.is_file():
            return False
        return needle in read_text(pyproject, errors="replace")
