"""Makefile detector: ``test:``, ``lint:`` and ``typecheck:`` targets."""

from __future__ import annotations

import re
from pathlib import Path

from taskloop.detectors.base import CheckKind, DetectedCommand, Detector, Source
from taskloop.io_utils import read_text


class MakeDetector(Detector):
    name = "make"

    def applies(self, root: Path) -> bool:
        return (root / "Makefile").is_file()

    def detect(self, root: Path) -> list[DetectedCommand]:
        makefile = read_text(root / "Makefile", errors="replace")
        found: list[DetectedCommand] = []
        for kind in (CheckKind.TEST, CheckKind.LINT, CheckKind.TYPECHECK):
            if re.search(rf"^{kind.value}:", makefile, re.MULTILINE):
                found.append(self._cmd(kind, f"make {kind.value}", Source.MANIFEST))
        return found
