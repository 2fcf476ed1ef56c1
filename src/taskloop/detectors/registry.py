"""Detector registry and command resolution."""

from __future__ import annotations

from pathlib import Path

from taskloop import log
from taskloop.detectors.base import CheckKind, DetectedCommand, Detector, Source
from taskloop.detectors.go import GoDetector
from taskloop.detectors.make import MakeDetector
from taskloop.detectors.node import NodeDetector
from taskloop.detectors.python import PythonDetector
from taskloop.detectors.rust import RustDetector


def default_detectors() -> list[Detector]:
    """Detectors in resolution order."""
    return [NodeDetector(), PythonDetector(), GoDetector(), RustDetector(), MakeDetector()]


def detect_commands(
    root: Path,
    detectors: list[Detector] | None = None,
) -> dict[CheckKind, DetectedCommand]:
    """Pick one command per check kind.

    Manifest-declared commands win over convention defaults; within the same
    source the earlier detector wins. Kinds with no candidate are absent.
    """
    candidates: list[DetectedCommand] = []
    for detector in detectors if detectors is not None else default_detectors():
        if not detector.applies(root):
            continue
        found = detector.detect(root)
        log.debug(f"Detector {detector.name}: {[c.command for c in found]}")
        candidates.extend(found)

    resolved: dict[CheckKind, DetectedCommand] = {}
    for source in (Source.MANIFEST, Source.CONVENTION):
        for cmd in candidates:
            if cmd.source == source and cmd.kind not in resolved:
                resolved[cmd.kind] = cmd
    return resolved
