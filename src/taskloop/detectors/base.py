"""Base class for validation command detectors."""

from __future__ import annotations

import shutil
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from pathlib import Path


class CheckKind(str, Enum):
    TYPECHECK = "typecheck"
    LINT = "lint"
    TEST = "test"

    @property
    def display(self) -> str:
        return {"typecheck": "Type check", "lint": "Lint", "test": "Tests"}[self.value]


class Source(str, Enum):
    """Where a command came from: an explicit override, then manifest-declared, then convention."""

    OVERRIDE = "override"
    MANIFEST = "manifest"
    CONVENTION = "convention"


@dataclass(frozen=True)
class DetectedCommand:
    kind: CheckKind
    command: str
    source: Source
    detector: str = ""


class Detector(ABC):
    """Inspect marker files in a project root and propose commands.

    Subclasses implement :meth:`applies` and :meth:`detect`. A detector may
    propose several commands for the same kind; the first one wins within
    the same :class:`Source`.
    """

    name: str = "base"

    @abstractmethod
    def applies(self, root: Path) -> bool:
        """Return ``True`` when the project at *root* uses this ecosystem."""
        ...

    @abstractmethod
    def detect(self, root: Path) -> list[DetectedCommand]:
        ...

    def _cmd(self, kind: CheckKind, command: str, source: Source = Source.CONVENTION) -> DetectedCommand:
        return DetectedCommand(kind=kind, command=command, source=source, detector=self.name)

    @staticmethod
    def has_binary(name: str) -> bool:
        return shutil.which(name) is not None
