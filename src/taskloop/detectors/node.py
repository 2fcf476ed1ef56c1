"""Node.js detector: package.json scripts with the lockfile's package manager."""

from __future__ import annotations

import json
from pathlib import Path

from taskloop import log
from taskloop.detectors.base import CheckKind, DetectedCommand, Detector, Source
from taskloop.io_utils import read_text

_SCRIPT_CANDIDATES: dict[CheckKind, tuple[str, ...]] = {
    CheckKind.TEST: ("test", "test:unit"),
    CheckKind.LINT: ("lint", "lint:check"),
    CheckKind.TYPECHECK: ("typecheck", "type-check", "tsc"),
}


def package_manager(root: Path) -> str:
    if (root / "bun.lockb").is_file() or (root / "bun.lock").is_file():
        return "bun"
    if (root / "pnpm-lock.yaml").is_file():
        return "pnpm"
    if (root / "yarn.lock").is_file():
        return "yarn"
    return "npm"


def _scripts(manifest: Path) -> dict[str, str]:
    try:
        data = json.loads(read_text(manifest))
    except (OSError, json.JSONDecodeError) as e:
        log.warn(f"Could not read {manifest}: {e}")
        return {}
    scripts = data.get("scripts") if isinstance(data, dict) else None
    return scripts if isinstance(scripts, dict) else {}


class NodeDetector(Detector):
    name = "node"

    def applies(self, root: Path) -> bool:
        return (root / "package.json").is_file()

    def detect(self, root: Path) -> list[DetectedCommand]:
        pm = package_manager(root)
        scripts = _scripts(root / "package.json")
        found: list[DetectedCommand] = []

        for kind, names in _SCRIPT_CANDIDATES.items():
            for script in names:
                if script in scripts:
                    found.append(self._cmd(kind, f"{pm} run {script}", Source.MANIFEST))
                    break

        if (root / "tsconfig.json").is_file():
            found.append(self._cmd(CheckKind.TYPECHECK, f"{pm} exec tsc --noEmit"))
        return found
