"""Engine registry: look up an adapter by name."""

from __future__ import annotations

from taskloop.engines.base import EngineBase
from taskloop.engines.claude import ClaudeEngine
from taskloop.engines.opencode import OpenCodeEngine


def get_engine(name: str, *, binary: str = "", model: str = "") -> EngineBase:
    """Return an engine adapter for *name*."""
    match name:
        case "opencode":
            return OpenCodeEngine(binary=binary, model=model)
        case "claude":
            return ClaudeEngine(binary=binary, model=model)
        case _:
            raise ValueError(f"Unknown engine: {name}")


ENGINE_NAMES = ("opencode", "claude")
