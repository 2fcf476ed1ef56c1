"""Error types and shared classification of agent output."""

from __future__ import annotations

from pathlib import Path


class TaskloopError(Exception):
    """Base class for errors surfaced to the operator."""


class NotFoundError(TaskloopError):
    """A file or task id the operation needs does not exist."""


class DocumentNotFoundError(NotFoundError):
    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        super().__init__(f"Tasks file not found: {self.path}")


class TaskNotFoundError(NotFoundError):
    def __init__(self, task_id: str, path: Path | str) -> None:
        self.task_id = task_id
        self.path = Path(path)
        super().__init__(f"Task {task_id} not found in {self.path}")


class DecodeFailureError(TaskloopError):
    """The task list is not valid UTF-8, so it cannot be rewritten safely."""

    def __init__(self, path: Path | str, reason: str = "") -> None:
        self.path = Path(path)
        detail = f" ({reason})" if reason else ""
        super().__init__(f"Tasks file is not valid UTF-8: {self.path}{detail}")


class WriteFailureError(TaskloopError):
    """A status update could not be persisted; the previous content was restored."""


class SubprocessFailureError(TaskloopError):
    """An agent invocation or validation command failed."""

    def __init__(self, message: str, return_code: int = 1) -> None:
        self.return_code = return_code
        super().__init__(message)


RATE_LIMIT_PATTERNS: tuple[str, ...] = (
    "rate limit",
    "rate_limit",
    "usage limit",
    "you've hit your limit",
    "quota",
    "429",
    "too many requests",
)

POLICY_BLOCK_PATTERNS: tuple[str, ...] = (
    "blocked by policy",
    "read-only sandbox",
    "approval_policy",
)


def _contains_any(text: str, patterns: tuple[str, ...]) -> bool:
    lower = text.lower()
    return any(pattern in lower for pattern in patterns)


def looks_like_rate_limit(text: str) -> bool:
    """Return ``True`` when text matches a rate/usage/quota limit."""
    if not text:
        return False
    return _contains_any(text, RATE_LIMIT_PATTERNS)


def looks_like_policy_block(text: str) -> bool:
    """Return ``True`` when text indicates policy/sandbox blocking."""
    if not text:
        return False
    return _contains_any(text, POLICY_BLOCK_PATTERNS)
