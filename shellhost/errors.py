"""Failure taxonomy for the interpreter engine.

Every failure is scoped to a single managed process; nothing here is
fatal to the engine as a whole.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import BootstrapResult


class EngineError(Exception):
    """Base class for all engine failures."""

    def __init__(
        self,
        message: str,
        *,
        pid: int | None = None,
        elapsed: float | None = None,
    ) -> None:
        super().__init__(message)
        self.pid = pid
        self.elapsed = elapsed


class NoInterpreterError(EngineError):
    """No candidate executable could be resolved or started."""

    def __init__(self, message: str, *, tried: list[str] | None = None) -> None:
        super().__init__(message)
        self.tried = list(tried or [])


class PipeClosedError(EngineError):
    """Writing to the interpreter's stdin failed because the pipe is gone."""


class ProcessExitedError(EngineError):
    def __init__(
        self,
        message: str,
        *,
        exit_code: int | None = None,
        pid: int | None = None,
        elapsed: float | None = None,
    ) -> None:
        super().__init__(message, pid=pid, elapsed=elapsed)
        self.exit_code = exit_code


class CommandTimeoutError(EngineError):
    """The completion marker did not appear in time. The process keeps running."""

    def __init__(
        self,
        message: str,
        *,
        timeout: float,
        pid: int | None = None,
        elapsed: float | None = None,
    ) -> None:
        super().__init__(message, pid=pid, elapsed=elapsed)
        self.timeout = timeout


class BootstrapError(EngineError):
    def __init__(self, result: BootstrapResult, *, pid: int | None = None) -> None:
        super().__init__(result.message or "Capability bootstrap failed", pid=pid)
        self.result = result
