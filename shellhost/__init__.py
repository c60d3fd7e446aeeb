from shellhost.config import EngineConfig
from shellhost.engine import InterpreterEngine, ManagedProcess
from shellhost.errors import (
    BootstrapError,
    CommandTimeoutError,
    EngineError,
    NoInterpreterError,
    PipeClosedError,
    ProcessExitedError,
)
from shellhost.models import BootstrapResult

__all__ = [
    "BootstrapError",
    "BootstrapResult",
    "CommandTimeoutError",
    "EngineConfig",
    "EngineError",
    "InterpreterEngine",
    "ManagedProcess",
    "NoInterpreterError",
    "PipeClosedError",
    "ProcessExitedError",
]
