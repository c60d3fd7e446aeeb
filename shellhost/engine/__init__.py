"""Managed external-interpreter engine.

Launches long-lived interpreter subprocesses, runs commands in them using
a per-command completion marker, bootstraps capabilities, and cleans up
processes that have exited.

Can run standalone as an MCP daemon:
    python -m shellhost
"""

from shellhost.engine.bootstrap import CapabilityBootstrapper
from shellhost.engine.cleanup import CleanupSupervisor
from shellhost.engine.executor import CommandExecutor
from shellhost.engine.launcher import ProcessLauncher
from shellhost.engine.process import ManagedProcess
from shellhost.engine.registry import ActiveProcesses, SessionRegistry
from shellhost.engine.resolver import ExecutableResolver
from shellhost.engine.supervisor import InterpreterEngine

__all__ = [
    "ActiveProcesses",
    "CapabilityBootstrapper",
    "CleanupSupervisor",
    "CommandExecutor",
    "ExecutableResolver",
    "InterpreterEngine",
    "ManagedProcess",
    "ProcessLauncher",
    "SessionRegistry",
]
