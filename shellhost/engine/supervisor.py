"""InterpreterEngine: owns the launcher, registries, executor and cleanup task."""

from __future__ import annotations

import logging
import time
from typing import Any

import psutil

from shellhost.config import EngineConfig
from shellhost.dialects import InterpreterDialect, get_dialect
from shellhost.errors import BootstrapError, CommandTimeoutError
from shellhost.models import BootstrapResult, ProcessHealth

from .bootstrap import CapabilityBootstrapper
from .cleanup import CleanupSupervisor
from .executor import CommandExecutor
from .launcher import ProcessLauncher
from .process import ManagedProcess
from .registry import ActiveProcesses, SessionRegistry
from .resolver import ExecutableResolver

log = logging.getLogger(__name__)


def _memory_usage(pid: int) -> int | None:
    try:
        return psutil.Process(pid).memory_info().rss
    except (psutil.NoSuchProcess, psutil.AccessDenied):
        return None


class InterpreterEngine:
    """Service object wiring the engine together.

    Use ``start()``/``stop()`` (or ``async with``) to run the periodic
    cleanup; ``stop()`` also kills every process still tracked.
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        *,
        dialect: InterpreterDialect | None = None,
    ) -> None:
        self.config = config or EngineConfig()
        self.dialect = dialect or get_dialect(self.config.dialect)

        self.resolver = ExecutableResolver(
            self.config.candidates or self.dialect.default_candidates
        )
        self.active = ActiveProcesses()
        self.sessions = SessionRegistry(
            terminate_grace=self.config.terminate_grace,
            active=self.active,
        )
        self.launcher = ProcessLauncher(
            self.resolver,
            self.dialect,
            self.active,
            startup_grace=self.config.startup_grace,
            stream_limit=self.config.stream_limit,
        )
        self.executor = CommandExecutor(
            poll_interval=self.config.poll_interval,
            stale_warning_after=self.config.stale_warning_after,
        )
        self.bootstrapper = CapabilityBootstrapper(
            self.executor,
            modules=self.config.capability_modules or self.dialect.default_modules,
            settings=self.config.capability_settings,
        )
        self.cleanup = CleanupSupervisor(
            self.active,
            self.sessions,
            interval=self.config.cleanup_interval,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        self.cleanup.start()
        log.info(
            "Interpreter engine started (dialect=%s, cleanup every %.0fs)",
            self.dialect.name,
            self.cleanup.interval,
        )

    async def stop(self) -> None:
        await self.cleanup.stop()
        await self.cleanup.cleanup_all()
        log.info("Interpreter engine stopped")

    async def __aenter__(self) -> InterpreterEngine:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()

    # ------------------------------------------------------------------
    # Processes and sessions
    # ------------------------------------------------------------------

    async def launch(self) -> ManagedProcess:
        """Start an ad hoc interpreter process."""
        return await self.launcher.launch()

    async def create_session(self, key: str) -> ManagedProcess:
        """Start a persistent process under *key*, replacing any existing one."""
        if not key:
            raise ValueError("Session key cannot be empty")
        return await self.sessions.create_or_replace(key, self.launcher.launch)

    def get_session(self, key: str) -> ManagedProcess | None:
        return self.sessions.get(key)

    async def dispose_session(self, key: str) -> bool:
        return await self.sessions.dispose(key)

    def find(self, pid: int) -> ManagedProcess | None:
        process = self.active.get(pid)
        if process is not None:
            return process
        for _, candidate in self.sessions.snapshot():
            if candidate.pid == pid:
                return candidate
        return None

    async def terminate(self, process: ManagedProcess, grace: float | None = None) -> bool:
        """Terminate *process* and stop tracking it. True if it exited on its own."""
        grace = self.config.terminate_grace if grace is None else grace
        graceful = await process.terminate(grace)
        process.release()
        self.active.remove(process)
        if process.session_key is not None:
            self.sessions.discard(process.session_key, process)
        return graceful

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def bootstrap(
        self,
        process: ManagedProcess,
        *,
        bypass: bool = False,
        validate: bool = False,
        force: bool = False,
        raise_on_failure: bool = False,
    ) -> BootstrapResult:
        result = await self.bootstrapper.bootstrap(
            process, bypass=bypass, validate=validate, force=force
        )
        if raise_on_failure and not result.success:
            raise BootstrapError(result, pid=process.pid)
        return result

    async def execute(
        self,
        process: ManagedProcess,
        command: str,
        timeout: float | None = None,
        *,
        terminate_on_timeout: bool = False,
    ) -> str:
        """Run one command. On timeout the process is left running unless asked otherwise."""
        timeout = self.config.default_timeout if timeout is None else timeout
        try:
            return await self.executor.execute(process, command, timeout)
        except CommandTimeoutError:
            if terminate_on_timeout:
                log.info("Terminating process %s after command timeout", process.pid)
                await self.terminate(process)
            raise

    # ------------------------------------------------------------------
    # Introspection and cleanup
    # ------------------------------------------------------------------

    def health(self, process: ManagedProcess) -> ProcessHealth:
        now = time.time()
        memory = None if process.has_exited else _memory_usage(process.pid)
        if process.has_exited:
            status = f"Process has exited (Exit Code: {process.exit_code})"
        elif process.execution_lock.locked():
            status = "Running a command"
        else:
            status = "Running"
        return ProcessHealth(
            is_healthy=not process.has_exited,
            status=status,
            pid=process.pid,
            runtime_seconds=now - process.created_at,
            idle_seconds=now - process.last_activity_at,
            capability_configured=process.capability_configured,
            capability_variant=process.capability_variant,
            memory_usage_bytes=memory,
        )

    def list_processes(self) -> list[dict[str, Any]]:
        seen: dict[int, ManagedProcess] = {p.pid: p for p in self.active.snapshot()}
        for _, process in self.sessions.snapshot():
            seen.setdefault(process.pid, process)

        result = []
        for process in seen.values():
            result.append({
                "pid": process.pid,
                "executable": process.executable,
                "session_key": process.session_key,
                "exited": process.has_exited,
                "exit_code": process.exit_code,
                "created_at": process.created_at,
                "last_activity_at": process.last_activity_at,
                "capability_configured": process.capability_configured,
                "capability_variant": process.capability_variant,
            })
        return result

    def active_process_count(self) -> int:
        return self.cleanup.active_count()

    def sweep(self) -> int:
        return self.cleanup.sweep()

    async def cleanup_all(self) -> int:
        return await self.cleanup.cleanup_all()
