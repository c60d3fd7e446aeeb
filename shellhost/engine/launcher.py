from __future__ import annotations

import asyncio
import logging

from shellhost.dialects import InterpreterDialect
from shellhost.errors import NoInterpreterError

from .process import ManagedProcess, kill_process_tree, spawn_kwargs
from .registry import ActiveProcesses
from .resolver import ExecutableResolver

log = logging.getLogger(__name__)


class ProcessLauncher:
    """Starts interpreter subprocesses and registers them as active."""

    def __init__(
        self,
        resolver: ExecutableResolver,
        dialect: InterpreterDialect,
        active: ActiveProcesses,
        *,
        startup_grace: float = 0.1,
        stream_limit: int = 1024 * 1024,
    ) -> None:
        self.resolver = resolver
        self.dialect = dialect
        self.active = active
        self.startup_grace = startup_grace
        self.stream_limit = stream_limit

    async def launch(self) -> ManagedProcess:
        """Start the first candidate that comes up and stays up.

        A candidate that fails to spawn, or exits within the startup grace
        period, is skipped. Raises NoInterpreterError once all are exhausted.
        """
        log.info("Creating new %s interpreter process...", self.dialect.name)
        tried: list[str] = []

        for candidate, executable in self.resolver.iter_resolved():
            tried.append(candidate)
            process = await self._start(executable)
            if process is None:
                continue

            managed = ManagedProcess(
                executable=executable,
                dialect=self.dialect,
                _process=process,
            )
            managed.start_readers()
            self.active.add(managed)
            log.info("Started interpreter %s (pid=%s)", executable, managed.pid)
            return managed

        untried = [c for c in self.resolver.candidates if c not in tried]
        detail = ", ".join(tried) if tried else "none resolved"
        if untried:
            detail += f"; not found: {', '.join(untried)}"
        log.error("Failed to start any %s interpreter (%s)", self.dialect.name, detail)
        raise NoInterpreterError(
            f"No interpreter available ({detail})",
            tried=list(self.resolver.candidates),
        )

    async def _start(self, executable: str) -> asyncio.subprocess.Process | None:
        log.debug("Attempting to start interpreter using: %s", executable)
        try:
            process = await asyncio.create_subprocess_exec(
                executable,
                *self.dialect.launch_args(executable),
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=self.stream_limit,
                **spawn_kwargs(),
            )
        except OSError as exc:
            log.debug("Failed to start interpreter %s: %s", executable, exc)
            return None

        await asyncio.sleep(self.startup_grace)
        if process.returncode is not None:
            log.debug(
                "Interpreter %s exited immediately (code %s)", executable, process.returncode
            )
            # Reap it and close its pipes before moving on to the next candidate
            kill_process_tree(process.pid)
            try:
                await asyncio.wait_for(process.wait(), timeout=5.0)
            except asyncio.TimeoutError:
                log.debug("Pipes of exited interpreter %s did not close", executable)
            return None
        return process
