"""CommandExecutor: the marker-delimited request/response protocol.

The interpreter's stdout is an unstructured stream, so each command is
followed by a line that echoes a marker unique to that invocation. The
command is complete once the marker shows up in the accumulated output;
everything before it is the command's result.

A timed-out command keeps running. Its late output is discarded by the
next command's buffer clear, but can still leak into that next result if
it arrives after the clear. Callers that cannot tolerate this should
terminate the process after a timeout (``terminate_on_timeout`` on the
engine).
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid

from shellhost.errors import (
    CommandTimeoutError,
    EngineError,
    PipeClosedError,
    ProcessExitedError,
)
from shellhost.models import CommandInvocation

from .process import ManagedProcess

log = logging.getLogger(__name__)

MARKER_TEMPLATE = "END_COMMAND_{token}"


def new_marker() -> str:
    return MARKER_TEMPLATE.format(token=uuid.uuid4().hex)


class CommandExecutor:
    def __init__(
        self,
        *,
        poll_interval: float = 0.1,
        stale_warning_after: float = 30.0,
    ) -> None:
        self.poll_interval = poll_interval
        self.stale_warning_after = stale_warning_after

    async def execute(self, process: ManagedProcess, command: str, timeout: float) -> str:
        """Run *command* in *process* and return its output, marker stripped.

        Raises ProcessExitedError, PipeClosedError or CommandTimeoutError;
        any other failure surfaces as EngineError with pid and elapsed time.
        """
        if not command or not command.strip():
            raise ValueError("Command cannot be empty")
        if timeout <= 0:
            raise ValueError("Timeout must be positive")

        async with process.execution_lock:
            if process.has_exited:
                log.error("Process %s has exited", process.pid)
                raise ProcessExitedError(
                    f"Process {process.pid} has exited (Exit Code: {process.exit_code})",
                    exit_code=process.exit_code,
                    pid=process.pid,
                    elapsed=0.0,
                )

            invocation = CommandInvocation(command=command, marker=new_marker(), timeout=timeout)
            start = time.monotonic()
            try:
                return await self._run(process, invocation, start)
            except EngineError:
                raise
            except Exception as exc:
                elapsed = time.monotonic() - start
                log.error("Error executing command in process %s: %s", process.pid, exc)
                raise EngineError(
                    f"Command execution failed in process {process.pid} "
                    f"after {elapsed:.1f}s: {exc}",
                    pid=process.pid,
                    elapsed=elapsed,
                ) from exc

    async def _run(
        self,
        process: ManagedProcess,
        invocation: CommandInvocation,
        start: float,
    ) -> str:
        # Leftovers from an earlier (possibly timed-out) command must not
        # be mistaken for this command's output.
        process.output.clear()

        log.debug("Executing command in process %s", process.pid)
        payload = process.dialect.compose(invocation.command, invocation.marker)
        try:
            await process.write(payload)
        except (BrokenPipeError, ConnectionResetError) as exc:
            log.error("Failed to send command - pipe closed for process %s", process.pid)
            raise PipeClosedError(
                f"Cannot send command to process {process.pid} - pipe closed: {exc}",
                pid=process.pid,
                elapsed=time.monotonic() - start,
            ) from exc
        process.touch()

        result = await self._wait_for_marker(process, invocation, start)
        process.touch()
        return result

    async def _wait_for_marker(
        self,
        process: ManagedProcess,
        invocation: CommandInvocation,
        start: float,
    ) -> str:
        marker = invocation.marker
        last_length = 0
        last_change = start
        stale_warned = False

        while True:
            await asyncio.sleep(self.poll_interval)
            now = time.monotonic()
            elapsed = now - start
            output = process.output.snapshot()

            if marker in output:
                log.debug(
                    "Command completed in process %s after %.0fms", process.pid, elapsed * 1000
                )
                return output.replace(marker, "").strip()

            if process.has_exited:
                log.error(
                    "Process %s exited unexpectedly during command execution", process.pid
                )
                raise ProcessExitedError(
                    f"Process {process.pid} exited unexpectedly "
                    f"(Exit Code: {process.exit_code}) after {elapsed:.1f}s",
                    exit_code=process.exit_code,
                    pid=process.pid,
                    elapsed=elapsed,
                )

            if len(output) != last_length:
                last_length = len(output)
                last_change = now
                stale_warned = False
            elif not stale_warned and now - last_change > self.stale_warning_after:
                log.warning(
                    "No output received from process %s for %.0f seconds; it may be hanging",
                    process.pid,
                    now - last_change,
                )
                stale_warned = True

            if elapsed >= invocation.timeout:
                log.warning(
                    "Command timed out in process %s after %.0fms", process.pid, elapsed * 1000
                )
                raise CommandTimeoutError(
                    f"Command timed out after {invocation.timeout:g} seconds "
                    f"in process {process.pid}",
                    timeout=invocation.timeout,
                    pid=process.pid,
                    elapsed=elapsed,
                )
