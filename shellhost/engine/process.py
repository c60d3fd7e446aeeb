"""ManagedProcess: one running interpreter subprocess and its state."""

from __future__ import annotations

import asyncio
import codecs
import logging
import os
import signal
import subprocess
import sys
import threading
import time
from dataclasses import dataclass, field
from typing import Any

from shellhost.dialects import InterpreterDialect

log = logging.getLogger(__name__)


class OutputBuffer:
    """Append-only text accumulator shared by one reader and one executor."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._parts: list[str] = []
        self._length = 0

    def append(self, text: str) -> None:
        with self._lock:
            self._parts.append(text)
            self._length += len(text)

    def clear(self) -> None:
        with self._lock:
            self._parts.clear()
            self._length = 0

    def snapshot(self) -> str:
        with self._lock:
            return "".join(self._parts)

    def __len__(self) -> int:
        with self._lock:
            return self._length


def spawn_kwargs() -> dict[str, Any]:
    """Platform flags: own process group so the whole tree can be killed, no window."""
    if sys.platform == "win32":
        return {
            "creationflags": subprocess.CREATE_NO_WINDOW | subprocess.CREATE_NEW_PROCESS_GROUP,
        }
    return {"preexec_fn": os.setsid}


def kill_process_tree(pid: int) -> bool:
    """Forcefully kill *pid* and every process it spawned.

    On POSIX *pid* leads its own process group (see ``spawn_kwargs``), so
    the group is signalled even after the leader itself has exited.
    Returns False when there was nothing left to kill.
    """
    if sys.platform == "win32":
        completed = subprocess.run(
            ["taskkill", "/T", "/F", "/PID", str(pid)],
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            check=False,
        )
        return completed.returncode == 0

    try:
        os.killpg(pid, signal.SIGKILL)
    except (ProcessLookupError, PermissionError):
        return False
    return True


@dataclass
class ManagedProcess:
    """State for a single interpreter subprocess.

    Only one command may be in flight at a time; ``execution_lock`` is held
    by the executor for the whole clear/send/wait/extract cycle.
    """

    executable: str
    dialect: InterpreterDialect
    _process: asyncio.subprocess.Process = field(repr=False)
    created_at: float = field(default_factory=time.time)
    last_activity_at: float = field(default_factory=time.time)
    capability_configured: bool = False
    capability_variant: str = ""
    session_key: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    output: OutputBuffer = field(default_factory=OutputBuffer, repr=False)
    execution_lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)
    _reader_tasks: list[asyncio.Task[None]] = field(default_factory=list, repr=False)
    _released: bool = field(default=False, repr=False)

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def has_exited(self) -> bool:
        return self._process.returncode is not None

    @property
    def exit_code(self) -> int | None:
        return self._process.returncode

    @property
    def released(self) -> bool:
        return self._released

    def touch(self) -> None:
        self.last_activity_at = time.time()

    def start_readers(self) -> None:
        self._reader_tasks = [
            asyncio.create_task(self._read_stdout(), name=f"interp-{self.pid}-stdout"),
            asyncio.create_task(self._read_stderr(), name=f"interp-{self.pid}-stderr"),
        ]

    async def write(self, text: str) -> None:
        stdin = self._process.stdin
        if stdin is None or stdin.is_closing():
            raise BrokenPipeError(f"stdin of process {self.pid} is closed")
        stdin.write(text.encode("utf-8"))
        await stdin.drain()

    async def wait(self, timeout: float | None = None) -> int | None:
        """Wait for exit. Returns the exit code, or None if still running."""
        try:
            return await asyncio.wait_for(self._process.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return None

    async def wait_exited(self, timeout: float, interval: float = 0.05) -> bool:
        """Poll the exit status for up to *timeout* seconds.

        Unlike ``wait()`` this does not also wait for the pipes to close,
        which a surviving child process can hold open indefinitely.
        """
        deadline = time.monotonic() + timeout
        while not self.has_exited:
            if time.monotonic() >= deadline:
                return False
            await asyncio.sleep(interval)
        return True

    def kill_tree(self) -> bool:
        if sys.platform == "win32" and self.has_exited:
            # taskkill cannot walk the tree of a pid that is gone
            return False
        killed = kill_process_tree(self.pid)
        if not killed and not self.has_exited:
            try:
                self._process.kill()
                killed = True
            except ProcessLookupError:
                pass
        return killed

    async def terminate(self, grace: float) -> bool:
        """Ask the interpreter to exit; kill the whole tree if it has not after *grace*.

        Never raises. Returns True only when the process exited on its own.
        """
        if self.has_exited:
            log.info("Process %s was already terminated", self.pid)
            self._kill_leftovers()
            return True

        log.info("Terminating process %s...", self.pid)
        try:
            await self.write(self.dialect.exit_command + "\n")
            if await self.wait_exited(grace):
                log.info("Process %s exited gracefully", self.pid)
                self._kill_leftovers()
                return True
            log.warning(
                "Process %s did not exit within %.1fs, killing process tree", self.pid, grace
            )
        except Exception as exc:
            log.warning(
                "Error during graceful termination of process %s, forcing kill: %s", self.pid, exc
            )

        try:
            self.kill_tree()
        except OSError:
            log.exception("Failed to force kill process %s", self.pid)
        await self.wait_exited(5.0)
        return False

    def _kill_leftovers(self) -> None:
        """Kill children that outlived an interpreter which exited on its own."""
        if sys.platform == "win32":
            return
        try:
            if kill_process_tree(self.pid):
                log.info("Killed leftover child processes of process %s", self.pid)
        except OSError:
            log.exception("Failed to kill leftover children of process %s", self.pid)

    def release(self) -> None:
        """Close streams and stop the readers. Safe to call more than once."""
        if self._released:
            return
        self._released = True
        stdin = self._process.stdin
        if stdin is not None and not stdin.is_closing():
            try:
                stdin.close()
            except (OSError, RuntimeError) as exc:
                log.debug("Error closing stdin of process %s: %s", self.pid, exc)
        for task in self._reader_tasks:
            task.cancel()

    # ------------------------------------------------------------------
    # Stream readers
    # ------------------------------------------------------------------

    async def _read_stdout(self) -> None:
        # Chunked, not line-based: a single output line may be any length.
        stream = self._process.stdout
        if stream is None:
            return
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        try:
            while True:
                chunk = await stream.read(4096)
                if not chunk:
                    break
                text = decoder.decode(chunk)
                if text:
                    self.output.append(text)
                self.touch()
            tail = decoder.decode(b"", final=True)
            if tail:
                self.output.append(tail)
        except asyncio.CancelledError:
            pass

    async def _read_stderr(self) -> None:
        stream = self._process.stderr
        if stream is None:
            return
        try:
            while True:
                try:
                    line = await stream.readline()
                except ValueError:
                    log.warning("Dropped oversized error line from process %s", self.pid)
                    continue
                if not line:
                    break
                text = line.decode("utf-8", errors="replace").rstrip()
                if text:
                    log.warning("Interpreter stderr [%s]: %s", self.pid, text)
        except asyncio.CancelledError:
            pass
