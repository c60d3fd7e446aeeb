from __future__ import annotations

import asyncio
import contextlib
import logging

from .process import ManagedProcess
from .registry import ActiveProcesses, SessionRegistry

log = logging.getLogger(__name__)


class CleanupSupervisor:
    """Periodically forgets processes whose interpreter has already exited.

    The sweep never touches a live process and never waits on one, so it
    does not interfere with commands running elsewhere.
    """

    def __init__(
        self,
        active: ActiveProcesses,
        sessions: SessionRegistry,
        *,
        interval: float = 300.0,
    ) -> None:
        self.active = active
        self.sessions = sessions
        self.interval = interval
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name="interp-cleanup")

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    def active_count(self) -> int:
        """Distinct tracked processes, ad hoc and persistent."""
        pids = {p.pid for p in self.active.snapshot()}
        pids.update(p.pid for _, p in self.sessions.snapshot())
        return len(pids)

    def sweep(self) -> int:
        """One cleanup pass. Returns how many exited processes were dropped."""
        cleaned = 0
        for process in self.active.snapshot():
            if process.has_exited and self.active.remove(process):
                process.release()
                cleaned += 1

        for key, process in self.sessions.snapshot():
            if process.has_exited and self.sessions.discard(key, process):
                if not process.released:
                    cleaned += 1
                process.release()
                self.active.remove(process)
                log.info("Cleaned up stale persistent session: %s", key)

        if cleaned:
            log.info("Cleaned up %d terminated interpreter processes", cleaned)
        return cleaned

    async def cleanup_all(self) -> int:
        """Kill every tracked process tree and empty both registries."""
        processes: dict[int, ManagedProcess] = {}
        for process in self.sessions.clear():
            processes[process.pid] = process
        for process in self.active.clear():
            processes[process.pid] = process

        log.info("Force cleaning up %d active interpreter processes", len(processes))
        for process in processes.values():
            try:
                process.kill_tree()
            except OSError as exc:
                log.debug("Error killing process %s: %s", process.pid, exc)
            process.release()

        if processes:
            await asyncio.gather(*(p.wait(5.0) for p in processes.values()))
        log.info("Completed cleanup of %d interpreter processes", len(processes))
        return len(processes)

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                self.sweep()
            except Exception:
                log.exception("Error during interpreter process cleanup")
