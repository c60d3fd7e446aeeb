from __future__ import annotations

import asyncio
import contextlib
import logging
import threading
from collections.abc import AsyncIterator, Awaitable, Callable

from .process import ManagedProcess

log = logging.getLogger(__name__)


class ActiveProcesses:
    """Every process the launcher started, keyed by pid."""

    def __init__(self) -> None:
        self._store: dict[int, ManagedProcess] = {}
        self._lock = threading.Lock()

    def add(self, process: ManagedProcess) -> None:
        with self._lock:
            displaced = self._store.get(process.pid)
            self._store[process.pid] = process
        if displaced is not None and displaced is not process:
            # The pid was reused after the old interpreter exited unnoticed
            log.warning("Replacing stale entry for reused pid %s", process.pid)
            displaced.release()

    def get(self, pid: int) -> ManagedProcess | None:
        with self._lock:
            return self._store.get(pid)

    def remove(self, process: ManagedProcess) -> bool:
        """Remove *process* if it is still the one tracked under its pid."""
        with self._lock:
            if self._store.get(process.pid) is process:
                del self._store[process.pid]
                return True
            return False

    def snapshot(self) -> list[ManagedProcess]:
        with self._lock:
            return list(self._store.values())

    def clear(self) -> list[ManagedProcess]:
        with self._lock:
            processes = list(self._store.values())
            self._store.clear()
            return processes

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)


class SessionRegistry:
    """Session key -> ManagedProcess for processes that outlive one command.

    Different keys are independent; work on the same key is serialized.
    """

    def __init__(
        self,
        *,
        terminate_grace: float = 5.0,
        active: ActiveProcesses | None = None,
    ) -> None:
        self.terminate_grace = terminate_grace
        self._active = active
        self._store: dict[str, ManagedProcess] = {}
        self._lock = threading.Lock()
        # key -> (lock, number of callers holding or waiting for it)
        self._key_locks: dict[str, tuple[asyncio.Lock, int]] = {}

    @contextlib.asynccontextmanager
    async def _key_lock(self, key: str) -> AsyncIterator[None]:
        with self._lock:
            lock, users = self._key_locks.get(key, (None, 0))
            if lock is None:
                lock = asyncio.Lock()
            self._key_locks[key] = (lock, users + 1)
        try:
            async with lock:
                yield
        finally:
            with self._lock:
                _, users = self._key_locks[key]
                if users <= 1:
                    del self._key_locks[key]
                else:
                    self._key_locks[key] = (lock, users - 1)

    async def create_or_replace(
        self,
        key: str,
        factory: Callable[[], Awaitable[ManagedProcess]],
    ) -> ManagedProcess:
        """Dispose any process under *key*, then install a fresh one from *factory*."""
        async with self._key_lock(key):
            await self._dispose_locked(key)
            process = await factory()
            process.session_key = key
            with self._lock:
                self._store[key] = process
            log.info("Created persistent session %s (pid=%s)", key, process.pid)
            return process

    def get(self, key: str) -> ManagedProcess | None:
        """The live process for *key*; an exited one counts as absent."""
        with self._lock:
            process = self._store.get(key)
        if process is None or process.has_exited:
            return None
        return process

    async def dispose(self, key: str) -> bool:
        """Terminate and forget the session. True if nothing needed a forced kill."""
        async with self._key_lock(key):
            return await self._dispose_locked(key)

    async def _dispose_locked(self, key: str) -> bool:
        with self._lock:
            process = self._store.pop(key, None)
        if process is None:
            return True
        graceful = await process.terminate(self.terminate_grace)
        process.release()
        if self._active is not None:
            self._active.remove(process)
        log.info("Disposed persistent session %s (pid=%s)", key, process.pid)
        return graceful

    def discard(self, key: str, process: ManagedProcess) -> bool:
        """Drop *key* only if it still maps to *process*. No termination."""
        with self._lock:
            if self._store.get(key) is process:
                del self._store[key]
                return True
            return False

    def snapshot(self) -> list[tuple[str, ManagedProcess]]:
        with self._lock:
            return list(self._store.items())

    def clear(self) -> list[ManagedProcess]:
        with self._lock:
            processes = list(self._store.values())
            self._store.clear()
            return processes

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._store

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)
