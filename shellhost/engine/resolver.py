from __future__ import annotations

import logging
import os
import shutil
from collections.abc import Iterable, Iterator

from shellhost.errors import NoInterpreterError

log = logging.getLogger(__name__)


class ExecutableResolver:
    """Finds interpreter executables from an ordered list of candidates.

    A candidate is either a bare name looked up on ``PATH`` or a path to a
    file. Resolution only checks that the file exists and is executable;
    nothing is ever run to find out.
    """

    def __init__(self, candidates: Iterable[str]) -> None:
        self.candidates: tuple[str, ...] = tuple(c for c in candidates if c)
        if not self.candidates:
            raise ValueError("At least one interpreter candidate is required")

    @staticmethod
    def _is_path(candidate: str) -> bool:
        return os.sep in candidate or (os.altsep is not None and os.altsep in candidate)

    def resolve_candidate(self, candidate: str) -> str | None:
        """Return the absolute path for *candidate*, or None if unusable."""
        if self._is_path(candidate):
            path = os.path.expanduser(candidate)
            if os.path.isfile(path) and os.access(path, os.X_OK):
                return os.path.abspath(path)
            return None
        return shutil.which(candidate)

    def iter_resolved(self) -> Iterator[tuple[str, str]]:
        """Yield ``(candidate, resolved_path)`` in priority order, skipping duplicates."""
        seen: set[str] = set()
        for candidate in self.candidates:
            resolved = self.resolve_candidate(candidate)
            if resolved is None:
                log.debug("Interpreter candidate not found: %s", candidate)
                continue
            key = os.path.normcase(resolved)
            if key in seen:
                continue
            seen.add(key)
            yield candidate, resolved

    def resolve(self) -> str:
        """Return the first usable executable, or raise NoInterpreterError."""
        for candidate, resolved in self.iter_resolved():
            log.debug("Resolved interpreter %s -> %s", candidate, resolved)
            return resolved
        log.error("No interpreter executable found among: %s", ", ".join(self.candidates))
        raise NoInterpreterError(
            "No interpreter found. Tried: " + ", ".join(self.candidates),
            tried=list(self.candidates),
        )
