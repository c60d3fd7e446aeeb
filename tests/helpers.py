"""Shared helpers for the integration tests."""

import os
import shutil
import sys
import time

import pytest

from shellhost.config import EngineConfig

requires_posix_shell = pytest.mark.skipif(
    sys.platform == "win32" or shutil.which("sh") is None,
    reason="needs a POSIX shell",
)


def posix_config(**overrides) -> EngineConfig:
    values = dict(
        dialect="posix",
        candidates=("sh", "bash"),
        startup_grace=0.05,
        poll_interval=0.02,
        default_timeout=10.0,
        terminate_grace=2.0,
        cleanup_interval=3600.0,
    )
    values.update(overrides)
    return EngineConfig(**values)


def pid_alive(pid: int) -> bool:
    """True while *pid* runs. Unreaped zombies count as dead."""
    try:
        with open(f"/proc/{pid}/stat") as f:
            # state is the first field after the parenthesised command name
            return f.read().rsplit(")", 1)[1].split()[0] != "Z"
    except FileNotFoundError:
        return False
    except OSError:
        pass
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    return True


def wait_until_dead(pid: int, timeout: float = 3.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if not pid_alive(pid):
            return True
        time.sleep(0.05)
    return not pid_alive(pid)
