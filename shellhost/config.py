from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

DEFAULT_PORT = 8902


def _float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None
    if value < 0:
        raise ValueError(f"{name} must not be negative, got {raw!r}")
    return value


def _int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


def _csv(name: str) -> tuple[str, ...]:
    raw = os.getenv(name, "")
    return tuple(item.strip() for item in raw.split(",") if item.strip())


@dataclass(frozen=True)
class EngineConfig:
    dialect: str = "powershell"
    # Empty means "use the dialect's defaults"
    candidates: tuple[str, ...] = ()
    capability_modules: tuple[str, ...] = ()
    startup_grace: float = 0.1
    poll_interval: float = 0.1
    stale_warning_after: float = 30.0
    default_timeout: float = 300.0
    terminate_grace: float = 5.0
    cleanup_interval: float = 300.0
    stream_limit: int = 1024 * 1024
    port: int = DEFAULT_PORT
    capability_settings: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_env(cls, env_path: str | Path | None = None) -> EngineConfig:
        """Build a config from the environment, loading ``.env`` first.

        Every ``SHELLHOST_SETTING_<NAME>`` variable becomes a capability
        setting applied during bootstrap phase 2.
        """
        load_dotenv(env_path)

        prefix = "SHELLHOST_SETTING_"
        settings = {
            key[len(prefix):]: value
            for key, value in os.environ.items()
            if key.startswith(prefix) and len(key) > len(prefix)
        }

        return cls(
            dialect=os.getenv("SHELLHOST_DIALECT", "powershell").strip().lower(),
            candidates=_csv("SHELLHOST_CANDIDATES"),
            capability_modules=_csv("SHELLHOST_CAPABILITY_MODULES"),
            startup_grace=_float("SHELLHOST_STARTUP_GRACE", 0.1),
            poll_interval=_float("SHELLHOST_POLL_INTERVAL", 0.1),
            stale_warning_after=_float("SHELLHOST_STALE_WARNING", 30.0),
            default_timeout=_float("SHELLHOST_DEFAULT_TIMEOUT", 300.0),
            terminate_grace=_float("SHELLHOST_TERMINATE_GRACE", 5.0),
            cleanup_interval=_float("SHELLHOST_CLEANUP_INTERVAL", 300.0),
            stream_limit=_int("SHELLHOST_STREAM_LIMIT", 1024 * 1024),
            port=_int("SHELLHOST_PORT", DEFAULT_PORT),
            capability_settings=settings,
        )
