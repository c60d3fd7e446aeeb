from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any

BYPASS_VARIANT = "Bypass Mode"


# ---------------------------------------------------------------------------
# Capability bootstrap
# ---------------------------------------------------------------------------

class PhaseStatus(str, enum.Enum):
    SUCCEEDED = "succeeded"
    SOFT_FAILED = "soft_failed"  # logged as a warning, bootstrap continues
    FAILED = "failed"            # aborts the bootstrap


@dataclass
class CapabilityInfo:
    """What the validation phase learned about the loaded capability."""
    module_name: str = ""
    version: str = ""
    is_loaded: bool = False
    available_commands: list[str] = field(default_factory=list)
    configuration: dict[str, str] = field(default_factory=dict)


@dataclass
class PhaseOutcome:
    phase: str
    status: PhaseStatus
    message: str = ""
    variant: str | None = None
    info: CapabilityInfo | None = None
    warnings: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


@dataclass
class BootstrapResult:
    success: bool = False
    variant: str = ""
    message: str = ""
    info: CapabilityInfo | None = None
    warnings: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "variant": self.variant,
            "message": self.message,
            "warnings": list(self.warnings),
            "errors": list(self.errors),
            "info": None if self.info is None else {
                "module_name": self.info.module_name,
                "version": self.info.version,
                "is_loaded": self.info.is_loaded,
                "available_commands": list(self.info.available_commands),
                "configuration": dict(self.info.configuration),
            },
        }


# ---------------------------------------------------------------------------
# Command invocation / process health
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CommandInvocation:
    command: str
    marker: str
    timeout: float


@dataclass
class ProcessHealth:
    is_healthy: bool
    status: str
    pid: int | None
    runtime_seconds: float
    idle_seconds: float
    capability_configured: bool = False
    capability_variant: str = ""
    # Resident set size; None once the process has exited
    memory_usage_bytes: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_healthy": self.is_healthy,
            "status": self.status,
            "pid": self.pid,
            "runtime_seconds": round(self.runtime_seconds, 1),
            "idle_seconds": round(self.idle_seconds, 1),
            "capability_configured": self.capability_configured,
            "capability_variant": self.capability_variant,
            "memory_usage_bytes": self.memory_usage_bytes,
        }
