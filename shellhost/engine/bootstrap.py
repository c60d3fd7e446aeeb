"""CapabilityBootstrapper: activate a capability in a fresh interpreter, then configure it.

Each step is a phase object returning a PhaseOutcome; the bootstrapper
runs them in order and folds the outcomes into one BootstrapResult.
Success and failure are decided purely by sentinel substrings in the
command output.
"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

from shellhost.dialects import (
    CONFIG_SUCCESS,
    CONFIG_VERIFICATION,
    DIAGNOSTIC,
    MODULES_LOADED,
    VALIDATION_END,
    VALIDATION_START,
    InterpreterDialect,
)
from shellhost.errors import EngineError
from shellhost.models import (
    BYPASS_VARIANT,
    BootstrapResult,
    CapabilityInfo,
    PhaseOutcome,
    PhaseStatus,
)

from .executor import CommandExecutor
from .process import ManagedProcess

log = logging.getLogger(__name__)

_MODULES_LOADED_RE = re.compile(re.escape(MODULES_LOADED) + r"(.+?)(?:\r?\n|$)")
MAX_VALIDATED_COMMANDS = 20


def _tagged_lines(output: str, tag: str) -> list[str]:
    """Payloads of every line containing *tag*, tag removed."""
    return [
        line.replace(tag, "", 1).strip()
        for line in output.splitlines()
        if tag in line
    ]


@dataclass
class BootstrapContext:
    dialect: InterpreterDialect
    modules: tuple[str, ...]
    settings: dict[str, str] = field(default_factory=dict)
    variant: str = ""


class BootstrapPhase(ABC):
    name: str
    timeout: float
    # Status reported when the phase's command itself fails
    failure_status: PhaseStatus = PhaseStatus.FAILED

    @abstractmethod
    def script(self, ctx: BootstrapContext) -> str:
        ...

    @abstractmethod
    def interpret(self, output: str, ctx: BootstrapContext) -> PhaseOutcome:
        ...

    async def run(
        self,
        executor: CommandExecutor,
        process: ManagedProcess,
        ctx: BootstrapContext,
    ) -> PhaseOutcome:
        log.debug("Running %s phase in process %s...", self.name, process.pid)
        try:
            output = await executor.execute(process, self.script(ctx), self.timeout)
        except (EngineError, ValueError) as exc:
            log.error("Error during %s phase in process %s: %s", self.name, process.pid, exc)
            outcome = PhaseOutcome(
                phase=self.name,
                status=self.failure_status,
                message=f"Capability {self.name} failed: {exc}",
            )
            if self.failure_status is PhaseStatus.FAILED:
                outcome.errors.append(f"Exception: {exc}")
            else:
                outcome.warnings.append(f"Exception: {exc}")
            return outcome
        return self.interpret(output, ctx)


class ActivationPhase(BootstrapPhase):
    name = "activation"

    def __init__(self, timeout: float = 90.0) -> None:
        self.timeout = timeout

    def script(self, ctx: BootstrapContext) -> str:
        return ctx.dialect.activation_script(ctx.modules)

    def interpret(self, output: str, ctx: BootstrapContext) -> PhaseOutcome:
        if MODULES_LOADED not in output:
            log.error("Failed to load capability modules. Output: %s", output)
            return PhaseOutcome(
                phase=self.name,
                status=PhaseStatus.FAILED,
                message="Failed to load capability modules",
                errors=[
                    f"No {MODULES_LOADED.rstrip(':')} confirmation found in output",
                    *_tagged_lines(output, DIAGNOSTIC),
                ],
            )

        match = _MODULES_LOADED_RE.search(output)
        variant = match.group(1).strip() if match else ""
        variant = variant or "Unknown"
        log.info("Capability modules loaded: %s", variant)
        return PhaseOutcome(
            phase=self.name,
            status=PhaseStatus.SUCCEEDED,
            message=f"Successfully loaded capability modules: {variant}",
            variant=variant,
        )


class ConfigurationPhase(BootstrapPhase):
    """Missing CONFIG_SUCCESS is only a warning; some settings are best-effort."""

    name = "configuration"

    def __init__(self, timeout: float = 30.0) -> None:
        self.timeout = timeout

    def script(self, ctx: BootstrapContext) -> str:
        return ctx.dialect.configuration_script(ctx.variant, ctx.settings)

    def interpret(self, output: str, ctx: BootstrapContext) -> PhaseOutcome:
        if CONFIG_SUCCESS in output:
            for verification in _tagged_lines(output, CONFIG_VERIFICATION):
                log.debug("Config verification: %s", verification)
            log.info("Capability configuration applied successfully")
            return PhaseOutcome(
                phase=self.name,
                status=PhaseStatus.SUCCEEDED,
                message="Capability configuration applied successfully",
            )

        log.warning("Capability configuration completed without explicit success confirmation")
        return PhaseOutcome(
            phase=self.name,
            status=PhaseStatus.SOFT_FAILED,
            message="Capability configuration may have failed",
            warnings=[
                f"No {CONFIG_SUCCESS} confirmation found, but continuing",
                *_tagged_lines(output, DIAGNOSTIC),
            ],
        )


class ValidationPhase(BootstrapPhase):
    name = "validation"
    failure_status = PhaseStatus.SOFT_FAILED

    def __init__(self, timeout: float = 15.0) -> None:
        self.timeout = timeout

    def script(self, ctx: BootstrapContext) -> str:
        return ctx.dialect.validation_script(ctx.variant, ctx.settings)

    def interpret(self, output: str, ctx: BootstrapContext) -> PhaseOutcome:
        if VALIDATION_START not in output or VALIDATION_END not in output:
            log.warning("Capability validation returned incomplete output")
            return PhaseOutcome(
                phase=self.name,
                status=PhaseStatus.SOFT_FAILED,
                message="Capability validation failed - incomplete output",
                warnings=["Validation output was incomplete or malformed"],
            )

        info = CapabilityInfo()
        commands: list[str] = []
        for raw in output.splitlines():
            line = raw.strip()
            kind, _, rest = line.partition(":")
            if kind == "MODULE":
                name, _, version = rest.partition(":")
                if name and (not info.module_name or ctx.variant in name):
                    info.module_name = name
                    info.version = version
                    info.is_loaded = True
            elif kind == "COMMAND" and len(commands) < MAX_VALIDATED_COMMANDS:
                name = rest.partition(":")[0]
                if name:
                    commands.append(name)
            elif kind == "CONFIG":
                key, sep, value = rest.partition(":")
                if key and sep:
                    info.configuration[key] = value
        info.available_commands = commands

        log.info(
            "Capability validation completed - %s v%s, %d commands available",
            info.module_name or "?",
            info.version or "?",
            len(info.available_commands),
        )
        return PhaseOutcome(
            phase=self.name,
            status=PhaseStatus.SUCCEEDED,
            message="Capability validation completed successfully",
            info=info,
        )


class CapabilityBootstrapper:
    """Runs the activation/configuration handshake against a process."""

    def __init__(
        self,
        executor: CommandExecutor,
        *,
        modules: Iterable[str],
        settings: Mapping[str, str] | None = None,
        phases: Iterable[BootstrapPhase] | None = None,
        validation: BootstrapPhase | None = None,
    ) -> None:
        self.executor = executor
        self.modules = tuple(modules)
        if not self.modules:
            raise ValueError("At least one capability module is required")
        self.settings = dict(settings or {})
        self.phases: list[BootstrapPhase] = (
            list(phases) if phases is not None else [ActivationPhase(), ConfigurationPhase()]
        )
        self.validation = validation or ValidationPhase()

    async def bootstrap(
        self,
        process: ManagedProcess,
        *,
        bypass: bool = False,
        validate: bool = False,
        force: bool = False,
    ) -> BootstrapResult:
        log.info("Configuring capability in process %s...", process.pid)

        if bypass:
            log.info("Bypassing capability configuration for process %s", process.pid)
            process.capability_configured = True
            process.capability_variant = BYPASS_VARIANT
            return BootstrapResult(
                success=True,
                variant=BYPASS_VARIANT,
                message="Capability configuration bypassed - limited functionality available",
                warnings=[
                    "Capability modules not loaded - only basic interpreter commands available"
                ],
            )

        if process.capability_configured and not force:
            return BootstrapResult(
                success=True,
                variant=process.capability_variant,
                message=f"Capability already configured using {process.capability_variant}",
            )

        ctx = BootstrapContext(
            dialect=process.dialect,
            modules=self.modules,
            settings=dict(self.settings),
        )
        phases = list(self.phases)
        if validate:
            phases.append(self.validation)

        result = BootstrapResult()
        for index, phase in enumerate(phases):
            outcome = await phase.run(self.executor, process, ctx)
            if outcome.variant:
                ctx.variant = outcome.variant
                result.variant = outcome.variant
            if outcome.info is not None:
                result.info = outcome.info
            result.warnings.extend(outcome.warnings)

            if outcome.status is PhaseStatus.FAILED:
                result.success = False
                result.errors.extend(outcome.errors)
                if index == 0:
                    result.message = outcome.message
                else:
                    result.message = (
                        f"Capability activation succeeded but {phase.name} failed: "
                        f"{outcome.message}"
                    )
                log.error(
                    "Capability bootstrap failed in %s phase for process %s",
                    phase.name,
                    process.pid,
                )
                return result

        process.capability_configured = True
        process.capability_variant = result.variant
        result.success = True
        result.message = f"Capability successfully configured using {result.variant}"
        log.info("Capability configuration completed successfully using %s", result.variant)
        return result
