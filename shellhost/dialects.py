"""Interpreter dialects: everything that differs between interpreters.

A dialect knows how to launch its interpreter in "read commands from
stdin" mode, how to make it print a line verbatim (used for completion
markers), how to ask it to exit, and how to phrase the capability
bootstrap scripts so they emit the ``MODULES_LOADED:<variant>`` and
``CONFIG_SUCCESS`` sentinels.
"""

from __future__ import annotations

import os
import re
import sys
from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence

MODULES_LOADED = "MODULES_LOADED:"
CONFIG_SUCCESS = "CONFIG_SUCCESS"
CONFIG_VERIFICATION = "CONFIG_VERIFICATION:"
DIAGNOSTIC = "DIAGNOSTIC:"
VALIDATION_START = "VALIDATION_START"
VALIDATION_END = "VALIDATION_END"

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class InterpreterDialect(ABC):
    name: str
    exit_command: str = "exit"

    @property
    @abstractmethod
    def default_candidates(self) -> tuple[str, ...]:
        ...

    @property
    @abstractmethod
    def default_modules(self) -> tuple[str, ...]:
        ...

    @abstractmethod
    def launch_args(self, executable: str) -> list[str]:
        """Flags that start *executable* without a profile, reading stdin."""

    @abstractmethod
    def quote(self, text: str) -> str:
        ...

    @abstractmethod
    def echo_line(self, text: str) -> str:
        """A single line that prints *text* verbatim to stdout."""

    @abstractmethod
    def activation_script(self, modules: Sequence[str]) -> str:
        ...

    @abstractmethod
    def configuration_script(self, variant: str, settings: Mapping[str, str]) -> str:
        ...

    @abstractmethod
    def validation_script(self, variant: str, settings: Mapping[str, str]) -> str:
        ...

    def compose(self, command: str, marker: str) -> str:
        """The payload for one command: the command, then the marker echo."""
        return f"{command.rstrip()}\n{self.echo_line(marker)}\n"


class PowerShellDialect(InterpreterDialect):
    name = "powershell"
    settings_cmdlet = "Set-PowerCLIConfiguration"

    @property
    def default_candidates(self) -> tuple[str, ...]:
        if sys.platform == "win32":
            return (
                "pwsh.exe",
                r"C:\Program Files\PowerShell\7\pwsh.exe",
                "powershell.exe",
            )
        return (
            "pwsh",
            "/usr/local/bin/pwsh",
            "/usr/bin/pwsh",
            "/opt/microsoft/powershell/7/pwsh",
        )

    @property
    def default_modules(self) -> tuple[str, ...]:
        return ("VMware.PowerCLI", "VMware.VimAutomation.Core")

    def launch_args(self, executable: str) -> list[str]:
        return ["-NoProfile", "-NoExit", "-ExecutionPolicy", "Bypass", "-Command", "-"]

    def quote(self, text: str) -> str:
        return "'" + text.replace("'", "''") + "'"

    def echo_line(self, text: str) -> str:
        return f"Write-Output {self.quote(text)}"

    def compose(self, command: str, marker: str) -> str:
        # With -Command - a multi-line block (try/catch, if/else) only ends
        # at a blank line, otherwise the marker echo is swallowed into it.
        return f"{command.rstrip()}\n\n{self.echo_line(marker)}\n"

    def _literal(self, value: str) -> str:
        lowered = value.strip().lower()
        if lowered in ("true", "false"):
            return f"${lowered}"
        return self.quote(value)

    def activation_script(self, modules: Sequence[str]) -> str:
        names = ", ".join(self.quote(m) for m in modules)
        return (
            "$__shVariant = $null\n"
            f"foreach ($__shModule in @({names})) {{\n"
            "    try {\n"
            "        Import-Module $__shModule -ErrorAction Stop | Out-Null\n"
            "        $__shVariant = $__shModule\n"
            "        break\n"
            "    } catch {\n"
            f"        Write-Output \"{DIAGNOSTIC} $__shModule failed to load: $($_.Exception.Message)\"\n"
            "    }\n"
            "}\n"
            f"if ($__shVariant) {{ Write-Output \"{MODULES_LOADED}$__shVariant\" }}"
        )

    def configuration_script(self, variant: str, settings: Mapping[str, str]) -> str:
        label = variant.replace('"', "").replace("$", "")
        pairs = "; ".join(
            f"{self.quote(key)} = {self._literal(value)}" for key, value in settings.items()
        )
        return (
            "try {\n"
            "    [System.Net.ServicePointManager]::SecurityProtocol = "
            "[System.Net.SecurityProtocolType]::Tls12\n"
            f"    $__shSettings = @{{ {pairs} }}\n"
            "    if ($__shSettings.Count -gt 0 -and "
            f"(Get-Command {self.settings_cmdlet} -ErrorAction SilentlyContinue)) {{\n"
            f"        {self.settings_cmdlet} -Scope Session -Confirm:$false @__shSettings | Out-Null\n"
            "    }\n"
            "    foreach ($__shKey in $__shSettings.Keys) {\n"
            f"        Write-Output \"{CONFIG_VERIFICATION} $__shKey=$($__shSettings[$__shKey])\"\n"
            "    }\n"
            f"    Write-Output '{CONFIG_SUCCESS}'\n"
            "} catch {\n"
            f"    Write-Output \"{DIAGNOSTIC} configuration failed for {label}: "
            "$($_.Exception.Message)\"\n"
            "}"
        )

    def validation_script(self, variant: str, settings: Mapping[str, str]) -> str:
        family = self.quote(variant.split(".", 1)[0] + "*")
        return (
            f"$__shModules = Get-Module -Name {family} | Select-Object Name, Version\n"
            f"$__shCommands = Get-Command -Module {family} -ErrorAction SilentlyContinue "
            "| Select-Object Name, Source -First 20\n"
            f"Write-Output '{VALIDATION_START}'\n"
            "$__shModules | ForEach-Object { Write-Output \"MODULE:$($_.Name):$($_.Version)\" }\n"
            "$__shCommands | ForEach-Object { Write-Output \"COMMAND:$($_.Name):$($_.Source)\" }\n"
            "$__shConfig = Get-PowerCLIConfiguration -Scope Session -ErrorAction SilentlyContinue "
            "| Select-Object -First 1\n"
            "if ($__shConfig) {\n"
            "    foreach ($__shProp in $__shConfig.PSObject.Properties) {\n"
            "        Write-Output \"CONFIG:$($__shProp.Name):$($__shProp.Value)\"\n"
            "    }\n"
            "}\n"
            f"Write-Output '{VALIDATION_END}'"
        )


class PosixShellDialect(InterpreterDialect):
    """``sh``-compatible shells. Capabilities are executables on ``PATH``."""

    name = "posix"

    @property
    def default_candidates(self) -> tuple[str, ...]:
        return ("bash", "sh", "/bin/sh")

    @property
    def default_modules(self) -> tuple[str, ...]:
        return ("sh",)

    def launch_args(self, executable: str) -> list[str]:
        if os.path.basename(executable) in ("bash", "bash.exe"):
            return ["--noprofile", "--norc", "-s"]
        return ["-s"]

    def quote(self, text: str) -> str:
        return "'" + text.replace("'", "'\\''") + "'"

    def echo_line(self, text: str) -> str:
        return f"printf '%s\\n' {self.quote(text)}"

    def activation_script(self, modules: Sequence[str]) -> str:
        names = " ".join(self.quote(m) for m in modules)
        return (
            "__sh_variant=''\n"
            f"for __sh_module in {names}; do\n"
            "  if command -v \"$__sh_module\" >/dev/null 2>&1; then\n"
            "    __sh_variant=\"$__sh_module\"\n"
            "    break\n"
            "  fi\n"
            f"  printf '%s\\n' \"{DIAGNOSTIC} $__sh_module not found on PATH\"\n"
            "done\n"
            f"if [ -n \"$__sh_variant\" ]; then printf '%s\\n' \"{MODULES_LOADED}$__sh_variant\"; fi"
        )

    def _check_keys(self, settings: Mapping[str, str]) -> None:
        for key in settings:
            if not _IDENTIFIER.match(key):
                raise ValueError(f"Invalid setting name for a POSIX shell: {key!r}")

    def configuration_script(self, variant: str, settings: Mapping[str, str]) -> str:
        self._check_keys(settings)
        lines = []
        for key, value in settings.items():
            lines.append(f"export {key}={self.quote(value)}")
            lines.append(f"printf '%s\\n' \"{CONFIG_VERIFICATION} {key}=${key}\"")
        lines.append(self.echo_line(CONFIG_SUCCESS))
        return "\n".join(lines)

    def validation_script(self, variant: str, settings: Mapping[str, str]) -> str:
        self._check_keys(settings)
        quoted = self.quote(variant)
        lines = [
            self.echo_line(VALIDATION_START),
            f"__sh_path=$(command -v {quoted} 2>/dev/null)",
            "if [ -n \"$__sh_path\" ]; then",
            f"  printf 'MODULE:%s:\\n' {quoted}",
            f"  printf 'COMMAND:%s:%s\\n' {quoted} \"$__sh_path\"",
            "fi",
        ]
        for key in settings:
            lines.append(f"printf '%s\\n' \"CONFIG:{key}:${key}\"")
        lines.append(self.echo_line(VALIDATION_END))
        return "\n".join(lines)


_DIALECTS: dict[str, type[InterpreterDialect]] = {
    PowerShellDialect.name: PowerShellDialect,
    PosixShellDialect.name: PosixShellDialect,
}


def get_dialect(name: str) -> InterpreterDialect:
    try:
        return _DIALECTS[name.strip().lower()]()
    except KeyError:
        known = ", ".join(sorted(_DIALECTS))
        raise ValueError(f"Unknown interpreter dialect {name!r} (known: {known})") from None
