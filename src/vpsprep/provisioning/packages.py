"""Environment bootstrap: package installation and login shell discovery."""
from __future__ import annotations

import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path

from ..commands import CommandRunner
from ..config import PackagesConfig, ShellConfig
from ..errors import ProvisionError
from ..exit_codes import ExitCode


class PackageError(ProvisionError):
    """Raised when a required package or binary is unavailable."""


@dataclass(slots=True)
class BootstrapResult:
    """What the bootstrap phase installed and discovered."""

    installed: list[str] = field(default_factory=list)
    preferred_shell: Path | None = None
    shell_registered: bool = False


def install_packages(
    runner: CommandRunner,
    config: PackagesConfig,
) -> list[str]:
    """Refresh the package index and install shell and container packages.

    ``apt-get install`` is a no-op for packages already present, so the call
    is safe to repeat. Returns the requested package names.
    """
    packages = [*config.shell, *config.container]
    if not config.enabled or not packages:
        return []
    env = {"DEBIAN_FRONTEND": "noninteractive"}
    runner.run([config.apt_get_bin, "update", "-qq"], extra_env=env)
    runner.run([config.apt_get_bin, "install", "-yq", *packages], extra_env=env)
    return packages


def find_shell(shell: ShellConfig) -> Path | None:
    """Return the preferred shell binary when installed and executable."""
    candidate = shell.preferred
    if os.sep in candidate:
        path = Path(candidate)
        return path if path.is_file() and os.access(path, os.X_OK) else None
    located = shutil.which(candidate)
    return Path(located) if located else None


def register_shell(shells_file: Path, binary: Path) -> bool:
    """Append *binary* to *shells_file* unless an identical line exists."""
    entry = str(binary)
    text = shells_file.read_text(encoding="utf-8") if shells_file.exists() else ""
    if entry in text.splitlines():
        return False
    with shells_file.open("a", encoding="utf-8") as handle:
        if text and not text.endswith("\n"):
            handle.write("\n")
        handle.write(entry + "\n")
    return True


def resolve_login_shell(shell: ShellConfig, preferred: Path | None) -> Path:
    """Return the login shell for the new account.

    A missing preferred shell falls back to ``shell.fallback`` unless
    ``shell.required`` is set, in which case it is an error.
    """
    if preferred is not None:
        return preferred
    if shell.required:
        raise PackageError(
            f"Preferred shell '{shell.preferred}' is not installed and shell.required is set.",
            exit_code=ExitCode.ENVIRONMENT,
        )
    return Path(shell.fallback)


def bootstrap_environment(
    runner: CommandRunner,
    packages: PackagesConfig,
    shell: ShellConfig,
) -> BootstrapResult:
    """Install packages and register the preferred shell in ``/etc/shells``."""
    result = BootstrapResult()
    result.installed = install_packages(runner, packages)
    result.preferred_shell = find_shell(shell)
    if result.preferred_shell is not None:
        result.shell_registered = register_shell(shell.shells_file, result.preferred_shell)
    return result


__all__ = [
    "BootstrapResult",
    "PackageError",
    "bootstrap_environment",
    "find_shell",
    "install_packages",
    "register_shell",
    "resolve_login_shell",
]
