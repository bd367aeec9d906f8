"""Tests for package bootstrap and login shell resolution."""
from __future__ import annotations

import os
from pathlib import Path

import pytest

from vpsprep.config import PackagesConfig, ShellConfig
from vpsprep.errors import CommandError
from vpsprep.exit_codes import ExitCode
from vpsprep.provisioning.packages import (
    PackageError,
    bootstrap_environment,
    find_shell,
    install_packages,
    register_shell,
    resolve_login_shell,
)


def _fake_shell(tmp_path: Path, name: str = "zsh") -> Path:
    binary = tmp_path / "bin" / name
    binary.parent.mkdir(parents=True, exist_ok=True)
    binary.write_text("#!/bin/sh\n", encoding="utf-8")
    os.chmod(binary, 0o755)
    return binary


def test_install_packages_updates_then_installs(runner) -> None:
    """The index is refreshed before a non-interactive install."""
    installed = install_packages(runner, PackagesConfig())

    assert installed == ["zsh", "ca-certificates", "curl", "docker.io", "docker-compose-v2"]
    assert runner.history == [
        ["apt-get", "update", "-qq"],
        ["apt-get", "install", "-yq", *installed],
    ]
    assert runner.envs == [{"DEBIAN_FRONTEND": "noninteractive"}] * 2


def test_install_packages_disabled_runs_nothing(runner) -> None:
    """Disabled package management issues no commands."""
    assert install_packages(runner, PackagesConfig(enabled=False)) == []
    assert install_packages(runner, PackagesConfig(shell=(), container=())) == []
    assert runner.history == []


def test_install_failure_propagates_command_status(runner) -> None:
    """A failing apt-get stops the bootstrap with its own exit status."""
    runner.handlers["apt-get"] = lambda command: 100

    with pytest.raises(CommandError) as excinfo:
        install_packages(runner, PackagesConfig())

    assert excinfo.value.exit_code == 100
    assert len(runner.history) == 1


def test_find_shell_accepts_absolute_executable(tmp_path: Path) -> None:
    """An absolute path is used when it is an executable file."""
    binary = _fake_shell(tmp_path)

    assert find_shell(ShellConfig(preferred=str(binary))) == binary
    assert find_shell(ShellConfig(preferred=str(tmp_path / "bin" / "nope"))) is None


def test_find_shell_searches_path(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """A bare name is looked up on ``PATH``."""
    binary = _fake_shell(tmp_path, "fancysh")
    monkeypatch.setenv("PATH", str(binary.parent))

    assert find_shell(ShellConfig(preferred="fancysh")) == binary


def test_register_shell_appends_once(tmp_path: Path) -> None:
    """The shell is added to /etc/shells only when missing."""
    shells = tmp_path / "shells"
    shells.write_text("/bin/sh\n/bin/bash", encoding="utf-8")

    assert register_shell(shells, Path("/usr/bin/zsh")) is True
    assert register_shell(shells, Path("/usr/bin/zsh")) is False
    assert shells.read_text(encoding="utf-8") == "/bin/sh\n/bin/bash\n/usr/bin/zsh\n"


def test_resolve_login_shell_falls_back_unless_required() -> None:
    """Missing zsh falls back to bash, or fails when zsh is required."""
    preferred = Path("/usr/bin/zsh")
    assert resolve_login_shell(ShellConfig(), preferred) == preferred
    assert resolve_login_shell(ShellConfig(), None) == Path("/bin/bash")

    with pytest.raises(PackageError) as excinfo:
        resolve_login_shell(ShellConfig(required=True), None)
    assert excinfo.value.exit_code == ExitCode.ENVIRONMENT


def test_bootstrap_environment_registers_discovered_shell(tmp_path: Path, runner) -> None:
    """Bootstrap installs packages and records the discovered shell."""
    binary = _fake_shell(tmp_path)
    shells = tmp_path / "shells"
    shell = ShellConfig(preferred=str(binary), shells_file=shells)

    result = bootstrap_environment(runner, PackagesConfig(), shell)

    assert result.preferred_shell == binary
    assert result.shell_registered is True
    assert shells.read_text(encoding="utf-8") == f"{binary}\n"
    assert runner.programs() == ["apt-get", "apt-get"]
