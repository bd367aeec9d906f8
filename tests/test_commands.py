"""Tests for the external command runner."""
from __future__ import annotations

import subprocess
from typing import Any

import pytest

from vpsprep import commands
from vpsprep.commands import CommandRunner
from vpsprep.errors import CommandError
from vpsprep.exit_codes import ExitCode


class DummyResult:
    """Simple stand-in for ``subprocess.CompletedProcess``."""

    def __init__(self, returncode: int = 0, stdout: str = "", stderr: str = "") -> None:
        """Initialise the dummy result."""
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr


def test_run_passes_input_and_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Standard input and extra environment reach subprocess.run."""
    captured: dict[str, Any] = {}

    def fake_run(args: list[str], **kwargs: Any) -> DummyResult:
        captured["args"] = args
        captured.update(kwargs)
        return DummyResult()

    monkeypatch.setattr(commands.subprocess, "run", fake_run)
    runner = CommandRunner(env={"PATH": "/usr/bin"})

    runner.run(["chpasswd"], input_text="alice:pw\n", extra_env={"LANG": "C"})

    assert captured["args"] == ["chpasswd"]
    assert captured["input"] == "alice:pw\n"
    assert captured["env"] == {"PATH": "/usr/bin", "LANG": "C"}
    assert runner.history == [["chpasswd"]]


def test_non_zero_exit_raises_with_command_status(monkeypatch: pytest.MonkeyPatch) -> None:
    """A failing command raises CommandError carrying its own exit status."""
    monkeypatch.setattr(
        commands.subprocess,
        "run",
        lambda args, **kwargs: DummyResult(returncode=255, stderr="bad option\n"),
    )

    with pytest.raises(CommandError) as excinfo:
        CommandRunner().run(["/usr/sbin/sshd", "-t"])

    assert excinfo.value.returncode == 255
    assert excinfo.value.exit_code == 255
    assert "bad option" in str(excinfo.value)


def test_unchecked_failure_returns_result(monkeypatch: pytest.MonkeyPatch) -> None:
    """With check disabled the completed process is returned."""
    monkeypatch.setattr(
        commands.subprocess,
        "run",
        lambda args, **kwargs: DummyResult(returncode=1),
    )

    result = CommandRunner().run(["id", "nobody"], check=False)

    assert result.returncode == 1


def test_missing_binary_is_environment_error(monkeypatch: pytest.MonkeyPatch) -> None:
    """A missing executable maps to the environment exit code."""

    def missing(args: list[str], **kwargs: Any) -> subprocess.CompletedProcess[str]:
        raise FileNotFoundError(args[0])

    monkeypatch.setattr(commands.subprocess, "run", missing)

    with pytest.raises(CommandError) as excinfo:
        CommandRunner().run(["apt-get", "update"])

    assert excinfo.value.returncode is None
    assert excinfo.value.exit_code == ExitCode.ENVIRONMENT
