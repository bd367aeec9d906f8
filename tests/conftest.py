"""Shared fixtures: a fake account database and a recording command runner."""

from __future__ import annotations

import grp
import os
import pwd
import subprocess
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from types import SimpleNamespace

import pytest

from vpsprep.config import AppConfig, load_config
from vpsprep.errors import CommandError


@dataclass
class FakeAccounts:
    """In-memory passwd/group databases patched over :mod:`pwd` and :mod:`grp`."""

    users: dict[str, SimpleNamespace] = field(default_factory=dict)
    groups: dict[str, SimpleNamespace] = field(default_factory=dict)

    def add_group(self, name: str, gid: int) -> None:
        self.groups[name] = SimpleNamespace(gr_name=name, gr_gid=gid, gr_mem=[])

    def add_user(self, name: str, home: Path, shell: str) -> None:
        uid = 1000 + len(self.users)
        self.add_group(name, uid)
        self.users[name] = SimpleNamespace(
            pw_name=name,
            pw_uid=uid,
            pw_gid=uid,
            pw_dir=str(home),
            pw_shell=shell,
        )

    def getpwnam(self, name: str) -> SimpleNamespace:
        return self.users[name]

    def getgrnam(self, name: str) -> SimpleNamespace:
        return self.groups[name]

    def getgrgid(self, gid: int) -> SimpleNamespace:
        for entry in self.groups.values():
            if entry.gr_gid == gid:
                return entry
        raise KeyError(gid)


@pytest.fixture
def accounts(monkeypatch: pytest.MonkeyPatch) -> FakeAccounts:
    """Patch the account databases with a fake holding ``sudo`` and ``docker``."""
    fake = FakeAccounts()
    fake.add_group("sudo", 27)
    fake.add_group("docker", 999)
    monkeypatch.setattr(pwd, "getpwnam", fake.getpwnam)
    monkeypatch.setattr(grp, "getgrnam", fake.getgrnam)
    monkeypatch.setattr(grp, "getgrgid", fake.getgrgid)
    return fake


@pytest.fixture
def chowns(monkeypatch: pytest.MonkeyPatch) -> list[tuple[str, int, int]]:
    """Record ``os.chown`` calls instead of changing ownership."""
    calls: list[tuple[str, int, int]] = []

    def fake_chown(path: object, uid: int, gid: int, **kwargs: object) -> None:
        calls.append((str(path), uid, gid))

    monkeypatch.setattr(os, "chown", fake_chown)
    return calls


Handler = Callable[[list[str]], int]


@dataclass
class FakeRunner:
    """Stand-in for :class:`vpsprep.commands.CommandRunner`.

    ``handlers`` map a program name to a callable returning the exit status.
    Unhandled commands succeed.
    """

    handlers: dict[str, Handler] = field(default_factory=dict)
    history: list[list[str]] = field(default_factory=list)
    inputs: list[str | None] = field(default_factory=list)
    envs: list[dict[str, str] | None] = field(default_factory=list)

    def run(
        self,
        args: Sequence[str],
        *,
        input_text: str | None = None,
        extra_env: dict[str, str] | None = None,
        check: bool = True,
    ) -> subprocess.CompletedProcess[str]:
        command = [str(arg) for arg in args]
        self.history.append(command)
        self.inputs.append(input_text)
        self.envs.append(dict(extra_env) if extra_env else None)
        handler = self.handlers.get(Path(command[0]).name)
        returncode = handler(command) if handler else 0
        if check and returncode != 0:
            raise CommandError(
                command,
                returncode,
                f"{' '.join(command)} failed (exit {returncode}): simulated",
            )
        return subprocess.CompletedProcess(command, returncode, stdout="", stderr="")

    def programs(self) -> list[str]:
        return [Path(command[0]).name for command in self.history]


@pytest.fixture
def runner() -> FakeRunner:
    """Return a runner that records commands and succeeds by default."""
    return FakeRunner()


def make_config(tmp_path: Path, **overrides: object) -> AppConfig:
    """Build an :class:`AppConfig` rooted in *tmp_path*."""
    ssh_dir = tmp_path / "etc" / "ssh"
    base: dict[str, object] = {
        "logs_dir": str(tmp_path / "log"),
        "home_root": str(tmp_path / "home"),
        "templates_dir": str(tmp_path / "templates"),
        "shell": {"shells_file": str(tmp_path / "etc" / "shells")},
        "ssh": {
            "config_file": str(ssh_dir / "sshd_config"),
            "cloud_init_override": str(ssh_dir / "sshd_config.d" / "50-cloud-init.conf"),
        },
    }
    for key, value in overrides.items():
        existing = base.get(key)
        if isinstance(existing, dict) and isinstance(value, dict):
            existing.update(value)
        else:
            base[key] = value
    return load_config(config_file=tmp_path / "missing.yml", env={}, overrides=base)


@pytest.fixture
def config_factory(tmp_path: Path) -> Callable[..., AppConfig]:
    """Return a builder for configurations rooted in ``tmp_path``."""
    (tmp_path / "etc" / "ssh").mkdir(parents=True, exist_ok=True)

    def build(**overrides: object) -> AppConfig:
        return make_config(tmp_path, **overrides)

    return build


@pytest.fixture
def app_config(config_factory: Callable[..., AppConfig]) -> AppConfig:
    """Return a configuration whose paths all live under ``tmp_path``."""
    return config_factory()
