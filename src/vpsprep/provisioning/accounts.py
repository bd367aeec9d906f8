"""Inspecting and provisioning the operator's login account."""
from __future__ import annotations

import grp
import pwd
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

from ..commands import CommandRunner
from ..errors import ProvisionError
from ..exit_codes import ExitCode


class AccountExistsError(ProvisionError):
    """Raised when the requested login name already exists on the host."""

    def __init__(self, name: str) -> None:
        super().__init__(f"User {name} already exists.", exit_code=ExitCode.CONFLICT)
        self.name = name


class AccountGroupError(ProvisionError):
    """Raised when a required supplementary group is missing."""


@dataclass(slots=True)
class AccountSpec:
    """Desired attributes for the new login account."""

    name: str
    shell: Path
    admin_group: str = "sudo"
    container_group: str | None = "docker"
    container_required: bool = True
    home: Path | None = None


@dataclass(slots=True)
class AccountStatus:
    """Current state of the account and its groups on the host."""

    user_exists: bool
    uid: int | None = None
    home: Path | None = None
    missing_groups: list[str] = field(default_factory=list)


@dataclass(slots=True)
class AccountAction:
    """Single command required to provision the account."""

    kind: Literal["create-user", "set-password", "add-group"]
    description: str
    command: list[str]
    needs_password: bool = False


@dataclass(slots=True)
class AccountPlan:
    """Ordered commands and warnings required to satisfy an :class:`AccountSpec`."""

    spec: AccountSpec
    status: AccountStatus
    actions: list[AccountAction] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def _group_exists(name: str) -> bool:
    try:
        grp.getgrnam(name)
    except KeyError:
        return False
    return True


def inspect_account(spec: AccountSpec) -> AccountStatus:
    """Return the current status for *spec* from the passwd/group databases."""
    try:
        entry = pwd.getpwnam(spec.name)
    except KeyError:
        status = AccountStatus(user_exists=False)
    else:
        status = AccountStatus(
            user_exists=True,
            uid=entry.pw_uid,
            home=Path(entry.pw_dir),
        )
    for group in (spec.admin_group, spec.container_group):
        if group and not _group_exists(group):
            status.missing_groups.append(group)
    return status


def plan_account(spec: AccountSpec) -> AccountPlan:
    """Return the commands that create the account described by *spec*.

    An existing account is never modified: the plan raises
    :class:`AccountExistsError` before any command is produced.
    """
    status = inspect_account(spec)
    if status.user_exists:
        raise AccountExistsError(spec.name)
    if spec.admin_group in status.missing_groups:
        raise AccountGroupError(
            f"Administrative group '{spec.admin_group}' does not exist.",
            exit_code=ExitCode.ENVIRONMENT,
        )

    plan = AccountPlan(spec=spec, status=status)
    command = ["useradd", "--create-home"]
    if spec.home is not None:
        command.extend(["--home-dir", str(spec.home)])
    command.extend(["--shell", str(spec.shell), spec.name])
    plan.actions.append(
        AccountAction(
            kind="create-user",
            description=f"Create user '{spec.name}' with shell {spec.shell}.",
            command=command,
        )
    )
    plan.actions.append(
        AccountAction(
            kind="set-password",
            description=f"Set the password for '{spec.name}'.",
            command=["chpasswd"],
            needs_password=True,
        )
    )
    plan.actions.append(
        AccountAction(
            kind="add-group",
            description=f"Add '{spec.name}' to group '{spec.admin_group}'.",
            command=["usermod", "-aG", spec.admin_group, spec.name],
        )
    )

    group = spec.container_group
    if group:
        if group in status.missing_groups:
            if spec.container_required:
                raise AccountGroupError(
                    f"Container runtime group '{group}' does not exist; "
                    "is the container runtime installed?",
                    exit_code=ExitCode.ENVIRONMENT,
                )
            plan.warnings.append(
                f"Group '{group}' is missing; skipping container runtime membership."
            )
        else:
            plan.actions.append(
                AccountAction(
                    kind="add-group",
                    description=f"Add '{spec.name}' to group '{group}'.",
                    command=["usermod", "-aG", group, spec.name],
                )
            )
    return plan


def apply_account_plan(
    plan: AccountPlan,
    password: str,
    *,
    runner: CommandRunner,
) -> None:
    """Execute the commands described by *plan*.

    The password is fed to ``chpasswd`` on standard input only.
    """
    for action in plan.actions:
        if action.needs_password:
            runner.run(action.command, input_text=f"{plan.spec.name}:{password}\n")
        else:
            runner.run(action.command)


__all__ = [
    "AccountAction",
    "AccountExistsError",
    "AccountGroupError",
    "AccountPlan",
    "AccountSpec",
    "AccountStatus",
    "apply_account_plan",
    "inspect_account",
    "plan_account",
]
