"""Ordered provisioning phases with stop-on-first-failure semantics.

Every phase receives the same :class:`ProvisionContext` and either returns a
:class:`PhaseOutcome` or raises :class:`~vpsprep.errors.ProvisionError`. The
orchestrator turns a raised error into a failed :class:`PhaseResult` and does
not run any later phase.
"""
from __future__ import annotations

import socket
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Literal

from rich.console import Console

from .commands import CommandRunner
from .config import AppConfig
from .credentials import Credentials
from .errors import ProvisionError
from .exit_codes import ExitCode
from .provisioning import (
    AccountSpec,
    KeyPaths,
    Owner,
    SshdProvider,
    apply_account_plan,
    bootstrap_environment,
    disclose_private_key,
    ensure_config_dir,
    key_comment,
    key_generator_for,
    materialize_stack,
    owner_for,
    plan_account,
    provision_keys,
    resolve_login_shell,
    wants_zsh_profile,
    write_zshrc,
)
from .templates import TemplateEngine

PhaseStatus = Literal["ok", "skipped", "failed", "not-run"]


@dataclass(slots=True)
class ProvisionContext:
    """Everything a phase needs, threaded explicitly through the run."""

    config: AppConfig
    runner: CommandRunner
    console: Console
    templates: TemplateEngine
    collect_credentials: Callable[[], Credentials]
    hostname: str = field(default_factory=socket.gethostname)
    skip_packages: bool = False
    username: str | None = None
    password: str | None = field(default=None, repr=False)
    preferred_shell: Path | None = None
    login_shell: Path | None = None
    home: Path | None = None
    owner: Owner | None = None
    key_paths: KeyPaths | None = None

    def require_account(self) -> tuple[str, Path, Owner]:
        """Return username, home and owner once the account phase ran."""
        if self.username is None or self.home is None or self.owner is None:
            raise ProvisionError("Account has not been provisioned yet.")
        return self.username, self.home, self.owner


@dataclass(slots=True)
class PhaseOutcome:
    """Value returned by a phase that completed."""

    message: str
    skipped: bool = False
    warnings: list[str] = field(default_factory=list)
    details: dict[str, object] = field(default_factory=dict)


@dataclass(slots=True)
class PhaseResult:
    """Recorded status of one phase."""

    name: str
    status: PhaseStatus
    message: str = ""
    exit_code: int = ExitCode.OK
    warnings: list[str] = field(default_factory=list)
    details: dict[str, object] = field(default_factory=dict)

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "name": self.name,
            "status": self.status,
            "message": self.message,
            "exit_code": int(self.exit_code),
            "warnings": list(self.warnings),
            "details": dict(self.details),
        }


@dataclass(slots=True)
class ProvisionReport:
    """Results of a workflow run, in phase order."""

    results: list[PhaseResult] = field(default_factory=list)

    @property
    def failure(self) -> PhaseResult | None:
        """Return the failed phase, if any."""
        return next((result for result in self.results if result.status == "failed"), None)

    @property
    def exit_code(self) -> int:
        """Return the process exit code for this run."""
        failure = self.failure
        return int(failure.exit_code) if failure else int(ExitCode.OK)

    @property
    def warnings(self) -> list[str]:
        """Return warnings from every phase."""
        return [warning for result in self.results for warning in result.warnings]

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "exit_code": self.exit_code,
            "phases": [result.to_dict() for result in self.results],
        }


@dataclass(frozen=True, slots=True)
class Phase:
    """Named step of the workflow."""

    name: str
    action: Callable[[ProvisionContext], PhaseOutcome]


def bootstrap_phase(ctx: ProvisionContext) -> PhaseOutcome:
    """Install packages and locate the preferred shell."""
    packages = ctx.config.packages
    if ctx.skip_packages:
        packages = replace(packages, enabled=False)
    result = bootstrap_environment(ctx.runner, packages, ctx.config.shell)
    ctx.preferred_shell = result.preferred_shell
    if result.installed:
        message = f"Installed packages: {', '.join(result.installed)}."
    else:
        message = "Package installation skipped."
    return PhaseOutcome(
        message=message,
        details={
            "installed": result.installed,
            "preferred_shell": str(result.preferred_shell) if result.preferred_shell else None,
            "shell_registered": result.shell_registered,
        },
    )


def credentials_phase(ctx: ProvisionContext) -> PhaseOutcome:
    """Collect a valid username and confirmed password."""
    credentials = ctx.collect_credentials()
    ctx.username = credentials.username
    ctx.password = credentials.password
    return PhaseOutcome(
        message=f"Collected credentials for '{credentials.username}'.",
        details={"username": credentials.username},
    )


def account_phase(ctx: ProvisionContext) -> PhaseOutcome:
    """Create the account; an existing account aborts the run untouched."""
    if ctx.username is None or not ctx.password:
        raise ProvisionError("Credentials were not collected.", exit_code=ExitCode.VALIDATION)
    config = ctx.config
    try:
        login_shell = resolve_login_shell(config.shell, ctx.preferred_shell)
        spec = AccountSpec(
            name=ctx.username,
            shell=login_shell,
            admin_group=config.groups.admin,
            container_group=config.groups.container or None,
            container_required=config.groups.container_required,
            home=config.home_root / ctx.username,
        )
        plan = plan_account(spec)
        apply_account_plan(plan, ctx.password, runner=ctx.runner)
    finally:
        ctx.password = None

    ctx.login_shell = login_shell
    ctx.home = spec.home
    ctx.owner = owner_for(ctx.username)
    return PhaseOutcome(
        message=f"Created user '{ctx.username}' with shell {login_shell}.",
        warnings=list(plan.warnings),
        details={
            "shell": str(login_shell),
            "home": str(spec.home),
            "actions": [action.description for action in plan.actions],
        },
    )


def ssh_keys_phase(ctx: ProvisionContext) -> PhaseOutcome:
    """Generate and authorize the keypair, then show the private key once."""
    username, home, owner = ctx.require_account()
    generator = key_generator_for(ctx.config.ssh, ctx.runner)
    comment = key_comment(username, ctx.hostname)
    paths = provision_keys(home, owner, comment, generator)
    ctx.key_paths = paths
    disclose_private_key(paths.private_key, ctx.console)
    return PhaseOutcome(
        message=f"Generated ed25519 keypair ({comment}).",
        details={
            "private_key": str(paths.private_key),
            "public_key": str(paths.public_key),
            "authorized_keys": str(paths.authorized_keys),
        },
    )


def shell_profile_phase(ctx: ProvisionContext) -> PhaseOutcome:
    """Write ``~/.zshrc`` when the account logs in with zsh."""
    _, home, owner = ctx.require_account()
    if ctx.login_shell is None or not wants_zsh_profile(ctx.login_shell):
        return PhaseOutcome(message="zsh not in use; no shell profile written.", skipped=True)
    path = write_zshrc(home, owner, ctx.templates)
    return PhaseOutcome(message=f"Wrote {path}.", details={"path": str(path)})


def build_sshd_provider(config: AppConfig, runner: CommandRunner) -> SshdProvider:
    """Return an :class:`SshdProvider` bound to the configured paths."""
    ssh = config.ssh
    return SshdProvider(
        runner=runner,
        config_file=ssh.config_file,
        cloud_init_override=ssh.cloud_init_override,
        sshd_bin=ssh.sshd_bin,
        systemctl_bin=ssh.systemctl_bin,
        service=ssh.service,
    )


def sshd_phase(ctx: ProvisionContext) -> PhaseOutcome:
    """Harden sshd; validation must pass before the restart."""
    provider = build_sshd_provider(ctx.config, ctx.runner)
    result = provider.harden(ctx.config.ssh.directives)
    summary = ", ".join(f"{name} {value}" for name, value in ctx.config.ssh.directives)
    return PhaseOutcome(
        message=f"SSH daemon hardened ({summary}) and restarted.",
        details={
            "changed": result.changed,
            "written": result.written,
            "override_removed": result.override_removed,
        },
    )


def stack_phase(ctx: ProvisionContext) -> PhaseOutcome:
    """Lay down the Compose stack and ``~/.config``."""
    _, home, owner = ctx.require_account()
    layout = materialize_stack(home, ctx.config.stack.dir_name, owner, ctx.templates)
    config_dir = ensure_config_dir(home, owner)
    return PhaseOutcome(
        message=f"Wrote {layout.descriptor}.",
        details={
            "root": str(layout.root),
            "descriptor": str(layout.descriptor),
            "config_dir": str(config_dir),
        },
    )


DEFAULT_PHASES: tuple[Phase, ...] = (
    Phase("packages", bootstrap_phase),
    Phase("credentials", credentials_phase),
    Phase("account", account_phase),
    Phase("ssh-keys", ssh_keys_phase),
    Phase("shell-profile", shell_profile_phase),
    Phase("sshd", sshd_phase),
    Phase("stack", stack_phase),
)


def run_workflow(
    ctx: ProvisionContext,
    phases: Sequence[Phase] = DEFAULT_PHASES,
    *,
    on_result: Callable[[PhaseResult], None] | None = None,
) -> ProvisionReport:
    """Run *phases* in order, stopping at the first failure."""
    report = ProvisionReport()
    failed = False
    for phase in phases:
        if failed:
            result = PhaseResult(name=phase.name, status="not-run")
        else:
            try:
                outcome = phase.action(ctx)
            except ProvisionError as exc:
                failed = True
                result = PhaseResult(
                    name=phase.name,
                    status="failed",
                    message=str(exc),
                    exit_code=exc.exit_code,
                )
            except OSError as exc:
                failed = True
                result = PhaseResult(
                    name=phase.name,
                    status="failed",
                    message=f"{type(exc).__name__}: {exc}",
                    exit_code=ExitCode.ENVIRONMENT,
                )
            else:
                result = PhaseResult(
                    name=phase.name,
                    status="skipped" if outcome.skipped else "ok",
                    message=outcome.message,
                    warnings=outcome.warnings,
                    details=outcome.details,
                )
        report.results.append(result)
        if on_result is not None:
            on_result(result)
    return report


__all__ = [
    "DEFAULT_PHASES",
    "Phase",
    "PhaseOutcome",
    "PhaseResult",
    "ProvisionContext",
    "ProvisionReport",
    "build_sshd_provider",
    "run_workflow",
]
