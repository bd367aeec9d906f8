"""Typer-powered command line for ``vpsprep``."""
from __future__ import annotations

import json
import os
import textwrap
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console
from rich.table import Table

from . import __version__
from .commands import CommandRunner
from .config import AppConfig, ConfigError, load_config
from .credentials import collect_credentials
from .errors import ProvisionError
from .exit_codes import ExitCode
from .logging import OperationScope, StructuredLogger
from .provisioning.stack import render_descriptor, verify_descriptor
from .templates import TemplateEngine
from .workflow import (
    PhaseResult,
    ProvisionContext,
    build_sshd_provider,
    run_workflow,
)

console = Console()
err_console = Console(stderr=True)

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to vpsprep's YAML config file.",
)

JSON_OPTION = typer.Option(
    False,
    "--json",
    help="Emit machine-readable JSON.",
)

app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        One-shot VPS provisioning.

        Creates a sudo-capable login with a fresh SSH key, hardens the SSH
        daemon, and lays down a Portainer + Nginx Proxy Manager Compose stack.
        """
    ).strip(),
)
ssh_app = typer.Typer(help="Inspect and harden the SSH daemon configuration.")
stack_app = typer.Typer(help="Inspect the Docker Compose stack.")
config_app = typer.Typer(help="Inspect the effective configuration.")

app.add_typer(ssh_app, name="ssh")
app.add_typer(stack_app, name="stack")
app.add_typer(config_app, name="config")


@dataclass
class RuntimeContext:
    """Aggregated runtime objects shared by commands."""

    config: AppConfig
    logger: StructuredLogger
    templates: TemplateEngine
    runner: CommandRunner


def _ensure_runtime(ctx: typer.Context, config_file: Path | None) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    try:
        config = load_config(config_file=config_file)
    except ConfigError as exc:
        err_console.print(f"Configuration error: {exc}", style="red", markup=False)
        raise typer.Exit(code=int(exc.exit_code)) from exc
    runtime = RuntimeContext(
        config=config,
        logger=StructuredLogger(config.logs_dir),
        templates=TemplateEngine.with_overrides(config.templates_dir),
        runner=CommandRunner(),
    )
    ctx.obj = runtime
    return runtime


def _get_runtime(ctx: typer.Context) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    return _ensure_runtime(ctx, None)


@app.callback(invoke_without_command=True)
def _root(  # noqa: D401 - Typer displays help for us, docstring optional.
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the vpsprep version and exit.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
) -> None:
    """Entry point callback invoked for every CLI execution."""
    if version:
        console.print(f"vpsprep {__version__}")
        raise typer.Exit(code=0)

    _ensure_runtime(ctx, config_file)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=0)


def _command_error(
    op: OperationScope,
    message: str,
    *,
    rc: int = ExitCode.VALIDATION,
    errors: Sequence[str] | None = None,
) -> NoReturn:
    """Emit an error on stderr, record it and terminate the command."""
    err_console.print(message, style="red", markup=False)
    op.error(message, errors=list(errors or [message]), rc=rc)
    raise typer.Exit(code=rc)


def _require_root(op: OperationScope) -> None:
    if os.geteuid() != 0:
        _command_error(op, "vpsprep must be run as root.", rc=ExitCode.ENVIRONMENT)


def _render_phase(result: PhaseResult) -> None:
    if result.status == "ok":
        console.print(f"[green]✔[/green] [bold]{result.name}[/bold]: ", end="")
        console.print(result.message, markup=False)
    elif result.status == "skipped":
        console.print(f"[yellow]-[/yellow] [bold]{result.name}[/bold]: ", end="")
        console.print(result.message, markup=False)
    elif result.status == "failed":
        err_console.print(f"[red]✘ {result.name}[/red]: ", end="")
        err_console.print(result.message, markup=False)
    for warning in result.warnings:
        console.print(f"  [yellow]warning:[/yellow] {warning}", markup=False)


@app.command()
def run(
    ctx: typer.Context,
    username: str | None = typer.Option(
        None,
        "--username",
        "-u",
        help="Login name to create (prompted when omitted or invalid).",
    ),
    skip_packages: bool = typer.Option(
        False,
        "--skip-packages",
        help="Do not call the package manager.",
    ),
    hostname: str | None = typer.Option(
        None,
        "--hostname",
        help="Host name used in the SSH key comment (defaults to this host).",
    ),
) -> None:
    """Provision the host: user, SSH key, sshd hardening and Compose stack."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "run",
        args={"username": username, "skip_packages": skip_packages, "hostname": hostname},
        target={"kind": "host", "scope": "provision"},
    ) as op:
        _require_root(op)
        provision = ProvisionContext(
            config=runtime.config,
            runner=runtime.runner,
            console=console,
            templates=runtime.templates,
            collect_credentials=lambda: collect_credentials(username=username),
            skip_packages=skip_packages,
        )
        if hostname:
            provision.hostname = hostname

        report = run_workflow(provision, on_result=_render_phase)
        failure = report.failure
        if failure is not None:
            op.error(
                failure.message,
                rc=report.exit_code,
                context=report.to_dict(),
            )
            raise typer.Exit(code=report.exit_code)

        console.print(
            f"[green]User {provision.username} created and SSH hardened successfully.[/green]"
        )
        if report.warnings:
            op.warning(
                "Provisioning completed with warnings.",
                warnings=report.warnings,
                changed=1,
                context=report.to_dict(),
            )
        else:
            op.success("Provisioning completed.", changed=1, context=report.to_dict())


@ssh_app.command("harden")
def ssh_harden(
    ctx: typer.Context,
    no_restart: bool = typer.Option(
        False,
        "--no-restart",
        help="Validate the patched configuration without restarting sshd.",
    ),
) -> None:
    """Apply the sshd directive policy, validate, then restart the daemon."""
    runtime = _get_runtime(ctx)
    ssh = runtime.config.ssh
    with runtime.logger.operation(
        "ssh harden",
        args={"no_restart": no_restart},
        target={"kind": "sshd", "path": ssh.config_file},
    ) as op:
        _require_root(op)
        provider = build_sshd_provider(runtime.config, runtime.runner)
        try:
            result = provider.harden(ssh.directives, restart=not no_restart)
        except ProvisionError as exc:
            _command_error(op, str(exc), rc=exc.exit_code)

        if result.changed:
            console.print(f"Updated directives: {', '.join(result.changed)}", markup=False)
        else:
            console.print("Directives already compliant.")
        if result.override_removed:
            console.print(f"Removed {ssh.cloud_init_override}", markup=False)
        if no_restart:
            console.print("[yellow]Configuration validated; sshd not restarted.[/yellow]")
        else:
            console.print(f"[green]Restarted {ssh.service}.[/green]")
        op.success(
            "SSH daemon hardened.",
            changed=int(bool(result.changed) or result.override_removed),
            context={
                "changed": result.changed,
                "override_removed": result.override_removed,
                "restarted": not no_restart,
            },
        )


@ssh_app.command("check")
def ssh_check(
    ctx: typer.Context,
    json_output: bool = JSON_OPTION,
) -> None:
    """Report whether sshd_config satisfies the directive policy."""
    runtime = _get_runtime(ctx)
    ssh = runtime.config.ssh
    with runtime.logger.operation(
        "ssh check",
        args={"json": json_output},
        target={"kind": "sshd", "path": ssh.config_file},
    ) as op:
        provider = build_sshd_provider(runtime.config, runtime.runner)
        checks = provider.check(ssh.directives)
        override_present = ssh.cloud_init_override.is_file()
        compliant = all(check.compliant for check in checks) and not override_present
        payload = {
            "config_file": str(ssh.config_file),
            "compliant": compliant,
            "override_present": override_present,
            "directives": [check.to_dict() for check in checks],
        }

        if json_output:
            console.print_json(data=payload)
        else:
            table = Table(show_header=True, header_style="bold magenta")
            table.add_column("Directive", style="bold")
            table.add_column("Expected")
            table.add_column("Actual")
            table.add_column("Status")
            for check in checks:
                table.add_row(
                    check.directive,
                    check.expected,
                    check.actual or "-",
                    "[green]OK[/green]" if check.compliant else "[red]FAIL[/red]",
                )
            console.print(table)
            if override_present:
                console.print(
                    f"[yellow]Override present:[/yellow] {ssh.cloud_init_override}",
                )

        if compliant:
            op.success("sshd configuration compliant.", changed=0, context=payload)
            return
        op.warning(
            "sshd configuration not compliant.",
            warnings=[check.directive for check in checks if not check.compliant],
            context=payload,
        )
        raise typer.Exit(code=ExitCode.VALIDATION)


@stack_app.command("render")
def stack_render(ctx: typer.Context) -> None:
    """Print the Docker Compose descriptor without writing it."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "stack render",
        target={"kind": "stack", "dir_name": runtime.config.stack.dir_name},
    ) as op:
        try:
            text = render_descriptor(runtime.templates)
            verify_descriptor(text)
        except ProvisionError as exc:
            _command_error(op, str(exc), rc=exc.exit_code)
        console.print(text, end="", markup=False, highlight=False, soft_wrap=True)
        op.success("Rendered Compose descriptor.", changed=0)


@config_app.command("show")
def config_show(
    ctx: typer.Context,
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Emit configuration as JSON instead of a table.",
    ),
) -> None:
    """Display the effective configuration after merges."""
    runtime = _get_runtime(ctx)
    data = runtime.config.to_dict()

    with runtime.logger.operation(
        "config show",
        args={"json": json_output},
        target={"kind": "config"},
    ) as op:
        if json_output:
            console.print_json(data=data)
            op.success("Rendered configuration as JSON.", changed=0)
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Key", style="bold")
        table.add_column("Value")

        for key, value in data.items():
            if isinstance(value, dict):
                rendered = json.dumps(value, indent=2, sort_keys=True)
            else:
                rendered = str(value)
            table.add_row(key, rendered)

        console.print(table)
        op.success("Rendered configuration table.", changed=0)


def main() -> None:
    """Console script entry point."""
    app()


__all__ = ["app", "main"]
