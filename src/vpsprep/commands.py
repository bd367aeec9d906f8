"""External command runner used by every provisioning phase."""
from __future__ import annotations

import os
import subprocess
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field

from .errors import CommandError


@dataclass(slots=True)
class CommandRunner:
    """Run OS commands with stop-on-first-error semantics.

    ``history`` records the argv of every executed command so callers (and
    tests) can inspect what ran. Standard input is never recorded.
    """

    env: Mapping[str, str] | None = None
    history: list[list[str]] = field(default_factory=list)

    def run(
        self,
        args: Sequence[str],
        *,
        input_text: str | None = None,
        extra_env: Mapping[str, str] | None = None,
        check: bool = True,
    ) -> subprocess.CompletedProcess[str]:
        """Execute *args* and return the completed process.

        Raises :class:`CommandError` when the binary is missing or, with
        ``check`` enabled, when the command exits non-zero.
        """
        command = [str(arg) for arg in args]
        environment: dict[str, str] | None = None
        if self.env is not None or extra_env:
            environment = dict(os.environ if self.env is None else self.env)
            environment.update(extra_env or {})
        self.history.append(command)
        try:
            result = subprocess.run(  # noqa: S603
                command,
                input=input_text,
                capture_output=True,
                text=True,
                check=False,
                env=environment,
            )
        except FileNotFoundError as exc:
            raise CommandError(command, None, f"{command[0]} not found: {exc}") from exc
        if check and result.returncode != 0:
            stdout = result.stdout or ""
            stderr = result.stderr or ""
            message = stderr.strip() or stdout.strip() or "no output"
            raise CommandError(
                command,
                result.returncode,
                f"{' '.join(command)} failed (exit {result.returncode}): {message}",
            )
        return result


__all__ = ["CommandRunner"]
