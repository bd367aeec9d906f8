"""Exception hierarchy shared by the provisioning phases."""
from __future__ import annotations

from collections.abc import Sequence

from .exit_codes import ExitCode


class VpsprepError(RuntimeError):
    """Base class for errors the CLI reports without a traceback."""

    exit_code: int = ExitCode.PROVIDER


class ProvisionError(VpsprepError):
    """Raised when a provisioning phase cannot complete."""

    def __init__(self, message: str, *, exit_code: int | None = None) -> None:
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class CommandError(ProvisionError):
    """Raised when an external command exits non-zero or cannot be started."""

    def __init__(
        self,
        args: Sequence[str],
        returncode: int | None,
        message: str,
    ) -> None:
        self.argv = list(args)
        self.returncode = returncode
        if returncode is None:
            code = int(ExitCode.ENVIRONMENT)
        elif returncode > 0:
            code = returncode
        else:
            code = int(ExitCode.PROVIDER)
        super().__init__(message, exit_code=code)


__all__ = ["CommandError", "ProvisionError", "VpsprepError"]
