"""Enumerations for CLI exit codes."""
from __future__ import annotations

from enum import IntEnum


class ExitCode(IntEnum):
    """Well-known exit codes enforced across the CLI.

    External command failures are reported with the failing command's own
    status instead; ``PROVIDER`` only covers failures that carry none.
    """

    OK = 0
    VALIDATION = 2
    ENVIRONMENT = 3
    PROVIDER = 4
    CONFLICT = 5
