"""Structured operation logging for vpsprep commands.

Every CLI command runs inside :meth:`StructuredLogger.operation`, which
appends one JSON object per operation to ``operations.jsonl`` in the logs
directory. Logging is best effort: when the directory cannot be created or a
write fails, the logger disables itself and the command carries on.

Callers must never place credentials or private key material in ``args`` or
``context``; values are serialised as given.
"""
from __future__ import annotations

import getpass
import json
import os
import time
import uuid
from collections.abc import Iterable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any


def _sanitize(value: object) -> object:
    if value is None:
        return None
    if isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, Mapping):
        return {str(key): _sanitize(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_sanitize(item) for item in value]
    return str(value)


@dataclass(slots=True)
class OperationScope:
    """Collects the outcome of a single logged operation."""

    command: str
    op_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    result: dict[str, Any] | None = None

    def success(
        self,
        message: str,
        *,
        changed: int = 0,
        warnings: Iterable[str] = (),
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Record a successful outcome."""
        self._record("success", message, changed=changed, warnings=warnings, context=context)

    def warning(
        self,
        message: str,
        *,
        warnings: Iterable[str] = (),
        errors: Iterable[str] = (),
        changed: int = 0,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Record an outcome that completed with warnings."""
        self._record(
            "warning",
            message,
            changed=changed,
            warnings=warnings,
            errors=errors,
            context=context,
        )

    def error(
        self,
        message: str,
        *,
        errors: Iterable[str] | None = None,
        rc: int | None = None,
        changed: int = 0,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Record a failed outcome; *errors* defaults to ``[message]``."""
        self._record(
            "error",
            message,
            changed=changed,
            errors=[message] if errors is None else errors,
            rc=rc,
            context=context,
        )

    def _record(
        self,
        status: str,
        message: str,
        *,
        changed: int,
        warnings: Iterable[str] = (),
        errors: Iterable[str] = (),
        rc: int | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        self.result = {
            "status": status,
            "message": message,
            "changed": changed,
            "warnings": list(warnings),
            "errors": list(errors),
            "rc": rc,
            "context": _sanitize(dict(context or {})),
        }


class StructuredLogger:
    """Append-only JSONL writer for operation records."""

    def __init__(self, logs_dir: Path) -> None:
        self._logs_dir = Path(logs_dir)
        self._operations_log_path = self._logs_dir / "operations.jsonl"
        self._enabled = True
        try:
            self._logs_dir.mkdir(parents=True, exist_ok=True)
        except OSError:
            self._enabled = False

    @property
    def path(self) -> Path:
        """Return the operations log path."""
        return self._operations_log_path

    @contextmanager
    def operation(
        self,
        command: str,
        *,
        args: Mapping[str, object] | None = None,
        target: Mapping[str, object] | None = None,
    ) -> Iterator[OperationScope]:
        """Yield an :class:`OperationScope` and persist its outcome on exit.

        An exception escaping the block is recorded as an error (unless the
        scope already recorded a result) and re-raised.
        """
        scope = OperationScope(command=command)
        started = datetime.now(UTC)
        start_clock = time.monotonic()
        try:
            yield scope
        except BaseException as exc:
            if scope.result is None:
                scope.error(f"{type(exc).__name__}: {exc}")
            raise
        finally:
            if scope.result is None:
                scope.success("Completed.")
            duration_ms = int((time.monotonic() - start_clock) * 1000)
            self._write(
                {
                    "op_id": scope.op_id,
                    "command": command,
                    "user": _current_user(),
                    "pid": os.getpid(),
                    "started_at": started.isoformat(),
                    "duration_ms": duration_ms,
                    "args": _sanitize(dict(args or {})),
                    "target": _sanitize(dict(target or {})),
                    "result": scope.result,
                }
            )

    def _write(self, record: Mapping[str, object]) -> None:
        if not self._enabled:
            return
        try:
            with self._operations_log_path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(record, sort_keys=True) + "\n")
        except OSError:
            self._enabled = False


def _current_user() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return str(os.getuid())


__all__ = ["OperationScope", "StructuredLogger"]
