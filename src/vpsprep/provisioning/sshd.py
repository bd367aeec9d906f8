"""SSH daemon hardening.

:class:`SshdConfigDocument` rewrites ``sshd_config`` directives as an
ordered list of lines so the patching can be exercised against in-memory
text. :class:`SshdProvider` applies it to the host: patch, drop the
cloud-init override, validate with ``sshd -t`` and only then restart.
"""
from __future__ import annotations

import re
import subprocess
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from ..commands import CommandRunner
from ..errors import CommandError, ProvisionError
from ..templates import write_text_atomic

_MATCH_BLOCK = re.compile(r"^\s*Match\s", re.IGNORECASE)


class SshdValidationError(ProvisionError):
    """Raised when ``sshd -t`` rejects the patched configuration."""


def _directive_pattern(directive: str, *, allow_comment: bool) -> re.Pattern[str]:
    prefix = r"^\s*#?\s*" if allow_comment else r"^\s*"
    return re.compile(prefix + re.escape(directive) + r"\s+(.*)$", re.IGNORECASE)


@dataclass(slots=True)
class SshdConfigDocument:
    """Ordered lines of an ``sshd_config`` file."""

    lines: list[str] = field(default_factory=list)

    @classmethod
    def parse(cls, text: str) -> SshdConfigDocument:
        """Split *text* on newlines only, dropping the terminators."""
        lines = text.split("\n")
        if lines[-1] == "":
            lines.pop()
        return cls(lines=lines)

    def render(self) -> str:
        """Serialise the document with a trailing newline."""
        if not self.lines:
            return ""
        return "\n".join(self.lines) + "\n"

    def matching_indexes(self, directive: str) -> list[int]:
        """Return indexes of lines setting *directive*, commented or not."""
        pattern = _directive_pattern(directive, allow_comment=True)
        return [index for index, line in enumerate(self.lines) if pattern.match(line)]

    def value_of(self, directive: str) -> str | None:
        """Return the value of the first active *directive* line, if any."""
        pattern = _directive_pattern(directive, allow_comment=False)
        for line in self.lines:
            match = pattern.match(line)
            if match:
                return match.group(1).strip()
        return None

    def occurrences(self, directive: str) -> int:
        """Return how many active lines set *directive*."""
        pattern = _directive_pattern(directive, allow_comment=False)
        return sum(1 for line in self.lines if pattern.match(line))

    def set(self, directive: str, value: str) -> bool:
        """Ensure exactly one ``directive value`` line; return ``True`` on change.

        The first matching line (commented or not) in the global section is
        replaced in place. Every other match is removed, including copies
        inside ``Match`` blocks. Without a global match the line is inserted
        ahead of the first ``Match`` block so it applies to every connection.
        """
        canonical = f"{directive} {value}"
        indexes = self.matching_indexes(directive)
        boundary = next(
            (index for index, line in enumerate(self.lines) if _MATCH_BLOCK.match(line)),
            len(self.lines),
        )
        if not indexes or indexes[0] >= boundary:
            for index in reversed(indexes):
                del self.lines[index]
            self.lines.insert(boundary, canonical)
            return True

        first, *rest = indexes
        changed = self.lines[first] != canonical or bool(rest)
        self.lines[first] = canonical
        for index in reversed(rest):
            del self.lines[index]
        return changed

    def apply(self, directives: Iterable[tuple[str, str]]) -> list[str]:
        """Apply every ``(directive, value)`` pair; return the changed names."""
        return [name for name, value in directives if self.set(name, value)]


@dataclass(slots=True)
class DirectiveCheck:
    """Compliance of one directive in the current configuration."""

    directive: str
    expected: str
    actual: str | None
    occurrences: int

    @property
    def compliant(self) -> bool:
        """Return ``True`` when set exactly once to the expected value."""
        return (
            self.occurrences == 1
            and self.actual is not None
            and self.actual.lower() == self.expected.lower()
        )

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "directive": self.directive,
            "expected": self.expected,
            "actual": self.actual,
            "occurrences": self.occurrences,
            "compliant": self.compliant,
        }


@dataclass(slots=True)
class SshdHardenResult:
    """Outcome of :meth:`SshdProvider.harden`."""

    changed: list[str]
    written: bool
    override_removed: bool
    validation: subprocess.CompletedProcess[str] | None = None
    restart: subprocess.CompletedProcess[str] | None = None


@dataclass(slots=True)
class SshdProvider:
    """Patch, validate and restart the host SSH daemon."""

    runner: CommandRunner
    config_file: Path = Path("/etc/ssh/sshd_config")
    cloud_init_override: Path = Path("/etc/ssh/sshd_config.d/50-cloud-init.conf")
    sshd_bin: str = "/usr/sbin/sshd"
    systemctl_bin: str = "systemctl"
    service: str = "ssh"

    def load(self) -> SshdConfigDocument:
        """Read the daemon configuration (an absent file reads as empty).

        Bytes that are not UTF-8 survive a load and write unchanged.
        """
        if not self.config_file.exists():
            return SshdConfigDocument()
        text = self.config_file.read_text(encoding="utf-8", errors="surrogateescape")
        return SshdConfigDocument.parse(text)

    def patch(self, directives: Sequence[tuple[str, str]]) -> tuple[list[str], bool]:
        """Apply *directives* to the config file, keeping its mode.

        Returns the changed directive names and whether the file was written.
        """
        document = self.load()
        changed = document.apply(directives)
        if not changed:
            return changed, False
        mode = self.config_file.stat().st_mode & 0o777 if self.config_file.exists() else 0o644
        written = write_text_atomic(
            self.config_file,
            document.render(),
            mode=mode,
            errors="surrogateescape",
        )
        return changed, written

    def remove_override(self) -> bool:
        """Delete the cloud-init drop-in that can re-enable passwords."""
        if not self.cloud_init_override.is_file():
            return False
        self.cloud_init_override.unlink()
        return True

    def check(self, directives: Sequence[tuple[str, str]]) -> list[DirectiveCheck]:
        """Report the current state of *directives* without changing anything."""
        document = self.load()
        return [
            DirectiveCheck(
                directive=name,
                expected=value,
                actual=document.value_of(name),
                occurrences=document.occurrences(name),
            )
            for name, value in directives
        ]

    def test_config(self) -> subprocess.CompletedProcess[str]:
        """Run ``sshd -t``; a non-zero status raises :class:`SshdValidationError`."""
        try:
            return self.runner.run([self.sshd_bin, "-t"])
        except CommandError as exc:
            raise SshdValidationError(
                f"sshd configuration validation failed; not restarting {self.service}. {exc}",
                exit_code=exc.exit_code,
            ) from exc

    def restart(self) -> subprocess.CompletedProcess[str]:
        """Restart the daemon through systemd."""
        return self.runner.run([self.systemctl_bin, "restart", self.service])

    def harden(
        self,
        directives: Sequence[tuple[str, str]],
        *,
        restart: bool = True,
    ) -> SshdHardenResult:
        """Patch, remove the override, validate, then (optionally) restart.

        A validation failure propagates before any restart is attempted.
        """
        changed, written = self.patch(directives)
        override_removed = self.remove_override()
        validation = self.test_config()
        restart_result = self.restart() if restart else None
        return SshdHardenResult(
            changed=changed,
            written=written,
            override_removed=override_removed,
            validation=validation,
            restart=restart_result,
        )


__all__ = [
    "DirectiveCheck",
    "SshdConfigDocument",
    "SshdHardenResult",
    "SshdProvider",
    "SshdValidationError",
]
