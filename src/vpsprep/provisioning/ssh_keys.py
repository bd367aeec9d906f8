"""SSH key material for the new account.

The keypair is generated once, installed as the account's only authorized
key, and the private half is shown to the operator exactly once through
:func:`disclose_private_key`. Nothing here logs or copies the private key
anywhere else.
"""
from __future__ import annotations

import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ed25519
from rich.console import Console

from ..commands import CommandRunner
from ..config import SshConfig
from ..errors import ProvisionError
from .filesystem import Owner, chown_tree, ensure_directory

SSH_DIR_MODE = 0o700
PRIVATE_KEY_MODE = 0o600
PUBLIC_KEY_MODE = 0o644
AUTHORIZED_KEYS_MODE = 0o600

KEY_MARKER = "=============================================="


class KeyMaterialError(ProvisionError):
    """Raised when key material cannot be generated or installed."""


@dataclass(frozen=True, slots=True)
class KeyPaths:
    """Locations of the account's SSH files."""

    directory: Path
    private_key: Path
    public_key: Path
    authorized_keys: Path

    @classmethod
    def for_home(cls, home: Path) -> KeyPaths:
        """Return the ed25519 key paths below *home*."""
        directory = Path(home) / ".ssh"
        return cls(
            directory=directory,
            private_key=directory / "id_ed25519",
            public_key=directory / "id_ed25519.pub",
            authorized_keys=directory / "authorized_keys",
        )


class KeyGenerator(Protocol):
    """Writes an unencrypted ed25519 keypair to ``path`` and ``path.pub``."""

    def generate(self, private_key: Path, comment: str) -> None:
        """Create the keypair files."""


@dataclass(slots=True)
class CryptographyKeyGenerator:
    """Generate keys in-process with ``cryptography`` (OpenSSH format)."""

    def generate(self, private_key: Path, comment: str) -> None:
        """Write the OpenSSH private key (0600) and ``<key> <comment>`` public line."""
        key = ed25519.Ed25519PrivateKey.generate()
        private_bytes = key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.OpenSSH,
            encryption_algorithm=serialization.NoEncryption(),
        )
        public_bytes = key.public_key().public_bytes(
            encoding=serialization.Encoding.OpenSSH,
            format=serialization.PublicFormat.OpenSSH,
        )
        fd = os.open(private_key, os.O_WRONLY | os.O_CREAT | os.O_EXCL, PRIVATE_KEY_MODE)
        with os.fdopen(fd, "wb") as handle:
            handle.write(private_bytes)
        public_line = public_bytes.decode("ascii") + f" {comment}\n"
        _public_path(private_key).write_text(public_line, encoding="ascii")


@dataclass(slots=True)
class SshKeygenGenerator:
    """Generate keys with the system ``ssh-keygen`` binary."""

    runner: CommandRunner
    binary: str = "ssh-keygen"

    def generate(self, private_key: Path, comment: str) -> None:
        """Run ``ssh-keygen -t ed25519`` with an empty passphrase."""
        self.runner.run(
            [
                self.binary,
                "-q",
                "-t",
                "ed25519",
                "-f",
                str(private_key),
                "-N",
                "",
                "-C",
                comment,
            ]
        )


def key_generator_for(config: SshConfig, runner: CommandRunner) -> KeyGenerator:
    """Return the generator selected by ``ssh.keygen``."""
    if config.keygen == "ssh-keygen":
        return SshKeygenGenerator(runner=runner, binary=config.ssh_keygen_bin)
    return CryptographyKeyGenerator()


def key_comment(username: str, hostname: str) -> str:
    """Return the ``user@host`` comment bound to the keypair."""
    return f"{username}@{hostname}"


def provision_keys(
    home: Path,
    owner: Owner,
    comment: str,
    generator: KeyGenerator,
) -> KeyPaths:
    """Create ``~/.ssh``, generate the keypair and authorize it.

    Refuses to replace an existing ``id_ed25519``.
    """
    paths = KeyPaths.for_home(home)
    ensure_directory(paths.directory, mode=SSH_DIR_MODE)
    for existing in (paths.private_key, paths.public_key):
        if existing.exists():
            raise KeyMaterialError(f"Refusing to overwrite existing key {existing}.")

    generator.generate(paths.private_key, comment)
    if not paths.private_key.is_file() or not paths.public_key.is_file():
        raise KeyMaterialError(f"Key generation did not produce {paths.private_key}.")

    shutil.copyfile(paths.public_key, paths.authorized_keys)

    paths.directory.chmod(SSH_DIR_MODE)
    paths.authorized_keys.chmod(AUTHORIZED_KEYS_MODE)
    paths.private_key.chmod(PRIVATE_KEY_MODE)
    paths.public_key.chmod(PUBLIC_KEY_MODE)
    chown_tree(paths.directory, owner)
    return paths


def disclose_private_key(private_key: Path, console: Console) -> None:
    """Print the private key once between markers, then zero the read buffer.

    Only the ``bytearray`` read from disk is wiped. Rich needs the key as
    ``str`` and that decoded copy is immutable, so it stays in memory until
    the interpreter reclaims it.
    """
    size = private_key.stat().st_size
    buffer = bytearray(size)
    try:
        with private_key.open("rb", buffering=0) as handle:
            handle.readinto(buffer)
        console.print()
        console.print(
            "[bold yellow]SSH Private Key (save this somewhere safe):[/bold yellow]"
        )
        console.print(KEY_MARKER, markup=False, highlight=False)
        console.print(
            buffer.decode("ascii").rstrip("\n"),
            markup=False,
            highlight=False,
            soft_wrap=True,
        )
        console.print(KEY_MARKER, markup=False, highlight=False)
        console.print()
    finally:
        buffer[:] = bytes(len(buffer))


def _public_path(private_key: Path) -> Path:
    return private_key.with_name(private_key.name + ".pub")


__all__ = [
    "CryptographyKeyGenerator",
    "KeyGenerator",
    "KeyMaterialError",
    "KeyPaths",
    "SshKeygenGenerator",
    "disclose_private_key",
    "key_comment",
    "key_generator_for",
    "provision_keys",
]
