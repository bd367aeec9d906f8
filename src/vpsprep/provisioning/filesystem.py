"""Ownership and permission helpers shared by the provisioning phases."""
from __future__ import annotations

import grp
import os
import pwd
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True, slots=True)
class Owner:
    """User and group a provisioned path should belong to."""

    user: str
    group: str


def owner_for(username: str) -> Owner:
    """Return the owner pair ``user:primary-group`` for *username*.

    Falls back to a group named after the user when the primary group id has
    no name, mirroring ``chown user:user``.
    """
    entry = pwd.getpwnam(username)
    try:
        group = grp.getgrgid(entry.pw_gid).gr_name
    except KeyError:
        group = username
    return Owner(user=username, group=group)


def chown_tree(root: Path, owner: Owner) -> int:
    """Recursively hand *root* and everything below it to *owner*.

    Symlinks are not followed. Returns the number of paths updated.
    """
    root = Path(root)
    uid = pwd.getpwnam(owner.user).pw_uid
    gid = grp.getgrnam(owner.group).gr_gid
    count = 0
    for path in _walk(root):
        os.chown(path, uid, gid, follow_symlinks=False)
        count += 1
    return count


def chown_path(path: Path, owner: Owner) -> None:
    """Hand a single *path* to *owner*."""
    os.chown(
        path,
        pwd.getpwnam(owner.user).pw_uid,
        grp.getgrnam(owner.group).gr_gid,
        follow_symlinks=False,
    )


def ensure_directory(path: Path, *, mode: int | None = None) -> bool:
    """Create *path* (and parents) if missing; return ``True`` when created."""
    path = Path(path)
    created = not path.exists()
    path.mkdir(parents=True, exist_ok=True)
    if mode is not None:
        path.chmod(mode)
    return created


def _walk(root: Path) -> Iterable[Path]:
    yield root
    if root.is_symlink() or not root.is_dir():
        return
    for dirpath, dirnames, filenames in os.walk(root):
        base = Path(dirpath)
        for name in dirnames:
            yield base / name
        for name in filenames:
            yield base / name


__all__ = ["Owner", "chown_path", "chown_tree", "ensure_directory", "owner_for"]
