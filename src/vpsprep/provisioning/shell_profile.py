"""Interactive shell startup file for the new account."""
from __future__ import annotations

from pathlib import Path

from ..templates import TemplateEngine
from .filesystem import Owner, chown_path

ZSHRC_TEMPLATE = "shell/zshrc.j2"


def wants_zsh_profile(login_shell: Path) -> bool:
    """Return ``True`` when *login_shell* is a zsh binary."""
    return Path(login_shell).name == "zsh"


def write_zshrc(
    home: Path,
    owner: Owner,
    templates: TemplateEngine,
) -> Path:
    """Write ``~/.zshrc`` from the built-in template and hand it to *owner*."""
    destination = Path(home) / ".zshrc"
    templates.render_to_path(ZSHRC_TEMPLATE, destination, mode=0o644)
    chown_path(destination, owner)
    return destination


__all__ = ["ZSHRC_TEMPLATE", "wants_zsh_profile", "write_zshrc"]
