"""Docker Compose stack laid down in the account's home directory."""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from ..errors import ProvisionError
from ..templates import TemplateEngine
from .filesystem import Owner, chown_tree, ensure_directory

COMPOSE_TEMPLATE = "compose/docker-compose.yml.j2"
COMPOSE_FILENAME = "docker-compose.yml"

STACK_DIRECTORIES: tuple[str, ...] = (
    "portainer",
    "nginx-proxy-manager",
    "nginx-proxy-manager/data",
    "nginx-proxy-manager/letsencrypt",
)


class StackError(ProvisionError):
    """Raised when the Compose descriptor is unusable."""


@dataclass(slots=True)
class StackLayout:
    """Paths that make up the materialised stack."""

    root: Path
    descriptor: Path
    directories: list[Path] = field(default_factory=list)

    @classmethod
    def under(cls, home: Path, dir_name: str) -> StackLayout:
        """Return the layout rooted at ``home/dir_name``."""
        root = Path(home) / dir_name
        return cls(
            root=root,
            descriptor=root / COMPOSE_FILENAME,
            directories=[root / relative for relative in STACK_DIRECTORIES],
        )


def render_descriptor(templates: TemplateEngine) -> str:
    """Return the Compose descriptor text."""
    return templates.render_to_string(COMPOSE_TEMPLATE)


def verify_descriptor(text: str) -> Mapping[str, object]:
    """Parse *text* and require two services sharing one network."""
    try:
        document = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise StackError(f"Compose descriptor is not valid YAML: {exc}") from exc
    if not isinstance(document, Mapping):
        raise StackError("Compose descriptor must be a mapping.")
    services = document.get("services")
    networks = document.get("networks")
    if not isinstance(services, Mapping) or len(services) != 2:
        raise StackError("Compose descriptor must declare exactly two services.")
    if not isinstance(networks, Mapping) or len(networks) != 1:
        raise StackError("Compose descriptor must declare exactly one network.")
    (network_name,) = networks
    for name, service in services.items():
        attached = service.get("networks") if isinstance(service, Mapping) else None
        if not attached or network_name not in attached:
            raise StackError(f"Service '{name}' is not attached to network '{network_name}'.")
    return document


def materialize_stack(
    home: Path,
    dir_name: str,
    owner: Owner,
    templates: TemplateEngine,
) -> StackLayout:
    """Create the stack directories and descriptor, then chown the tree."""
    layout = StackLayout.under(home, dir_name)
    text = render_descriptor(templates)
    verify_descriptor(text)

    ensure_directory(layout.root)
    for directory in layout.directories:
        ensure_directory(directory)
    templates.render_to_path(COMPOSE_TEMPLATE, layout.descriptor, mode=0o644)
    chown_tree(layout.root, owner)
    return layout


def ensure_config_dir(home: Path, owner: Owner) -> Path:
    """Create ``~/.config`` owned by the account."""
    path = Path(home) / ".config"
    ensure_directory(path)
    chown_tree(path, owner)
    return path


__all__ = [
    "COMPOSE_FILENAME",
    "COMPOSE_TEMPLATE",
    "STACK_DIRECTORIES",
    "StackError",
    "StackLayout",
    "ensure_config_dir",
    "materialize_stack",
    "render_descriptor",
    "verify_descriptor",
]
