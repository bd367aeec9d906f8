"""Configuration loader for vpsprep.

This module centralises the logic for reading configuration values from
multiple sources:

1. Built-in defaults.
2. ``/etc/vpsprep/config.yml`` (or an override path).
3. Environment variables prefixed with ``VPSPREP_``.
4. Explicit overrides supplied programmatically (reserved for CLI flags).

Environment keys use double underscores to express nesting, e.g.::

    export VPSPREP_GROUPS__ADMIN=wheel
    export VPSPREP_SSH__KEYGEN=ssh-keygen

Values are coerced via PyYAML's ``safe_load`` so that booleans and numbers are
parsed naturally. The resulting configuration is exposed as immutable
``dataclasses`` for convenient access and type safety.
"""
from __future__ import annotations

import os
from collections.abc import Mapping, MutableMapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import cast

try:  # PyYAML is a runtime dependency (declared in pyproject.toml).
    import yaml
except Exception as exc:  # pragma: no cover - import failure covered in tests
    raise RuntimeError(
        "PyYAML is required to load vpsprep configuration. Install with "
        "`pip install vpsprep` or ensure PyYAML>=6.0 is available."
    ) from exc

from .errors import VpsprepError
from .exit_codes import ExitCode

ENV_PREFIX = "VPSPREP_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
RESERVED_ENV_KEYS = {CONFIG_ENV_VAR}


class ConfigError(VpsprepError):
    """Raised when configuration parsing fails."""

    exit_code = ExitCode.VALIDATION


@dataclass(frozen=True)
class ShellConfig:
    """Login shell preferences for the provisioned account."""

    preferred: str = "zsh"
    fallback: str = "/bin/bash"
    required: bool = False
    shells_file: Path = Path("/etc/shells")

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "preferred": self.preferred,
            "fallback": self.fallback,
            "required": self.required,
            "shells_file": str(self.shells_file),
        }


@dataclass(frozen=True)
class PackagesConfig:
    """Package manager invocation settings."""

    enabled: bool = True
    apt_get_bin: str = "apt-get"
    shell: tuple[str, ...] = ("zsh",)
    container: tuple[str, ...] = (
        "ca-certificates",
        "curl",
        "docker.io",
        "docker-compose-v2",
    )

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "enabled": self.enabled,
            "apt_get_bin": self.apt_get_bin,
            "shell": list(self.shell),
            "container": list(self.container),
        }


@dataclass(frozen=True)
class GroupsConfig:
    """Supplementary groups granted to the provisioned account."""

    admin: str = "sudo"
    container: str = "docker"
    container_required: bool = True

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "admin": self.admin,
            "container": self.container,
            "container_required": self.container_required,
        }


@dataclass(frozen=True)
class SshConfig:
    """SSH daemon hardening and key generation settings."""

    config_file: Path = Path("/etc/ssh/sshd_config")
    cloud_init_override: Path = Path("/etc/ssh/sshd_config.d/50-cloud-init.conf")
    sshd_bin: str = "/usr/sbin/sshd"
    systemctl_bin: str = "systemctl"
    service: str = "ssh"
    keygen: str = "cryptography"
    ssh_keygen_bin: str = "ssh-keygen"
    directives: tuple[tuple[str, str], ...] = (
        ("PasswordAuthentication", "no"),
        ("PermitRootLogin", "no"),
        ("UsePAM", "no"),
    )

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "config_file": str(self.config_file),
            "cloud_init_override": str(self.cloud_init_override),
            "sshd_bin": self.sshd_bin,
            "systemctl_bin": self.systemctl_bin,
            "service": self.service,
            "keygen": self.keygen,
            "ssh_keygen_bin": self.ssh_keygen_bin,
            "directives": dict(self.directives),
        }


@dataclass(frozen=True)
class StackConfig:
    """Location of the Docker Compose stack inside the account's home."""

    dir_name: str = "homelab"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"dir_name": self.dir_name}


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for vpsprep."""

    config_file: Path
    logs_dir: Path
    home_root: Path
    templates_dir: Path
    shell: ShellConfig
    packages: PackagesConfig
    groups: GroupsConfig
    ssh: SshConfig
    stack: StackConfig

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {
            "config_file": str(self.config_file),
            "logs_dir": str(self.logs_dir),
            "home_root": str(self.home_root),
            "templates_dir": str(self.templates_dir),
            "shell": self.shell.to_dict(),
            "packages": self.packages.to_dict(),
            "groups": self.groups.to_dict(),
            "ssh": self.ssh.to_dict(),
            "stack": self.stack.to_dict(),
        }


DEFAULTS: dict[str, object] = {
    "config_file": "/etc/vpsprep/config.yml",
    "logs_dir": "/var/log/vpsprep",
    "home_root": "/home",
    "templates_dir": "/etc/vpsprep/templates",
    "shell": {
        "preferred": "zsh",
        "fallback": "/bin/bash",
        "required": False,
        "shells_file": "/etc/shells",
    },
    "packages": {
        "enabled": True,
        "apt_get_bin": "apt-get",
        "shell": ["zsh"],
        "container": ["ca-certificates", "curl", "docker.io", "docker-compose-v2"],
    },
    "groups": {
        "admin": "sudo",
        "container": "docker",
        "container_required": True,
    },
    "ssh": {
        "config_file": "/etc/ssh/sshd_config",
        "cloud_init_override": "/etc/ssh/sshd_config.d/50-cloud-init.conf",
        "sshd_bin": "/usr/sbin/sshd",
        "systemctl_bin": "systemctl",
        "service": "ssh",
        "keygen": "cryptography",
        "ssh_keygen_bin": "ssh-keygen",
        "directives": {
            "PasswordAuthentication": "no",
            "PermitRootLogin": "no",
            "UsePAM": "no",
        },
    },
    "stack": {
        "dir_name": "homelab",
    },
}

ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS.keys())
ALLOWED_SECTION_KEYS: dict[str, set[str]] = {
    "shell": {"preferred", "fallback", "required", "shells_file"},
    "packages": {"enabled", "apt_get_bin", "shell", "container"},
    "groups": {"admin", "container", "container_required"},
    "ssh": {
        "config_file",
        "cloud_init_override",
        "sshd_bin",
        "systemctl_bin",
        "service",
        "keygen",
        "ssh_keygen_bin",
        "directives",
    },
    "stack": {"dir_name"},
}
ALLOWED_KEYGEN_BACKENDS = {"cryptography", "ssh-keygen"}


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> AppConfig:
    """Load and merge configuration sources into an :class:`AppConfig`."""
    merged: dict[str, object] = _deep_copy(DEFAULTS)
    resolved_env = dict(os.environ if env is None else env)

    config_default = _expect_str(merged["config_file"], "config_file")
    config_path = _determine_config_path(config_default, config_file, resolved_env)

    file_values = _load_yaml_file(config_path)
    if file_values:
        _deep_merge(merged, file_values)

    env_values = _build_env_overrides(resolved_env)
    if env_values:
        _deep_merge(merged, env_values)

    if overrides:
        _deep_merge(merged, dict(overrides))

    merged["config_file"] = str(config_path)

    _validate_structure(merged)

    return _build_app_config(merged)


def _determine_config_path(
    default_path: str,
    cli_override: str | os.PathLike[str] | None,
    env: Mapping[str, str],
) -> Path:
    if cli_override:
        return Path(cli_override)
    if CONFIG_ENV_VAR in env:
        return Path(env[CONFIG_ENV_VAR])
    return Path(default_path)


def _load_yaml_file(path: Path) -> dict[str, object]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - PyYAML owns detailed error
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return _as_dict(data, f"file:{path}")


def _validate_structure(raw: Mapping[str, object]) -> None:
    unknown_keys = set(raw.keys()) - ALLOWED_TOP_LEVEL_KEYS
    if unknown_keys:
        joined = ", ".join(sorted(unknown_keys))
        raise ConfigError(f"Unknown configuration keys: {joined}.")

    for section, allowed in ALLOWED_SECTION_KEYS.items():
        mapping = _as_dict(raw.get(section), section)
        unknown = set(mapping.keys()) - allowed
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigError(f"Unknown {section} configuration keys: {joined}.")

    ssh_map = _as_dict(raw.get("ssh"), "ssh")
    keygen = ssh_map.get("keygen")
    if keygen is not None and str(keygen) not in ALLOWED_KEYGEN_BACKENDS:
        allowed = ", ".join(sorted(ALLOWED_KEYGEN_BACKENDS))
        raise ConfigError(f"Unsupported key generator '{keygen}'. Allowed: {allowed}.")

    stack_map = _as_dict(raw.get("stack"), "stack")
    dir_name = stack_map.get("dir_name")
    if dir_name is not None:
        text = str(dir_name)
        if not text or "/" in text or text in {".", ".."}:
            raise ConfigError("stack.dir_name must be a single path component.")


def _build_app_config(raw: Mapping[str, object]) -> AppConfig:
    shell_mapping = _as_dict(raw.get("shell"), "shell")
    shell = ShellConfig(
        preferred=str(shell_mapping.get("preferred", "zsh")),
        fallback=str(shell_mapping.get("fallback", "/bin/bash")),
        required=_expect_bool(shell_mapping.get("required"), "shell.required", default=False),
        shells_file=_to_path(shell_mapping.get("shells_file", "/etc/shells")),
    )

    packages_mapping = _as_dict(raw.get("packages"), "packages")
    packages = PackagesConfig(
        enabled=_expect_bool(packages_mapping.get("enabled"), "packages.enabled", default=True),
        apt_get_bin=str(packages_mapping.get("apt_get_bin", "apt-get")),
        shell=_expect_str_tuple(packages_mapping.get("shell"), "packages.shell"),
        container=_expect_str_tuple(packages_mapping.get("container"), "packages.container"),
    )

    groups_mapping = _as_dict(raw.get("groups"), "groups")
    groups = GroupsConfig(
        admin=str(groups_mapping.get("admin", "sudo")),
        container=str(groups_mapping.get("container", "docker")),
        container_required=_expect_bool(
            groups_mapping.get("container_required"),
            "groups.container_required",
            default=True,
        ),
    )

    ssh_mapping = _as_dict(raw.get("ssh"), "ssh")
    ssh = SshConfig(
        config_file=_to_path(ssh_mapping.get("config_file", "/etc/ssh/sshd_config")),
        cloud_init_override=_to_path(
            ssh_mapping.get(
                "cloud_init_override",
                "/etc/ssh/sshd_config.d/50-cloud-init.conf",
            )
        ),
        sshd_bin=str(ssh_mapping.get("sshd_bin", "/usr/sbin/sshd")),
        systemctl_bin=str(ssh_mapping.get("systemctl_bin", "systemctl")),
        service=str(ssh_mapping.get("service", "ssh")),
        keygen=str(ssh_mapping.get("keygen", "cryptography")),
        ssh_keygen_bin=str(ssh_mapping.get("ssh_keygen_bin", "ssh-keygen")),
        directives=_build_directives(ssh_mapping.get("directives")),
    )

    stack_mapping = _as_dict(raw.get("stack"), "stack")
    stack = StackConfig(dir_name=str(stack_mapping.get("dir_name", "homelab")))

    return AppConfig(
        config_file=_to_path(raw.get("config_file")),
        logs_dir=_to_path(raw.get("logs_dir")),
        home_root=_to_path(raw.get("home_root")),
        templates_dir=_to_path(raw.get("templates_dir")),
        shell=shell,
        packages=packages,
        groups=groups,
        ssh=ssh,
        stack=stack,
    )


def _build_directives(value: object) -> tuple[tuple[str, str], ...]:
    """Return ``(Directive, value)`` pairs with canonical directive casing.

    Environment overrides arrive lower-cased, so names matching a built-in
    directive case-insensitively take the built-in spelling. YAML turns bare
    ``no``/``yes`` into booleans; those are mapped back to sshd keywords.
    """
    defaults = _as_dict(_as_dict(DEFAULTS["ssh"], "ssh").get("directives"), "ssh.directives")
    canonical = {name.lower(): name for name in defaults}
    mapping = _as_dict(value, "ssh.directives")
    resolved: dict[str, str] = {}
    for name, raw_value in mapping.items():
        key = canonical.get(name.lower(), name)
        if not key.strip() or any(char.isspace() for char in key):
            raise ConfigError(f"Invalid sshd directive name {name!r}.")
        if raw_value is None:
            raise ConfigError(f"ssh.directives.{key} must have a value.")
        if isinstance(raw_value, bool):
            text = "yes" if raw_value else "no"
        else:
            text = str(raw_value).strip()
        if not text or "\n" in text:
            raise ConfigError(f"ssh.directives.{key} must be a single-line value.")
        # Later spellings of the same directive replace earlier ones.
        for existing in list(resolved):
            if existing.lower() == key.lower():
                del resolved[existing]
        resolved[key] = text
    return tuple(resolved.items())


def _build_env_overrides(env: Mapping[str, str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for key, value in env.items():
        if key in RESERVED_ENV_KEYS:
            continue
        if not key.startswith(ENV_PREFIX):
            continue
        suffix = key[len(ENV_PREFIX) :]
        path_segments = [segment.lower() for segment in suffix.split("__") if segment]
        if not path_segments:
            continue
        _assign_nested(overrides, path_segments, _coerce_value(value))
    return overrides


def _assign_nested(tree: MutableMapping[str, object], path: list[str], value: object) -> None:
    current: MutableMapping[str, object] = tree
    for segment in path[:-1]:
        existing = current.get(segment)
        if existing is None:
            new_child: MutableMapping[str, object] = {}
            current[segment] = new_child
            current = new_child
            continue
        if isinstance(existing, MutableMapping):
            current = cast(MutableMapping[str, object], existing)
            continue
        raise ConfigError(
            "Environment overrides conflict with existing scalar value at "
            f"{'.'.join(path)}"
        )
    current[path[-1]] = value


def _deep_merge(target: MutableMapping[str, object], overrides: Mapping[str, object]) -> None:
    for key, value in overrides.items():
        existing = target.get(key)
        if isinstance(existing, MutableMapping) and isinstance(value, Mapping):
            _deep_merge(existing, _as_dict(value, f"merge.{key}"))
            continue
        target[key] = value


def _deep_copy(source: Mapping[str, object]) -> dict[str, object]:
    result: dict[str, object] = {}
    for key, value in source.items():
        if isinstance(value, Mapping):
            result[key] = _deep_copy(_as_dict(value, f"copy.{key}"))
        elif isinstance(value, list):
            result[key] = list(value)
        else:
            result[key] = value
    return result


def _as_sequence(value: object, label: str) -> Sequence[object]:
    if isinstance(value, (str, bytes)):
        raise ConfigError(f"Expected {label} to be a sequence. Got {type(value).__name__}.")
    if not isinstance(value, Sequence):
        raise ConfigError(f"Expected {label} to be a sequence. Got {type(value).__name__}.")
    return value


def _expect_str_tuple(value: object | None, label: str) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        # Environment overrides may supply a comma separated list.
        return tuple(item.strip() for item in value.split(",") if item.strip())
    items: list[str] = []
    for index, item in enumerate(_as_sequence(value, label)):
        if not isinstance(item, str) or not item.strip():
            raise ConfigError(f"{label}[{index}] must be a non-empty string.")
        items.append(item.strip())
    return tuple(items)


def _expect_bool(value: object | None, label: str, *, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    raise ConfigError(f"Expected {label} to be a boolean. Got {value!r}.")


def _coerce_value(raw: str) -> object:
    raw = raw.strip()
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError:  # pragma: no cover - treat as string if parsing fails
        return raw
    return parsed


def _to_path(value: object) -> Path:
    if value is None:
        raise ConfigError("Expected a filesystem path, received None.")
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str):
        return Path(value).expanduser()
    raise ConfigError(f"Cannot convert value {value!r} to Path.")


def _expect_str(value: object, key: str) -> str:
    if isinstance(value, str):
        return value
    raise ConfigError(f"Expected {key} to resolve to a string. Got {value!r}.")


def _as_dict(value: object | None, label: str) -> dict[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected {label} to be a mapping. Got {type(value).__name__}.")
    result: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise ConfigError(f"Mapping {label} must use string keys. Got {key!r}.")
        result[key] = item
    return result


__all__ = [
    "AppConfig",
    "ConfigError",
    "GroupsConfig",
    "PackagesConfig",
    "ShellConfig",
    "SshConfig",
    "StackConfig",
    "load_config",
]
