"""Jinja2 template engine with built-in templates and on-disk overrides."""
from __future__ import annotations

import os
import tempfile
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from jinja2 import (
    BaseLoader,
    ChoiceLoader,
    Environment,
    FileSystemLoader,
    PackageLoader,
    StrictUndefined,
    TemplateError,
)

from .errors import ProvisionError
from .exit_codes import ExitCode


class TemplateRenderError(ProvisionError):
    """Raised when a template cannot be loaded or rendered."""

    exit_code = ExitCode.VALIDATION


@dataclass(slots=True)
class TemplateEngine:
    """Render the files vpsprep lays down on the host.

    Templates under ``templates_dir`` shadow the ones shipped in the package.
    """

    environment: Environment

    @classmethod
    def with_overrides(cls, override_dir: Path | None) -> TemplateEngine:
        """Return an engine that prefers templates found in *override_dir*."""
        loaders: list[BaseLoader] = []
        if override_dir is not None and Path(override_dir).is_dir():
            loaders.append(FileSystemLoader(str(override_dir)))
        loaders.append(PackageLoader("vpsprep", "templates"))
        environment = Environment(
            loader=ChoiceLoader(loaders),
            undefined=StrictUndefined,
            keep_trailing_newline=True,
            autoescape=False,  # noqa: S701 - renders config files, not HTML
        )
        return cls(environment=environment)

    def render_to_string(
        self,
        template_name: str,
        context: Mapping[str, object] | None = None,
    ) -> str:
        """Render *template_name* with *context* and return the text."""
        try:
            template = self.environment.get_template(template_name)
            return template.render(**dict(context or {}))
        except TemplateError as exc:
            raise TemplateRenderError(
                f"Failed to render template {template_name}: {type(exc).__name__}: {exc}"
            ) from exc

    def render_to_path(
        self,
        template_name: str,
        destination: Path,
        context: Mapping[str, object] | None = None,
        *,
        mode: int = 0o644,
    ) -> bool:
        """Render into *destination* atomically; return ``True`` when it changed."""
        rendered = self.render_to_string(template_name, context)
        return write_text_atomic(destination, rendered, mode=mode)


def write_text_atomic(
    destination: Path,
    content: str,
    *,
    mode: int,
    errors: str = "strict",
) -> bool:
    """Write *content* to *destination* via a temp file and ``os.replace``.

    Returns ``False`` without touching the file when the content and mode
    already match. *errors* is the codec error handler for both the
    comparison read and the write.
    """
    destination = Path(destination)
    if destination.exists():
        current = destination.read_text(encoding="utf-8", errors=errors)
        current_mode = destination.stat().st_mode & 0o777
        if current == content and current_mode == mode:
            return False
    destination.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=destination.parent, prefix=f".{destination.name}.")
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8", errors=errors) as handle:
            handle.write(content)
        os.chmod(tmp_path, mode)
        os.replace(tmp_path, destination)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise
    return True


__all__ = ["TemplateEngine", "TemplateRenderError", "write_text_atomic"]
