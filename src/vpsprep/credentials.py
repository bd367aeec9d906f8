"""Username and password collection for the new account."""
from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass, field

import typer

USERNAME_PATTERN = re.compile(r"[a-z][-a-z0-9_]*")

Prompt = Callable[[str], str]
Notify = Callable[[str], None]


@dataclass(frozen=True, slots=True)
class Credentials:
    """Validated login name and password for the account to create."""

    username: str
    password: str = field(repr=False)


def is_valid_username(candidate: str) -> bool:
    """Return ``True`` when *candidate* is a lowercase POSIX-style login name."""
    return USERNAME_PATTERN.fullmatch(candidate) is not None


def passwords_match(first: str, second: str) -> bool:
    """Return ``True`` when both entries are non-empty and byte-for-byte equal."""
    return bool(first) and first.encode("utf-8") == second.encode("utf-8")


def _visible_prompt(text: str) -> str:
    return str(typer.prompt(text, default="", show_default=False))


def _hidden_prompt(text: str) -> str:
    return str(typer.prompt(text, default="", show_default=False, hide_input=True))


def prompt_username(
    *,
    initial: str | None = None,
    prompt: Prompt = _visible_prompt,
    notify: Notify = typer.echo,
) -> str:
    """Prompt until a valid username is entered.

    *initial* is checked first (e.g. a ``--username`` flag) and treated like
    any other entry when it is invalid.
    """
    candidate = initial
    while True:
        if candidate is None:
            candidate = prompt("Enter a username you want to login as")
        if is_valid_username(candidate):
            return candidate
        notify(
            "Invalid username. Use lowercase letters, digits, hyphens or "
            "underscores; must start with a letter."
        )
        candidate = None


def prompt_password(
    *,
    prompt: Prompt = _hidden_prompt,
    notify: Notify = typer.echo,
) -> str:
    """Prompt for a password and its confirmation until they match."""
    while True:
        first = prompt("Enter a password for that user")
        second = prompt("Confirm password")
        if passwords_match(first, second):
            return first
        if not first:
            notify("Password must not be empty. Please try again.")
        else:
            notify("Passwords do not match. Please try again.")


def collect_credentials(
    *,
    username: str | None = None,
    visible_prompt: Prompt = _visible_prompt,
    hidden_prompt: Prompt = _hidden_prompt,
    notify: Notify = typer.echo,
) -> Credentials:
    """Return validated :class:`Credentials`, looping until input is valid."""
    name = prompt_username(initial=username, prompt=visible_prompt, notify=notify)
    password = prompt_password(prompt=hidden_prompt, notify=notify)
    return Credentials(username=name, password=password)


__all__ = [
    "Credentials",
    "USERNAME_PATTERN",
    "collect_credentials",
    "is_valid_username",
    "passwords_match",
    "prompt_password",
    "prompt_username",
]
