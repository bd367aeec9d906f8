"""Unit tests for login account planning and ownership helpers."""
from __future__ import annotations

from pathlib import Path

import pytest

from vpsprep.errors import CommandError
from vpsprep.exit_codes import ExitCode
from vpsprep.provisioning.accounts import (
    AccountExistsError,
    AccountGroupError,
    AccountSpec,
    apply_account_plan,
    inspect_account,
    plan_account,
)
from vpsprep.provisioning.filesystem import Owner, chown_tree, owner_for


def test_plan_creates_user_password_and_groups(accounts) -> None:
    """A new user gets created, a password set and both groups granted."""
    spec = AccountSpec(name="alice", shell=Path("/usr/bin/zsh"), home=Path("/srv/home/alice"))

    plan = plan_account(spec)

    assert [action.kind for action in plan.actions] == [
        "create-user",
        "set-password",
        "add-group",
        "add-group",
    ]
    assert plan.actions[0].command == [
        "useradd",
        "--create-home",
        "--home-dir",
        "/srv/home/alice",
        "--shell",
        "/usr/bin/zsh",
        "alice",
    ]
    assert plan.actions[2].command == ["usermod", "-aG", "sudo", "alice"]
    assert plan.actions[3].command == ["usermod", "-aG", "docker", "alice"]
    assert plan.warnings == []


def test_existing_user_aborts_before_any_command(accounts, runner) -> None:
    """An existing login name raises the conflict error and runs nothing."""
    accounts.add_user("alice", Path("/home/alice"), "/bin/bash")

    with pytest.raises(AccountExistsError) as excinfo:
        plan_account(AccountSpec(name="alice", shell=Path("/bin/bash")))

    assert str(excinfo.value) == "User alice already exists."
    assert excinfo.value.exit_code == ExitCode.CONFLICT
    assert runner.history == []


def test_inspect_account_reads_passwd_entry(accounts) -> None:
    """Existing accounts report their uid and home from the passwd database."""
    spec = AccountSpec(name="alice", shell=Path("/bin/bash"))
    assert inspect_account(spec).user_exists is False

    accounts.add_user("alice", Path("/home/alice"), "/bin/bash")
    status = inspect_account(spec)

    assert status.user_exists is True
    assert status.uid == 1000
    assert status.home == Path("/home/alice")
    assert status.missing_groups == []


def test_missing_admin_group_is_environment_error(accounts) -> None:
    """Without the sudo group the plan cannot be built."""
    del accounts.groups["sudo"]

    with pytest.raises(AccountGroupError) as excinfo:
        plan_account(AccountSpec(name="alice", shell=Path("/bin/bash")))

    assert excinfo.value.exit_code == ExitCode.ENVIRONMENT


def test_missing_container_group_raises_when_required(accounts) -> None:
    """A missing docker group aborts when membership is required."""
    del accounts.groups["docker"]

    with pytest.raises(AccountGroupError, match="docker"):
        plan_account(AccountSpec(name="alice", shell=Path("/bin/bash")))


def test_missing_container_group_warns_when_optional(accounts) -> None:
    """With membership optional the docker step is dropped with a warning."""
    del accounts.groups["docker"]
    spec = AccountSpec(name="alice", shell=Path("/bin/bash"), container_required=False)

    plan = plan_account(spec)

    assert [action.kind for action in plan.actions] == [
        "create-user",
        "set-password",
        "add-group",
    ]
    assert plan.warnings == [
        "Group 'docker' is missing; skipping container runtime membership."
    ]


def test_apply_feeds_password_on_stdin_only(accounts, runner) -> None:
    """The password reaches chpasswd through standard input, never argv."""
    plan = plan_account(AccountSpec(name="alice", shell=Path("/bin/bash")))

    apply_account_plan(plan, "Secret1!", runner=runner)

    assert runner.programs() == ["useradd", "chpasswd", "usermod", "usermod"]
    assert runner.inputs[1] == "alice:Secret1!\n"
    assert [value for index, value in enumerate(runner.inputs) if index != 1] == [None] * 3
    assert all("Secret1!" not in " ".join(command) for command in runner.history)


def test_apply_stops_at_first_failure(accounts, runner) -> None:
    """A failing command stops the remaining steps."""
    runner.handlers["chpasswd"] = lambda command: 1
    plan = plan_account(AccountSpec(name="alice", shell=Path("/bin/bash")))

    with pytest.raises(CommandError) as excinfo:
        apply_account_plan(plan, "Secret1!", runner=runner)

    assert excinfo.value.exit_code == 1
    assert runner.programs() == ["useradd", "chpasswd"]


def test_owner_for_uses_primary_group(accounts) -> None:
    """The owner pair names the user's primary group."""
    accounts.add_user("alice", Path("/home/alice"), "/bin/bash")

    assert owner_for("alice") == Owner(user="alice", group="alice")


def test_chown_tree_visits_every_path(tmp_path: Path, accounts, chowns) -> None:
    """Every directory and file under the root is handed to the owner."""
    accounts.add_user("alice", tmp_path, "/bin/bash")
    (tmp_path / "homelab" / "portainer").mkdir(parents=True)
    (tmp_path / "homelab" / "docker-compose.yml").write_text("x", encoding="utf-8")

    count = chown_tree(tmp_path / "homelab", Owner(user="alice", group="alice"))

    assert count == 3
    uid = accounts.users["alice"].pw_uid
    assert {(path, user, group) for path, user, group in chowns} == {
        (str(tmp_path / "homelab"), uid, uid),
        (str(tmp_path / "homelab" / "portainer"), uid, uid),
        (str(tmp_path / "homelab" / "docker-compose.yml"), uid, uid),
    }
