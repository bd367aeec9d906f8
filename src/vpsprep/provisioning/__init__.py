"""Phase implementations used by the provisioning workflow."""
from __future__ import annotations

from .accounts import (
    AccountExistsError,
    AccountGroupError,
    AccountPlan,
    AccountSpec,
    apply_account_plan,
    plan_account,
)
from .filesystem import Owner, chown_tree, owner_for
from .packages import PackageError, bootstrap_environment, resolve_login_shell
from .shell_profile import wants_zsh_profile, write_zshrc
from .ssh_keys import (
    KeyMaterialError,
    KeyPaths,
    disclose_private_key,
    key_comment,
    key_generator_for,
    provision_keys,
)
from .sshd import SshdConfigDocument, SshdProvider, SshdValidationError
from .stack import StackError, StackLayout, ensure_config_dir, materialize_stack

__all__ = [
    # accounts
    "AccountExistsError",
    "AccountGroupError",
    "AccountPlan",
    "AccountSpec",
    "apply_account_plan",
    "plan_account",
    # filesystem
    "Owner",
    "chown_tree",
    "owner_for",
    # packages
    "PackageError",
    "bootstrap_environment",
    "resolve_login_shell",
    # shell profile
    "wants_zsh_profile",
    "write_zshrc",
    # ssh keys
    "KeyMaterialError",
    "KeyPaths",
    "disclose_private_key",
    "key_comment",
    "key_generator_for",
    "provision_keys",
    # sshd
    "SshdConfigDocument",
    "SshdProvider",
    "SshdValidationError",
    # stack
    "StackError",
    "StackLayout",
    "ensure_config_dir",
    "materialize_stack",
]
