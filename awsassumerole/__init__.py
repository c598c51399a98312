"""
aws-assume-role: switch between AWS IAM roles across accounts.

A Python CLI utility that keeps a small registry of named IAM roles, assumes
them through AWS STS and prints the temporary credentials in the syntax of
the calling shell, so a wrapper function can evaluate them into the current
environment.

Key features:
- Named role registry in ~/.aws-assume-role/config.json
- POSIX, fish, PowerShell, cmd and JSON credential output
- Strict stdout/stderr separation and stable exit codes for shell wrappers
- Run a single command with a role's credentials
"""

__version__ = "1.3.1"
__license__ = "AGPL-3.0-or-later"

from .config import (
    RoleProfile,
    RoleRegistry,
    build_profile,
    get_config_path,
    load_registry,
    save_registry,
)
from .core import (
    CredentialSet,
    assume_role,
    credentials_environment,
    get_caller_identity,
    run_with_credentials,
)
from .errors import (
    AssumeRoleError,
    ConfigError,
    NotFoundError,
    ProviderError,
    ValidationError,
)
from .formats import Dialect, detect_dialect, format_credentials

__all__ = [
    # Role registry
    "RoleProfile",
    "RoleRegistry",
    "build_profile",
    "get_config_path",
    "load_registry",
    "save_registry",
    # Role assumption
    "CredentialSet",
    "assume_role",
    "credentials_environment",
    "get_caller_identity",
    "run_with_credentials",
    # Output formats
    "Dialect",
    "detect_dialect",
    "format_credentials",
    # Errors
    "AssumeRoleError",
    "ConfigError",
    "NotFoundError",
    "ProviderError",
    "ValidationError",
]
