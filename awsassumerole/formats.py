"""
Render credentials as statements a shell can evaluate.

Every renderer is a pure function of the credentials; nothing here prints.
"""

import json
import os
import shlex
import sys
from enum import Enum

from .core import credentials_environment


class Dialect(str, Enum):
    """Supported output syntaxes."""
    EXPORT = "export"
    FISH = "fish"
    POWERSHELL = "powershell"
    CMD = "cmd"
    JSON = "json"


def _single_line(name, value):
    # fish, PowerShell and cmd evaluate line by line; a line break would start a new statement
    if "\n" in value or "\r" in value:
        raise ValueError(f"{name} contains a line break and cannot be rendered safely")
    return value


def _quote_fish(value):
    return "'" + value.replace("\\", "\\\\").replace("'", "\\'") + "'"


def _quote_powershell(value):
    # Backtick is the PowerShell escape character; escape it first
    for char in ("`", '"', "$", "“", "”", "„"):
        value = value.replace(char, "`" + char)
    return f'"{value}"'


def _escape_cmd(value):
    for char in ("^", "&", "|", "<", ">"):
        value = value.replace(char, "^" + char)
    return value.replace("%", "%%")


def render_export(credentials):
    return "\n".join(
        f"export {name}={shlex.quote(value)}"
        for name, value in credentials_environment(credentials).items()
    )


def render_fish(credentials):
    return "\n".join(
        f"set -gx {name} {_quote_fish(_single_line(name, value))}"
        for name, value in credentials_environment(credentials).items()
    )


def render_powershell(credentials):
    return "\n".join(
        f"$env:{name} = {_quote_powershell(_single_line(name, value))}"
        for name, value in credentials_environment(credentials).items()
    )


def render_cmd(credentials):
    return "\n".join(
        f"set {name}={_escape_cmd(_single_line(name, value))}"
        for name, value in credentials_environment(credentials).items()
    )


def render_json(credentials):
    document = {
        "access_key_id": credentials.access_key_id,
        "secret_access_key": credentials.secret_access_key,
        "session_token": credentials.session_token,
        "expiration": credentials.expiration_iso,
    }
    return json.dumps(document, separators=(",", ":"))


RENDERERS = {
    Dialect.EXPORT: render_export,
    Dialect.FISH: render_fish,
    Dialect.POWERSHELL: render_powershell,
    Dialect.CMD: render_cmd,
    Dialect.JSON: render_json,
}


def format_credentials(credentials, dialect):
    """
    Render credentials in the given dialect.

    Args:
        credentials: CredentialSet
        dialect: Dialect member or its string value

    Returns:
        str: The rendered statements, without a trailing newline

    Raises:
        ValueError: If the dialect is unknown, or a value holds a line break
            in a dialect that cannot represent one
    """
    return RENDERERS[Dialect(dialect)](credentials)


def detect_dialect(environ=None, platform=None):
    """
    Guess the dialect of the calling shell.

    Fish is recognised from $SHELL. On Windows, PSModulePath marks
    PowerShell and anything else is treated as cmd. Everything else gets
    POSIX export statements.
    """
    if environ is None:
        environ = os.environ
    if platform is None:
        platform = sys.platform

    if "fish" in os.path.basename(environ.get("SHELL", "")):
        return Dialect.FISH

    if platform.startswith("win"):
        if environ.get("PSModulePath"):
            return Dialect.POWERSHELL
        return Dialect.CMD

    return Dialect.EXPORT
