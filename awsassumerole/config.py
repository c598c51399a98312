"""
Role registry: the local name -> role mapping persisted as JSON.

The whole file is the unit of atomicity: it is loaded once, mutated in
memory and written back entirely.
"""

import json
import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Dict, Optional

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from .errors import ConfigError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

CONFIG_DIR_NAME = ".aws-assume-role"
CONFIG_FILE_NAME = "config.json"

DEFAULT_DURATION_SECONDS = 3600
MIN_DURATION_SECONDS = 900
MAX_DURATION_SECONDS = 43200

# arn:aws:iam::123456789012:role/Path/RoleName
ROLE_ARN_PATTERN = re.compile(r"^arn:aws(?:-cn|-us-gov)?:iam::(\d{12}):role/[\w+=,.@/-]+$")
ACCOUNT_ID_PATTERN = re.compile(r"^\d{12}$")


def validate_duration(duration):
    """
    Check a session duration against the STS limits.

    Args:
        duration: Duration in seconds

    Returns:
        int: The same duration

    Raises:
        ValueError: If the duration is outside 900-43200 seconds
    """
    if duration < MIN_DURATION_SECONDS or duration > MAX_DURATION_SECONDS:
        raise ValueError(
            f"duration must be between {MIN_DURATION_SECONDS} and "
            f"{MAX_DURATION_SECONDS} seconds, got {duration}"
        )
    return duration


class RoleProfile(BaseModel):
    name: str
    role_arn: str
    account_id: str
    duration_seconds: int = DEFAULT_DURATION_SECONDS
    # AWS CLI profile used as the base session; None means the default chain
    source_profile: Optional[str] = None
    region: Optional[str] = None

    @field_validator("name")
    @classmethod
    def _check_name(cls, value):
        if not value or not value.strip():
            raise ValueError("role name cannot be empty")
        return value

    @field_validator("role_arn")
    @classmethod
    def _check_role_arn(cls, value):
        if not ROLE_ARN_PATTERN.match(value or ""):
            raise ValueError(
                f"'{value}' is not a valid IAM role ARN "
                f"(expected arn:aws:iam::<account-id>:role/<role-name>)"
            )
        return value

    @field_validator("account_id")
    @classmethod
    def _check_account_id(cls, value):
        if not ACCOUNT_ID_PATTERN.match(value or ""):
            raise ValueError(f"'{value}' is not a 12-digit AWS account ID")
        return value

    @field_validator("duration_seconds")
    @classmethod
    def _check_duration(cls, value):
        return validate_duration(value)

    @field_validator("source_profile", "region")
    @classmethod
    def _blank_to_none(cls, value):
        if value is not None and not value.strip():
            return None
        return value

    @property
    def arn_account_id(self):
        """Account ID embedded in the role ARN."""
        return ROLE_ARN_PATTERN.match(self.role_arn).group(1)

    def to_config(self):
        """Serialize to the on-disk form (the name is the mapping key)."""
        return self.model_dump(exclude={"name"}, exclude_none=True)


class RoleRegistry(BaseModel):
    roles: Dict[str, RoleProfile] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _inject_names(cls, data):
        # The file stores profiles keyed by name without repeating it
        if isinstance(data, dict) and isinstance(data.get("roles"), dict):
            roles = {}
            for name, entry in data["roles"].items():
                if isinstance(entry, dict):
                    entry = {**entry, "name": name}
                roles[name] = entry
            data = {**data, "roles": roles}
        return data

    def upsert(self, profile):
        """Insert a profile, replacing any existing profile of the same name."""
        if profile.name in self.roles:
            logger.debug(f"Replacing existing role '{profile.name}'")
        self.roles[profile.name] = profile

    def remove(self, name):
        """
        Remove a profile by name.

        Returns:
            bool: True if a profile was removed, False if none existed
        """
        return self.roles.pop(name, None) is not None

    def resolve(self, name):
        """
        Look up a profile by exact, case-sensitive name.

        Raises:
            NotFoundError: If no profile has that name
        """
        try:
            return self.roles[name]
        except KeyError:
            raise NotFoundError(name) from None

    def to_config(self):
        """Serialize the full registry to the on-disk JSON document."""
        return {"roles": {name: profile.to_config() for name, profile in self.roles.items()}}


def build_profile(name, role_arn, account_id, duration_seconds=None, source_profile=None, region=None):
    """
    Build a RoleProfile from user input.

    Args:
        name: Registry key for the role
        role_arn: IAM role ARN
        account_id: 12-digit account ID
        duration_seconds: Optional session duration (default: 3600)
        source_profile: Optional AWS CLI profile for the base credentials
        region: Optional STS region for this role

    Returns:
        RoleProfile

    Raises:
        ValidationError: If any field is missing or malformed
    """
    fields = {"name": name, "role_arn": role_arn, "account_id": account_id}
    if duration_seconds is not None:
        fields["duration_seconds"] = duration_seconds
    if source_profile is not None:
        fields["source_profile"] = source_profile
    if region is not None:
        fields["region"] = region

    try:
        profile = RoleProfile(**fields)
    except PydanticValidationError as e:
        raise ValidationError(
            f"Invalid role configuration for '{name}'",
            details=_describe_validation_errors(e),
        ) from None

    if profile.arn_account_id != profile.account_id:
        logger.warning(
            f"Role '{profile.name}': account ID {profile.account_id} does not match "
            f"the account in its ARN ({profile.arn_account_id})"
        )
    return profile


def _describe_validation_errors(error):
    parts = []
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"])
        message = item["msg"]
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        parts.append(f"{location}: {message}" if location else message)
    return "; ".join(parts)


def get_home_dir(environ=None):
    """
    Resolve the user's home directory.

    HOME is consulted first, then USERPROFILE (Windows shells without HOME),
    then the platform default from pathlib.

    Raises:
        ConfigError: If no home directory can be determined
    """
    if environ is None:
        environ = os.environ

    for variable in ("HOME", "USERPROFILE"):
        value = environ.get(variable)
        if value:
            return Path(value)

    try:
        return Path.home()
    except RuntimeError as e:
        raise ConfigError(
            "Could not determine home directory",
            details=str(e),
            hint="Set the HOME (or USERPROFILE on Windows) environment variable",
        ) from None


def get_config_path(environ=None):
    """Get the role registry path: <home>/.aws-assume-role/config.json."""
    return get_home_dir(environ) / CONFIG_DIR_NAME / CONFIG_FILE_NAME


def load_registry(config_file=None):
    """
    Read the role registry.

    Args:
        config_file: Path to the registry file (default: get_config_path())

    Returns:
        RoleRegistry: Empty if the file does not exist

    Raises:
        ConfigError: If the file exists but cannot be read or parsed
    """
    config_file = Path(config_file) if config_file else get_config_path()

    if not config_file.exists():
        logger.debug(f"No registry at {config_file}, starting empty")
        return RoleRegistry()

    try:
        content = config_file.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigError(f"Failed to read config file {config_file}", details=str(e)) from None

    try:
        data = json.loads(content)
    except json.JSONDecodeError as e:
        raise ConfigError(
            f"Failed to parse config file {config_file}",
            details=str(e),
            hint=f"Fix or delete {config_file} and re-run configure",
        ) from None

    if not isinstance(data, dict):
        raise ConfigError(
            f"Invalid config file {config_file}",
            details="top-level JSON value must be an object",
        )

    try:
        registry = RoleRegistry.model_validate(data)
    except PydanticValidationError as e:
        raise ConfigError(
            f"Invalid config file {config_file}",
            details=_describe_validation_errors(e),
            hint=f"Fix or delete {config_file} and re-run configure",
        ) from None

    logger.debug(f"Loaded {len(registry.roles)} role(s) from {config_file}")
    return registry


def save_registry(registry, config_file=None):
    """
    Write the role registry atomically with owner-only permissions.

    The document is written to a temporary file in the same directory and
    renamed over the target, so a crash never leaves a truncated registry.

    Raises:
        ConfigError: If the directory or file cannot be written
    """
    config_file = Path(config_file) if config_file else get_config_path()
    content = json.dumps(registry.to_config(), indent=2) + "\n"

    try:
        config_file.parent.mkdir(parents=True, exist_ok=True)
        # mkstemp creates the file with 0600 permissions
        fd, temp_path = tempfile.mkstemp(
            dir=str(config_file.parent), prefix=f".{CONFIG_FILE_NAME}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            os.replace(temp_path, config_file)
        except BaseException:
            if os.path.exists(temp_path):
                os.unlink(temp_path)
            raise
    except OSError as e:
        raise ConfigError(f"Failed to write config file {config_file}", details=str(e)) from None

    logger.debug(f"Saved {len(registry.roles)} role(s) to {config_file}")
