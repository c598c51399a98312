"""
Role assumption and credential handling for aws-assume-role.
"""

import logging
import os
import subprocess
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

import boto3
import botocore.session
from botocore.config import Config
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectTimeoutError,
    EndpointConnectionError,
    NoCredentialsError,
    PartialCredentialsError,
    ProfileNotFound,
    ReadTimeoutError,
)

from .config import validate_duration
from .errors import AssumeRoleError, ProviderError, ValidationError

logger = logging.getLogger(__name__)

# Used when no region is configured anywhere; avoids any discovery probe
DEFAULT_REGION = "us-east-1"
SESSION_NAME = "aws-assume-role-session"
# Method name of botocore's EC2 instance metadata credential provider
INSTANCE_METADATA_PROVIDER = "iam-role"

ENV_ACCESS_KEY_ID = "AWS_ACCESS_KEY_ID"
ENV_SECRET_ACCESS_KEY = "AWS_SECRET_ACCESS_KEY"
ENV_SESSION_TOKEN = "AWS_SESSION_TOKEN"
ENV_CREDENTIAL_EXPIRATION = "AWS_CREDENTIAL_EXPIRATION"

CLIENT_ERROR_HINTS = {
    "AccessDenied": (
        "Check that the role's trust policy allows your current identity to call "
        "sts:AssumeRole, and that your identity has sts:AssumeRole on the role ARN"
    ),
    "InvalidClientTokenId": (
        "Your base AWS credentials are invalid or the access key was deleted. "
        "Refresh them (aws configure, aws sso login, or re-export AWS_ACCESS_KEY_ID etc.)"
    ),
    "SignatureDoesNotMatch": (
        "Your base secret access key does not match the access key ID. "
        "Re-enter it with aws configure"
    ),
    "ExpiredToken": "Your base session credentials have expired. Refresh them and retry",
    "ExpiredTokenException": "Your base session credentials have expired. Refresh them and retry",
    "ValidationError": (
        "Check the role ARN, and that the requested duration does not exceed the "
        "role's maximum session duration"
    ),
    "RegionDisabledException": (
        "STS is not activated in this region. Set AWS_REGION to an enabled region "
        "or configure the role with --region"
    ),
    "Throttling": "AWS is throttling requests. Wait a moment and retry",
    "ThrottlingException": "AWS is throttling requests. Wait a moment and retry",
}


@dataclass(frozen=True)
class CredentialSet:
    """Temporary credentials for one assumed-role session. Never persisted."""

    access_key_id: str
    secret_access_key: str
    session_token: str
    expiration: datetime
    assumed_role_arn: Optional[str] = field(default=None, compare=False)

    @property
    def expiration_iso(self):
        """Expiration as an ISO-8601 UTC timestamp, e.g. 2025-01-01T00:00:00Z."""
        expiration = self.expiration
        if expiration.tzinfo is None:
            expiration = expiration.replace(tzinfo=timezone.utc)
        return expiration.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def credentials_environment(credentials):
    """
    Map credentials onto the standard AWS environment variable names.

    Args:
        credentials: CredentialSet

    Returns:
        dict: Variable name -> value, in a fixed order
    """
    return {
        ENV_ACCESS_KEY_ID: credentials.access_key_id,
        ENV_SECRET_ACCESS_KEY: credentials.secret_access_key,
        ENV_SESSION_TOKEN: credentials.session_token,
        ENV_CREDENTIAL_EXPIRATION: credentials.expiration_iso,
    }


def resolve_region(session, profile=None, environ=None):
    """
    Choose the STS region without any network discovery.

    Order: the profile's pinned region, AWS_REGION, AWS_DEFAULT_REGION,
    the region boto3 read from ~/.aws/config, then DEFAULT_REGION.

    Args:
        session: boto3.Session for the base credentials
        profile: Optional RoleProfile
        environ: Environment mapping (default: os.environ)

    Returns:
        str: Region name
    """
    if environ is None:
        environ = os.environ

    if profile is not None and profile.region:
        return profile.region

    for variable in ("AWS_REGION", "AWS_DEFAULT_REGION"):
        if environ.get(variable):
            return environ[variable]

    if session is not None and session.region_name:
        return session.region_name

    logger.debug(f"No region configured, using {DEFAULT_REGION}")
    return DEFAULT_REGION


def _client_config(region):
    # Failures are surfaced immediately; the user re-invokes after fixing them
    return Config(region_name=region, retries={"mode": "standard", "total_max_attempts": 1})


def translate_client_error(error, message):
    """
    Convert a botocore ClientError into a ProviderError.

    The provider's message is kept verbatim in ``details``.
    """
    error_code = error.response.get("Error", {}).get("Code")
    error_msg = error.response.get("Error", {}).get("Message", str(error))
    return ProviderError(
        f"{message} ({error_code})" if error_code else message,
        code=error_code,
        details=error_msg,
        hint=CLIENT_ERROR_HINTS.get(error_code),
    )


def translate_botocore_error(error, message):
    """Convert a BotoCoreError (no HTTP response) into a ProviderError."""
    if isinstance(error, (NoCredentialsError, PartialCredentialsError)):
        return ProviderError(
            f"{message}: no base AWS credentials found",
            code=type(error).__name__,
            details=str(error),
            hint=(
                "Configure credentials with aws configure or aws sso login, "
                "or export AWS_ACCESS_KEY_ID and AWS_SECRET_ACCESS_KEY"
            ),
        )
    if isinstance(error, ProfileNotFound):
        return ProviderError(
            f"{message}: AWS profile not found",
            code="ProfileNotFound",
            details=str(error),
            hint="Check the profile name in ~/.aws/config and ~/.aws/credentials",
        )
    if isinstance(error, (EndpointConnectionError, ConnectTimeoutError, ReadTimeoutError)):
        return ProviderError(
            f"{message}: could not reach AWS",
            code=type(error).__name__,
            details=str(error),
            hint="Check your network connection and the configured region",
        )
    return ProviderError(message, code=type(error).__name__, details=str(error))


def create_base_session(profile=None, instance_metadata=True):
    """
    Create the boto3 session whose credentials are used to assume a role.

    Args:
        profile: Optional RoleProfile; its source_profile selects an AWS CLI profile
        instance_metadata: Whether the credential chain may query the EC2
            instance metadata service. Off EC2 that lookup only ends at its timeout.

    Returns:
        boto3.Session

    Raises:
        ProviderError: If the source profile does not exist
    """
    source_profile = profile.source_profile if profile is not None else None
    try:
        if source_profile:
            logger.debug(f"Using source profile '{source_profile}' for base credentials")
        if not instance_metadata:
            botocore_session = botocore.session.Session(profile=source_profile)
            botocore_session.get_component("credential_provider").remove(INSTANCE_METADATA_PROVIDER)
            return boto3.Session(botocore_session=botocore_session)
        if source_profile:
            return boto3.Session(profile_name=source_profile)
        return boto3.Session()
    except BotoCoreError as e:
        raise translate_botocore_error(e, "Failed to create AWS session") from None


def assume_role(profile, duration_override=None, session=None):
    """
    Assume the role described by a RoleProfile.

    Args:
        profile: RoleProfile to assume
        duration_override: Optional duration in seconds, overrides the profile's
        session: Optional base boto3.Session (default: create_base_session(profile))

    Returns:
        CredentialSet

    Raises:
        ValidationError: If the duration is outside the STS limits
        ProviderError: If the AssumeRole call fails for any reason
    """
    duration = duration_override if duration_override is not None else profile.duration_seconds
    try:
        validate_duration(duration)
    except ValueError as e:
        raise ValidationError("Invalid session duration", details=str(e)) from None

    if session is None:
        session = create_base_session(profile)

    region = resolve_region(session, profile)
    logger.debug(f"Assuming {profile.role_arn} in {region} for {duration}s")

    failure = f"Failed to assume role '{profile.name}'"
    try:
        sts_client = session.client("sts", config=_client_config(region))
        response = sts_client.assume_role(
            RoleArn=profile.role_arn,
            RoleSessionName=SESSION_NAME,
            DurationSeconds=duration,
        )
    except ClientError as e:
        raise translate_client_error(e, failure) from None
    except BotoCoreError as e:
        raise translate_botocore_error(e, failure) from None

    credentials = response.get("Credentials")
    if not credentials:
        raise ProviderError(f"{failure}: no credentials returned")

    return CredentialSet(
        access_key_id=credentials["AccessKeyId"],
        secret_access_key=credentials["SecretAccessKey"],
        session_token=credentials["SessionToken"],
        expiration=credentials["Expiration"],
        assumed_role_arn=response.get("AssumedRoleUser", {}).get("Arn"),
    )


def get_caller_identity(session=None, region=None):
    """
    Get the identity behind a session using STS GetCallerIdentity.

    Args:
        session: Optional boto3.Session (default: the default credential chain)
        region: Optional region (default: resolve_region(session))

    Returns:
        dict: Account, Arn and UserId

    Raises:
        ProviderError: If the call fails
    """
    if session is None:
        session = create_base_session()
    if region is None:
        region = resolve_region(session)

    failure = "Failed to get caller identity"
    try:
        sts_client = session.client("sts", config=_client_config(region))
        response = sts_client.get_caller_identity()
    except ClientError as e:
        raise translate_client_error(e, failure) from None
    except BotoCoreError as e:
        raise translate_botocore_error(e, failure) from None

    return {
        "Account": response["Account"],
        "Arn": response["Arn"],
        "UserId": response["UserId"],
    }


def run_with_credentials(credentials, command):
    """
    Run a command with the credentials injected into its environment.

    AWS_PROFILE is removed from the child environment so the injected
    credentials are the ones the child's SDK picks up.

    Args:
        credentials: CredentialSet
        command: Argument list, e.g. ["aws", "s3", "ls"]

    Returns:
        int: The command's exit status

    Raises:
        ValidationError: If the command is empty
        AssumeRoleError: If the command cannot be started
    """
    if not command:
        raise ValidationError("No command given to run")

    env = os.environ.copy()
    env.pop("AWS_PROFILE", None)
    env.update(credentials_environment(credentials))

    logger.debug(f"Running {command[0]} with assumed-role credentials")
    try:
        completed = subprocess.run(command, env=env)
    except OSError as e:
        raise AssumeRoleError(f"Failed to execute command '{command[0]}'", details=str(e)) from None
    return completed.returncode
