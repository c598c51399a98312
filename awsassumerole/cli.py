"""
Command-line interface for aws-assume-role.

Only the assume command writes to stdout, and only the rendered
credentials, so shell wrappers can eval stdout directly. Every human-facing
message for assume, and every error for all commands, goes to stderr.
"""

import argparse
import logging
import os
import platform
import shlex
import shutil
import sys
from pathlib import Path

import boto3
import botocore
from botocore.exceptions import BotoCoreError

from . import __version__
from .config import (
    MAX_DURATION_SECONDS,
    MIN_DURATION_SECONDS,
    build_profile,
    get_config_path,
    load_registry,
    save_registry,
)
from .core import assume_role, create_base_session, get_caller_identity, resolve_region, run_with_credentials
from .errors import (
    EXIT_CONFIG,
    EXIT_FAILURE,
    EXIT_INTERRUPTED,
    EXIT_NOT_FOUND,
    EXIT_OK,
    EXIT_PROVIDER,
    AssumeRoleError,
    ConfigError,
    ProviderError,
    ValidationError,
)
from .formats import Dialect, detect_dialect, format_credentials

logger = logging.getLogger(__name__)

PROG = "aws-assume-role"
DEBUG_ENV_VAR = "AWS_ASSUME_ROLE_DEBUG"
FORMAT_CHOICES = [dialect.value for dialect in Dialect] + ["auto"]

EPILOG = (
    "Examples:\n"
    f"  {PROG} configure --name dev --role-arn arn:aws:iam::123456789012:role/DevRole \\\n"
    "      --account-id 123456789012\n"
    f"  {PROG} list\n"
    f"  eval \"$({PROG} assume dev)\"              # Export credentials into this shell\n"
    f"  {PROG} assume dev --format json\n"
    f"  {PROG} assume dev --exec 'aws s3 ls'      # Run one command as the role\n"
    f"  {PROG} remove --name dev\n"
    f"  {PROG} verify --check-identity\n"
    "\n"
    "Exit codes:\n"
    f"  {EXIT_OK}    success\n"
    f"  {EXIT_FAILURE}    invalid input or other failure\n"
    f"  {EXIT_NOT_FOUND}    role not found\n"
    f"  {EXIT_PROVIDER}    AWS call failed\n"
    f"  {EXIT_CONFIG}    config file unreadable or corrupt\n"
)


class ArgumentParser(argparse.ArgumentParser):
    """argparse parser whose usage errors exit 1, keeping 2 for not-found."""

    def error(self, message):
        self.print_usage(sys.stderr)
        self.exit(EXIT_FAILURE, f"{self.prog}: error: {message}\n")


def setup_logging(verbose=False):
    """Send log records for this package (and botocore when verbose) to stderr."""
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
    handler.set_name(PROG)

    for name in ("awsassumerole", "botocore", "boto3"):
        target = logging.getLogger(name)
        # Drop the handler a previous main() call installed
        for existing in list(target.handlers):
            if existing.get_name() == PROG:
                target.removeHandler(existing)
        if name == "awsassumerole" or verbose:
            target.addHandler(handler)
            target.setLevel(logging.DEBUG if verbose else logging.WARNING)
            target.propagate = False


def print_error(error):
    """Render an AssumeRoleError to stderr in one place."""
    print(f"Error: {error.message}", file=sys.stderr)
    if error.details:
        print(f"Details: {error.details}", file=sys.stderr)
    if error.hint:
        print(f"To fix: {error.hint}", file=sys.stderr)


def cmd_configure(args, registry, config_file):
    """Add or replace a role profile."""
    profile = build_profile(
        args.name,
        args.role_arn,
        args.account_id,
        duration_seconds=args.duration,
        source_profile=args.source_profile,
        region=args.region,
    )
    replaced = profile.name in registry.roles
    registry.upsert(profile)
    save_registry(registry, config_file)

    print(f"✓ Role '{profile.name}' {'updated' if replaced else 'configured'}")
    print(f"✓ Role ARN: {profile.role_arn}")
    print(f"✓ Account ID: {profile.account_id}")
    print(f"✓ Session duration: {profile.duration_seconds}s")
    if profile.source_profile:
        print(f"✓ Source profile: {profile.source_profile}")
    if profile.region:
        print(f"✓ Region: {profile.region}")
    return EXIT_OK


def cmd_list(args, registry, config_file):
    """Print configured roles."""
    if not registry.roles:
        print("No roles configured")
        print(f"  Add one with: {PROG} configure --name <name> --role-arn <arn> --account-id <id>")
        return EXIT_OK

    print("Configured roles:")
    for name in sorted(registry.roles):
        profile = registry.roles[name]
        print(f"- {name} ({profile.role_arn})")
        if args.verbose:
            print(f"    account: {profile.account_id}, duration: {profile.duration_seconds}s")
            if profile.source_profile:
                print(f"    source profile: {profile.source_profile}")
            if profile.region:
                print(f"    region: {profile.region}")
    return EXIT_OK


def cmd_remove(args, registry, config_file):
    """Remove a role profile; an unknown name is reported but is not a failure."""
    name = args.name_option or args.name
    if not name:
        raise ValidationError("A role name is required", hint=f"{PROG} remove --name <name>")

    if not registry.remove(name):
        print(f"Role '{name}' not found, nothing to remove")
        return EXIT_OK

    save_registry(registry, config_file)
    print(f"✓ Role '{name}' removed")
    return EXIT_OK


def cmd_assume(args, registry, config_file):
    """Assume a role and print its credentials, or run a command with them."""
    profile = registry.resolve(args.name)
    dialect = detect_dialect() if args.format == "auto" else Dialect(args.format)
    logger.debug(f"Output format: {dialect.value}")

    credentials = assume_role(profile, duration_override=args.duration)

    assumed = credentials.assumed_role_arn or profile.role_arn
    print(f"✓ Assumed role '{profile.name}' ({assumed})", file=sys.stderr)
    print(f"✓ Credentials expire at: {credentials.expiration_iso}", file=sys.stderr)

    if args.exec_command is not None:
        try:
            command = shlex.split(args.exec_command)
        except ValueError as e:
            raise ValidationError(f"Cannot parse command '{args.exec_command}'", details=str(e)) from None
        returncode = run_with_credentials(credentials, command)
        # The child's own status would collide with the not-found/provider/config codes
        if returncode != 0:
            raise AssumeRoleError(
                f"Command failed with exit code {returncode}",
                details=f"{command[0]} ran with the credentials of role '{profile.name}'",
            )
        return EXIT_OK

    try:
        rendered = format_credentials(credentials, dialect)
    except ValueError as e:
        raise AssumeRoleError(
            f"Cannot render credentials as {dialect.value}",
            details=str(e),
            hint="Use --format export or --format json",
        ) from None

    sys.stdout.write(rendered + "\n")
    sys.stdout.flush()
    return EXIT_OK


def cmd_whoami(args, registry, config_file):
    """Print the identity of the current credentials."""
    identity = get_caller_identity()
    print(f"Account: {identity['Account']}")
    print(f"Arn:     {identity['Arn']}")
    print(f"UserId:  {identity['UserId']}")
    return EXIT_OK


def cmd_verify(args, registry, config_file):
    """
    Check prerequisites and report what is missing.

    Nothing is written. Returns EXIT_CONFIG if the registry is unreadable,
    EXIT_PROVIDER if the identity check fails, EXIT_FAILURE for any other
    failed check.
    """
    exit_code = EXIT_OK

    print()
    print("=" * 70)
    print("AWS Assume Role Verification")
    print("=" * 70)
    print()
    print(f"✓ {PROG} {__version__}")
    print(f"✓ Python {platform.python_version()} ({sys.platform})")
    print(f"✓ boto3 {boto3.__version__}, botocore {botocore.__version__}")

    aws_cli = shutil.which("aws")
    if aws_cli:
        print(f"✓ AWS CLI: {aws_cli}")
    else:
        print("⚠ AWS CLI not found on PATH (optional, needed only for aws commands)")

    try:
        path = Path(config_file) if config_file else get_config_path()
        if path.exists():
            registry = load_registry(path)
            print(f"✓ Config file: {path} ({len(registry.roles)} role(s))")
        else:
            print(f"ℹ Config file: {path} (not created yet, run {PROG} configure)")
    except ConfigError as e:
        print(f"✗ Config file: {e.message}")
        if e.details:
            print(f"  {e.details}")
        exit_code = EXIT_CONFIG

    session = None
    try:
        # Skip the EC2 instance metadata provider; off EC2 it blocks until its timeout
        session = create_base_session(instance_metadata=False)
        credentials = session.get_credentials()
        if credentials is None:
            print("✗ Base AWS credentials: none found (EC2 instance metadata not checked)")
            print("  Configure with aws configure or aws sso login, or export AWS_ACCESS_KEY_ID")
            exit_code = exit_code or EXIT_FAILURE
        else:
            print(f"✓ Base AWS credentials: found ({credentials.method})")
    except ProviderError as e:
        print(f"✗ Base AWS credentials: {e.message}")
        exit_code = exit_code or EXIT_FAILURE
        session = None
    except BotoCoreError as e:
        print(f"✗ Base AWS credentials: {e}")
        exit_code = exit_code or EXIT_FAILURE
        session = None

    region = resolve_region(session)
    print(f"✓ STS region: {region}")

    if args.check_identity:
        if session is None:
            print("✗ Identity: skipped, no usable base session")
        else:
            try:
                identity = get_caller_identity(session, region)
                print(f"✓ Identity: {identity['Arn']}")
            except ProviderError as e:
                print(f"✗ Identity: {e.message}")
                if e.details:
                    print(f"  {e.details}")
                exit_code = exit_code or EXIT_PROVIDER

    print()
    print("✓ All checks passed" if exit_code == EXIT_OK else "✗ Some checks failed")
    print("=" * 70)
    return exit_code


def duration_argument(value):
    """argparse type for --duration: an integer number of seconds."""
    try:
        return int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid duration '{value}', expected seconds") from None


def build_parser():
    """Build the argument parser with all subcommands."""
    parser = ArgumentParser(
        prog=PROG,
        description="Switch between AWS IAM roles across accounts and export their credentials",
        epilog=EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help=f"Debug logging to stderr (also enabled by {DEBUG_ENV_VAR}=1)",
    )

    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")
    subparsers.required = True
    duration_help = (
        f"Session duration in seconds ({MIN_DURATION_SECONDS}-{MAX_DURATION_SECONDS}, "
        "limited further by the role's maximum session duration)"
    )

    configure = subparsers.add_parser(
        "configure",
        help="Configure a new AWS IAM role (or replace an existing one)",
        description="Configure a new AWS IAM role (or replace an existing one)",
    )
    configure.add_argument("-n", "--name", required=True, help="Name for the role")
    configure.add_argument("-r", "--role-arn", required=True, help="IAM role ARN to assume")
    configure.add_argument("-a", "--account-id", required=True, help="12-digit AWS account ID")
    configure.add_argument(
        "-d", "--duration", type=duration_argument, default=None, help=f"{duration_help} (default: 3600)"
    )
    configure.add_argument(
        "-s",
        "--source-profile",
        default=None,
        help="AWS CLI profile that holds the base credentials (default: standard credential chain)",
    )
    configure.add_argument("--region", default=None, help="STS region to use for this role")
    configure.set_defaults(func=cmd_configure, uses_registry=True)

    list_parser = subparsers.add_parser(
        "list",
        help="List all configured AWS IAM roles",
        description="List all configured AWS IAM roles",
    )
    list_parser.set_defaults(func=cmd_list, uses_registry=True)

    remove = subparsers.add_parser(
        "remove",
        help="Remove a configured AWS IAM role",
        description="Remove a configured AWS IAM role",
    )
    remove.add_argument("name", nargs="?", default=None, help="Name of the role to remove")
    remove.add_argument("-n", "--name", dest="name_option", default=None, help="Name of the role to remove")
    remove.set_defaults(func=cmd_remove, uses_registry=True)

    assume = subparsers.add_parser(
        "assume",
        # No prefix matching, so wrappers can recognise --exec by its full spelling
        allow_abbrev=False,
        help="Assume a configured role and print its credentials",
        description=(
            "Assume a configured role. Credentials are printed to stdout in the chosen "
            "format and nothing else is; use eval \"$(aws-assume-role assume NAME)\" in bash/zsh."
        ),
    )
    assume.add_argument("name", help="Name of the role to assume")
    assume.add_argument(
        "-f",
        "--format",
        choices=FORMAT_CHOICES,
        default=Dialect.EXPORT.value,
        help="Output format (default: export; auto detects the current shell)",
    )
    assume.add_argument("-d", "--duration", type=duration_argument, default=None, help=duration_help)
    assume.add_argument(
        "-e",
        "--exec",
        dest="exec_command",
        metavar="COMMAND",
        default=None,
        help=(
            "Run COMMAND with the role's credentials instead of printing them; "
            "exits 0 if COMMAND succeeds, 1 if it fails"
        ),
    )
    assume.set_defaults(func=cmd_assume, uses_registry=True)

    whoami = subparsers.add_parser(
        "whoami",
        help="Show the identity of the current AWS credentials",
        description="Show the identity of the current AWS credentials (STS GetCallerIdentity)",
    )
    whoami.set_defaults(func=cmd_whoami, uses_registry=False)

    verify = subparsers.add_parser(
        "verify",
        help="Verify that all prerequisites are met",
        description=(
            "Verify that all prerequisites are met (read-only). Base credentials are looked up "
            "without the EC2 instance metadata service, so roles attached to an instance are not reported"
        ),
    )
    verify.add_argument(
        "--check-identity",
        action="store_true",
        help="Also call STS GetCallerIdentity with the base credentials",
    )
    verify.set_defaults(func=cmd_verify, uses_registry=False)

    return parser


def main(argv=None, config_file=None):
    """
    Main CLI entry point.

    Args:
        argv: Argument list (default: sys.argv[1:])
        config_file: Registry path override (default: ~/.aws-assume-role/config.json)

    Returns:
        int: Process exit code
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.verbose or bool(os.environ.get(DEBUG_ENV_VAR)))

    try:
        registry = load_registry(config_file) if args.uses_registry else None
        return args.func(args, registry, config_file)
    except AssumeRoleError as e:
        logger.debug(f"{type(e).__name__}: exit code {e.exit_code}")
        print_error(e)
        return e.exit_code
    except KeyboardInterrupt:
        print("Interrupted", file=sys.stderr)
        return EXIT_INTERRUPTED


if __name__ == "__main__":
    sys.exit(main())
