"""
Error types for aws-assume-role.

Every error carries the process exit code the CLI returns for it, so shell
wrappers can branch on the outcome without reading stderr.
"""

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_NOT_FOUND = 2
EXIT_PROVIDER = 3
EXIT_CONFIG = 4
EXIT_INTERRUPTED = 130


class AssumeRoleError(Exception):
    """Base class for all expected aws-assume-role failures."""

    exit_code = EXIT_FAILURE

    def __init__(self, message, details=None, hint=None):
        super().__init__(message)
        self.message = message
        self.details = details
        self.hint = hint


class ValidationError(AssumeRoleError):
    """Missing or malformed user input (empty name, bad ARN, bad duration)."""

    exit_code = EXIT_FAILURE


class ConfigError(AssumeRoleError):
    """The role registry cannot be located, read, parsed or written."""

    exit_code = EXIT_CONFIG


class NotFoundError(AssumeRoleError):
    """A role name is not present in the registry."""

    exit_code = EXIT_NOT_FOUND

    def __init__(self, name):
        super().__init__(
            f"Role '{name}' not found",
            hint="List configured roles with: aws-assume-role list",
        )
        self.name = name


class ProviderError(AssumeRoleError):
    """
    The AWS call itself failed.

    The provider's own message is preserved in ``details`` and its error
    code (e.g. ``AccessDenied``) in ``code``.
    """

    exit_code = EXIT_PROVIDER

    def __init__(self, message, code=None, details=None, hint=None):
        super().__init__(message, details=details, hint=hint)
        self.code = code
