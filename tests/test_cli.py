"""Tests for the aws-assume-role command-line interface."""

import io
import json
import os
import tempfile
import unittest
from contextlib import redirect_stderr, redirect_stdout
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

from botocore.exceptions import ClientError

from awsassumerole import __version__
from awsassumerole.cli import main
from awsassumerole.errors import ProviderError

DEV_ARN = "arn:aws:iam::123456789012:role/DevRole"
PROD_ARN = "arn:aws:iam::123456789012:role/ProdRole"


def make_session():
    session = MagicMock()
    session.region_name = None
    sts_client = MagicMock()
    session.client.return_value = sts_client
    sts_client.assume_role.return_value = {
        "Credentials": {
            "AccessKeyId": "AKIA...",
            "SecretAccessKey": "abc",
            "SessionToken": "tok",
            "Expiration": datetime(2025, 1, 1, tzinfo=timezone.utc),
        },
        "AssumedRoleUser": {"Arn": "arn:aws:sts::123456789012:assumed-role/DevRole/aws-assume-role-session"},
    }
    return session, sts_client


class CLITestCase(unittest.TestCase):
    """Base class: a temporary registry and a helper to run the CLI."""

    def setUp(self):
        """Set up test fixtures."""
        self.temp_dir = tempfile.mkdtemp()
        self.config_file = os.path.join(self.temp_dir, ".aws-assume-role", "config.json")
        env_patcher = patch.dict(os.environ, {"AWS_REGION": "us-east-1"})
        env_patcher.start()
        self.addCleanup(env_patcher.stop)

    def tearDown(self):
        """Clean up test fixtures."""
        import shutil

        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def run_cli(self, *argv):
        stdout = io.StringIO()
        stderr = io.StringIO()
        with redirect_stdout(stdout), redirect_stderr(stderr):
            code = main(list(argv), config_file=self.config_file)
        return code, stdout.getvalue(), stderr.getvalue()

    def configure_dev(self):
        code, _, _ = self.run_cli(
            "configure", "--name", "dev", "--role-arn", DEV_ARN, "--account-id", "123456789012"
        )
        self.assertEqual(code, 0)


class TestConfigureAndList(CLITestCase):
    """Test configure and list."""

    def test_configure_then_list(self):
        """Test a configured role is listed with its ARN."""
        self.configure_dev()

        code, stdout, stderr = self.run_cli("list")

        self.assertEqual(code, 0)
        self.assertIn("dev", stdout)
        self.assertIn(DEV_ARN, stdout)
        self.assertIn(f"- dev ({DEV_ARN})", stdout)

    def test_configure_writes_registry(self):
        """Test configure persists the profile."""
        code, stdout, _ = self.run_cli(
            "configure", "--name", "dev", "--role-arn", DEV_ARN, "--account-id", "123456789012", "--duration", "7200"
        )
        self.assertEqual(code, 0)
        self.assertIn("Role 'dev' configured", stdout)

        with open(self.config_file) as f:
            data = json.load(f)
        self.assertEqual(data["roles"]["dev"]["duration_seconds"], 7200)

    def test_configure_same_name_twice(self):
        """Test reconfiguring a name replaces it, leaving one entry."""
        self.configure_dev()
        code, stdout, _ = self.run_cli(
            "configure", "--name", "dev", "--role-arn", PROD_ARN, "--account-id", "123456789012"
        )
        self.assertEqual(code, 0)
        self.assertIn("updated", stdout)

        with open(self.config_file) as f:
            data = json.load(f)
        self.assertEqual(list(data["roles"]), ["dev"])
        self.assertEqual(data["roles"]["dev"]["role_arn"], PROD_ARN)

    def test_configure_invalid_arn(self):
        """Test a malformed ARN fails with exit 1 and writes nothing."""
        code, stdout, stderr = self.run_cli(
            "configure", "--name", "dev", "--role-arn", "invalid-arn", "--account-id", "123456789012"
        )
        self.assertEqual(code, 1)
        self.assertEqual(stdout, "")
        self.assertIn("Error:", stderr)
        self.assertIn("invalid-arn", stderr)
        self.assertFalse(os.path.exists(self.config_file))

    def test_configure_duration_out_of_range(self):
        """Test local duration bounds are enforced."""
        code, _, stderr = self.run_cli(
            "configure", "--name", "dev", "--role-arn", DEV_ARN, "--account-id", "123456789012", "--duration", "60"
        )
        self.assertEqual(code, 1)
        self.assertIn("between 900 and 43200", stderr)

    def test_configure_missing_arguments(self):
        """Test argparse usage errors exit 1, not the not-found code."""
        with self.assertRaises(SystemExit) as ctx:
            self.run_cli("configure")
        self.assertEqual(ctx.exception.code, 1)

    def test_list_empty(self):
        """Test an empty registry is reported explicitly."""
        code, stdout, _ = self.run_cli("list")
        self.assertEqual(code, 0)
        self.assertIn("No roles configured", stdout)

    def test_list_corrupt_registry(self):
        """Test a corrupt registry exits with the config error code."""
        os.makedirs(os.path.dirname(self.config_file))
        with open(self.config_file, "w") as f:
            f.write("{broken")

        code, stdout, stderr = self.run_cli("list")

        self.assertEqual(code, 4)
        self.assertEqual(stdout, "")
        self.assertIn("Failed to parse", stderr)


class TestRemove(CLITestCase):
    """Test remove."""

    def test_remove_existing(self):
        """Test a removed role is gone from the registry."""
        self.configure_dev()

        code, stdout, _ = self.run_cli("remove", "--name", "dev")
        self.assertEqual(code, 0)
        self.assertIn("Role 'dev' removed", stdout)

        _, stdout, _ = self.run_cli("list")
        self.assertIn("No roles configured", stdout)

    def test_remove_positional_name(self):
        """Test the name may also be given positionally."""
        self.configure_dev()
        code, stdout, _ = self.run_cli("remove", "dev")
        self.assertEqual(code, 0)
        self.assertIn("removed", stdout)

    def test_remove_nonexistent(self):
        """Test removing an unknown role is informational, not a failure."""
        code, stdout, _ = self.run_cli("remove", "--name", "ghost")
        self.assertEqual(code, 0)
        self.assertIn("nothing to remove", stdout)
        self.assertFalse(os.path.exists(self.config_file))

    def test_remove_without_name(self):
        """Test remove needs a name."""
        code, _, stderr = self.run_cli("remove")
        self.assertEqual(code, 1)
        self.assertIn("name is required", stderr)


class TestAssume(CLITestCase):
    """Test assume."""

    def setUp(self):
        """Set up test fixtures."""
        super().setUp()
        self.configure_dev()
        patcher = patch("awsassumerole.core.boto3.Session")
        self.mock_session_class = patcher.start()
        self.addCleanup(patcher.stop)
        self.session, self.sts_client = make_session()
        self.mock_session_class.return_value = self.session

    def test_assume_json(self):
        """Test JSON output is exactly the credential document."""
        code, stdout, stderr = self.run_cli("assume", "dev", "--format", "json")

        self.assertEqual(code, 0)
        self.assertEqual(
            stdout,
            '{"access_key_id":"AKIA...","secret_access_key":"abc",'
            '"session_token":"tok","expiration":"2025-01-01T00:00:00Z"}\n',
        )
        self.assertIn("Assumed role 'dev'", stderr)

    def test_assume_default_export(self):
        """Test export statements are the default and the only stdout."""
        code, stdout, _ = self.run_cli("assume", "dev")

        self.assertEqual(code, 0)
        lines = stdout.splitlines()
        self.assertEqual(len(lines), 4)
        self.assertTrue(all(line.startswith("export AWS_") for line in lines))
        self.assertIn("export AWS_SECRET_ACCESS_KEY=abc", lines)

    def test_assume_duration(self):
        """Test --duration reaches the AssumeRole call."""
        code, _, _ = self.run_cli("assume", "dev", "--duration", "1800")
        self.assertEqual(code, 0)
        self.assertEqual(self.sts_client.assume_role.call_args.kwargs["DurationSeconds"], 1800)

    def test_assume_duration_out_of_range(self):
        """Test an out-of-range duration never reaches AWS."""
        code, stdout, _ = self.run_cli("assume", "dev", "--duration", "50000")
        self.assertEqual(code, 1)
        self.assertEqual(stdout, "")
        self.sts_client.assume_role.assert_not_called()

    def test_assume_unknown_role(self):
        """Test an unknown role exits 2 with nothing on stdout."""
        code, stdout, stderr = self.run_cli("assume", "unknown-role")

        self.assertEqual(code, 2)
        self.assertEqual(stdout, "")
        self.assertIn("unknown-role", stderr)
        self.mock_session_class.assert_not_called()

    def test_assume_access_denied(self):
        """Test a provider failure exits 3 with nothing on stdout."""
        self.sts_client.assume_role.side_effect = ClientError(
            {
                "Error": {
                    "Code": "AccessDenied",
                    "Message": "User: arn:aws:iam::123456789012:user/alice is not authorized "
                    "to perform: sts:AssumeRole on resource: " + DEV_ARN,
                }
            },
            "AssumeRole",
        )

        code, stdout, stderr = self.run_cli("assume", "dev")

        self.assertEqual(code, 3)
        self.assertEqual(stdout, "")
        self.assertIn("AccessDenied", stderr)
        self.assertIn("is not authorized", stderr)
        self.assertIn("To fix:", stderr)

    @patch.dict(os.environ, {"SHELL": "/usr/bin/fish"})
    @patch("awsassumerole.formats.sys.platform", "linux")
    def test_assume_auto_format(self):
        """Test --format auto follows the current shell."""
        code, stdout, _ = self.run_cli("assume", "dev", "--format", "auto")
        self.assertEqual(code, 0)
        self.assertTrue(stdout.startswith("set -gx AWS_ACCESS_KEY_ID"))

    @patch("awsassumerole.cli.run_with_credentials", return_value=0)
    def test_assume_exec(self, mock_run):
        """Test --exec runs the command with the role's credentials."""
        code, stdout, _ = self.run_cli("assume", "dev", "--exec", "aws s3 ls 's3://my bucket'")

        self.assertEqual(code, 0)
        self.assertEqual(stdout, "")
        credentials, command = mock_run.call_args.args
        self.assertEqual(command, ["aws", "s3", "ls", "s3://my bucket"])
        self.assertEqual(credentials.access_key_id, "AKIA...")

    def test_assume_exec_failure_is_generic(self):
        """Test a failing command exits 1 whatever its own status was."""
        for child_status in (1, 2, 3, 4, 5):
            with patch("awsassumerole.cli.run_with_credentials", return_value=child_status):
                code, stdout, stderr = self.run_cli("assume", "dev", "--exec", "sh -c 'exit 2'")
            self.assertEqual(code, 1)
            self.assertEqual(stdout, "")
            self.assertIn(f"Command failed with exit code {child_status}", stderr)

    @patch("awsassumerole.cli.run_with_credentials")
    def test_assume_exec_not_abbreviated(self, mock_run):
        """Test --exec must be spelled out so shell wrappers can detect it."""
        with self.assertRaises(SystemExit) as ctx:
            self.run_cli("assume", "dev", "--exe", "aws s3 ls")
        self.assertEqual(ctx.exception.code, 1)
        mock_run.assert_not_called()

    @patch("awsassumerole.cli.run_with_credentials")
    def test_assume_exec_unbalanced_quotes(self, mock_run):
        """Test an unparseable command is a validation error."""
        code, _, stderr = self.run_cli("assume", "dev", "--exec", "echo 'unterminated")
        self.assertEqual(code, 1)
        self.assertIn("Cannot parse command", stderr)
        mock_run.assert_not_called()

    def test_assume_multiline_value_in_cmd_format(self):
        """Test a value with a line break is refused for line-based shells."""
        self.sts_client.assume_role.return_value["Credentials"]["SessionToken"] = "tok\r\nset X=1"

        code, stdout, stderr = self.run_cli("assume", "dev", "--format", "cmd")

        self.assertEqual(code, 1)
        self.assertEqual(stdout, "")
        self.assertIn("Cannot render credentials as cmd", stderr)


class TestVerifyAndWhoami(CLITestCase):
    """Test verify and whoami."""

    def setUp(self):
        """Set up test fixtures."""
        super().setUp()
        self.session = MagicMock()
        self.session.region_name = "eu-west-1"
        self.session.get_credentials.return_value = MagicMock(method="env")

    def test_verify_ok(self):
        """Test verify passes with a readable registry and base credentials."""
        self.configure_dev()
        with patch("awsassumerole.cli.create_base_session", return_value=self.session):
            code, stdout, _ = self.run_cli("verify")

        self.assertEqual(code, 0)
        self.assertIn("1 role(s)", stdout)
        self.assertIn("Base AWS credentials: found (env)", stdout)
        self.assertIn("All checks passed", stdout)

    def test_verify_no_credentials(self):
        """Test verify fails when no base credentials are found."""
        self.session.get_credentials.return_value = None
        with patch("awsassumerole.cli.create_base_session", return_value=self.session) as mock_create:
            code, stdout, _ = self.run_cli("verify")
        mock_create.assert_called_once_with(instance_metadata=False)
        self.assertEqual(code, 1)
        self.assertIn("none found", stdout)

    def test_verify_corrupt_registry(self):
        """Test verify reports a corrupt registry with the config error code."""
        os.makedirs(os.path.dirname(self.config_file))
        with open(self.config_file, "w") as f:
            f.write("not json")
        with patch("awsassumerole.cli.create_base_session", return_value=self.session):
            code, stdout, _ = self.run_cli("verify")
        self.assertEqual(code, 4)
        self.assertIn("Failed to parse", stdout)

    def test_verify_identity_failure(self):
        """Test a failed identity check exits with the provider code."""
        error = ProviderError("Failed to get caller identity (ExpiredToken)", code="ExpiredToken")
        with patch("awsassumerole.cli.create_base_session", return_value=self.session), patch(
            "awsassumerole.cli.get_caller_identity", side_effect=error
        ):
            code, stdout, _ = self.run_cli("verify", "--check-identity")
        self.assertEqual(code, 3)
        self.assertIn("ExpiredToken", stdout)

    def test_verify_does_not_write(self):
        """Test verify leaves no registry behind."""
        with patch("awsassumerole.cli.create_base_session", return_value=self.session):
            self.run_cli("verify")
        self.assertFalse(os.path.exists(self.config_file))

    def test_whoami(self):
        """Test whoami prints the caller identity."""
        identity = {"Account": "123456789012", "Arn": "arn:aws:iam::123456789012:user/alice", "UserId": "AIDA"}
        with patch("awsassumerole.cli.get_caller_identity", return_value=identity):
            code, stdout, _ = self.run_cli("whoami")
        self.assertEqual(code, 0)
        self.assertIn("arn:aws:iam::123456789012:user/alice", stdout)


class TestGlobalOptions(CLITestCase):
    """Test --version and missing commands."""

    def test_version(self):
        """Test --version prints the package version."""
        with self.assertRaises(SystemExit) as ctx:
            self.run_cli("--version")
        self.assertEqual(ctx.exception.code, 0)

    def test_version_text(self):
        """Test the version string is on stdout."""
        stdout = io.StringIO()
        with redirect_stdout(stdout), self.assertRaises(SystemExit):
            main(["--version"])
        self.assertIn(__version__, stdout.getvalue())

    def test_missing_command(self):
        """Test a missing subcommand is a usage error."""
        stderr = io.StringIO()
        with redirect_stderr(stderr), self.assertRaises(SystemExit) as ctx:
            main([])
        self.assertEqual(ctx.exception.code, 1)

    def test_unknown_command(self):
        """Test an unknown subcommand is a usage error."""
        stderr = io.StringIO()
        with redirect_stderr(stderr), self.assertRaises(SystemExit) as ctx:
            main(["invalid-command"])
        self.assertEqual(ctx.exception.code, 1)
        self.assertIn("invalid choice", stderr.getvalue())


if __name__ == "__main__":
    unittest.main()
