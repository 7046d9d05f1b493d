"""
Tests for the winfeature CLI.
"""

import json

import pytest
from click.testing import CliRunner

from winfeature.cli import JsonFormatter, main
from winfeature.contracts.timeouts import ELEVATED_COMMAND, POWERSHELL_PREFIX
from winfeature.scripts import decode_powershell_command


@pytest.fixture
def runner():
    return CliRunner()


class TestMain:
    def test_version(self, runner):
        result = runner.invoke(main, ["--version"])
        assert result.exit_code == 0
        assert "0.0.1-dev" in result.output

    def test_help_lists_commands(self, runner):
        result = runner.invoke(main, ["--help"])
        assert result.exit_code == 0
        for command in ("provision", "render", "config-schema"):
            assert command in result.output

    def test_config_schema(self, runner):
        result = runner.invoke(main, ["config-schema"])
        assert result.exit_code == 0
        schema = json.loads(result.output)
        assert "restart_timeout" in schema["properties"]
        assert "features" in schema["properties"]


class TestRender:
    def test_install_command(self, runner):
        result = runner.invoke(main, ["render", "install-command", "--feature", "IIS-WebServer"])
        assert result.exit_code == 0

        line = result.output.strip()
        prefix = f"{POWERSHELL_PREFIX} -EncodedCommand "
        assert line.startswith(prefix)
        assert decode_powershell_command(line[len(prefix):]).endswith("-Features 'IIS-WebServer'")

    def test_check_command(self, runner):
        result = runner.invoke(main, ["render", "check-command"])
        assert result.exit_code == 0
        assert result.output.startswith(POWERSHELL_PREFIX)

    def test_payload(self, runner):
        result = runner.invoke(main, ["render", "payload"])
        assert result.exit_code == 0
        assert "OnlyCheckForRebootRequired" in result.output

    def test_elevated_masks_password(self, runner):
        result = runner.invoke(main, ["render", "elevated", "--password", "s3cret"])
        assert result.exit_code == 0
        assert "$password = '********'" in result.output
        assert "s3cret" not in result.output

    def test_elevated_show_password(self, runner):
        result = runner.invoke(
            main, ["render", "elevated", "--password", "s3cret", "--show-password"]
        )
        assert result.exit_code == 0
        assert "$password = 's3cret'" in result.output

    def test_pending_reboot_wrapper(self, runner):
        result = runner.invoke(main, ["render", "pending-reboot"])
        assert result.exit_code == 0
        assert "$name = 'packer-windows-feature-pending-reboot-" in result.output

    def test_unknown_artifact(self, runner):
        result = runner.invoke(main, ["render", "nonsense"])
        assert result.exit_code == 2


class TestProvision:
    def test_dry_run(self, runner):
        result = runner.invoke(
            main,
            ["provision", "--dry-run", "--no-color", "--feature", "IIS-WebServer"],
        )
        assert result.exit_code == 0, result.output
        assert "Provisioning complete: 0 restart(s), 1 remote command(s)" in result.output
        assert "Dry run commands:" in result.output
        assert ELEVATED_COMMAND in result.output

    def test_dry_run_from_config_file(self, runner, tmp_path):
        path = tmp_path / "provision.yaml"
        path.write_text("capabilities:\n  - OpenSSH.Server~~~~0.0.1.0\nrestart_timeout: 30m\n")
        result = runner.invoke(
            main, ["provision", "--dry-run", "--no-color", "--config", str(path)]
        )
        assert result.exit_code == 0, result.output
        assert "1 capability(ies)" in result.output
        assert "restart timeout 30m" in result.output

    def test_warns_without_features(self, runner):
        result = runner.invoke(main, ["provision", "--dry-run", "--no-color"])
        assert result.exit_code == 0
        assert "no features or capabilities configured" in result.output

    def test_invalid_configuration(self, runner):
        result = runner.invoke(
            main, ["provision", "--dry-run", "--restart-timeout", "soon"]
        )
        assert result.exit_code == 2
        assert "Invalid configuration" in result.output

    def test_local_run_failure_exits_nonzero(self, runner, tmp_path, monkeypatch):
        from winfeature.errors import CommunicatorError
        from winfeature.provisioner import Provisioner

        def fail(self):
            raise CommunicatorError("no route to host")

        monkeypatch.setattr(Provisioner, "provision", fail)
        result = runner.invoke(
            main, ["provision", "--local-root", str(tmp_path), "--no-color"]
        )
        assert result.exit_code == 1
        assert "no route to host" in result.output

    def test_host_and_local_root_are_exclusive(self, runner, tmp_path):
        result = runner.invoke(
            main,
            ["provision", "--host", "10.0.0.5", "--local-root", str(tmp_path), "--no-color"],
        )
        assert result.exit_code == 2
        assert "mutually exclusive" in result.output

    def test_host_selects_ssh(self, runner, tmp_path, monkeypatch):
        from winfeature.communicator import SSHCommunicator
        from winfeature.errors import CommunicatorError
        from winfeature.provisioner import Provisioner

        seen = []

        def fail(self):
            seen.append(self.communicator)
            raise CommunicatorError("failed to connect to 10.0.0.5:2222")

        key = tmp_path / "id_ed25519"
        key.write_text("key")
        monkeypatch.setattr(Provisioner, "provision", fail)
        result = runner.invoke(
            main,
            [
                "provision", "--no-color",
                "--host", "10.0.0.5", "--port", "2222",
                "--ssh-user", "Administrator", "--ssh-key", str(key),
            ],
        )
        assert result.exit_code == 1
        assert "failed to connect to 10.0.0.5:2222" in result.output
        (communicator,) = seen
        assert isinstance(communicator, SSHCommunicator)
        assert communicator.target == "10.0.0.5:2222"
        assert communicator.username == "Administrator"
        assert communicator.key_filename == str(key)


class TestJsonFormatter:
    def test_formats_record(self):
        import logging

        record = logging.LogRecord("winfeature.retry", logging.WARNING, __file__, 1, "retry %d", (2,), None)
        entry = json.loads(JsonFormatter().format(record))
        assert entry["level"] == "warning"
        assert entry["logger"] == "winfeature.retry"
        assert entry["message"] == "retry 2"
