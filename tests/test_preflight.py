"""Preflight checks and their order."""

import subprocess

import pytest

from monstack.core.config_loader import StackConfig
from monstack.exceptions import PreconditionError, PreconditionKind
from monstack.services import PreflightValidator


def ssh_banner(banner):
    def run(argv, **kwargs):
        return subprocess.CompletedProcess(argv, 0, stdout="", stderr=banner)

    return run


@pytest.fixture
def empty_config(tmp_path, fake_ssh):
    return StackConfig(root=tmp_path / "empty", ssh_command=str(fake_ssh))


def kinds(validator, operation):
    return [issue.kind for issue in validator.validate(operation)]


class TestOrder:
    def test_all_pass(self, config):
        assert PreflightValidator(config).validate("deploy") == []

    def test_missing_tool_reported_first(self, tmp_path):
        config = StackConfig(root=tmp_path, ssh_command=str(tmp_path / "no-such-ssh"))
        assert kinds(PreflightValidator(config), "deploy") == [PreconditionKind.TOOL_MISSING]

    def test_inventory_before_vault(self, empty_config):
        assert kinds(PreflightValidator(empty_config), "deploy") == [PreconditionKind.INVENTORY_UNCONFIGURED]

    def test_vault_pass_before_document(self, config):
        config.vault_password_file.unlink()
        config.vault_file.unlink()
        assert kinds(PreflightValidator(config), "deploy") == [PreconditionKind.VAULT_PASS_MISSING]

    def test_vault_document(self, config):
        config.vault_file.unlink()
        assert kinds(PreflightValidator(config), "status") == [PreconditionKind.VAULT_DOCUMENT_MISSING]

    def test_secrets_skip_tool_and_inventory(self, config):
        config.inventory.unlink()
        config.vault_password_file.write_text("")
        assert kinds(PreflightValidator(config), "secrets") == [PreconditionKind.VAULT_PASS_MISSING]

    def test_unknown_operation(self, config):
        with pytest.raises(ValueError):
            PreflightValidator(config).validate("launch")


class TestInventory:
    def test_missing_file(self, config):
        config.inventory.unlink()
        issue = PreflightValidator(config).check_inventory()
        assert issue.kind == PreconditionKind.INVENTORY_UNCONFIGURED
        assert "hosts.ini.example" in issue.remediation

    def test_commented_out_host(self, config):
        config.inventory.write_text("[monitoring_hosts]\n# monitoring ansible_host=203.0.113.10\n")
        issue = PreflightValidator(config).check_inventory()
        assert issue.message == "Inventory file is not configured!"

    def test_malformed_inventory(self, config):
        config.inventory.write_text("[monitoring_hosts]\nm ansible_host=10.0.0.1 ansible_connection=winrm\n")
        assert PreflightValidator(config).check_inventory().kind == PreconditionKind.INVENTORY_UNCONFIGURED


class TestTool:
    def test_old_openssh(self, config):
        validator = PreflightValidator(config, run=ssh_banner("OpenSSH_7.4p1, OpenSSL 1.0.2k-fips"))
        issue = validator.check_tool()
        assert issue.kind == PreconditionKind.TOOL_MISSING
        assert "7.4" in issue.message

    def test_current_openssh(self, config):
        validator = PreflightValidator(config, run=ssh_banner("OpenSSH_9.6p1 Ubuntu-3ubuntu13"))
        assert validator.check_tool() is None

    def test_not_openssh(self, config):
        validator = PreflightValidator(config, run=ssh_banner("Dropbear v2022.83"))
        assert validator.check_tool().kind == PreconditionKind.TOOL_MISSING


def test_ensure_raises_first_issue(config):
    config.vault_file.unlink()
    with pytest.raises(PreconditionError) as excinfo:
        PreflightValidator(config).ensure("deploy")
    assert excinfo.value.kind == PreconditionKind.VAULT_DOCUMENT_MISSING
    assert excinfo.value.exit_code == 2
    assert "secrets:generate" in excinfo.value.context
