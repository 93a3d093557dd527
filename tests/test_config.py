"""Stack configuration loading and validation."""

import pytest
import yaml

from monstack.core.config_loader import StackConfig, load_config
from monstack.exceptions import ConfigurationError


def write_config(root, data):
    (root / "monstack.yml").write_text(yaml.safe_dump(data))


class TestDefaults:
    def test_defaults_without_config_file(self, tmp_path):
        config = load_config(tmp_path, environ={})

        assert config.base_dir == "/opt/monitoring"
        assert config.keep_releases == 3
        assert config.health_timeout == 120
        assert config.compose_project == "monitoring"
        assert config.inventory == tmp_path / "inventory" / "hosts.ini"
        assert config.vault_file == tmp_path / "inventory" / "group_vars" / "monitoring_hosts" / "vault.yml"
        assert config.vault_password_file == tmp_path / ".vault_pass"
        assert "graylog" in config.services

    def test_target_paths(self, tmp_path):
        config = StackConfig(root=tmp_path, base_dir="/srv/mon/")
        assert config.base_dir == "/srv/mon"
        assert config.releases_dir == "/srv/mon/releases"
        assert config.current_link == "/srv/mon/current"
        assert config.lock_path == "/srv/mon/.deploy.lock"

    def test_group_changes_vars_paths(self, tmp_path):
        config = StackConfig(root=tmp_path, group="edge")
        assert config.vars_file == tmp_path / "inventory" / "group_vars" / "edge" / "vars.yml"


class TestFile:
    def test_values_from_file(self, tmp_path):
        write_config(tmp_path, {"keep_releases": 5, "health_timeout": 300, "services": ["grafana"]})
        config = load_config(tmp_path, environ={})
        assert config.keep_releases == 5
        assert config.health_timeout == 300.0
        assert config.services == ["grafana"]

    def test_unknown_key_rejected(self, tmp_path):
        write_config(tmp_path, {"keep_release": 5})
        with pytest.raises(ConfigurationError, match="keep_release"):
            load_config(tmp_path, environ={})

    def test_invalid_yaml(self, tmp_path):
        (tmp_path / "monstack.yml").write_text("keep_releases: [1\n")
        with pytest.raises(ConfigurationError, match="Invalid YAML"):
            load_config(tmp_path, environ={})

    def test_non_numeric_value(self, tmp_path):
        write_config(tmp_path, {"keep_releases": "many"})
        with pytest.raises(ConfigurationError, match="keep_releases"):
            load_config(tmp_path, environ={})


class TestEnvironment:
    def test_environment_overrides_file(self, tmp_path):
        write_config(tmp_path, {"keep_releases": 5})
        config = load_config(tmp_path, environ={"MONSTACK_KEEP_RELEASES": "7"})
        assert config.keep_releases == 7

    def test_dotenv_file(self, tmp_path):
        (tmp_path / ".env").write_text("MONSTACK_BASE_DIR=/srv/monitoring\nMONSTACK_SERVICES=grafana, caddy\n")
        config = load_config(tmp_path, environ={})
        assert config.base_dir == "/srv/monitoring"
        assert config.services == ["grafana", "caddy"]

    def test_process_environment_wins_over_dotenv(self, tmp_path):
        (tmp_path / ".env").write_text("MONSTACK_KEEP_RELEASES=4\n")
        config = load_config(tmp_path, environ={"MONSTACK_KEEP_RELEASES": "6"})
        assert config.keep_releases == 6

    def test_unrelated_variables_ignored(self, tmp_path):
        config = load_config(tmp_path, environ={"MONSTACK_DIR": "/elsewhere", "PATH": "/bin"})
        assert config.root == tmp_path


class TestBounds:
    @pytest.mark.parametrize(
        "values",
        [
            {"keep_releases": 0},
            {"keep_releases": 51},
            {"health_timeout": 0},
            {"health_timeout": 3601},
            {"health_poll_interval": 0},
            {"health_timeout": 10, "health_poll_interval": 11},
            {"connect_timeout": 0},
            {"command_timeout": 0},
            {"base_dir": "relative/path"},
            {"base_dir": "/"},
            {"min_ssh_version": "latest"},
            {"compose_command": ""},
        ],
    )
    def test_out_of_bounds(self, tmp_path, values):
        with pytest.raises(ConfigurationError):
            StackConfig(root=tmp_path, **values)

    def test_limits_accepted(self, tmp_path):
        config = StackConfig(root=tmp_path, keep_releases=50, health_timeout=3600, health_poll_interval=3600)
        assert config.keep_releases == 50
