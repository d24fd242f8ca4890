import pytest

from homestack.config import HomeConfig, parse_env_lines
from homestack.errors import ConfigError

from conftest import write


def test_defaults_derive_from_root(tmp_path):
    config = HomeConfig(project_root=tmp_path)
    assert config.docker_dir == tmp_path.resolve() / "docker"
    assert config.state_file == tmp_path.resolve() / ".deployment-state"
    assert config.maintenance_log == tmp_path.resolve() / "data" / "logs" / "maintenance.log"
    assert config.dns_records == ["@", "*"]


def test_load_without_file(tmp_path):
    config = HomeConfig.load(tmp_path)
    assert config.project_root == tmp_path.resolve()
    assert config.convergence_delay == 2.0


def test_load_from_env_var(tmp_path, monkeypatch):
    monkeypatch.setenv("HOMESTACK_ROOT", str(tmp_path))
    assert HomeConfig.load().project_root == tmp_path.resolve()


def test_load_yaml_overrides(tmp_path):
    write(tmp_path / "homestack.yaml", "docker_dir: stacks\nnetworks: [edge]\nconvergence_delay: 0\n")
    config = HomeConfig.load(tmp_path)
    assert config.docker_dir == tmp_path.resolve() / "stacks"
    assert config.shared_networks() == ["edge"]
    assert config.convergence_delay == 0


def test_load_rejects_unknown_settings(tmp_path):
    write(tmp_path / "homestack.yaml", "dockr_dir: stacks\n")
    with pytest.raises(ConfigError, match="dockr_dir"):
        HomeConfig.load(tmp_path)


def test_load_rejects_non_mapping(tmp_path):
    write(tmp_path / "homestack.yaml", "- a\n- b\n")
    with pytest.raises(ConfigError):
        HomeConfig.load(tmp_path)


def test_shared_network_from_common_env(project):
    write(project / "config" / "private" / "common.env", "PROXY_NETWORK=traefik\n")
    assert HomeConfig(project_root=project).shared_networks() == ["traefik"]


def test_shared_network_default(tmp_path):
    assert HomeConfig(project_root=tmp_path).shared_networks() == ["proxy"]


def test_config_sources_skip_missing_private_dir(tmp_path):
    config = HomeConfig(project_root=tmp_path)
    assert config.private_dir not in config.config_source_paths()


def test_validate_reports_missing_dirs(tmp_path):
    issues = HomeConfig(project_root=tmp_path).validate()
    assert any("Stacks directory" in issue for issue in issues)
    assert any("Private config" in issue for issue in issues)


def test_parse_env_lines():
    values = parse_env_lines([
        "# comment",
        "",
        "A=1",
        "export B = two words",
        "not a pair",
        "=orphan",
        "C=x=y",
    ])
    assert values == {"A": "1", "B": "two words", "C": "x=y"}
