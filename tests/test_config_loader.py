"""Configuration loader tests."""
from __future__ import annotations

from pathlib import Path

import pytest

from rancherctl.config import AppConfig, ConfigError, load_config
from rancherctl.exit_codes import ExitCode


def test_load_config_defaults_resolve_against_cwd(tmp_path: Path) -> None:
    """Defaults apply and relative paths land in the working directory."""
    config = load_config(tmp_path / "missing.yml", env={}, cwd=tmp_path)

    assert isinstance(config, AppConfig)
    assert config.version is None
    assert config.data_dir == tmp_path.resolve() / "rancher-data"
    assert config.log_file == tmp_path.resolve() / "rancher-lifecycle.log"
    assert config.backups.root == tmp_path.resolve() / "rancher_backup"
    assert config.state_files.version_file == tmp_path.resolve() / ".rancher-version"
    assert config.state_files.credential_file == tmp_path.resolve() / "initial-passwd"
    assert config.container.name == "rancher_server"
    assert config.runtime.bootstrap_wait == 60.0
    assert dict(config.dependencies.tools) == {"docker": "docker.io", "jq": "jq", "curl": "curl"}
    assert config.dry_run is False


def test_default_volume_args_mount_data_dir(tmp_path: Path) -> None:
    """Without a volume override the data directory is bind-mounted."""
    config = load_config(tmp_path / "missing.yml", env={}, cwd=tmp_path)

    assert config.volume_args == ["-v", f"{config.data_dir}:/var/lib/rancher"]


def test_volume_value_is_split_like_a_shell(tmp_path: Path) -> None:
    """A custom volume value replaces the default mount arguments."""
    config = load_config(
        tmp_path / "missing.yml",
        env={},
        overrides={"volume_value": "-v '/opt/my data:/var/lib/rancher'"},
        cwd=tmp_path,
    )

    assert config.volume_args == ["-v", "/opt/my data:/var/lib/rancher"]


def test_load_config_reads_yaml_file(tmp_path: Path) -> None:
    """Values are loaded from the YAML config file."""
    cfg = tmp_path / "rancherctl.yml"
    cfg.write_text(
        "version: v2.8.5\n"
        "data_dir: /srv/rancher\n"
        "container:\n"
        "  name: rancher_lab\n"
        "runtime:\n"
        "  bootstrap_wait: 90\n"
    )

    config = load_config(cfg, env={}, cwd=tmp_path)

    assert config.config_file == cfg
    assert config.version == "v2.8.5"
    assert config.data_dir == Path("/srv/rancher")
    assert config.container.name == "rancher_lab"
    assert config.container.image == "rancher/rancher"
    assert config.runtime.bootstrap_wait == 90.0


def test_legacy_environment_variables_seed_values(tmp_path: Path) -> None:
    """The classic provisioning variables are honoured."""
    env = {
        "RANCHER_VERSION": "v2.9.1",
        "ACME_DOMAIN": "rancher.example.com",
        "DATA_DIR": str(tmp_path / "data"),
        "LOG_FILE": "logs/rancher.log",
    }

    config = load_config(tmp_path / "missing.yml", env=env, cwd=tmp_path)

    assert config.version == "v2.9.1"
    assert config.acme_domain == "rancher.example.com"
    assert config.data_dir == tmp_path / "data"
    assert config.log_file == tmp_path.resolve() / "logs" / "rancher.log"


def test_prefixed_env_overrides_take_precedence(tmp_path: Path) -> None:
    """RANCHERCTL_ variables beat legacy names and the config file."""
    cfg = tmp_path / "rancherctl.yml"
    cfg.write_text("runtime:\n  verify_attempts: 2\n")
    env = {
        "RANCHER_VERSION": "v2.8.0",
        "RANCHERCTL_VERSION": "2.10",
        "RANCHERCTL_RUNTIME__VERIFY_ATTEMPTS": "6",
        "RANCHERCTL_CONTAINER__PRIVILEGED": "false",
    }

    config = load_config(cfg, env=env, cwd=tmp_path)

    assert config.version == "2.10"
    assert config.runtime.verify_attempts == 6
    assert config.container.privileged is False


def test_config_file_env_var_selects_file(tmp_path: Path) -> None:
    """RANCHERCTL_CONFIG_FILE points the loader at another file."""
    cfg = tmp_path / "alt.yml"
    cfg.write_text("offline: true\n")

    config = load_config(env={"RANCHERCTL_CONFIG_FILE": str(cfg)}, cwd=tmp_path)

    assert config.config_file == cfg
    assert config.offline is True


def test_overrides_ignore_none_values(tmp_path: Path) -> None:
    """Unset CLI options do not clobber lower layers."""
    config = load_config(
        tmp_path / "missing.yml",
        env={"ACME_DOMAIN": "rancher.example.com"},
        overrides={"acme_domain": None, "force": True},
        cwd=tmp_path,
    )

    assert config.acme_domain == "rancher.example.com"
    assert config.force is True


def test_unknown_keys_raise(tmp_path: Path) -> None:
    """Unknown configuration keys are rejected as usage errors."""
    cfg = tmp_path / "rancherctl.yml"
    cfg.write_text("retention: 3\n")

    with pytest.raises(ConfigError) as excinfo:
        load_config(cfg, env={}, cwd=tmp_path)
    assert "retention" in str(excinfo.value)
    assert excinfo.value.exit_code == ExitCode.USAGE


def test_unknown_section_keys_raise(tmp_path: Path) -> None:
    """Nested sections validate their keys too."""
    with pytest.raises(ConfigError, match="container"):
        load_config(
            tmp_path / "missing.yml",
            env={"RANCHERCTL_CONTAINER__LABEL": "x"},
            cwd=tmp_path,
        )


def test_invalid_values_raise(tmp_path: Path) -> None:
    """Negative waits, bad managers and unbalanced quotes are rejected."""
    with pytest.raises(ConfigError):
        load_config(
            tmp_path / "missing.yml",
            env={"RANCHERCTL_RUNTIME__BOOTSTRAP_WAIT": "-1"},
            cwd=tmp_path,
        )
    with pytest.raises(ConfigError):
        load_config(
            tmp_path / "missing.yml",
            env={},
            overrides={"dependencies": {"package_managers": ["pacman"]}},
            cwd=tmp_path,
        )
    with pytest.raises(ConfigError):
        load_config(
            tmp_path / "missing.yml",
            env={},
            overrides={"volume_value": "-v 'unterminated"},
            cwd=tmp_path,
        )


def test_unquoted_version_in_file_is_rejected(tmp_path: Path) -> None:
    """A bare 2.10 would load as the float 2.1, so string keys must be quoted."""
    cfg = tmp_path / "rancherctl.yml"
    cfg.write_text("version: 2.10\n")

    with pytest.raises(ConfigError, match="Expected version to be a string"):
        load_config(cfg, env={}, cwd=tmp_path)

    cfg.write_text('version: "2.10"\n')
    assert load_config(cfg, env={}, cwd=tmp_path).version == "2.10"


def test_top_level_must_be_mapping(tmp_path: Path) -> None:
    """Non-mapping YAML documents are rejected."""
    cfg = tmp_path / "rancherctl.yml"
    cfg.write_text("- a\n- b\n")

    with pytest.raises(ConfigError):
        load_config(cfg, env={}, cwd=tmp_path)


def test_to_dict_is_serialisable(tmp_path: Path) -> None:
    """to_dict returns plain values."""
    config = load_config(tmp_path / "missing.yml", env={}, cwd=tmp_path)
    data = config.to_dict()

    assert data["data_dir"] == str(config.data_dir)
    assert data["container"]["name"] == "rancher_server"  # type: ignore[index]
