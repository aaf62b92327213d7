"""Configuration loader tests."""
from __future__ import annotations

from pathlib import Path

import pytest

from chainctl.config import AppConfig, ConfigError, load_config


def test_load_config_defaults_when_file_missing(tmp_path: Path) -> None:
    """Defaults apply when no config file is present."""
    config = load_config(tmp_path / "absent.yml", env={})

    assert isinstance(config, AppConfig)
    assert config.root_dir == Path("~/.chainctl").expanduser()
    assert config.chains_dir == config.root_dir / "chains"
    assert config.data_dir == config.root_dir / "data"
    assert config.container_root == "/home/chain/.chain"
    assert config.default_chain == "default"
    assert config.default_chain_dir == config.chains_dir / "default"
    assert config.stop_timeout == 10
    assert config.docker.registry == "quay.io"
    assert config.docker.pull_timeout == 300.0


def test_load_config_reads_yaml_file(tmp_path: Path) -> None:
    """Values are loaded from the YAML config file."""
    cfg = tmp_path / "chainctl.yml"
    cfg.write_text(
        "root_dir: {root}\n"
        "default_chain: simplechain\n"
        "container_root: /home/node/.chain/\n"
        "docker:\n"
        "  registry: registry.example.com\n"
        "  pull_timeout: 30\n".format(root=tmp_path / "root"),
        encoding="utf-8",
    )

    config = load_config(config_file=cfg, env={})

    assert config.config_file == cfg
    assert config.root_dir == tmp_path / "root"
    assert config.services_dir == tmp_path / "root" / "services"
    assert config.default_chain == "simplechain"
    assert config.container_root == "/home/node/.chain"
    assert config.docker.registry == "registry.example.com"
    assert config.docker.pull_timeout == 30.0
    assert config.docker.backup_registry == "docker.io"


def test_env_overrides_take_precedence(tmp_path: Path) -> None:
    """Environment variables override defaults and file settings."""
    cfg = tmp_path / "chainctl.yml"
    cfg.write_text("stop_timeout: 5\n", encoding="utf-8")
    env = {
        "CHAINCTL_STOP_TIMEOUT": "20",
        "CHAINCTL_DATA_DIR": str(tmp_path / "data"),
        "CHAINCTL_DOCKER__PULL_TIMEOUT": "60",
        "CHAINCTL_GATEWAY": "10.0.0.1",
    }

    config = load_config(config_file=cfg, env=env)

    assert config.stop_timeout == 20
    assert config.data_dir == tmp_path / "data"
    assert config.docker.pull_timeout == 60.0
    assert config.gateway == "10.0.0.1"


def test_config_file_env_var_selects_file(tmp_path: Path) -> None:
    """``CHAINCTL_CONFIG_FILE`` picks the file without becoming a setting."""
    cfg = tmp_path / "custom.yml"
    cfg.write_text("run_user: node\n", encoding="utf-8")

    config = load_config(env={"CHAINCTL_CONFIG_FILE": str(cfg)})

    assert config.config_file == cfg
    assert config.run_user == "node"


def test_overrides_win_over_env(tmp_path: Path) -> None:
    """Programmatic overrides are applied last."""
    config = load_config(
        tmp_path / "absent.yml",
        env={"CHAINCTL_ROOT_DIR": str(tmp_path / "env")},
        overrides={"root_dir": str(tmp_path / "cli")},
    )

    assert config.root_dir == tmp_path / "cli"


@pytest.mark.parametrize(
    ("content", "message"),
    [
        ("bogus: 1\n", "Unknown configuration keys: bogus"),
        ("docker:\n  colour: blue\n", "Unknown docker configuration keys: colour"),
        ("default_chain: '  '\n", "default_chain must be a non-empty string"),
        ("container_root: relative/path\n", "container_root must be an absolute"),
        ("stop_timeout: -1\n", "stop_timeout must be non-negative"),
        ("stop_timeout: true\n", "Got boolean"),
        ("docker:\n  pull_timeout: 0\n", "must be greater than zero"),
        ("images: chainctl/node\n", "Expected images to be a sequence"),
        ("- just\n- a list\n", "must contain a mapping"),
    ],
)
def test_invalid_values_raise(tmp_path: Path, content: str, message: str) -> None:
    """Invalid configuration is rejected with a descriptive error."""
    cfg = tmp_path / "chainctl.yml"
    cfg.write_text(content, encoding="utf-8")

    with pytest.raises(ConfigError, match=message):
        load_config(config_file=cfg, env={})


def test_to_dict_is_serialisable(tmp_path: Path) -> None:
    """The resolved configuration renders as plain values."""
    config = load_config(tmp_path / "absent.yml", env={})

    data = config.to_dict()

    assert data["config_file"] == str(tmp_path / "absent.yml")
    assert isinstance(data["images"], list)
    assert data["docker"]["bin"] == "docker"  # type: ignore[index]
