"""Configuration loader for chainctl.

This module centralises the logic for reading configuration values from
multiple sources:

1. Built-in defaults.
2. ``~/.chainctl/config.yml`` (or an override path).
3. Environment variables prefixed with ``CHAINCTL_``.
4. Explicit overrides supplied programmatically (reserved for CLI flags).

Environment keys use double underscores to express nesting, e.g.::

    export CHAINCTL_DOCKER__PULL_TIMEOUT=60
    export CHAINCTL_DEFAULT_CHAIN=simplechain

Values are coerced via PyYAML's ``safe_load`` so that booleans and numbers are
parsed naturally. The resulting configuration is exposed as immutable
``dataclasses`` for convenient access and type safety.
"""
from __future__ import annotations

import os
from collections.abc import Mapping, MutableMapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import cast

try:  # PyYAML is a runtime dependency (declared in pyproject.toml).
    import yaml
except Exception as exc:  # pragma: no cover - import failure covered in tests
    raise RuntimeError(
        "PyYAML is required to load chainctl configuration. Install with "
        "`pip install chainctl` or ensure PyYAML>=6.0 is available."
    ) from exc


ENV_PREFIX = "CHAINCTL_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
RESERVED_ENV_KEYS = {
    CONFIG_ENV_VAR,
}


class ConfigError(RuntimeError):
    """Raised when configuration parsing fails."""


@dataclass(frozen=True)
class DockerConfig:
    """Container runtime settings."""

    bin: str = "docker"
    data_image: str = "chainctl/data:latest"
    registry: str = "quay.io"
    backup_registry: str = "docker.io"
    pull_timeout: float = 300.0

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "bin": self.bin,
            "data_image": self.data_image,
            "registry": self.registry,
            "backup_registry": self.backup_registry,
            "pull_timeout": self.pull_timeout,
        }


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for chainctl."""

    config_file: Path
    root_dir: Path
    chains_dir: Path
    services_dir: Path
    data_dir: Path
    logs_dir: Path
    container_root: str
    run_user: str
    default_chain: str
    gateway: str
    stop_timeout: int
    chain_image: str
    images: tuple[str, ...]
    docker: DockerConfig

    @property
    def default_chain_dir(self) -> Path:
        """Return the template directory used when no chain source is given."""
        return self.chains_dir / self.default_chain

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {
            "config_file": str(self.config_file),
            "root_dir": str(self.root_dir),
            "chains_dir": str(self.chains_dir),
            "services_dir": str(self.services_dir),
            "data_dir": str(self.data_dir),
            "logs_dir": str(self.logs_dir),
            "container_root": self.container_root,
            "run_user": self.run_user,
            "default_chain": self.default_chain,
            "gateway": self.gateway,
            "stop_timeout": self.stop_timeout,
            "chain_image": self.chain_image,
            "images": list(self.images),
            "docker": self.docker.to_dict(),
        }


DEFAULTS: dict[str, object] = {
    "config_file": "~/.chainctl/config.yml",
    "root_dir": "~/.chainctl",
    "chains_dir": None,  # derived from root_dir when absent
    "services_dir": None,
    "data_dir": None,
    "logs_dir": None,
    "container_root": "/home/chain/.chain",
    "run_user": "chain",
    "default_chain": "default",
    "gateway": "",
    "stop_timeout": 10,
    "chain_image": "chainctl/node:latest",
    "images": [
        "chainctl/data:latest",
        "chainctl/keys:latest",
        "chainctl/node:latest",
    ],
    "docker": {
        "bin": "docker",
        "data_image": "chainctl/data:latest",
        "registry": "quay.io",
        "backup_registry": "docker.io",
        "pull_timeout": 300.0,
    },
}

ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS.keys())
ALLOWED_DOCKER_KEYS = {"bin", "data_image", "registry", "backup_registry", "pull_timeout"}


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> AppConfig:
    """Load and merge configuration sources into an :class:`AppConfig`."""
    merged: dict[str, object] = _deep_copy(DEFAULTS)
    resolved_env = dict(os.environ if env is None else env)

    config_default = _expect_str(merged["config_file"], "config_file")
    config_path = _determine_config_path(config_default, config_file, resolved_env)

    file_values = _load_yaml_file(config_path)
    if file_values:
        _deep_merge(merged, file_values)

    env_values = _build_env_overrides(resolved_env)
    if env_values:
        _deep_merge(merged, env_values)

    if overrides:
        _deep_merge(merged, dict(overrides))

    merged["config_file"] = str(config_path)

    _validate_structure(merged)

    return _build_app_config(merged)


def _determine_config_path(
    default_path: str,
    cli_override: str | os.PathLike[str] | None,
    env: Mapping[str, str],
) -> Path:
    if cli_override:
        return Path(cli_override).expanduser()
    if CONFIG_ENV_VAR in env:
        return Path(env[CONFIG_ENV_VAR]).expanduser()
    return Path(default_path).expanduser()


def _load_yaml_file(path: Path) -> dict[str, object]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - PyYAML owns detailed error
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return _as_dict(data, f"file:{path}")


def _validate_structure(raw: Mapping[str, object]) -> None:
    unknown_keys = set(raw.keys()) - ALLOWED_TOP_LEVEL_KEYS
    if unknown_keys:
        joined = ", ".join(sorted(unknown_keys))
        raise ConfigError(f"Unknown configuration keys: {joined}.")

    docker = raw.get("docker")
    if docker is not None:
        docker_map = _as_dict(docker, "docker")
        unknown = set(docker_map.keys()) - ALLOWED_DOCKER_KEYS
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigError(f"Unknown docker configuration keys: {joined}.")

    default_chain = raw.get("default_chain")
    if default_chain is not None and not str(default_chain).strip():
        raise ConfigError("default_chain must be a non-empty string.")

    container_root = raw.get("container_root")
    if container_root is not None and not str(container_root).startswith("/"):
        raise ConfigError("container_root must be an absolute in-container path.")


def _build_app_config(raw: Mapping[str, object]) -> AppConfig:
    config_file = _to_path(raw.get("config_file"))
    root_dir = _to_path(raw.get("root_dir"))

    chains_dir = _derived_path(raw.get("chains_dir"), root_dir / "chains")
    services_dir = _derived_path(raw.get("services_dir"), root_dir / "services")
    data_dir = _derived_path(raw.get("data_dir"), root_dir / "data")
    logs_dir = _derived_path(raw.get("logs_dir"), root_dir / "logs")

    stop_timeout = _expect_int(raw.get("stop_timeout"), "stop_timeout", default=10)
    if stop_timeout < 0:
        raise ConfigError("stop_timeout must be non-negative.")

    images_raw = raw.get("images")
    images: tuple[str, ...] = ()
    if images_raw is not None:
        images = tuple(str(item) for item in _as_sequence(images_raw, "images"))

    docker_mapping = _as_dict(raw.get("docker"), "docker")
    docker = DockerConfig(
        bin=str(docker_mapping.get("bin", "docker")),
        data_image=str(docker_mapping.get("data_image", "chainctl/data:latest")),
        registry=str(docker_mapping.get("registry", "quay.io")),
        backup_registry=str(docker_mapping.get("backup_registry", "docker.io")),
        pull_timeout=_expect_positive_float(
            docker_mapping.get("pull_timeout"),
            "docker.pull_timeout",
            default=300.0,
        ),
    )

    return AppConfig(
        config_file=config_file,
        root_dir=root_dir,
        chains_dir=chains_dir,
        services_dir=services_dir,
        data_dir=data_dir,
        logs_dir=logs_dir,
        container_root=str(raw.get("container_root", "/home/chain/.chain")).rstrip("/"),
        run_user=str(raw.get("run_user", "chain")),
        default_chain=str(raw.get("default_chain", "default")).strip(),
        gateway=str(raw.get("gateway") or ""),
        stop_timeout=stop_timeout,
        chain_image=str(raw.get("chain_image", "chainctl/node:latest")),
        images=images,
        docker=docker,
    )


def _build_env_overrides(env: Mapping[str, str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for key, value in env.items():
        if key in RESERVED_ENV_KEYS:
            continue
        if not key.startswith(ENV_PREFIX):
            continue
        suffix = key[len(ENV_PREFIX) :]
        path_segments = [segment.lower() for segment in suffix.split("__") if segment]
        if not path_segments:
            continue
        _assign_nested(overrides, path_segments, _coerce_value(value))
    return overrides


def _assign_nested(tree: MutableMapping[str, object], path: list[str], value: object) -> None:
    current: MutableMapping[str, object] = tree
    for segment in path[:-1]:
        existing = current.get(segment)
        if existing is None:
            new_child: MutableMapping[str, object] = {}
            current[segment] = new_child
            current = new_child
            continue
        if isinstance(existing, MutableMapping):
            current = cast(MutableMapping[str, object], existing)
            continue
        raise ConfigError(
            "Environment overrides conflict with existing scalar value at "
            f"{'.'.join(path)}"
        )
    current[path[-1]] = value


def _deep_merge(target: MutableMapping[str, object], overrides: Mapping[str, object]) -> None:
    for key, value in overrides.items():
        existing = target.get(key)
        if isinstance(existing, MutableMapping) and isinstance(value, Mapping):
            _deep_merge(existing, _as_dict(value, f"merge.{key}"))
            continue
        target[key] = value


def _deep_copy(source: Mapping[str, object]) -> dict[str, object]:
    result: dict[str, object] = {}
    for key, value in source.items():
        if isinstance(value, Mapping):
            result[key] = _deep_copy(_as_dict(value, f"copy.{key}"))
        elif isinstance(value, list):
            result[key] = list(value)
        else:
            result[key] = value
    return result


def _as_sequence(value: object, label: str) -> Sequence[object]:
    if isinstance(value, (str, bytes)):
        raise ConfigError(f"Expected {label} to be a sequence. Got {type(value).__name__}.")
    if not isinstance(value, Sequence):
        raise ConfigError(f"Expected {label} to be a sequence. Got {type(value).__name__}.")
    return value


def _coerce_value(raw: str) -> object:
    raw = raw.strip()
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError:  # pragma: no cover - treat as string if parsing fails
        return raw
    return parsed


def _derived_path(value: object, fallback: Path) -> Path:
    if value in (None, ""):
        return fallback
    return _to_path(value)


def _to_path(value: object) -> Path:
    if value is None:
        raise ConfigError("Expected a filesystem path, received None.")
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str):
        return Path(value).expanduser()
    raise ConfigError(f"Cannot convert value {value!r} to Path.")


def _expect_int(value: object | None, label: str, *, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be an integer. Got boolean {value!r}.")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value, 0)
        except ValueError as exc:
            raise ConfigError(f"Invalid integer for {label}: {value!r}.") from exc
    raise ConfigError(f"Expected {label} to be an integer. Got {type(value).__name__}.")


def _expect_str(value: object, key: str) -> str:
    if isinstance(value, str):
        return value
    raise ConfigError(f"Expected {key} to resolve to a string. Got {value!r}.")


def _expect_positive_float(
    value: object | None,
    label: str,
    *,
    default: float,
) -> float:
    if value is None:
        return float(default)
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be a number. Got boolean {value!r}.")
    if isinstance(value, (int, float)):
        numeric = float(value)
    elif isinstance(value, str):
        try:
            numeric = float(value)
        except ValueError as exc:
            raise ConfigError(f"Invalid number for {label}: {value!r}.") from exc
    else:
        raise ConfigError(
            f"Expected {label} to be numeric. Got {type(value).__name__}."
        )
    if numeric <= 0:
        raise ConfigError(f"{label} must be greater than zero. Got {numeric}.")
    return numeric


def _as_dict(value: object | None, label: str) -> dict[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected {label} to be a mapping. Got {type(value).__name__}.")
    result: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise ConfigError(f"Mapping {label} must use string keys. Got {key!r}.")
        result[key] = item
    return result


__all__ = [
    "AppConfig",
    "ConfigError",
    "DockerConfig",
    "load_config",
]
