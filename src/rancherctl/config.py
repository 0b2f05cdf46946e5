"""Configuration loader for rancherctl.

Values are layered from several sources, later sources winning:

1. Built-in defaults.
2. ``/etc/rancherctl/config.yml`` (or an override path).
3. The classic provisioning environment variables (``RANCHER_VERSION``,
   ``ACME_DOMAIN``, ``VOLUME_VALUE``, ``DATA_DIR``, ``LOG_FILE``).
4. Environment variables prefixed with ``RANCHERCTL_``.
5. Explicit overrides supplied programmatically (CLI flags).

Environment keys use double underscores to express nesting, e.g.::

    export RANCHERCTL_RUNTIME__BOOTSTRAP_WAIT=90
    export RANCHERCTL_CONTAINER__NAME=rancher_lab

Values are coerced via PyYAML's ``safe_load`` so that booleans and numbers are
parsed naturally. Relative paths are resolved against the working directory
of the invocation. The result is an immutable :class:`AppConfig`.
"""
from __future__ import annotations

import os
import shlex
from collections.abc import Mapping, MutableMapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import cast

import yaml

from .errors import ConfigError

ENV_PREFIX = "RANCHERCTL_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
RESERVED_ENV_KEYS = {CONFIG_ENV_VAR}
LEGACY_ENV_KEYS = {
    "RANCHER_VERSION": "version",
    "ACME_DOMAIN": "acme_domain",
    "VOLUME_VALUE": "volume_value",
    "DATA_DIR": "data_dir",
    "LOG_FILE": "log_file",
}
# Tags such as 2.10 must not be coerced into floats.
STRING_KEYS = {"version", "acme_domain", "volume_value"}


@dataclass(frozen=True)
class ContainerConfig:
    """Shape of the managed Rancher container."""

    name: str = "rancher_server"
    image: str = "rancher/rancher"
    http_port: int = 80
    https_port: int = 443
    data_mount: str = "/var/lib/rancher"
    privileged: bool = True
    restart_policy: str = "unless-stopped"

    def image_ref(self, tag: str) -> str:
        """Return the full image reference for *tag*."""
        return f"{self.image}:{tag}"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "name": self.name,
            "image": self.image,
            "http_port": self.http_port,
            "https_port": self.https_port,
            "data_mount": self.data_mount,
            "privileged": self.privileged,
            "restart_policy": self.restart_policy,
        }


@dataclass(frozen=True)
class RuntimeConfig:
    """Container runtime binaries and timing."""

    docker_bin: str = "docker"
    systemctl_bin: str = "systemctl"
    sudo_bin: str = "sudo"
    service: str = "docker"
    group: str = "docker"
    bootstrap_wait: float = 60.0
    restart_wait: float = 5.0
    verify_attempts: int = 3
    verify_interval: float = 5.0

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "docker_bin": self.docker_bin,
            "systemctl_bin": self.systemctl_bin,
            "sudo_bin": self.sudo_bin,
            "service": self.service,
            "group": self.group,
            "bootstrap_wait": self.bootstrap_wait,
            "restart_wait": self.restart_wait,
            "verify_attempts": self.verify_attempts,
            "verify_interval": self.verify_interval,
        }


@dataclass(frozen=True)
class BackupConfig:
    """Backup storage location."""

    root: Path

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"root": str(self.root)}


@dataclass(frozen=True)
class DependencyConfig:
    """Host tools required before the container can be pulled."""

    tools: tuple[tuple[str, str], ...] = (
        ("docker", "docker.io"),
        ("jq", "jq"),
        ("curl", "curl"),
    )
    package_managers: tuple[str, ...] = ("apt-get", "dnf", "yum")

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "tools": dict(self.tools),
            "package_managers": list(self.package_managers),
        }


@dataclass(frozen=True)
class StateFilesConfig:
    """Auxiliary files written next to the working directory."""

    version_file: Path
    credential_file: Path

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "version_file": str(self.version_file),
            "credential_file": str(self.credential_file),
        }


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for rancherctl."""

    config_file: Path
    version: str | None
    acme_domain: str | None
    volume_value: str | None
    data_dir: Path
    log_file: Path
    state_dir: Path
    dry_run: bool
    force: bool
    offline: bool
    container: ContainerConfig
    runtime: RuntimeConfig
    backups: BackupConfig
    dependencies: DependencyConfig
    state_files: StateFilesConfig

    @property
    def volume_args(self) -> list[str]:
        """Return the ``docker run`` arguments that mount the data volume."""
        if self.volume_value:
            return shlex.split(self.volume_value)
        return ["-v", f"{self.data_dir}:{self.container.data_mount}"]

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {
            "config_file": str(self.config_file),
            "version": self.version,
            "acme_domain": self.acme_domain,
            "volume_value": self.volume_value,
            "data_dir": str(self.data_dir),
            "log_file": str(self.log_file),
            "state_dir": str(self.state_dir),
            "dry_run": self.dry_run,
            "force": self.force,
            "offline": self.offline,
            "container": self.container.to_dict(),
            "runtime": self.runtime.to_dict(),
            "backups": self.backups.to_dict(),
            "dependencies": self.dependencies.to_dict(),
            "state_files": self.state_files.to_dict(),
        }


DEFAULTS: dict[str, object] = {
    "config_file": "/etc/rancherctl/config.yml",
    "version": None,
    "acme_domain": None,
    "volume_value": None,
    "data_dir": "rancher-data",
    "log_file": "rancher-lifecycle.log",
    "state_dir": ".",
    "dry_run": False,
    "force": False,
    "offline": False,
    "container": {
        "name": "rancher_server",
        "image": "rancher/rancher",
        "http_port": 80,
        "https_port": 443,
        "data_mount": "/var/lib/rancher",
        "privileged": True,
        "restart_policy": "unless-stopped",
    },
    "runtime": {
        "docker_bin": "docker",
        "systemctl_bin": "systemctl",
        "sudo_bin": "sudo",
        "service": "docker",
        "group": "docker",
        "bootstrap_wait": 60,
        "restart_wait": 5,
        "verify_attempts": 3,
        "verify_interval": 5,
    },
    "backups": {
        "root": "rancher_backup",
    },
    "dependencies": {
        "tools": {"docker": "docker.io", "jq": "jq", "curl": "curl"},
        "package_managers": ["apt-get", "dnf", "yum"],
    },
    "state_files": {
        "version_file": ".rancher-version",
        "credential_file": "initial-passwd",
    },
}

ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS.keys())
SECTION_KEYS: dict[str, set[str]] = {
    section: set(cast(Mapping[str, object], DEFAULTS[section]).keys())
    for section in ("container", "runtime", "backups", "dependencies", "state_files")
}
ALLOWED_PACKAGE_MANAGERS = {"apt-get", "dnf", "yum"}


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
    cwd: Path | None = None,
) -> AppConfig:
    """Load and merge configuration sources into an :class:`AppConfig`."""
    merged: dict[str, object] = _deep_copy(DEFAULTS)
    resolved_env = dict(os.environ if env is None else env)
    base_dir = (cwd or Path.cwd()).resolve()

    config_default = _expect_str(merged["config_file"], "config_file")
    config_path = _determine_config_path(config_default, config_file, resolved_env)

    file_values = _load_yaml_file(config_path)
    if file_values:
        _deep_merge(merged, file_values)

    legacy_values = _build_legacy_env_overrides(resolved_env)
    if legacy_values:
        _deep_merge(merged, legacy_values)

    env_values = _build_env_overrides(resolved_env)
    if env_values:
        _deep_merge(merged, env_values)

    if overrides:
        _deep_merge(merged, {key: value for key, value in overrides.items() if value is not None})

    merged["config_file"] = str(config_path)

    _validate_structure(merged)

    return _build_app_config(merged, base_dir)


def _determine_config_path(
    default_path: str,
    cli_override: str | os.PathLike[str] | None,
    env: Mapping[str, str],
) -> Path:
    if cli_override:
        return Path(cli_override)
    if env.get(CONFIG_ENV_VAR):
        return Path(env[CONFIG_ENV_VAR])
    return Path(default_path)


def _load_yaml_file(path: Path) -> dict[str, object]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - PyYAML owns detailed error
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigError(f"Failed to read config file {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return _as_dict(data, f"file:{path}")


def _validate_structure(raw: Mapping[str, object]) -> None:
    unknown_keys = set(raw.keys()) - ALLOWED_TOP_LEVEL_KEYS
    if unknown_keys:
        joined = ", ".join(sorted(unknown_keys))
        raise ConfigError(f"Unknown configuration keys: {joined}.")

    for section, allowed in SECTION_KEYS.items():
        section_map = _as_dict(raw.get(section), section)
        unknown = set(section_map.keys()) - allowed
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigError(f"Unknown {section} configuration keys: {joined}.")

    for key in sorted(STRING_KEYS):
        value = raw.get(key)
        if value is not None and not isinstance(value, str):
            raise ConfigError(
                f"Expected {key} to be a string, got {value!r}. "
                f'Quote it in the config file, e.g. {key}: "{value}".'
            )

    dependencies = _as_dict(raw.get("dependencies"), "dependencies")
    managers = dependencies.get("package_managers")
    if managers is not None:
        for manager in _as_sequence(managers, "dependencies.package_managers"):
            if str(manager) not in ALLOWED_PACKAGE_MANAGERS:
                allowed = ", ".join(sorted(ALLOWED_PACKAGE_MANAGERS))
                raise ConfigError(
                    f"Unsupported package manager '{manager}'. Allowed: {allowed}."
                )

    volume_value = raw.get("volume_value")
    if volume_value is not None:
        try:
            parts = shlex.split(str(volume_value))
        except ValueError as exc:
            raise ConfigError(f"Invalid volume_value {volume_value!r}: {exc}.") from exc
        if not parts:
            raise ConfigError("volume_value must not be empty when provided.")


def _build_app_config(raw: Mapping[str, object], base_dir: Path) -> AppConfig:
    config_file = _to_path(raw.get("config_file"))
    data_dir = _resolve(base_dir, _to_path(raw.get("data_dir")))
    log_file = _resolve(base_dir, _to_path(raw.get("log_file")))
    state_dir = _resolve(base_dir, _to_path(raw.get("state_dir")))

    container_map = _as_dict(raw.get("container"), "container")
    container = ContainerConfig(
        name=_expect_non_empty(container_map.get("name"), "container.name"),
        image=_expect_non_empty(container_map.get("image"), "container.image"),
        http_port=_expect_port(container_map.get("http_port"), "container.http_port", 80),
        https_port=_expect_port(container_map.get("https_port"), "container.https_port", 443),
        data_mount=_expect_non_empty(container_map.get("data_mount"), "container.data_mount"),
        privileged=_expect_bool(container_map.get("privileged"), "container.privileged", True),
        restart_policy=_expect_non_empty(
            container_map.get("restart_policy"), "container.restart_policy"
        ),
    )

    runtime_map = _as_dict(raw.get("runtime"), "runtime")
    runtime = RuntimeConfig(
        docker_bin=_expect_non_empty(runtime_map.get("docker_bin"), "runtime.docker_bin"),
        systemctl_bin=_expect_non_empty(
            runtime_map.get("systemctl_bin"), "runtime.systemctl_bin"
        ),
        sudo_bin=_expect_non_empty(runtime_map.get("sudo_bin"), "runtime.sudo_bin"),
        service=_expect_non_empty(runtime_map.get("service"), "runtime.service"),
        group=_expect_non_empty(runtime_map.get("group"), "runtime.group"),
        bootstrap_wait=_expect_non_negative_float(
            runtime_map.get("bootstrap_wait"), "runtime.bootstrap_wait", default=60.0
        ),
        restart_wait=_expect_non_negative_float(
            runtime_map.get("restart_wait"), "runtime.restart_wait", default=5.0
        ),
        verify_attempts=_expect_int(
            runtime_map.get("verify_attempts"), "runtime.verify_attempts", default=3
        ),
        verify_interval=_expect_non_negative_float(
            runtime_map.get("verify_interval"), "runtime.verify_interval", default=5.0
        ),
    )
    if runtime.verify_attempts <= 0:
        raise ConfigError("runtime.verify_attempts must be greater than zero.")

    backups_map = _as_dict(raw.get("backups"), "backups")
    backups = BackupConfig(root=_resolve(base_dir, _to_path(backups_map.get("root"))))

    dependencies_map = _as_dict(raw.get("dependencies"), "dependencies")
    tools_map = _as_dict(dependencies_map.get("tools"), "dependencies.tools")
    dependencies = DependencyConfig(
        tools=tuple((str(command), str(package)) for command, package in tools_map.items()),
        package_managers=tuple(
            str(manager)
            for manager in _as_sequence(
                dependencies_map.get("package_managers", []),
                "dependencies.package_managers",
            )
        ),
    )

    files_map = _as_dict(raw.get("state_files"), "state_files")
    state_files = StateFilesConfig(
        version_file=_resolve(state_dir, _to_path(files_map.get("version_file"))),
        credential_file=_resolve(state_dir, _to_path(files_map.get("credential_file"))),
    )

    return AppConfig(
        config_file=config_file,
        version=_optional_str(raw.get("version")),
        acme_domain=_optional_str(raw.get("acme_domain")),
        volume_value=_optional_str(raw.get("volume_value")),
        data_dir=data_dir,
        log_file=log_file,
        state_dir=state_dir,
        dry_run=_expect_bool(raw.get("dry_run"), "dry_run", False),
        force=_expect_bool(raw.get("force"), "force", False),
        offline=_expect_bool(raw.get("offline"), "offline", False),
        container=container,
        runtime=runtime,
        backups=backups,
        dependencies=dependencies,
        state_files=state_files,
    )


def _build_legacy_env_overrides(env: Mapping[str, str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for env_key, config_key in LEGACY_ENV_KEYS.items():
        value = env.get(env_key, "").strip()
        if value:
            overrides[config_key] = value
    return overrides


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
        if len(path_segments) == 1 and path_segments[0] in STRING_KEYS:
            _assign_nested(overrides, path_segments, value.strip())
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


def _coerce_value(raw: str) -> object:
    raw = raw.strip()
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError:  # pragma: no cover - treat as string if parsing fails
        return raw
    return parsed


def _resolve(base: Path, path: Path) -> Path:
    if path.is_absolute():
        return path
    return base / path


def _to_path(value: object) -> Path:
    if value is None:
        raise ConfigError("Expected a filesystem path, received None.")
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str):
        if not value.strip():
            raise ConfigError("Expected a filesystem path, received an empty string.")
        return Path(value).expanduser()
    raise ConfigError(f"Cannot convert value {value!r} to Path.")


def _optional_str(value: object) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _expect_str(value: object, key: str) -> str:
    if isinstance(value, str):
        return value
    raise ConfigError(f"Expected {key} to resolve to a string. Got {value!r}.")


def _expect_non_empty(value: object, label: str) -> str:
    if value is None or not str(value).strip():
        raise ConfigError(f"{label} must be a non-empty string.")
    return str(value).strip()


def _expect_bool(value: object, label: str, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    raise ConfigError(f"Expected {label} to be a boolean. Got {value!r}.")


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


def _expect_port(value: object | None, label: str, default: int) -> int:
    port = _expect_int(value, label, default=default)
    if not 0 < port < 65536:
        raise ConfigError(f"{label} must be between 1 and 65535. Got {port}.")
    return port


def _expect_non_negative_float(
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
        raise ConfigError(f"Expected {label} to be numeric. Got {type(value).__name__}.")
    if numeric < 0:
        raise ConfigError(f"{label} must not be negative. Got {numeric}.")
    return numeric


def _as_sequence(value: object, label: str) -> Sequence[object]:
    if isinstance(value, (str, bytes)) or not isinstance(value, Sequence):
        raise ConfigError(f"Expected {label} to be a sequence. Got {type(value).__name__}.")
    return value


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
    "BackupConfig",
    "ConfigError",
    "ContainerConfig",
    "DependencyConfig",
    "RuntimeConfig",
    "StateFilesConfig",
    "load_config",
]
