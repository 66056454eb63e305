"""!
@brief Run configuration for Twingate Janitor.
@details Replaces the module-level constants of ad hoc remediation scripts
with one :class:`RemediationConfig` constructed at process start. Values are
resolved with the precedence CLI arguments > JSON configuration file >
built-in defaults. When no ``--config`` is given, the well-known file under
``%ProgramData%\\TwingateJanitor`` is read if present; resume tasks rely on
that location because they carry only the phase flag.
"""

from __future__ import annotations

import dataclasses
import json
import os
import pathlib
from dataclasses import dataclass, field
from typing import Any, Mapping

from . import constants
from .errors import ConfigError

__all__ = [
    "CONFIG_KEYS",
    "RemediationConfig",
    "default_config_path",
    "default_data_directory",
    "default_log_directory",
    "load_config_file",
    "load_resume_config",
    "resolve_config",
    "write_config_file",
]


def default_data_directory() -> pathlib.Path:
    """!
    @brief Return the machine-wide data directory for logs, backups, and config.
    """

    program_data = os.environ.get("ProgramData") or os.environ.get("PROGRAMDATA")
    if program_data:
        return pathlib.Path(program_data) / constants.DATA_DIRECTORY_NAME
    return pathlib.Path.home() / f".{constants.DATA_DIRECTORY_NAME.lower()}"


def default_log_directory() -> pathlib.Path:
    return default_data_directory() / constants.LOG_DIRECTORY_NAME


def default_config_path() -> pathlib.Path:
    return default_data_directory() / constants.CONFIG_FILE_NAME


@dataclass
class RemediationConfig:
    """!
    @brief Options threaded through every remediation component.
    """

    target_network_identity: str = ""
    installer_source_url: str = constants.DEFAULT_INSTALLER_URL
    polling_timeout_seconds: int = 180
    polling_interval_seconds: int = 10
    product_name_pattern: str = constants.DEFAULT_PRODUCT_PATTERN
    profile_name_pattern: str = constants.DEFAULT_PROFILE_PATTERN
    canonical_profile_name: str = constants.CANONICAL_PROFILE_NAME
    adapter_name_pattern: str = constants.DEFAULT_ADAPTER_PATTERN
    client_executable: str = constants.DEFAULT_CLIENT_EXECUTABLE
    client_processes: tuple[str, ...] = constants.DEFAULT_CLIENT_PROCESSES
    client_services: tuple[str, ...] = constants.DEFAULT_CLIENT_SERVICES
    connectivity_probe_host: str = ""
    connectivity_probe_port: int = 443
    mdm_task_namespace: str = constants.DEFAULT_MDM_TASK_NAMESPACE
    force_reinstall: bool = True
    export_profiles_before_delete: bool = True
    reboot_delay_seconds: int = 15
    fatal_pause_seconds: int = 5
    busy_retry_attempts: int = 3
    log_directory: pathlib.Path = field(default_factory=default_log_directory)

    @property
    def backup_directory(self) -> pathlib.Path:
        return self.log_directory.parent / constants.BACKUP_DIRECTORY_NAME

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "RemediationConfig":
        """!
        @brief Build a configuration from a camelCase mapping.
        @details Unknown keys raise :class:`ConfigError` so typos in a config
        file do not silently fall back to defaults.
        """

        unknown = sorted(set(data) - set(CONFIG_KEYS))
        if unknown:
            raise ConfigError("Unknown configuration keys: " + ", ".join(unknown))

        defaults = cls()
        values: dict[str, Any] = {}
        for key, attr in CONFIG_KEYS.items():
            if key not in data:
                continue
            values[attr] = _coerce(attr, data[key], getattr(defaults, attr))
        return dataclasses.replace(defaults, **values)

    def to_mapping(self) -> dict[str, object]:
        """!
        @brief camelCase mapping accepted back by :meth:`from_mapping`.
        """

        data: dict[str, object] = {}
        for key, attr in CONFIG_KEYS.items():
            value = getattr(self, attr)
            if isinstance(value, tuple):
                value = list(value)
            elif isinstance(value, pathlib.PurePath):
                value = str(value)
            data[key] = value
        return data

    def with_overrides(self, **overrides: Any) -> "RemediationConfig":
        cleaned = {key: value for key, value in overrides.items() if value is not None}
        return dataclasses.replace(self, **cleaned) if cleaned else self

    def validate(self) -> None:
        if self.polling_interval_seconds <= 0:
            raise ConfigError("pollingIntervalSeconds must be positive")
        if self.polling_timeout_seconds < 0:
            raise ConfigError("pollingTimeoutSeconds must not be negative")
        if self.busy_retry_attempts < 1:
            raise ConfigError("busyRetryAttempts must be at least 1")


CONFIG_KEYS: dict[str, str] = {
    "targetNetworkIdentity": "target_network_identity",
    "installerSourceUrl": "installer_source_url",
    "pollingTimeoutSeconds": "polling_timeout_seconds",
    "pollingIntervalSeconds": "polling_interval_seconds",
    "productNamePattern": "product_name_pattern",
    "profileNamePattern": "profile_name_pattern",
    "canonicalProfileName": "canonical_profile_name",
    "adapterNamePattern": "adapter_name_pattern",
    "clientExecutable": "client_executable",
    "clientProcesses": "client_processes",
    "clientServices": "client_services",
    "connectivityProbeHost": "connectivity_probe_host",
    "connectivityProbePort": "connectivity_probe_port",
    "mdmTaskNamespace": "mdm_task_namespace",
    "forceReinstall": "force_reinstall",
    "exportProfilesBeforeDelete": "export_profiles_before_delete",
    "rebootDelaySeconds": "reboot_delay_seconds",
    "fatalPauseSeconds": "fatal_pause_seconds",
    "busyRetryAttempts": "busy_retry_attempts",
    "logDirectory": "log_directory",
}
"""!
@brief Recognised configuration file keys mapped to dataclass attributes.
"""


def _coerce(attr: str, raw: Any, default: Any) -> Any:
    try:
        if isinstance(default, bool):
            if isinstance(raw, str):
                return raw.strip().lower() in {"1", "true", "yes", "on"}
            return bool(raw)
        if isinstance(default, int):
            return int(raw)
        if isinstance(default, tuple):
            if isinstance(raw, str):
                return tuple(part.strip() for part in raw.split(",") if part.strip())
            return tuple(str(part) for part in raw)
        if isinstance(default, pathlib.Path):
            return pathlib.Path(str(raw)).expanduser()
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid value for {attr}: {raw!r}") from exc
    return str(raw)


def load_config_file(config_path: str | os.PathLike[str] | None) -> dict[str, object]:
    """!
    @brief Load and parse a JSON configuration file.
    @param config_path Path to the JSON config file, or ``None`` to skip.
    @returns Dictionary of configuration options, empty if no file specified.
    @raises ConfigError if the file is missing, unreadable, or not a JSON object.
    """

    if not config_path:
        return {}

    path = pathlib.Path(config_path).expanduser()
    if not path.exists():
        raise ConfigError(f"Configuration file not found: {path}")

    try:
        with open(path, encoding="utf-8") as handle:
            data = json.load(handle)
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Invalid JSON in configuration file: {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigError(f"Cannot read configuration file: {path}: {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigError(f"Configuration file must contain a JSON object: {path}")
    return data


def resolve_config(
    config_path: str | None = None,
    *,
    logdir: str | None = None,
) -> RemediationConfig:
    """!
    @brief Resolve the effective configuration for this run.
    @details An explicit ``config_path`` must exist. Without one, the default
    file is loaded only when present.
    """

    if config_path:
        data = load_config_file(config_path)
    else:
        default_path = default_config_path()
        data = load_config_file(default_path) if default_path.exists() else {}

    config = RemediationConfig.from_mapping(data)
    if logdir:
        config = config.with_overrides(log_directory=pathlib.Path(logdir).expanduser())
    config.validate()
    return config


def load_resume_config(config_path: str | os.PathLike[str]) -> RemediationConfig | None:
    """!
    @brief Configuration a resumed phase would load from ``config_path``.
    @returns ``None`` when the file is absent or unusable.
    """

    path = pathlib.Path(config_path)
    if not path.exists():
        return None
    try:
        return RemediationConfig.from_mapping(load_config_file(path))
    except ConfigError:
        return None


def write_config_file(config: RemediationConfig, config_path: str | os.PathLike[str]) -> None:
    """!
    @brief Write ``config`` as JSON to ``config_path``.
    @raises OSError when the file cannot be written.
    """

    path = pathlib.Path(config_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as handle:
        json.dump(config.to_mapping(), handle, indent=2)
        handle.write("\n")
