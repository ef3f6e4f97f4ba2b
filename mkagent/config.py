"""The agent's configuration file, its defaults and the saved host ID."""

from __future__ import annotations

import abc
import enum
import glob
import os
import re
import sys
import tomllib
from dataclasses import dataclass, field
from typing import Any, Mapping

from .plugins import (
    CheckPlugin,
    ConfigError,
    MetadataPlugin,
    MetricPlugin,
    PluginConfig,
)

AGENT_NAME = "mackerel-agent"
"""Name of the agent, used in default file locations."""

DEFAULT_APIBASE = "https://api.mackerelio.com"
"""Base URL of the API when the configuration names none."""

ID_FILE_NAME = "id"

_MISSING = object()


class CloudPlatform(enum.Enum):
    """Which cloud platform the host runs on; AUTO detects it."""

    AUTO = "auto"
    NONE = "none"
    EC2 = "ec2"
    GCE = "gce"
    AZURE_VM = "azurevm"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def parse(cls, text: str) -> CloudPlatform:
        """Read a platform name; an empty name means AUTO."""
        if text == "":
            return cls.AUTO
        try:
            return cls(text)
        except ValueError:
            raise ConfigError("failed to parse") from None


@dataclass
class HostStatus:
    """Host status to set when the agent starts and stops."""

    on_start: str = ""
    on_stop: str = ""


@dataclass
class Disks:
    """Disk related settings."""

    ignore: re.Pattern[str] | None = None


@dataclass
class Filesystems:
    """Filesystem related settings."""

    ignore: re.Pattern[str] | None = None
    use_mountpoint: bool = False


@dataclass
class Interfaces:
    """Network interface related settings."""

    ignore: re.Pattern[str] | None = None


class HostIDStorage(abc.ABC):
    """Keeps the host ID given by the server across agent runs."""

    @abc.abstractmethod
    def load_host_id(self) -> str:
        """Return the saved host ID."""

    @abc.abstractmethod
    def save_host_id(self, host_id: str) -> None:
        """Save the host ID."""

    @abc.abstractmethod
    def delete_saved_host_id(self) -> None:
        """Forget the saved host ID."""


@dataclass
class FileSystemHostIDStorage(HostIDStorage):
    """Stores the host ID in a file named "id" under a root directory."""

    root: str = ""

    def host_id_file(self) -> str:
        """Path of the host ID file."""
        return os.path.join(self.root, ID_FILE_NAME)

    def load_host_id(self) -> str:
        with open(self.host_id_file(), encoding="utf-8") as fh:
            host_id = fh.read().rstrip("\r\n")
        if not host_id:
            raise ConfigError("HostIDFile found, but the content is empty")
        return host_id

    def save_host_id(self, host_id: str) -> None:
        os.makedirs(self.root, mode=0o755, exist_ok=True)
        with open(self.host_id_file(), "w", encoding="utf-8") as fh:
            fh.write(host_id)

    def delete_saved_host_id(self) -> None:
        os.remove(self.host_id_file())


@dataclass
class Config:
    """The agent's configuration."""

    apibase: str = ""
    apikey: str = ""
    root: str = ""
    pidfile: str = ""
    conffile: str = ""
    roles: list[str] = field(default_factory=list)
    verbose: bool = False
    silent: bool = False
    diagnostic: bool = False
    disable_http_keep_alive: bool = False
    display_name: str = ""
    host_status: HostStatus = field(default_factory=HostStatus)
    disks: Disks = field(default_factory=Disks)
    filesystems: Filesystems = field(default_factory=Filesystems)
    interfaces: Interfaces = field(default_factory=Interfaces)
    http_proxy: str = ""
    https_proxy: str = ""
    cloud_platform: CloudPlatform = CloudPlatform.AUTO
    include: str = ""
    host_id_storage: HostIDStorage | None = None
    metric_plugins: dict[str, MetricPlugin] = field(default_factory=dict)
    check_plugins: dict[str, CheckPlugin] = field(default_factory=dict)
    metadata_plugins: dict[str, MetadataPlugin] = field(default_factory=dict)
    auto_shutdown: bool = False

    def list_custom_identifiers(self) -> list[str]:
        """Distinct custom identifiers of metric plugins, then check plugins."""
        result: list[str] = []
        plugins = [*self.metric_plugins.values(), *self.check_plugins.values()]
        for plugin in plugins:
            ident = plugin.custom_identifier
            if ident is not None and ident not in result:
                result.append(ident)
        return result

    def _storage(self) -> HostIDStorage:
        if self.host_id_storage is None:
            self.host_id_storage = FileSystemHostIDStorage(root=self.root)
        return self.host_id_storage

    def load_host_id(self) -> str:
        """Load the previously saved host ID."""
        return self._storage().load_host_id()

    def save_host_id(self, host_id: str) -> None:
        """Save the host ID for later runs."""
        self._storage().save_host_id(host_id)

    def delete_saved_host_id(self) -> None:
        """Delete the saved host ID."""
        self._storage().delete_saved_host_id()


def default_config() -> Config:
    """Standard locations and API base for the running platform."""
    if sys.platform == "darwin":
        root = os.path.join(os.environ.get("HOME", ""), "Library", AGENT_NAME)
        return Config(
            apibase=DEFAULT_APIBASE,
            root=root,
            pidfile=os.path.join(root, "pid"),
            conffile=os.path.join(root, f"{AGENT_NAME}.conf"),
        )
    if sys.platform == "win32":
        exec_dir = os.path.dirname(os.path.abspath(sys.executable))
        return Config(
            apibase=DEFAULT_APIBASE,
            root=exec_dir,
            pidfile=os.path.join(exec_dir, f"{AGENT_NAME}.pid"),
            conffile=os.path.join(exec_dir, f"{AGENT_NAME}.conf"),
        )
    return Config(
        apibase=DEFAULT_APIBASE,
        root=f"/var/lib/{AGENT_NAME}",
        pidfile=f"/var/run/{AGENT_NAME}.pid",
        conffile=f"/etc/{AGENT_NAME}/{AGENT_NAME}.conf",
    )


def load_config(conffile: str) -> Config:
    """Load a configuration file, filling unset values from the defaults."""
    config = _load_config_file(conffile)
    defaults = default_config()
    config.apibase = config.apibase or defaults.apibase
    config.root = config.root or defaults.root
    config.pidfile = config.pidfile or defaults.pidfile
    config.verbose = config.verbose or defaults.verbose
    config.diagnostic = config.diagnostic or defaults.diagnostic
    return config


def _read_toml(path: str) -> dict[str, Any]:
    with open(path, "rb") as fh:
        try:
            return tomllib.load(fh)
        except tomllib.TOMLDecodeError as exc:
            raise ConfigError(str(exc)) from exc


def _load_config_file(path: str) -> Config:
    config = Config()
    plugins = _apply(config, _read_toml(path))
    _set_each_plugins(config, plugins)
    if config.include:
        _include_config_files(config, config.include)
    return config


def _include_config_files(config: Config, pattern: str) -> None:
    for path in sorted(glob.glob(pattern)):
        try:
            plugins = _apply(config, _read_toml(path))
        except (ConfigError, OSError) as exc:
            raise ConfigError(
                f"while loading included config file {path}: {exc}"
            ) from exc
        _set_each_plugins(config, plugins)


def _lookup(table: Mapping[str, Any], name: str) -> Any:
    if name in table:
        return table[name]
    lowered = name.lower()
    for key, value in table.items():
        if key.lower() == lowered:
            return value
    return _MISSING


def _type_name(value: Any) -> str:
    return type(value).__name__


def _as_str(value: Any, name: str) -> str:
    if not isinstance(value, str):
        raise ConfigError(f"{name}: expected a string, but {_type_name(value)}")
    return value


def _as_bool(value: Any, name: str) -> bool:
    if not isinstance(value, bool):
        raise ConfigError(f"{name}: expected a boolean, but {_type_name(value)}")
    return value


def _as_table(value: Any, name: str) -> Mapping[str, Any]:
    if not isinstance(value, Mapping):
        raise ConfigError(f"{name}: expected a table, but {_type_name(value)}")
    return value


def _as_pattern(value: Any, name: str) -> re.Pattern[str]:
    text = _as_str(value, name)
    try:
        return re.compile(text)
    except re.error as exc:
        raise ConfigError(f"{name}: {exc}") from exc


_STRING_FIELDS = (
    "apibase",
    "apikey",
    "root",
    "pidfile",
    "conffile",
    "display_name",
    "http_proxy",
    "https_proxy",
    "include",
)
_BOOL_FIELDS = ("verbose", "silent", "diagnostic", "disable_http_keep_alive")


def _apply(config: Config, data: Mapping[str, Any]) -> dict[str, dict[str, PluginConfig]]:
    """Set the values present in data on config; return the plugin sections."""
    for name in _STRING_FIELDS:
        value = _lookup(data, name)
        if value is not _MISSING:
            setattr(config, name, _as_str(value, name))
    for name in _BOOL_FIELDS:
        value = _lookup(data, name)
        if value is not _MISSING:
            setattr(config, name, _as_bool(value, name))

    roles = _lookup(data, "roles")
    if roles is not _MISSING:
        if not isinstance(roles, list):
            raise ConfigError(f"roles: expected an array, but {_type_name(roles)}")
        config.roles = [_as_str(role, "roles") for role in roles]

    status = _lookup(data, "host_status")
    if status is not _MISSING:
        table = _as_table(status, "host_status")
        for name in ("on_start", "on_stop"):
            value = _lookup(table, name)
            if value is not _MISSING:
                setattr(config.host_status, name, _as_str(value, f"host_status.{name}"))

    for section in ("disks", "filesystems", "interfaces"):
        raw = _lookup(data, section)
        if raw is _MISSING:
            continue
        table = _as_table(raw, section)
        target = getattr(config, section)
        ignore = _lookup(table, "ignore")
        if ignore is not _MISSING:
            target.ignore = _as_pattern(ignore, f"{section}.ignore")
        if section == "filesystems":
            use = _lookup(table, "use_mountpoint")
            if use is not _MISSING:
                target.use_mountpoint = _as_bool(use, "filesystems.use_mountpoint")

    platform = _lookup(data, "cloud_platform")
    if platform is not _MISSING:
        config.cloud_platform = CloudPlatform.parse(_as_str(platform, "cloud_platform"))

    plugins: dict[str, dict[str, PluginConfig]] = {}
    raw_plugins = _lookup(data, "plugin")
    if raw_plugins is not _MISSING:
        for kind, sections in _as_table(raw_plugins, "plugin").items():
            plugins[kind] = {
                name: PluginConfig.from_table(
                    _as_table(section, f"plugin.{kind}.{name}")
                )
                for name, section in _as_table(sections, f"plugin.{kind}").items()
            }
    return plugins


def _set_each_plugins(
    config: Config, plugins: Mapping[str, Mapping[str, PluginConfig]]
) -> None:
    for name, pconf in plugins.get("metrics", {}).items():
        try:
            config.metric_plugins[name] = pconf.build_metric_plugin()
        except ConfigError as exc:
            raise ConfigError(f"plugin.metrics.{name}: {exc}") from exc
    for name, pconf in plugins.get("checks", {}).items():
        try:
            config.check_plugins[name] = pconf.build_check_plugin(name)
        except ConfigError as exc:
            raise ConfigError(f"plugin.checks.{name}: {exc}") from exc
    for name, pconf in plugins.get("metadata", {}).items():
        try:
            config.metadata_plugins[name] = pconf.build_metadata_plugin()
        except ConfigError as exc:
            raise ConfigError(f"plugin.metadata.{name}: {exc}") from exc