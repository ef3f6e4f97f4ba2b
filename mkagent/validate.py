"""Find keys in a configuration file that the agent does not know."""

from __future__ import annotations

import re
import tomllib
from dataclasses import dataclass
from typing import Any, Mapping

from .plugins import ConfigError

_PLUGIN_KINDS = ("metrics", "checks", "metadata")
_BARE_KEY = re.compile(r"[A-Za-z0-9_-]+")


@dataclass(frozen=True)
class UnexpectedKey:
    """A key the agent does not use, with a suggested replacement if one is close."""

    key: str
    suggest_key: str = ""


@dataclass(frozen=True)
class _Map:
    inner: Any


# A schema is a dict of field name to None (a value taken whole),
# a nested schema dict, or a _Map of arbitrary keys.
_COMMAND_SCHEMA: dict[str, Any] = {
    "command": None,
    "user": None,
    "env": None,
    "timeout_seconds": None,
}

_PLUGIN_SCHEMA: dict[str, Any] = {
    **_COMMAND_SCHEMA,
    "notification_interval": None,
    "check_interval": None,
    "execution_interval": None,
    "max_check_attempts": None,
    "custom_identifier": None,
    "prevent_alert_auto_close": None,
    "include_pattern": None,
    "exclude_pattern": None,
    "action": _COMMAND_SCHEMA,
    "memo": None,
}

_CONFIG_SCHEMA: dict[str, Any] = {
    "apibase": None,
    "apikey": None,
    "root": None,
    "pidfile": None,
    "conffile": None,
    "roles": None,
    "verbose": None,
    "silent": None,
    "diagnostic": None,
    "disable_http_keep_alive": None,
    "display_name": None,
    "host_status": {"on_start": None, "on_stop": None},
    "disks": {"ignore": None},
    "filesystems": {"ignore": None, "use_mountpoint": None},
    "interfaces": {"ignore": None},
    "http_proxy": None,
    "https_proxy": None,
    "cloud_platform": None,
    "plugin": _Map(_Map(_PLUGIN_SCHEMA)),
    "include": None,
}

_CANDIDATES = (
    "apibase",
    "apikey",
    "root",
    "pidfile",
    "conffile",
    "roles",
    "verbose",
    "silent",
    "diagnostic",
    "disable_http_keep_alive",
    "display_name",
    "host_status",
    "on_start",
    "on_stop",
    "disks",
    "ignore",
    "filesystems",
    "ignore",
    "use_mountpoint",
    "interfaces",
    "ignore",
    "http_proxy",
    "https_proxy",
    "cloud_platform",
    "plugin",
    "commandConfig",
    "command",
    "user",
    "env",
    "timeout_seconds",
    "notification_interval",
    "check_interval",
    "execution_interval",
    "max_check_attempts",
    "custom_identifier",
    "prevent_alert_auto_close",
    "include_pattern",
    "exclude_pattern",
    "action",
    "command",
    "user",
    "env",
    "timeout_seconds",
    "memo",
    "include",
)


def levenshtein_distance(a: str, b: str) -> int:
    """Number of single-character edits that turn a into b."""
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            current.append(
                min(
                    previous[j] + 1,
                    current[j - 1] + 1,
                    previous[j - 1] + (ca != cb),
                )
            )
        previous = current
    return previous[-1]


def key_suggestion(given: str, candidates: list[str] | tuple[str, ...]) -> str:
    """The first candidate within two edits of given, or "" when there is none."""
    for candidate in candidates:
        if levenshtein_distance(given, candidate) < 3:
            return candidate
    return ""


def config_key_candidates() -> list[str]:
    """Every key name the configuration file may use, in declaration order."""
    return list(_CANDIDATES)


def _key_string(parts: list[str]) -> str:
    rendered = []
    for part in parts:
        if _BARE_KEY.fullmatch(part):
            rendered.append(part)
        else:
            escaped = part.replace("\\", "\\\\").replace('"', '\\"')
            rendered.append(f'"{escaped}"')
    return ".".join(rendered)


def _find_field(schema: Mapping[str, Any], key: str) -> tuple[bool, Any]:
    if key in schema:
        return True, schema[key]
    lowered = key.lower()
    for name, spec in schema.items():
        if name.lower() == lowered:
            return True, spec
    return False, None


def _descendants(value: Any, path: list[str], out: list[str]) -> None:
    if isinstance(value, Mapping):
        for key, child in value.items():
            child_path = [*path, key]
            out.append(_key_string(child_path))
            _descendants(child, child_path, out)
    elif isinstance(value, list):
        for item in value:
            if isinstance(item, Mapping):
                _descendants(item, path, out)


def _walk_spec(value: Any, spec: Any, path: list[str], out: list[str]) -> None:
    if spec is None or not isinstance(value, Mapping):
        return
    if isinstance(spec, _Map):
        for key, child in value.items():
            _walk_spec(child, spec.inner, [*path, key], out)
    else:
        _walk_table(value, spec, path, out)


def _walk_table(
    table: Mapping[str, Any], schema: Mapping[str, Any], path: list[str], out: list[str]
) -> None:
    for key, value in table.items():
        child_path = [*path, key]
        found, spec = _find_field(schema, key)
        if not found:
            out.append(_key_string(child_path))
            _descendants(value, child_path, out)
            continue
        _walk_spec(value, spec, child_path, out)


def _plugin_table(data: Mapping[str, Any]) -> Mapping[str, Any]:
    for key, value in data.items():
        if key.lower() == "plugin" and isinstance(value, Mapping):
            return value
    return {}


def validate_config_file(file: str) -> list[UnexpectedKey]:
    """List the keys of a configuration file that the agent would not use."""
    try:
        with open(file, "rb") as fh:
            data = tomllib.load(fh)
    except (OSError, tomllib.TOMLDecodeError) as exc:
        raise ConfigError(f"failed to test config: {exc}") from exc

    candidates = config_key_candidates()
    undecoded: list[str] = []
    _walk_table(data, _CONFIG_SCHEMA, [], undecoded)
    undecoded.sort()

    unexpected: list[UnexpectedKey] = []
    detected: list[str] = []
    for name in undecoded:
        parts = name.split(".")
        top_key = parts[0]
        last_key = parts[-1]
        parent_key = ".".join(parts[:-1])
        if parent_key in detected or top_key in detected:
            continue

        if top_key in candidates:
            key = name
            suggestion = key_suggestion(last_key, candidates)
            suggest_key = f"{parent_key}.{suggestion}" if suggestion else ""
        else:
            key = top_key
            suggest_key = key_suggestion(top_key, candidates)

        unexpected.append(UnexpectedKey(key, suggest_key))
        detected.append(key)

    for kind, sections in _plugin_table(data).items():
        if kind in _PLUGIN_KINDS or not isinstance(sections, Mapping):
            continue
        suggestion = key_suggestion(kind, _PLUGIN_KINDS)
        for name in sections:
            target = suggestion or "metrics"
            unexpected.append(
                UnexpectedKey(f"plugin.{kind}.{name}", f"plugin.{target}.{name}")
            )

    unexpected.sort(key=lambda item: item.key)
    return unexpected