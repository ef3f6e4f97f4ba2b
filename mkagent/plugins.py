"""Plugin sections of the configuration and the commands they run."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence

from .cmdutil import CommandOption, CommandResult, run_command, run_command_args
from .duration import DurationError, parse_minutes

logger = logging.getLogger(__name__)

MEMO_MAX_LENGTH = 250
"""Maximum number of characters of a check plugin memo."""

_COMMAND_ERROR = (
    "failed to parse plugin command. A configuration value of `command` "
    "should be string or string slice, but {}"
)


class ConfigError(ValueError):
    """A plugin configuration is invalid."""


def _type_name(value: Any) -> str:
    return "<nil>" if value is None else type(value).__name__


def _quote(text: str) -> str:
    escaped = text.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def convert_env(env: Mapping[str, str]) -> list[str]:
    """Turn an env table into "key=value" strings, skipping blank keys."""
    result = []
    for key, value in env.items():
        if "=" in key:
            raise ConfigError(
                "failed to parse plugin env. A key of env should not contain "
                f'"=", but {_quote(key)}'
            )
        key = key.strip(" ")
        if not key:
            continue
        result.append(f"{key}={value}")
    return result


@dataclass
class Command:
    """A command given either as a shell line or as an argument list."""

    cmd: str = ""
    args: list[str] = field(default_factory=list)
    option: CommandOption = field(default_factory=CommandOption)

    def run(self) -> CommandResult:
        """Run the command with its own options."""
        return self._run(self.option)

    def run_with_env(self, env: Sequence[str]) -> CommandResult:
        """Run the command with extra "key=value" environment entries."""
        option = CommandOption(
            user=self.option.user,
            env=(*self.option.env, *env),
            timeout=self.option.timeout,
        )
        return self._run(option)

    def command_string(self) -> str:
        """The command as one line, for log messages."""
        if self.args:
            return " ".join(self.args)
        return self.cmd

    def _run(self, option: CommandOption) -> CommandResult:
        if self.args:
            return run_command_args(self.args, option)
        return run_command(self.cmd, option)


def _optional_str(table: Mapping[str, Any], key: str) -> str | None:
    value = table.get(key)
    if value is not None and not isinstance(value, str):
        raise ConfigError(f"{key} should be a string, but {_type_name(value)}")
    return value


def _optional_int(table: Mapping[str, Any], key: str) -> int | None:
    value = table.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{key} should be an integer, but {_type_name(value)}")
    return value


def _optional_minutes(table: Mapping[str, Any], key: str) -> int | None:
    value = table.get(key)
    if value is None:
        return None
    if isinstance(value, bool):
        text = "true" if value else "false"
    elif isinstance(value, (int, str)):
        text = str(value)
    else:
        raise ConfigError(f"{key} should be a duration, but {_type_name(value)}")
    try:
        return parse_minutes(text)
    except DurationError as exc:
        raise ConfigError(str(exc)) from exc


@dataclass
class CommandConfig:
    """The command part of a plugin section, as written in the file."""

    raw: Any = None
    user: str = ""
    env: dict[str, str] = field(default_factory=dict)
    timeout_seconds: int = 0

    @classmethod
    def from_table(cls, table: Mapping[str, Any]) -> CommandConfig:
        """Read the command keys of a configuration table."""
        env = table.get("env") or {}
        if not isinstance(env, Mapping):
            raise ConfigError(f"env should be a table, but {_type_name(env)}")
        return cls(
            raw=table.get("command"),
            user=_optional_str(table, "user") or "",
            env={str(k): str(v) for k, v in env.items()},
            timeout_seconds=_optional_int(table, "timeout_seconds") or 0,
        )

    def parse(self) -> Command | None:
        """Build the command; None when no command is configured."""
        raw = self.raw
        if raw is None:
            return None
        if isinstance(raw, str):
            command = Command(cmd=raw)
        elif isinstance(raw, (list, tuple)):
            if not raw or not all(isinstance(item, str) for item in raw):
                raise ConfigError(_COMMAND_ERROR.format(_type_name(raw)))
            command = Command(args=list(raw))
        else:
            raise ConfigError(_COMMAND_ERROR.format(_type_name(raw)))
        command.option = CommandOption(
            user=self.user,
            env=tuple(convert_env(self.env)),
            timeout=float(self.timeout_seconds),
        )
        return command


@dataclass
class MetricPlugin:
    """A metric plugin ready to run."""

    command: Command = field(default_factory=Command)
    custom_identifier: str | None = None
    include_pattern: re.Pattern[str] | None = None
    exclude_pattern: re.Pattern[str] | None = None


@dataclass
class CheckPlugin:
    """A check plugin ready to run."""

    command: Command = field(default_factory=Command)
    custom_identifier: str | None = None
    notification_interval: int | None = None
    check_interval: int | None = None
    max_check_attempts: int | None = None
    prevent_alert_auto_close: bool = False
    action: Command | None = None
    memo: str = ""


@dataclass
class MetadataPlugin:
    """A metadata plugin ready to run."""

    command: Command = field(default_factory=Command)
    execution_interval: int | None = None


def _compile(pattern: str | None) -> re.Pattern[str] | None:
    if pattern is None:
        return None
    try:
        return re.compile(pattern)
    except re.error as exc:
        raise ConfigError(f"invalid pattern {_quote(pattern)}: {exc}") from exc


@dataclass
class PluginConfig:
    """One [plugin.<kind>.<name>] section of the configuration."""

    command_config: CommandConfig = field(default_factory=CommandConfig)
    notification_interval: int | None = None
    check_interval: int | None = None
    execution_interval: int | None = None
    max_check_attempts: int | None = None
    custom_identifier: str | None = None
    prevent_alert_auto_close: bool = False
    include_pattern: str | None = None
    exclude_pattern: str | None = None
    action: CommandConfig = field(default_factory=CommandConfig)
    memo: str = ""

    @classmethod
    def from_table(cls, table: Mapping[str, Any]) -> PluginConfig:
        """Read a plugin section; intervals are given in minutes or as durations."""
        action = table.get("action") or {}
        if not isinstance(action, Mapping):
            raise ConfigError(f"action should be a table, but {_type_name(action)}")
        prevent = table.get("prevent_alert_auto_close", False)
        if not isinstance(prevent, bool):
            raise ConfigError(
                "prevent_alert_auto_close should be a boolean, "
                f"but {_type_name(prevent)}"
            )
        return cls(
            command_config=CommandConfig.from_table(table),
            notification_interval=_optional_minutes(table, "notification_interval"),
            check_interval=_optional_minutes(table, "check_interval"),
            execution_interval=_optional_minutes(table, "execution_interval"),
            max_check_attempts=_optional_int(table, "max_check_attempts"),
            custom_identifier=_optional_str(table, "custom_identifier"),
            prevent_alert_auto_close=prevent,
            include_pattern=_optional_str(table, "include_pattern"),
            exclude_pattern=_optional_str(table, "exclude_pattern"),
            action=CommandConfig.from_table(action),
            memo=_optional_str(table, "memo") or "",
        )

    def _required_command(self) -> Command:
        command = self.command_config.parse()
        if command is None:
            raise ConfigError(_COMMAND_ERROR.format(_type_name(self.command_config.raw)))
        return command

    def build_metric_plugin(self) -> MetricPlugin:
        """Build the metric plugin this section describes."""
        command = self._required_command()
        return MetricPlugin(
            command=command,
            custom_identifier=self.custom_identifier,
            include_pattern=_compile(self.include_pattern),
            exclude_pattern=_compile(self.exclude_pattern),
        )

    def build_check_plugin(self, name: str) -> CheckPlugin:
        """Build the check plugin this section describes."""
        command = self._required_command()
        action = self.action.parse()

        memo = self.memo
        if len(memo) > MEMO_MAX_LENGTH:
            logger.warning(
                "'plugin.checks.%s.memo' size exceeds %d characters",
                name,
                MEMO_MAX_LENGTH,
            )
            memo = memo[:MEMO_MAX_LENGTH]

        max_attempts = self.max_check_attempts
        if max_attempts is not None and max_attempts > 1 and self.prevent_alert_auto_close:
            max_attempts = 1
            logger.warning(
                "'plugin.checks.%s.max_check_attempts' is set to 1 "
                "(Unavailable with 'prevent_alert_auto_close')",
                name,
            )

        return CheckPlugin(
            command=command,
            custom_identifier=self.custom_identifier,
            notification_interval=self.notification_interval,
            check_interval=self.check_interval,
            max_check_attempts=max_attempts,
            prevent_alert_auto_close=self.prevent_alert_auto_close,
            action=action,
            memo=memo,
        )

    def build_metadata_plugin(self) -> MetadataPlugin:
        """Build the metadata plugin this section describes."""
        return MetadataPlugin(
            command=self._required_command(),
            execution_interval=self.execution_interval,
        )