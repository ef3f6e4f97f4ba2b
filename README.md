# mkagent

A library for the building blocks of a host monitoring agent. It reads the
agent's TOML configuration, runs plugin commands with timeouts, parses
minute-based intervals, finds unknown or misspelt configuration keys, and
holds the rules for scheduling and preparing metric value posts.

## Installation

```
pip install .
```

Python 3.11 or later is required. The package has no runtime dependencies.

## Modules

- `mkagent.config` - `load_config(conffile)` reads a configuration file
  (following its `include` glob) into a `Config`, filling `apibase`, `root`,
  `pidfile`, `verbose` and `diagnostic` from `default_config()` where unset.
  `Config.load_host_id()`, `save_host_id()` and `delete_saved_host_id()` keep
  the host ID in a file named `id` under `root` (`FileSystemHostIDStorage`).
  `Config.list_custom_identifiers()` lists the distinct custom identifiers of
  metric plugins, then check plugins.
- `mkagent.plugins` - `PluginConfig`, `CommandConfig` and `Command`, and the
  built `MetricPlugin`, `CheckPlugin` and `MetadataPlugin`. Invalid sections
  raise `ConfigError`.
- `mkagent.cmdutil` - `run_command(command, option)` runs a line through the
  system shell, `run_command_args(args, option)` runs an argument list. Both
  return a `CommandResult`; `CommandError` is raised when a command cannot be
  started and `CommandTimeoutError` when it was stopped after its timeout
  (30 seconds unless `CommandOption.timeout` says otherwise).
- `mkagent.duration` - `parse_minutes(text)` accepts a plain number of
  minutes or a duration such as `"1h10m"` or `"2.5h"`; it must be a whole,
  non-negative number of minutes, else `DurationError` is raised.
  `parse_go_duration` and `format_go_duration` convert durations to and from
  nanoseconds.
- `mkagent.validate` - `validate_config_file(file)` returns the unexpected
  keys of a file as `UnexpectedKey` items, each with a suggestion where a
  known key is within two edits.
- `mkagent.posting` - `LoopState`, `post_delay_seconds`, `next_loop_state`,
  `build_metric_values` and `PostValue.record_failure`, the rules for when and
  what to post.

## Configuration

Plugins are declared under `[plugin.metrics.<name>]`,
`[plugin.checks.<name>]` and `[plugin.metadata.<name>]`; `command` may be a
string run through the shell or a list of arguments run directly.

```toml
apikey = "placeholder"
roles = ["service:role"]

[plugin.checks.ssh]
command = ["check-procs", "--pattern", "sshd"]
check_interval = "5m"
max_check_attempts = 3

[plugin.metrics.dice]
command = "dice-with-meta"
```

A check plugin memo is cut to 250 characters, and `max_check_attempts` is
set to 1 when `prevent_alert_auto_close` is on.

## Example

```python
from mkagent.config import load_config
from mkagent.duration import parse_minutes
from mkagent.validate import validate_config_file

conf = load_config("mackerel-agent.conf")
print(conf.list_custom_identifiers())

for unexpected in validate_config_file("mackerel-agent.conf"):
    print(unexpected.key, unexpected.suggest_key)

print(parse_minutes("1h10m"))  # 70

result = conf.metric_plugins["dice"].command.run()
print(result.exit_code, result.stdout)
```

## What it does not do

The package is a library only. It installs no command-line program, does not
turn check results into statuses or reports, does not talk to the monitoring
service's API, and does not run a collection or posting loop; it provides the
configuration, command execution and scheduling rules such a program would
use.

## Tests

```
pip install ".[test]"
pytest
```