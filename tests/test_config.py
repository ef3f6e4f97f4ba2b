import os
import sys

import pytest

from mkagent.config import (
    CloudPlatform,
    Config,
    FileSystemHostIDStorage,
    default_config,
    load_config,
)
from mkagent.plugins import CheckPlugin, ConfigError, MetricPlugin


def _write(path, text):
    path.write_text(text, encoding="utf-8")
    return str(path)


@pytest.mark.parametrize(
    "text, expected",
    [
        ("auto", CloudPlatform.AUTO),
        ("", CloudPlatform.AUTO),
        ("none", CloudPlatform.NONE),
        ("ec2", CloudPlatform.EC2),
        ("gce", CloudPlatform.GCE),
        ("azurevm", CloudPlatform.AZURE_VM),
    ],
)
def test_cloud_platform_parse(text, expected):
    assert CloudPlatform.parse(text) is expected


def test_cloud_platform_round_trip():
    for platform in CloudPlatform:
        assert CloudPlatform.parse(str(platform)) is platform


def test_cloud_platform_parse_error():
    with pytest.raises(ConfigError, match="failed to parse"):
        CloudPlatform.parse("aws")


def test_default_config_unix(monkeypatch):
    monkeypatch.setattr(sys, "platform", "linux")
    conf = default_config()
    assert conf.root == "/var/lib/mackerel-agent"
    assert conf.pidfile == "/var/run/mackerel-agent.pid"
    assert conf.conffile == "/etc/mackerel-agent/mackerel-agent.conf"
    assert conf.apibase.startswith("https://")


def test_default_config_darwin(monkeypatch, tmp_path):
    monkeypatch.setattr(sys, "platform", "darwin")
    monkeypatch.setenv("HOME", str(tmp_path))
    conf = default_config()
    root = os.path.join(str(tmp_path), "Library", "mackerel-agent")
    assert conf.root == root
    assert conf.pidfile == os.path.join(root, "pid")
    assert conf.conffile == os.path.join(root, "mackerel-agent.conf")


def test_load_config_values(tmp_path):
    path = _write(
        tmp_path / "agent.conf",
        """
apikey = "placeholder"
roles = ["service:role"]
display_name = "web"
cloud_platform = "ec2"

[host_status]
on_start = "working"
on_stop = "poweroff"

[filesystems]
ignore = "/dev/ram.*"
use_mountpoint = true

[plugin.metrics.dice]
command = "dice.sh"
custom_identifier = "app.example.com"

[plugin.checks.ssh]
command = ["check-ssh", "--host", "localhost"]
check_interval = "5m"

[plugin.metadata.info]
command = "info.sh"
execution_interval = 10
""",
    )
    conf = load_config(path)
    assert conf.apikey == "placeholder"
    assert conf.roles == ["service:role"]
    assert conf.display_name == "web"
    assert conf.cloud_platform is CloudPlatform.EC2
    assert conf.host_status.on_start == "working"
    assert conf.host_status.on_stop == "poweroff"
    assert conf.filesystems.ignore.pattern == "/dev/ram.*"
    assert conf.filesystems.use_mountpoint is True
    assert conf.disks.ignore is None
    assert conf.metric_plugins["dice"].command.cmd == "dice.sh"
    assert conf.check_plugins["ssh"].command.args == ["check-ssh", "--host", "localhost"]
    assert conf.check_plugins["ssh"].check_interval == 5
    assert conf.metadata_plugins["info"].execution_interval == 10
    assert conf.list_custom_identifiers() == ["app.example.com"]


def test_load_config_fills_defaults(tmp_path):
    path = _write(tmp_path / "agent.conf", 'apikey = "placeholder"\n')
    conf = load_config(path)
    defaults = default_config()
    assert conf.apibase == defaults.apibase
    assert conf.root == defaults.root
    assert conf.pidfile == defaults.pidfile


def test_load_config_keeps_explicit_root(tmp_path):
    root = (tmp_path / "root").as_posix()
    path = _write(tmp_path / "agent.conf", f"root = '{root}'\n")
    assert load_config(path).root == root


def test_load_config_plugin_error_is_prefixed(tmp_path):
    path = _write(tmp_path / "agent.conf", "[plugin.metrics.broken]\ncommand = 1\n")
    with pytest.raises(ConfigError, match=r"^plugin\.metrics\.broken: "):
        load_config(path)


def test_load_config_bad_regexp(tmp_path):
    path = _write(tmp_path / "agent.conf", '[disks]\nignore = "("\n')
    with pytest.raises(ConfigError):
        load_config(path)


def test_load_config_invalid_toml(tmp_path):
    path = _write(tmp_path / "agent.conf", 'dummy = "')
    with pytest.raises(ConfigError):
        load_config(path)


def test_load_config_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(str(tmp_path / "missing.conf"))


def test_include_keeps_roles_and_adds_plugins(tmp_path):
    confd = tmp_path / "conf.d"
    confd.mkdir()
    _write(confd / "a.conf", '[plugin.metrics.extra]\ncommand = "extra.sh"\n')
    pattern = (confd / "*.conf").as_posix()
    path = _write(
        tmp_path / "agent.conf",
        f"""include = '{pattern}'
roles = ["svc:app"]

[plugin.metrics.main]
command = "main.sh"
""",
    )
    conf = load_config(path)
    assert conf.roles == ["svc:app"]
    assert sorted(conf.metric_plugins) == ["extra", "main"]


def test_include_overrides_roles_and_plugins(tmp_path):
    confd = tmp_path / "conf.d"
    confd.mkdir()
    _write(
        confd / "b.conf",
        'roles = ["svc:db"]\n[plugin.metrics.main]\ncommand = "replaced.sh"\n',
    )
    pattern = (confd / "*.conf").as_posix()
    path = _write(
        tmp_path / "agent.conf",
        f"""include = '{pattern}'
roles = ["svc:app"]

[plugin.metrics.main]
command = "main.sh"
""",
    )
    conf = load_config(path)
    assert conf.roles == ["svc:db"]
    assert conf.metric_plugins["main"].command.cmd == "replaced.sh"


def test_include_error_names_file(tmp_path):
    confd = tmp_path / "conf.d"
    confd.mkdir()
    bad = _write(confd / "bad.conf", 'x = "')
    pattern = (confd / "*.conf").as_posix()
    path = _write(tmp_path / "agent.conf", f"include = '{pattern}'\n")
    with pytest.raises(ConfigError, match="while loading included config file") as info:
        load_config(path)
    assert bad in str(info.value)


def test_host_id_storage_round_trip(tmp_path):
    storage = FileSystemHostIDStorage(root=str(tmp_path / "lib"))
    storage.save_host_id("abc123")
    assert storage.host_id_file() == os.path.join(str(tmp_path / "lib"), "id")
    assert storage.load_host_id() == "abc123"
    storage.delete_saved_host_id()
    assert not os.path.exists(storage.host_id_file())


def test_host_id_trailing_newlines_trimmed(tmp_path):
    (tmp_path / "id").write_text("abc123\r\n", encoding="utf-8")
    storage = FileSystemHostIDStorage(root=str(tmp_path))
    assert storage.load_host_id() == "abc123"


def test_host_id_empty_file(tmp_path):
    (tmp_path / "id").write_text("\n", encoding="utf-8")
    with pytest.raises(ConfigError, match="content is empty"):
        FileSystemHostIDStorage(root=str(tmp_path)).load_host_id()


def test_host_id_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        FileSystemHostIDStorage(root=str(tmp_path)).load_host_id()


def test_config_host_id_uses_root(tmp_path):
    conf = Config(root=str(tmp_path))
    conf.save_host_id("xyz")
    assert (tmp_path / "id").read_text(encoding="utf-8") == "xyz"
    assert conf.load_host_id() == "xyz"
    conf.delete_saved_host_id()
    with pytest.raises(FileNotFoundError):
        conf.load_host_id()


def test_list_custom_identifiers_distinct_in_order():
    conf = Config(
        metric_plugins={
            "m1": MetricPlugin(custom_identifier="one.example.com"),
            "m2": MetricPlugin(),
            "m3": MetricPlugin(custom_identifier="one.example.com"),
        },
        check_plugins={
            "c1": CheckPlugin(custom_identifier="two.example.com"),
            "c2": CheckPlugin(custom_identifier="one.example.com"),
        },
    )
    assert conf.list_custom_identifiers() == ["one.example.com", "two.example.com"]


def test_list_custom_identifiers_empty():
    assert Config().list_custom_identifiers() == []