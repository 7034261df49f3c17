import asyncio
import logging

import pytest

from plughost_server import build_parser, config_from_args, open_log_file, run_host


def test_defaults(monkeypatch):
    monkeypatch.delenv("PLUGHOST_PLUGINS_DIR", raising=False)
    config = config_from_args(build_parser().parse_args([]))
    assert config.plugins_dir == "Plugins"
    assert config.entry_point == "run.sh"
    assert config.command_prefix == "|"
    assert config.stop_timeout == 5.0


def test_plugins_dir_from_environment(monkeypatch):
    monkeypatch.setenv("PLUGHOST_PLUGINS_DIR", "/srv/plugins")
    args = build_parser().parse_args([])
    assert config_from_args(args).plugins_dir == "/srv/plugins"


def test_cli_overrides():
    args = build_parser().parse_args([
        "--plugins-dir", "extras", "--command-prefix", "!", "--stop-timeout", "1.5",
    ])
    config = config_from_args(args)
    assert config.plugins_dir == "extras"
    assert config.command_prefix == "!"
    assert config.stop_timeout == 1.5


def test_invalid_entry_point_rejected():
    args = build_parser().parse_args(["--entry-point", "bin/run.sh"])
    with pytest.raises(ValueError):
        config_from_args(args)


def test_run_host_returns_when_no_plugins(tmp_path):
    args = build_parser().parse_args(["--plugins-dir", str(tmp_path)])
    asyncio.run(run_host(config_from_args(args), logging.getLogger("test")))


def test_log_file_opened_for_append(tmp_path):
    path = tmp_path / "plughost.log"
    path.write_text("earlier\n")
    stream = open_log_file(str(path))
    assert stream is not None
    stream.write("later\n")
    stream.close()
    assert path.read_text() == "earlier\nlater\n"


def test_log_file_rejects_directory(tmp_path, capsys):
    assert open_log_file(str(tmp_path)) is None
    assert "log file" in capsys.readouterr().err


def test_log_level_is_case_insensitive():
    assert build_parser().parse_args(["--log-level", "debug"]).log_level == "DEBUG"
    with pytest.raises(SystemExit):
        build_parser().parse_args(["--log-level", "chatty"])
