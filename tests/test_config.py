from pathlib import Path

import pytest

from manticore_backup.config import (
    DEFAULT_HOST,
    DEFAULT_PORT,
    Directive,
    is_data_dir_valid,
    load_config,
    parse_config,
)
from manticore_backup.errors import ConfigError

CONF_PATH = Path("/etc/manticoresearch/manticore.conf")


def _parse(text, windows=False):
    return parse_config(text, CONF_PATH, windows=windows)


class TestParseConfig:
    def test_defaults_without_http_listen(self):
        config = _parse("listen = 9312\nlisten = 9306:mysql\ndata_dir = /var/lib/manticore\n")

        assert config.host == DEFAULT_HOST
        assert config.port == DEFAULT_PORT
        assert config.data_dir == "/var/lib/manticore"
        assert config.path == CONF_PATH

    def test_host_and_port_from_http_listen(self):
        config = _parse("listen = 10.0.0.5:19308:http\ndata_dir = /data\n")

        assert config.host == "10.0.0.5"
        assert config.port == 19308
        assert config.endpoint == "10.0.0.5:19308"

    def test_port_only_listen_keeps_default_host(self):
        config = _parse("listen = 9400:http\ndata_dir = /data\n")

        assert config.host == "127.0.0.1"
        assert config.port == 9400

    def test_directives_are_case_insensitive_and_last_wins(self):
        config = _parse(
            "searchd {\n"
            "  DATA_DIR = /first\n"
            "  Data_Dir = /second\n"
            "  Sphinxql_State = /var/lib/manticore/state.sql\n"
            "}\n"
        )

        assert config.data_dir == "/second"
        assert config.sphinxql_state == "/var/lib/manticore/state.sql"

    def test_schema_path_is_derived(self):
        config = _parse("data_dir = /var/lib/manticore\n")

        assert config.schema_path == "/var/lib/manticore/manticore.json"

    def test_optional_paths_stay_unset(self):
        config = _parse("data_dir = /data\n")

        assert config.sphinxql_state is None
        assert config.lemmatizer_base is None
        assert config.plugin_dir is None

    def test_missing_data_dir(self):
        with pytest.raises(ConfigError, match="data_dir"):
            _parse("listen = 9308:http\n")

    @pytest.mark.parametrize("data_dir", ["var/lib/manticore", "./data", "C:\\data"])
    def test_relative_data_dir_rejected_on_posix(self, data_dir):
        with pytest.raises(ConfigError, match="absolute path"):
            _parse(f"data_dir = {data_dir}\n")

    def test_windows_data_dir(self):
        config = _parse("data_dir = C:\\manticore\\data\n", windows=True)

        assert config.data_dir == "C:\\manticore\\data"

        with pytest.raises(ConfigError):
            _parse("data_dir = /var/lib/manticore\n", windows=True)

    def test_invalid_listen_port(self):
        with pytest.raises(ConfigError, match="listen"):
            _parse("listen = host:notaport:http\ndata_dir = /data\n")

    def test_config_is_immutable(self):
        config = _parse("data_dir = /data\n")

        with pytest.raises(Exception):
            config.port = 1


class TestStatePaths:
    def test_plugin_dir_included_only_when_present(self, tmp_path):
        plugin_dir = tmp_path / "plugins"
        text = (
            "data_dir = /data\n"
            "sphinxql_state = /data/state.sql\n"
            "lemmatizer_base = /usr/share/manticore\n"
            f"plugin_dir = {plugin_dir}\n"
        )
        config = _parse(text)

        assert config.get_state_paths() == ["/data/state.sql", "/usr/share/manticore"]

        plugin_dir.mkdir()
        assert config.get_state_paths() == [
            "/data/state.sql",
            "/usr/share/manticore",
            str(plugin_dir),
        ]

    def test_no_optional_paths(self):
        assert _parse("data_dir = /data\n").get_state_paths() == []


def test_is_data_dir_valid():
    assert is_data_dir_valid("/data", windows=False)
    assert not is_data_dir_valid("data", windows=False)
    assert is_data_dir_valid("d:\\data", windows=True)
    assert not is_data_dir_valid("\\data", windows=True)


def test_directive_enumeration():
    assert {d.value for d in Directive} == {
        "listen",
        "data_dir",
        "lemmatizer_base",
        "sphinxql_state",
        "plugin_dir",
    }


def test_load_config_missing_file(tmp_path):
    with pytest.raises(ConfigError, match="Failed to read config file"):
        load_config(tmp_path / "missing.conf")


def test_load_config_resolves_path(tmp_path, searchd_conf):
    link = tmp_path / "link.conf"
    link.symlink_to(searchd_conf)

    config = load_config(link)

    assert config.path == searchd_conf
