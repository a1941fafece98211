import dataclasses

import pytest

from search_script.config import DEFAULT_SCRIPT_SETTINGS, ScriptSettings, ServerConfig, load_server_config


def test_script_settings_defaults():
    assert [f.name for f in dataclasses.fields(ScriptSettings)] == ["interval", "timeout", "max_line_length"]
    assert (DEFAULT_SCRIPT_SETTINGS.interval, DEFAULT_SCRIPT_SETTINGS.timeout) == (30, 60000)


def test_missing_file_gives_defaults(tmp_path, monkeypatch):
    monkeypatch.delenv("SEARCH_SCRIPT_SERVER_NAME", raising=False)
    assert load_server_config(tmp_path) == ServerConfig()


def test_values_are_read_and_converted(tmp_path, monkeypatch):
    monkeypatch.delenv("SEARCH_SCRIPT_SERVER_NAME", raising=False)
    (tmp_path / "server.toml").write_text('[server]\nname = "lab"\nweight_minimum = 0\n', encoding="utf-8")
    config = load_server_config(tmp_path)
    assert config.name == "lab"
    assert config.weight_minimum == 0.0


def test_environment_overrides_the_name(tmp_path, monkeypatch):
    monkeypatch.setenv("SEARCH_SCRIPT_SERVER_NAME", "from-env")
    (tmp_path / "server.toml").write_text('[server]\nname = "lab"\n', encoding="utf-8")
    assert load_server_config(tmp_path).name == "from-env"


@pytest.mark.parametrize(
    "server_toml",
    [
        '[server]\nweight_minimum = "low"\n',
        '[server]\nadmin_email = ["ops"]\n',
        '[server]\nowner = "ops"\n',
        'server = "lab"\n',
        "[server\n",
    ],
)
def test_invalid_configuration(tmp_path, monkeypatch, server_toml):
    monkeypatch.delenv("SEARCH_SCRIPT_SERVER_NAME", raising=False)
    (tmp_path / "server.toml").write_text(server_toml, encoding="utf-8")
    with pytest.raises(ValueError):
        load_server_config(tmp_path)
