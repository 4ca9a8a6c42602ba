import pytest

from plugin_sync.config_loader import (
    load_config,
    load_context,
    resolve_chown,
    substitute_env_vars,
    validate_config,
)
from plugin_sync.errors import ConfigError


def test_defaults_when_no_file(tmp_path):
    config = load_config(tmp_path / "missing.yaml")
    assert validate_config(config) == (True, [])
    assert config["chown"] is None
    assert config["paths"]["plugin_dir"].endswith("plugins")


def test_yaml_overrides_and_env_vars(tmp_path, monkeypatch):
    monkeypatch.setenv("SERVER_ROOT", "/srv/mc")
    monkeypatch.delenv("PLUGIN_UID", raising=False)
    path = tmp_path / "config.yaml"
    path.write_text(
        "paths:\n"
        "  plugin_dir: ${SERVER_ROOT}/plugins\n"
        "chown:\n"
        "  uid: ${PLUGIN_UID:-1000}\n"
        "  gid: null\n"
    )
    config = load_config(path)

    assert config["paths"]["plugin_dir"] == "/srv/mc/plugins"
    assert config["paths"]["ledger"].endswith("installed-plugins.json")
    assert config["chown"] == {"uid": 1000, "gid": None}
    assert validate_config(config) == (True, [])


def test_invalid_yaml(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("paths: [unclosed\n")
    with pytest.raises(ConfigError):
        load_config(path)


def test_validate_reports_every_problem():
    ok, errors = validate_config({"paths": {"plugin_dir": "", "ledger": "l.json", "requests": 3},
                                  "chown": {"uid": "root"}})
    assert ok is False
    assert len(errors) == 3


def test_substitute_leaves_plain_values():
    assert substitute_env_vars({"a": "plain", "b": ["1", 2]}) == {"a": "plain", "b": ["1", 2]}


def test_context(tmp_path):
    assert load_context(tmp_path / "context.json") == {}

    path = tmp_path / "context.json"
    path.write_text('{"chown": {"uid": 1001, "gid": 1002}}')
    context = load_context(path)
    assert resolve_chown({"chown": {"uid": 1}}, context) == (1001, 1002)


@pytest.mark.parametrize("content", ["[]", '{"chown": {"uid": "x"}}', "{oops"])
def test_bad_context(tmp_path, content):
    path = tmp_path / "context.json"
    path.write_text(content)
    with pytest.raises(ConfigError):
        load_context(path)


def test_resolve_chown_falls_back_to_config():
    assert resolve_chown({"chown": {"gid": 50}}) == (None, 50)
    assert resolve_chown({"chown": None}, {}) is None
