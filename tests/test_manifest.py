import json

import pytest

from plugin_sync.errors import ParseError
from plugin_sync.manifest import drop_requests, load_requests, merge_requests
from plugin_sync.models import PluginRequest, Service


@pytest.fixture
def requests_file(tmp_path):
    return tmp_path / "plugins.json"


def test_missing_file_is_empty(requests_file):
    assert load_requests(requests_file) == []


def test_load_coerces_services(requests_file):
    requests_file.write_text(json.dumps([
        {"name": "foo", "service": "Hangar", "plugin": "Owner/foo", "version": "^1"},
        {"name": "bar", "service": "Spiget", "plugin": "bar"},
    ]))
    foo, bar = load_requests(requests_file)

    assert foo.service is Service.HANGAR
    assert foo.version == "^1"
    assert bar.service == "Spiget"
    assert bar.version is None


@pytest.mark.parametrize("content", ["{broken", '{"name": "foo"}', '[{"service": "Hangar"}]'])
def test_invalid_list_raises(requests_file, content):
    requests_file.write_text(content)
    with pytest.raises(ParseError):
        load_requests(requests_file)


def test_merge_replaces_by_name_and_appends(requests_file):
    merge_requests(requests_file, [PluginRequest("foo", Service.HANGAR, "Owner/foo")])
    merged = merge_requests(requests_file, [
        PluginRequest("foo", Service.HANGAR, "Owner/foo", "^2"),
        PluginRequest("bar", Service.BUKKIT, "bar"),
    ])

    assert [(r.name, r.version) for r in merged] == [("foo", "^2"), ("bar", None)]
    saved = json.loads(requests_file.read_text())
    assert saved == [
        {"name": "foo", "service": "Hangar", "plugin": "Owner/foo", "version": "^2"},
        {"name": "bar", "service": "Bukkit", "plugin": "bar"},
    ]


def test_drop_by_name_or_plugin(requests_file):
    merge_requests(requests_file, [
        PluginRequest("foo", Service.HANGAR, "Owner/foo"),
        PluginRequest("bar", Service.BUKKIT, "bar"),
        PluginRequest("baz", Service.MODRINTH, "baz"),
    ])

    kept = drop_requests(requests_file, [
        PluginRequest("foo", "", "foo"),
        PluginRequest("bar", Service.MODRINTH, "bar"),
    ])

    assert [r.name for r in kept] == ["bar", "baz"]
    assert [r.name for r in load_requests(requests_file)] == ["bar", "baz"]
