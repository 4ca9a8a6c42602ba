"""Tests for the install ledger: mutation semantics, loading and save coalescing."""

import asyncio
import json

import pytest

from plugin_sync.errors import LedgerFormatError
from plugin_sync.ledger import InstallLedger
from plugin_sync.models import InstalledPlugin, PluginRequest, RemovedPlugin, Service


def installed(name="foo", version="1.0.0", installed_at=1000, service=Service.HANGAR, plugin=None):
    return InstalledPlugin(
        name=name,
        service=service,
        plugin=plugin or f"Owner/{name}",
        version=version,
        url=f"https://example.invalid/{name}-{version}.jar",
        sha256="ab" * 32,
        size=42,
        installed=installed_at,
    )


@pytest.mark.asyncio
async def test_missing_file_loads_empty(ledger):
    assert await ledger.list() == ()
    assert await ledger.history("foo") == ()
    assert not ledger.needs_save


@pytest.mark.asyncio
async def test_add_fresh_then_same_version(ledger):
    assert await ledger.add(installed()) is None
    assert ledger.needs_save

    await ledger.save()
    assert not ledger.needs_save

    assert await ledger.add(installed(installed_at=2000)) is False
    assert not ledger.needs_save
    assert [p.installed for p in await ledger.list()] == [1000]


@pytest.mark.asyncio
async def test_replacements_build_history_newest_first(ledger):
    await ledger.add(installed(version="1.0.0", installed_at=1000))

    removed = await ledger.add(installed(version="1.1.0", installed_at=2000))
    assert isinstance(removed, RemovedPlugin)
    assert removed.version == "1.0.0"
    assert removed.removed == 2000

    await ledger.add(installed(version="1.2.0", installed_at=3000))

    current = await ledger.list()
    assert len(current) == 1
    assert current[0].version == "1.2.0"
    assert [p.version for p in await ledger.history("foo")] == ["1.1.0", "1.0.0"]


@pytest.mark.asyncio
async def test_add_keeps_other_plugins(ledger):
    await ledger.add(installed(name="foo"))
    await ledger.add(installed(name="bar"))
    await ledger.add(installed(name="foo", version="2.0.0"))

    assert [(p.name, p.version) for p in await ledger.list()] == [("foo", "2.0.0"), ("bar", "1.0.0")]
    assert await ledger.history("bar") == ()


@pytest.mark.asyncio
async def test_remove_by_name(ledger):
    await ledger.add(installed())
    removed = await ledger.remove(PluginRequest(name="foo", service="", plugin="foo"))

    assert removed.version == "1.0.0"
    assert removed.removed > 0
    assert await ledger.list() == ()
    assert (await ledger.history("foo"))[0] == removed


@pytest.mark.asyncio
async def test_remove_by_plugin_identifier(ledger):
    await ledger.add(installed(name="foo", plugin="Owner/FooPlugin"))
    removed = await ledger.remove(PluginRequest(name="FooPlugin", service=Service.HANGAR,
                                                plugin="Owner/FooPlugin"))
    assert removed is not None
    assert removed.name == "foo"


@pytest.mark.asyncio
async def test_remove_respects_service(ledger):
    await ledger.add(installed(name="foo", service=Service.HANGAR))
    removed = await ledger.remove(PluginRequest(name="foo", service=Service.BUKKIT, plugin="foo"))
    assert removed is None
    assert len(await ledger.list()) == 1


@pytest.mark.asyncio
async def test_remove_unknown_returns_none(ledger):
    assert await ledger.remove(PluginRequest(name="nope", service="", plugin="nope")) is None
    assert not ledger.needs_save


@pytest.mark.asyncio
async def test_save_and_reload(tmp_path, ledger):
    await ledger.add(installed(version="1.0.0", installed_at=1000))
    await ledger.add(installed(version="1.1.0", installed_at=2000))
    assert await ledger.save() is True

    data = json.loads(ledger.path.read_text())
    assert data["current"][0]["version"] == "1.1.0"
    assert data["current"][0]["service"] == "Hangar"
    assert data["history"]["foo"][0]["removed"] == 2000

    reloaded = InstallLedger(ledger.path)
    current = await reloaded.list()
    assert current[0] == (await ledger.list())[0]
    assert (await reloaded.history("foo"))[0].version == "1.0.0"
    assert list(tmp_path.glob("*.tmp")) == []


@pytest.mark.asyncio
@pytest.mark.parametrize("content", [
    "not json",
    "[]",
    '{"history": {}}',
    '{"current": {}, "history": {}}',
    '{"current": [], "history": []}',
    '{"current": [{"version": "1"}], "history": {}}',
])
async def test_malformed_file_raises(ledger, content):
    ledger.path.write_text(content)
    with pytest.raises(LedgerFormatError):
        await ledger.load()


@pytest.mark.asyncio
async def test_load_happens_once(ledger):
    ledger.path.write_text('{"current": [], "history": {}}')
    await asyncio.gather(ledger.load(), ledger.load(), ledger.list())

    ledger.path.write_text("garbage")
    await ledger.load()
    assert await ledger.list() == ()


@pytest.mark.asyncio
async def test_concurrent_saves_coalesce(ledger):
    writes = []
    original = ledger._write

    def counting_write(payload):
        writes.append(payload)
        original(payload)

    ledger._write = counting_write
    await ledger.add(installed())

    results = await asyncio.gather(ledger.save(), ledger.save(), ledger.save())

    assert results == [True, True, True]
    assert len(writes) == 1
    assert not ledger.needs_save


@pytest.mark.asyncio
async def test_save_without_changes_writes_nothing(ledger):
    assert await ledger.save() is True
    assert not ledger.path.exists()


@pytest.mark.asyncio
async def test_failed_save_stays_dirty(ledger):
    def failing_write(payload):
        raise OSError("disk full")

    await ledger.add(installed())
    ledger._write = failing_write

    assert await ledger.save() is False
    assert ledger.needs_save

    del ledger._write
    assert await ledger.save() is True
    assert not ledger.needs_save


@pytest.mark.asyncio
async def test_concurrent_adds_of_one_name_keep_a_single_entry(ledger):
    results = await asyncio.gather(
        ledger.add(installed(version="1.0.0", installed_at=1000)),
        ledger.add(installed(version="1.1.0", installed_at=2000)),
        ledger.add(installed(version="1.0.0", installed_at=3000)),
    )

    assert results[0] is None
    assert [r.version for r in results[1:]] == ["1.0.0", "1.1.0"]

    current = await ledger.list()
    assert [(p.name, p.version, p.installed) for p in current] == [("foo", "1.0.0", 3000)]
    assert [(p.version, p.removed) for p in await ledger.history("foo")] == [
        ("1.1.0", 3000),
        ("1.0.0", 2000),
    ]
