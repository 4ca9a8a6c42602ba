"""Shared fixtures: an in-memory HTTP session and a static plugin source."""

from typing import Dict, Optional

import pytest
import requests
from requests.structures import CaseInsensitiveDict

from plugin_sync.downloader import PluginDownloader
from plugin_sync.ledger import InstallLedger
from plugin_sync.models import PluginDownload, ResolvedVersion


class FakeResponse:
    def __init__(self, status_code: int = 200, body: bytes = b"", json_data=None,
                 headers: Optional[Dict[str, str]] = None, text: Optional[str] = None):
        self.status_code = status_code
        self.body = body
        self._json = json_data
        self.headers = CaseInsensitiveDict(headers or {})
        self.text = text if text is not None else body.decode("utf-8", "replace")
        self.reason = "OK" if status_code < 400 else "Error"

    @property
    def ok(self) -> bool:
        return self.status_code < 400

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} {self.reason}", response=self)

    def json(self):
        if self._json is None:
            raise ValueError("No JSON object could be decoded")
        return self._json

    def iter_content(self, chunk_size: int = 1):
        for i in range(0, len(self.body), chunk_size):
            yield self.body[i:i + chunk_size]

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


class FakeSession:
    """Routes GET/HEAD by exact URL; a routed exception is raised instead"""

    def __init__(self, get=None, head=None):
        self.get_routes = dict(get or {})
        self.head_routes = dict(head or {})
        self.calls = []

    def _route(self, routes, method, url, kwargs):
        self.calls.append((method, url, kwargs))
        if url not in routes:
            raise requests.ConnectionError(f"no route for {url}")
        result = routes[url]
        if isinstance(result, Exception):
            raise result
        return result

    def get(self, url, **kwargs):
        return self._route(self.get_routes, "GET", url, kwargs)

    def head(self, url, **kwargs):
        return self._route(self.head_routes, "HEAD", url, kwargs)


class StaticSource:
    """Plugin source answering from a dict of plugin id -> ResolvedVersion (or exception)"""

    def __init__(self, versions):
        self.versions = dict(versions)
        self.calls = []

    def latest_version(self, plugin, version_range=None):
        self.calls.append((plugin, version_range))
        result = self.versions[plugin]
        if isinstance(result, Exception):
            raise result
        return result


def resolved(name, version, url=None, sha256=None):
    return ResolvedVersion(
        name=name,
        version=version,
        download=PluginDownload(url=url or f"https://example.invalid/{name}-{version}.jar", sha256=sha256),
    )


@pytest.fixture
def plugin_dir(tmp_path):
    path = tmp_path / "plugins"
    path.mkdir()
    return path


@pytest.fixture
def ledger(tmp_path):
    return InstallLedger(tmp_path / "installed-plugins.json")


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def downloader(plugin_dir, session):
    return PluginDownloader(plugin_dir, session=session)
