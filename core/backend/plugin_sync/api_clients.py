"""
API Clients for Plugin Sources

Handles communication with Hangar, Modrinth, BukkitDev, direct JAR URLs and
arbitrary JSON endpoints. Every source answers the same question: what is the
latest version of this plugin (optionally within a version range), and where
can it be downloaded?
"""

import logging
import re
import threading
from datetime import timezone
from email.utils import parsedate_to_datetime
from html.parser import HTMLParser
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, Tuple, Union
from urllib.parse import parse_qs, urljoin, urlsplit, urlunsplit

import requests

from .config import (
    BUKKIT_BASE,
    HANGAR_API,
    MAX_REDIRECTS,
    MODRINTH_API,
    REQUEST_TIMEOUT,
    USER_AGENT,
)
from .errors import ConfigError, NetworkError, NotFoundError, ParseError
from .models import PluginDownload, ResolvedVersion, Service
from .versions import max_satisfying, pick_variant

logger = logging.getLogger(__name__)


class PluginSource(Protocol):
    """Contract every catalog client satisfies"""

    def latest_version(self, plugin: str, version_range=None) -> ResolvedVersion:
        ...


def new_session() -> requests.Session:
    session = requests.Session()
    session.headers.update({
        'User-Agent': USER_AGENT,
        'Accept': 'application/json',
    })
    return session


class ThreadLocalSession:
    """
    Gives every worker thread its own requests.Session

    Blocking requests run in asyncio.to_thread workers, several at once, and
    a requests.Session is not safe to share across threads.
    """

    def __init__(self, factory: Callable[[], requests.Session] = new_session):
        self._factory = factory
        self._local = threading.local()

    @property
    def session(self) -> requests.Session:
        session = getattr(self._local, "session", None)
        if session is None:
            session = self._local.session = self._factory()
        return session

    def get(self, url: str, **kwargs) -> requests.Response:
        return self.session.get(url, **kwargs)

    def head(self, url: str, **kwargs) -> requests.Response:
        return self.session.head(url, **kwargs)


def short_name(plugin: str) -> str:
    """Last path segment of a source identifier ('owner/slug' -> 'slug')"""
    return plugin.rstrip('/').rsplit('/', 1)[-1]


def _get(session: requests.Session, url: str, **kwargs) -> requests.Response:
    try:
        response = session.get(url, timeout=REQUEST_TIMEOUT, **kwargs)
        response.raise_for_status()
        return response
    except requests.RequestException as e:
        logger.error(f"API request failed: {e}")
        raise NetworkError(f"Request to {url} failed: {e}") from e


def _get_json(session: requests.Session, url: str) -> Any:
    response = _get(session, url)
    try:
        return response.json()
    except ValueError as e:
        raise ParseError(f"Invalid JSON from {url}: {e}") from e


class HangarAPIClient:
    """Client for the Hangar (PaperMC) API"""

    def __init__(self, session: Optional[requests.Session] = None):
        self.session = session or ThreadLocalSession()

    def latest_version(self, plugin: str, version_range=None) -> ResolvedVersion:
        """
        Resolve the latest Hangar version

        Args:
            plugin: 'owner/slug' (or just 'slug')
            version_range: Optional parsed range; newest listed version if None
        """
        slug = short_name(plugin)
        url = f"{HANGAR_API}/projects/{slug}/versions"
        logger.info(f"Checking Hangar for updates: {plugin}")

        data = _get_json(self.session, url)
        if not isinstance(data, dict) or not isinstance(data.get("result"), list):
            raise ParseError(f"Unexpected Hangar response for {plugin}")

        versions = data["result"]
        if not versions:
            raise NotFoundError(f"No versions found for {plugin}")

        item = versions[0]
        if version_range is not None:
            item = max_satisfying(versions, version_range, key=lambda v: str(v.get("name", "")))

        version = item.get("name")
        if not isinstance(version, str):
            raise ParseError(f"Hangar version without a name for {plugin}")

        paper = (item.get("downloads") or {}).get("PAPER") or {}
        download_url = paper.get("downloadUrl") or paper.get("externalUrl")
        if not download_url:
            raise NotFoundError(f"No download url for version {version!r}")

        file_info = paper.get("fileInfo") or {}
        return ResolvedVersion(
            name=slug,
            version=version,
            download=PluginDownload(
                url=download_url,
                sha256=file_info.get("sha256Hash"),
                size=file_info.get("sizeBytes"),
            ),
        )


class ModrinthAPIClient:
    """Client for the Modrinth API"""

    def __init__(self, session: Optional[requests.Session] = None):
        self.session = session or ThreadLocalSession()

    def latest_version(self, plugin: str, version_range=None) -> ResolvedVersion:
        """
        Resolve the latest Modrinth version

        When a version ships several jars (one per platform), the paper build
        is preferred, then spigot, then bukkit, then the primary file.
        """
        slug = short_name(plugin)
        url = f"{MODRINTH_API}/project/{slug}/version"
        logger.info(f"Checking Modrinth for updates: {plugin}")

        versions = _get_json(self.session, url)
        if not isinstance(versions, list):
            raise ParseError(f"Unexpected Modrinth response for {plugin}")
        if not versions:
            raise NotFoundError(f"No versions found for {plugin}")

        item = versions[0]
        if version_range is not None:
            item = max_satisfying(versions, version_range,
                                  key=lambda v: str(v.get("version_number", "")))

        version = item.get("version_number")
        if not isinstance(version, str):
            raise ParseError(f"Modrinth version without a version_number for {plugin}")

        files = [f for f in item.get("files", []) if str(f.get("filename", "")).endswith(".jar")]
        if not files:
            raise NotFoundError(f"No download url for version {version!r}")

        file_info = pick_variant(
            files,
            filename=lambda f: f["filename"],
            primary=lambda f: bool(f.get("primary")),
        )
        hashes = file_info.get("hashes") or {}

        return ResolvedVersion(
            name=slug,
            version=version,
            download=PluginDownload(
                url=file_info["url"],
                sha512=hashes.get("sha512"),
                size=file_info.get("size"),
            ),
        )


class _BukkitFileListParser(HTMLParser):
    """Collects (version text, download href) for each file row of a BukkitDev listing"""

    VOID_TAGS = {"area", "base", "br", "col", "embed", "hr", "img", "input",
                 "link", "meta", "param", "source", "track", "wbr"}

    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self.rows: List[Dict[str, Optional[str]]] = []
        self._depth = 0
        self._row_depth: Optional[int] = None
        self._name_depth: Optional[int] = None
        self._button_depth: Optional[int] = None

    def handle_starttag(self, tag: str, attrs: Sequence[Tuple[str, Optional[str]]]) -> None:
        attrs_map = {k: (v or "") for k, v in attrs}
        classes = attrs_map.get("class", "").split()
        void = tag in self.VOID_TAGS
        if not void:
            self._depth += 1

        if "project-file-list-item" in classes and self._row_depth is None:
            self._row_depth = self._depth
            self.rows.append({"name": "", "href": None})
            return
        if self._row_depth is None:
            return

        row = self.rows[-1]
        if "project-file-name-container" in classes and self._name_depth is None:
            self._name_depth = self._depth
        if "project-file-download-button" in classes and self._button_depth is None:
            self._button_depth = self._depth
            if tag == "a" and row["href"] is None:
                row["href"] = attrs_map.get("href") or None
        elif tag == "a" and self._button_depth is not None and row["href"] is None:
            row["href"] = attrs_map.get("href") or None

    def handle_endtag(self, tag: str) -> None:
        if tag in self.VOID_TAGS:
            return
        if self._name_depth == self._depth:
            self._name_depth = None
        if self._button_depth == self._depth:
            self._button_depth = None
        if self._row_depth == self._depth:
            self._row_depth = None
        self._depth -= 1

    def handle_data(self, data: str) -> None:
        if self._row_depth is not None and self._name_depth is not None:
            self.rows[-1]["name"] += data


class BukkitAPIClient:
    """Client for BukkitDev project file listings (HTML)"""

    def __init__(self, session: Optional[requests.Session] = None):
        self.session = session or ThreadLocalSession()

    @staticmethod
    def normalize_version(text: str) -> str:
        """
        Extract a version token from a file title

        'MyPlugin v1.2.3 (MC 1.20)' -> '1.2.3'
        """
        version = re.sub(r'\(.*$', '', text, flags=re.S).strip()
        version = re.sub(r'^\D+', '', version)
        return re.sub(r'[^0-9.]+$', '-', version)

    def latest_version(self, plugin: str, version_range=None) -> ResolvedVersion:
        slug = short_name(plugin)
        url = f"{BUKKIT_BASE}/projects/{plugin}/files"
        logger.info(f"Checking BukkitDev for updates: {plugin}")

        parser = _BukkitFileListParser()
        parser.feed(_get(self.session, url).text)
        parser.close()

        if not parser.rows:
            raise ParseError(f"Failed to find latest version of {plugin}")

        rows = []
        for row in parser.rows:
            title = (row["name"] or "").strip()
            rows.append((self.normalize_version(title) if title else "", row["href"]))

        version, href = rows[0]
        if version_range is not None:
            version, href = max_satisfying(rows, version_range, key=lambda r: r[0])

        if not version:
            raise ParseError(f"Failed to find version of {plugin}")
        if not href:
            raise ParseError(f"Failed to find download url of {plugin} {version}")
        if not href.startswith("https:"):
            href = BUKKIT_BASE + href

        return ResolvedVersion(name=slug, version=version, download=PluginDownload(url=href))


class JarClient:
    """Direct JAR URL; the version is the artifact's Last-Modified time"""

    def __init__(self, session: Optional[requests.Session] = None):
        self.session = session or ThreadLocalSession()

    @staticmethod
    def version_from_last_modified(value: Optional[str]) -> str:
        """
        Compact UTC timestamp, e.g. 'Tue, 02 Jan 2024 03:04:05 GMT' -> '20240102T030405'

        Raises:
            ParseError: if the header is missing or unparseable
        """
        if not value:
            raise ParseError("Direct JAR service can only be used if last-modified header is set")
        try:
            parsed = parsedate_to_datetime(value)
        except (TypeError, ValueError, IndexError) as e:
            raise ParseError(f"Failed to parse last-modified header: {value!r}") from e
        if parsed is None:
            raise ParseError(f"Failed to parse last-modified header: {value!r}")
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.astimezone(timezone.utc).strftime("%Y%m%dT%H%M%S")

    def _head(self, url: str) -> requests.Response:
        try:
            return self.session.head(url, allow_redirects=False, timeout=REQUEST_TIMEOUT)
        except requests.RequestException as e:
            raise NetworkError(f"Request to {url} failed: {e}") from e

    def latest_version(self, plugin: str, version_range=None) -> ResolvedVersion:
        if version_range is not None:
            logger.warning(f"Version ranges are ignored for direct JAR urls: {plugin}")

        url = plugin
        response = self._head(url)
        hops = 0
        while 300 <= response.status_code < 400:
            location = response.headers.get("location")
            if not location:
                raise NetworkError(f"Redirect without location from {url}")
            hops += 1
            if hops > MAX_REDIRECTS:
                raise NetworkError(f"Too many redirects fetching {plugin}")
            url = urljoin(url, location)
            response = self._head(url)

        if not response.ok:
            raise NetworkError(f"Failed to fetch {url}: {response.status_code} {response.reason}")

        version = self.version_from_last_modified(response.headers.get("last-modified"))
        name = re.sub(r'\.jar$', '', short_name(urlsplit(plugin).path or plugin))

        return ResolvedVersion(name=name, version=version, download=PluginDownload(url=url))


class JsonClient:
    """
    Arbitrary JSON endpoint described by a URL fragment

    'https://host/api#dwn=/latest/url&ver=/latest/version&nam=MyPlugin'

    Each of dwn/ver/nam is either a literal value or, when it starts with '/',
    a key path into the fetched document.
    """

    FIELDS = ("dwn", "ver", "nam")

    def __init__(self, session: Optional[requests.Session] = None):
        self.session = session or ThreadLocalSession()

    @classmethod
    def parse_target(cls, plugin: str) -> Tuple[str, Dict[str, str]]:
        parts = urlsplit(plugin)
        params = {k: v[0] for k, v in parse_qs(parts.fragment).items() if v}
        missing = [f for f in cls.FIELDS if not params.get(f)]
        if missing:
            raise ParseError(f"Invalid url: {plugin!r} (missing {', '.join(missing)})")
        url = urlunsplit((parts.scheme, parts.netloc, parts.path, parts.query, ""))
        return url, params

    @staticmethod
    def resolve_path(document: Any, path: str) -> Any:
        if not path.startswith("/"):
            return path
        value = document
        for key in path[1:].split("/"):
            if isinstance(value, dict) and key in value:
                value = value[key]
            elif isinstance(value, list) and key.isdigit() and int(key) < len(value):
                value = value[int(key)]
            else:
                raise ParseError(f"Path {path!r} not found in document (at {key!r})")
        return value

    def latest_version(self, plugin: str, version_range=None) -> ResolvedVersion:
        if version_range is not None:
            logger.warning(f"Version ranges are ignored for json sources: {plugin}")

        url, params = self.parse_target(plugin)
        logger.info(f"Checking JSON endpoint for updates: {url}")
        document = _get_json(self.session, url)

        version = self.resolve_path(document, params["ver"])
        if not isinstance(version, str):
            raise ParseError(f"Invalid version: {version!r}")
        download = self.resolve_path(document, params["dwn"])
        if not isinstance(download, str):
            raise ParseError(f"Invalid download url: {download!r}")
        name = self.resolve_path(document, params["nam"])
        if not isinstance(name, str):
            raise ParseError(f"Invalid name: {name!r}")

        return ResolvedVersion(name=name, version=version, download=PluginDownload(url=download))


def default_sources(session: Optional[requests.Session] = None) -> Dict[Service, PluginSource]:
    """Build the service -> source table, optionally sharing one session"""
    session = session or ThreadLocalSession()
    return {
        Service.HANGAR: HangarAPIClient(session),
        Service.MODRINTH: ModrinthAPIClient(session),
        Service.BUKKIT: BukkitAPIClient(session),
        Service.JAR: JarClient(session),
        Service.JSON: JsonClient(session),
    }


def get_source(sources: Dict[Service, PluginSource],
               service: Union[str, Service]) -> PluginSource:
    """
    Look up the source for a service tag

    Raises:
        ConfigError: if the tag names no known service
    """
    source = sources.get(service) if isinstance(service, Service) else None
    if source is None:
        raise ConfigError(f"Unknown service: {service}")
    return source
