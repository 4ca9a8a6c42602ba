"""
Plugin Records

Requests, resolved versions and ledger entries, with their JSON shapes.
"""

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, Optional, Union

from .versions import parse_range


class Service(str, Enum):
    """Remote catalogs a plugin can be sourced from"""

    HANGAR = "Hangar"
    MODRINTH = "Modrinth"
    BUKKIT = "Bukkit"
    JAR = "jar"
    JSON = "json"


def coerce_service(value: Union[str, "Service"]) -> Union[str, "Service"]:
    """
    Map a raw tag onto a Service member, leaving unknown tags as strings

    Unknown tags are kept so the failure surfaces in that plugin's own
    pipeline instead of while loading the request list.
    """
    if isinstance(value, Service):
        return value
    try:
        return Service(value)
    except ValueError:
        return value


def service_tag(value: Union[str, Service, None]) -> str:
    if isinstance(value, Service):
        return value.value
    return value or ""


@dataclass
class PluginRequest:
    """A plugin the user wants installed and kept up to date"""

    name: str
    service: Union[str, Service]
    plugin: str
    version: Optional[str] = None

    def __post_init__(self):
        self.service = coerce_service(self.service)

    @property
    def version_range(self):
        """Parsed form of `version`, or None when no constraint was given"""
        if not self.version:
            return None
        return parse_range(self.version)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "name": self.name,
            "service": service_tag(self.service),
            "plugin": self.plugin,
        }
        if self.version:
            data["version"] = self.version
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PluginRequest":
        return cls(
            name=data["name"],
            service=data.get("service", ""),
            plugin=data.get("plugin", data["name"]),
            version=data.get("version") or None,
        )


@dataclass(frozen=True)
class PluginDownload:
    url: str
    sha256: Optional[str] = None
    sha512: Optional[str] = None
    size: Optional[int] = None


@dataclass(frozen=True)
class ResolvedVersion:
    """The version a source considers latest, with where to fetch it"""

    name: str
    version: str
    download: PluginDownload


@dataclass
class InstalledPlugin:
    """A plugin artifact currently live in the plugin directory"""

    name: str
    service: Union[str, Service]
    plugin: str
    version: str
    url: str
    sha256: str
    size: int
    installed: int  # epoch ms

    def __post_init__(self):
        self.service = coerce_service(self.service)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["service"] = service_tag(self.service)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "InstalledPlugin":
        return cls(
            name=data["name"],
            service=data.get("service", ""),
            plugin=data.get("plugin", data["name"]),
            version=str(data.get("version", "")),
            url=data.get("url", ""),
            sha256=data.get("sha256", ""),
            size=int(data.get("size", 0)),
            installed=int(data.get("installed", 0)),
        )

    @classmethod
    def from_download(cls, request: PluginRequest, resolved: ResolvedVersion,
                      sha256: str, size: int, installed: int) -> "InstalledPlugin":
        return cls(
            name=request.name,
            service=request.service,
            plugin=request.plugin,
            version=resolved.version,
            url=resolved.download.url,
            sha256=sha256,
            size=size,
            installed=installed,
        )

    def as_request(self) -> PluginRequest:
        return PluginRequest(name=self.name, service=self.service, plugin=self.plugin)

    def archive(self, removed: int) -> "RemovedPlugin":
        fields = asdict(self)
        fields.pop("removed", None)
        return RemovedPlugin(**fields, removed=removed)

    @property
    def filename(self) -> str:
        return f"{self.name}-{self.version}.jar"


@dataclass
class RemovedPlugin(InstalledPlugin):
    """An InstalledPlugin that was replaced or removed"""

    removed: int = field(default=0)  # epoch ms

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RemovedPlugin":
        base = InstalledPlugin.from_dict(data)
        return base.archive(int(data.get("removed", 0)))
