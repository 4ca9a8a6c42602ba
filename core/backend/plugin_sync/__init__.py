"""
plugin-sync

Keeps game-server plugins at their latest versions from Hangar, Modrinth,
BukkitDev, direct jar URLs and JSON endpoints, with a ledger of what is
installed and what it replaced.

Version: 1.0.0
"""

__version__ = "1.0.0"
__description__ = "Resolve, download and track the latest server plugins"

from .ledger import InstallLedger
from .downloader import PluginDownloader
from .updater import PluginUpdater
from .models import PluginRequest, Service

__all__ = [
    "InstallLedger",
    "PluginDownloader",
    "PluginUpdater",
    "PluginRequest",
    "Service",
]
