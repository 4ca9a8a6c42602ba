"""
Configuration for plugin-sync

Defines catalog endpoints and default on-disk locations.
"""

from pathlib import Path

# Base directory - the server root the tool is run from
BASE_DIR = Path.cwd()
PLUGINS_DIR = BASE_DIR / "plugins"
LEDGER_FILE = BASE_DIR / "installed-plugins.json"
REQUESTS_FILE = BASE_DIR / "plugins.json"
CONTEXT_FILE = BASE_DIR / "context.json"
LOG_DIR = BASE_DIR / "logs"

# Superseded artifacts land in a sibling directory: plugins -> plugins.old
ARCHIVE_SUFFIX = ".old"

# API Endpoints
HANGAR_API = "https://hangar.papermc.io/api/v1"
MODRINTH_API = "https://api.modrinth.com/v2"
BUKKIT_BASE = "https://dev.bukkit.org"

# HTTP settings
USER_AGENT = "plugin-sync/1.0.0"
REQUEST_TIMEOUT = 10
DOWNLOAD_TIMEOUT = 30
DOWNLOAD_CHUNK_SIZE = 65536
MAX_REDIRECTS = 10

# Temporary download files (created inside the plugin directory)
TEMP_PREFIX = ".mcp-"
TEMP_SUFFIX = ".dwn.tmp"
