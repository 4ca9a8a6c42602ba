"""
Plugin Shorthand

Turns command-line plugin references into PluginRequests:

    https://hangar.papermc.io/Owner/Slug       hangar:Owner/Slug[@range]
    https://dev.bukkit.org/projects/slug       [bukkit:]slug[@range]
    https://modrinth.com/plugin/slug           modrinth:slug[@range]
"""

import re

from .errors import ParseError
from .models import PluginRequest, Service
from .versions import parse_range

URL_PREFIXES = (
    ("https://hangar.papermc.io/", Service.HANGAR, re.compile(r'^([^/]+/[^/]+)')),
    ("https://dev.bukkit.org/projects/", Service.BUKKIT, re.compile(r'^([^/]+)')),
    ("https://modrinth.com/plugin/", Service.MODRINTH, re.compile(r'^([^/]+)')),
)

SLUG = r'[a-zA-Z0-9_-]+'
PATTERNS = (
    (re.compile(rf'^(?:hangar:)?(?P<id>{SLUG}/{SLUG})(?:@(?P<ver>.+))?$'), Service.HANGAR),
    (re.compile(rf'^modrinth:(?P<id>{SLUG})(?:@(?P<ver>.+))?$'), Service.MODRINTH),
    (re.compile(rf'^bukkit:(?P<id>{SLUG})(?:@(?P<ver>.+))?$'), Service.BUKKIT),
)
BARE = re.compile(rf'^(?P<id>{SLUG})(?:@(?P<ver>.+))?$')


def _request(service, identifier: str, version=None) -> PluginRequest:
    # BukkitDev slugs are case-insensitive and served lower-case
    if service == Service.BUKKIT:
        identifier = identifier.lower()
    if version:
        parse_range(version)
    name = identifier.rsplit('/', 1)[-1]
    return PluginRequest(name=name, service=service, plugin=identifier, version=version or None)


def parse_shorthand(arg: str, for_removal: bool = False) -> PluginRequest:
    """
    Parse one plugin reference

    Args:
        arg: User-supplied reference
        for_removal: A bare name then means "whatever is installed under this
            name" (no service), and version constraints are not allowed

    Raises:
        ParseError: if the reference matches no known form
    """
    arg = arg.strip()

    for prefix, service, pattern in URL_PREFIXES:
        if arg.startswith(prefix):
            match = pattern.match(arg[len(prefix):])
            if not match:
                raise ParseError(f"Unknown plugin format: {arg}")
            return _request(service, match.group(1))

    for pattern, service in PATTERNS:
        match = pattern.match(arg)
        if match:
            if for_removal and match.group("ver"):
                raise ParseError(f"Version constraints are not allowed here: {arg}")
            return _request(service, match.group("id"), match.group("ver"))

    match = BARE.match(arg)
    if match:
        if for_removal:
            if match.group("ver"):
                raise ParseError(f"Version constraints are not allowed here: {arg}")
            identifier = match.group("id")
            return PluginRequest(name=identifier, service="", plugin=identifier)
        return _request(Service.BUKKIT, match.group("id"), match.group("ver"))

    raise ParseError(f"Unknown plugin format: {arg}")
