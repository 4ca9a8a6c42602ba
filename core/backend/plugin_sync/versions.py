"""
Version Resolution

Picks the winning version among a catalog's candidates, and the winning
artifact among a version's build variants.
"""

import functools
import logging
from typing import Callable, Iterable, List, Optional, Sequence, Tuple, TypeVar

from nodesemver import make_range, make_semver

from .errors import NotFoundError, ParseError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Variant names in order of preference; a primary-flagged file comes next,
# then a file with no variant suffix at all, then the first listed.
VARIANT_PRIORITY = ("paper", "spigot", "bukkit")


def parse_range(expression: str):
    """
    Parse an npm-style semantic version range (^1, ~1.2, >=1.0 <2, 1.x)

    Raises:
        ParseError: if the expression is not a valid range
    """
    try:
        return make_range(expression, loose=False)
    except (ValueError, TypeError) as e:
        raise ParseError(f"Invalid version range {expression!r}: {e}") from e


def parse_version(version: str):
    """Parse a strict semantic version, or return None if it is not one"""
    try:
        return make_semver(version, loose=False)
    except (ValueError, TypeError):
        return None


def max_satisfying(candidates: Iterable[T], version_range,
                   key: Callable[[T], str] = str) -> T:
    """
    Return the candidate with the highest version satisfying `version_range`

    Candidates whose version string is not valid semver are skipped.

    Args:
        candidates: Catalog entries (or plain version strings)
        version_range: Range from parse_range()
        key: Extracts the version string from a candidate

    Returns:
        The winning candidate itself (not just its version)

    Raises:
        NotFoundError: if no candidate satisfies the range
    """
    matching = []
    seen = []
    for candidate in candidates:
        version = key(candidate)
        parsed = parse_version(version)
        if parsed is None:
            logger.debug(f"Ignoring non-semver version: {version}")
            continue
        seen.append(version)
        if version_range.test(parsed):
            matching.append((parsed, candidate))

    if not matching:
        raise NotFoundError(
            f"No matching versions found: {version_range} in {seen}"
        )

    best = max(matching, key=functools.cmp_to_key(lambda a, b: a[0].compare(b[0])))
    return best[1]


def common_affixes(names: Sequence[str]) -> Tuple[str, str]:
    """
    Longest common literal prefix and suffix of all names

    The suffix never overlaps the prefix within the shortest name.
    """
    if not names:
        return "", ""

    prefix = names[0]
    suffix = names[0]
    for name in names[1:]:
        i = 0
        while i < len(prefix) and i < len(name) and prefix[i] == name[i]:
            i += 1
        prefix = prefix[:i]

        j = 0
        while j < len(suffix) and j < len(name) and suffix[-1 - j] == name[-1 - j]:
            j += 1
        suffix = suffix[len(suffix) - j:]

    shortest = min(len(name) for name in names)
    overlap = len(prefix) + len(suffix) - shortest
    if overlap > 0:
        suffix = suffix[overlap:]
    return prefix, suffix


def variant_names(names: Sequence[str]) -> List[str]:
    """Lower-cased text between the common prefix and suffix of each name"""
    prefix, suffix = common_affixes(names)
    return [name[len(prefix):len(name) - len(suffix)].lower() for name in names]


def pick_variant(files: Sequence[T],
                 filename: Callable[[T], str],
                 primary: Optional[Callable[[T], bool]] = None) -> T:
    """
    Choose one artifact among several builds of the same version

    Preference: paper > spigot > bukkit > primary-flagged > no variant > first.

    Raises:
        NotFoundError: if `files` is empty
    """
    if not files:
        raise NotFoundError("No artifacts to choose from")
    if len(files) == 1:
        return files[0]

    variants = variant_names([filename(f) for f in files])

    for wanted in VARIANT_PRIORITY:
        if wanted in variants:
            return files[variants.index(wanted)]

    if primary is not None:
        for f in files:
            if primary(f):
                return f

    if "" in variants:
        return files[variants.index("")]

    return files[0]
