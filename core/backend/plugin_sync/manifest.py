"""
Plugin Request List

The persisted list of plugins to keep updated (plugins.json). `add` merges
into it after a successful run; `update` reads it back.
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Iterable, List, Union

from .errors import ParseError
from .models import PluginRequest

logger = logging.getLogger(__name__)


def load_requests(path: Union[str, Path]) -> List[PluginRequest]:
    """
    Load plugins.json

    Returns:
        The saved requests, or an empty list if the file does not exist

    Raises:
        ParseError: if the file is not a JSON list of requests
    """
    path = Path(path)
    if not path.exists():
        logger.info(f"No plugin list found at {path}")
        return []

    try:
        with open(path, encoding='utf-8') as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ParseError(f"Invalid plugin list {path}: {e}") from e

    if not isinstance(data, list):
        raise ParseError(f"Invalid plugin list {path}: expected a JSON list")

    try:
        return [PluginRequest.from_dict(item) for item in data]
    except (KeyError, TypeError, AttributeError) as e:
        raise ParseError(f"Invalid entry in plugin list {path}: {e}") from e


def save_requests(path: Union[str, Path], requests: Iterable[PluginRequest]) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile("w", encoding="utf-8", dir=path.parent,
                                     suffix=".tmp", delete=False) as handle:
        json.dump([r.to_dict() for r in requests], handle, indent=2)
        temp_name = handle.name
    os.replace(temp_name, path)
    logger.info(f"Plugin list saved: {path}")


def merge_requests(path: Union[str, Path], requests: Iterable[PluginRequest]) -> List[PluginRequest]:
    """Replace saved requests with the same name, append the rest, and save"""
    merged = load_requests(path)
    for request in requests:
        for index, existing in enumerate(merged):
            if existing.name == request.name:
                merged[index] = request
                break
        else:
            merged.append(request)
    save_requests(path, merged)
    return merged


def drop_requests(path: Union[str, Path], requests: Iterable[PluginRequest]) -> List[PluginRequest]:
    """Remove saved requests matching by name or source identifier, and save"""
    saved = load_requests(path)
    requests = list(requests)
    kept = [
        existing for existing in saved
        if not any(
            (existing.name == r.name or existing.plugin == r.plugin)
            and (not r.service or existing.service == r.service)
            for r in requests
        )
    ]
    if len(kept) != len(saved):
        save_requests(path, kept)
    return kept
