"""
Install Ledger

Persistent record of the plugins currently installed and of every version
they replaced. One instance is the single in-memory authority for a run:
loaded lazily once, mutated in place, and written back only when changed.
"""

import asyncio
import json
import logging
import os
import tempfile
import time
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

from .errors import LedgerFormatError
from .models import InstalledPlugin, PluginRequest, RemovedPlugin

logger = logging.getLogger(__name__)

Current = List[InstalledPlugin]
History = Dict[str, List[RemovedPlugin]]


def now_ms() -> int:
    return int(time.time() * 1000)


class InstallLedger:
    """
    The list of installed plugins plus their replacement history

    `add`/`remove` await nothing after the ledger is loaded, so on a single
    event loop each runs to completion before any other pipeline touches the
    shared lists.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._current: Optional[Current] = None
        self._history: Optional[History] = None
        self._loading: Optional[asyncio.Future] = None
        self._revision = 0
        self._saved_revision = 0
        self._save_lock: Optional[asyncio.Lock] = None

    @property
    def needs_save(self) -> bool:
        return self._revision != self._saved_revision

    def _mark_dirty(self):
        self._revision += 1

    def _read(self) -> Tuple[Current, History]:
        """Read and validate the ledger file (blocking)"""
        if not self.path.exists():
            logger.info(f"No ledger found at {self.path}, starting empty")
            return [], {}

        try:
            with open(self.path, encoding='utf-8') as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise LedgerFormatError(f"Ledger {self.path} is not valid JSON: {e}") from e

        if not isinstance(data, dict):
            raise LedgerFormatError(f"Ledger {self.path} must contain a JSON object")
        if not isinstance(data.get("current"), list):
            raise LedgerFormatError(f"Ledger {self.path}: 'current' must be a list")
        history = data.get("history", {})
        if not isinstance(history, dict):
            raise LedgerFormatError(f"Ledger {self.path}: 'history' must be an object")

        try:
            current = [InstalledPlugin.from_dict(p) for p in data["current"]]
            history = {
                name: [RemovedPlugin.from_dict(p) for p in entries]
                for name, entries in history.items()
            }
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise LedgerFormatError(f"Ledger {self.path} has a malformed entry: {e}") from e

        logger.info(f"Loaded {len(current)} installed plugin(s) from {self.path}")
        return current, history

    async def load(self) -> None:
        """
        Load the ledger once per process; later calls return immediately

        Raises:
            LedgerFormatError: if the file exists but has the wrong shape
        """
        if self._current is not None:
            return
        if self._loading is None:
            self._loading = asyncio.ensure_future(asyncio.to_thread(self._read))
        current, history = await self._loading
        if self._current is None:
            self._current, self._history = current, history

    async def list(self) -> Tuple[InstalledPlugin, ...]:
        await self.load()
        return tuple(self._current)

    async def history(self, name: str) -> Tuple[RemovedPlugin, ...]:
        await self.load()
        return tuple(self._history.get(name, ()))

    async def get(self, request: PluginRequest) -> Optional[InstalledPlugin]:
        await self.load()
        for plugin in self._current:
            if plugin.name == request.name:
                return plugin
        return None

    async def add(self, installed: InstalledPlugin) -> Union[None, bool, RemovedPlugin]:
        """
        Record a freshly installed plugin

        Returns:
            None for a fresh install, False if this version is already
            recorded, otherwise the archived record of the replaced version
        """
        await self.load()
        for index, found in enumerate(self._current):
            if found.name != installed.name:
                continue
            if found.version == installed.version:
                return False
            removed = found.archive(installed.installed)
            self._history.setdefault(installed.name, []).insert(0, removed)
            self._current[index] = installed
            self._mark_dirty()
            return removed

        self._current.append(installed)
        self._mark_dirty()
        return None

    async def remove(self, request: PluginRequest) -> Optional[RemovedPlugin]:
        """
        Drop a plugin from the current set

        Matches on name first, then on the source identifier; a request that
        names a service only matches entries from that service.
        """
        await self.load()

        def service_ok(plugin: InstalledPlugin) -> bool:
            return not request.service or plugin.service == request.service

        index = next((i for i, p in enumerate(self._current)
                      if p.name == request.name and service_ok(p)), None)
        if index is None:
            index = next((i for i, p in enumerate(self._current)
                          if p.plugin == request.plugin and service_ok(p)), None)
        if index is None:
            return None

        found = self._current.pop(index)
        removed = found.archive(now_ms())
        self._history.setdefault(found.name, []).insert(0, removed)
        self._mark_dirty()
        return removed

    def to_dict(self) -> Dict:
        return {
            "current": [p.to_dict() for p in self._current or []],
            "history": {
                name: [p.to_dict() for p in entries]
                for name, entries in (self._history or {}).items()
            },
        }

    def _write(self, payload: Dict) -> None:
        """Atomically replace the ledger file (blocking)"""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            "w",
            encoding="utf-8",
            dir=self.path.parent,
            prefix=f".{self.path.name}.",
            suffix=".tmp",
            delete=False,
        ) as handle:
            json.dump(payload, handle, indent=2)
            handle.flush()
            os.fsync(handle.fileno())
            temp_name = handle.name
        try:
            os.replace(temp_name, self.path)
        except OSError:
            os.unlink(temp_name)
            raise

    async def save(self) -> bool:
        """
        Persist the ledger if it changed since the last successful save

        Concurrent callers queue behind the in-flight write and then find
        nothing left to do. A failed write is logged and leaves the ledger
        dirty for a later retry.

        Returns:
            False only if a write was attempted and failed
        """
        await self.load()
        if self._save_lock is None:
            self._save_lock = asyncio.Lock()

        async with self._save_lock:
            if not self.needs_save:
                return True
            revision = self._revision
            payload = self.to_dict()
            try:
                await asyncio.to_thread(self._write, payload)
            except (OSError, TypeError, ValueError) as e:
                logger.error(f"Error saving log of installed plugins: {e}")
                return False
            self._saved_revision = revision
            logger.debug(f"Ledger saved: {self.path}")
            return True
