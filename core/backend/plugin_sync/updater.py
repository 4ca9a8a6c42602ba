"""
Main Update Orchestrator

Coordinates plugin resolution, download and ledger updates. Every request
runs as its own pipeline; a failure is reported for that plugin alone and
never reaches its siblings.
"""

import asyncio
import json
import logging
from typing import Dict, Iterable, List, Optional, Set, Tuple

from .api_clients import PluginSource, default_sources, get_source
from .downloader import PluginDownloader
from .errors import PluginSyncError
from .ledger import InstallLedger
from .models import InstalledPlugin, PluginRequest, ResolvedVersion, Service, service_tag

logger = logging.getLogger(__name__)


class PluginUpdater:
    """Main plugin updater orchestrator"""

    def __init__(self, ledger: InstallLedger, downloader: PluginDownloader,
                 sources: Optional[Dict[Service, PluginSource]] = None):
        """
        Args:
            ledger: The run's install ledger, shared by every pipeline
            downloader: Publishes artifacts into the plugin directory
            sources: Service -> source table (defaults to every known catalog)
        """
        self.ledger = ledger
        self.downloader = downloader
        self.sources = sources if sources is not None else default_sources(downloader.session)
        self._pending: Set[asyncio.Future] = set()
        self._outcomes: List[asyncio.Future] = []

    def track(self, coro, outcome: bool = False) -> asyncio.Future:
        """
        Register background work so wait() covers it

        Args:
            coro: Coroutine to schedule on the running loop
            outcome: Whether its boolean result counts toward wait()'s result
        """
        task = asyncio.ensure_future(coro)
        self._pending.add(task)
        if outcome:
            self._outcomes.append(task)
        return task

    def schedule_save(self) -> asyncio.Future:
        """Queue a ledger save; concurrent saves coalesce inside the ledger"""
        return self.track(self.ledger.save())

    def update(self, requests: Iterable[PluginRequest]) -> List[asyncio.Future]:
        """Start one update pipeline per request"""
        return [self.track(self._run_pipeline(request), outcome=True) for request in requests]

    async def _run_pipeline(self, request: PluginRequest) -> bool:
        try:
            previous, resolved = await self.process_plugin(request)
        except PluginSyncError as e:
            logger.error(f"Error: {e}  {json.dumps(request.to_dict())}")
            return False
        except Exception as e:
            logger.exception(f"Error: {e}  {json.dumps(request.to_dict())}")
            return False

        if previous is None:
            logger.info(f"+ Installed: {request.name} ({resolved.version})")
        elif previous.version == resolved.version:
            logger.info(f"# Up-to-date: {request.name} ({resolved.version})")
        else:
            logger.info(f"- Updated: {request.name} {previous.version}")
            logger.info(f"+ Updated: {request.name} {resolved.version}")
        return True

    async def resolve(self, request: PluginRequest) -> ResolvedVersion:
        source = get_source(self.sources, request.service)
        version_range = request.version_range
        return await asyncio.to_thread(source.latest_version, request.plugin, version_range)

    async def process_plugin(self, request: PluginRequest
                             ) -> Tuple[Optional[InstalledPlugin], ResolvedVersion]:
        """
        Resolve -> (skip | download -> verify -> publish -> record -> archive old)

        Returns:
            (the entry installed before this run or None, the resolved version)
        """
        resolved = await self.resolve(request)
        previous = await self.ledger.get(request)
        if previous is not None and previous.version == resolved.version:
            return previous, resolved

        await self.downloader.install(request, resolved, self.ledger)
        self.schedule_save()
        return previous, resolved

    def list_installed(self) -> asyncio.Future:
        """Report every installed plugin against its source's latest version"""
        return self.track(self._list_installed(), outcome=True)

    async def _list_installed(self) -> bool:
        for plugin in await self.ledger.list():
            self.track(self._report_installed(plugin))
        return True

    async def _report_installed(self, plugin: InstalledPlugin) -> None:
        try:
            get_source(self.sources, plugin.service)
        except PluginSyncError:
            status = "(unknown service)"
        else:
            try:
                latest = await self.resolve(plugin.as_request())
            except Exception as e:
                status = f"(error: {e})"
            else:
                if latest.version == plugin.version:
                    status = "(latest)"
                else:
                    status = f"({latest.version} at {service_tag(plugin.service)})"
        logger.info(f"* {plugin.name}: {plugin.version} {status}")

    def remove(self, requests: Iterable[PluginRequest]) -> List[asyncio.Future]:
        """Drop plugins from the ledger and move their jars to the archive directory"""
        return [self.track(self._remove(request), outcome=True) for request in requests]

    async def _remove(self, request: PluginRequest) -> bool:
        try:
            removed = await self.ledger.remove(request)
        except PluginSyncError as e:
            logger.error(f"Error: {e}  {json.dumps(request.to_dict())}")
            return False

        if removed is None:
            logger.warning(f"Not installed: {request.name}")
            return True

        self.schedule_save()
        try:
            await asyncio.to_thread(self.downloader.archive, removed)
        except OSError as e:
            logger.error(f"Failed to archive {removed.filename}: {e}")
        logger.info(f"- Removed: {removed.name} {removed.version}")
        return True

    async def wait(self) -> bool:
        """
        Wait until no registered work remains

        Each round awaits everything currently registered. Work registered
        while a round runs (deferred saves, per-plugin report tasks) is
        picked up by the next round; the loop ends on a round after which
        nothing is pending. A dirty ledger gets one trailing save.

        Returns:
            True if every request outcome succeeded
        """
        trailing_save = None
        while True:
            if not self._pending and trailing_save is None and self.ledger.needs_save:
                trailing_save = self.schedule_save()
            if not self._pending:
                break
            batch = list(self._pending)
            await asyncio.gather(*batch, return_exceptions=True)
            self._pending.difference_update(batch)

        for task in self._outcomes:
            if not task.cancelled() and task.exception() is not None:
                logger.error(f"Unexpected error: {task.exception()}")
        return all(
            not task.cancelled() and task.exception() is None and task.result()
            for task in self._outcomes
        )

    async def run(self, requests: Iterable[PluginRequest]) -> bool:
        self.update(requests)
        return await self.wait()
