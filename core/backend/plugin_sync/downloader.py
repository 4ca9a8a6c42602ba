"""
Download & Publish

Turns a resolved version into a verified jar in the live plugin directory.
The download goes to a temporary file inside the plugin directory, so the
final publish is a same-volume rename; nothing in the live set changes
before that rename.
"""

import asyncio
import hashlib
import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Optional, Tuple, Union

import requests

from .api_clients import ThreadLocalSession
from .config import (
    ARCHIVE_SUFFIX,
    DOWNLOAD_CHUNK_SIZE,
    DOWNLOAD_TIMEOUT,
    TEMP_PREFIX,
    TEMP_SUFFIX,
)
from .errors import IntegrityError, NetworkError
from .ledger import InstallLedger, now_ms
from .models import InstalledPlugin, PluginRequest, RemovedPlugin, ResolvedVersion

logger = logging.getLogger(__name__)

RELEASE_TAG_URL = re.compile(r'^https://github\.com/([^/]+/[^/]+)/releases/tag/([^/]+)$')


def artifact_name(name: str, version: str) -> str:
    return f"{name}-{version}.jar"


class PluginDownloader:
    """Handles plugin download, verification and publishing"""

    def __init__(self, plugin_dir: Union[str, Path],
                 chown: Optional[Tuple[Optional[int], Optional[int]]] = None,
                 session: Optional[requests.Session] = None):
        """
        Args:
            plugin_dir: Live plugin directory; superseded jars go to '<plugin_dir>.old'
            chown: Optional (uid, gid) applied before publishing; None keeps either id
            session: HTTP session to download with
        """
        self.plugin_dir = Path(plugin_dir)
        self.archive_dir = self.plugin_dir.with_name(self.plugin_dir.name + ARCHIVE_SUFFIX)
        self.chown = chown
        self.session = session or ThreadLocalSession()

    def live_path(self, name: str, version: str) -> Path:
        return self.plugin_dir / artifact_name(name, version)

    @staticmethod
    def rewrite_release_url(url: str, name: str, version: str) -> str:
        """
        Point a GitHub release page at its jar asset

        'https://github.com/o/r/releases/tag/v1' ->
        'https://github.com/o/r/releases/download/v1/{name}-{version}.jar'
        """
        match = RELEASE_TAG_URL.match(url)
        if not match:
            return url
        repo, tag = match.groups()
        return f"https://github.com/{repo}/releases/download/{tag}/{artifact_name(name, version)}"

    @staticmethod
    def calculate_hash(filepath: Path, hash_type: str = "sha256") -> str:
        """
        Calculate hash of a file

        Args:
            filepath: Path to file
            hash_type: Hash algorithm (sha256, sha512)

        Returns:
            Hexadecimal hash string
        """
        hash_obj = hashlib.new(hash_type)
        with open(filepath, "rb") as f:
            for byte_block in iter(lambda: f.read(DOWNLOAD_CHUNK_SIZE), b""):
                hash_obj.update(byte_block)
        return hash_obj.hexdigest()

    def _create_temp(self) -> Path:
        self.plugin_dir.mkdir(parents=True, exist_ok=True)
        fd, name = tempfile.mkstemp(prefix=TEMP_PREFIX, suffix=TEMP_SUFFIX, dir=self.plugin_dir)
        os.close(fd)
        return Path(name)

    def _fetch(self, url: str, dest: Path) -> None:
        """Stream `url` into `dest` (blocking)"""
        try:
            with self.session.get(url, stream=True, timeout=DOWNLOAD_TIMEOUT) as response:
                response.raise_for_status()
                with open(dest, 'wb') as f:
                    for chunk in response.iter_content(chunk_size=DOWNLOAD_CHUNK_SIZE):
                        f.write(chunk)
        except requests.RequestException as e:
            raise NetworkError(f"Download failed for {url}: {e}") from e

    def _download(self, tmp: Path, request: PluginRequest,
                  resolved: ResolvedVersion) -> InstalledPlugin:
        """Download into `tmp` and verify it (blocking)"""
        url = self.rewrite_release_url(resolved.download.url, request.name, resolved.version)
        logger.info(f"Downloading: {artifact_name(request.name, resolved.version)}")
        logger.info(f"  URL: {url}")

        self._fetch(url, tmp)

        file_size = tmp.stat().st_size
        logger.info(f"  Downloaded: {file_size:,} bytes")

        calculated = self.calculate_hash(tmp, "sha256")
        expected = resolved.download.sha256
        if expected is not None and expected.lower() != calculated:
            logger.error("  ✗ SHA256 mismatch!")
            logger.error(f"    Expected: {expected}")
            logger.error(f"    Got:      {calculated}")
            raise IntegrityError(f"Downloaded file hash mismatch: {expected} != {calculated}")

        if resolved.download.sha512 is not None:
            calculated512 = self.calculate_hash(tmp, "sha512")
            if resolved.download.sha512.lower() != calculated512:
                raise IntegrityError(
                    f"Downloaded file hash mismatch: {resolved.download.sha512} != {calculated512}"
                )

        if resolved.download.size is not None and resolved.download.size != file_size:
            raise IntegrityError(
                f"Downloaded file size mismatch: {resolved.download.size} != {file_size}"
            )

        logger.info(f"  ✓ SHA256: {calculated[:16]}...")
        return InstalledPlugin.from_download(request, resolved, calculated, file_size, now_ms())

    def _stage(self, request: PluginRequest,
               resolved: ResolvedVersion) -> Tuple[Path, InstalledPlugin]:
        """
        Create a temp file in the plugin directory and download into it (blocking)

        On failure the temp file is removed here, in the thread that wrote it.
        """
        tmp = self._create_temp()
        try:
            return tmp, self._download(tmp, request, resolved)
        except BaseException:
            tmp.unlink(missing_ok=True)
            raise

    @staticmethod
    async def _discard(worker: asyncio.Future) -> None:
        """Wait out a staging thread whose caller was cancelled, then remove its file"""
        # the thread cannot be interrupted; later cancellations only repeat the wait
        while not worker.done():
            try:
                await asyncio.wait({worker})
            except asyncio.CancelledError:
                continue
        if worker.cancelled() or worker.exception() is not None:
            return
        tmp, _ = worker.result()
        tmp.unlink(missing_ok=True)
        logger.info(f"  Discarded unpublished download: {tmp.name}")

    def _apply_ownership(self, tmp: Path) -> None:
        os.chmod(tmp, 0o644)
        if self.chown is None:
            return
        uid, gid = self.chown
        uid = -1 if uid is None else uid
        gid = -1 if gid is None else gid
        if uid == -1 and gid == -1:
            return
        os.chown(tmp, uid, gid)

    def archive(self, removed: RemovedPlugin) -> None:
        """Move a superseded jar from the live directory to the archive directory (blocking)"""
        src = self.plugin_dir / removed.filename
        dst = self.archive_dir / removed.filename
        if not src.exists():
            logger.warning(f"  ⚠ Superseded artifact not found, nothing to archive: {src}")
            return
        self.archive_dir.mkdir(parents=True, exist_ok=True)
        os.replace(src, dst)
        logger.info(f"  Archived {removed.filename} -> {self.archive_dir}")

    async def install(self, request: PluginRequest, resolved: ResolvedVersion,
                      ledger: InstallLedger) -> Union[None, bool, RemovedPlugin]:
        """
        Download, verify and publish one plugin version, then record it

        Returns:
            False if the ledger already holds this version (nothing done),
            None for a fresh install, or the record of the replaced version

        Raises:
            NetworkError, IntegrityError: the live directory and ledger are untouched
        """
        current = await ledger.get(request)
        if current is not None and current.version == resolved.version:
            return False

        live = self.live_path(request.name, resolved.version)
        worker = asyncio.ensure_future(asyncio.to_thread(self._stage, request, resolved))
        try:
            tmp, installed = await asyncio.shield(worker)
        except asyncio.CancelledError:
            await self._discard(worker)
            raise

        published = False
        try:
            # ownership and rename run back to back with no suspension point
            self._apply_ownership(tmp)
            os.replace(tmp, live)
            published = True
        finally:
            if not published:
                tmp.unlink(missing_ok=True)

        removed = await ledger.add(installed)
        if isinstance(removed, RemovedPlugin):
            await asyncio.to_thread(self.archive, removed)
        return removed
