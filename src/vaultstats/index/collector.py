"""Incremental vault metrics collection."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Callable, Dict, Iterable, List, Optional, Tuple, Union

from vaultstats.errors import ContentReadFailure, MetadataUnavailable
from vaultstats.index.extractor import MetricsExtractor
from vaultstats.index.metrics import VaultMetrics
from vaultstats.ingestion.markdown_parser import MetadataCache
from vaultstats.ingestion.vault import FileSystemVault
from vaultstats.models import DocumentMetrics, VaultFile

LOGGER = logging.getLogger(__name__)

DEFAULT_INTERVAL = 2.0


class MetricsCollector:
    """Keeps a :class:`VaultMetrics` aggregate in step with the vault.

    Lifecycle events only mark documents dirty by queueing their path in a
    deduplicating backlog. A background task drains the backlog every
    ``interval`` seconds, recomputing one document at a time and applying the
    difference to the aggregate. Once the backlog is empty the aggregate
    equals the sum of the per-document records in the cache.
    """

    def __init__(
        self,
        vault: FileSystemVault,
        metadata_cache: MetadataCache,
        *,
        metrics: Optional[VaultMetrics] = None,
        interval: float = DEFAULT_INTERVAL,
        extractor: Optional[MetricsExtractor] = None,
        note_extensions: Iterable[str] = ("md",),
    ) -> None:
        self.vault = vault
        self.metadata_cache = metadata_cache
        self.metrics = metrics if metrics is not None else VaultMetrics()
        self.interval = interval
        self.extractor = extractor or MetricsExtractor(vault.read, note_extensions=note_extensions)
        self._data: Dict[str, DocumentMetrics] = {}
        self._backlog: Dict[str, None] = {}
        self._drain_lock = asyncio.Lock()
        self._task: Optional[asyncio.Task] = None
        self._unsubscribe: List[Callable[[], None]] = []

    def start(self) -> "MetricsCollector":
        """Subscribe to lifecycle events and queue every existing file.

        When called with a running event loop, the periodic drain task is
        scheduled on it; otherwise the backlog is drained by awaiting
        :meth:`process_backlog`.
        """
        self._detach()
        self._unsubscribe = [
            self.vault.on("create", self._on_file_created),
            self.vault.on("modify", self._on_file_modified),
            self.vault.on("delete", self._on_file_deleted),
            self.vault.on("rename", self._on_file_renamed),
            self.metadata_cache.on("changed", self._on_file_modified),
        ]

        self._data.clear()
        self._backlog.clear()
        self.metrics.reset()
        for file in self.vault.get_files():
            self.push(file)
        LOGGER.info("Queued %d files from %s", len(self._backlog), self.vault.root)

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None
        if self._task is not None:
            self._task.cancel()
            self._task = None
        if loop is not None:
            self._task = loop.create_task(self._run())
        return self

    async def stop(self) -> None:
        self._detach()
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def backlog(self) -> Tuple[str, ...]:
        return tuple(self._backlog)

    def cached(self, path: str) -> Optional[DocumentMetrics]:
        return self._data.get(path)

    def documents(self) -> Dict[str, DocumentMetrics]:
        return dict(self._data)

    def push(self, file_or_path: Union[VaultFile, str]) -> None:
        path = file_or_path.path if isinstance(file_or_path, VaultFile) else file_or_path
        if path not in self._backlog:
            self._backlog[path] = None

    async def process_backlog(self) -> int:
        """Drain the backlog; returns the number of documents processed.

        Drains never overlap: a call made while another drain runs waits for
        it and then processes whatever is left.
        """
        processed = 0
        async with self._drain_lock:
            while self._backlog:
                path = next(iter(self._backlog))
                del self._backlog[path]
                try:
                    metrics = await self.collect(path)
                except Exception:
                    LOGGER.exception("Failed to collect metrics for %s", path)
                    metrics = None
                self.update(path, metrics)
                processed += 1
        if processed:
            LOGGER.debug("Processed %d documents: %r", processed, self.metrics)
        return processed

    async def collect(self, path: str) -> Optional[DocumentMetrics]:
        """Metrics of one document, or None when it is gone or unreadable.

        Filesystem access and parsing run in worker threads; a note is read
        once and the same bytes feed both the metadata cache and the word
        count.
        """
        file = await asyncio.to_thread(self.vault.get_file, path)
        if file is None:
            return None
        content: Optional[bytes] = None
        if self.extractor.is_note(file):
            try:
                content = await self.vault.read(path)
            except ContentReadFailure as exc:
                LOGGER.debug("%s: %s", path, exc)
        try:
            metadata = await asyncio.to_thread(self.metadata_cache.get_file_cache, path, content)
        except MetadataUnavailable as exc:
            LOGGER.debug("%s: %s", path, exc)
            metadata = None
        return await self.extractor.extract(file, metadata, content=content)

    def update(self, path: str, metrics: Optional[DocumentMetrics]) -> None:
        # Remove the previous contribution, replace the record, add the new one.
        self.metrics.dec(self._data.get(path))
        if metrics is None:
            self._data.pop(path, None)
        else:
            self._data[path] = metrics
        self.metrics.inc(metrics)

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            await self.process_backlog()

    def _detach(self) -> None:
        for off in self._unsubscribe:
            off()
        self._unsubscribe = []

    def _on_file_created(self, file: VaultFile) -> None:
        self.push(file)

    def _on_file_modified(self, file: VaultFile) -> None:
        self.push(file)

    def _on_file_deleted(self, file: VaultFile) -> None:
        self.push(file)

    def _on_file_renamed(self, file: VaultFile, old_path: str) -> None:
        self.push(file)
        self.push(old_path)
