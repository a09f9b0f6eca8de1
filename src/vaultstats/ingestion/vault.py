"""Filesystem document store with polling change detection."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from stat import S_ISREG
from typing import Any, Callable, Dict, List, Optional, Tuple

from vaultstats.errors import ContentReadFailure
from vaultstats.models import VaultFile
from vaultstats.utils.events import Events
from vaultstats.utils.files import file_extension, iter_document_paths, to_identity

LOGGER = logging.getLogger(__name__)

EVENTS = ("create", "modify", "delete", "rename")

Snapshot = Dict[str, Tuple[int, float]]


class FileSystemVault:
    """A directory tree of notes and attachments.

    Documents are identified by their root-relative POSIX path. Listeners
    registered with :meth:`on` receive ``create``, ``modify`` and ``delete``
    events as ``callback(file)`` and ``rename`` as ``callback(file, old_path)``.
    Events are produced by :meth:`poll` or pushed by an integrator through
    :meth:`trigger`.
    """

    def __init__(self, root: Path, *, include_hidden: bool = False) -> None:
        self.root = Path(root)
        self.include_hidden = include_hidden
        self._events = Events()
        self._snapshot: Optional[Snapshot] = None

    def path_for(self, identity: str) -> Path:
        return self.root / identity

    def get_files(self) -> List[VaultFile]:
        files: List[VaultFile] = []
        for path in iter_document_paths(self.root, include_hidden=self.include_hidden):
            file = self.get_file(to_identity(path, self.root))
            if file is not None:
                files.append(file)
        return files

    def get_file(self, identity: str) -> Optional[VaultFile]:
        try:
            stat = self.path_for(identity).stat()
        except OSError:
            return None
        if not S_ISREG(stat.st_mode):
            return None
        return VaultFile(
            path=identity,
            extension=file_extension(identity),
            size=stat.st_size,
            mtime=stat.st_mtime,
        )

    def read_bytes(self, identity: str) -> bytes:
        try:
            return self.path_for(identity).read_bytes()
        except OSError as exc:
            raise ContentReadFailure(f"Cannot read {identity}: {exc}") from exc

    async def read(self, identity: str) -> bytes:
        return await asyncio.to_thread(self.read_bytes, identity)

    def on(self, event: str, callback: Callable[..., Any]) -> Callable[[], None]:
        if event not in EVENTS:
            raise ValueError(f"Unknown vault event: {event}")
        return self._events.on(event, callback)

    def trigger(self, event: str, *args: Any) -> None:
        self._events.trigger(event, *args)

    def snapshot(self) -> Snapshot:
        return {file.path: (file.size, file.mtime) for file in self.get_files()}

    def poll(self, current: Optional[Snapshot] = None) -> None:
        """Compare the tree against the previous poll and emit lifecycle events.

        ``current`` is a snapshot taken by the caller; without one the tree is
        walked here. The first call only records a baseline. A path that
        disappeared and a path that appeared with the same size and mtime are
        reported as a single rename.
        """
        if current is None:
            current = self.snapshot()
        previous = self._snapshot
        self._snapshot = current
        if previous is None:
            return

        created = [path for path in current if path not in previous]
        deleted = [path for path in previous if path not in current]
        modified = [
            path for path in current if path in previous and current[path] != previous[path]
        ]

        for old_path in list(deleted):
            match = next((path for path in created if current[path] == previous[old_path]), None)
            if match is None:
                continue
            created.remove(match)
            deleted.remove(old_path)
            LOGGER.debug("Renamed %s -> %s", old_path, match)
            self.trigger("rename", self._file(match, current[match]), old_path)

        for path in deleted:
            LOGGER.debug("Deleted %s", path)
            self.trigger("delete", self._file(path, previous[path]))
        for path in created:
            LOGGER.debug("Created %s", path)
            self.trigger("create", self._file(path, current[path]))
        for path in modified:
            LOGGER.debug("Modified %s", path)
            self.trigger("modify", self._file(path, current[path]))

    async def scan(self) -> None:
        """Walk the tree in a worker thread, then diff and emit events on the loop."""
        self.poll(await asyncio.to_thread(self.snapshot))

    async def watch(self, interval: float = 2.0) -> None:
        """Poll the tree every ``interval`` seconds until cancelled."""
        if self._snapshot is None:
            await self.scan()
        while True:
            await asyncio.sleep(interval)
            await self.scan()

    @staticmethod
    def _file(identity: str, stat: Tuple[int, float]) -> VaultFile:
        size, mtime = stat
        return VaultFile(path=identity, extension=file_extension(identity), size=size, mtime=mtime)
