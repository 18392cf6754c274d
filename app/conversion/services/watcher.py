"""
IngestionWatcher: Discovers proof files in the input directory.

Discovery has two phases:
1. Backlog scan: list the directory once, in natural filename order.
2. Live watch: a watchdog observer pushes created, moved-in and
   closed-after-write paths onto an asyncio.Queue that the orchestrator
   consumes after the backlog is done.

The observer thread never calls into the pipeline directly; it only hands
paths to the event loop.
"""

from __future__ import annotations

import asyncio
import os
import re
from pathlib import Path
from typing import AsyncIterator, Callable

from loguru import logger
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from proofbridge_core.artifacts.models import ArtifactPattern
from proofbridge_core.runtime.errors import DirectoryIOFailedError

_STOP = None


def natural_sort_key(name: str) -> list:
    """Sort key treating digit runs as numbers, so 9_10 sorts before 10_20."""
    return [int(part) if part.isdigit() else part for part in re.split(r"(\d+)", name)]


class _ArtifactEventHandler(FileSystemEventHandler):
    def __init__(self, watcher: IngestionWatcher) -> None:
        self._watcher = watcher

    def on_created(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        self._watcher.notify(os.fsdecode(event.src_path))

    def on_moved(self, event: FileSystemEvent) -> None:
        # Upstream writers that rename into place show up as moves
        if event.is_directory:
            return
        self._watcher.notify(os.fsdecode(event.dest_path))

    def on_closed(self, event: FileSystemEvent) -> None:
        # In-place writers: the created event can fire before the blob is complete
        if event.is_directory:
            return
        self._watcher.notify(os.fsdecode(event.src_path))


class IngestionWatcher:
    """
    Watches one flat directory for raw proof blobs.

    Usage:
        watcher = IngestionWatcher("/data/saved_proofs", pattern)
        watcher.start(asyncio.get_running_loop())
        for path in await watcher.scan_backlog():
            ...
        async for path in watcher.events():
            ...
        await watcher.stop()
    """

    def __init__(
        self,
        input_dir: str,
        pattern: ArtifactPattern,
        observer_factory: Callable[[], Observer] = Observer,
    ):
        self.input_dir = Path(input_dir)
        self.pattern = pattern
        self._observer_factory = observer_factory
        self._observer: Observer | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._queue: asyncio.Queue[str | None] = asyncio.Queue()
        self._closed = False

    @property
    def watching(self) -> bool:
        return self._observer is not None

    async def scan_backlog(self) -> list[str]:
        """
        List existing proof files in natural filename order.

        Listing failures are logged and yield an empty backlog.

        Returns:
            list: Absolute paths of candidate files.
        """
        try:
            entries = await asyncio.to_thread(os.listdir, self.input_dir)
        except OSError as e:
            error = DirectoryIOFailedError(str(self.input_dir), cause=e)
            logger.error(f"{error} ({error.message_debug}); continuing with empty backlog")
            return []

        names = sorted(
            (name for name in entries if self.pattern.is_candidate(name)),
            key=natural_sort_key,
        )
        skipped = len(entries) - len(names)
        if skipped:
            logger.debug(f"Ignored {skipped} non-proof entr{'y' if skipped == 1 else 'ies'} in backlog")

        return [str((self.input_dir / name).resolve()) for name in names]

    def start(self, loop: asyncio.AbstractEventLoop) -> None:
        """
        Subscribe to filesystem events. Events are buffered until consumed.

        A failing observer is logged and the pipeline continues without live
        watching.
        """
        self._loop = loop
        observer = self._observer_factory()
        try:
            observer.schedule(_ArtifactEventHandler(self), str(self.input_dir), recursive=False)
            observer.start()
        except Exception as e:
            logger.warning(f"Could not watch {self.input_dir}: {e}")
            return

        self._observer = observer
        logger.info(f"Watching directory: {self.input_dir}")

    def notify(self, path: str) -> None:
        """Called from the observer thread for every new file."""
        name = os.path.basename(path)
        if not self.pattern.is_candidate(name):
            logger.debug(f"Ignoring non-proof entry {name}")
            return
        if self._loop is None or self._closed:
            return

        try:
            self._loop.call_soon_threadsafe(self._queue.put_nowait, path)
        except RuntimeError:
            logger.warning(f"Event loop closed; dropped event for {name}")
            return
        logger.info(f"New proof file detected: {name}")

    async def events(self) -> AsyncIterator[str]:
        """Yield live paths until interrupt() is called."""
        while True:
            path = await self._queue.get()
            if path is _STOP:
                return
            yield path

    def interrupt(self) -> None:
        """Stop events() on the loop thread. Later events are dropped."""
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_STOP)

    async def stop(self) -> None:
        """Unsubscribe and join the observer thread."""
        self.interrupt()
        observer, self._observer = self._observer, None
        if observer is None:
            return
        observer.stop()
        await asyncio.to_thread(observer.join)
        logger.info("Stopped watching")
