"""
Ledger file watcher.

Keeps the indexer current while another process appends to the ledger:
watchdog reports changes to the ledger file, changes are debounced (a
transaction appends several lines in quick succession), and then the ledger
is re-read and the indexer synced.
"""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Callable

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .indexer import IndexStatus
from .service import ProvenanceService

logger = logging.getLogger(__name__)


class LedgerChangeHandler(FileSystemEventHandler):
    """
    Re-syncs the service's indexer when the ledger file changes.

    Only the ledger file itself is relevant; events for other files in the
    data directory (audit log, metadata blobs) are ignored.
    """

    DEBOUNCE_SECONDS = 0.5

    def __init__(
        self,
        service: ProvenanceService,
        on_sync: Callable[[IndexStatus], None] | None = None,
        debounce_seconds: float | None = None,
    ):
        """
        Args:
            service: File-backed service to keep in sync
            on_sync: Callback receiving the index status after each sync
            debounce_seconds: Quiet period before syncing (default DEBOUNCE_SECONDS)
        """
        super().__init__()
        if service.ledger.ledger_path is None:
            raise ValueError("Cannot watch an in-memory ledger")
        self.service = service
        self.ledger_path = service.ledger.ledger_path.resolve()
        self.on_sync = on_sync
        self.debounce_seconds = self.DEBOUNCE_SECONDS if debounce_seconds is None else debounce_seconds

        self.pending_since: float | None = None
        self.syncs = 0

    def _is_relevant(self, path: str | bytes) -> bool:
        if isinstance(path, bytes):
            path = path.decode()
        return Path(path).resolve() == self.ledger_path

    def _mark(self) -> None:
        if self.pending_since is None:
            self.pending_since = time.monotonic()

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory and self._is_relevant(event.src_path):
            self._mark()

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory and self._is_relevant(event.src_path):
            self._mark()

    def on_deleted(self, event: FileSystemEvent) -> None:
        if not event.is_directory and self._is_relevant(event.src_path):
            self._mark()

    def on_moved(self, event: FileSystemEvent) -> None:
        # Editors and atomic writers replace the file by renaming over it
        if event.is_directory:
            return
        if self._is_relevant(event.src_path) or self._is_relevant(event.dest_path):
            self._mark()

    def flush_pending(self, *, force: bool = False) -> IndexStatus | None:
        """
        Sync if a change is pending and the debounce window has passed.

        Returns:
            Index status after the sync, or None if nothing was synced
        """
        if self.pending_since is None:
            return None
        if not force and time.monotonic() - self.pending_since < self.debounce_seconds:
            return None
        self.pending_since = None

        try:
            self.service.ledger.reload()
        except ValueError as e:
            # Half-written line or rewritten history; the next change retries
            logger.warning("Ledger unreadable, skipping sync: %s", e)
            return None

        status = self.service.sync()
        self.syncs += 1
        logger.debug("Index synced to position %d (head %d)", status.position, status.head)
        if self.on_sync:
            self.on_sync(status)
        return status


def watch_ledger(
    service: ProvenanceService,
    on_sync: Callable[[IndexStatus], None] | None = None,
) -> tuple[Observer, LedgerChangeHandler]:
    """
    Start watching the service's ledger file.

    Returns:
        Tuple of (observer, handler) - caller should call observer.stop() to stop watching
    """
    handler = LedgerChangeHandler(service, on_sync=on_sync)
    handler.ledger_path.parent.mkdir(parents=True, exist_ok=True)

    observer = Observer()
    observer.schedule(handler, str(handler.ledger_path.parent), recursive=False)
    observer.start()
    return observer, handler


def run_watch_loop(
    service: ProvenanceService,
    on_sync: Callable[[IndexStatus], None] | None = None,
    poll_interval: float = 0.25,
) -> None:
    """Sync once, then keep syncing on ledger changes until interrupted."""
    status = service.sync()
    if on_sync:
        on_sync(status)

    observer, handler = watch_ledger(service, on_sync=on_sync)
    try:
        while True:
            time.sleep(poll_interval)
            handler.flush_pending()
    except KeyboardInterrupt:
        observer.stop()

    observer.join()
